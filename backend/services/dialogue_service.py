# backend/services/dialogue_service.py
"""
One chat turn of the booking dialogue.

The model extraction is tried first; when it yields no booking, or leaves
fields open, the local parser fills the gaps (model values win on conflicts,
both win over the stored draft). The completion policy then decides whether to
ask one more question or to commit the appointment.
"""

import logging
from datetime import date
from typing import Callable, Optional

from services import booking_service
from services.booking_service import BookingError
from services.completion_policy import (
    AWAITING_REASON, COLLECTING, COMPLETE, confirmation_message, decide, has_required, merge,
    missing_fields, question_for,
)
from services.intent_service import ParseContext, parse_message
from services.llm_service import ModelExtractor
from services.models import Appointment, BookIntent, ChatResult, ConversationState, NoResult, PartialFields
from services.session_service import SessionStore, get_store
from services.time_utils import today

logger = logging.getLogger(__name__)

GREETING = "Hi! I can help you book an appointment. Which doctor and date work for you?"
DECLINE_WORDS = {"no", "nope", "none", "nothing", "skip", "na", "n/a", "no reason", "not really"}


def _reason_from_reply(message: str) -> str:
    """A short answer to the reason question is the reason itself."""
    text = message.strip().strip(".!")
    if not text or text.lower() in DECLINE_WORDS:
        return ""
    if len(text.split()) <= 3:
        return text
    return ""


class DialogueService:
    def __init__(self, store: Optional[SessionStore] = None,
                 extractor: Optional[ModelExtractor] = None,
                 persist: Optional[Callable[[Appointment], Appointment]] = None,
                 clock: Optional[Callable[[], date]] = None):
        self.store = store if store is not None else get_store()
        self.extractor = extractor if extractor is not None else ModelExtractor()
        self.persist = persist if persist is not None else booking_service.save_appointment
        self.clock = clock if clock is not None else today

    def handle_message(self, message: str, session_id: str) -> ChatResult:
        message = (message or "").strip()
        with self.store.locked(session_id):
            state = self.store.get(session_id)
            return self._turn(message, session_id, state)

    def _extract(self, message: str, state: ConversationState, ref: date):
        """Return (candidates, found_anything, model_reply, model_failed)."""
        model_result = self.extractor.extract(message, state, ref)
        candidates = Appointment()
        model_reply = None
        model_failed = isinstance(model_result, NoResult) and model_result.failed
        if isinstance(model_result, BookIntent):
            candidates = model_result.fields
            model_reply = model_result.reply
        elif isinstance(model_result, NoResult):
            model_reply = model_result.reply

        if not isinstance(model_result, BookIntent) or missing_fields(merge(candidates, state.draft)):
            local = parse_message(message, ParseContext.from_state(state, ref))
            if isinstance(local, PartialFields):
                logger.debug("[DIALOGUE] local parser filled %s (confident=%s)",
                             local.candidates.model_dump(exclude_defaults=True), local.confident)
                candidates = merge(candidates, local.candidates)
        return candidates, not candidates.is_empty(), model_reply, model_failed

    def _turn(self, message: str, session_id: str, state: ConversationState) -> ChatResult:
        ref = self.clock()
        candidates, found, model_reply, model_failed = self._extract(message, state, ref)
        draft = merge(candidates, state.draft)

        if state.stage == AWAITING_REASON and not draft.reason.strip():
            reason = _reason_from_reply(message)
            if reason:
                draft = draft.model_copy(update={"reason": reason})
                found = True

        state.last_user_message = message

        if not found and state.stage != AWAITING_REASON and not has_required(draft):
            return self._clarify(message, session_id, state, draft, model_reply, model_failed)

        decision = decide(draft, state.stage)
        if decision.stage == COMPLETE:
            return self._commit(message, session_id, state, draft, decision.appointment)

        reply = question_for(decision.ask_field, draft)
        state.draft = draft
        state.stage = decision.stage
        state.pending_field = decision.ask_field
        state.last_ai_message = reply
        self.store.set(session_id, state)
        logger.info("[DIALOGUE] session=%s stage=%s asking for %s", session_id, decision.stage, decision.ask_field)
        return ChatResult(reply=reply)

    def _clarify(self, message: str, session_id: str, state: ConversationState,
                 draft: Appointment, model_reply: Optional[str],
                 model_failed: bool = False) -> ChatResult:
        if draft.is_empty():
            reply = model_reply or GREETING
            ask_field = None
        else:
            decision = decide(draft, state.stage)
            ask_field = decision.ask_field
            reply = None
            # one model call per turn: no second attempt after a failed extraction
            if not model_failed:
                reply = self.extractor.reply(message, state, missing_fields(draft))
            reply = reply or question_for(ask_field, draft)
        state.draft = draft
        state.pending_field = ask_field
        state.last_ai_message = reply
        self.store.set(session_id, state)
        logger.info("[DIALOGUE] session=%s nothing extracted, clarifying", session_id)
        return ChatResult(reply=reply)

    def _commit(self, message: str, session_id: str, state: ConversationState,
                draft: Appointment, appointment: Appointment) -> ChatResult:
        try:
            saved = self.persist(appointment)
        except Exception as e:
            # keep the exact appointment so the next message retries it
            state.draft = draft.model_copy(update={"reason": appointment.reason})
            state.stage = COLLECTING
            state.pending_field = None
            state.last_ai_message = ""
            self.store.set(session_id, state)
            logger.error("[DIALOGUE] session=%s booking not saved: %s", session_id, e)
            if isinstance(e, BookingError):
                raise
            raise BookingError("failed to create appointment") from e

        reply = confirmation_message(saved)
        self.store.set(session_id, ConversationState(
            last_user_message=message, last_ai_message=reply, stage=COLLECTING))
        logger.info("[DIALOGUE] session=%s booked appointment #%s", session_id, saved.id)
        return ChatResult(reply=reply, appointment=saved)


_default_service: Optional[DialogueService] = None


def get_dialogue_service() -> DialogueService:
    global _default_service
    if _default_service is None:
        _default_service = DialogueService()
    return _default_service


def chat(message: str, session_id: str) -> ChatResult:
    return get_dialogue_service().handle_message(message, session_id)
