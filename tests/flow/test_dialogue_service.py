"""
Multi-turn booking conversations through DialogueService, with the model
either offline or replaced by a scripted transport.
"""

import json
import threading

import pytest

from services.booking_service import BookingError, load_appointments
from services.completion_policy import AWAITING_REASON, COLLECTING, DEFAULT_REASON
from services.dialogue_service import GREETING, DialogueService
from services.llm_service import ModelExtractor
from services.models import Appointment, ConversationState

SID = "session-1"
READY = dict(doctor="Dr. Kim", date="2025-10-21", time="16:00", patient_name="John Doe")


@pytest.fixture
def make_service(store, today, appointments_file, offline_extractor):
    def _make(extractor=None, persist=None):
        return DialogueService(
            store=store,
            extractor=extractor or offline_extractor,
            persist=persist,
            clock=lambda: today,
        )
    return _make


def scripted(*answers):
    """Model transport that returns the given raw answers in order, then chat."""
    queue = list(answers)

    def query(prompt):
        if queue:
            return queue.pop(0)
        return json.dumps({"intent": "chat", "reply": ""})
    return ModelExtractor(query=query, timeout=1.0)


class TestOfflineConversation:
    def test_full_booking_over_three_turns(self, make_service, store):
        service = make_service()

        first = service.handle_message("Book me with Dr. Kim tomorrow at 4pm", SID)
        assert first.appointment is None
        assert first.reply == "May I have the patient's name, please?"
        state = store.get(SID)
        assert (state.draft.doctor, state.draft.date, state.draft.time) == ("Dr. Kim", "2025-10-21", "16:00")
        assert state.pending_field == "patient_name"

        second = service.handle_message("John Doe", SID)
        assert "What is the reason for your appointment with Dr. Kim on 2025-10-21 at 16:00?" in second.reply
        assert store.get(SID).stage == AWAITING_REASON

        third = service.handle_message("checkup", SID)
        appt = third.appointment
        assert appt is not None
        assert (appt.id, appt.patient_name, appt.reason, appt.status) == (1, "John Doe", "checkup", "pending")
        assert third.reply.startswith("Perfect! I've booked your appointment with Dr. Kim")

        # committed: stored once, session starts over
        assert len(load_appointments()) == 1
        after = store.get(SID)
        assert after.draft.is_empty()
        assert after.stage == COLLECTING

    def test_declining_the_reason_uses_default(self, make_service, store):
        store.set(SID, ConversationState(draft=Appointment(**READY), stage=AWAITING_REASON,
                                         pending_field="reason"))
        result = make_service().handle_message("no", SID)
        assert result.appointment.reason == DEFAULT_REASON

    def test_short_answer_to_reason_question(self, make_service, store):
        store.set(SID, ConversationState(draft=Appointment(**READY), stage=AWAITING_REASON,
                                         pending_field="reason"))
        result = make_service().handle_message("sore throat", SID)
        assert result.appointment.reason == "sore throat"

    def test_reason_keyword_completes_collected_draft(self, make_service, store):
        store.set(SID, ConversationState(draft=Appointment(**dict(READY, date="2025-11-04"))))
        result = make_service().handle_message("checkup", SID)
        assert result.appointment is not None
        assert (result.appointment.reason, result.appointment.status) == ("checkup", "pending")
        assert result.reply == ("Perfect! I've booked your appointment with Dr. Kim on 2025-11-04 at 16:00 "
                                "for checkup. Thank you, John Doe!")
        assert store.get(SID).draft.is_empty()

    def test_greeting_when_nothing_is_known(self, make_service, store):
        result = make_service().handle_message("hello", SID)
        assert result.reply == GREETING
        assert store.get(SID).last_user_message == "hello"

    def test_clarify_asks_for_first_missing_field(self, make_service, store):
        store.set(SID, ConversationState(draft=Appointment(doctor="Dr. Kim")))
        result = make_service().handle_message("hmm okay", SID)
        assert result.reply.startswith("What date would you like to see Dr. Kim?")
        assert store.get(SID).pending_field == "date"

    def test_sessions_do_not_share_drafts(self, make_service, store):
        service = make_service()
        service.handle_message("Book me with Dr. Kim tomorrow at 4pm", "a")
        service.handle_message("hello", "b")
        assert store.get("a").draft.doctor == "Dr. Kim"
        assert store.get("b").draft.is_empty()


class TestModelAssisted:
    def test_model_booking_completes_in_one_turn(self, make_service):
        answer = json.dumps({"intent": "book", "doctor": "Dr. Kim", "date": "2025-10-21", "time": "4pm",
                             "patient_name": "John Doe", "reason": "checkup", "reply": "Done"})
        result = make_service(extractor=scripted(answer)).handle_message(
            "John Doe, book Dr. Kim tomorrow at 4pm for a checkup", SID)
        assert result.appointment is not None
        assert result.appointment.time == "16:00"
        assert result.appointment.reason == "checkup"

    def test_model_values_win_and_parser_fills_gaps(self, make_service, store):
        answer = json.dumps({"intent": "book", "doctor": "Dr. Lee", "time": "16:00"})
        result = make_service(extractor=scripted(answer)).handle_message(
            "Book me with Dr. Kim tomorrow at 4pm", SID)
        draft = store.get(SID).draft
        assert draft.doctor == "Dr. Lee"
        assert draft.date == "2025-10-21"
        assert result.reply == "May I have the patient's name, please?"

    def test_model_chat_reply_when_nothing_known(self, make_service):
        answer = json.dumps({"intent": "chat", "reply": "Hello! Which doctor would you like to see?"})
        result = make_service(extractor=scripted(answer)).handle_message("hi there", SID)
        assert result.reply == "Hello! Which doctor would you like to see?"

    def test_model_timeout_falls_back_to_parser(self, make_service, store):
        release = threading.Event()

        def stuck(prompt):
            release.wait(timeout=5)
            return "{}"

        service = make_service(extractor=ModelExtractor(query=stuck, timeout=0.05))
        try:
            result = service.handle_message("Book me with Dr. Kim tomorrow at 4pm", SID)
        finally:
            release.set()
        assert result.reply == "May I have the patient's name, please?"
        assert store.get(SID).draft.time == "16:00"


class TestPersistenceFailure:
    def test_draft_survives_failed_save(self, make_service, store):
        def failing(appointment):
            raise BookingError("failed to create appointment")

        store.set(SID, ConversationState(draft=Appointment(**READY)))
        with pytest.raises(BookingError):
            make_service(persist=failing).handle_message("checkup", SID)

        draft = store.get(SID).draft
        assert draft.doctor == "Dr. Kim"
        assert draft.patient_name == "John Doe"
        assert draft.reason == "checkup"

    def test_unexpected_error_is_reported_as_booking_error(self, make_service, store):
        def broken(appointment):
            raise OSError("disk full")

        store.set(SID, ConversationState(draft=Appointment(**READY)))
        with pytest.raises(BookingError):
            make_service(persist=broken).handle_message("checkup", SID)
        assert store.get(SID).draft.date == "2025-10-21"


def test_module_level_chat_uses_default_service(monkeypatch, make_service, store):
    from services import dialogue_service

    monkeypatch.setattr(dialogue_service, "_default_service", make_service())
    result = dialogue_service.chat("Book me with Dr. Kim tomorrow at 4pm", "module")
    assert result.to_dict() == {"reply": "May I have the patient's name, please?"}
    assert store.get("module").draft.doctor == "Dr. Kim"


def test_injected_empty_store_is_used(store, offline_extractor):
    from services.session_service import get_store

    service = DialogueService(store=store, extractor=offline_extractor)
    assert service.store is store
    assert service.store is not get_store()


def test_default_reason_survives_failed_save_and_retry(make_service, store):
    attempts = []

    def flaky(appointment):
        attempts.append(appointment)
        if len(attempts) == 1:
            raise BookingError("failed to create appointment")
        return appointment.model_copy(update={"id": 7})

    store.set(SID, ConversationState(draft=Appointment(**READY), stage=AWAITING_REASON,
                                     pending_field="reason"))
    service = make_service(persist=flaky)
    with pytest.raises(BookingError):
        service.handle_message("no", SID)
    kept = store.get(SID)
    assert kept.draft.reason == DEFAULT_REASON
    assert kept.stage == COLLECTING

    result = service.handle_message("please try again", SID)
    assert result.appointment.id == 7
    assert result.appointment.reason == DEFAULT_REASON
    assert attempts[0] == attempts[1]


def test_unusable_model_date_does_not_replace_known_date(make_service, store):
    store.set(SID, ConversationState(draft=Appointment(doctor="Dr. Kim", date="2025-11-04")))
    answer = json.dumps({"intent": "book", "date": "not specified", "time": "5pm"})
    result = make_service(extractor=scripted(answer)).handle_message("at 5pm please", SID)
    draft = store.get(SID).draft
    assert draft.date == "2025-11-04"
    assert draft.time == "17:00"
    assert result.reply == "May I have the patient's name, please?"


def test_timed_out_turn_makes_a_single_model_call(make_service, store):
    calls = []
    release = threading.Event()

    def stuck(prompt):
        calls.append(prompt)
        release.wait(timeout=5)
        return "{}"

    store.set(SID, ConversationState(draft=Appointment(doctor="Dr. Kim")))
    service = make_service(extractor=ModelExtractor(query=stuck, timeout=0.05))
    try:
        result = service.handle_message("hmm okay", SID)
    finally:
        release.set()
    # the worker may not have started before the deadline; never a second call
    assert len(calls) <= 1
    assert result.reply.startswith("What date would you like to see Dr. Kim?")
