# backend/services/completion_policy.py
"""
Field merging and the per-turn decision of what to ask next.

Stages:
  collecting       -> some required field is missing or invalid
  awaiting_reason  -> everything required is known, the reason was asked for
  complete         -> the draft can be committed (terminal for the turn)
"""

from dataclasses import dataclass
from typing import List, Optional

from services.models import DRAFT_FIELDS, Appointment
from services.time_utils import is_valid_date, is_valid_time

COLLECTING = "collecting"
AWAITING_REASON = "awaiting_reason"
COMPLETE = "complete"

DEFAULT_REASON = "general consultation"


def merge(candidate: Appointment, prior: Appointment) -> Appointment:
    """Per field: the trimmed candidate value if non-empty, else the prior value."""
    updates = {}
    for f in DRAFT_FIELDS:
        value = (getattr(candidate, f) or "").strip()
        if value:
            updates[f] = value
    return prior.model_copy(update=updates)


def field_ok(draft: Appointment, name: str) -> bool:
    value = (getattr(draft, name) or "").strip()
    if name == "date":
        return is_valid_date(value)
    if name == "time":
        return is_valid_time(value)
    return bool(value)


def missing_fields(draft: Appointment) -> List[str]:
    """Missing or invalid fields, in the order they should be asked for."""
    return [f for f in DRAFT_FIELDS if not field_ok(draft, f)]


def has_required(draft: Appointment) -> bool:
    return all(f == "reason" for f in missing_fields(draft))


@dataclass
class PolicyDecision:
    stage: str
    ask_field: Optional[str] = None
    appointment: Optional[Appointment] = None


def decide(draft: Appointment, stage: str = COLLECTING) -> PolicyDecision:
    missing = missing_fields(draft)
    required_missing = [f for f in missing if f != "reason"]
    if required_missing:
        return PolicyDecision(stage=COLLECTING, ask_field=required_missing[0])

    reason = draft.reason.strip()
    if not reason:
        if stage != AWAITING_REASON:
            return PolicyDecision(stage=AWAITING_REASON, ask_field="reason")
        # the reason was asked once already
        reason = DEFAULT_REASON

    appointment = Appointment(
        patient_name=draft.patient_name.strip(),
        doctor=draft.doctor.strip(),
        date=draft.date,
        time=draft.time,
        reason=reason,
        status="pending",
    )
    return PolicyDecision(stage=COMPLETE, appointment=appointment)


def question_for(field: str, draft: Appointment) -> str:
    if field == "doctor":
        return "Which doctor would you like to see?"
    if field == "date":
        if draft.doctor:
            return f"What date would you like to see {draft.doctor}? (for example 'tomorrow' or '4 nov')"
        return "What date works for you? (for example 'tomorrow' or '4 nov')"
    if field == "time":
        return "What time works best for you? (for example '4pm' or '14:30')"
    if field == "patient_name":
        return "May I have the patient's name, please?"
    if field == "reason":
        return (f"Perfect! I have all the details. What is the reason for your appointment "
                f"with {draft.doctor} on {draft.date} at {draft.time}?")
    return "Could you tell me a bit more about the appointment you need?"


def confirmation_message(appointment: Appointment) -> str:
    return (f"Perfect! I've booked your appointment with {appointment.doctor} on {appointment.date} "
            f"at {appointment.time} for {appointment.reason}. Thank you, {appointment.patient_name}!")
