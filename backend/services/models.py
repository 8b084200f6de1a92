# backend/services/models.py
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel

# fields collected through chat, in the order they are asked for
DRAFT_FIELDS = ("doctor", "date", "time", "patient_name", "reason")


class Appointment(BaseModel):
    id: Optional[int] = None
    patient_name: str = ""
    doctor: str = ""
    date: str = ""  # YYYY-MM-DD
    time: str = ""  # HH:MM, 24-hour
    reason: str = ""
    status: str = "pending"
    created_at: Optional[str] = None

    def is_empty(self) -> bool:
        return not any((getattr(self, f) or "").strip() for f in DRAFT_FIELDS)


@dataclass
class ConversationState:
    draft: Appointment = field(default_factory=Appointment)
    last_user_message: str = ""
    last_ai_message: str = ""
    stage: str = "collecting"
    pending_field: Optional[str] = None
    updated_at: Optional[datetime] = None


@dataclass
class NoResult:
    """Nothing usable was extracted; the model may still have suggested a reply.
    `failed` is set when the model call itself did not complete."""
    reply: Optional[str] = None
    failed: bool = False


@dataclass
class PartialFields:
    candidates: Appointment
    confident: bool = False


@dataclass
class BookIntent:
    fields: Appointment
    reply: Optional[str] = None


ExtractionResult = Union[NoResult, PartialFields, BookIntent]


@dataclass
class ChatResult:
    reply: str
    appointment: Optional[Appointment] = None

    def to_dict(self) -> dict:
        if self.appointment is not None:
            return {"reply": self.reply, "appointment": self.appointment.model_dump()}
        return {"reply": self.reply}
