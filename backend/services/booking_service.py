# backend/services/booking_service.py
import logging
import os
import threading
from pathlib import Path
from typing import List

from services.models import Appointment
from services.time_utils import now_iso, validate_appointment_fields
from utils.storage import read_json_file, write_json_file

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("BOOKING_DATA_DIR") or Path(__file__).resolve().parents[2] / "data")
APPOINTMENTS_FILE = DATA_DIR / "appointments.json"

_write_lock = threading.Lock()


class BookingError(RuntimeError):
    """The appointment could not be stored."""


def load_appointments() -> List[Appointment]:
    try:
        raw = read_json_file(APPOINTMENTS_FILE, default=[]) or []
    except (OSError, ValueError) as e:
        logger.error("[BOOKING] could not read %s: %s", APPOINTMENTS_FILE, e)
        return []
    return [Appointment(**item) for item in raw]


def list_appointments() -> List[Appointment]:
    """Newest first."""
    return sorted(load_appointments(), key=lambda a: a.id or 0, reverse=True)


def save_appointment(appointment: Appointment) -> Appointment:
    """
    Append an appointment to the store, assigning id and created_at.
    Raises BookingError if the file cannot be written.
    """
    with _write_lock:
        try:
            raw = read_json_file(APPOINTMENTS_FILE, default=[]) or []
            saved = appointment.model_copy(update={
                "id": max((r.get("id") or 0 for r in raw), default=0) + 1,
                "status": appointment.status or "pending",
                "created_at": now_iso(),
            })
            raw.append(saved.model_dump())
            write_json_file(APPOINTMENTS_FILE, raw)
        except (OSError, ValueError) as e:
            logger.error("[BOOKING] failed to save appointment: %s", e)
            raise BookingError("failed to create appointment") from e
    logger.info("[BOOKING] saved appointment #%s with %s on %s at %s",
                saved.id, saved.doctor, saved.date, saved.time)
    return saved


def create_appointment(patient_name: str, doctor: str, date: str, time: str,
                       reason: str = "", status: str = "") -> Appointment:
    """Direct (non-chat) creation: input is validated, never coerced."""
    patient_name = (patient_name or "").strip()
    doctor = (doctor or "").strip()
    if not patient_name or not doctor:
        raise ValueError("patient name and doctor are required")
    date = (date or "").strip()
    time = (time or "").strip()
    validate_appointment_fields(date, time)
    appointment = Appointment(
        patient_name=patient_name,
        doctor=doctor,
        date=date,
        time=time,
        reason=(reason or "").strip(),
        status=(status or "").strip() or "pending",
    )
    return save_appointment(appointment)
