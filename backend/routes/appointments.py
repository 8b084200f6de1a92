# backend/routes/appointments.py
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from services.booking_service import BookingError, create_appointment, list_appointments
from services.models import Appointment

router = APIRouter()


class AppointmentCreate(BaseModel):
    patient_name: str
    doctor: str
    date: str
    time: str
    reason: Optional[str] = ""
    status: Optional[str] = ""


@router.get("", response_model=List[Appointment])
def get_appointments():
    return list_appointments()


@router.post("", response_model=Appointment, status_code=201)
def post_appointment(payload: AppointmentCreate):
    try:
        return create_appointment(
            patient_name=payload.patient_name,
            doctor=payload.doctor,
            date=payload.date,
            time=payload.time,
            reason=payload.reason or "",
            status=payload.status or "",
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except BookingError as e:
        raise HTTPException(status_code=500, detail=str(e))
