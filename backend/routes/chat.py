# backend/routes/chat.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from services.booking_service import BookingError
from services.dialogue_service import DialogueService, get_dialogue_service

logger = logging.getLogger(__name__)

router = APIRouter()


class ChatRequest(BaseModel):
    message: str
    session_id: Optional[str] = None


@router.post("/chat")
def chat(req: ChatRequest, service: DialogueService = Depends(get_dialogue_service)):
    text = (req.message or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="message is required")
    session_id = (req.session_id or "").strip() or "default"
    try:
        result = service.handle_message(text, session_id)
    except BookingError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return result.to_dict()
