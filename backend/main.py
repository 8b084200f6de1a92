import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routes import appointments, chat

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Appointment Chat Booking Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router, prefix="/api")
app.include_router(appointments.router, prefix="/api/appointments")

@app.get("/")
def root():
    return {"status": "ok", "message": "Appointment booking backend is running"}
