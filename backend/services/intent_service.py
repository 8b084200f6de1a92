# backend/services/intent_service.py
"""
Rule-based field recognizers used when the language model is unavailable or
returns an incomplete booking.

Each recognizer looks at the message independently and returns an optional
candidate. parse_message() runs them in a fixed order and packs the accepted
candidates into a PartialFields result.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional, Tuple

from services.models import Appointment, ConversationState, NoResult, PartialFields, ExtractionResult
from services.time_utils import (
    MONTH_PATTERN, convert_12h, is_valid_date, is_valid_time, month_number, normalize_date,
    normalize_time,
)

logger = logging.getLogger(__name__)

# ---------------- constants & regex ----------------
AMPM_TIME_RE = re.compile(r'\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b', re.I)
CLOCK_TIME_RE = re.compile(r'\b(\d{1,2}):(\d{2})\b')
# "at 4" is an hour, "at 4 nov" is a date
AT_HOUR_RE = re.compile(r'\bat\s+(\d{1,2})\b(?!\s+(?:of\s+)?(?:' + MONTH_PATTERN + r')\b)', re.I)

DOCTOR_RE = re.compile(r'\b(?:dr\.?|doctor)\s+([a-zA-Z]+)\b', re.I)
SEE_DOCTOR_RE = re.compile(r'\b(?:want to see|would like to see|like to see)\s+([A-Z][a-zA-Z]+)\b')

NAME_COMMA_RE = re.compile(r'^\s*([A-Z][a-zA-Z]+(?:\s+[A-Z][a-zA-Z]+)?)\s*,')
MY_NAME_RE = re.compile(r'\bmy name is\s+([a-zA-Z]+(?:\s+[a-zA-Z]+)?)', re.I)
INTRO_NAME_RE = re.compile(r"\b(?i:i'm|i am|this is)\s+([A-Z][a-zA-Z]+(?:\s+[A-Z][a-zA-Z]+)?)")
NAME_TOKEN_RE = re.compile(r"^[A-Za-z][A-Za-z'\-]*$")

REASON_PHRASE_RE = re.compile(
    r'\b(?:for|because of|reason is|need)\s+(?:an?\s+|the\s+|my\s+)?([a-zA-Z\-]+(?:\s+[a-zA-Z\-]+)?)', re.I)

REASON_KEYWORDS = [
    "follow-up", "followup", "checkup", "check-up", "consultation", "dentist", "dental",
    "examination", "exam", "headache", "pain", "injury", "surgery", "treatment", "therapy",
    "routine", "annual", "physical", "screening", "vaccination", "fever",
]
REASON_KEYWORD_RE = re.compile(r'\b(' + "|".join(re.escape(k) for k in REASON_KEYWORDS) + r')\b', re.I)

# words that follow "dr"/"doctor" or start a message without being a name
NOT_A_NAME = {
    "doctor", "dr", "want", "see", "book", "booking", "appointment", "schedule", "please",
    "hi", "hello", "hey", "yes", "no", "ok", "okay", "thanks", "thank", "the", "a", "an",
    "at", "on", "for", "with", "tomorrow", "today", "tonight", "and", "me", "my", "i",
    "can", "could", "would", "need", "is", "in", "to", "sure", "yeah", "nope", "visit",
    "great", "perfect", "alright", "well", "actually", "also", "so", "oh", "um", "cool", "fine",
}
# "for ..." phrases that describe the booking itself rather than its purpose
NOT_A_REASON = {
    "appointment", "booking", "tomorrow", "today", "me", "him", "her", "us", "them",
    "doctor", "dr", "slot", "time", "date", "morning", "afternoon", "evening", "next",
    "this", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
}


def _is_filler(word: str) -> bool:
    w = word.lower().strip(",.!?")
    return w in NOT_A_NAME or w in NOT_A_REASON or month_number(w) is not None


@dataclass
class ParseContext:
    """What the recognizers may know about the conversation so far."""
    known_doctor: str = ""
    known_patient: str = ""
    pending_field: Optional[str] = None
    today: Optional[date] = None

    @classmethod
    def from_state(cls, state: ConversationState, today: Optional[date] = None) -> "ParseContext":
        return cls(
            known_doctor=state.draft.doctor,
            known_patient=state.draft.patient_name,
            pending_field=state.pending_field,
            today=today,
        )


# ---------------- recognizers ----------------
def extract_time(text: str, ctx: ParseContext) -> Optional[str]:
    m = AMPM_TIME_RE.search(text)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2) or 0)
        if 1 <= hour <= 12:
            hhmm = f"{convert_12h(hour, m.group(3)):02d}:{minute:02d}"
            return hhmm if is_valid_time(hhmm) else None
        return None
    m = CLOCK_TIME_RE.search(text)
    if m:
        hhmm = normalize_time(f"{int(m.group(1)):02d}:{m.group(2)}")
        return hhmm if is_valid_time(hhmm) else None
    m = AT_HOUR_RE.search(text)
    if m:
        hhmm = f"{int(m.group(1)):02d}:00"
        return hhmm if is_valid_time(hhmm) else None
    return None


def extract_date(text: str, ctx: ParseContext) -> Optional[str]:
    d = normalize_date(text, ctx.today)
    return d if is_valid_date(d) else None


def extract_doctor(text: str, ctx: ParseContext) -> Optional[str]:
    for m in DOCTOR_RE.finditer(text):
        word = m.group(1)
        if _is_filler(word):
            continue
        return "Dr. " + word.lower().capitalize()
    m = SEE_DOCTOR_RE.search(text)
    if m and not _is_filler(m.group(1)):
        return "Dr. " + m.group(1)
    return None


def _clean_name(raw: str) -> Optional[str]:
    words = [w for w in raw.split() if w]
    # drop trailing filler picked up by the two-word pattern ("John and")
    while words and _is_filler(words[-1]):
        words.pop()
    if not words or _is_filler(words[0]):
        return None
    return " ".join(w[:1].upper() + w[1:] for w in words)


def extract_patient_name(text: str, ctx: ParseContext) -> Optional[str]:
    m = NAME_COMMA_RE.match(text)
    if m:
        name = _clean_name(m.group(1))
        if name and not REASON_KEYWORD_RE.search(name):
            return name
    for rx in (MY_NAME_RE, INTRO_NAME_RE):
        m = rx.search(text)
        if m:
            name = _clean_name(m.group(1))
            if name:
                return name

    words = text.split()
    if ctx.known_doctor and not ctx.known_patient and 2 <= len(words) <= 3:
        first, second = words[0].strip(",."), words[1].strip(",.")
        if (len(first) > 1 and len(second) > 1 and first[0].isupper() and second[0].isupper()
                and not _is_filler(first) and not _is_filler(second)
                and NAME_TOKEN_RE.match(first) and NAME_TOKEN_RE.match(second)):
            return f"{first} {second}"

    # answer to "May I have the patient's name?"
    if ctx.pending_field == "patient_name" and 1 <= len(words) <= 3:
        tokens = [w.strip(",.!") for w in words]
        if (all(NAME_TOKEN_RE.match(t) for t in tokens)
                and not _is_filler(tokens[0])
                and not REASON_KEYWORD_RE.search(text)):
            return _clean_name(" ".join(tokens))
    return None


def extract_reason(text: str, ctx: ParseContext) -> Optional[str]:
    for m in REASON_PHRASE_RE.finditer(text):
        phrase = m.group(1).strip().lower()
        first = phrase.split()[0]
        if _is_filler(first) or normalize_date(phrase, ctx.today):
            continue
        if len(phrase.split()) > 1 and _is_filler(phrase.split()[1]):
            phrase = first
        return phrase
    m = REASON_KEYWORD_RE.search(text)
    if m:
        words = text.split()
        if len(words) <= 3:
            return text.strip().strip(".!").lower()
        return m.group(1).lower()
    return None


Recognizer = Tuple[str, Callable[[str, ParseContext], Optional[str]]]

RECOGNIZERS: List[Recognizer] = [
    ("time", extract_time),
    ("date", extract_date),
    ("doctor", extract_doctor),
    ("patient_name", extract_patient_name),
    ("reason", extract_reason),
]


def parse_message(text: str, ctx: Optional[ParseContext] = None) -> ExtractionResult:
    """
    Run every recognizer over the message.
    Returns PartialFields with whatever was found (confident when both date and
    time are present and valid), or NoResult when nothing was recognized.
    """
    ctx = ctx or ParseContext()
    text = (text or "").strip()
    if not text:
        return NoResult()

    found = {}
    for name, recognizer in RECOGNIZERS:
        value = recognizer(text, ctx)
        if value is not None and value.strip():
            found[name] = value.strip()

    if not found:
        return NoResult()
    candidates = Appointment(**found)
    confident = is_valid_date(candidates.date) and is_valid_time(candidates.time)
    logger.debug("[PARSER] local candidates=%s confident=%s", found, confident)
    return PartialFields(candidates=candidates, confident=confident)
