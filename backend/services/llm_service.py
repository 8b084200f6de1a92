# backend/services/llm_service.py
"""
LLM service wrapper using the OpenAI v1.x client.

Works against any OpenAI-compatible chat completions endpoint (OpenAI, Groq,
...). The model is asked to turn a chat message into booking fields; its answer
is parsed tolerantly and every failure degrades to NoResult so the dialogue can
fall back to the local parser.
"""

import json
import logging
import os
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from services.models import Appointment, BookIntent, ConversationState, ExtractionResult, NoResult
from services.time_utils import is_valid_date, is_valid_time, normalize_date, normalize_time, today

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("BOOKING_DATA_DIR") or Path(__file__).resolve().parents[2] / "data")
LLM_CFG_FILE = DATA_DIR / "llm.json"

DEFAULT_MODEL = "llama-3.3-70b-versatile"
DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
LLM_TIMEOUT_SECONDS = 30.0

# abandoned calls keep running here after their deadline; results are dropped
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="llm")


class LLMUnavailable(RuntimeError):
    pass


def load_llm_config() -> Dict[str, Any]:
    cfg: Dict[str, Any] = {}
    if LLM_CFG_FILE.exists():
        try:
            cfg = json.loads(LLM_CFG_FILE.read_text()) or {}
        except (OSError, ValueError) as e:
            logger.warning("[LLM] could not read %s: %s", LLM_CFG_FILE, e)
            cfg = {}
    api_key = os.getenv("LLM_API_KEY") or os.getenv("GROQ_API_KEY") or os.getenv("OPENAI_API_KEY")
    if api_key:
        cfg["api_key"] = api_key
    if os.getenv("LLM_MODEL"):
        cfg["model"] = os.getenv("LLM_MODEL")
    if os.getenv("LLM_BASE_URL"):
        cfg["base_url"] = os.getenv("LLM_BASE_URL")
    cfg.setdefault("model", DEFAULT_MODEL)
    cfg.setdefault("base_url", DEFAULT_BASE_URL)
    cfg.setdefault("timeout_seconds", LLM_TIMEOUT_SECONDS)
    cfg.setdefault("temperature", 0.2)
    return cfg


def _create_client(cfg: Dict[str, Any]):
    from openai import OpenAI
    return OpenAI(api_key=cfg["api_key"], base_url=cfg.get("base_url"),
                  timeout=float(cfg.get("timeout_seconds", LLM_TIMEOUT_SECONDS)), max_retries=0)


def query_llm(prompt: str) -> str:
    """Send one user prompt, return the model's text. Raises on any failure."""
    cfg = load_llm_config()
    if not cfg.get("api_key"):
        raise LLMUnavailable("no LLM api key configured (data/llm.json or LLM_API_KEY)")
    client = _create_client(cfg)
    resp = client.chat.completions.create(
        model=cfg["model"],
        messages=[{"role": "user", "content": prompt}],
        temperature=float(cfg.get("temperature", 0.2)),
        max_tokens=512,
    )
    text_out = ""
    if resp.choices:
        text_out = resp.choices[0].message.content or ""
    if not text_out.strip():
        raise LLMUnavailable("LLM returned empty response")
    return text_out.strip()


def call_with_timeout(fn: Callable[[str], str], prompt: str, timeout: float) -> str:
    """Run fn(prompt) on the worker pool; raise TimeoutError after `timeout` seconds."""
    future = _executor.submit(fn, prompt)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise TimeoutError(f"LLM call exceeded {timeout:.0f}s")


# ---------------- prompts ----------------
EXTRACTION_INSTRUCTIONS = """
You are a friendly assistant that helps patients book doctor appointments.
Your goal is to collect: doctor, date, time, patient name, and reason for the appointment.

RULES:
1. Extract information from the current message and combine it with the context below.
2. Doctor names come from phrases like "Dr. Kim", "doctor Kim", "i want to see Dr. Angela".
3. Patient names come from "Kevin Leitich, i want to see...", "my name is X", "I'm X".
4. Dates like "4 nov", "november 4th", "tomorrow" must be converted to YYYY-MM-DD. Today is {today}.
5. Times must be 24-hour HH:MM: "4pm" -> "16:00", "11am" -> "11:00", "2:30pm" -> "14:30", "12pm" -> "12:00", "12am" -> "00:00".
6. Reasons come from phrases like "for checkup", "because of headache", "I need a checkup".

Answer with ONE JSON object and nothing else, using exactly these keys:
{{"intent": "book" or "chat", "doctor": string, "date": "YYYY-MM-DD", "time": "HH:MM", "patient_name": string, "reason": string, "reply": string}}
Use "book" when the message is about booking an appointment, "chat" otherwise.
Use "" for anything you do not know. "reply" is a short friendly answer to the user.
"""

REPLY_INSTRUCTIONS = """
You are a warm, friendly assistant helping patients book appointments.

{have}{need}

RULES:
1. NEVER ask for anything listed under "You ALREADY HAVE".
2. Ask for exactly one thing from the "still need" list, the first one listed.
3. Keep it to one or two short sentences.

User just said: {message}
"""

_FIELD_LABELS = {
    "doctor": "Doctor",
    "date": "Date",
    "time": "Time",
    "patient_name": "Patient name",
    "reason": "Reason",
}


def known_fields(draft: Appointment) -> Dict[str, str]:
    return {f: getattr(draft, f) for f in _FIELD_LABELS if (getattr(draft, f) or "").strip()}


def build_extraction_prompt(message: str, state: ConversationState, ref: Optional[date] = None) -> str:
    prompt = EXTRACTION_INSTRUCTIONS.format(today=(ref or today()).isoformat())
    known = known_fields(state.draft)
    if known:
        lines = [f"- {_FIELD_LABELS[f]} = {v}" for f, v in known.items()]
        prompt += ("\nYou ALREADY have these details. Keep them and do NOT ask for them again:\n"
                   + "\n".join(lines) + "\n")
    if state.last_user_message:
        prompt += f"\nPrevious user message: {state.last_user_message}\n"
    prompt += f"\nCurrent user message: {message}"
    return prompt


def build_reply_prompt(message: str, state: ConversationState, missing) -> str:
    known = known_fields(state.draft)
    have = ""
    if known:
        have = "You ALREADY HAVE: " + ", ".join(f"{_FIELD_LABELS[f].lower()} ({v})" for f, v in known.items()) + ". "
    need = ""
    if missing:
        need = "You still need: " + ", ".join(_FIELD_LABELS[f].lower() for f in missing) + "."
    return REPLY_INSTRUCTIONS.format(have=have, need=need, message=message)


# ---------------- parsing ----------------
def _extract_json_span(text: str) -> Optional[str]:
    """First balanced {...} span in text, ignoring braces inside JSON strings."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _field(parsed: dict, key: str) -> str:
    value = parsed.get(key)
    if value is None:
        return ""
    return str(value).strip()


def parse_extraction(raw: str, ref: Optional[date] = None) -> ExtractionResult:
    """
    Decode the model's answer. Only a JSON object with intent "book" yields
    BookIntent; anything else (no braces, bad JSON, other intent) is NoResult.
    """
    if not raw:
        return NoResult()
    span = _extract_json_span(raw)
    if span is None:
        logger.debug("[LLM] no JSON object in model output")
        return NoResult()
    try:
        parsed = json.loads(span)
    except ValueError as e:
        logger.info("[LLM] could not decode model JSON: %s", e)
        return NoResult()
    if not isinstance(parsed, dict):
        return NoResult()

    reply = _field(parsed, "reply") or None
    if _field(parsed, "intent").lower() != "book":
        return NoResult(reply=reply)

    # values that do not normalize are dropped so they cannot override a known field
    time_value = normalize_time(_field(parsed, "time"))
    if not is_valid_time(time_value):
        time_value = ""
    date_value = _field(parsed, "date")
    if date_value and not is_valid_date(date_value):
        date_value = normalize_date(date_value, ref)
    if not is_valid_date(date_value):
        date_value = ""
    fields = Appointment(
        doctor=_field(parsed, "doctor"),
        date=date_value,
        time=time_value,
        patient_name=_field(parsed, "patient_name"),
        reason=_field(parsed, "reason"),
    )
    return BookIntent(fields=fields, reply=reply)


class ModelExtractor:
    """
    Adapter around the external text-to-fields call.
    `query` is the transport (prompt -> raw text); it is swapped out in tests.
    """

    def __init__(self, query: Optional[Callable[[str], str]] = None,
                 timeout: Optional[float] = None):
        self.query = query or query_llm
        self.timeout = timeout if timeout is not None else float(
            load_llm_config().get("timeout_seconds", LLM_TIMEOUT_SECONDS))

    def _ask(self, prompt: str) -> Optional[str]:
        try:
            return call_with_timeout(self.query, prompt, self.timeout)
        except TimeoutError as e:
            logger.warning("[LLM] %s; falling back to local parsing", e)
        except LLMUnavailable as e:
            logger.debug("[LLM] unavailable: %s", e)
        except Exception as e:
            logger.warning("[LLM] call failed: %s", e)
        return None

    def extract(self, message: str, state: ConversationState, ref: Optional[date] = None) -> ExtractionResult:
        raw = self._ask(build_extraction_prompt(message, state, ref))
        if raw is None:
            return NoResult(failed=True)
        result = parse_extraction(raw, ref)
        logger.debug("[LLM] extraction result: %s", result)
        return result

    def reply(self, message: str, state: ConversationState, missing) -> Optional[str]:
        raw = self._ask(build_reply_prompt(message, state, missing))
        if raw is None or not raw.strip():
            return None
        return raw.strip()
