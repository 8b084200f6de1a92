"""Pytest configuration for backend tests."""

import os
import sys
import tempfile
from datetime import date
from pathlib import Path

import pytest

# backend/ is the import root (services.*, routes.*, utils.*)
backend_root = Path(__file__).parent.parent / "backend"
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

# never touch the real data/ directory or a real LLM from tests
os.environ.setdefault("BOOKING_DATA_DIR", tempfile.mkdtemp(prefix="booking-test-"))
for _key in ("LLM_API_KEY", "GROQ_API_KEY", "OPENAI_API_KEY"):
    os.environ.pop(_key, None)

FIXED_TODAY = date(2025, 10, 20)


@pytest.fixture
def today():
    return FIXED_TODAY


@pytest.fixture
def store():
    from services.session_service import SessionStore
    return SessionStore()


@pytest.fixture
def appointments_file(tmp_path, monkeypatch):
    from services import booking_service
    path = tmp_path / "appointments.json"
    monkeypatch.setattr(booking_service, "APPOINTMENTS_FILE", path)
    return path


def _llm_unavailable(prompt):
    from services.llm_service import LLMUnavailable
    raise LLMUnavailable("no key in tests")


@pytest.fixture
def offline_extractor():
    """A model extractor whose backing call always fails, as with no API key."""
    from services.llm_service import ModelExtractor
    return ModelExtractor(query=_llm_unavailable, timeout=1.0)
