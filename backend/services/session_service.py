# backend/services/session_service.py
"""
In-memory conversation state, keyed by session id.

Each key has its own reader/writer lock: reads of one session run in parallel,
a write excludes every other access to that session, and different sessions
never wait on each other. `locked()` holds the write lock for a whole chat
turn; get/set calls made by the same thread inside it are re-entrant.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict

from services.models import ConversationState

logger = logging.getLogger(__name__)


class ReadWriteLock:
    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = None
        self._depth = 0

    def acquire_read(self):
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._depth += 1
                return
            while self._writer is not None:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._depth -= 1
                return
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._depth += 1
                return
            while self._writer is not None or self._readers > 0:
                self._cond.wait()
            self._writer = me
            self._depth = 1

    def release_write(self):
        with self._cond:
            self._depth -= 1
            if self._depth == 0:
                self._writer = None
                self._cond.notify_all()

    @contextmanager
    def read_locked(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class SessionStore:
    def __init__(self):
        self._states: Dict[str, ConversationState] = {}
        self._locks: Dict[str, ReadWriteLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, session_id: str) -> ReadWriteLock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = ReadWriteLock()
            return lock

    def get(self, session_id: str) -> ConversationState:
        """Return a copy of the session's state, or a fresh state if unknown."""
        if not session_id:
            return ConversationState()
        with self._guard:
            lock = self._locks.get(session_id)
        # a key only gets a lock once it is written or locked
        if lock is None:
            return ConversationState()
        with lock.read_locked():
            with self._guard:
                state = self._states.get(session_id)
            if state is None:
                return ConversationState()
            return copy.deepcopy(state)

    def set(self, session_id: str, state: ConversationState) -> None:
        if not session_id:
            logger.debug("[SESSION] ignoring set() without a session id")
            return
        stored = copy.deepcopy(state)
        stored.updated_at = datetime.now(timezone.utc)
        with self._lock_for(session_id).write_locked():
            with self._guard:
                self._states[session_id] = stored

    def reset(self, session_id: str) -> None:
        self.set(session_id, ConversationState())

    @contextmanager
    def locked(self, session_id: str):
        """Hold the session's write lock for a read-modify-write sequence."""
        if not session_id:
            yield
            return
        with self._lock_for(session_id).write_locked():
            yield

    def __len__(self):
        with self._guard:
            return len(self._states)


_default_store = SessionStore()


def get_store() -> SessionStore:
    return _default_store
