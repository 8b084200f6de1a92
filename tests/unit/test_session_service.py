"""
Unit tests for the keyed conversation store.
"""

import threading

from services.models import Appointment, ConversationState
from services.session_service import ReadWriteLock


def test_unknown_and_empty_ids_return_empty_state(store):
    for sid in ("nobody", ""):
        state = store.get(sid)
        assert isinstance(state, ConversationState)
        assert state.draft.is_empty()
        assert state.stage == "collecting"
        assert state.updated_at is None


def test_reads_of_unknown_ids_do_not_register_locks(store):
    for i in range(100):
        store.get(f"unknown-{i}")
    assert store._locks == {}
    assert len(store) == 0

    store.set("real", ConversationState())
    assert list(store._locks) == ["real"]


def test_set_with_empty_id_is_noop(store):
    store.set("", ConversationState(draft=Appointment(doctor="Dr. Kim")))
    assert len(store) == 0
    assert store.get("").draft.doctor == ""


def test_set_stamps_updated_at_and_replaces(store):
    store.set("s1", ConversationState(draft=Appointment(doctor="Dr. Kim")))
    first = store.get("s1")
    assert first.updated_at is not None
    assert first.draft.doctor == "Dr. Kim"

    store.set("s1", ConversationState(draft=Appointment(doctor="Dr. Lee")))
    assert store.get("s1").draft.doctor == "Dr. Lee"


def test_callers_never_hold_the_stored_object(store):
    state = ConversationState(draft=Appointment(doctor="Dr. Kim"))
    store.set("s1", state)
    state.draft.doctor = "changed after set"

    fetched = store.get("s1")
    fetched.draft.doctor = "changed after get"
    assert store.get("s1").draft.doctor == "Dr. Kim"


def test_sessions_are_independent(store):
    store.set("a", ConversationState(draft=Appointment(patient_name="Ann")))
    store.set("b", ConversationState(draft=Appointment(patient_name="Bob")))
    store.reset("a")
    assert store.get("a").draft.is_empty()
    assert store.get("b").draft.patient_name == "Bob"


def test_overlapping_turns_on_one_session_do_not_lose_updates(store):
    def bump():
        for _ in range(50):
            with store.locked("counter"):
                state = store.get("counter")
                state.last_user_message = str(int(state.last_user_message or 0) + 1)
                store.set("counter", state)

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    assert store.get("counter").last_user_message == "200"


def test_locked_session_does_not_block_other_sessions(store):
    holding = threading.Event()
    release = threading.Event()

    def hold_a():
        with store.locked("a"):
            holding.set()
            release.wait(timeout=5)

    t = threading.Thread(target=hold_a)
    t.start()
    try:
        assert holding.wait(timeout=5)
        done = threading.Event()

        def touch_b():
            store.set("b", ConversationState(last_user_message="hi"))
            store.get("b")
            done.set()

        threading.Thread(target=touch_b).start()
        assert done.wait(timeout=2)
    finally:
        release.set()
        t.join(timeout=5)


def test_rwlock_readers_share_writers_exclude():
    lock = ReadWriteLock()
    lock.acquire_read()

    second_reader = threading.Event()
    writer_in = threading.Event()

    def reader():
        lock.acquire_read()
        second_reader.set()
        lock.release_read()

    def writer():
        lock.acquire_write()
        writer_in.set()
        lock.release_write()

    threading.Thread(target=reader).start()
    assert second_reader.wait(timeout=2)

    w = threading.Thread(target=writer)
    w.start()
    assert not writer_in.wait(timeout=0.2)
    lock.release_read()
    assert writer_in.wait(timeout=2)
    w.join(timeout=2)
