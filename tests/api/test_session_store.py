from datetime import datetime, timedelta, timezone

import pytest

from core import metrics
from chatbot.api.session_store import SessionStore


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def test_create_or_update_is_idempotent():
    clock = FakeClock()
    store = SessionStore(clock=clock)
    first = store.create_or_update_session("s1", {"client": "web"})
    clock.advance(5)
    second = store.create_or_update_session("s1", {"client": "other"})
    assert first is second
    assert second.context == {"client": "web"}
    assert second.last_activity == clock.now
    assert second.created_at < second.last_activity
    assert store.stats() == {"sessionCount": 1, "messageCount": 0}


def test_last_activity_never_moves_backwards():
    clock = FakeClock()
    store = SessionStore(clock=clock)
    session = store.create_or_update_session("s1")
    clock.advance(10)
    store.append_message("s1", "user", "hi")
    seen = session.last_activity
    clock.advance(-60)
    store.create_or_update_session("s1")
    assert session.last_activity == seen


def test_append_requires_existing_session_and_valid_role():
    store = SessionStore()
    with pytest.raises(KeyError):
        store.append_message("ghost", "user", "hi")
    store.create_or_update_session("s1")
    with pytest.raises(ValueError):
        store.append_message("s1", "robot", "hi")
    assert store.stats()["messageCount"] == 0


def test_messages_keep_order_ids_and_metadata():
    store = SessionStore()
    store.create_or_update_session("s1")
    a = store.append_message("s1", "user", "one")
    b = store.append_message("s1", "assistant", "two", {"error": True})
    c = store.append_message("s1", "user", "three")
    assert a.id < b.id < c.id
    assert len({a.id, b.id, c.id}) == 3
    assert b.metadata["error"] is True
    with pytest.raises(TypeError):
        b.metadata["error"] = False
    assert a.timestamp.tzinfo is not None
    assert store.get_message(b.id) is b
    assert metrics.counter_value("chat_messages_total", {"role": "user"}) == 2


def test_message_is_immutable():
    store = SessionStore()
    store.create_or_update_session("s1")
    msg = store.append_message("s1", "user", "hi")
    with pytest.raises(AttributeError):
        msg.content = "changed"


def test_get_messages_slicing():
    store = SessionStore()
    store.create_or_update_session("s1")
    for i in range(5):
        store.append_message("s1", "user", f"m{i}")
    assert [m.content for m in store.get_messages("s1")] == [
        "m0", "m1", "m2", "m3", "m4"
    ]
    assert [m.content for m in store.get_messages("s1", 2)] == ["m3", "m4"]
    assert len(store.get_messages("s1", 50)) == 5
    assert store.get_messages("s1", 0) == []
    assert store.get_messages("unknown") == []
    assert store.get_messages("unknown", 3) == []


def test_session_messages_view_is_read_only():
    store = SessionStore()
    session = store.create_or_update_session("s1")
    store.append_message("s1", "user", "hi")
    assert isinstance(session.messages, tuple)
    assert len(session) == 1


def test_delete_removes_session_and_messages():
    store = SessionStore()
    store.create_or_update_session("s1")
    store.create_or_update_session("s2")
    msg = store.append_message("s1", "user", "hi")
    store.append_message("s2", "user", "keep")
    assert store.delete_session("s1") is True
    assert store.get_session("s1") is None
    assert store.get_message(msg.id) is None
    assert store.get_messages("s1") == []
    assert store.stats() == {"sessionCount": 1, "messageCount": 1}
    assert store.delete_session("s1") is False


def test_public_shape():
    store = SessionStore()
    store.create_or_update_session("s1")
    msg = store.append_message("s1", "user", "hi", {"x": 1})
    public = msg.to_public()
    assert set(public) == {"id", "role", "content", "timestamp"}
    assert datetime.fromisoformat(public["timestamp"]) == msg.timestamp


def test_sweep_removes_only_idle_sessions():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.create_or_update_session("old")
    store.append_message("old", "user", "hi")
    clock.advance(45)
    store.create_or_update_session("fresh")
    clock.advance(30)
    assert store.sweep_expired() == ["old"]
    assert store.get_session("old") is None
    assert store.get_session("fresh") is not None
    assert store.stats() == {"sessionCount": 1, "messageCount": 0}
    assert metrics.counter_value("sessions_expired_total") == 1


def test_sweep_disabled_with_zero_ttl():
    clock = FakeClock()
    store = SessionStore(ttl_seconds=0, clock=clock)
    store.create_or_update_session("s1")
    clock.advance(10 ** 6)
    assert store.sweep_expired() == []
    assert store.get_session("s1") is not None
