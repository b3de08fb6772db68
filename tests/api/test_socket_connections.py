import asyncio
import gc
import logging

import pytest
from fastapi.testclient import TestClient

from core import metrics
from core.config import load_config
from chatbot.api.app import build_container
from chatbot.api.connections import Connection, ConnectionRegistry
from chatbot.api.routes import socket as socket_routes


class FakeSocket:
    def __init__(self, closed=False):
        self.closed = closed
        self.frames = []

    async def send_json(self, frame):
        if self.closed:
            raise RuntimeError(
                'Cannot call "send" once a close message has been sent.'
            )
        self.frames.append(frame)


def _run_with_loop_errors(coro_fn):
    """Run ``coro_fn`` and collect anything reported to the loop handler."""
    reported = []

    async def run():
        asyncio.get_running_loop().set_exception_handler(
            lambda loop, ctx: reported.append(ctx.get("message"))
        )
        result = await coro_fn()
        gc.collect()
        await asyncio.sleep(0)
        return result

    return asyncio.run(run()), reported


def test_emit_on_closed_socket_returns_false():
    conn = Connection(FakeSocket(closed=True), conn_id="c1")
    assert asyncio.run(conn.emit("pong", {})) is False
    ok = Connection(FakeSocket(), conn_id="c2")
    assert asyncio.run(ok.emit("pong", {"timestamp": 1})) is True
    assert ok.websocket.frames == [{"event": "pong", "data": {"timestamp": 1}}]


def test_user_message_on_dropped_client(make_provider):
    provider = make_provider(replies=["too late"])
    container = build_container(load_config(), provider)
    conn = Connection(FakeSocket(closed=True), conn_id="gone")

    async def scenario():
        task = socket_routes._spawn(
            conn,
            socket_routes.on_user_message(
                container, conn, {"sessionId": "abc", "message": "Hello"}
            ),
        )
        await asyncio.wait([task])
        return task

    task, reported = _run_with_loop_errors(scenario)
    assert task.exception() is None
    assert reported == []
    assert conn.tasks == set()
    assert len(provider.calls) == 1
    contents = [m.content for m in container.store.get_messages("abc")]
    assert contents == ["Hello", "too late"]


def test_failed_task_is_logged(caplog):
    conn = Connection(FakeSocket(), conn_id="c9")

    async def broken():
        raise ValueError("handler blew up")

    async def scenario():
        task = socket_routes._spawn(conn, broken())
        await asyncio.wait([task])

    with caplog.at_level(logging.ERROR, logger="chatbot.api.routes.socket"):
        _, reported = _run_with_loop_errors(scenario)
    assert reported == []
    assert conn.tasks == set()
    assert "Socket c9 task failed" in caplog.text
    assert "handler blew up" in caplog.text


def test_room_broadcast():
    registry = ConnectionRegistry()
    a = registry.register(FakeSocket())
    b = registry.register(FakeSocket())
    dead = registry.register(FakeSocket(closed=True))
    for conn in (a, b, dead):
        registry.join(conn, "room1")
    assert registry.room_members("room1") == {a.id, b.id, dead.id}
    assert registry.room_members("empty") == set()

    sent = asyncio.run(
        registry.emit_to_session("room1", "bot-reply", {"message": "hi"})
    )
    assert sent == 2
    assert a.websocket.frames == [
        {"event": "bot-reply", "data": {"message": "hi"}}
    ]
    assert asyncio.run(registry.emit_to_client("unknown", "pong", {})) is False

    registry.unregister(dead)
    registry.leave(b)
    assert registry.room_members("room1") == {a.id}


@pytest.mark.parametrize("transport", ["rest", "socket"])
def test_suspicious_message_counted_once(make_app, transport):
    client = TestClient(make_app())
    payload = {"sessionId": "abc", "message": "<script>hi</script>"}
    if transport == "rest":
        assert client.post("/api/chat", json=payload).status_code == 200
    else:
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "user-message", "data": payload})
            assert ws.receive_json()["event"] == "message-processing"
            assert ws.receive_json()["event"] == "bot-reply"
    assert metrics.counter_value(
        "suspicious_content_total", {"field": "message"}
    ) == 1
