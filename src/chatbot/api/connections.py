"""WebSocket connection registry with per-session rooms."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Connection:
    __slots__ = ("id", "websocket", "session_id", "tasks", "_send_lock")

    def __init__(self, websocket: WebSocket, conn_id: str | None = None):
        self.id = conn_id or uuid.uuid4().hex
        self.websocket = websocket
        self.session_id: str | None = None
        self.tasks: Set[asyncio.Task] = set()
        self._send_lock = asyncio.Lock()

    async def emit(self, event: str, data: Dict[str, Any]) -> bool:
        """Send one frame; False when the socket is already gone."""
        # one frame at a time: handler tasks share the socket
        async with self._send_lock:
            try:
                await self.websocket.send_json({"event": event, "data": data})
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "Dropped '%s' frame for %s: %s", event, self.id, e
                )
                return False
        return True


class ConnectionRegistry:
    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = {}

    def register(self, websocket: WebSocket) -> Connection:
        conn = Connection(websocket)
        self._connections[conn.id] = conn
        return conn

    def unregister(self, conn: Connection) -> None:
        self._connections.pop(conn.id, None)
        for sid in [s for s, members in self._rooms.items() if conn.id in members]:
            self._leave_room(conn.id, sid)
        conn.session_id = None

    def join(self, conn: Connection, session_id: str) -> None:
        self._rooms.setdefault(session_id, set()).add(conn.id)
        conn.session_id = session_id

    def leave(self, conn: Connection, session_id: str | None = None) -> None:
        if session_id:
            self._leave_room(conn.id, session_id)
        if conn.session_id:
            self._leave_room(conn.id, conn.session_id)
            conn.session_id = None

    def _leave_room(self, conn_id: str, session_id: str) -> None:
        members = self._rooms.get(session_id)
        if not members:
            return
        members.discard(conn_id)
        if not members:
            del self._rooms[session_id]

    def room_members(self, session_id: str) -> Set[str]:
        return set(self._rooms.get(session_id, ()))

    async def emit_to_session(
        self, session_id: str, event: str, data: Dict[str, Any]
    ) -> int:
        sent = 0
        for conn_id in self.room_members(session_id):
            if await self.emit_to_client(conn_id, event, data):
                sent += 1
        return sent

    async def emit_to_client(
        self, conn_id: str, event: str, data: Dict[str, Any]
    ) -> bool:
        conn = self._connections.get(conn_id)
        if conn is None:
            return False
        return await conn.emit(event, data)

    def __len__(self) -> int:
        return len(self._connections)

    def stats(self) -> dict:
        return {
            "connectedClients": len(self._connections),
            "rooms": sorted(self._rooms),
        }


__all__ = ["Connection", "ConnectionRegistry"]
