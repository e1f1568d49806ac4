import asyncio
from typing import Any, Dict, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from ..logging import get_logger


logger = get_logger(__name__)


class ChatHub:
    """Live push channel for each portal session (notifications, sync hints, revocation)."""

    def __init__(self) -> None:
        # session_id -> set of WebSocket connections
        self._connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, session_id: str, ws: WebSocket) -> None:
        async with self._lock:
            conns = self._connections.setdefault(session_id, set())
            conns.add(ws)

    async def disconnect(self, session_id: str, ws: WebSocket) -> None:
        async with self._lock:
            conns = self._connections.get(session_id)
            if conns is not None:
                conns.discard(ws)
                if not conns:
                    self._connections.pop(session_id, None)

    def connection_count(self, session_id: str) -> int:
        return len(self._connections.get(session_id, ()))

    async def send_to_session(self, session_id: str, event: str, payload: Any) -> None:
        data = {"event": event, "data": payload}
        async with self._lock:
            targets = list(self._connections.get(session_id, set()))
        for ws in targets:
            try:
                await ws.send_json(data)
            except (RuntimeError, WebSocketDisconnect) as e:
                # best-effort; drop the dead socket
                logger.info("hub_send_failed", session_id=session_id, error=str(e))
                await self.disconnect(session_id, ws)

    async def drop_session(self, session_id: str) -> None:
        async with self._lock:
            targets = list(self._connections.pop(session_id, set()))
        for ws in targets:
            try:
                await ws.close()
            except RuntimeError:
                pass
