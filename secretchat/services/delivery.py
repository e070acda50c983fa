# secretchat/services/delivery.py

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Protocol

from fastapi import WebSocket

from secretchat.core.errors import DeliveryFailure


class DeliveryHandle(Protocol):
    """
    Anything that can push a JSON-ready event to one participant.

    `send` raises on a broken channel; ConnectionManager treats any
    exception as a dead handle.
    """

    async def send(self, event: Dict[str, Any]) -> None: ...

    def close(self) -> None: ...


class WebSocketHandle:
    """Delivery over an accepted WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    async def send(self, event: Dict[str, Any]) -> None:
        await self.websocket.send_json(event)

    def close(self) -> None:
        # The socket is owned by its endpoint coroutine, which closes it.
        pass


class QueueHandle:
    """
    Delivery into a bounded queue drained by a server-push (SSE) stream.

    A full queue means the client stopped reading; the handle is then
    considered dead rather than buffering without limit.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def send(self, event: Dict[str, Any]) -> None:
        if self.closed:
            raise DeliveryFailure("Stream closed")
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.closed = True
            raise DeliveryFailure("Stream backlog full")

    async def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next event, or None if nothing arrived within `timeout` or the handle was closed."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake up a reader blocked in get()
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass
