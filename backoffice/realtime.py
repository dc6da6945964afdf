"""
Realtime invalidation bus.

Mutations publish a coarse "<resource>:update" topic; connected clients
refetch their current view when they receive it. Delivery is best effort and
nothing is queued or persisted.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Dict, Iterable, Optional, Protocol

from fastapi import WebSocket

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT = 2.0


class Listener(Protocol):
    id: str

    async def send(self, topic: str) -> None:
        ...


class Transport(Protocol):
    def listeners(self) -> Iterable[Listener]:
        """Listeners connected right now."""
        ...


class InvalidationBus:
    """
    Fans topic notifications out to every connected listener except the one
    that triggered the change. Holds no listener registry of its own; the
    bound transport is asked at publish time.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        *,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ):
        self._transport = transport
        self.send_timeout = send_timeout

    @property
    def bound(self) -> bool:
        return self._transport is not None

    def bind(self, transport: Transport) -> None:
        if self._transport is not None:
            raise RuntimeError("InvalidationBus transport is already bound")
        self._transport = transport
        logger.info("Realtime transport bound: %s", type(transport).__name__)

    async def publish(self, topic: str, *, exclude: Optional[str] = None) -> int:
        """Notify listeners of ``topic``; returns how many were notified."""
        if self._transport is None:
            logger.warning("Cannot emit %s - realtime transport not bound", topic)
            return 0
        targets = [
            listener
            for listener in self._transport.listeners()
            if exclude is None or listener.id != exclude
        ]
        delivered = await asyncio.gather(*(self._deliver(listener, topic) for listener in targets))
        notified = sum(delivered)
        logger.info("Emitted %s to %d listener(s)", topic, notified)
        return notified

    async def _deliver(self, listener: Listener, topic: str) -> bool:
        try:
            await asyncio.wait_for(listener.send(topic), self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Dropped %s for listener %s: send exceeded %.1fs",
                topic,
                listener.id,
                self.send_timeout,
            )
            return False
        except Exception as exc:
            logger.warning("Dropped %s for listener %s: %s", topic, listener.id, exc)
            return False
        return True


class WebSocketListener:
    def __init__(self, websocket: WebSocket, listener_id: Optional[str] = None):
        self.websocket = websocket
        self.id = listener_id or uuid.uuid4().hex[:12]

    async def send(self, topic: str) -> None:
        await self.websocket.send_json({"topic": topic})


class WebSocketTransport:
    """Tracks the websocket connections currently open on this process."""

    def __init__(self):
        self._connections: Dict[str, WebSocketListener] = {}

    def listeners(self) -> Iterable[Listener]:
        return list(self._connections.values())

    async def connect(self, websocket: WebSocket) -> WebSocketListener:
        await websocket.accept()
        listener = WebSocketListener(websocket)
        self._connections[listener.id] = listener
        await websocket.send_json({"type": "connected", "client_id": listener.id})
        logger.info("Realtime client connected: %s", listener.id)
        return listener

    def disconnect(self, listener: WebSocketListener) -> None:
        self._connections.pop(listener.id, None)
        logger.info("Realtime client disconnected: %s", listener.id)
