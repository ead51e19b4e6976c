"""
WebSocket connection manager.

Tracks the connected checkout clients and pushes payment status updates to
all of them. Delivery is best effort: clients also poll, so a dropped push is
recovered by the next poll.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from shared.config.logging import get_logger
from ws_gateway.constants import (
    MSG_PING_JSON,
    MSG_PING_PLAIN,
    MSG_PONG_JSON,
    MSG_PONG_PLAIN,
    MSG_TYPE_PAYMENT_UPDATE,
    WSCloseCode,
)

logger = get_logger(__name__)


def _is_ws_connected(ws: WebSocket) -> bool:
    """
    Check if WebSocket is in connected state before sending.
    Returns True if the connection is ready to send/receive messages.
    """
    return ws.client_state == WebSocketState.CONNECTED and ws.application_state == WebSocketState.CONNECTED


class ConnectionManager:
    """
    Owns the set of connected WebSockets.

    The set is only mutated by connect/disconnect under an asyncio.Lock.
    Broadcasts iterate over a snapshot so they never race with mutations.
    """

    def __init__(self, max_connections: int = 1000, max_message_size: int = 64 * 1024):
        self.max_connections = max_connections
        self.max_message_size = max_message_size
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._shutdown = False
        self._messages_sent = 0
        self._send_failures = 0

    async def connect(self, websocket: WebSocket, timeout: float = 5.0) -> None:
        """
        Accept a WebSocket connection and register it.

        Raises:
            ConnectionError: during shutdown, on accept timeout, or when the
                connection limit is reached (socket closed with 1013).
        """
        if self._shutdown:
            raise ConnectionError("Server is shutting down")

        try:
            await asyncio.wait_for(websocket.accept(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ConnectionError("WebSocket accept timed out")

        async with self._lock:
            if len(self._connections) >= self.max_connections:
                over_limit = True
            else:
                over_limit = False
                self._connections.add(websocket)

        if over_limit:
            await websocket.close(code=WSCloseCode.SERVER_OVERLOADED, reason="Too many connections")
            raise ConnectionError(f"Connection limit reached ({self.max_connections})")

        logger.info("WebSocket client connected", total_connections=self.total_connections)

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a connection. Safe to call more than once."""
        async with self._lock:
            removed = websocket in self._connections
            self._connections.discard(websocket)
        if removed:
            logger.info("WebSocket client disconnected", total_connections=self.total_connections)

    async def broadcast(self, event: dict[str, Any]) -> int:
        """
        Push {"type": "payment_update", "payload": event} to every client.

        The message is serialised once. Channels that are no longer connected
        or that raise on send are removed.

        Returns:
            Number of connections that received the message.
        """
        message = json.dumps({"type": MSG_TYPE_PAYMENT_UPDATE, "payload": event}, default=str)

        async with self._lock:
            connections = list(self._connections)

        sent = 0
        dead: list[WebSocket] = []
        for ws in connections:
            if not _is_ws_connected(ws):
                dead.append(ws)
                continue
            try:
                await ws.send_text(message)
                sent += 1
            except Exception as e:
                logger.warning("Failed to push payment update", error=str(e))
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._connections.discard(ws)
            self._send_failures += len(dead)

        self._messages_sent += sent
        logger.debug(
            "Payment update broadcast",
            payment_id=event.get("id"),
            status=event.get("status"),
            sent=sent,
            dropped=len(dead),
        )
        return sent

    async def handle_message(self, websocket: WebSocket, data: str) -> bool:
        """
        Process one incoming client message.

        Answers heartbeats and enforces the message size limit. Other messages
        are ignored (clients never send commands on this channel).

        Returns:
            False if the connection was closed and the receive loop must stop.
        """
        if len(data) > self.max_message_size:
            logger.warning(
                "Message size exceeded limit",
                size=len(data),
                max_size=self.max_message_size,
            )
            await websocket.close(code=WSCloseCode.MESSAGE_TOO_BIG, reason="Message too large")
            return False

        reply = None
        if data == MSG_PING_PLAIN:
            reply = MSG_PONG_PLAIN
        elif data == MSG_PING_JSON:
            reply = MSG_PONG_JSON
        else:
            try:
                parsed = json.loads(data)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict) and parsed.get("type") == "ping":
                reply = MSG_PONG_JSON

        if reply is not None:
            try:
                await websocket.send_text(reply)
            except (ConnectionError, RuntimeError, OSError):
                # Connection may have closed; the receive loop will notice
                pass
        return True

    @property
    def total_connections(self) -> int:
        return len(self._connections)

    def get_stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        return {
            "total_connections": self.total_connections,
            "max_connections": self.max_connections,
            "messages_sent": self._messages_sent,
            "send_failures": self._send_failures,
        }

    async def shutdown(self) -> int:
        """
        Graceful shutdown: reject new connections and close existing ones with 1001.

        Returns:
            Number of connections closed.
        """
        self._shutdown = True
        logger.info("WebSocket manager shutting down...")

        async with self._lock:
            connections = list(self._connections)
            self._connections.clear()

        closed = 0
        for ws in connections:
            try:
                await ws.close(code=WSCloseCode.GOING_AWAY, reason="Server shutdown")
                closed += 1
            except Exception as e:
                logger.warning("Failed to close connection during shutdown", error=str(e))

        logger.info("WebSocket shutdown complete", closed=closed)
        return closed

    def is_shutting_down(self) -> bool:
        return self._shutdown
