"""WebSocket ``logsSubscribe`` client for program log notifications.

The subscription is opened once; a closed connection ends iteration and is
left to the consumer to surface. There is no automatic reconnect, since a
silent gap between two connections would lose transactions.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from openbook_indexer.ingestor.models import LogNotification

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 30  # seconds
DEFAULT_SUBSCRIBE_TIMEOUT = 10  # seconds


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


@dataclass
class StreamStats:
    notifications_received: int = 0
    malformed_messages: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class LogStreamError(Exception):
    """Base exception for log stream errors."""


class LogStreamConnectionError(LogStreamError):
    """Raised when the WebSocket cannot be opened or the subscription is refused."""


class StreamClosedError(LogStreamError):
    """Raised when the notification stream ends while it was expected to run forever."""


class LogSubscription:
    """Program log subscription over the Solana PubSub WebSocket."""

    def __init__(
        self,
        *,
        ws_url: str,
        program_id: str,
        commitment: str = "confirmed",
        ping_interval: int = DEFAULT_PING_INTERVAL,
        subscribe_timeout: float = DEFAULT_SUBSCRIBE_TIMEOUT,
    ) -> None:
        self._ws_url = ws_url
        self._program_id = program_id
        self._commitment = commitment
        self._ping_interval = ping_interval
        self._subscribe_timeout = subscribe_timeout

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()
        self._ws: ClientConnection | None = None
        self._subscription_id: int | None = None
        self._running = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    @property
    def subscription_id(self) -> int | None:
        return self._subscription_id

    def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            logger.info("Log stream state: %s -> %s", self._state.value, new_state.value)
            self._state = new_state

    def _subscribe_request(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [self._program_id]},
                {"commitment": self._commitment},
            ],
        }

    async def connect(self) -> None:
        """Open the WebSocket and confirm the subscription.

        Raises:
            LogStreamConnectionError: Connection or subscription failed.
        """
        self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await websockets.connect(
                self._ws_url,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
            )
        except Exception as e:
            self._stats.last_error = str(e)
            self._set_state(ConnectionState.DISCONNECTED)
            raise LogStreamConnectionError(f"Failed to connect to {self._ws_url}: {e}") from e

        try:
            await ws.send(json.dumps(self._subscribe_request()))
            reply = await asyncio.wait_for(ws.recv(), timeout=self._subscribe_timeout)
            self._subscription_id = self._parse_subscribe_reply(reply)
        except Exception as e:
            self._stats.last_error = str(e)
            with contextlib.suppress(Exception):
                await ws.close()
            self._set_state(ConnectionState.DISCONNECTED)
            raise LogStreamConnectionError(f"logsSubscribe failed on {self._ws_url}: {e}") from e

        self._ws = ws
        self._running = True
        self._stats.connected_since = time.time()
        self._set_state(ConnectionState.SUBSCRIBED)
        logger.info(
            "Subscribed to logs mentioning %s (subscription %s)",
            self._program_id,
            self._subscription_id,
        )

    @staticmethod
    def _parse_subscribe_reply(reply: str | bytes) -> int:
        data = json.loads(reply)
        if "error" in data:
            raise LogStreamError(f"Subscription refused: {data['error']}")
        result = data.get("result")
        if not isinstance(result, int):
            raise LogStreamError(f"Unexpected subscription reply: {data!r}")
        return result

    def _handle_message(self, message: str | bytes) -> LogNotification | None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            self._stats.malformed_messages += 1
            logger.warning("Invalid JSON message on log stream")
            return None

        if data.get("method") != "logsNotification":
            logger.debug("Ignoring log stream message: %r", data.get("method"))
            return None

        try:
            notification = LogNotification.from_websocket_message(data)
        except (KeyError, TypeError, ValueError) as e:
            self._stats.malformed_messages += 1
            logger.warning("Failed to parse logs notification: %s", e)
            return None

        self._stats.notifications_received += 1
        self._stats.last_message_time = time.time()
        return notification

    async def notifications(self) -> AsyncIterator[LogNotification]:
        """Yield notifications until the connection closes or :meth:`close` is called."""
        if self._ws is None:
            raise LogStreamError("Log stream is not connected")
        ws = self._ws
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=1.0)
                except TimeoutError:
                    continue
                notification = self._handle_message(message)
                if notification is not None:
                    yield notification
        except websockets.ConnectionClosed as e:
            self._stats.last_error = str(e)
            logger.warning("Log stream connection closed: %s", e)
        finally:
            self._set_state(ConnectionState.CLOSED)

    def __aiter__(self) -> AsyncIterator[LogNotification]:
        return self.notifications()

    async def close(self) -> None:
        self._running = False
        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()
            self._ws = None
        self._set_state(ConnectionState.CLOSED)
