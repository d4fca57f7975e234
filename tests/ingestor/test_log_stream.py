"""Tests for the logsSubscribe client."""

import json
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
import websockets

from openbook_indexer.ingestor.log_stream import (
    ConnectionState,
    LogStreamConnectionError,
    LogStreamError,
    LogSubscription,
)


def _notification(signature: str = "sig-1", slot: int = 9, err: Any = None) -> str:
    return json.dumps(
        {
            "jsonrpc": "2.0",
            "method": "logsNotification",
            "params": {
                "subscription": 4,
                "result": {
                    "context": {"slot": slot},
                    "value": {
                        "signature": signature,
                        "err": err,
                        "logs": ["Program log: Instruction: PlaceOrder"],
                    },
                },
            },
        }
    )


class _FakeWebSocket:
    def __init__(self, messages: list[str]) -> None:
        self._messages = list(messages)
        self.sent: list[str] = []
        self.closed = False

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def recv(self) -> str:
        if not self._messages:
            raise websockets.ConnectionClosed(None, None)
        return self._messages.pop(0)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def subscription(program_id: str) -> LogSubscription:
    return LogSubscription(ws_url="ws://localhost:8900", program_id=program_id)


class TestSubscribeRequest:
    def test_mentions_program(self, subscription: LogSubscription, program_id: str) -> None:
        request = subscription._subscribe_request()

        assert request["method"] == "logsSubscribe"
        assert request["params"] == [{"mentions": [program_id]}, {"commitment": "confirmed"}]


class TestParseSubscribeReply:
    def test_ok(self) -> None:
        assert LogSubscription._parse_subscribe_reply('{"jsonrpc":"2.0","result":17,"id":1}') == 17

    def test_error(self) -> None:
        with pytest.raises(LogStreamError, match="refused"):
            LogSubscription._parse_subscribe_reply('{"error":{"code":-32601}}')

    def test_non_integer_result(self) -> None:
        with pytest.raises(LogStreamError):
            LogSubscription._parse_subscribe_reply('{"result":"abc"}')


class TestHandleMessage:
    def test_invalid_json(self, subscription: LogSubscription) -> None:
        assert subscription._handle_message("not json") is None
        assert subscription.stats.malformed_messages == 1

    def test_other_method_ignored(self, subscription: LogSubscription) -> None:
        assert subscription._handle_message('{"method":"slotNotification"}') is None
        assert subscription.stats.malformed_messages == 0

    def test_malformed_notification(self, subscription: LogSubscription) -> None:
        assert subscription._handle_message('{"method":"logsNotification","params":{}}') is None
        assert subscription.stats.malformed_messages == 1

    def test_valid_notification(self, subscription: LogSubscription) -> None:
        notification = subscription._handle_message(_notification(err={"Custom": 1}))

        assert notification is not None
        assert notification.signature == "sig-1"
        assert notification.slot == 9
        assert notification.err == {"Custom": 1}
        assert subscription.stats.notifications_received == 1


class TestConnection:
    async def test_connect_and_iterate(self, subscription: LogSubscription) -> None:
        ws = _FakeWebSocket(
            ['{"jsonrpc":"2.0","result":4,"id":1}', _notification("a"), "junk", _notification("b")]
        )
        with patch("websockets.connect", AsyncMock(return_value=ws)):
            await subscription.connect()

        assert subscription.state == ConnectionState.SUBSCRIBED
        assert subscription.subscription_id == 4
        assert json.loads(ws.sent[0])["method"] == "logsSubscribe"

        received = [n.signature async for n in subscription.notifications()]

        assert received == ["a", "b"]
        assert subscription.state == ConnectionState.CLOSED

    async def test_connect_failure(self, subscription: LogSubscription) -> None:
        with patch("websockets.connect", AsyncMock(side_effect=OSError("refused"))):
            with pytest.raises(LogStreamConnectionError):
                await subscription.connect()

        assert subscription.state == ConnectionState.DISCONNECTED

    async def test_subscription_refused(self, subscription: LogSubscription) -> None:
        ws = _FakeWebSocket(['{"jsonrpc":"2.0","error":{"code":-32602},"id":1}'])
        with patch("websockets.connect", AsyncMock(return_value=ws)):
            with pytest.raises(LogStreamConnectionError):
                await subscription.connect()

        assert ws.closed

    async def test_notifications_require_connection(self, subscription: LogSubscription) -> None:
        with pytest.raises(LogStreamError, match="not connected"):
            async for _ in subscription.notifications():
                pass
