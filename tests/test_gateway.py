"""
tests.test_gateway
~~~~~~~~~~~~~~~~~~

ChatGateway 测试：帧分派、错误只回给发送者、断线时清理成员关系。
"""
from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import WebSocket

from streamchat.services.gateway import ChatGateway
from tests.fakes import FakeConnection


@pytest.fixture()
def gateway(store, registry, pipeline) -> ChatGateway:
    return ChatGateway(registry=registry, pipeline=pipeline, store=store, history_limit=50)


class TestHandleFrame:
    """handle_frame 按指令类型分派，错误以 error 帧回给本连接。"""

    @pytest.mark.asyncio
    async def test_join_then_message(self, gateway, registry) -> None:
        conn = FakeConnection()
        session = gateway.open_session(conn)

        await gateway.handle_frame(session, '{"type": "join", "streamId": 5}')
        await gateway.handle_frame(session, '{"type": "message", "content": "hi", "userId": 1}')

        assert [f["type"] for f in conn.frames] == ["history", "chat"]
        assert conn.frames[1]["message"]["message"] == "hi"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("{oops", "Invalid message format"),
            ('{"type": "shout"}', "Unknown message type"),
            ('{"type": "join", "streamId": "five"}', "Invalid stream ID"),
            ('{"type": "message", "content": "hi", "userId": 1}', "Not joined to any stream"),
        ],
    )
    async def test_protocol_errors_go_to_sender_only(self, gateway, registry, raw, expected) -> None:
        bystander = FakeConnection("bystander")
        registry.join(5, bystander)
        conn = FakeConnection()
        session = gateway.open_session(conn)

        await gateway.handle_frame(session, raw)

        assert conn.frames == [{"type": "error", "message": expected}]
        assert bystander.sent == []
        assert session.room_id is None

    @pytest.mark.asyncio
    async def test_missing_content_after_join(self, gateway) -> None:
        conn = FakeConnection()
        session = gateway.open_session(conn)
        await gateway.handle_frame(session, '{"type": "join", "streamId": 5}')

        await gateway.handle_frame(session, '{"type": "message", "userId": 1}')

        assert conn.frames[-1] == {"type": "error", "message": "Missing message content or user ID"}
        assert session.room_id == 5

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error_frame(self, gateway) -> None:
        conn = FakeConnection()
        session = gateway.open_session(conn)
        await gateway.handle_frame(session, '{"type": "join", "streamId": 5}')

        with patch.object(session, "on_message", AsyncMock(side_effect=KeyError("boom"))):
            await gateway.handle_frame(session, '{"type": "message", "content": "x", "userId": 1}')

        assert conn.frames[-1] == {"type": "error", "message": "Internal server error"}
        assert session.room_id == 5

    @pytest.mark.asyncio
    async def test_leave_frame(self, gateway, registry) -> None:
        conn = FakeConnection()
        session = gateway.open_session(conn)
        await gateway.handle_frame(session, '{"type": "join", "streamId": 5}')

        await gateway.handle_frame(session, '{"type": "leave"}')

        assert session.room_id is None
        assert registry.room_ids() == []


class TestServe:
    """serve() 驱动完整的连接生命周期。"""

    @staticmethod
    def _scripted_websocket(messages: list[dict[str, Any]]) -> AsyncMock:
        mock_ws = AsyncMock(spec=WebSocket)
        pending = iter(messages)

        async def receive() -> dict[str, Any]:
            # 让出事件循环，写协程才有机会把帧发出去
            await asyncio.sleep(0.01)
            return next(pending)

        mock_ws.receive.side_effect = receive
        return mock_ws

    @pytest.mark.asyncio
    async def test_disconnect_cleans_up_membership(self, gateway, registry) -> None:
        mock_ws = self._scripted_websocket([
            {"type": "websocket.receive", "text": '{"type": "join", "streamId": 8}'},
            {"type": "websocket.receive", "bytes": b'{"type": "message", "content": "yo", "userId": 2}'},
            {"type": "websocket.disconnect", "code": 1000},
        ])

        await gateway.serve(mock_ws)

        mock_ws.accept.assert_awaited_once()
        sent_types = [json.loads(call.args[0])["type"] for call in mock_ws.send_text.call_args_list]
        assert sent_types == ["history", "chat"]
        assert registry.room_ids() == []

    @pytest.mark.asyncio
    async def test_transport_failure_still_cleans_up(self, gateway, registry) -> None:
        mock_ws = AsyncMock(spec=WebSocket)
        mock_ws.receive.side_effect = [
            {"type": "websocket.receive", "text": '{"type": "join", "streamId": 8}'},
            ConnectionResetError("peer vanished"),
        ]

        await gateway.serve(mock_ws)

        assert registry.room_ids() == []
