"""
streamchat.services.gateway
~~~~~~~~~~~~~~~~~~~~~~~~~~~

聊天网关 —— WebSocket 传输层与聊天核心之间的边界。

每个新连接:
  1. 创建 ``ChatConnection``（发送队列 + 写协程）和全新的 ``ChatSession``
  2. 逐帧解码并按指令类型分派给会话
  3. 连接断开（无论原因）时调用且仅调用一次 ``on_disconnect()``

所有协议错误都以 ``{"type": "error", "message": ...}`` 只回给出错的连接，
不会关闭连接，也不会广播。
"""
from __future__ import annotations

from typing import assert_never

from fastapi import WebSocket

from streamchat.core.errors import ChatError
from streamchat.core.logging import get_logger, request_id_ctx_var
from streamchat.db.base import ChatStore
from streamchat.schemas.frames import (
    ErrorFrame,
    JoinFrame,
    LeaveFrame,
    MessageFrame,
    decode_frame,
)
from streamchat.services.connection import ChatConnection
from streamchat.services.message_pipeline import MessagePipeline
from streamchat.services.room_registry import RoomRegistry
from streamchat.services.session import ChatSession

logger = get_logger(__name__)

_INTERNAL_ERROR = "Internal server error"


class ChatGateway:
    """聊天 WebSocket 网关。

    Attributes:
        registry: 全局房间注册表。
        pipeline: 消息管道。
        store: 持久化服务（加入房间时读取历史）。
        history_limit: 加入房间时推送的历史条数。
        send_queue_size: 单连接发送队列上限。
    """

    def __init__(
        self,
        registry: RoomRegistry,
        pipeline: MessagePipeline,
        store: ChatStore,
        history_limit: int = 50,
        send_queue_size: int = 256,
    ) -> None:
        self.registry = registry
        self.pipeline = pipeline
        self.store = store
        self.history_limit = history_limit
        self.send_queue_size = send_queue_size

    def open_session(self, connection: ChatConnection) -> ChatSession:
        """为新连接创建未加入任何房间的会话。"""
        return ChatSession(
            connection=connection,
            registry=self.registry,
            pipeline=self.pipeline,
            store=self.store,
            history_limit=self.history_limit,
        )

    async def serve(self, websocket: WebSocket) -> None:
        """接管一个 WebSocket 连接直到它断开。"""
        await websocket.accept()
        connection = ChatConnection(websocket, max_queue=self.send_queue_size)
        token = request_id_ctx_var.set(connection.connection_id)
        connection.start()
        session = self.open_session(connection)
        logger.info("聊天连接已建立")

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await self.handle_frame(session, raw)
        except Exception as e:
            logger.error("WebSocket 接收异常: %s", e, exc_info=True)
        finally:
            session.on_disconnect()
            await connection.close()
            logger.info("聊天连接已断开")
            request_id_ctx_var.reset(token)

    async def handle_frame(self, session: ChatSession, raw: str | bytes) -> None:
        """解码一帧并分派给会话；任何错误都只回给本连接。"""
        try:
            frame = decode_frame(raw)
            match frame:
                case JoinFrame(stream_id=stream_id):
                    await session.on_join(stream_id)
                case MessageFrame(content=content, user_id=user_id):
                    await session.on_message(content, user_id)
                case LeaveFrame():
                    session.on_leave()
                case _:
                    assert_never(frame)
        except ChatError as e:
            logger.debug("协议错误: %s", e.message)
            session.connection.send_frame(ErrorFrame(message=e.message))
        except Exception as e:
            logger.error("帧处理异常: %s", e, exc_info=True)
            session.connection.send_frame(ErrorFrame(message=_INTERNAL_ERROR))
