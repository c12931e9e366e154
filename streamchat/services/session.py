"""
streamchat.services.session
~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接会话 —— 每个 WebSocket 连接一个，维护"同一时刻最多在一个房间"的状态机。

状态只有两种：未加入（``room_id is None``）和已加入某房间。
切换房间等价于先离开旧房间、再加入新房间。
"""
from __future__ import annotations

from typing import Any

from streamchat.core.errors import InvalidStreamIdError, NotJoinedError, PersistenceError
from streamchat.core.logging import get_logger
from streamchat.db.base import ChatStore
from streamchat.schemas.chat import ChatMessage
from streamchat.schemas.frames import HistoryFrame, as_int
from streamchat.services.connection import ChatConnection
from streamchat.services.message_pipeline import MessagePipeline
from streamchat.services.room_registry import RoomRegistry

logger = get_logger(__name__)


class ChatSession:
    """单个连接的聊天会话。

    Attributes:
        connection: 本会话对应的连接（由网关持有）。
        room_id: 当前所在房间，未加入时为 None。
    """

    def __init__(
        self,
        connection: ChatConnection,
        registry: RoomRegistry,
        pipeline: MessagePipeline,
        store: ChatStore,
        history_limit: int = 50,
    ) -> None:
        self.connection = connection
        self.registry = registry
        self.pipeline = pipeline
        self.store = store
        self.history_limit = history_limit
        self.room_id: int | None = None
        self._disconnected = False

    @property
    def joined(self) -> bool:
        return self.room_id is not None

    async def on_join(self, raw_stream_id: Any) -> None:
        """加入房间并推送最近的聊天记录。

        已在同一房间时只重新推送历史，成员关系不变。

        Raises:
            InvalidStreamIdError: 房间 ID 不是整数，状态保持不变。
            PersistenceError: 历史记录读取失败，成员关系恢复到加入之前。
        """
        stream_id = as_int(raw_stream_id)
        if stream_id is None:
            raise InvalidStreamIdError()

        previous = self.room_id
        self._move_to(stream_id)

        try:
            messages: list[ChatMessage] = await self.store.get_recent_messages(
                stream_id, self.history_limit,
            )
        except Exception as e:
            logger.error("历史消息读取失败: %s | room=%s", e, stream_id, exc_info=True)
            if not self._disconnected:
                self._move_to(previous)
            raise PersistenceError("Failed to load chat history") from e

        logger.info(
            "观众进入聊天室 | room=%s | 在线: %d", stream_id, self.registry.member_count(stream_id),
        )
        self.connection.send_frame(HistoryFrame(messages=messages))

    def _move_to(self, room_id: int | None) -> None:
        """把成员关系切换到 ``room_id``（None 表示不在任何房间）。"""
        if self.room_id == room_id:
            return
        if self.room_id is not None:
            self.registry.leave(self.room_id, self.connection)
        if room_id is not None:
            self.registry.join(room_id, self.connection)
        self.room_id = room_id

    async def on_message(self, content: Any, user_id: Any) -> None:
        """在当前房间发送一条消息。

        Raises:
            NotJoinedError: 尚未加入任何房间。
        """
        if self.room_id is None:
            raise NotJoinedError()
        await self.pipeline.submit_chat_message(self.room_id, user_id, content)

    def on_leave(self) -> None:
        """离开当前房间；未加入时什么也不做。"""
        if self.room_id is None:
            return
        room_id = self.room_id
        self.registry.leave(room_id, self.connection)
        self.room_id = None
        logger.info(
            "观众离开聊天室 | room=%s | 在线: %d", room_id, self.registry.member_count(room_id),
        )

    def on_disconnect(self) -> None:
        """传输层断开时调用，只生效一次。"""
        if self._disconnected:
            return
        self._disconnected = True
        self.on_leave()
