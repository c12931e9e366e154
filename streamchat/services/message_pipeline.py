"""
streamchat.services.message_pipeline
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

消息管道 —— 校验 → 持久化 → 附加发送者身份 → 广播。

两个入口:
  - ``submit_chat_message()``   —— 来自 WebSocket 的普通聊天消息
  - ``submit_donation_event()`` —— 来自 REST 打赏接口的打赏事件

任何消息都必须先成功持久化才会广播。同一房间内
"持久化 → 附加身份 → 广播" 三步串行执行，广播顺序即持久化顺序。
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from streamchat.core.errors import (
    InvalidDonationError,
    InvalidMessageError,
    PersistenceError,
    UserNotFoundError,
)
from streamchat.core.logging import get_logger
from streamchat.db.base import ChatStore
from streamchat.schemas.chat import ChatMessage, DonationRecord
from streamchat.schemas.frames import as_int, broadcast_frame_for
from streamchat.services.room_registry import RoomRegistry

logger = get_logger(__name__)


@dataclass
class _LockSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class _RoomLocks:
    """按房间分配的 ``asyncio.Lock``，无人持有也无人等待时自动回收。"""

    def __init__(self) -> None:
        self._slots: dict[int, _LockSlot] = {}

    @asynccontextmanager
    async def hold(self, room_id: int) -> AsyncIterator[None]:
        slot = self._slots.setdefault(room_id, _LockSlot())
        slot.holders += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.holders -= 1
            if slot.holders == 0:
                self._slots.pop(room_id, None)

    def __len__(self) -> int:
        return len(self._slots)


class MessagePipeline:
    """把入站消息 / 打赏事件变成已持久化、已附加身份的广播。

    Attributes:
        store: 持久化服务。
        registry: 房间注册表，用于广播。
        default_donation_message: 打赏未附带留言时的默认文本。
    """

    def __init__(
        self,
        store: ChatStore,
        registry: RoomRegistry,
        default_donation_message: str = "Made a donation!",
    ) -> None:
        self.store = store
        self.registry = registry
        self.default_donation_message = default_donation_message
        self._room_locks = _RoomLocks()

    async def submit_chat_message(self, room_id: int, sender_id: Any, body: Any) -> ChatMessage:
        """提交一条普通聊天消息。

        Raises:
            InvalidMessageError: 内容为空或发送者 ID 缺失。
            UserNotFoundError: 发送者不存在（此时不持久化）。
            PersistenceError: 存储失败（不广播）。
        """
        user_id = as_int(sender_id)
        if not isinstance(body, str) or not body.strip() or not user_id:
            raise InvalidMessageError()
        await self._require_user(user_id)

        message = await self._publish(room_id, user_id, body)
        logger.debug("聊天消息已广播 | room=%s | id=%s", room_id, message.id)
        return message

    async def submit_donation_event(
        self,
        room_id: int,
        sender_id: int,
        amount: Any,
        message: str | None = None,
    ) -> tuple[DonationRecord, ChatMessage]:
        """提交一次打赏：保存打赏记录，并以打赏消息的形式进入聊天流。

        Returns:
            ``(打赏记录, 广播出去的聊天消息)``。
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidDonationError()
        await self._require_user(sender_id)

        body = message if message and message.strip() else self.default_donation_message
        try:
            donation = await self.store.persist_donation(room_id, sender_id, amount, message)
        except Exception as e:
            logger.error("打赏记录保存失败: %s | room=%s", e, room_id, exc_info=True)
            raise PersistenceError("Failed to save donation") from e

        chat_message = await self._publish(room_id, sender_id, body, donation_amount=amount)
        logger.info(
            "💰 打赏已广播 | room=%s | user=%s | amount=%d", room_id, sender_id, amount,
        )
        return donation, chat_message

    async def _require_user(self, user_id: int) -> None:
        if await self.store.get_user_identity(user_id) is None:
            raise UserNotFoundError()

    async def _publish(
        self,
        room_id: int,
        user_id: int,
        body: str,
        donation_amount: int | None = None,
    ) -> ChatMessage:
        async with self._room_locks.hold(room_id):
            try:
                stored = await self.store.persist_message(
                    room_id,
                    user_id,
                    body,
                    is_donation=donation_amount is not None,
                    donation_amount=donation_amount,
                )
            except Exception as e:
                logger.error("聊天消息保存失败: %s | room=%s", e, room_id, exc_info=True)
                raise PersistenceError() from e

            identity = await self.store.get_user_identity(stored.user_id)
            if identity is None:
                # 消息已落库但无法附加身份：放弃广播，消息留在存储中
                logger.warning(
                    "发送者身份解析失败，放弃广播 | room=%s | message_id=%s", room_id, stored.id,
                )
                raise UserNotFoundError()

            chat_message = ChatMessage.from_stored(stored, identity)
            self.registry.broadcast(room_id, broadcast_frame_for(chat_message))
            return chat_message
