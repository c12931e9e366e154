"""
streamchat.db.base
~~~~~~~~~~~~~~~~~~

聊天核心依赖的存储接口。

核心只通过 ``ChatStore`` 访问用户、聊天消息和打赏记录，
具体后端见 ``memory_store``（进程内）与 ``chat_repository``（MongoDB）。
"""
from __future__ import annotations

from typing import Protocol

from streamchat.schemas.chat import (
    ChatMessage,
    DonationRecord,
    StoredChatMessage,
    UserIdentity,
)


class ChatStore(Protocol):
    """持久化 / 查询服务。"""

    async def get_recent_messages(self, stream_id: int, limit: int) -> list[ChatMessage]:
        """返回最近 ``limit`` 条消息（按时间正序），已附带发送者身份。"""
        ...

    async def persist_message(
        self,
        stream_id: int,
        user_id: int,
        body: str,
        is_donation: bool = False,
        donation_amount: int | None = None,
    ) -> StoredChatMessage:
        """保存一条消息，由存储层分配 ID 和时间戳。"""
        ...

    async def get_user_identity(self, user_id: int) -> UserIdentity | None:
        """按 ID 查询用户展示身份，不存在时返回 None。"""
        ...

    async def persist_donation(
        self,
        stream_id: int,
        user_id: int,
        amount: int,
        message: str | None,
    ) -> DonationRecord:
        """保存一条打赏记录。"""
        ...
