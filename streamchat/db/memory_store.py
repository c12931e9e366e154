"""
streamchat.db.memory_store
~~~~~~~~~~~~~~~~~~~~~~~~~~

进程内存储 —— 默认后端，适合本地演示和测试。

消息只追加不淘汰，进程存活期间持续增长。
"""
from __future__ import annotations

import itertools
from datetime import datetime, timezone

from streamchat.core.logging import get_logger
from streamchat.schemas.chat import (
    ChatMessage,
    DonationRecord,
    StoredChatMessage,
    UserIdentity,
)

logger = get_logger(__name__)


class MemoryChatStore:
    """基于 dict / list 的 ``ChatStore`` 实现。

    Attributes:
        users: 用户 ID → 展示身份。
        messages: 全部聊天消息，按写入顺序（即 ID 顺序）排列。
        donations: 全部打赏记录。
    """

    def __init__(self) -> None:
        self.users: dict[int, UserIdentity] = {}
        self.messages: list[StoredChatMessage] = []
        self.donations: list[DonationRecord] = []
        self._user_ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self._donation_ids = itertools.count(1)

    # ── 用户 ──────────────────────────────────────────────────────────

    def create_user(
        self,
        username: str,
        display_name: str | None = None,
        avatar_url: str | None = None,
    ) -> UserIdentity:
        user = UserIdentity(
            id=next(self._user_ids),
            username=username,
            display_name=display_name,
            avatar_url=avatar_url,
        )
        self.users[user.id] = user
        return user

    def delete_user(self, user_id: int) -> None:
        self.users.pop(user_id, None)

    async def get_user_identity(self, user_id: int) -> UserIdentity | None:
        return self.users.get(user_id)

    # ── 聊天消息 ──────────────────────────────────────────────────────

    async def persist_message(
        self,
        stream_id: int,
        user_id: int,
        body: str,
        is_donation: bool = False,
        donation_amount: int | None = None,
    ) -> StoredChatMessage:
        stored = StoredChatMessage(
            id=next(self._message_ids),
            stream_id=stream_id,
            user_id=user_id,
            message=body,
            timestamp=datetime.now(timezone.utc),
            is_donation=is_donation,
            donation_amount=donation_amount,
        )
        self.messages.append(stored)
        return stored

    async def get_recent_messages(self, stream_id: int, limit: int) -> list[ChatMessage]:
        """取该房间最近 ``limit`` 条消息，按时间正序；发送者已不存在的消息被跳过。"""
        recent = [msg for msg in self.messages if msg.stream_id == stream_id][-limit:]
        result: list[ChatMessage] = []
        for stored in recent:
            identity = self.users.get(stored.user_id)
            if identity is not None:
                result.append(ChatMessage.from_stored(stored, identity))
        return result

    # ── 打赏 ──────────────────────────────────────────────────────────

    async def persist_donation(
        self,
        stream_id: int,
        user_id: int,
        amount: int,
        message: str | None,
    ) -> DonationRecord:
        record = DonationRecord(
            id=next(self._donation_ids),
            stream_id=stream_id,
            user_id=user_id,
            amount=amount,
            message=message,
            timestamp=datetime.now(timezone.utc),
        )
        self.donations.append(record)
        return record


async def seed_demo_data(store: MemoryChatStore) -> None:
    """写入演示用户和直播间 1 的初始聊天记录。"""
    store.create_user(
        "gamerpro99", "GamerPro99",
        "https://images.unsplash.com/photo-1494790108377-be9c29b29330?auto=format&fit=crop&w=100&q=80",
    )
    store.create_user(
        "speedmaster", "SpeedMaster",
        "https://images.unsplash.com/photo-1568602471122-7832951cc4c5?auto=format&fit=crop&w=100&q=80",
    )
    store.create_user(
        "musiclover", "MusicLover",
        "https://images.unsplash.com/photo-1519085360753-af0119f7cbe7?auto=format&fit=crop&w=100&q=80",
    )
    store.create_user(
        "chefalex", "ChefAlex",
        "https://images.unsplash.com/photo-1607746882042-944635dfe10e?auto=format&fit=crop&w=100&q=80",
    )

    await store.persist_message(1, 2, "This tournament is so intense! Can't believe that last play!")
    await store.persist_message(1, 3, "Welcome everyone to the stream! Remember to follow the chat rules.")
    await store.persist_message(1, 4, "Does anyone know when the next match starts?")

    tribute = "Keep up the great stream! You're awesome!"
    await store.persist_message(1, 2, tribute, is_donation=True, donation_amount=20)
    await store.persist_donation(1, 2, 20, tribute)

    logger.info(
        "演示数据已写入 | users=%d | messages=%d",
        len(store.users), len(store.messages),
    )
