"""
streamchat.db.chat_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

MongoDB 存储后端 —— 封装 ``users`` / ``chat_messages`` / ``donations`` 集合。

每条消息一个文档（扁平设计），便于分页查询。
消息与打赏的整数 ID 由 ``counters`` 集合原子自增分配，保证单调递增。
集合在首次写入时自动创建并建立索引。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from streamchat.core.logging import get_logger
from streamchat.schemas.chat import (
    ChatMessage,
    DonationRecord,
    StoredChatMessage,
    UserIdentity,
)

logger = get_logger(__name__)

_USERS = "users"
_MESSAGES = "chat_messages"
_DONATIONS = "donations"
_COUNTERS = "counters"

_USER_PROJECTION = {"_id": 0, "id": 1, "username": 1, "display_name": 1, "avatar_url": 1}


class MongoChatStore:
    """基于 MongoDB 的 ``ChatStore`` 实现。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._users = db[_USERS]
        self._messages = db[_MESSAGES]
        self._donations = db[_DONATIONS]
        self._counters = db[_COUNTERS]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self._messages.create_index(
            [("stream_id", 1), ("id", 1)],
            name="idx_stream_id",
        )
        await self._users.create_index("id", name="idx_user_id", unique=True)
        await self._donations.create_index("stream_id", name="idx_donation_stream")
        self._indexes_created = True
        logger.debug("chat 集合索引已就绪")

    async def _next_id(self, name: str) -> int:
        doc = await self._counters.find_one_and_update(
            {"_id": name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])

    # ── 用户 ──────────────────────────────────────────────────────────

    async def get_user_identity(self, user_id: int) -> UserIdentity | None:
        doc = await self._users.find_one({"id": user_id}, _USER_PROJECTION)
        if doc is None:
            return None
        return UserIdentity(**doc)

    # ── 聊天消息 ──────────────────────────────────────────────────────

    async def persist_message(
        self,
        stream_id: int,
        user_id: int,
        body: str,
        is_donation: bool = False,
        donation_amount: int | None = None,
    ) -> StoredChatMessage:
        await self._ensure_indexes()
        doc: dict[str, Any] = {
            "id": await self._next_id(_MESSAGES),
            "stream_id": stream_id,
            "user_id": user_id,
            "message": body,
            "timestamp": datetime.now(timezone.utc),
            "is_donation": is_donation,
            "donation_amount": donation_amount,
        }
        await self._messages.insert_one(doc)
        doc.pop("_id", None)
        return StoredChatMessage(**doc)

    async def get_recent_messages(self, stream_id: int, limit: int) -> list[ChatMessage]:
        """获取指定房间的最近 N 条消息（按时间正序），并附带发送者身份。

        发送者已不存在的消息会被跳过。
        """
        await self._ensure_indexes()

        # 先按 ID 倒序取最近 N 条，再反转为正序
        cursor = (
            self._messages
            .find({"stream_id": stream_id}, {"_id": 0})
            .sort("id", -1)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        docs.reverse()
        stored = [StoredChatMessage(**doc) for doc in docs]

        user_ids = list({msg.user_id for msg in stored})
        users: dict[int, UserIdentity] = {}
        if user_ids:
            user_cursor = self._users.find({"id": {"$in": user_ids}}, _USER_PROJECTION)
            for doc in await user_cursor.to_list(length=len(user_ids)):
                users[doc["id"]] = UserIdentity(**doc)

        return [
            ChatMessage.from_stored(msg, users[msg.user_id])
            for msg in stored
            if msg.user_id in users
        ]

    # ── 打赏 ──────────────────────────────────────────────────────────

    async def persist_donation(
        self,
        stream_id: int,
        user_id: int,
        amount: int,
        message: str | None,
    ) -> DonationRecord:
        await self._ensure_indexes()
        doc: dict[str, Any] = {
            "id": await self._next_id(_DONATIONS),
            "stream_id": stream_id,
            "user_id": user_id,
            "amount": amount,
            "message": message,
            "timestamp": datetime.now(timezone.utc),
        }
        await self._donations.insert_one(doc)
        doc.pop("_id", None)
        return DonationRecord(**doc)
