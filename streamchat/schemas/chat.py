"""
streamchat.schemas.chat
~~~~~~~~~~~~~~~~~~~~~~~

聊天领域的 Pydantic 模型。

- 存储记录：``UserIdentity`` / ``StoredChatMessage`` / ``DonationRecord``
- 客户端投影：``ChatMessage``（附带发送者展示身份，每次广播现场构造）
- REST 请求/响应：``DonationRequest`` / ``RoomInfoData``

对外 JSON 一律使用 camelCase 字段名，可选字段缺省时省略。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel


def to_iso(value: datetime) -> str:
    """把时间转为带毫秒的 UTC ISO-8601 字符串（``...T12:00:00.000Z``）。"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class CamelModel(BaseModel):
    """对外字段使用 camelCase 别名，内部仍按 snake_case 访问。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── 存储记录 ──────────────────────────────────────────────────────────

class UserIdentity(CamelModel):
    """发送者的展示身份。"""

    id: int
    username: str
    display_name: str | None = None
    avatar_url: str | None = None


class StoredChatMessage(CamelModel):
    """持久化后的聊天消息，创建后不可变。"""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="存储层分配的单调递增 ID")
    stream_id: int
    user_id: int
    message: str
    timestamp: datetime
    is_donation: bool = False
    donation_amount: int | None = None


class DonationRecord(CamelModel):
    """打赏记录。"""

    id: int
    stream_id: int
    user_id: int
    amount: int
    message: str | None = None
    timestamp: datetime

    @field_serializer("timestamp")
    def _serialize_timestamp(self, value: datetime) -> str:
        return to_iso(value)


# ── 客户端投影 ────────────────────────────────────────────────────────

class ChatMessage(CamelModel):
    """推送给客户端的聊天消息（``history`` / ``chat`` / ``donation`` 帧内容）。"""

    id: int
    stream_id: int
    user_id: int
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    message: str
    timestamp: str = Field(..., description="创建时间（ISO-8601）")
    is_donation: bool = False
    donation_amount: int | None = None

    @classmethod
    def from_stored(cls, stored: StoredChatMessage, identity: UserIdentity) -> ChatMessage:
        """用存储记录 + 发送者身份构造客户端消息。

        历史回放与实时广播都经过这里，保证两条路径得到同一种表示。
        """
        return cls(
            id=stored.id,
            stream_id=stored.stream_id,
            user_id=stored.user_id,
            username=identity.username,
            display_name=identity.display_name or None,
            avatar_url=identity.avatar_url or None,
            message=stored.message,
            timestamp=to_iso(stored.timestamp),
            is_donation=stored.is_donation,
            donation_amount=stored.donation_amount if stored.is_donation else None,
        )


# ── REST 请求/响应 ───────────────────────────────────────────────────

class DonationRequest(CamelModel):
    """打赏请求体。"""

    user_id: int = Field(..., description="打赏用户 ID")
    # 不做类型转换，原样交给 MessagePipeline 校验（"20" / 2.5 / true 均非法）
    amount: Any = Field(
        ...,
        description="打赏金额（正整数）",
        json_schema_extra={"type": "integer", "minimum": 1},
    )
    message: str | None = Field(default=None, max_length=500, description="可选留言")


class RoomInfoData(CamelModel):
    """直播间聊天室摘要。"""

    stream_id: int = Field(..., description="直播间 ID")
    online_count: int = Field(..., description="当前在聊天室内的连接数")
