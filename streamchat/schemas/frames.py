"""
streamchat.schemas.frames
~~~~~~~~~~~~~~~~~~~~~~~~~

聊天 WebSocket 协议帧。

所有帧都是带 ``type`` 判别字段的 JSON 对象。

入站（客户端 → 服务端）:
  - ``join``    —— ``{"type": "join", "streamId": 5}``
  - ``message`` —— ``{"type": "message", "content": "hi", "userId": 1}``
  - ``leave``   —— ``{"type": "leave"}``

出站（服务端 → 客户端）:
  - ``history``  —— 加入成功后推送一次最近消息
  - ``chat``     —— 普通消息广播
  - ``donation`` —— 打赏消息广播
  - ``error``    —— 只发给出错的连接
"""
from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from streamchat.core.errors import MalformedFrameError, UnknownFrameTypeError
from streamchat.schemas.chat import ChatMessage


# ── 入站帧 ────────────────────────────────────────────────────────────
# 字段值的语义校验（房间 ID 是否为整数、内容是否为空）交给会话和消息管道，
# 这里只负责按 type 分派到固定的指令集合。

class JoinFrame(BaseModel):
    """加入房间。"""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["join"]
    stream_id: Any = Field(default=None, alias="streamId")


class MessageFrame(BaseModel):
    """在当前房间发送消息。"""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["message"]
    content: Any = None
    user_id: Any = Field(default=None, alias="userId")


class LeaveFrame(BaseModel):
    """离开当前房间。"""

    type: Literal["leave"]


def as_int(value: Any) -> int | None:
    """把帧字段宽松地解析为整数：接受 ``5`` / ``"5"`` / ``5.0``，其余返回 None。"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


InboundFrame = Annotated[
    Union[JoinFrame, MessageFrame, LeaveFrame],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundFrame] = TypeAdapter(InboundFrame)


def decode_frame(raw: str | bytes) -> JoinFrame | MessageFrame | LeaveFrame:
    """把一条原始文本解码为入站指令。

    Raises:
        MalformedFrameError: 不是合法的 JSON 对象。
        UnknownFrameTypeError: ``type`` 缺失或不是已知指令。
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedFrameError() from e
    if not isinstance(data, dict):
        raise MalformedFrameError()

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise UnknownFrameTypeError() from e


# ── 出站帧 ────────────────────────────────────────────────────────────

class HistoryFrame(BaseModel):
    type: Literal["history"] = "history"
    messages: list[ChatMessage]


class ChatFrame(BaseModel):
    type: Literal["chat"] = "chat"
    message: ChatMessage


class DonationFrame(BaseModel):
    type: Literal["donation"] = "donation"
    message: ChatMessage


class ErrorFrame(BaseModel):
    type: Literal["error"] = "error"
    message: str


OutboundFrame = Union[HistoryFrame, ChatFrame, DonationFrame, ErrorFrame]


def encode_frame(frame: OutboundFrame) -> str:
    """序列化出站帧：camelCase 字段，省略值为 None 的可选字段。"""
    return frame.model_dump_json(by_alias=True, exclude_none=True)


def broadcast_frame_for(message: ChatMessage) -> ChatFrame | DonationFrame:
    """根据打赏标记选择广播帧类型。"""
    if message.is_donation:
        return DonationFrame(message=message)
    return ChatFrame(message=message)
