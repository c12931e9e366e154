"""
streamchat.core.errors
~~~~~~~~~~~~~~~~~~~~~~

聊天核心的异常体系。

每个异常的 ``message`` 就是回给出错连接的 ``error`` 帧文本，
所有异常都只终止当前这一次操作，不会关闭连接，也不会广播。
"""
from __future__ import annotations


class ChatError(Exception):
    """聊天核心异常基类。"""

    message: str = "Chat error"
    status_code: int = 400

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class MalformedFrameError(ChatError):
    """帧无法解析为 JSON 对象。"""

    message = "Invalid message format"


class UnknownFrameTypeError(ChatError):
    """``type`` 字段缺失或不在协议定义的指令集合内。"""

    message = "Unknown message type"


class InvalidStreamIdError(ChatError):
    """房间 ID 无法解析为整数。"""

    message = "Invalid stream ID"


class NotJoinedError(ChatError):
    """未加入任何房间就发送了消息。"""

    message = "Not joined to any stream"


class InvalidMessageError(ChatError):
    """消息内容或发送者缺失。"""

    message = "Missing message content or user ID"


class InvalidDonationError(ChatError):
    """打赏金额不是正整数。"""

    message = "Invalid donation amount"


class UserNotFoundError(ChatError):
    """发送者身份无法解析。"""

    message = "User not found"
    status_code = 404


class PersistenceError(ChatError):
    """存储层写入或查询失败。"""

    message = "Failed to save chat message"
    status_code = 500
