"""
streamchat.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 直播间 ID 到在线连接集合的进程内映射。

纯内存簿记，不做网络 I/O：广播只把帧交给各连接的发送队列。
所有方法都是同步的，在单事件循环模型下，每次调用对成员集合的读写
都是原子的，其他协程不会观察到"一个连接同时在两个房间"的中间状态。
"""
from __future__ import annotations

from typing import Protocol

from streamchat.core.logging import get_logger
from streamchat.schemas.frames import OutboundFrame, encode_frame

logger = get_logger(__name__)


class RoomMember(Protocol):
    """注册表只依赖连接的这两个能力。"""

    @property
    def closed(self) -> bool: ...

    def send_text(self, text: str) -> bool: ...


class RoomRegistry:
    """直播间成员表。

    空房间会被立即删除，不在内存中保留空集合。
    """

    def __init__(self) -> None:
        self._rooms: dict[int, set[RoomMember]] = {}

    def join(self, room_id: int, connection: RoomMember) -> None:
        """把连接加入房间；已在该房间时无变化。"""
        self._rooms.setdefault(room_id, set()).add(connection)

    def leave(self, room_id: int, connection: RoomMember) -> None:
        """把连接移出房间；不在房间内时什么也不做。"""
        members = self._rooms.get(room_id)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self._rooms[room_id]

    def broadcast(self, room_id: int, frame: OutboundFrame) -> None:
        """向房间内当前所有成员发送一帧（尽力而为）。

        帧只序列化一次；失效或发送出错的成员被跳过，不影响其余成员。
        """
        members = self._rooms.get(room_id)
        if not members:
            return
        text = encode_frame(frame)
        for connection in list(members):
            if connection.closed:
                continue
            try:
                connection.send_text(text)
            except Exception as e:
                logger.warning("广播到单个连接失败，已跳过: %s | room=%s", e, room_id)
                continue

    def members(self, room_id: int) -> frozenset[RoomMember]:
        return frozenset(self._rooms.get(room_id, ()))

    def member_count(self, room_id: int) -> int:
        """房间当前在线连接数。"""
        return len(self._rooms.get(room_id, ()))

    def room_ids(self) -> list[int]:
        """当前有成员的房间 ID。"""
        return list(self._rooms)
