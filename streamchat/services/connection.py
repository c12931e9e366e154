"""
streamchat.services.connection
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

单个 WebSocket 连接的发送端封装。

每个连接持有一个待发送帧队列和一个专属的写协程：
广播方只负责把帧放入队列（不等待网络 I/O），
某个观众网速慢或连接已失效时，只影响它自己的队列，
不会拖慢同房间的其他观众，也不会阻塞其他房间。
"""
from __future__ import annotations

import asyncio
import contextlib
import uuid

from fastapi import WebSocket

from streamchat.core.logging import get_logger
from streamchat.schemas.frames import OutboundFrame, encode_frame

logger = get_logger(__name__)


class ChatConnection:
    """一个聊天 WebSocket 连接。

    由 ``ChatGateway`` 独占持有；``RoomRegistry`` 只保存对它的引用。

    Attributes:
        websocket: 底层 FastAPI WebSocket。
        connection_id: 日志追踪用的连接 ID。
    """

    def __init__(self, websocket: WebSocket, max_queue: int = 256) -> None:
        self.websocket = websocket
        self.connection_id = f"ws-{uuid.uuid4().hex[:8]}"
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_queue)
        self._writer: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        """连接是否已失效（发送失败或已关闭）。"""
        return self._closed

    def start(self) -> None:
        """启动写协程。必须在事件循环内调用。"""
        if self._writer is None:
            self._writer = asyncio.create_task(
                self._write_loop(), name=f"chat-writer-{self.connection_id}",
            )

    def send_text(self, text: str) -> bool:
        """把一帧放入发送队列，不等待实际发送。

        Returns:
            是否成功入队。连接已失效或队列已满时丢弃该帧并返回 False。
        """
        if self._closed:
            return False
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning("发送队列已满，丢弃一帧 | conn=%s", self.connection_id)
            return False
        return True

    def send_frame(self, frame: OutboundFrame) -> bool:
        """序列化并发送一个出站帧。"""
        return self.send_text(encode_frame(frame))

    async def drain(self) -> None:
        """等待队列中已有的帧全部发送（或被丢弃）。"""
        await self._queue.join()

    async def close(self) -> None:
        """停止写协程并丢弃未发送的帧。"""
        self._closed = True
        if self._writer is not None:
            self._writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer
            self._writer = None
        self._discard_pending()

    async def _write_loop(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                await self.websocket.send_text(text)
            except Exception as e:
                self._closed = True
                logger.warning("发送失败，连接已失效: %s | conn=%s", e, self.connection_id)
                self._discard_pending()
                return
            finally:
                self._queue.task_done()

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()
