"""
streamchat.api.chat_ws
~~~~~~~~~~~~~~~~~~~~~~

聊天 WebSocket 端点。

路径由 ``settings.WS_PATH`` 决定（默认 ``/ws``），所有直播间共用同一个端点，
观众通过 ``join`` 帧选择房间，协议见 ``streamchat.schemas.frames``。
"""
from __future__ import annotations

from fastapi import APIRouter, WebSocket

from streamchat.core.settings import settings
from streamchat.services.gateway import ChatGateway

router: APIRouter = APIRouter()


@router.websocket(settings.WS_PATH)
async def chat_websocket_endpoint(websocket: WebSocket) -> None:
    """聊天 WebSocket 端点，连接的完整生命周期交给 ``ChatGateway``。"""
    gateway: ChatGateway = websocket.app.state.chat_gateway
    await gateway.serve(websocket)
