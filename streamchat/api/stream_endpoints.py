"""
streamchat.api.stream_endpoints
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播间聊天 REST 接口。

端点:
  - ``GET  /streams/{stream_id}/chat``       → 最近聊天记录（与 ``history`` 帧内容一致）
  - ``POST /streams/{stream_id}/donations``  → 打赏，并以打赏消息广播到聊天室
  - ``GET  /streams/{stream_id}/room``       → 聊天室在线人数
"""
from fastapi import APIRouter, Depends, Request

from streamchat.api.deps import get_pipeline, get_registry, get_store
from streamchat.core.errors import InvalidStreamIdError
from streamchat.core.rate_limit import limiter
from streamchat.core.settings import settings
from streamchat.db.base import ChatStore
from streamchat.schemas.api_response import ApiResponse
from streamchat.schemas.chat import ChatMessage, DonationRecord, DonationRequest, RoomInfoData
from streamchat.schemas.frames import as_int
from streamchat.services.message_pipeline import MessagePipeline
from streamchat.services.room_registry import RoomRegistry

router: APIRouter = APIRouter()


def _parse_stream_id(raw: str) -> int:
    stream_id = as_int(raw)
    if stream_id is None:
        raise InvalidStreamIdError()
    return stream_id


@router.get(
    "/streams/{stream_id}/chat",
    summary="获取最近聊天记录",
    response_model=ApiResponse[list[ChatMessage]],
    response_model_exclude_none=True,
)
@limiter.limit("20/second")
async def get_chat_history(
    request: Request,
    stream_id: str,
    store: ChatStore = Depends(get_store),
):
    """返回指定直播间最近的聊天记录（按时间正序）。"""
    messages = await store.get_recent_messages(
        _parse_stream_id(stream_id), settings.CHAT_HISTORY_LIMIT,
    )
    return ApiResponse.ok(data=messages)


@router.post(
    "/streams/{stream_id}/donations",
    summary="打赏主播",
    status_code=201,
    response_model=ApiResponse[DonationRecord],
    response_model_exclude_none=True,
)
@limiter.limit("20/second")
async def create_donation(
    request: Request,
    stream_id: str,
    donation_request: DonationRequest,
    pipeline: MessagePipeline = Depends(get_pipeline),
):
    """保存打赏记录，并把打赏消息广播给聊天室内所有观众。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        stream_id: 直播间 ID。
        donation_request: 打赏用户、金额与可选留言。
    """
    donation, _ = await pipeline.submit_donation_event(
        _parse_stream_id(stream_id),
        donation_request.user_id,
        donation_request.amount,
        donation_request.message,
    )
    return ApiResponse.ok(data=donation, code=201)


@router.get(
    "/streams/{stream_id}/room",
    summary="获取聊天室在线人数",
    response_model=ApiResponse[RoomInfoData],
)
@limiter.limit("20/second")
async def room_info(
    request: Request,
    stream_id: str,
    registry: RoomRegistry = Depends(get_registry),
):
    """返回聊天室当前在线连接数；房间不存在时为 0。"""
    sid = _parse_stream_id(stream_id)
    return ApiResponse.ok(data=RoomInfoData(stream_id=sid, online_count=registry.member_count(sid)))
