"""
streamchat.api.deps
~~~~~~~~~~~~~~~~~~~

FastAPI 依赖 —— 从 ``app.state`` 取出 lifespan 中构建的全局组件。
"""
from __future__ import annotations

from fastapi import Request

from streamchat.db.base import ChatStore
from streamchat.services.message_pipeline import MessagePipeline
from streamchat.services.room_registry import RoomRegistry


def get_store(request: Request) -> ChatStore:
    return request.app.state.store


def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


def get_pipeline(request: Request) -> MessagePipeline:
    return request.app.state.pipeline
