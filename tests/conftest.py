"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 进程内存储、注册表与消息管道，
使单元测试无需 MongoDB 和真实 WebSocket 即可运行。
"""
from __future__ import annotations

import os

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORAGE_BACKEND", "memory")

from streamchat.core.rate_limit import limiter  # noqa: E402
from streamchat.db.memory_store import MemoryChatStore  # noqa: E402
from streamchat.services.message_pipeline import MessagePipeline  # noqa: E402
from streamchat.services.room_registry import RoomRegistry  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_rate_limiter() -> None:
    limiter.reset()


@pytest.fixture()
def store() -> MemoryChatStore:
    """预置三个用户（ID 1..3）的空存储。"""
    store = MemoryChatStore()
    store.create_user("alice", "Alice", "https://example.com/alice.png")
    store.create_user("bob", "Bob")
    store.create_user("carol")
    return store


@pytest.fixture()
def registry() -> RoomRegistry:
    return RoomRegistry()


@pytest.fixture()
def pipeline(store: MemoryChatStore, registry: RoomRegistry) -> MessagePipeline:
    return MessagePipeline(store=store, registry=registry)
