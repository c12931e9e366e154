"""
streamchat.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~~~

HTTP 接口限流配置。

WebSocket 聊天不在此限流，只覆盖 ``/api/streams`` 下的 REST 端点。
"""
from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

# 基于客户端 IP 地址进行限流，单进程内存存储
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)
