"""
Redis access for login state.

Two kinds of records live in Redis: login dialogs, one per
provider/account/conversation and expiring after LOGIN_SESSION_TTL_SECONDS,
and the last observed login status per provider/account. Key templates are
kept here so every component formats them the same way.

Ids come from clients and accounts.json, so each key part is escaped; a ':'
inside an account or conversation id can never make two keys collide.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any
from urllib.parse import quote
from weakref import WeakKeyDictionary

from fastapi.encoders import jsonable_encoder
from redis.asyncio import Redis

from .settings import settings

LOGIN_SESSION_KEY_TEMPLATE = "webllm:login:{provider_id}:{account_id}:{conversation_id}"
LOGIN_STATUS_KEY_TEMPLATE = "webllm:login-status:{provider_id}:{account_id}"

_redis_clients_by_loop: WeakKeyDictionary[asyncio.AbstractEventLoop, Redis] = (
    WeakKeyDictionary()
)


def _key_part(value: str) -> str:
    return quote(str(value), safe="-_.@")


def login_session_key(provider_id: str, account_id: str, conversation_id: str) -> str:
    return LOGIN_SESSION_KEY_TEMPLATE.format(
        provider_id=_key_part(provider_id),
        account_id=_key_part(account_id),
        conversation_id=_key_part(conversation_id),
    )


def login_status_key(provider_id: str, account_id: str) -> str:
    return LOGIN_STATUS_KEY_TEMPLATE.format(
        provider_id=_key_part(provider_id),
        account_id=_key_part(account_id),
    )


def get_redis_client() -> Redis:
    """
    Return the Redis client bound to the running event loop.

    Browser work and the HTTP server share one loop in production; tests
    that drive the app from several loops each get their own client.
    """
    loop = asyncio.get_running_loop()
    client = _redis_clients_by_loop.get(loop)
    if client is None:
        client = Redis.from_url(settings.redis_url, decode_responses=True)
        _redis_clients_by_loop[loop] = client
    return client


async def close_redis_client() -> None:
    client = _redis_clients_by_loop.pop(asyncio.get_running_loop(), None)
    if client is not None:
        await client.aclose()


async def redis_get_json(redis: Redis, key: str) -> Any | None:
    """
    Load a JSON value. Missing keys and malformed payloads both read as None.
    """
    raw = await redis.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


async def redis_set_json(
    redis: Redis, key: str, value: Any, *, ttl_seconds: int | None = None
) -> None:
    """
    Store a value (pydantic models included) as JSON, with an optional TTL.
    """
    data = json.dumps(jsonable_encoder(value), ensure_ascii=False)
    if ttl_seconds is not None:
        await redis.set(key, data, ex=ttl_seconds)
    else:
        await redis.set(key, data)


async def redis_delete(redis: Redis, key: str) -> None:
    await redis.delete(key)


__all__ = [
    "LOGIN_SESSION_KEY_TEMPLATE",
    "LOGIN_STATUS_KEY_TEMPLATE",
    "close_redis_client",
    "get_redis_client",
    "login_session_key",
    "login_status_key",
    "redis_delete",
    "redis_get_json",
    "redis_set_json",
]
