"""
Redis persistence for login dialogs and last-known login status.
"""

from __future__ import annotations

import time
from typing import Any

from pydantic import ValidationError

from ..keyed_locks import KeyedLocks
from ..logging_config import logger
from ..redis_client import (
    login_session_key,
    login_status_key,
    redis_delete,
    redis_get_json,
    redis_set_json,
)
from ..settings import settings
from .state import LoginSession


class LoginSessionStore:
    def __init__(self, redis: Any, *, ttl_seconds: int | None = None) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds or settings.login_session_ttl_seconds
        self.locks = KeyedLocks()

    @staticmethod
    def key(provider_id: str, account_id: str, conversation_id: str) -> str:
        return login_session_key(provider_id, account_id, conversation_id)

    def lock(self, provider_id: str, account_id: str, conversation_id: str):
        return self.locks(self.key(provider_id, account_id, conversation_id))

    async def get(
        self, provider_id: str, account_id: str, conversation_id: str
    ) -> LoginSession | None:
        data = await redis_get_json(self.redis, self.key(provider_id, account_id, conversation_id))
        if not data:
            return None
        try:
            return LoginSession.model_validate(data)
        except ValidationError:
            logger.warning(
                "Discarding malformed login session %s/%s/%s",
                provider_id,
                account_id,
                conversation_id,
            )
            return None

    async def get_or_create(
        self, provider_id: str, account_id: str, conversation_id: str
    ) -> LoginSession:
        existing = await self.get(provider_id, account_id, conversation_id)
        if existing is not None:
            return existing
        session = LoginSession(
            provider_id=provider_id,
            account_id=account_id,
            conversation_id=conversation_id,
        )
        await self.save(session)
        return session

    async def save(self, session: LoginSession) -> None:
        session.updated_at = time.time()
        await redis_set_json(
            self.redis,
            self.key(session.provider_id, session.account_id, session.conversation_id),
            session,
            ttl_seconds=self.ttl_seconds,
        )

    async def delete(self, provider_id: str, account_id: str, conversation_id: str) -> None:
        await redis_delete(self.redis, self.key(provider_id, account_id, conversation_id))


class LoginStatusStore:
    """
    Last observed authentication state per provider account.
    """

    def __init__(self, redis: Any) -> None:
        self.redis = redis

    @staticmethod
    def key(provider_id: str, account_id: str) -> str:
        return login_status_key(provider_id, account_id)

    async def record(self, provider_id: str, account_id: str, logged_in: bool) -> None:
        await redis_set_json(
            self.redis,
            self.key(provider_id, account_id),
            {"logged_in": logged_in, "checked_at": time.time()},
        )

    async def get(self, provider_id: str, account_id: str) -> dict[str, Any] | None:
        data = await redis_get_json(self.redis, self.key(provider_id, account_id))
        return data if isinstance(data, dict) else None


__all__ = ["LoginSessionStore", "LoginStatusStore"]
