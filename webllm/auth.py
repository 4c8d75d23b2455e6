from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import Depends, Header

from .errors import Forbidden, Unauthorized
from .settings import settings


@dataclass(frozen=True)
class AuthenticatedAPIKey:
    """
    Caller identity. `accounts` maps provider id to the account the key is
    bound to; an anonymous caller (no keys configured) may use every provider
    with its default account.
    """

    key: str | None = None
    accounts: dict[str, str] = field(default_factory=dict)

    @property
    def is_anonymous(self) -> bool:
        return self.key is None

    def account_for(self, provider_id: str) -> str | None:
        if self.is_anonymous:
            return None
        if provider_id not in self.accounts:
            raise Forbidden(
                f"API key is not allowed to use provider '{provider_id}'",
                details={"provider": provider_id},
            )
        return self.accounts[provider_id]


def get_api_key_table() -> dict[str, dict[str, str]]:
    return settings.api_keys()


def _extract_token(authorization: str | None, api_key: str | None) -> str | None:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise Unauthorized("Invalid Authorization header, expected 'Bearer <token>'")
        return token.strip()
    if api_key and api_key.strip():
        return api_key.strip()
    return None


async def require_api_key(
    authorization: str | None = Header(default=None),
    api_key: str | None = Header(default=None, alias="api-key"),
    table: dict[str, dict[str, str]] = Depends(get_api_key_table),
) -> AuthenticatedAPIKey:
    """
    Accepts `Authorization: Bearer <key>` or `api-key: <key>`. When no keys
    are configured the gateway is open and every caller is anonymous.
    """
    if not table:
        return AuthenticatedAPIKey()
    token = _extract_token(authorization, api_key)
    if token is None:
        raise Unauthorized("Missing API key")
    accounts = table.get(token)
    if accounts is None:
        raise Unauthorized("Invalid API key")
    return AuthenticatedAPIKey(key=token, accounts=dict(accounts))


__all__ = ["AuthenticatedAPIKey", "get_api_key_table", "require_api_key"]
