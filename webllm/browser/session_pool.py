"""
Pool of persistent browser sessions.

One browser context per (provider, account); inside it one active page per
slot (provider, account, model). Liveness is checked lazily: a dead context
is detected by the failure of an operation, dropped and recreated.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import urlsplit

from ..accounts import AccountDirectory
from ..continuity import ConversationHandle
from ..errors import SessionUnavailable
from ..keyed_locks import KeyedLocks
from ..logging_config import logger
from ..settings import settings
from .driver import LaunchOptions
from .faults import is_dead_session_error

if TYPE_CHECKING:
    from ..providers.base import WebChatProvider

T = TypeVar("T")

LOGIN_SLOT = "__login__"

SessionKey = tuple[str, str]
SlotKey = tuple[str, str, str]


@dataclass
class PageSlot:
    page: Any
    url: str | None = None


def _normalize_url(url: str | None) -> str:
    if not url:
        return ""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path.rstrip('/')}"


def same_location(left: str | None, right: str | None) -> bool:
    return bool(left) and bool(right) and _normalize_url(left) == _normalize_url(right)


def _page_alive(page: Any) -> bool:
    return page is not None and not page.is_closed()


async def _close_quietly(target: Any) -> None:
    if target is None:
        return
    try:
        await target.close()
    except Exception as exc:
        logger.debug("Ignoring error while closing %r: %s", target, exc)


class SessionPool:
    def __init__(
        self,
        driver: Any,
        accounts: AccountDirectory,
        *,
        max_attempts: int | None = None,
        retry_backoff: float | None = None,
        launch_options: Callable[[str], LaunchOptions] = LaunchOptions.from_settings,
        navigation_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.driver = driver
        self.accounts = accounts
        self.max_attempts = max(1, max_attempts or settings.session_max_attempts)
        self.retry_backoff = (
            settings.session_retry_backoff_seconds if retry_backoff is None else retry_backoff
        )
        self.navigation_timeout_ms = 1000 * (
            navigation_timeout or settings.drive_timeout_seconds
        )
        self._launch_options = launch_options
        self._sleep = sleep
        self._sessions: dict[SessionKey, Any] = {}
        self._slots: dict[SlotKey, PageSlot] = {}
        self._session_locks = KeyedLocks()
        self._slot_locks = KeyedLocks()

    # ---- sessions -------------------------------------------------------

    def _session_key(self, provider_id: str, account_id: str | None) -> SessionKey:
        return (provider_id, account_id or self.accounts.default_account(provider_id))

    async def _session(self, key: SessionKey) -> Any:
        async with self._session_locks(key):
            context = self._sessions.get(key)
            if context is not None:
                return context
            provider_id, account_id = key
            profile_dir = self.accounts.profile_dir(provider_id, account_id)
            context = await self.driver.launch(profile_dir, self._launch_options(provider_id))
            self._sessions[key] = context
            logger.info("Browser session ready for %s/%s", provider_id, account_id)
            return context

    async def _drop_session(self, key: SessionKey) -> None:
        async with self._session_locks(key):
            context = self._sessions.pop(key, None)
            for slot_key in [k for k in self._slots if k[:2] == key]:
                self._slots.pop(slot_key, None)
        logger.warning("Dropping dead browser session %s/%s", *key)
        await _close_quietly(context)

    async def _with_recovery(
        self, key: SessionKey, operation: Callable[[Any], Awaitable[T]]
    ) -> T:
        last_exc: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                context = await self._session(key)
                return await operation(context)
            except Exception as exc:
                if not is_dead_session_error(exc):
                    raise
                last_exc = exc
                logger.warning(
                    "Session %s/%s failed (attempt %s/%s): %s",
                    key[0],
                    key[1],
                    attempt,
                    self.max_attempts,
                    exc,
                )
                await self._drop_session(key)
                if attempt < self.max_attempts:
                    await self._sleep(self.retry_backoff * attempt)
        raise SessionUnavailable(
            f"Browser session for {key[0]} could not be recovered",
            details={"provider": key[0], "account": key[1], "reason": str(last_exc)},
        )

    async def _open_page(self, context: Any, url: str) -> Any:
        page = await context.new_page()
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        except Exception:
            await _close_quietly(page)
            raise
        return page

    # ---- pages ----------------------------------------------------------

    async def resolve_page(
        self,
        provider: "WebChatProvider",
        account_id: str | None,
        handle: ConversationHandle,
        slot: str,
    ) -> Any:
        """
        Return the page the turn should run on.

        New conversations always get a fresh page at the provider's entry URL.
        Resumed ones reuse any page already showing the conversation.
        """
        key = self._session_key(provider.id, account_id)
        slot_key: SlotKey = (*key, slot)

        if handle.is_new or not handle.opaque_id:

            async def _fresh(context: Any) -> Any:
                old = self._slots.pop(slot_key, None)
                if old is not None and _page_alive(old.page):
                    await _close_quietly(old.page)
                page = await self._open_page(context, provider.site.default_url)
                self._slots[slot_key] = PageSlot(page=page, url=page.url)
                return page

            async with self._slot_locks(slot_key):
                return await self._with_recovery(key, _fresh)

        locator = provider.codec.to_locator(handle.opaque_id)

        async def _resume(context: Any) -> Any:
            page = self._find_page(context, key, slot_key, locator)
            if page is not None:
                if not same_location(page.url, locator):
                    await page.goto(
                        locator, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms
                    )
            else:
                page = await self._open_page(context, locator)
            self._slots[slot_key] = PageSlot(page=page, url=locator)
            return page

        async with self._slot_locks(slot_key):
            return await self._with_recovery(key, _resume)

    def _find_page(
        self, context: Any, key: SessionKey, slot_key: SlotKey, locator: str
    ) -> Any | None:
        current = self._slots.get(slot_key)
        if current is not None and _page_alive(current.page) and same_location(current.url, locator):
            return current.page
        for other_key, other in self._slots.items():
            if other_key[:2] == key and _page_alive(other.page) and same_location(other.url, locator):
                return other.page
        for page in list(context.pages):
            if _page_alive(page) and same_location(page.url, locator):
                return page
        return None

    async def login_page(self, provider: "WebChatProvider", account_id: str | None) -> Any:
        """
        Dedicated page for the login dialog, reused while it stays open.
        """
        key = self._session_key(provider.id, account_id)
        slot_key: SlotKey = (*key, LOGIN_SLOT)

        async def _login(context: Any) -> Any:
            current = self._slots.get(slot_key)
            if current is not None and _page_alive(current.page):
                return current.page
            page = await self._open_page(context, provider.site.login_url or provider.site.default_url)
            self._slots[slot_key] = PageSlot(page=page, url=page.url)
            return page

        async with self._slot_locks(slot_key):
            return await self._with_recovery(key, _login)

    async def discard_page(self, provider_id: str, account_id: str | None, slot: str) -> None:
        key = self._session_key(provider_id, account_id)
        slot_key: SlotKey = (*key, slot)
        async with self._slot_locks(slot_key):
            current = self._slots.pop(slot_key, None)
        if current is not None:
            await _close_quietly(current.page)

    def remember_url(self, provider_id: str, account_id: str | None, slot: str, url: str) -> None:
        slot_key: SlotKey = (*self._session_key(provider_id, account_id), slot)
        current = self._slots.get(slot_key)
        if current is not None:
            current.url = url

    def slot(self, provider_id: str, account_id: str | None, slot: str) -> PageSlot | None:
        return self._slots.get((*self._session_key(provider_id, account_id), slot))

    def has_session(self, provider_id: str, account_id: str | None) -> bool:
        return self._session_key(provider_id, account_id) in self._sessions

    async def close(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        self._slots.clear()
        for context in sessions:
            await _close_quietly(context)
        stop = getattr(self.driver, "stop", None)
        if stop is not None:
            await stop()


__all__ = ["LOGIN_SLOT", "PageSlot", "SessionPool", "same_location"]
