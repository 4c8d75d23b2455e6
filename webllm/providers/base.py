"""
Provider interface.

A provider wraps one web chat product: where it lives, how its pages are
laid out, how to type a message into it and how to read the reply back.
"""

from __future__ import annotations

import asyncio
from abc import ABC
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..browser.capture import CaptureSpec, install_capture, reset_capture
from ..browser.observer import PageObserver
from ..logging_config import logger
from ..login.state import LoginFailureReason, LoginOutcome
from ..settings import settings
from ..streaming.classifiers import DomOnlyClassifier, FragmentClassifier


@dataclass(frozen=True)
class SiteProfile:
    default_url: str
    input_selector: str
    answer_selector: str
    send_selector: str | None = None
    stop_selector: str | None = None
    thinking_selector: str | None = None
    new_chat_selector: str | None = None
    # Visible only when the account is logged out.
    login_marker_selector: str | None = None
    login_url: str | None = None


@dataclass(frozen=True)
class ModelSpec:
    id: str
    label: str
    thinking: bool = False


class LocatorCodec:
    """
    Maps an opaque conversation id to the page URL showing it and back.

    `prefix` is the path segment before the id, e.g. "/a/chat/s/".
    Additional `aliases` are accepted when parsing.
    """

    def __init__(self, base_url: str, prefix: str, *, aliases: tuple[str, ...] = ()) -> None:
        self.base_url = base_url.rstrip("/")
        self.prefix = prefix
        self.aliases = aliases
        self.host = urlsplit(self.base_url).netloc

    def to_locator(self, conversation_id: str) -> str:
        return f"{self.base_url}{self.prefix}{conversation_id}"

    def from_url(self, url: str | None) -> str | None:
        if not url:
            return None
        parts = urlsplit(url)
        if self.host and parts.netloc and parts.netloc != self.host:
            return None
        path = parts.path
        for marker in (self.prefix, *self.aliases):
            idx = path.find(marker)
            if idx < 0:
                continue
            candidate = path[idx + len(marker):].strip("/")
            if candidate.startswith("s/"):
                candidate = candidate[2:]
            candidate = candidate.split("/", 1)[0].strip()
            if candidate:
                return candidate
        return None


class WebChatProvider(ABC):
    id: str
    name: str
    site: SiteProfile
    codec: LocatorCodec
    models: tuple[ModelSpec, ...] = ()
    capture: CaptureSpec | None = None
    supports_chat_login: bool = False

    def __init__(self) -> None:
        self.action_timeout_ms = settings.drive_timeout_seconds * 1000

    # ---- catalogue ------------------------------------------------------

    def supported_models(self) -> list[str]:
        return [model.id for model in self.models]

    def model(self, model_id: str) -> ModelSpec | None:
        for model in self.models:
            if model.id == model_id:
                return model
        return None

    def classifier(self) -> FragmentClassifier:
        return DomOnlyClassifier()

    def observer(self, page: Any) -> PageObserver:
        return PageObserver(page, self.site, self.capture)

    # ---- page helpers ---------------------------------------------------

    async def _first_visible(self, page: Any, selectors: str | None) -> Any | None:
        if not selectors:
            return None
        locator = page.locator(selectors).first
        if await locator.count() > 0 and await locator.is_visible():
            return locator
        return None

    async def _set_toggle(self, page: Any, selectors: str, enabled: bool) -> bool:
        """
        Flip a site toggle button into the requested state. Returns False when
        the toggle is not on the page.
        """
        toggle = await self._first_visible(page, selectors)
        if toggle is None:
            return False
        classes = await toggle.get_attribute("class") or ""
        pressed = await toggle.get_attribute("aria-pressed")
        active = pressed == "true" or any(
            token in classes for token in ("active", "selected", "checked")
        )
        if active != enabled:
            await toggle.click()
            await asyncio.sleep(0.5)
        return True

    async def _wait_visible(self, page: Any, selector: str, timeout_ms: float) -> bool:
        try:
            await page.locator(selector).first.wait_for(state="visible", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    # ---- authentication -------------------------------------------------

    async def check_authenticated(self, page: Any) -> bool:
        """
        Logged in when the chat input shows up and no login control does.
        """
        marker = self.site.login_marker_selector
        either = f"{self.site.input_selector}, {marker}" if marker else self.site.input_selector
        if not await self._wait_visible(page, either, self.action_timeout_ms):
            return False
        if marker and await self._first_visible(page, marker) is not None:
            return False
        return await self._first_visible(page, self.site.input_selector) is not None

    async def submit_login(self, page: Any, account: str, password: str) -> LoginOutcome:
        return LoginOutcome.failed(
            LoginFailureReason.FORM_NOT_FOUND, f"{self.name} does not support chat login"
        )

    # ---- driving a turn -------------------------------------------------

    async def prepare_page(self, page: Any) -> None:
        if self.capture is not None:
            await install_capture(page, self.capture)
            await reset_capture(page, self.capture)

    async def start_new_chat(self, page: Any) -> None:
        button = await self._first_visible(page, self.site.new_chat_selector)
        if button is not None:
            await button.click()
            await asyncio.sleep(0.5)

    async def configure_model(self, page: Any, model: ModelSpec, web_search: bool) -> None:
        """
        Adjust per-turn site options (reasoning mode, web search). The default
        site has none.
        """

    async def type_message(self, page: Any, text: str) -> None:
        box = page.locator(self.site.input_selector).first
        await box.wait_for(state="visible", timeout=self.action_timeout_ms)
        await box.click()
        await box.fill(text)

    async def send_message(self, page: Any) -> None:
        button = await self._first_visible(page, self.site.send_selector)
        if button is not None:
            await button.click()
        else:
            await page.locator(self.site.input_selector).first.press("Enter")

    async def drive_turn(
        self,
        page: Any,
        model: ModelSpec,
        text: str,
        *,
        is_new: bool,
        web_search: bool = False,
    ) -> PageObserver:
        """
        Type and send the user's message. Returns an observer whose baseline
        excludes replies that were already on the page.
        """
        if is_new:
            await self.start_new_chat(page)
        await self.configure_model(page, model, web_search)
        await self.prepare_page(page)
        observer = self.observer(page)
        await observer.mark_baseline()
        await self.type_message(page, text)
        await self.send_message(page)
        logger.info("%s: message sent (%s chars, model=%s)", self.id, len(text), model.id)
        return observer

    def conversation_id_from_url(self, url: str) -> str | None:
        return self.codec.from_url(url)


__all__ = ["SiteProfile", "ModelSpec", "LocatorCodec", "WebChatProvider"]
