"""
Playwright-backed automation driver.

Every provider account gets its own persistent Chromium profile so cookies
and site logins survive restarts.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from playwright.async_api import BrowserContext, Playwright, async_playwright

from ..logging_config import logger
from ..settings import settings

# Hides the most common automation fingerprint before any site script runs.
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
window.chrome = window.chrome || { runtime: {} };
Object.defineProperty(navigator, 'languages', { get: () => ['zh-CN', 'zh', 'en-US', 'en'] });
"""


@dataclass
class LaunchOptions:
    headless: bool = True
    viewport_width: int = 1366
    viewport_height: int = 768
    user_agent: str | None = None
    args: list[str] = field(default_factory=list)

    @classmethod
    def from_settings(cls, provider_id: str) -> "LaunchOptions":
        headless = settings.browser_headless
        if provider_id in settings.headed_providers():
            headless = False
        return cls(
            headless=headless,
            viewport_width=settings.browser_viewport_width,
            viewport_height=settings.browser_viewport_height,
            user_agent=settings.browser_user_agent,
            args=list(settings.browser_args),
        )


class PlaywrightDriver:
    """
    Owns the Playwright runtime and launches persistent contexts on demand.
    """

    def __init__(self) -> None:
        self._playwright: Playwright | None = None
        self._start_lock = asyncio.Lock()

    async def _ensure_started(self) -> Playwright:
        async with self._start_lock:
            if self._playwright is None:
                logger.info("Starting Playwright runtime")
                self._playwright = await async_playwright().start()
            return self._playwright

    async def launch(self, profile_dir: Path, options: LaunchOptions) -> BrowserContext:
        playwright = await self._ensure_started()
        profile_dir.mkdir(parents=True, exist_ok=True)
        logger.info(
            "Launching browser profile %s (headless=%s)", profile_dir, options.headless
        )
        context = await playwright.chromium.launch_persistent_context(
            user_data_dir=str(profile_dir),
            headless=options.headless,
            viewport={"width": options.viewport_width, "height": options.viewport_height},
            user_agent=options.user_agent,
            args=options.args,
        )
        try:
            await context.add_init_script(STEALTH_INIT_SCRIPT)
        except Exception:
            await context.close()
            raise
        return context

    async def stop(self) -> None:
        async with self._start_lock:
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None


__all__ = ["LaunchOptions", "PlaywrightDriver", "STEALTH_INIT_SCRIPT"]
