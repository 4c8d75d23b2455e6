"""
Classification of automation driver errors.

Playwright surfaces most failures as `playwright.async_api.Error` with a
free-form message, so the kind of failure is recovered from the message.
"""

from __future__ import annotations

import asyncio
import enum

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError


class DriverFault(str, enum.Enum):
    TRANSIENT = "transient"
    PAGE_GONE = "page_gone"
    SESSION_DEAD = "session_dead"
    FATAL = "fatal"


_SESSION_DEAD_MARKERS = (
    "Target page, context or browser has been closed",
    "TargetClosedError",
    "Browser closed",
    "Browser has been closed",
    "Context closed",
    "Connection closed",
    "Playwright connection closed",
)

_PAGE_GONE_MARKERS = (
    "Target closed",
    "Page closed",
    "Page has been closed",
    "Session closed",
)

_TRANSIENT_MARKERS = (
    "Cannot find command",
    "Execution context was destroyed",
    "Cannot find context with specified id",
    "frame was detached",
    "Frame was detached",
)


def classify_driver_error(exc: BaseException) -> DriverFault:
    if isinstance(exc, (PlaywrightTimeoutError, asyncio.TimeoutError)):
        return DriverFault.TRANSIENT
    message = str(exc)
    if any(marker in message for marker in _SESSION_DEAD_MARKERS):
        return DriverFault.SESSION_DEAD
    if any(marker in message for marker in _PAGE_GONE_MARKERS):
        return DriverFault.PAGE_GONE
    if any(marker in message for marker in _TRANSIENT_MARKERS):
        return DriverFault.TRANSIENT
    if isinstance(exc, PlaywrightError) and type(exc).__name__ == "TargetClosedError":
        return DriverFault.SESSION_DEAD
    return DriverFault.FATAL


def is_dead_session_error(exc: BaseException) -> bool:
    return classify_driver_error(exc) in (DriverFault.PAGE_GONE, DriverFault.SESSION_DEAD)


__all__ = ["DriverFault", "classify_driver_error", "is_dead_session_error"]
