from __future__ import annotations

from typing import Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..browser.capture import CaptureSpec
from ..logging_config import logger
from ..login.state import LoginFailureReason, LoginOutcome
from ..settings import settings
from ..streaming.classifiers import FragmentClassifier, FragmentPathClassifier
from .base import LocatorCodec, ModelSpec, SiteProfile, WebChatProvider

LOGIN_API_PATH = "/api/v0/users/login"

THINKING_TOGGLE = (
    "div[role='button'].ds-toggle-button:has-text('深度思考'), "
    "button:has-text('深度思考'), "
    ".ds-toggle-button:has-text('DeepThink')"
)
SEARCH_TOGGLE = (
    "div[role='button'].ds-toggle-button:has-text('联网搜索'), "
    "button:has-text('联网搜索'), "
    ".ds-toggle-button:has-text('Search')"
)
PASSWORD_TAB = ".ds-tab:has-text('密码登录'), .ds-tab:has-text('Password')"
ACCOUNT_INPUT = (
    "input[placeholder*='账号'], input[placeholder*='邮箱'], input[placeholder*='用户名'], "
    "input[type='email'], input[type='text']"
)
PASSWORD_INPUT = "input[type='password']"
LOGIN_BUTTON = ".ds-sign-up-form__register-button, button:has-text('登录'), button:has-text('Log in')"


def parse_login_response(payload: Any) -> LoginOutcome:
    """
    Interpret the site's login API answer: success needs both the transport
    code and the business code to be zero.
    """
    if not isinstance(payload, dict):
        return LoginOutcome.failed(LoginFailureReason.UNKNOWN, "unexpected login response")
    code = payload.get("code", -1)
    data = payload.get("data")
    if isinstance(data, dict):
        biz_code = data.get("biz_code", 0)
        biz_msg = data.get("biz_msg") if isinstance(data.get("biz_msg"), str) else None
        if code == 0 and biz_code == 0:
            return LoginOutcome.ok()
        return LoginOutcome.failed(LoginFailureReason.WRONG_CREDENTIALS, biz_msg or None)
    if code == 0:
        return LoginOutcome.ok()
    return LoginOutcome.failed(LoginFailureReason.UNKNOWN, payload.get("msg") or None)


class DeepSeekProvider(WebChatProvider):
    id = "deepseek"
    name = "DeepSeek"
    site = SiteProfile(
        default_url="https://chat.deepseek.com/",
        input_selector="textarea.ds-scroll-area, textarea#chat-input",
        answer_selector=".ds-markdown",
        thinking_selector=".ds-think-content",
        send_selector="div[role='button'].ds-button--primary:not(.ds-button--disabled)",
        stop_selector="div[role='button'] svg rect, .ds-icon-button--stop",
        new_chat_selector="button:has-text('新对话'), button:has-text('New Chat'), div[role='button']:has-text('开启新对话')",
        login_marker_selector=".ds-sign-up-form__register-button",
    )
    codec = LocatorCodec("https://chat.deepseek.com", "/a/chat/s/", aliases=("/chat/",))
    models = (
        ModelSpec("deepseek-web-chat", "DeepSeek Chat"),
        ModelSpec("deepseek-web-reasoner", "DeepSeek DeepThink", thinking=True),
    )
    capture = CaptureSpec(
        variable="__webllmDeepseekStream",
        url_patterns=("/api/v0/chat/completion",),
        intercept_xhr=True,
    )
    supports_chat_login = True

    def classifier(self) -> FragmentClassifier:
        return FragmentPathClassifier()

    async def configure_model(self, page: Any, model: ModelSpec, web_search: bool) -> None:
        if not await self._set_toggle(page, THINKING_TOGGLE, model.thinking):
            logger.warning("DeepSeek thinking toggle not found; model=%s", model.id)
        await self._set_toggle(page, SEARCH_TOGGLE, web_search)

    async def submit_login(self, page: Any, account: str, password: str) -> LoginOutcome:
        tab = await self._first_visible(page, PASSWORD_TAB)
        if tab is not None:
            await tab.click()

        account_box = await self._first_visible(page, ACCOUNT_INPUT)
        password_box = await self._first_visible(page, PASSWORD_INPUT)
        button = await self._first_visible(page, LOGIN_BUTTON)
        if account_box is None or password_box is None or button is None:
            return LoginOutcome.failed(LoginFailureReason.FORM_NOT_FOUND)

        await account_box.fill(account)
        await password_box.fill(password)

        timeout_ms = settings.login_wait_seconds * 1000
        try:
            async with page.expect_response(
                lambda response: LOGIN_API_PATH in response.url, timeout=timeout_ms
            ) as response_info:
                await button.click()
            response = await response_info.value
            outcome = parse_login_response(await response.json())
        except PlaywrightTimeoutError:
            logger.warning("DeepSeek login API did not answer in %.0fs", settings.login_wait_seconds)
            outcome = None
        except ValueError:
            outcome = LoginOutcome.failed(LoginFailureReason.UNKNOWN, "unreadable login response")

        if outcome is not None and not outcome.success:
            return outcome
        if await self._wait_visible(page, self.site.input_selector, timeout_ms):
            return LoginOutcome.ok()
        return LoginOutcome.failed(LoginFailureReason.TIMEOUT)


__all__ = ["DeepSeekProvider", "parse_login_response"]
