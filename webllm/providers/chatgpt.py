from __future__ import annotations

from typing import Any

from ..browser.capture import CaptureSpec
from ..logging_config import logger
from ..streaming.classifiers import FragmentClassifier, PatchEventClassifier
from .base import LocatorCodec, ModelSpec, SiteProfile, WebChatProvider

MODEL_SWITCHER = "button[data-testid='model-switcher-dropdown-button']"
THINKING_OPTION = "div[role='menuitem']:has-text('Thinking'), div[role='menuitem']:has-text('思考')"
INSTANT_OPTION = "div[role='menuitem']:has-text('Instant'), div[role='menuitem']:has-text('即时')"


class ChatGPTProvider(WebChatProvider):
    id = "openai"
    name = "ChatGPT"
    site = SiteProfile(
        default_url="https://chatgpt.com/",
        input_selector="div#prompt-textarea[contenteditable='true'], div.ProseMirror#prompt-textarea",
        answer_selector="[data-message-author-role='assistant'] .markdown",
        thinking_selector=(
            "[data-message-author-role='assistant'] [class*='reasoning'], "
            "[data-message-author-role='assistant'] [class*='thinking']"
        ),
        send_selector="button[data-testid='send-button']",
        stop_selector="button[data-testid='stop-button']",
        new_chat_selector="a[data-testid='create-new-chat-button']",
        login_marker_selector="button[data-testid='login-button']",
    )
    codec = LocatorCodec("https://chatgpt.com", "/c/")
    models = (
        ModelSpec("gpt-web-chat", "ChatGPT"),
        ModelSpec("gpt-web-reasoner", "ChatGPT Thinking", thinking=True),
    )
    capture = CaptureSpec(
        variable="__webllmChatgptStream",
        url_patterns=("/backend-api/conversation", "/backend-api/f/conversation"),
    )

    def classifier(self) -> FragmentClassifier:
        return PatchEventClassifier()

    async def configure_model(self, page: Any, model: ModelSpec, web_search: bool) -> None:
        switcher = await self._first_visible(page, MODEL_SWITCHER)
        if switcher is None:
            logger.debug("ChatGPT model switcher not found, keeping current model")
            return
        await switcher.click()
        option = await self._first_visible(page, THINKING_OPTION if model.thinking else INSTANT_OPTION)
        if option is not None:
            await option.click()
        else:
            await page.keyboard.press("Escape")


__all__ = ["ChatGPTProvider"]
