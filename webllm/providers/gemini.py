from __future__ import annotations

from .base import LocatorCodec, ModelSpec, SiteProfile, WebChatProvider


class GeminiProvider(WebChatProvider):
    """
    Gemini streams over a batched RPC channel that is not worth decoding;
    replies are read from the DOM only. Login happens in the browser window
    (Google sign-in cannot be driven from chat), so an unauthenticated
    account is reported as login_required.
    """

    id = "gemini"
    name = "Gemini"
    site = SiteProfile(
        default_url="https://gemini.google.com/app",
        input_selector="rich-textarea div[role='textbox'], div[role='textbox'][contenteditable='true']",
        answer_selector="model-response message-content",
        thinking_selector="model-thoughts .thoughts-content",
        send_selector="input-container button.send-button:not(.stop)",
        stop_selector=".send-button.stop, .bard-avatar.thinking",
        new_chat_selector=(
            "side-navigation-content button:has-text('New chat'), "
            "[aria-label*='New chat'], [aria-label*='新对话']"
        ),
        login_marker_selector="a[href*='ServiceLogin'], a:has-text('Sign in'), button:has-text('Sign in')",
    )
    codec = LocatorCodec("https://gemini.google.com", "/app/", aliases=("/chat/",))
    models = (ModelSpec("gemini-web-chat", "Gemini"),)


__all__ = ["GeminiProvider"]
