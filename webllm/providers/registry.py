from __future__ import annotations

from collections.abc import Iterable

from .base import WebChatProvider
from .chatgpt import ChatGPTProvider
from .deepseek import DeepSeekProvider
from .gemini import GeminiProvider


class ProviderRegistry:
    def __init__(self, providers: Iterable[WebChatProvider]) -> None:
        self._providers: dict[str, WebChatProvider] = {}
        self._by_model: dict[str, WebChatProvider] = {}
        for provider in providers:
            self._providers[provider.id] = provider
            for model_id in provider.supported_models():
                self._by_model[model_id] = provider

    def get(self, provider_id: str) -> WebChatProvider | None:
        return self._providers.get(provider_id)

    def get_by_model(self, model_id: str) -> WebChatProvider | None:
        return self._by_model.get(model_id)

    def all(self) -> list[WebChatProvider]:
        return list(self._providers.values())

    def model_ids(self) -> list[str]:
        return list(self._by_model)


def default_registry() -> ProviderRegistry:
    return ProviderRegistry([DeepSeekProvider(), ChatGPTProvider(), GeminiProvider()])


__all__ = ["ProviderRegistry", "default_registry"]
