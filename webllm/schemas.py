from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: str
    # Either plain text or OpenAI-style content parts.
    content: str | list[dict[str, Any]] | None = None

    def text(self) -> str:
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        parts: list[str] = []
        for part in self.content:
            if part.get("type") == "text" and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)


class ChatCompletionRequest(BaseModel):
    model: str = Field(..., description="Gateway model id, e.g. 'deepseek-web-chat'")
    messages: list[ChatMessage] = Field(default_factory=list)
    stream: bool = True
    conversation_id: Optional[str] = Field(
        default=None,
        description="Hint for the conversation to resume when history carries no marker",
    )
    web_search: bool = False

    def latest_user_text(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.text()
        return ""

    def has_assistant_turns(self) -> bool:
        return any(message.role == "assistant" for message in self.messages)


class HealthResponse(BaseModel):
    status: str = "ok"


class ModelInfo(BaseModel):
    id: str
    object: str = "model"
    created: int | None = None
    owned_by: str | None = None


class ModelsResponse(BaseModel):
    object: str = "list"
    data: list[ModelInfo] = Field(default_factory=list)


class ProviderAccountStatus(BaseModel):
    account_id: str
    logged_in: bool | None = None
    checked_at: float | None = None


class ProviderInfo(BaseModel):
    id: str
    name: str
    models: list[str] = Field(default_factory=list)
    supports_chat_login: bool = False
    busy: bool = False
    accounts: list[ProviderAccountStatus] = Field(default_factory=list)


class ProvidersResponse(BaseModel):
    object: str = "list"
    data: list[ProviderInfo] = Field(default_factory=list)


StreamEventKind = Literal["thinking", "answer", "replace"]


__all__ = [
    "ChatMessage",
    "ChatCompletionRequest",
    "HealthResponse",
    "ModelInfo",
    "ModelsResponse",
    "ProviderAccountStatus",
    "ProviderInfo",
    "ProvidersResponse",
    "StreamEventKind",
]
