"""
Conversation continuity through reply text.

Clients are stateless, so every assistant reply ends with a fenced block
carrying the opaque id of the browser conversation it came from:

    ```webllm-conversation-id
    <id>
    ```

On the next turn the history is scanned for that block and the browser tab
showing the same conversation is resumed.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from .schemas import ChatMessage

CONVERSATION_TAG = "webllm-conversation-id"
SYSTEM_MESSAGE_TAG = "webllm-system-message"
LOGIN_ID_PREFIX = "login-"

_FENCE = "```"
_MARKER = _FENCE + CONVERSATION_TAG
_SYSTEM_MARKER = _FENCE + SYSTEM_MESSAGE_TAG


@dataclass(frozen=True)
class ConversationHandle:
    opaque_id: str | None
    is_new: bool

    @property
    def is_login(self) -> bool:
        return bool(self.opaque_id) and self.opaque_id.startswith(LOGIN_ID_PREFIX)


def _parse_block_at(content: str, start: int) -> str | None:
    """
    Parse the block whose marker begins at `start`. Returns the first usable
    line of the block body, or None when the block is malformed.
    """
    pos = start + len(_MARKER)
    while pos < len(content) and content[pos] in "\r\n":
        pos += 1
    end = content.find(_FENCE, pos)
    if end == -1:
        return None
    for line in content[pos:end].strip().splitlines():
        candidate = line.strip()
        if not candidate or _FENCE in candidate or CONVERSATION_TAG in candidate:
            continue
        return candidate
    return None


def extract_from_content(content: str | None, *, exclude_login: bool = False) -> str | None:
    """
    Return the conversation id embedded in a single message body.
    The last well-formed block in the text wins.
    """
    if not content or _MARKER not in content:
        return None
    idx = content.rfind(_MARKER)
    while idx != -1:
        found = _parse_block_at(content, idx)
        if found is not None:
            if exclude_login and found.startswith(LOGIN_ID_PREFIX):
                return None
            return found
        idx = content.rfind(_MARKER, 0, idx)
    return None


def extract_conversation_id(
    messages: Iterable[ChatMessage], *, exclude_login: bool = False
) -> str | None:
    """
    Scan assistant messages newest to oldest and return the first embedded id.
    With `exclude_login`, a synthetic login id found first counts as "no id".
    """
    for message in reversed(list(messages)):
        if message.role != "assistant":
            continue
        found = extract_from_content(message.text())
        if found is None:
            continue
        if exclude_login and found.startswith(LOGIN_ID_PREFIX):
            return None
        return found
    return None


def embed_conversation_id(conversation_id: str) -> str:
    return f"\n\n{_MARKER}\n{conversation_id}\n{_FENCE}\n\n"


def is_new_conversation(conversation_id: str | None) -> bool:
    if conversation_id is None:
        return True
    stripped = conversation_id.strip()
    return not stripped or stripped.startswith(LOGIN_ID_PREFIX)


def new_login_conversation_id() -> str:
    return f"{LOGIN_ID_PREFIX}{uuid.uuid4()}"


def format_system_message(text: str) -> str:
    """
    Wrap gateway-authored text so clients can tell it apart from model output.
    Already wrapped text is returned unchanged.
    """
    if text.lstrip().startswith(_SYSTEM_MARKER):
        return text
    return f"{_SYSTEM_MARKER}\n{text.strip()}\n{_FENCE}"


def resolve_handle(
    messages: list[ChatMessage], explicit_id: str | None = None
) -> ConversationHandle:
    """
    Derive the conversation handle for this turn.

    An id found in the history always wins. The explicit id is only a hint for
    clients that strip the marker block: it is honoured when the history has
    earlier assistant turns but no block.
    """
    opaque_id = extract_conversation_id(messages)
    if opaque_id is None and explicit_id and explicit_id.strip():
        if any(m.role == "assistant" for m in messages):
            opaque_id = explicit_id.strip()
    return ConversationHandle(opaque_id=opaque_id, is_new=is_new_conversation(opaque_id))


__all__ = [
    "CONVERSATION_TAG",
    "SYSTEM_MESSAGE_TAG",
    "LOGIN_ID_PREFIX",
    "ConversationHandle",
    "extract_from_content",
    "extract_conversation_id",
    "embed_conversation_id",
    "is_new_conversation",
    "new_login_conversation_id",
    "format_system_message",
    "resolve_handle",
]
