from webllm.continuity import (
    LOGIN_ID_PREFIX,
    embed_conversation_id,
    extract_conversation_id,
    extract_from_content,
    format_system_message,
    is_new_conversation,
    new_login_conversation_id,
    resolve_handle,
)
from webllm.schemas import ChatMessage


def _history(*pairs):
    return [ChatMessage(role=role, content=content) for role, content in pairs]


def test_extracts_id_from_last_assistant_message():
    messages = _history(
        ("user", "hi"),
        ("assistant", "Hello!\n\n```webllm-conversation-id\nabc123\n```\n"),
        ("user", "how are you?"),
    )
    assert extract_conversation_id(messages) == "abc123"
    assert is_new_conversation("abc123") is False


def test_newest_assistant_message_wins():
    messages = _history(
        ("assistant", embed_conversation_id("old")),
        ("user", "next"),
        ("assistant", "reply" + embed_conversation_id("new")),
    )
    assert extract_conversation_id(messages) == "new"


def test_user_messages_are_ignored():
    messages = _history(("user", embed_conversation_id("spoofed")))
    assert extract_conversation_id(messages) is None


def test_login_ids_can_be_excluded():
    login_id = f"{LOGIN_ID_PREFIX}1234"
    messages = _history(("assistant", "Choose a method" + embed_conversation_id(login_id)))

    assert extract_conversation_id(messages) == login_id
    assert extract_conversation_id(messages, exclude_login=True) is None
    assert is_new_conversation(login_id) is True


def test_malformed_blocks_are_skipped():
    assert extract_from_content("```webllm-conversation-id\nabc") is None
    assert extract_from_content("```webllm-conversation-id\n\n```") is None
    assert extract_from_content("no marker here") is None
    # An unterminated trailing block does not hide an earlier complete one.
    text = embed_conversation_id("good") + "```webllm-conversation-id\nbroken"
    assert extract_from_content(text) == "good"


def test_embed_then_extract_returns_same_id():
    reply = "Sure." + embed_conversation_id("f3a9-77")
    assert extract_from_content(reply) == "f3a9-77"
    assert reply.count("```webllm-conversation-id") == 1


def test_extract_handles_content_parts():
    message = ChatMessage(
        role="assistant",
        content=[{"type": "text", "text": "ok" + embed_conversation_id("parts-id")}],
    )
    assert extract_conversation_id([message]) == "parts-id"


def test_is_new_conversation():
    assert is_new_conversation(None)
    assert is_new_conversation("")
    assert is_new_conversation("   ")
    assert is_new_conversation(new_login_conversation_id())
    assert not is_new_conversation("real-thread")


def test_format_system_message_is_idempotent():
    once = format_system_message("Choose a login method")
    assert once.startswith("```webllm-system-message\n")
    assert once.endswith("```")
    assert format_system_message(once) == once


def test_resolve_handle_for_empty_history():
    handle = resolve_handle(_history(("user", "hello")))
    assert handle.opaque_id is None
    assert handle.is_new


def test_resolve_handle_prefers_history_over_explicit_id():
    messages = _history(
        ("user", "hi"),
        ("assistant", "x" + embed_conversation_id("from-history")),
        ("user", "again"),
    )
    handle = resolve_handle(messages, "from-header")
    assert handle.opaque_id == "from-history"
    assert not handle.is_new


def test_resolve_handle_uses_explicit_id_only_with_prior_turns():
    stripped = _history(("user", "hi"), ("assistant", "reply"), ("user", "again"))
    assert resolve_handle(stripped, "hinted").opaque_id == "hinted"

    first_turn = _history(("user", "hi"))
    handle = resolve_handle(first_turn, "hinted")
    assert handle.opaque_id is None
    assert handle.is_new


def test_resolve_handle_marks_login_dialogs():
    login_id = new_login_conversation_id()
    handle = resolve_handle(_history(("assistant", embed_conversation_id(login_id)), ("user", "2")))
    assert handle.opaque_id == login_id
    assert handle.is_login
    assert handle.is_new
