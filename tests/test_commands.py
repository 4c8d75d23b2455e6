import pytest

from webllm.commands import Command, help_text, parse_commands


@pytest.mark.parametrize(
    "text,names,command_only",
    [
        ("/help", ["help"], True),
        ("  /HELP  ", ["help"], True),
        ("/login", ["login"], True),
        ("/help /login", ["help", "login"], True),
        ("/login please check my status", ["login"], False),
        ("what does /usr/bin contain?", [], False),
        ("/unknown", [], False),
        ("see http://example.com/help", [], False),
    ],
)
def test_parse_commands(text, names, command_only):
    parsed = parse_commands(text)
    assert [c.name for c in parsed.commands] == names
    assert parsed.command_only is command_only


def test_help_argument_and_remainder():
    parsed = parse_commands("/help:login")
    assert parsed.commands == (Command("help", "login"),)
    assert parsed.remainder == ""
    assert not parsed.needs_browser

    mixed = parse_commands("/login then say hi")
    assert mixed.remainder == "then say hi"
    assert mixed.needs_browser


def test_help_text_lists_and_describes_commands():
    overview = help_text()
    assert "/help" in overview
    assert "/login" in overview

    assert help_text("login").startswith("/login\n")
    assert help_text("/login") == help_text("login")
    assert "Unknown command: nope" in help_text("nope")
