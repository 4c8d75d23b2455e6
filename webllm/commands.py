"""
In-chat commands.

A user message made only of commands (``/help``, ``/help:login``, ``/login``)
is answered by the gateway itself and never typed into the chat site.
Commands mixed with other text are not interpreted; the message is sent to
the model as written. Unknown ``/words`` are ordinary text, so paths such as
``/usr/bin`` are left alone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_COMMAND_RE = re.compile(r"(?<!\S)/([A-Za-z][\w-]*)(?::(\S+))?(?=\s|$)")


@dataclass(frozen=True)
class CommandInfo:
    name: str
    description: str
    usage: str
    needs_browser: bool


COMMANDS: dict[str, CommandInfo] = {
    "help": CommandInfo(
        name="help",
        description="List the available commands, or describe one of them.",
        usage="/help or /help:<command>",
        needs_browser=False,
    ),
    "login": CommandInfo(
        name="login",
        description=(
            "Check whether the provider account is logged in and start the "
            "login dialog when it is not."
        ),
        usage="/login",
        needs_browser=True,
    ),
}


@dataclass(frozen=True)
class Command:
    name: str
    argument: str | None = None

    @property
    def info(self) -> CommandInfo:
        return COMMANDS[self.name]


@dataclass(frozen=True)
class ParsedMessage:
    commands: tuple[Command, ...]
    remainder: str

    @property
    def command_only(self) -> bool:
        return bool(self.commands) and not self.remainder

    @property
    def needs_browser(self) -> bool:
        return any(command.info.needs_browser for command in self.commands)

    def named(self, name: str) -> list[Command]:
        return [command for command in self.commands if command.name == name]


def parse_commands(text: str | None) -> ParsedMessage:
    text = text or ""
    commands: list[Command] = []
    pieces: list[str] = []
    last = 0
    for match in _COMMAND_RE.finditer(text):
        name = match.group(1).lower()
        if name not in COMMANDS:
            continue
        commands.append(Command(name, match.group(2)))
        pieces.append(text[last:match.start()])
        last = match.end()
    pieces.append(text[last:])
    return ParsedMessage(tuple(commands), "".join(pieces).strip())


def help_text(topic: str | None = None) -> str:
    if topic:
        info = COMMANDS.get(topic.lstrip("/").lower())
        if info is None:
            return f"Unknown command: {topic}\n\nSend /help to list the available commands."
        return f"/{info.name}\n\n{info.description}\n\nUsage: {info.usage}"

    lines = ["Available commands:", ""]
    for info in COMMANDS.values():
        lines.append(f"/{info.name}: {info.description}")
        lines.append(f"    Usage: {info.usage}")
    lines += [
        "",
        "A message made only of commands is answered by the gateway. "
        "Commands mixed with other text are sent to the model as written.",
    ]
    return "\n".join(lines)


__all__ = ["COMMANDS", "Command", "CommandInfo", "ParsedMessage", "help_text", "parse_commands"]
