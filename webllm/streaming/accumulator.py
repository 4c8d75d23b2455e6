from __future__ import annotations

from dataclasses import dataclass, field

THINK = "THINK"
RESPONSE = "RESPONSE"


@dataclass
class ParsedChunk:
    thinking: str = ""
    answer: str = ""
    finished: bool = False

    def __bool__(self) -> bool:
        return bool(self.thinking or self.answer or self.finished)


@dataclass
class StreamAccumulator:
    """
    Per-turn reply state shared by the stream parser and the reconciler.

    `thinking` / `answer` hold what has already been sent to the client.
    `stream_*` hold text decoded from intercepted traffic, which may run
    ahead of or behind the DOM.
    """

    thinking: str = ""
    answer: str = ""
    stream_thinking: str = ""
    stream_answer: str = ""
    stream_finished: bool = False
    fragment_types: dict[int, str] = field(default_factory=dict)
    active_fragment: int | None = None
    last_path: str | None = None
    pending: str = ""

    def split_lines(self, chunk: str) -> list[str]:
        """
        Return complete lines from `chunk`; an unterminated tail is kept
        until the next chunk arrives.
        """
        data = self.pending + chunk
        if not data:
            return []
        lines = data.split("\n")
        self.pending = lines.pop()
        return lines

    def flush_pending(self) -> list[str]:
        if not self.pending:
            return []
        tail, self.pending = self.pending, ""
        return [tail]

    def absorb(self, parsed: ParsedChunk) -> None:
        self.stream_thinking += parsed.thinking
        self.stream_answer += parsed.answer
        if parsed.finished:
            self.stream_finished = True

    # fragment bookkeeping

    def next_fragment_index(self) -> int:
        return max(self.fragment_types) + 1 if self.fragment_types else 0

    def last_fragment_index(self) -> int | None:
        return max(self.fragment_types) if self.fragment_types else None

    def has_fragment_type(self, kind: str) -> bool:
        return kind in self.fragment_types.values()

    # monotone merge

    def advance(self, channel: str, observed: str | None) -> str:
        """
        Offer a full observation of a channel ("thinking" or "answer").
        Returns the newly visible suffix, or "" when the observation does not
        extend what was already emitted.
        """
        if not observed:
            return ""
        emitted = getattr(self, channel)
        if len(observed) <= len(emitted) or not observed.startswith(emitted):
            return ""
        setattr(self, channel, observed)
        return observed[len(emitted):]

    @property
    def has_content(self) -> bool:
        return bool(self.answer or self.thinking)


__all__ = ["THINK", "RESPONSE", "ParsedChunk", "StreamAccumulator"]
