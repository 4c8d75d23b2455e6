"""
Decoders for intercepted chat streams.

Each site frames its reply differently; a classifier turns raw captured
text into thinking/answer increments. Parsing state (fragment types, last
path, partial lines) lives in the StreamAccumulator so classifiers stay
stateless and shareable.
"""

from __future__ import annotations

import json
import re
from typing import Any

from ..logging_config import logger
from .accumulator import RESPONSE, THINK, ParsedChunk, StreamAccumulator

_FRAGMENT_INDEX = re.compile(r"fragments/(-?\d+)")


class FragmentClassifier:
    """
    Strategy interface: decode one captured chunk.
    """

    def feed(self, acc: StreamAccumulator, chunk: str) -> ParsedChunk:
        raise NotImplementedError

    def finish(self, acc: StreamAccumulator) -> ParsedChunk:
        return ParsedChunk()


class DomOnlyClassifier(FragmentClassifier):
    """
    For sites whose traffic is not intercepted; the DOM is the only source.
    """

    def feed(self, acc: StreamAccumulator, chunk: str) -> ParsedChunk:
        return ParsedChunk()


class LineFramedClassifier(FragmentClassifier):
    """
    Base for `event:` / `data:` line framing. Subclasses decode JSON records.
    """

    finish_events: tuple[str, ...] = ()

    def feed(self, acc: StreamAccumulator, chunk: str) -> ParsedChunk:
        out = ParsedChunk()
        for line in acc.split_lines(chunk):
            self._handle_line(acc, line, out)
        return out

    def finish(self, acc: StreamAccumulator) -> ParsedChunk:
        out = ParsedChunk()
        for line in acc.flush_pending():
            self._handle_line(acc, line, out)
        return out

    def _handle_line(self, acc: StreamAccumulator, line: str, out: ParsedChunk) -> None:
        line = line.strip()
        if line.startswith("event:"):
            if line[len("event:"):].strip() in self.finish_events:
                out.finished = True
            return
        if not line.startswith("data:"):
            return
        payload = line[len("data:"):].strip()
        if not payload or payload == "{}":
            return
        if payload == "[DONE]":
            out.finished = True
            return
        try:
            record = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping undecodable stream line: %.100s", payload)
            return
        if isinstance(record, dict):
            self.on_record(acc, record, out)

    def on_record(self, acc: StreamAccumulator, record: dict[str, Any], out: ParsedChunk) -> None:
        raise NotImplementedError


def _emit(out: ParsedChunk, thinking: bool, text: str) -> None:
    if not text:
        return
    if thinking:
        out.thinking += text
    else:
        out.answer += text


class FragmentPathClassifier(LineFramedClassifier):
    """
    Path/operation/value envelopes where the reply is a list of typed
    fragments (THINK or RESPONSE), e.g.

        {"p": "response/fragments", "o": "APPEND", "v": [{"type": "THINK", "content": "..."}]}
        {"p": "response/fragments/-1/content", "v": "more"}
        {"v": "bare continuation of the active fragment"}
    """

    finish_events = ("finish", "close")

    @staticmethod
    def _is_fragment_list(path: str | None) -> bool:
        return bool(path) and (
            path == "fragments" or path == "response/fragments" or path.endswith("/fragments")
        )

    @staticmethod
    def _is_fragment_content(path: str | None) -> bool:
        return bool(path) and "fragments/" in path and path.endswith("/content")

    def _append_fragments(self, acc: StreamAccumulator, items: list[Any], out: ParsedChunk) -> None:
        for fragment in items:
            if not isinstance(fragment, dict) or "type" not in fragment:
                continue
            index = acc.next_fragment_index()
            kind = str(fragment["type"])
            acc.fragment_types[index] = kind
            acc.active_fragment = index
            content = fragment.get("content")
            if isinstance(content, str) and kind in (THINK, RESPONSE):
                _emit(out, kind == THINK, content)

    def _update_content(self, acc: StreamAccumulator, path: str, value: Any, out: ParsedChunk) -> None:
        match = _FRAGMENT_INDEX.search(path)
        if match is None:
            return
        index = int(match.group(1))
        if index == -1:
            index = acc.last_fragment_index()
        if index is None or index not in acc.fragment_types:
            logger.debug("Stream update for unknown fragment: %s", path)
            return
        acc.active_fragment = index
        if isinstance(value, str):
            _emit(out, acc.fragment_types[index] == THINK, value)

    def _bare_is_thinking(self, acc: StreamAccumulator, out: ParsedChunk) -> bool:
        active = acc.active_fragment
        if active is not None and active in acc.fragment_types:
            return acc.fragment_types[active] == THINK
        has_think = acc.has_fragment_type(THINK)
        has_response = acc.has_fragment_type(RESPONSE)
        thinking_so_far = acc.stream_thinking + out.thinking
        answer_so_far = acc.stream_answer + out.answer
        if has_think and not has_response:
            return True
        if thinking_so_far and not answer_so_far:
            return True
        return False

    def on_record(self, acc: StreamAccumulator, record: dict[str, Any], out: ParsedChunk) -> None:
        path = record.get("p")
        operation = record.get("o")
        value = record.get("v")

        if self._is_fragment_list(path) and operation == "APPEND" and isinstance(value, list):
            self._append_fragments(acc, value, out)
        elif self._is_fragment_content(path):
            self._update_content(acc, path, value, out)
        elif "p" not in record and isinstance(value, str):
            _emit(out, self._bare_is_thinking(acc, out), value)
        elif operation == "BATCH" and isinstance(value, list):
            for item in value:
                if not isinstance(item, dict) or "p" not in item or "v" not in item:
                    continue
                item_path = item.get("p")
                if self._is_fragment_list(item_path):
                    if item.get("o") == "APPEND" and isinstance(item["v"], list):
                        self._append_fragments(acc, item["v"], out)
                elif self._is_fragment_content(item_path):
                    self._update_content(acc, item_path, item["v"], out)


class PatchEventClassifier(LineFramedClassifier):
    """
    JSON-patch style deltas addressed at message paths, e.g.

        {"p": "/message/content/parts/0", "o": "append", "v": "Hi"}
        {"v": " there"}                      # continues the last path
        {"p": "", "o": "patch", "v": [{"p": "/message/content/thoughts/0/content", ...}]}
    """

    finish_events = ("done",)

    @staticmethod
    def _path_kind(path: str) -> str | None:
        if "/reasoning" in path or ("/thoughts/" in path and "/content" in path):
            return THINK
        if "/content/parts/" in path:
            return RESPONSE
        return None

    def _append(self, acc: StreamAccumulator, path: str, value: Any, out: ParsedChunk) -> None:
        if isinstance(value, str):
            kind = self._path_kind(path)
            if kind is not None:
                acc.last_path = path
                _emit(out, kind == THINK, value)
        elif isinstance(value, list) and "/thoughts" in path:
            for thought in value:
                if isinstance(thought, dict) and isinstance(thought.get("content"), str):
                    _emit(out, True, thought["content"])

    def _apply_ops(self, acc: StreamAccumulator, items: list[Any], out: ParsedChunk) -> None:
        for item in items:
            if not isinstance(item, dict):
                continue
            if item.get("o") == "append" and isinstance(item.get("p"), str):
                self._append(acc, item["p"], item.get("v"), out)

    def _message_snapshot(self, message: dict[str, Any], out: ParsedChunk) -> None:
        content = message.get("content")
        if not isinstance(content, dict) or content.get("content_type") != "thoughts":
            return
        for thought in content.get("thoughts") or []:
            if isinstance(thought, dict) and isinstance(thought.get("content"), str):
                _emit(out, True, thought["content"])

    def on_record(self, acc: StreamAccumulator, record: dict[str, Any], out: ParsedChunk) -> None:
        if "type" in record:
            return
        path = record.get("p")
        operation = record.get("o")
        value = record.get("v")

        if isinstance(path, str) and operation == "append":
            self._append(acc, path, value, out)
        elif operation == "patch" and isinstance(value, list):
            self._apply_ops(acc, value, out)
        elif "p" not in record and "o" not in record:
            if isinstance(value, str):
                kind = self._path_kind(acc.last_path) if acc.last_path else RESPONSE
                _emit(out, kind == THINK, value)
            elif isinstance(value, list):
                self._apply_ops(acc, value, out)
            elif isinstance(value, dict) and isinstance(value.get("message"), dict):
                self._message_snapshot(value["message"], out)


__all__ = [
    "FragmentClassifier",
    "DomOnlyClassifier",
    "LineFramedClassifier",
    "FragmentPathClassifier",
    "PatchEventClassifier",
]
