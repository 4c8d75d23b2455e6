"""
Read-only view of a chat page used while a reply is being generated.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .capture import CaptureSpec, drain_capture

if TYPE_CHECKING:
    from ..providers.base import SiteProfile

# Collects everything the reconciler needs from the DOM in one round trip.
_SNAPSHOT_SCRIPT = """
(cfg) => {
  const visible = (el) => !!el && !!(el.offsetWidth || el.offsetHeight || el.getClientRects().length);
  const anyVisible = (sel) => !!sel && Array.from(document.querySelectorAll(sel)).some(visible);
  const outsideThinking = (el) => !cfg.thinking || !el.closest(cfg.thinking);
  const answers = cfg.answer
    ? Array.from(document.querySelectorAll(cfg.answer)).filter(outsideThinking)
    : [];
  const thoughts = cfg.thinking ? Array.from(document.querySelectorAll(cfg.thinking)) : [];
  const lastText = (nodes, baseline) =>
    nodes.length > baseline ? (nodes[nodes.length - 1].innerText || '') : null;
  return {
    answerCount: answers.length,
    thinkingCount: thoughts.length,
    answer: lastText(answers, cfg.answerBaseline),
    thinking: lastText(thoughts, cfg.thinkingBaseline),
    generating: anyVisible(cfg.stop),
    canSend: cfg.send ? anyVisible(cfg.send) : true,
  };
}
"""


@dataclass(frozen=True)
class DomSnapshot:
    answer: str | None = None
    thinking: str | None = None
    generating: bool = False
    can_send: bool = True
    answer_count: int = 0
    thinking_count: int = 0


class PageObserver:
    def __init__(self, page: Any, site: "SiteProfile", capture: CaptureSpec | None = None):
        self.page = page
        self.site = site
        self.capture = capture
        self._answer_baseline = 0
        self._thinking_baseline = 0

    def _config(self) -> dict[str, Any]:
        return {
            "answer": self.site.answer_selector,
            "thinking": self.site.thinking_selector,
            "stop": self.site.stop_selector,
            "send": self.site.send_selector,
            "answerBaseline": self._answer_baseline,
            "thinkingBaseline": self._thinking_baseline,
        }

    async def mark_baseline(self) -> None:
        """
        Remember how many reply blocks exist before the message is sent, so
        that text from earlier turns is never mistaken for the new reply.
        """
        snap = await self.snapshot()
        self._answer_baseline = snap.answer_count
        self._thinking_baseline = snap.thinking_count

    async def snapshot(self) -> DomSnapshot:
        raw = await self.page.evaluate(_SNAPSHOT_SCRIPT, self._config()) or {}
        return DomSnapshot(
            answer=raw.get("answer"),
            thinking=raw.get("thinking"),
            generating=bool(raw.get("generating")),
            can_send=bool(raw.get("canSend", True)),
            answer_count=int(raw.get("answerCount") or 0),
            thinking_count=int(raw.get("thinkingCount") or 0),
        )

    async def drain_stream(self) -> str:
        if self.capture is None:
            return ""
        return await drain_capture(self.page, self.capture)

    def current_url(self) -> str:
        return self.page.url

    def is_closed(self) -> bool:
        return self.page.is_closed()


__all__ = ["DomSnapshot", "PageObserver"]
