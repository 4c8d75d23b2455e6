"""
In-page capture of streamed chat responses.

The hook wraps `fetch` (and optionally `XMLHttpRequest`) inside the page and
copies every `text/event-stream` chunk of matching requests into a window
array. The reconciler drains that array on each poll.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

_INSTALL_SCRIPT = """
(config) => {
  const flag = config.variable + '__hooked';
  if (window[flag]) { return false; }
  window[flag] = true;
  window[config.variable] = window[config.variable] || [];
  const matches = (url) => typeof url === 'string' && config.patterns.some((p) => url.includes(p));
  const push = (chunk) => { if (chunk) { window[config.variable].push(chunk); } };

  const originalFetch = window.fetch;
  window.fetch = function (...args) {
    const target = args[0];
    const url = typeof target === 'string' ? target : (target && target.url);
    const pending = originalFetch.apply(this, args);
    if (!matches(url)) { return pending; }
    return pending.then((response) => {
      const type = response.headers.get('content-type') || '';
      if (!type.includes('text/event-stream') || !response.body) { return response; }
      const reader = response.clone().body.getReader();
      const decoder = new TextDecoder();
      const pump = () => reader.read().then(({ done, value }) => {
        if (done) { return; }
        push(decoder.decode(value, { stream: true }));
        pump();
      }).catch(() => {});
      pump();
      return response;
    });
  };

  if (config.xhr) {
    const originalOpen = XMLHttpRequest.prototype.open;
    const originalSend = XMLHttpRequest.prototype.send;
    XMLHttpRequest.prototype.open = function (method, url, ...rest) {
      this.__capturedUrl = url;
      return originalOpen.apply(this, [method, url, ...rest]);
    };
    XMLHttpRequest.prototype.send = function (...args) {
      if (matches(this.__capturedUrl)) {
        let seen = 0;
        this.addEventListener('readystatechange', () => {
          if (this.readyState !== 3 && this.readyState !== 4) { return; }
          const type = this.getResponseHeader('content-type') || '';
          if (!type.includes('text/event-stream')) { return; }
          const text = this.responseText || '';
          if (text.length > seen) {
            push(text.substring(seen));
            seen = text.length;
          }
        });
      }
      return originalSend.apply(this, args);
    };
  }
  return true;
}
"""

_DRAIN_SCRIPT = """
(variable) => {
  const data = window[variable];
  if (!data || data.length === 0) { return ''; }
  window[variable] = [];
  return data.join('');
}
"""

_RESET_SCRIPT = """
(variable) => { window[variable] = []; }
"""


@dataclass(frozen=True)
class CaptureSpec:
    variable: str
    url_patterns: tuple[str, ...] = field(default_factory=tuple)
    intercept_xhr: bool = False


async def install_capture(page: Any, spec: CaptureSpec) -> bool:
    """
    Install the hook on the current document. Returns False when it was
    already present.
    """
    return bool(
        await page.evaluate(
            _INSTALL_SCRIPT,
            {
                "variable": spec.variable,
                "patterns": list(spec.url_patterns),
                "xhr": spec.intercept_xhr,
            },
        )
    )


async def reset_capture(page: Any, spec: CaptureSpec) -> None:
    await page.evaluate(_RESET_SCRIPT, spec.variable)


async def drain_capture(page: Any, spec: CaptureSpec) -> str:
    """
    Return and clear everything captured since the last drain. Chunks are
    concatenated as received, so a line may be split across two drains.
    """
    result = await page.evaluate(_DRAIN_SCRIPT, spec.variable)
    return result or ""


__all__ = ["CaptureSpec", "install_capture", "reset_capture", "drain_capture"]
