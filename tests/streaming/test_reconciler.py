import asyncio

import pytest

from fakes import FAST_TIMING, FakeClock, FakeObserver

from webllm.browser.observer import DomSnapshot
from webllm.providers.base import LocatorCodec
from webllm.streaming.classifiers import DomOnlyClassifier, FragmentPathClassifier
from webllm.streaming.reconciler import (
    END_ERROR,
    END_PAGE_GONE,
    END_STABLE,
    END_STREAM_FINISHED,
    END_TIMEOUT,
    END_UI_IDLE,
    StreamEvent,
    StreamReconciler,
)

CODEC = LocatorCodec("https://chat.deepseek.com", "/a/chat/s/")
GENERATING = dict(generating=True, can_send=False)


def _reconciler(observer, classifier=None, clock=None):
    clock = clock or FakeClock()
    return StreamReconciler(
        observer,
        classifier or DomOnlyClassifier(),
        locator_to_id=CODEC.from_url,
        timing=FAST_TIMING,
        sleep=clock.sleep,
        clock=clock,
    )


async def _collect(reconciler):
    return [event async for event in reconciler.events()]


@pytest.mark.asyncio
async def test_dom_final_text_replaces_lagging_stream():
    observer = FakeObserver(
        [('data: {"v": "Hello wor"}\nevent: close\n', DomSnapshot(answer=None, **GENERATING))],
        final=DomSnapshot(answer="Hello world"),
        url="https://chat.deepseek.com/a/chat/s/abc123",
    )
    reconciler = _reconciler(observer, FragmentPathClassifier())

    events = await _collect(reconciler)

    assert events[0] == StreamEvent("answer", "Hello wor")
    assert events[1] == StreamEvent("replace", "Hello world")
    assert [e.kind for e in events].count("replace") == 1
    assert events[2].kind == "answer"
    assert "```webllm-conversation-id\nabc123\n```" in events[2].text
    assert len(events) == 3
    assert reconciler.end_reason == END_STREAM_FINISHED
    assert reconciler.conversation_id == "abc123"


@pytest.mark.asyncio
async def test_stream_and_dom_are_merged_without_duplicates():
    observer = FakeObserver(
        [
            ('data: {"v": "Hel"}\n', DomSnapshot(answer=None, **GENERATING)),
            ('data: {"v": "lo"}\n', DomSnapshot(answer="Hel", **GENERATING)),
            ("", DomSnapshot(answer="Hello, world", **GENERATING)),
            ('data: {"v": ", wor"}\nevent: close\n', DomSnapshot(answer="Hello, world", **GENERATING)),
        ],
        final=DomSnapshot(answer="Hello, world"),
    )
    reconciler = _reconciler(observer, FragmentPathClassifier())

    events = await _collect(reconciler)

    assert events == [
        StreamEvent("answer", "Hel"),
        StreamEvent("answer", "lo"),
        StreamEvent("answer", ", world"),
    ]
    assert reconciler.acc.answer == "Hello, world"
    assert reconciler.conversation_id is None


@pytest.mark.asyncio
async def test_thinking_is_emitted_before_answer():
    observer = FakeObserver(
        [("", DomSnapshot(thinking="Reasoning", answer="Result", **GENERATING))],
        final=DomSnapshot(thinking="Reasoning", answer="Result"),
    )
    events = await _collect(_reconciler(observer))
    assert events[:2] == [StreamEvent("thinking", "Reasoning"), StreamEvent("answer", "Result")]


@pytest.mark.asyncio
async def test_idle_ui_ends_dom_only_reply():
    observer = FakeObserver(
        [("", DomSnapshot(answer="Hi", **GENERATING))],
        final=DomSnapshot(answer="Hi!"),
    )
    reconciler = _reconciler(observer)

    events = await _collect(reconciler)

    assert events == [StreamEvent("answer", "Hi"), StreamEvent("answer", "!")]
    assert reconciler.end_reason == END_UI_IDLE


@pytest.mark.asyncio
async def test_stable_text_ends_reply_while_ui_looks_busy():
    observer = FakeObserver(
        [
            ("", DomSnapshot(answer="Hi", **GENERATING)),
            ("", DomSnapshot(answer="Hi there", **GENERATING)),
        ],
        final=DomSnapshot(answer="Hi there", **GENERATING),
    )
    reconciler = _reconciler(observer)

    events = await _collect(reconciler)

    assert events == [StreamEvent("answer", "Hi"), StreamEvent("answer", " there")]
    assert reconciler.end_reason == END_STABLE


@pytest.mark.asyncio
async def test_timeout_ends_reply_without_content():
    clock = FakeClock()
    observer = FakeObserver(final=DomSnapshot(answer=None, **GENERATING))
    reconciler = _reconciler(observer, clock=clock)

    events = await _collect(reconciler)

    assert events == []
    assert reconciler.end_reason == END_TIMEOUT
    assert clock.now >= FAST_TIMING.timeout


@pytest.mark.asyncio
async def test_transient_errors_are_retried():
    observer = FakeObserver(
        [
            asyncio.TimeoutError(),
            RuntimeError("Execution context was destroyed"),
            ("", DomSnapshot(answer="ok", **GENERATING)),
        ],
        final=DomSnapshot(answer="ok"),
    )
    reconciler = _reconciler(observer)

    events = await _collect(reconciler)

    assert events == [StreamEvent("answer", "ok")]
    assert reconciler.end_reason == END_UI_IDLE
    assert not reconciler.page_lost


@pytest.mark.asyncio
async def test_lost_page_keeps_partial_reply():
    observer = FakeObserver(
        [
            ("", DomSnapshot(answer="Partial", **GENERATING)),
            RuntimeError("Target closed"),
        ],
        final=DomSnapshot(answer="Should not be read"),
    )
    reconciler = _reconciler(observer)

    events = await _collect(reconciler)

    assert events == [StreamEvent("answer", "Partial")]
    assert reconciler.page_lost
    assert reconciler.end_reason == END_PAGE_GONE


@pytest.mark.asyncio
async def test_fatal_error_before_any_content_is_raised():
    observer = FakeObserver([ValueError("selector syntax error")])
    with pytest.raises(ValueError):
        await _collect(_reconciler(observer))


@pytest.mark.asyncio
async def test_fatal_error_after_content_ends_reply():
    observer = FakeObserver(
        [("", DomSnapshot(answer="Some", **GENERATING)), ValueError("selector syntax error")],
        final=DomSnapshot(answer="Some"),
    )
    reconciler = _reconciler(observer)

    events = await _collect(reconciler)

    assert events == [StreamEvent("answer", "Some")]
    assert reconciler.end_reason == END_ERROR


@pytest.mark.asyncio
async def test_growing_dom_keeps_reply_open_after_stream_diverges():
    words = [f" w{i}" for i in range(10)]
    steps = [
        ('data: {"v": "Hel"}\n', DomSnapshot(answer=None, **GENERATING)),
        # "lo" never reaches the capture, so the stream no longer matches the DOM.
        ('data: {"v": " wo"}\n', DomSnapshot(answer="Hel", **GENERATING)),
    ]
    steps += [
        ("", DomSnapshot(answer="Hello" + "".join(words[: i + 1]), **GENERATING))
        for i in range(len(words))
    ]
    full = "Hello" + "".join(words)
    observer = FakeObserver(steps, final=DomSnapshot(answer=full))
    reconciler = _reconciler(observer, FragmentPathClassifier())

    events = await _collect(reconciler)

    assert reconciler.end_reason == END_UI_IDLE
    assert events[-1] == StreamEvent("replace", full)
    assert reconciler.acc.answer == full


@pytest.mark.asyncio
async def test_diverged_sources_end_as_stable_once_both_stop():
    steps = [
        ('data: {"v": "Hel"}\n', DomSnapshot(answer=None, **GENERATING)),
        ('data: {"v": " wo"}\n', DomSnapshot(answer="Hello w", **GENERATING)),
    ]
    observer = FakeObserver(steps, final=DomSnapshot(answer="Hello world", **GENERATING))
    reconciler = _reconciler(observer, FragmentPathClassifier())

    events = await _collect(reconciler)

    assert reconciler.end_reason == END_STABLE
    assert events[-1] == StreamEvent("replace", "Hello world")
