import json

from webllm.streaming.accumulator import RESPONSE, THINK, StreamAccumulator
from webllm.streaming.classifiers import (
    DomOnlyClassifier,
    FragmentPathClassifier,
    PatchEventClassifier,
)


def _data(record) -> str:
    return f"data: {json.dumps(record, ensure_ascii=False)}\n"


def _feed(classifier, acc, chunk):
    parsed = classifier.feed(acc, chunk)
    acc.absorb(parsed)
    return parsed


def test_advance_only_emits_extensions():
    acc = StreamAccumulator()
    assert acc.advance("answer", "Hel") == "Hel"
    assert acc.advance("answer", "Hello") == "lo"
    assert acc.advance("answer", "Hello") == ""
    assert acc.advance("answer", "He") == ""
    assert acc.advance("answer", "Jello world") == ""
    assert acc.advance("answer", None) == ""
    assert acc.answer == "Hello"


def test_split_lines_buffers_partial_tail():
    acc = StreamAccumulator()
    assert acc.split_lines('data: {"v": "he') == []
    assert acc.split_lines('llo"}\ndata: x') == ['data: {"v": "hello"}']
    assert acc.flush_pending() == ["data: x"]
    assert acc.flush_pending() == []


def test_fragment_stream_separates_thinking_and_answer():
    classifier = FragmentPathClassifier()
    acc = StreamAccumulator()

    _feed(
        classifier,
        acc,
        _data({"v": {"response": {"fragments": []}}})
        + _data({"p": "response/fragments", "o": "APPEND", "v": [{"type": "THINK", "content": "Let me"}]})
        + _data({"v": " think"})
        + _data({"p": "response/fragments", "o": "APPEND", "v": [{"type": "RESPONSE", "content": "Answer"}]})
        + _data({"v": " is 42"})
        + _data({"p": "response/fragments/0/content", "o": "APPEND", "v": "."}),
    )

    assert acc.stream_thinking == "Let me think."
    assert acc.stream_answer == "Answer is 42"
    assert acc.fragment_types == {0: THINK, 1: RESPONSE}
    assert not acc.stream_finished


def test_fragment_stream_handles_last_index_and_batch():
    classifier = FragmentPathClassifier()
    acc = StreamAccumulator()

    _feed(
        classifier,
        acc,
        _data({"p": "response/fragments", "o": "APPEND", "v": [{"type": "RESPONSE", "content": "A"}]})
        + _data({"p": "response/fragments/-1/content", "v": "B"})
        + _data(
            {
                "p": "response",
                "o": "BATCH",
                "v": [
                    {"p": "fragments", "o": "APPEND", "v": [{"type": "THINK", "content": "hmm"}]},
                    {"p": "fragments/-1/content", "v": "!"},
                ],
            }
        ),
    )

    assert acc.stream_answer == "AB"
    assert acc.stream_thinking == "hmm!"


def test_bare_values_without_fragments_are_answer():
    classifier = FragmentPathClassifier()
    acc = StreamAccumulator()
    _feed(classifier, acc, _data({"v": "Hello wor"}) + "event: close\n")
    assert acc.stream_answer == "Hello wor"
    assert acc.stream_finished


def test_lines_split_across_drains_are_joined():
    classifier = FragmentPathClassifier()
    acc = StreamAccumulator()
    line = _data({"v": "split line"})

    _feed(classifier, acc, line[:12])
    assert acc.stream_answer == ""
    _feed(classifier, acc, line[12:])
    assert acc.stream_answer == "split line"


def test_unterminated_tail_is_parsed_on_finish():
    classifier = FragmentPathClassifier()
    acc = StreamAccumulator()
    _feed(classifier, acc, 'data: {"v": "tail"}')
    assert acc.stream_answer == ""
    acc.absorb(classifier.finish(acc))
    assert acc.stream_answer == "tail"


def test_garbage_lines_are_ignored():
    classifier = FragmentPathClassifier()
    acc = StreamAccumulator()
    parsed = classifier.feed(acc, "data: {not json\n: keep-alive\ndata: {}\n\n")
    assert not parsed


def test_patch_stream_answer_and_reasoning():
    classifier = PatchEventClassifier()
    acc = StreamAccumulator()

    _feed(
        classifier,
        acc,
        _data({"type": "resume_conversation_token", "token": "x"})
        + _data({"p": "/message/content/thoughts", "o": "append", "v": [{"content": "Plan. "}]})
        + _data({"p": "/message/content/thoughts/0/content", "o": "append", "v": "More."})
        + _data({"v": " Still thinking."})
        + _data({"p": "/message/content/parts/0", "o": "append", "v": "Hi"})
        + _data({"v": " there"})
        + _data(
            {
                "p": "",
                "o": "patch",
                "v": [
                    {"p": "/message/content/parts/0", "o": "append", "v": "!"},
                    {"p": "/message/status", "o": "replace", "v": "finished_successfully"},
                ],
            }
        )
        + "event: done\n"
        + "data: [DONE]\n",
    )

    assert acc.stream_thinking == "Plan. More. Still thinking."
    assert acc.stream_answer == "Hi there!"
    assert acc.stream_finished


def test_patch_stream_bare_value_defaults_to_answer():
    classifier = PatchEventClassifier()
    acc = StreamAccumulator()
    _feed(classifier, acc, _data({"v": "plain"}))
    assert acc.stream_answer == "plain"


def test_patch_stream_reads_thoughts_snapshot():
    classifier = PatchEventClassifier()
    acc = StreamAccumulator()
    message = {
        "message": {"content": {"content_type": "thoughts", "thoughts": [{"content": "Considering"}]}}
    }
    _feed(classifier, acc, _data({"v": message}))
    assert acc.stream_thinking == "Considering"
    assert acc.stream_answer == ""


def test_dom_only_classifier_ignores_traffic():
    acc = StreamAccumulator()
    assert not DomOnlyClassifier().feed(acc, _data({"v": "x"}))
