"""
Tests for the data stream writer and word smoothing.
"""

import json

import pytest

from parley.streaming import DataStreamWriter, WordSmoother, encode_part


async def _drain(writer: DataStreamWriter) -> list[str]:
    return [line async for line in writer]


def _decode(line: str):
    code, _, payload = line.rstrip("\n").partition(":")
    return code, json.loads(payload)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def test_encode_part_is_one_compact_line():
    line = encode_part("9", {"toolCallId": "c1", "toolName": "getWeather", "args": {"a": 1}})
    assert line.endswith("\n")
    assert line.count("\n") == 1
    assert line.startswith('9:{"toolCallId":"c1"')


# ---------------------------------------------------------------------------
# WordSmoother
# ---------------------------------------------------------------------------

def test_smoother_releases_whole_words():
    """A word split across deltas comes out in one piece."""
    s = WordSmoother()
    out = s.push("0", "Hel")
    assert out == []
    out = s.push("0", "lo wor")
    assert out == [("0", "Hello ")]
    out = s.push("0", "ld ")
    assert out == [("0", "world ")]


def test_smoother_keeps_releasing_after_leading_whitespace():
    """A delta starting with a newline does not hold back the rest of the reply."""
    s = WordSmoother()
    released = []
    for delta in ["Hello ", "\nWorld is ", "big and ", "round "]:
        released.extend(s.push("0", delta))
    assert released == [
        ("0", "Hello "), ("0", "\nWorld "), ("0", "is "),
        ("0", "big "), ("0", "and "), ("0", "round "),
    ]
    assert s.flush() == []


def test_smoother_reply_starting_with_newline():
    s = WordSmoother()
    released = []
    for delta in ["\n", "Sure", ", here ", "is ", "the ", "answer "]:
        released.extend(s.push("0", delta))
    assert [text for _, text in released] == ["\nSure, ", "here ", "is ", "the ", "answer "]


def test_smoother_flush_releases_remainder():
    s = WordSmoother()
    s.push("0", "tail")
    assert s.flush() == [("0", "tail")]
    assert s.flush() == []


def test_smoother_flushes_on_kind_change():
    """Switching from reasoning to text releases the pending reasoning first."""
    s = WordSmoother()
    s.push("g", "thinking")
    out = s.push("0", "Answer ")
    assert out == [("g", "thinking"), ("0", "Answer ")]


# ---------------------------------------------------------------------------
# DataStreamWriter
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_writer_preserves_text_and_order():
    """Concatenated text lines reproduce the deltas exactly."""
    w = DataStreamWriter()
    w.write_start_step("msg-1")
    for delta in ["The qu", "ick bro", "wn fox"]:
        w.write_text(delta)
    w.write_finish_step("stop", {"prompt_tokens": 3, "completion_tokens": 4})
    w.write_finish_message("stop", {"prompt_tokens": 3, "completion_tokens": 4})
    w.close()

    lines = await _drain(w)
    codes = [_decode(l)[0] for l in lines]
    assert codes[0] == "f"
    assert codes[-2:] == ["e", "d"]
    text = "".join(_decode(l)[1] for l in lines if l.startswith("0:"))
    assert text == "The quick brown fox"


@pytest.mark.asyncio
async def test_writer_flushes_text_before_tool_call():
    """Pending text is written before a non-text part."""
    w = DataStreamWriter()
    w.write_text("Checking")
    w.write_tool_call("c1", "getWeather", {"latitude": 1, "longitude": 2})
    w.write_tool_result("c1", {"temperature": 20})
    w.close()

    lines = await _drain(w)
    assert [_decode(l)[0] for l in lines] == ["0", "9", "a"]
    assert _decode(lines[0])[1] == "Checking"


@pytest.mark.asyncio
async def test_writer_finish_usage_shape():
    w = DataStreamWriter()
    w.write_finish_step("tool-calls", {"prompt_tokens": 5, "completion_tokens": 2}, is_continued=False)
    w.close()
    (line,) = await _drain(w)
    code, value = _decode(line)
    assert code == "e"
    assert value == {
        "finishReason": "tool-calls",
        "usage": {"promptTokens": 5, "completionTokens": 2},
        "isContinued": False,
    }


@pytest.mark.asyncio
async def test_writer_data_and_error_parts():
    w = DataStreamWriter()
    w.write_data({"type": "title", "content": "NDA"})
    w.write_error("boom")
    w.close()
    lines = await _drain(w)
    assert _decode(lines[0]) == ("2", [{"type": "title", "content": "NDA"}])
    assert _decode(lines[1]) == ("3", "boom")


@pytest.mark.asyncio
async def test_writer_drops_parts_after_close():
    """close() is idempotent and later writes are ignored."""
    w = DataStreamWriter()
    w.write_text("done")
    w.close()
    w.close()
    w.write_text("late ")
    lines = await _drain(w)
    assert lines == ['0:"done"\n']


@pytest.mark.asyncio
async def test_unsmoothed_writer_passes_deltas_through():
    w = DataStreamWriter(smooth=False)
    w.write_text("He")
    w.write_text("llo")
    w.close()
    assert await _drain(w) == ['0:"He"\n', '0:"llo"\n']
