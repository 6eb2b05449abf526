"""
Data stream protocol writer.

The chat client consumes a line-oriented stream where every line is
``<code>:<json>\\n``:

    0  text delta            g  reasoning delta
    2  data parts (list)     3  error message
    9  tool call             a  tool result
    f  start step            e  finish step
    d  finish message

The pipeline writes parts into a DataStreamWriter; the HTTP response
iterates it. Text and reasoning deltas are smoothed to whole words so a
word is never split across two lines.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "X-Vercel-AI-Data-Stream": "v1",
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}

_WORD = re.compile(r"\s*\S+\s+")
_CLOSED = object()


def encode_part(code: str, value) -> str:
    return f"{code}:{json.dumps(value, separators=(',', ':'))}\n"


def _usage(usage: dict | None) -> dict:
    usage = usage or {}
    return {
        "promptTokens": usage.get("prompt_tokens", 0),
        "completionTokens": usage.get("completion_tokens", 0),
    }


class WordSmoother:
    """
    Buffers deltas of one kind and releases them one word at a time.
    Whitespace before a word leaves with that word, whitespace after it
    ends it. Whatever is left is released by flush().
    """

    def __init__(self):
        self.kind: str | None = None
        self._buffer = ""

    def push(self, kind: str, delta: str) -> list[tuple[str, str]]:
        out = []
        if self.kind is not None and kind != self.kind:
            out.extend(self.flush())
        self.kind = kind
        self._buffer += delta

        while True:
            match = _WORD.match(self._buffer)
            if not match:
                break
            out.append((kind, match.group(0)))
            self._buffer = self._buffer[match.end():]
        return out

    def flush(self) -> list[tuple[str, str]]:
        out = []
        if self._buffer:
            out.append((self.kind, self._buffer))
        self._buffer = ""
        self.kind = None
        return out


class DataStreamWriter:
    """Sink for stream parts; async-iterable by the HTTP response."""

    def __init__(self, smooth: bool = True):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._smoother = WordSmoother() if smooth else None
        self.closed = False

    def _put(self, line: str):
        if self.closed:
            logger.debug("Dropping stream part after close: %s", line[:40])
            return
        self._queue.put_nowait(line)

    def _flush_smoother(self):
        if self._smoother:
            for kind, text in self._smoother.flush():
                self._put(encode_part(kind, text))

    def _write_delta(self, code: str, delta: str):
        if not delta:
            return
        if self._smoother is None:
            self._put(encode_part(code, delta))
            return
        for kind, text in self._smoother.push(code, delta):
            self._put(encode_part(kind, text))

    def _write_part(self, code: str, value):
        self._flush_smoother()
        self._put(encode_part(code, value))

    # ─ Parts ──────────────────────────────────────────────────────────────

    def write_text(self, delta: str):
        self._write_delta("0", delta)

    def write_reasoning(self, delta: str):
        self._write_delta("g", delta)

    def write_data(self, value: dict):
        """Custom data part, e.g. document artifacts and tool status."""
        self._write_part("2", [value])

    def write_error(self, message: str):
        self._write_part("3", message)

    def write_tool_call(self, tool_call_id: str, tool_name: str, args: dict):
        self._write_part("9", {"toolCallId": tool_call_id, "toolName": tool_name, "args": args})

    def write_tool_result(self, tool_call_id: str, result):
        self._write_part("a", {"toolCallId": tool_call_id, "result": result})

    def write_start_step(self, message_id: str):
        self._write_part("f", {"messageId": message_id})

    def write_finish_step(self, finish_reason: str, usage: dict | None, is_continued: bool = False):
        self._write_part("e", {
            "finishReason": finish_reason,
            "usage": _usage(usage),
            "isContinued": is_continued,
        })

    def write_finish_message(self, finish_reason: str, usage: dict | None):
        self._write_part("d", {"finishReason": finish_reason, "usage": _usage(usage)})

    def close(self):
        if self.closed:
            return
        self._flush_smoother()
        self.closed = True
        self._queue.put_nowait(_CLOSED)

    # ─ Iteration ──────────────────────────────────────────────────────────

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item
