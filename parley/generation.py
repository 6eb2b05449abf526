"""
Model invocation on top of the backend router.

ModelClient offers three calls:
  generate_text: one-shot completion (titles, structured tool output)
  stream_deltas: raw content deltas (document bodies)
  stream_text: the chat turn. Streams text and reasoning into a writer,
               runs tool calls and re-invokes the model until it stops
               calling tools or the step budget is spent
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import AsyncIterator
from uuid import uuid4

from parley.catalog import provider_model, supports_reasoning

logger = logging.getLogger(__name__)

FINISH_REASONS = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "content_filter": "content-filter",
}


class GenerationError(RuntimeError):
    """The model provider rejected or failed the request."""


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    def add(self, usage: dict | None):
        usage = usage or {}
        self.prompt_tokens += usage.get("prompt_tokens") or 0
        self.completion_tokens += usage.get("completion_tokens") or 0

    def as_dict(self) -> dict:
        return {"prompt_tokens": self.prompt_tokens, "completion_tokens": self.completion_tokens}


@dataclass
class GenerationResult:
    """Outcome of one chat turn."""
    messages: list[dict] = field(default_factory=list)   # response messages, in order
    usage: Usage = field(default_factory=Usage)
    finish_reason: str = "stop"
    model: str = ""


class ThinkTagExtractor:
    """
    Splits streamed content into reasoning (inside <think>…</think>) and
    text. Holds back a partial tag at the end of a chunk.
    """

    OPEN, CLOSE = "<think>", "</think>"

    def __init__(self):
        self.in_think = False
        self._pending = ""

    def feed(self, chunk: str) -> list[tuple[str, str]]:
        out: list[tuple[str, str]] = []
        buf = self._pending + chunk
        self._pending = ""
        while buf:
            tag = self.CLOSE if self.in_think else self.OPEN
            kind = "reasoning" if self.in_think else "text"
            idx = buf.find(tag)
            if idx >= 0:
                if idx:
                    out.append((kind, buf[:idx]))
                buf = buf[idx + len(tag):]
                self.in_think = not self.in_think
                continue
            # keep a possible tag prefix for the next chunk
            keep = 0
            for n in range(min(len(tag) - 1, len(buf)), 0, -1):
                if tag.startswith(buf[-n:]):
                    keep = n
                    break
            if len(buf) > keep:
                out.append((kind, buf[:len(buf) - keep]))
            self._pending = buf[len(buf) - keep:] if keep else ""
            break
        return out

    def flush(self) -> list[tuple[str, str]]:
        if not self._pending:
            return []
        out = [("reasoning" if self.in_think else "text", self._pending)]
        self._pending = ""
        return out


def _new_message_id() -> str:
    return f"msg-{uuid4().hex[:24]}"


def _parse_args(raw: str) -> dict:
    if not raw:
        return {}
    args = json.loads(raw)
    if not isinstance(args, dict):
        raise ValueError("tool arguments must be a JSON object")
    return args


_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


class ModelClient:
    def __init__(self, router, cfg: dict | None = None):
        self.router = router
        self.cfg = cfg or {}

    def _body(self, model: str, messages: list[dict], **extra) -> dict:
        body = {"model": provider_model(model, self.cfg), "messages": messages}
        body.update(extra)
        return body

    async def _chunks(self, body: dict) -> AsyncIterator[dict]:
        """Parsed JSON payloads of an SSE chat-completions stream."""
        async for line in self.router.forward_stream(body):
            if not line.startswith("data:"):
                continue    # comments and keep-alives
            data = line[5:].strip()
            if data == "[DONE]":
                break
            try:
                chunk = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed stream chunk: %s", data[:80])
                continue
            if chunk.get("error"):
                err = chunk["error"]
                raise GenerationError(err.get("message", str(err)) if isinstance(err, dict) else str(err))
            yield chunk

    # ─ One-shot ───────────────────────────────────────────────────────────

    async def generate_text(self, model: str, system: str, prompt: str, **extra) -> str:
        body = self._body(
            model,
            [{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            stream=False,
            **extra,
        )
        response = await self.router.forward(body)
        if not response.ok:
            raise GenerationError(response.error)
        return response.content

    async def generate_json(self, model: str, system: str, prompt: str):
        """One-shot completion parsed as JSON (code fences tolerated)."""
        text = await self.generate_text(
            model, system, prompt, response_format={"type": "json_object"},
        )
        text = _FENCE.sub("", text.strip())
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise GenerationError(f"Model returned invalid JSON: {e}") from e

    async def stream_deltas(self, model: str, system: str, prompt: str) -> AsyncIterator[str]:
        body = self._body(
            model,
            [{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            stream=True,
        )
        async for chunk in self._chunks(body):
            for choice in chunk.get("choices", []):
                content = (choice.get("delta") or {}).get("content")
                if content:
                    yield content

    # ─ Chat turn ──────────────────────────────────────────────────────────

    async def _run_tool(self, tool, call: dict, args: dict | None, context):
        if args is None:
            return {"error": f"Invalid arguments for tool {call['name']}"}
        if tool is None:
            return {"error": f"Tool {call['name']} is not available"}
        try:
            return await tool.execute(args, context)
        except Exception as e:
            logger.exception("Tool '%s' failed", call["name"])
            return {"error": str(e) or f"Tool {call['name']} failed"}

    async def stream_text(
        self,
        model: str,
        system: str,
        messages: list[dict],
        tools: dict,
        max_steps: int,
        writer,
        context=None,
    ) -> GenerationResult:
        """
        Run one chat turn. messages are provider-format messages; tools maps
        names to descriptors. Upstream errors propagate to the caller.
        """
        conversation = [{"role": "system", "content": system}, *messages]
        result = GenerationResult(model=model)
        reasoning_model = supports_reasoning(model, self.cfg)

        for step in range(max_steps):
            message_id = _new_message_id()
            writer.write_start_step(message_id)

            body = self._body(
                model, conversation,
                stream=True, stream_options={"include_usage": True},
            )
            if tools:
                body["tools"] = [t.schema() for t in tools.values()]

            think = ThinkTagExtractor() if reasoning_model else None
            content: list[dict] = []
            calls: dict[int, dict] = {}
            step_usage: dict = {}
            finish_reason = "stop"

            def emit(kind: str, text: str):
                if kind == "reasoning":
                    writer.write_reasoning(text)
                else:
                    writer.write_text(text)
                if content and content[-1]["type"] == kind:
                    content[-1]["text"] += text
                else:
                    content.append({"type": kind, "text": text})

            async for chunk in self._chunks(body):
                if chunk.get("usage"):
                    step_usage = chunk["usage"]
                for choice in chunk.get("choices", []):
                    delta = choice.get("delta") or {}
                    reasoning = delta.get("reasoning") or delta.get("reasoning_content")
                    if reasoning:
                        emit("reasoning", reasoning)
                    text = delta.get("content")
                    if text:
                        if think:
                            for kind, piece in think.feed(text):
                                emit(kind, piece)
                        else:
                            emit("text", text)
                    for tc in delta.get("tool_calls") or []:
                        slot = calls.setdefault(tc.get("index", 0), {"id": "", "name": "", "arguments": ""})
                        if tc.get("id"):
                            slot["id"] = tc["id"]
                        fn = tc.get("function") or {}
                        if fn.get("name"):
                            slot["name"] = fn["name"]
                        if fn.get("arguments"):
                            slot["arguments"] += fn["arguments"]
                    if choice.get("finish_reason"):
                        finish_reason = FINISH_REASONS.get(choice["finish_reason"], "other")

            if think:
                for kind, piece in think.flush():
                    emit(kind, piece)

            result.usage.add(step_usage)

            ordered = [calls[i] for i in sorted(calls)]
            for call in ordered:
                call["id"] = call["id"] or f"call_{uuid4().hex[:24]}"
                content.append({
                    "type": "tool-call",
                    "toolCallId": call["id"],
                    "toolName": call["name"],
                    "args": {},
                })
            result.messages.append({"id": message_id, "role": "assistant", "content": content})

            text = "".join(c["text"] for c in content if c["type"] == "text")
            provider_entry: dict = {"role": "assistant", "content": text or None}
            if ordered:
                provider_entry["tool_calls"] = [
                    {"id": c["id"], "type": "function",
                     "function": {"name": c["name"], "arguments": c["arguments"] or "{}"}}
                    for c in ordered
                ]
            conversation.append(provider_entry)

            tool_results = []
            for call, part in zip(ordered, (c for c in content if c["type"] == "tool-call")):
                try:
                    args = _parse_args(call["arguments"])
                except ValueError:
                    logger.warning("Unparsable arguments for tool '%s': %s", call["name"], call["arguments"][:80])
                    args = None
                part["args"] = args or {}
                writer.write_tool_call(call["id"], call["name"], part["args"])
                output = await self._run_tool(tools.get(call["name"]), call, args, context)
                writer.write_tool_result(call["id"], output)
                tool_results.append({
                    "type": "tool-result",
                    "toolCallId": call["id"],
                    "toolName": call["name"],
                    "result": output,
                })
                conversation.append({
                    "role": "tool",
                    "tool_call_id": call["id"],
                    "content": json.dumps(output, default=str),
                })

            if tool_results:
                result.messages.append({"id": _new_message_id(), "role": "tool", "content": tool_results})

            more = bool(ordered) and step + 1 < max_steps
            writer.write_finish_step(finish_reason, step_usage, is_continued=False)
            result.finish_reason = finish_reason
            logger.debug(
                "Step %d finished (%s, %d tool calls, usage=%s)",
                step, finish_reason, len(ordered), step_usage,
            )
            if not more:
                break

        writer.write_finish_message(result.finish_reason, result.usage.as_dict())
        return result
