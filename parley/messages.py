"""
Message shape conversions.

Three shapes meet here:
  - UI messages, as sent by the chat client and stored in the messages
    table: {id, role, content, parts, experimental_attachments}
  - provider messages, the OpenAI chat-completions format sent upstream
  - response messages, produced by one generation turn: one assistant
    message per step (content parts: reasoning, text, tool-call) and one
    tool message per step that called tools (tool-result parts)
"""

from __future__ import annotations

import json
import logging

logger = logging.getLogger(__name__)


def most_recent_user_message(messages: list[dict]) -> dict | None:
    for msg in reversed(messages):
        if msg.get("role") == "user":
            return msg
    return None


def trailing_message_id(messages: list[dict]) -> str | None:
    if not messages:
        return None
    return messages[-1].get("id")


def message_text(msg: dict) -> str:
    """Plain text of a UI message, preferring text parts over content."""
    parts = msg.get("parts") or []
    texts = [p.get("text", "") for p in parts if p.get("type") == "text"]
    if texts:
        return "".join(texts)
    content = msg.get("content", "")
    return content if isinstance(content, str) else ""


# ---------------------------------------------------------------------------
# UI → provider
# ---------------------------------------------------------------------------

def _user_content(msg: dict):
    text = message_text(msg)
    images = [
        a for a in msg.get("experimental_attachments") or []
        if (a.get("contentType") or "").startswith("image/") and a.get("url")
    ]
    if not images:
        return text
    content = [{"type": "text", "text": text}] if text else []
    for a in images:
        content.append({"type": "image_url", "image_url": {"url": a["url"]}})
    return content


def _assistant_steps(msg: dict) -> list[dict]:
    """Split an assistant UI message into steps at step-start boundaries."""
    parts = msg.get("parts")
    if not parts:
        return [{"text": message_text(msg), "invocations": []}]

    steps: list[dict] = []
    current = {"text": "", "invocations": []}
    for part in parts:
        kind = part.get("type")
        if kind == "step-start":
            if current["text"] or current["invocations"]:
                steps.append(current)
            current = {"text": "", "invocations": []}
        elif kind == "text":
            current["text"] += part.get("text", "")
        elif kind == "tool-invocation":
            inv = part.get("toolInvocation") or {}
            # Calls that never produced a result cannot be replayed upstream
            if inv.get("state") == "result":
                current["invocations"].append(inv)
    if current["text"] or current["invocations"]:
        steps.append(current)
    return steps


def to_provider_messages(messages: list[dict]) -> list[dict]:
    """Convert UI messages to OpenAI chat-completions messages."""
    out: list[dict] = []
    for msg in messages:
        role = msg.get("role")
        if role == "user":
            out.append({"role": "user", "content": _user_content(msg)})
        elif role == "system":
            out.append({"role": "system", "content": message_text(msg)})
        elif role == "assistant":
            for step in _assistant_steps(msg):
                entry: dict = {"role": "assistant", "content": step["text"] or None}
                if step["invocations"]:
                    entry["tool_calls"] = [
                        {
                            "id": inv["toolCallId"],
                            "type": "function",
                            "function": {
                                "name": inv.get("toolName", ""),
                                "arguments": json.dumps(inv.get("args") or {}),
                            },
                        }
                        for inv in step["invocations"]
                    ]
                out.append(entry)
                for inv in step["invocations"]:
                    out.append({
                        "role": "tool",
                        "tool_call_id": inv["toolCallId"],
                        "content": json.dumps(inv.get("result")),
                    })
        else:
            logger.debug("Skipping message with role %r", role)
    return out


# ---------------------------------------------------------------------------
# response → UI
# ---------------------------------------------------------------------------

def build_assistant_message(response_messages: list[dict]) -> dict | None:
    """
    Merge one turn's response messages into a single assistant UI message.
    The id is that of the last assistant response message. Returns None
    when the response holds no assistant message.
    """
    assistants = [m for m in response_messages if m.get("role") == "assistant"]
    message_id = trailing_message_id(assistants)
    if not message_id:
        return None

    parts: list[dict] = []
    invocations: dict[str, dict] = {}
    step = 0
    for msg in response_messages:
        if msg.get("role") == "assistant":
            parts.append({"type": "step-start"})
            for item in msg.get("content") or []:
                kind = item.get("type")
                if kind == "reasoning":
                    parts.append({
                        "type": "reasoning",
                        "reasoning": item["text"],
                        "details": [{"type": "text", "text": item["text"]}],
                    })
                elif kind == "text":
                    parts.append({"type": "text", "text": item["text"]})
                elif kind == "tool-call":
                    inv = {
                        "state": "call",
                        "step": step,
                        "toolCallId": item["toolCallId"],
                        "toolName": item["toolName"],
                        "args": item.get("args") or {},
                    }
                    invocations[item["toolCallId"]] = inv
                    parts.append({"type": "tool-invocation", "toolInvocation": inv})
            step += 1
        elif msg.get("role") == "tool":
            for item in msg.get("content") or []:
                inv = invocations.get(item.get("toolCallId"))
                if inv is None:
                    logger.warning("Tool result for unknown call %s", item.get("toolCallId"))
                    continue
                inv["state"] = "result"
                inv["result"] = item.get("result")

    content = "".join(p["text"] for p in parts if p["type"] == "text")
    return {"id": message_id, "role": "assistant", "content": content, "parts": parts}
