"""
Tests for message shape conversions.
"""

from parley.messages import (
    build_assistant_message,
    message_text,
    most_recent_user_message,
    to_provider_messages,
)


# ---------------------------------------------------------------------------
# UI helpers
# ---------------------------------------------------------------------------

def test_most_recent_user_message():
    msgs = [
        {"id": "1", "role": "user", "content": "first"},
        {"id": "2", "role": "assistant", "content": "reply"},
        {"id": "3", "role": "user", "content": "second"},
        {"id": "4", "role": "assistant", "content": "reply"},
    ]
    assert most_recent_user_message(msgs)["id"] == "3"
    assert most_recent_user_message([{"role": "assistant", "content": "x"}]) is None


def test_message_text_prefers_parts():
    msg = {"content": "fallback", "parts": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}
    assert message_text(msg) == "ab"
    assert message_text({"content": "plain"}) == "plain"


# ---------------------------------------------------------------------------
# UI → provider
# ---------------------------------------------------------------------------

def test_user_image_attachments_become_image_parts():
    msgs = [{
        "role": "user",
        "content": "what is this?",
        "experimental_attachments": [
            {"url": "https://example.com/cat.png", "contentType": "image/png"},
            {"url": "https://example.com/doc.pdf", "contentType": "application/pdf"},
        ],
    }]
    (out,) = to_provider_messages(msgs)
    assert out["content"] == [
        {"type": "text", "text": "what is this?"},
        {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}},
    ]


def test_assistant_tool_steps_are_replayed():
    """Completed tool invocations turn into tool_calls plus tool messages."""
    msgs = [{
        "role": "assistant",
        "content": "It is sunny.",
        "parts": [
            {"type": "step-start"},
            {"type": "tool-invocation", "toolInvocation": {
                "state": "result", "toolCallId": "c1", "toolName": "getWeather",
                "args": {"latitude": 1}, "result": {"sunny": True},
            }},
            {"type": "step-start"},
            {"type": "text", "text": "It is sunny."},
        ],
    }]
    out = to_provider_messages(msgs)
    assert [m["role"] for m in out] == ["assistant", "tool", "assistant"]
    assert out[0]["content"] is None
    assert out[0]["tool_calls"][0]["function"]["name"] == "getWeather"
    assert out[1]["tool_call_id"] == "c1"
    assert out[2]["content"] == "It is sunny."


def test_unfinished_tool_call_dropped():
    msgs = [{
        "role": "assistant",
        "parts": [
            {"type": "tool-invocation", "toolInvocation": {"state": "call", "toolCallId": "c1", "toolName": "x"}},
            {"type": "text", "text": "partial"},
        ],
    }]
    (out,) = to_provider_messages(msgs)
    assert "tool_calls" not in out
    assert out["content"] == "partial"


# ---------------------------------------------------------------------------
# response → UI
# ---------------------------------------------------------------------------

def test_build_assistant_message_merges_steps():
    """One UI message with step markers, reasoning, tool results and text."""
    response = [
        {"id": "msg-a", "role": "assistant", "content": [
            {"type": "reasoning", "text": "need weather"},
            {"type": "tool-call", "toolCallId": "c1", "toolName": "getWeather", "args": {"latitude": 1}},
        ]},
        {"id": "msg-t", "role": "tool", "content": [
            {"type": "tool-result", "toolCallId": "c1", "toolName": "getWeather", "result": {"t": 20}},
        ]},
        {"id": "msg-b", "role": "assistant", "content": [{"type": "text", "text": "20 degrees"}]},
    ]
    msg = build_assistant_message(response)
    assert msg["id"] == "msg-b"
    assert msg["content"] == "20 degrees"
    types = [p["type"] for p in msg["parts"]]
    assert types == ["step-start", "reasoning", "tool-invocation", "step-start", "text"]
    assert msg["parts"][1]["details"] == [{"type": "text", "text": "need weather"}]
    inv = msg["parts"][2]["toolInvocation"]
    assert inv["state"] == "result"
    assert inv["result"] == {"t": 20}
    assert inv["step"] == 0


def test_build_assistant_message_without_assistant():
    assert build_assistant_message([]) is None
    assert build_assistant_message([{"id": "t", "role": "tool", "content": []}]) is None
