"""
HTTP surface tests. The app is built with an injected store, model client
and tool registry, so no backend or MCP server is contacted.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from parley.backends.router import MultiBackendRouter
from parley.generation import ModelClient
from parley.main import create_app
from parley.storage.models import Agent, Conversation, Message
from parley.tools.mcp_clients import MCPToolManager
from parley.tools.registry import ToolRegistry
from tests.fakes import FakeModelClient, FakeRegistry, tool

ALICE = {"Authorization": "Bearer tok-alice"}
BOB = {"Authorization": "Bearer tok-bob"}


def _body(chat_id="chat-1", model="chat-model", **extra):
    body = {
        "id": chat_id,
        "messages": [{"id": "u-1", "role": "user", "content": "Hi there"}],
        "selectedChatModel": model,
        "supportsTools": True,
    }
    body.update(extra)
    return body


@pytest.fixture
def model_client():
    return FakeModelClient()


@pytest.fixture
def registry():
    return FakeRegistry(
        [tool("createDocument"), tool("files_read", "external"), tool("files_write", "external")],
        servers={"files": ["files_read", "files_write"]},
    )


@pytest.fixture
def client(cfg, store, model_client, registry):
    app = create_app(cfg, store=store, model_client=model_client, tool_registry=registry)
    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# POST /api/chat
# ---------------------------------------------------------------------------

def test_chat_streams_data_protocol(client, store):
    """A valid request streams protocol lines and persists both messages."""
    resp = client.post("/api/chat", json=_body(), headers=ALICE)

    assert resp.status_code == 200
    assert resp.headers["x-vercel-ai-data-stream"] == "v1"
    assert resp.headers["cache-control"] == "no-cache"
    lines = resp.text.splitlines()
    assert lines[0].startswith("f:")
    assert any(l.startswith("0:") for l in lines)
    assert lines[-1].startswith("d:")

    assert [m.role for m in store.get_messages_by_chat("chat-1")] == ["user", "assistant"]
    assert store.get_chat("chat-1").user_id == "alice"


def test_chat_invalid_body(client, model_client):
    resp = client.post("/api/chat", json={"id": "c", "messages": []}, headers=ALICE)
    assert resp.status_code == 400
    assert resp.json()["details"]
    assert model_client.events == []


def test_chat_body_not_json(client):
    resp = client.post("/api/chat", content=b"{oops", headers={**ALICE, "Content-Type": "application/json"})
    assert resp.status_code == 400


def test_chat_requires_auth(client, store):
    resp = client.post("/api/chat", json=_body())
    assert resp.status_code == 401
    assert resp.text == "Unauthorized"
    assert store.get_chat("chat-1") is None


def test_chat_unknown_agent(client, store, model_client):
    resp = client.post("/api/chat", json=_body(model="agent/missing"), headers=ALICE)
    assert resp.status_code == 404
    assert resp.text == "Agent not found"
    assert store.get_chat("chat-1") is None
    assert model_client.events == []


def test_chat_other_users_chat(client, store):
    store.save_chat(Conversation(id="chat-1", user_id="alice", workspace_id="ws-1"))
    resp = client.post("/api/chat", json=_body(), headers=BOB)
    assert resp.status_code == 401


def test_chat_unexpected_failure_is_500(cfg, store, registry):
    """An unexpected error before streaming is a plain 500."""
    app = create_app(
        cfg, store=store, tool_registry=registry,
        model_client=FakeModelClient(title_error=RuntimeError("title backend down")),
    )
    with TestClient(app) as c:
        resp = c.post("/api/chat", json=_body(), headers=ALICE)
    assert resp.status_code == 500
    assert resp.text == "An error occurred while processing your request!"


def test_chat_passes_selected_external_tools(client, model_client):
    client.post(
        "/api/chat",
        json=_body(selectedTools=["files_write"], data={"mcpTools": '["files_read"]'}),
        headers=ALICE,
    )
    tools = model_client.stream_calls[0]["tools"]
    assert set(tools) == {"createDocument", "files_read"}


# ---------------------------------------------------------------------------
# DELETE /api/chat and chat reads
# ---------------------------------------------------------------------------

def test_delete_chat(client, store):
    store.save_chat(Conversation(id="c1", user_id="alice", workspace_id="ws-1"))
    resp = client.delete("/api/chat", params={"id": "c1"}, headers=ALICE)
    assert resp.status_code == 200
    assert resp.text == "Chat deleted"
    assert store.get_chat("c1") is None


def test_delete_chat_not_owner(client, store):
    store.save_chat(Conversation(id="c1", user_id="alice", workspace_id="ws-1"))
    resp = client.delete("/api/chat", params={"id": "c1"}, headers=BOB)
    assert resp.status_code == 401
    assert store.get_chat("c1") is not None


def test_delete_chat_missing(client):
    assert client.delete("/api/chat", headers=ALICE).status_code == 404
    assert client.delete("/api/chat", params={"id": "nope"}, headers=ALICE).text == "Chat Not Found"


def test_history_and_messages(client, store):
    store.save_chat(Conversation(id="c1", user_id="alice", workspace_id="ws-1", name="One"))
    store.save_chat(Conversation(id="c2", user_id="bob", workspace_id="ws-2"))
    store.save_messages([Message(chat_id="c1", user_id="alice", role="user", content="hey")])

    history = client.get("/api/history", headers=ALICE).json()
    assert [c["id"] for c in history] == ["c1"]

    messages = client.get("/api/chat/c1/messages", headers=ALICE).json()
    assert messages[0]["content"] == "hey"
    assert client.get("/api/chat/c1/messages", headers=BOB).status_code == 401


def test_visibility(client, store):
    store.save_chat(Conversation(id="c1", user_id="alice", workspace_id="ws-1"))
    resp = client.patch("/api/chat/visibility", json={"chatId": "c1", "visibility": "public"}, headers=ALICE)
    assert resp.status_code == 200
    assert store.get_chat("c1").sharing == "public"
    bad = client.patch("/api/chat/visibility", json={"chatId": "c1", "visibility": "secret"}, headers=ALICE)
    assert bad.status_code == 400


def test_delete_trailing_messages(client, store):
    store.save_chat(Conversation(id="c1", user_id="alice", workspace_id="ws-1"))
    first = Message(chat_id="c1", user_id="alice", role="user", created_at="2024-01-01T00:00:00+00:00")
    second = Message(chat_id="c1", user_id="alice", role="assistant", created_at="2024-01-01T00:00:05+00:00")
    store.save_messages([first, second])

    resp = client.delete("/api/messages/trailing", params={"id": second.id}, headers=ALICE)

    assert resp.json() == {"deleted": 1}
    assert [m.id for m in store.get_messages_by_chat("c1")] == [first.id]


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------

def test_votes(client, store):
    store.save_chat(Conversation(id="c1", user_id="alice", workspace_id="ws-1"))
    resp = client.patch("/api/vote", json={"chat_id": "c1", "message_id": "m1", "type": "up"}, headers=ALICE)
    assert resp.text == "Message voted"
    votes = client.get("/api/vote", params={"chatId": "c1"}, headers=ALICE).json()
    assert votes == [{"chat_id": "c1", "message_id": "m1", "is_upvoted": True}]


def test_vote_validation(client):
    assert client.get("/api/vote", headers=ALICE).status_code == 400
    resp = client.patch("/api/vote", json={"chat_id": "c1", "type": "sideways"}, headers=ALICE)
    assert resp.status_code == 400
    assert resp.text == "chat_id, message_id and type are required"


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------

def test_agent_lifecycle(client, store):
    created = client.post(
        "/api/agents",
        json={"name": "Counsel", "model": "openai/gpt-4o", "prompt": "Review contracts."},
        headers=ALICE,
    )
    assert created.status_code == 201
    agent_id = created.json()["id"]
    assert created.json()["workspace_id"] == "ws-1"

    assert [a["id"] for a in client.get("/api/agents", headers=ALICE).json()] == [agent_id]
    assert client.get(f"/api/agents/{agent_id}", headers=BOB).status_code == 401

    patched = client.patch(f"/api/agents/{agent_id}", json={"prompt": "Be brief."}, headers=ALICE)
    assert patched.json()["prompt"] == "Be brief."

    assert client.delete(f"/api/agents/{agent_id}", headers=ALICE).text == "Agent deleted"
    assert store.get_agent(agent_id) is None


def test_agent_create_validation(client):
    resp = client.post("/api/agents", json={"name": ""}, headers=ALICE)
    assert resp.status_code == 400
    assert resp.json()["details"]


def test_chat_with_agent(client, store, model_client):
    """agent/<id> runs on the agent's model and prompt."""
    store.save_agent(Agent(id="a1", user_id="alice", workspace_id="ws-1", name="A",
                           model="anthropic/claude-3-5-sonnet", prompt="Speak like a pirate."))
    resp = client.post("/api/chat", json=_body(model="agent/a1"), headers=ALICE)
    assert resp.status_code == 200
    call = model_client.stream_calls[0]
    assert call["model"] == "anthropic/claude-3-5-sonnet"
    assert call["system"] == "Speak like a pirate."


def test_chat_with_other_tenants_agent(client, store, model_client):
    """Bob's agent is invisible to Alice; its prompt never lands in her history."""
    store.save_agent(Agent(id="bob-agent", user_id="bob", workspace_id="ws-2", name="B",
                           model="chat-model", prompt="BOB-SECRET-PROMPT"))
    resp = client.post("/api/chat", json=_body(model="agent/bob-agent"), headers=ALICE)
    assert resp.status_code == 404
    assert resp.text == "Agent not found"
    assert store.get_chat("chat-1") is None
    assert model_client.stream_calls == []
    assert "BOB-SECRET-PROMPT" not in client.get("/api/history", headers=ALICE).text


# ---------------------------------------------------------------------------
# Catalog, tools, stats, health
# ---------------------------------------------------------------------------

def test_models_lists_agents_for_caller(client, store):
    store.save_agent(Agent(id="a1", user_id="alice", workspace_id="ws-1", name="A", model="m"))
    anonymous = client.get("/api/models").json()
    assert anonymous["agents"] == []
    catalog = client.get("/api/models", headers=ALICE).json()
    assert catalog["agents"][0]["id"] == "agent/a1"
    assert catalog["chat_models"]


def test_mcp_tools_grouped_by_server(client):
    assert client.get("/api/mcp-tools").json() == {"servers": {"files": ["files_read", "files_write"]}}


def test_mcp_tools_keep_underscored_server_names(cfg, store, model_client, tmp_path):
    """A server called my_server is not split at its own underscore."""
    read = MagicMock()
    read.name = "read_file"
    manager = MCPToolManager(tmp_path / "mcp.json")
    manager.tools = {"my_server": [read]}
    registry = ToolRegistry(cfg, mcp_manager=manager)
    app = create_app(cfg, store=store, model_client=model_client, tool_registry=registry)
    with TestClient(app) as c:
        servers = c.get("/api/mcp-tools").json()["servers"]
    assert servers == {"my_server": ["my_server_read_file"]}


def test_stats(client, store):
    store.increment_daily_usage("alice", "m", "ws-1", 10, 4)
    data = client.get("/api/stats", headers=ALICE).json()
    assert data["totals"] == {"messages": 1, "input_tokens": 10, "output_tokens": 4}
    assert client.get("/api/stats").status_code == 401


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_backends_without_router(client):
    assert client.get("/api/backends").json() == {"enabled": False, "backends": {}}


def test_backends_report_router_health(cfg, store, registry):
    """The live model client's router is asked for per-backend health."""
    router = MultiBackendRouter([
        {"provider": "openai_compat", "name": "local", "url": "http://local", "priority": 1},
    ])
    router.backends[0].health_check = AsyncMock(return_value=False)
    app = create_app(cfg, store=store, model_client=ModelClient(router, cfg), tool_registry=registry)
    with TestClient(app) as c:
        data = c.get("/api/backends").json()
    assert data == {"enabled": True, "backends": {"local": {"healthy": False, "priority": 1}}}
