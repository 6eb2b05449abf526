"""
FastAPI application: the parley entry point.

create_app() builds the app. Collaborators (store, model client, tool
registry) are constructed in the lifespan from config.yaml unless they are
passed in, and live on app.state for the lifetime of the process.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

from parley.auth import SessionResolver
from parley.backends.router import MultiBackendRouter
from parley.catalog import list_catalog
from parley.config import get_config
from parley.errors import ChatError, NotFoundError, RequestValidationError, UnauthorizedError
from parley.generation import ModelClient
from parley.pipeline import ChatPipeline, require_chat
from parley.schemas import AgentCreate, AgentUpdate, VisibilityRequest, VoteRequest
from parley.storage.models import Agent
from parley.storage.sqlite_store import SQLiteStore
from parley.streaming import STREAM_HEADERS
from parley.tools.mcp_clients import MCPToolManager
from parley.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "An error occurred while processing your request!"


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, log_cfg.get("level", "INFO").upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _caller(request: Request):
    return request.app.state.resolver.from_request(request)


def _require_caller(request: Request):
    caller = _caller(request)
    if caller is None:
        raise UnauthorizedError()
    return caller


def _owned_agent(request: Request, agent_id: str) -> Agent:
    caller = _require_caller(request)
    agent = request.app.state.store.get_agent(agent_id)
    if agent is None:
        raise NotFoundError("Agent not found")
    if agent.user_id != caller.id:
        raise UnauthorizedError()
    return agent


def create_app(cfg: dict | None = None, store=None, model_client=None, tool_registry=None) -> FastAPI:
    cfg = cfg if cfg is not None else get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup / shutdown lifecycle."""
        _setup_logging(cfg)

        app.state.store = store or SQLiteStore(cfg["storage"]["sqlite_path"])

        mcp_manager = None
        if tool_registry is not None:
            app.state.tool_registry = tool_registry
        else:
            mcp_cfg = cfg.get("mcp", {})
            if mcp_cfg.get("enabled", True):
                mcp_manager = MCPToolManager(mcp_cfg.get("config_path", "./mcp-config.json"))
                await mcp_manager.start()
            app.state.tool_registry = ToolRegistry(cfg, mcp_manager)

        if model_client is not None:
            app.state.model_client = model_client
        else:
            router = MultiBackendRouter(cfg.get("backend", {}).get("providers", []))
            app.state.model_client = ModelClient(router, cfg)
        app.state.backend_router = getattr(app.state.model_client, "router", None)

        app.state.resolver = SessionResolver(app.state.store, cfg.get("auth", {}).get("tokens"))
        app.state.pipeline = ChatPipeline(
            app.state.store, app.state.model_client, app.state.tool_registry, cfg,
        )
        logger.info("parley started (%d tools)", len(app.state.tool_registry.list_tools()))

        yield

        if mcp_manager is not None:
            await mcp_manager.close()
        logger.info("parley shut down")

    app = FastAPI(title="parley", version="0.1.0", lifespan=lifespan)

    media_dir = Path(cfg.get("storage", {}).get("media_dir", "./data/media"))
    media_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/media", StaticFiles(directory=str(media_dir)), name="media")

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        if isinstance(exc, RequestValidationError) and exc.details:
            return JSONResponse(
                {"error": exc.message, "details": exc.details},
                status_code=exc.status_code,
            )
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    # -----------------------------------------------------------------------
    # Chat
    # -----------------------------------------------------------------------

    @app.post("/api/chat")
    async def chat(request: Request):
        pipeline: ChatPipeline = request.app.state.pipeline
        try:
            try:
                payload = await request.json()
            except json.JSONDecodeError:
                raise RequestValidationError(details=[{"msg": "Body is not valid JSON"}])
            turn = await pipeline.prepare(payload, _caller(request))
        except ChatError:
            raise
        except Exception:
            logger.exception("Chat request failed before streaming")
            return PlainTextResponse(INTERNAL_ERROR, status_code=500)

        return StreamingResponse(
            pipeline.stream(turn),
            media_type="text/plain; charset=utf-8",
            headers=STREAM_HEADERS,
        )

    @app.delete("/api/chat")
    async def delete_chat(request: Request, id: str | None = None):
        try:
            request.app.state.pipeline.delete_chat(id, _caller(request))
        except ChatError:
            raise
        except Exception:
            logger.exception("Failed to delete chat %s", id)
            return PlainTextResponse(INTERNAL_ERROR, status_code=500)
        return PlainTextResponse("Chat deleted")

    @app.patch("/api/chat/visibility")
    async def chat_visibility(request: Request):
        caller = _require_caller(request)
        try:
            body = VisibilityRequest.model_validate(await request.json())
        except (ValidationError, json.JSONDecodeError):
            return PlainTextResponse("chatId and visibility are required", status_code=400)
        store = request.app.state.store
        require_chat(store, body.chatId, caller)
        store.update_chat_sharing(body.chatId, body.visibility)
        return PlainTextResponse("Visibility updated")

    @app.get("/api/history")
    async def history(request: Request):
        caller = _require_caller(request)
        chats = request.app.state.store.get_chats_by_user(caller.id)
        return JSONResponse([dataclasses.asdict(c) for c in chats])

    @app.get("/api/chat/{chat_id}/messages")
    async def chat_messages(request: Request, chat_id: str):
        caller = _require_caller(request)
        store = request.app.state.store
        require_chat(store, chat_id, caller)
        return JSONResponse([m.to_ui_format() for m in store.get_messages_by_chat(chat_id)])

    @app.delete("/api/messages/trailing")
    async def delete_trailing_messages(request: Request, id: str | None = None):
        caller = _require_caller(request)
        store = request.app.state.store
        message = store.get_message(id) if id else None
        if message is None:
            raise NotFoundError("Message not found")
        require_chat(store, message.chat_id, caller)
        deleted = store.delete_messages_after(message.chat_id, message.created_at)
        return JSONResponse({"deleted": deleted})

    # -----------------------------------------------------------------------
    # Votes
    # -----------------------------------------------------------------------

    @app.get("/api/vote")
    async def get_votes(request: Request, chatId: str | None = None):
        if not chatId:
            return PlainTextResponse("chatId is required", status_code=400)
        caller = _require_caller(request)
        store = request.app.state.store
        require_chat(store, chatId, caller)
        return JSONResponse([dataclasses.asdict(v) for v in store.get_votes(chatId)])

    @app.patch("/api/vote")
    async def vote(request: Request):
        try:
            body = VoteRequest.model_validate(await request.json())
        except (ValidationError, json.JSONDecodeError):
            return PlainTextResponse("chat_id, message_id and type are required", status_code=400)
        caller = _require_caller(request)
        store = request.app.state.store
        require_chat(store, body.chat_id, caller)
        store.vote_message(body.chat_id, body.message_id, body.type)
        return PlainTextResponse("Message voted")

    # -----------------------------------------------------------------------
    # Agents
    # -----------------------------------------------------------------------

    @app.get("/api/agents")
    async def list_agents(request: Request):
        caller = _require_caller(request)
        agents = request.app.state.store.list_agents(caller.id, caller.current_workspace)
        return JSONResponse([dataclasses.asdict(a) for a in agents])

    @app.post("/api/agents")
    async def create_agent(request: Request):
        caller = _require_caller(request)
        try:
            body = AgentCreate.model_validate(await request.json())
        except ValidationError as e:
            raise RequestValidationError(details=json.loads(e.json()))
        agent = Agent(user_id=caller.id, workspace_id=caller.current_workspace, **body.model_dump())
        request.app.state.store.save_agent(agent)
        return JSONResponse(dataclasses.asdict(agent), status_code=201)

    @app.get("/api/agents/{agent_id}")
    async def get_agent(request: Request, agent_id: str):
        return JSONResponse(dataclasses.asdict(_owned_agent(request, agent_id)))

    @app.patch("/api/agents/{agent_id}")
    async def update_agent(request: Request, agent_id: str):
        _owned_agent(request, agent_id)
        try:
            body = AgentUpdate.model_validate(await request.json())
        except ValidationError as e:
            raise RequestValidationError(details=json.loads(e.json()))
        agent = request.app.state.store.update_agent(agent_id, **body.model_dump(exclude_none=True))
        return JSONResponse(dataclasses.asdict(agent))

    @app.delete("/api/agents/{agent_id}")
    async def delete_agent(request: Request, agent_id: str):
        _owned_agent(request, agent_id)
        request.app.state.store.delete_agent(agent_id)
        return PlainTextResponse("Agent deleted")

    # -----------------------------------------------------------------------
    # Catalog, tools, stats
    # -----------------------------------------------------------------------

    @app.get("/api/models")
    async def models(request: Request):
        catalog = list_catalog(cfg)
        caller = _caller(request)
        agents = []
        if caller is not None:
            prefix = cfg.get("chat", {}).get("agent_prefix", "agent/")
            agents = [
                {"id": f"{prefix}{a.id}", "name": a.name, "description": a.description, "model": a.model}
                for a in request.app.state.store.list_agents(caller.id, caller.current_workspace)
            ]
        catalog["agents"] = agents
        return JSONResponse(catalog)

    @app.get("/api/mcp-tools")
    async def mcp_tools(request: Request):
        return JSONResponse({"servers": request.app.state.tool_registry.external_by_server()})

    @app.get("/api/stats")
    async def stats(request: Request, days: int = 30):
        caller = _require_caller(request)
        usage = request.app.state.store.get_usage(caller.id, days)
        return JSONResponse({
            "days": days,
            "usage": [dataclasses.asdict(u) for u in usage],
            "totals": {
                "messages": sum(u.message_count for u in usage),
                "input_tokens": sum(u.input_token_count for u in usage),
                "output_tokens": sum(u.output_token_count for u in usage),
            },
        })

    @app.get("/api/health")
    async def health():
        return JSONResponse({"status": "ok"})

    @app.get("/api/backends")
    async def backends(request: Request):
        """Reachability of every configured model backend."""
        router = request.app.state.backend_router
        if router is None:
            return JSONResponse({"enabled": False, "backends": {}})
        return JSONResponse({"enabled": True, "backends": await router.health()})

    return app
