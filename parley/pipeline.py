"""
Chat pipeline: one POST /api/chat from request body to finished stream.

    prepare   validate → authenticate → resolve model → resolve conversation
              → build tools → persist user message
    generate  stream the model turn into a DataStreamWriter
    finalize  persist the assistant message and bump usage (best effort)

The model is resolved before the conversation so that an unknown agent
leaves no trace: no conversation, no title generation, no message.
Everything in prepare raises ChatError subclasses and runs before any
byte of the response is sent. After that, failures only reach the client
through the stream's error channel.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import AsyncIterator

from pydantic import ValidationError

from parley.auth import Caller
from parley.errors import (
    AgentLookupError,
    AgentNotFoundError,
    MissingAssistantMessageError,
    NotFoundError,
    RequestValidationError,
    UnauthorizedError,
)
from parley.generation import GenerationResult
from parley.messages import (
    build_assistant_message,
    message_text,
    most_recent_user_message,
    to_provider_messages,
)
from parley.prompts import TITLE_PROMPT, system_prompt
from parley.schemas import ChatRequest
from parley.storage.models import Conversation, Message
from parley.streaming import DataStreamWriter
from parley.tools.filter import filter_tools
from parley.tools.registry import ToolContext

logger = logging.getLogger(__name__)

DEFAULT_ALWAYS_ENABLED = [
    "sendDocumentForSigning",
    "createDocument",
    "updateDocument",
    "requestSuggestions",
    "requestContractFields",
]
MAX_TITLE_LENGTH = 80


@dataclass
class ChatTurn:
    """Everything resolved for one turn; immutable once prepare() returns."""
    request: ChatRequest
    caller: Caller
    chat: Conversation
    user_message: dict
    model: str                  # effective model
    system: str                 # effective system prompt
    tools: dict = field(default_factory=dict)
    agent_id: str | None = None


def require_chat(store, chat_id: str, caller: Caller) -> Conversation:
    """Load a chat the caller owns, or raise NotFound / Unauthorized."""
    chat = store.get_chat(chat_id)
    if chat is None:
        raise NotFoundError("Chat not found")
    if chat.user_id != caller.id:
        raise UnauthorizedError()
    return chat


def _agent_visible(agent, caller: Caller) -> bool:
    return agent.user_id == caller.id or agent.workspace_id == caller.current_workspace


class ChatPipeline:
    def __init__(self, store, model_client, tool_registry, cfg: dict | None = None):
        self.store = store
        self.model_client = model_client
        self.tool_registry = tool_registry
        self.cfg = cfg or {}
        chat_cfg = self.cfg.get("chat", {})
        self.max_steps = chat_cfg.get("max_steps", 5)
        self.agent_prefix = chat_cfg.get("agent_prefix", "agent/")
        self.defaults = chat_cfg.get("defaults", {})
        self.always_enabled = chat_cfg.get("always_enabled_tools", DEFAULT_ALWAYS_ENABLED)
        self.title_model = self.cfg.get("models", {}).get("title_model", "title-model")

    # ─ Stages ─────────────────────────────────────────────────────────────

    @staticmethod
    def validate(payload) -> ChatRequest:
        try:
            return ChatRequest.model_validate(payload)
        except ValidationError as e:
            details = json.loads(e.json())
            logger.warning("Invalid chat request: %s", details)
            raise RequestValidationError(details=details) from e

    def resolve_model(self, selected: str, caller: Caller) -> tuple[str, str, str | None]:
        """
        selected model id → (effective model, system prompt, agent id).
        agent/<id> substitutes the agent's model and prompt. Only agents the
        caller owns or that live in the caller's current workspace resolve.
        """
        if not selected.startswith(self.agent_prefix):
            return selected, system_prompt(selected, self.cfg), None

        agent_id = selected[len(self.agent_prefix):]
        try:
            agent = self.store.get_agent(agent_id)
        except sqlite3.Error as e:
            logger.error("Error fetching agent %s: %s", agent_id, e)
            raise AgentLookupError() from e
        if agent is None or not _agent_visible(agent, caller):
            logger.info("Agent %s not found for %s", agent_id, caller.id)
            raise AgentNotFoundError()

        return agent.model, agent.prompt or system_prompt(agent.model, self.cfg), agent.id

    async def generate_title(self, user_message: dict) -> str:
        title = await self.model_client.generate_text(
            self.title_model, TITLE_PROMPT, json.dumps(user_message),
        )
        title = title.strip().strip('"').replace(":", "")
        return title[:MAX_TITLE_LENGTH] or "New chat"

    async def resolve_conversation(
        self, request: ChatRequest, caller: Caller, user_message: dict, agent_id: str | None, prompt: str,
    ) -> Conversation:
        chat = self.store.get_chat(request.id)
        if chat is not None:
            if chat.user_id != caller.id:
                logger.warning("User %s does not own chat %s", caller.id, request.id)
                raise UnauthorizedError()
            return chat

        title = await self.generate_title(user_message)
        d = self.defaults
        chat = Conversation(
            id=request.id,
            user_id=caller.id,
            workspace_id=caller.current_workspace,
            name=title,
            model=request.selectedChatModel,
            prompt=prompt if agent_id else "",
            temperature=d.get("temperature", 0.5),
            context_length=d.get("context_length", 1000),
            embeddings_provider=d.get("embeddings_provider", "openai"),
            include_profile_context=d.get("include_profile_context", True),
            include_workspace_instructions=d.get("include_workspace_instructions", True),
            assistant_id=agent_id,
            sharing=d.get("sharing", "private"),
        )
        self.store.save_chat(chat)
        logger.info("Created chat %s for user %s: %s", chat.id, caller.id, title)
        return chat

    @staticmethod
    def selected_external_tools(request: ChatRequest) -> list[str]:
        """data.mcpTools carries a JSON-encoded list of external tool names."""
        raw = (request.data or {}).get("mcpTools")
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Error parsing MCP tools selection: %s", e)
            return []
        if not isinstance(parsed, list):
            return []
        return [name for name in parsed if isinstance(name, str)]

    def build_tools(self, request: ChatRequest) -> dict:
        return filter_tools(
            self.tool_registry.all_tools(),
            request.supportsTools,
            request.selectedTools or [],
            self.selected_external_tools(request),
            self.always_enabled,
        )

    def persist_user_message(self, request: ChatRequest, caller: Caller, user_message: dict) -> Message:
        text = message_text(user_message)
        message = Message(
            chat_id=request.id,
            user_id=caller.id,
            role="user",
            content=text,
            parts=user_message.get("parts") or [{"type": "text", "text": text}],
            attachments=user_message.get("experimental_attachments") or [],
            model=request.selectedChatModel,
        )
        if user_message.get("id"):
            message.id = user_message["id"]
        self.store.save_messages([message])
        return message

    async def prepare(self, payload, caller: Caller | None) -> ChatTurn:
        request = self.validate(payload)

        if caller is None:
            raise UnauthorizedError()

        user_message = most_recent_user_message(request.messages)
        if user_message is None:
            raise RequestValidationError("No user message found")

        model, prompt, agent_id = self.resolve_model(request.selectedChatModel, caller)
        chat = await self.resolve_conversation(request, caller, user_message, agent_id, prompt)
        tools = self.build_tools(request)
        self.persist_user_message(request, caller, user_message)

        logger.info(
            "Chat %s: model=%s (requested %s), tools=%s",
            chat.id, model, request.selectedChatModel, sorted(tools),
        )
        return ChatTurn(
            request=request,
            caller=caller,
            chat=chat,
            user_message=user_message,
            model=model,
            system=prompt,
            tools=tools,
            agent_id=agent_id,
        )

    async def generate(self, turn: ChatTurn, writer: DataStreamWriter) -> GenerationResult | None:
        """Stream the turn. Upstream failures go to the error channel."""
        context = ToolContext(
            caller=turn.caller,
            chat_id=turn.chat.id,
            writer=writer,
            store=self.store,
            model_client=self.model_client,
            cfg=self.cfg,
        )
        try:
            return await self.model_client.stream_text(
                model=turn.model,
                system=turn.system,
                messages=to_provider_messages(turn.request.messages),
                tools=turn.tools,
                max_steps=self.max_steps,
                writer=writer,
                context=context,
            )
        except Exception as e:
            logger.exception("Generation failed for chat %s", turn.chat.id)
            writer.write_error(str(e) or "Oops, an error occured!")
            return None

    def finalize(self, turn: ChatTurn, result: GenerationResult) -> bool:
        """Persist the assistant reply and usage. Failures are logged only."""
        try:
            assistant = build_assistant_message(result.messages)
            if assistant is None:
                raise MissingAssistantMessageError("No assistant message found!")

            self.store.save_messages([Message(
                id=assistant["id"],
                chat_id=turn.chat.id,
                user_id=turn.caller.id,
                role="assistant",
                content=assistant["content"],
                parts=assistant["parts"],
                model=turn.request.selectedChatModel,
            )])
            self.store.increment_daily_usage(
                user_id=turn.caller.id,
                model=turn.model,
                workspace_id=turn.caller.current_workspace,
                input_tokens=result.usage.prompt_tokens,
                output_tokens=result.usage.completion_tokens,
            )
        except MissingAssistantMessageError as e:
            logger.error("Failed to save chat %s: %s", turn.chat.id, e)
            return False
        except Exception:
            logger.exception("Failed to save chat %s", turn.chat.id)
            return False

        logger.info(
            "Chat %s turn saved (%d in / %d out tokens)",
            turn.chat.id, result.usage.prompt_tokens, result.usage.completion_tokens,
        )
        return True

    # ─ Streaming ──────────────────────────────────────────────────────────

    async def _run(self, turn: ChatTurn, writer: DataStreamWriter):
        try:
            result = await self.generate(turn, writer)
            if result is not None:
                self.finalize(turn, result)
        finally:
            writer.close()

    async def stream(self, turn: ChatTurn) -> AsyncIterator[str]:
        """
        Response body iterator. Generation runs in its own task; if the
        client goes away first, that task is cancelled and nothing is
        finalized.
        """
        writer = DataStreamWriter()
        task = asyncio.create_task(self._run(turn, writer))
        try:
            async for line in writer:
                yield line
        finally:
            if not task.done():
                logger.info("Client disconnected from chat %s, cancelling generation", turn.chat.id)
                task.cancel()

    # ─ Deletion ───────────────────────────────────────────────────────────

    def delete_chat(self, chat_id: str | None, caller: Caller | None):
        if not chat_id:
            raise NotFoundError()
        if caller is None:
            raise UnauthorizedError()
        chat = self.store.get_chat(chat_id)
        if chat is None:
            raise NotFoundError("Chat Not Found")
        if chat.user_id != caller.id:
            logger.warning("User %s may not delete chat %s", caller.id, chat_id)
            raise UnauthorizedError()
        self.store.delete_chat(chat_id)
