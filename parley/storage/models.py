"""
Data models for conversation storage.
These define the shape of data flowing between the pipeline and the store.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4


def _uuid() -> str:
    return str(uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Conversation:
    """A chat owned by one user inside one workspace."""
    id: str = field(default_factory=_uuid)
    user_id: str = ""
    workspace_id: str = ""
    name: str = ""
    model: str = ""             # as requested, agent/<id> for agent chats
    prompt: str = ""
    temperature: float = 0.5
    context_length: int = 1000
    embeddings_provider: str = "openai"
    include_profile_context: bool = True
    include_workspace_instructions: bool = True
    assistant_id: str | None = None
    folder_id: str | None = None
    sharing: str = "private"
    last_shared_message_id: str | None = None
    created_at: str = field(default_factory=_now)


@dataclass
class Message:
    """A single message in a conversation."""
    id: str = field(default_factory=_uuid)
    chat_id: str = ""
    user_id: str = ""
    role: str = ""           # "user" or "assistant"
    content: str = ""
    parts: list = field(default_factory=list)
    attachments: list = field(default_factory=list)
    model: str = ""
    sequence_number: int = 0  # assigned by the store on insert
    created_at: str = field(default_factory=_now)

    def to_ui_format(self) -> dict:
        """Shape expected by the chat client."""
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "parts": self.parts,
            "experimental_attachments": self.attachments,
            "createdAt": self.created_at,
        }


@dataclass
class Agent:
    """A reusable (model, prompt, parameters) bundle, addressed as agent/<id>."""
    id: str = field(default_factory=_uuid)
    user_id: str = ""
    workspace_id: str = ""
    name: str = ""
    description: str = ""
    model: str = ""
    prompt: str = ""
    temperature: float = 0.5
    context_length: int = 4096
    created_at: str = field(default_factory=_now)


@dataclass
class Vote:
    chat_id: str
    message_id: str
    is_upvoted: bool


@dataclass
class UsageRecord:
    """Per (day, user, model, workspace) message and token counters."""
    day: str
    user_id: str
    model: str
    workspace_id: str
    message_count: int = 0
    input_token_count: int = 0
    output_token_count: int = 0


@dataclass
class Document:
    """One version of a document artifact; versions share the id."""
    id: str = field(default_factory=_uuid)
    user_id: str = ""
    title: str = ""
    kind: str = "text"       # "text" or "code"
    content: str = ""
    created_at: str = field(default_factory=_now)


@dataclass
class Suggestion:
    document_id: str
    document_created_at: str
    original_text: str
    suggested_text: str
    description: str = ""
    user_id: str = ""
    is_resolved: bool = False
    id: str = field(default_factory=_uuid)
    created_at: str = field(default_factory=_now)


@dataclass
class Contact:
    user_id: str
    name: str
    email: str = ""
    company: str = ""
    id: str = field(default_factory=_uuid)
    created_at: str = field(default_factory=_now)


@dataclass
class ContractField:
    document_id: str
    contact_id: str
    user_id: str
    field_name: str
    field_type: str
    placeholder_text: str
    field_value: str | None = None
    is_required: bool = False
    is_filled: bool = False
    id: str = field(default_factory=_uuid)
    created_at: str = field(default_factory=_now)


@dataclass
class SigningLink:
    document_id: str
    contact_id: str
    token: str = field(default_factory=lambda: uuid4().hex)
    status: str = "pending"   # pending | sent | signed
    id: str = field(default_factory=_uuid)
    created_at: str = field(default_factory=_now)
