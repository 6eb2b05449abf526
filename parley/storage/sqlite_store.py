"""
SQLite storage for conversations, messages and everything the chat
pipeline and its tools persist.
Single portable file. Query with SQL.
"""

import sqlite3
import json
import logging
import secrets
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from contextlib import contextmanager

from parley.storage.models import (
    Agent,
    Contact,
    ContractField,
    Conversation,
    Document,
    Message,
    SigningLink,
    Suggestion,
    UsageRecord,
    Vote,
)

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS chats (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    workspace_id TEXT NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    model TEXT NOT NULL DEFAULT '',
    prompt TEXT NOT NULL DEFAULT '',
    temperature REAL NOT NULL DEFAULT 0.5,
    context_length INTEGER NOT NULL DEFAULT 1000,
    embeddings_provider TEXT NOT NULL DEFAULT 'openai',
    include_profile_context INTEGER NOT NULL DEFAULT 1,
    include_workspace_instructions INTEGER NOT NULL DEFAULT 1,
    assistant_id TEXT DEFAULT NULL,
    folder_id TEXT DEFAULT NULL,
    sharing TEXT NOT NULL DEFAULT 'private',
    last_shared_message_id TEXT DEFAULT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    chat_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    parts TEXT NOT NULL DEFAULT '[]',
    attachments TEXT NOT NULL DEFAULT '[]',
    model TEXT DEFAULT '',
    sequence_number INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    FOREIGN KEY (chat_id) REFERENCES chats(id)
);

CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    workspace_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    model TEXT NOT NULL,
    prompt TEXT NOT NULL DEFAULT '',
    temperature REAL NOT NULL DEFAULT 0.5,
    context_length INTEGER NOT NULL DEFAULT 4096,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS votes (
    chat_id TEXT NOT NULL,
    message_id TEXT NOT NULL,
    is_upvoted INTEGER NOT NULL,
    PRIMARY KEY (chat_id, message_id)
);

CREATE TABLE IF NOT EXISTS daily_usage (
    day TEXT NOT NULL,
    user_id TEXT NOT NULL,
    model TEXT NOT NULL,
    workspace_id TEXT NOT NULL,
    message_count INTEGER NOT NULL DEFAULT 0,
    input_token_count INTEGER NOT NULL DEFAULT 0,
    output_token_count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (day, user_id, model, workspace_id)
);

CREATE TABLE IF NOT EXISTS documents (
    id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    kind TEXT NOT NULL DEFAULT 'text',
    content TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (id, created_at)
);

CREATE TABLE IF NOT EXISTS suggestions (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    document_created_at TEXT NOT NULL,
    original_text TEXT NOT NULL,
    suggested_text TEXT NOT NULL,
    description TEXT DEFAULT '',
    is_resolved INTEGER NOT NULL DEFAULT 0,
    user_id TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS contacts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    email TEXT DEFAULT '',
    company TEXT DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS contract_fields (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    contact_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    field_name TEXT NOT NULL,
    field_type TEXT NOT NULL,
    field_value TEXT DEFAULT NULL,
    placeholder_text TEXT NOT NULL,
    is_required INTEGER NOT NULL DEFAULT 0,
    is_filled INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    UNIQUE (document_id, field_name, contact_id)
);

CREATE TABLE IF NOT EXISTS signing_links (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    contact_id TEXT NOT NULL,
    token TEXT NOT NULL UNIQUE,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    token TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    workspace_id TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chats_user
    ON chats(user_id);
CREATE INDEX IF NOT EXISTS idx_messages_chat
    ON messages(chat_id, sequence_number);
CREATE INDEX IF NOT EXISTS idx_agents_workspace
    ON agents(workspace_id);
CREATE INDEX IF NOT EXISTS idx_contract_fields_document
    ON contract_fields(document_id);
"""

_AGENT_FIELDS = ("name", "description", "model", "prompt", "temperature", "context_length")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _chat_from_row(row) -> Conversation:
    data = dict(row)
    data["include_profile_context"] = bool(data["include_profile_context"])
    data["include_workspace_instructions"] = bool(data["include_workspace_instructions"])
    return Conversation(**data)


def _message_from_row(row) -> Message:
    data = dict(row)
    data["parts"] = json.loads(data["parts"] or "[]")
    data["attachments"] = json.loads(data["attachments"] or "[]")
    return Message(**data)


class SQLiteStore:
    """SQLite-backed conversation store."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ─ Chats ──────────────────────────────────────────────────────────────

    def get_chat(self, chat_id: str) -> Conversation | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM chats WHERE id = ?", (chat_id,)).fetchone()
        return _chat_from_row(row) if row else None

    def save_chat(self, chat: Conversation) -> Conversation:
        """Insert a new chat. Fails if the id already exists."""
        data = asdict(chat)
        cols = ", ".join(data)
        marks = ", ".join("?" for _ in data)
        with self._connect() as conn:
            conn.execute(f"INSERT INTO chats ({cols}) VALUES ({marks})", tuple(data.values()))
        logger.debug("Saved chat %s (user=%s, workspace=%s)", chat.id, chat.user_id, chat.workspace_id)
        return chat

    def delete_chat(self, chat_id: str):
        """Delete a chat together with its votes and messages."""
        with self._connect() as conn:
            conn.execute("DELETE FROM votes WHERE chat_id = ?", (chat_id,))
            conn.execute("DELETE FROM messages WHERE chat_id = ?", (chat_id,))
            conn.execute("DELETE FROM chats WHERE id = ?", (chat_id,))
        logger.info("Deleted chat %s", chat_id)

    def get_chats_by_user(self, user_id: str) -> list[Conversation]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM chats WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,),
            ).fetchall()
        return [_chat_from_row(r) for r in rows]

    def update_chat_sharing(self, chat_id: str, sharing: str):
        with self._connect() as conn:
            conn.execute("UPDATE chats SET sharing = ? WHERE id = ?", (sharing, chat_id))

    def update_chat_last_shared(self, chat_id: str, message_id: str | None):
        with self._connect() as conn:
            conn.execute(
                "UPDATE chats SET last_shared_message_id = ? WHERE id = ?",
                (message_id, chat_id),
            )

    # ─ Messages ───────────────────────────────────────────────────────────

    def save_messages(self, messages: list[Message]) -> list[Message]:
        """
        Insert messages, assigning each the next sequence position in its
        chat. The write lock is taken before the positions are read, so
        concurrent writers on other connections queue behind it.
        """
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            for msg in messages:
                msg.sequence_number = conn.execute(
                    "SELECT COALESCE(MAX(sequence_number), -1) + 1 FROM messages WHERE chat_id = ?",
                    (msg.chat_id,),
                ).fetchone()[0]
                conn.execute(
                    """INSERT INTO messages
                       (id, chat_id, user_id, role, content, parts, attachments,
                        model, sequence_number, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (msg.id, msg.chat_id, msg.user_id, msg.role, msg.content,
                     json.dumps(msg.parts), json.dumps(msg.attachments),
                     msg.model, msg.sequence_number, msg.created_at),
                )
                logger.debug(
                    "Stored message %s (role=%s, chat=%s, seq=%d)",
                    msg.id, msg.role, msg.chat_id, msg.sequence_number,
                )
        return messages

    def get_messages_by_chat(self, chat_id: str) -> list[Message]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE chat_id = ? ORDER BY sequence_number, created_at",
                (chat_id,),
            ).fetchall()
        return [_message_from_row(r) for r in rows]

    def get_message(self, message_id: str) -> Message | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
        return _message_from_row(row) if row else None

    def delete_messages_after(self, chat_id: str, timestamp: str) -> int:
        """Delete every message in the chat created at or after timestamp."""
        with self._connect() as conn:
            conn.execute(
                """DELETE FROM votes WHERE chat_id = ? AND message_id IN
                   (SELECT id FROM messages WHERE chat_id = ? AND created_at >= ?)""",
                (chat_id, chat_id, timestamp),
            )
            cur = conn.execute(
                "DELETE FROM messages WHERE chat_id = ? AND created_at >= ?",
                (chat_id, timestamp),
            )
        return cur.rowcount

    # ─ Agents ─────────────────────────────────────────────────────────────

    def get_agent(self, agent_id: str) -> Agent | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM agents WHERE id = ?", (agent_id,)).fetchone()
        return Agent(**dict(row)) if row else None

    def save_agent(self, agent: Agent) -> Agent:
        data = asdict(agent)
        cols = ", ".join(data)
        marks = ", ".join("?" for _ in data)
        with self._connect() as conn:
            conn.execute(f"INSERT INTO agents ({cols}) VALUES ({marks})", tuple(data.values()))
        logger.info("Saved agent %s (%s → %s)", agent.id, agent.name, agent.model)
        return agent

    def list_agents(self, user_id: str, workspace_id: str) -> list[Agent]:
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM agents WHERE user_id = ? AND workspace_id = ?
                   ORDER BY created_at DESC""",
                (user_id, workspace_id),
            ).fetchall()
        return [Agent(**dict(r)) for r in rows]

    def update_agent(self, agent_id: str, **fields) -> Agent | None:
        updates = {k: v for k, v in fields.items() if k in _AGENT_FIELDS and v is not None}
        if updates:
            assignments = ", ".join(f"{k} = ?" for k in updates)
            with self._connect() as conn:
                conn.execute(
                    f"UPDATE agents SET {assignments} WHERE id = ?",
                    (*updates.values(), agent_id),
                )
        return self.get_agent(agent_id)

    def delete_agent(self, agent_id: str):
        with self._connect() as conn:
            conn.execute("DELETE FROM agents WHERE id = ?", (agent_id,))

    # ─ Votes ──────────────────────────────────────────────────────────────

    def vote_message(self, chat_id: str, message_id: str, vote_type: str):
        """Record an up/down vote; a later vote on the same message replaces it."""
        if vote_type not in ("up", "down"):
            raise ValueError(f"Unknown vote type: {vote_type!r}")
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO votes (chat_id, message_id, is_upvoted) VALUES (?, ?, ?)
                   ON CONFLICT(chat_id, message_id) DO UPDATE SET is_upvoted = excluded.is_upvoted""",
                (chat_id, message_id, 1 if vote_type == "up" else 0),
            )

    def get_votes(self, chat_id: str) -> list[Vote]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM votes WHERE chat_id = ?", (chat_id,)
            ).fetchall()
        return [Vote(r["chat_id"], r["message_id"], bool(r["is_upvoted"])) for r in rows]

    # ─ Usage ──────────────────────────────────────────────────────────────

    def increment_daily_usage(
        self,
        user_id: str,
        model: str,
        workspace_id: str,
        input_tokens: int,
        output_tokens: int,
        day: str | None = None,
    ):
        """Atomically bump the (day, user, model, workspace) counters."""
        day = day or datetime.now(timezone.utc).date().isoformat()
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO daily_usage
                   (day, user_id, model, workspace_id, message_count,
                    input_token_count, output_token_count)
                   VALUES (?, ?, ?, ?, 1, ?, ?)
                   ON CONFLICT(day, user_id, model, workspace_id) DO UPDATE SET
                     message_count = message_count + 1,
                     input_token_count = input_token_count + excluded.input_token_count,
                     output_token_count = output_token_count + excluded.output_token_count""",
                (day, user_id, model, workspace_id, input_tokens or 0, output_tokens or 0),
            )

    def get_usage(self, user_id: str, days: int = 30) -> list[UsageRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM daily_usage
                   WHERE user_id = ? AND day >= date('now', ?)
                   ORDER BY day DESC, model""",
                (user_id, f"-{days} days"),
            ).fetchall()
        return [UsageRecord(**dict(r)) for r in rows]

    # ─ Documents ──────────────────────────────────────────────────────────

    def save_document(self, doc: Document) -> Document:
        """Store a new version of a document."""
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO documents (id, created_at, user_id, title, kind, content)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (doc.id, doc.created_at, doc.user_id, doc.title, doc.kind, doc.content),
            )
        return doc

    def get_document(self, document_id: str) -> Document | None:
        """Latest version of a document."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE id = ? ORDER BY created_at DESC LIMIT 1",
                (document_id,),
            ).fetchone()
        return Document(**dict(row)) if row else None

    def get_document_versions(self, document_id: str) -> list[Document]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM documents WHERE id = ? ORDER BY created_at",
                (document_id,),
            ).fetchall()
        return [Document(**dict(r)) for r in rows]

    def save_suggestions(self, suggestions: list[Suggestion]):
        with self._connect() as conn:
            for s in suggestions:
                conn.execute(
                    """INSERT INTO suggestions
                       (id, document_id, document_created_at, original_text,
                        suggested_text, description, is_resolved, user_id, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (s.id, s.document_id, s.document_created_at, s.original_text,
                     s.suggested_text, s.description, int(s.is_resolved), s.user_id, s.created_at),
                )

    def get_suggestions(self, document_id: str) -> list[Suggestion]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM suggestions WHERE document_id = ? ORDER BY created_at",
                (document_id,),
            ).fetchall()
        result = []
        for r in rows:
            data = dict(r)
            data["is_resolved"] = bool(data["is_resolved"])
            result.append(Suggestion(**data))
        return result

    # ─ Contacts, contract fields, signing links ───────────────────────────

    def save_contact(self, contact: Contact) -> Contact:
        """Insert a contact, reusing an existing one with the same user/name/email."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM contacts WHERE user_id = ? AND name = ? AND email = ?",
                (contact.user_id, contact.name, contact.email),
            ).fetchone()
            if row:
                return Contact(**dict(row))
            conn.execute(
                """INSERT INTO contacts (id, user_id, name, email, company, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (contact.id, contact.user_id, contact.name, contact.email,
                 contact.company, contact.created_at),
            )
        return contact

    def save_contract_fields(self, fields: list[ContractField]):
        with self._connect() as conn:
            for f in fields:
                conn.execute(
                    """INSERT INTO contract_fields
                       (id, document_id, contact_id, user_id, field_name, field_type,
                        field_value, placeholder_text, is_required, is_filled, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(document_id, field_name, contact_id) DO UPDATE SET
                         field_type = excluded.field_type,
                         placeholder_text = excluded.placeholder_text,
                         is_required = excluded.is_required""",
                    (f.id, f.document_id, f.contact_id, f.user_id, f.field_name,
                     f.field_type, f.field_value, f.placeholder_text,
                     int(f.is_required), int(f.is_filled), f.created_at),
                )

    def get_contract_fields(self, document_id: str) -> list[ContractField]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM contract_fields WHERE document_id = ? ORDER BY created_at",
                (document_id,),
            ).fetchall()
        result = []
        for r in rows:
            data = dict(r)
            data["is_required"] = bool(data["is_required"])
            data["is_filled"] = bool(data["is_filled"])
            result.append(ContractField(**data))
        return result

    def create_signing_links(self, document_id: str) -> list[SigningLink]:
        """
        Ensure one open signing link per contact that owns fields in the
        document. Existing unsigned links are reused.
        """
        links: list[SigningLink] = []
        with self._connect() as conn:
            contact_ids = [
                r[0] for r in conn.execute(
                    "SELECT DISTINCT contact_id FROM contract_fields WHERE document_id = ?",
                    (document_id,),
                ).fetchall()
            ]
            for contact_id in contact_ids:
                row = conn.execute(
                    """SELECT * FROM signing_links
                       WHERE document_id = ? AND contact_id = ? AND status != 'signed'""",
                    (document_id, contact_id),
                ).fetchone()
                if row:
                    links.append(SigningLink(**dict(row)))
                    continue
                link = SigningLink(document_id=document_id, contact_id=contact_id)
                conn.execute(
                    """INSERT INTO signing_links (id, document_id, contact_id, token, status, created_at)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (link.id, link.document_id, link.contact_id, link.token,
                     link.status, link.created_at),
                )
                links.append(link)
        return links

    def get_signing_link(self, token: str) -> SigningLink | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM signing_links WHERE token = ?", (token,)).fetchone()
        return SigningLink(**dict(row)) if row else None

    # ─ Sessions ───────────────────────────────────────────────────────────

    def create_session(self, user_id: str, workspace_id: str) -> str:
        token = secrets.token_urlsafe(32)
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO sessions (token, user_id, workspace_id, created_at) VALUES (?, ?, ?, ?)",
                (token, user_id, workspace_id, _now()),
            )
        return token

    def get_session(self, token: str) -> dict | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE token = ?", (token,)).fetchone()
        return dict(row) if row else None

    # ─ Stats ──────────────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        """Return counts of stored data and token totals."""
        with self._connect() as conn:
            chat_count = conn.execute("SELECT COUNT(*) FROM chats").fetchone()[0]
            msg_count = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
            user_count = conn.execute("SELECT COUNT(*) FROM messages WHERE role='user'").fetchone()[0]
            asst_count = conn.execute("SELECT COUNT(*) FROM messages WHERE role='assistant'").fetchone()[0]
            agent_count = conn.execute("SELECT COUNT(*) FROM agents").fetchone()[0]
            tokens = conn.execute(
                """SELECT COALESCE(SUM(input_token_count), 0),
                          COALESCE(SUM(output_token_count), 0)
                   FROM daily_usage"""
            ).fetchone()

            model_rows = conn.execute(
                """SELECT model,
                          SUM(message_count) as messages,
                          SUM(input_token_count + output_token_count) as tokens
                   FROM daily_usage
                   GROUP BY model
                   ORDER BY messages DESC"""
            ).fetchall()
            models = {
                row["model"]: {"messages": row["messages"], "tokens": row["tokens"]}
                for row in model_rows
            }

        return {
            "chats": chat_count,
            "messages": msg_count,
            "user_messages": user_count,
            "assistant_messages": asst_count,
            "agents": agent_count,
            "tokens": {
                "input": tokens[0],
                "output": tokens[1],
                "total": tokens[0] + tokens[1],
            },
            "models": models,
        }
