"""
Persistence for parley: dataclass models and the SQLite store.
"""
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
from parley.storage.sqlite_store import SQLiteStore

__all__ = [
    "Agent",
    "Contact",
    "ContractField",
    "Conversation",
    "Document",
    "Message",
    "SigningLink",
    "SQLiteStore",
    "Suggestion",
    "UsageRecord",
    "Vote",
]
