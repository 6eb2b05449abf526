"""
Caller identity.

A request is authenticated by a bearer token (Authorization header) or the
parley_session cookie. Tokens are looked up in the static table from
config.yaml (auth.tokens) first, then in the store's sessions table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

SESSION_COOKIE = "parley_session"


@dataclass(frozen=True)
class Caller:
    id: str
    current_workspace: str


class SessionResolver:
    def __init__(self, store, static_tokens: dict | None = None):
        self.store = store
        self.static_tokens = static_tokens or {}

    @staticmethod
    def _token(authorization: str | None, cookie: str | None) -> str | None:
        if authorization:
            scheme, _, value = authorization.partition(" ")
            if scheme.lower() == "bearer" and value.strip():
                return value.strip()
        return cookie or None

    def resolve(self, authorization: str | None = None, cookie: str | None = None) -> Caller | None:
        """Return the caller for the presented token, or None."""
        token = self._token(authorization, cookie)
        if not token:
            return None

        entry = self.static_tokens.get(token)
        if entry:
            return Caller(id=entry["user_id"], current_workspace=entry["workspace_id"])

        session = self.store.get_session(token)
        if session:
            return Caller(id=session["user_id"], current_workspace=session["workspace_id"])

        logger.debug("Unknown session token presented")
        return None

    def from_request(self, request) -> Caller | None:
        return self.resolve(
            request.headers.get("authorization"),
            request.cookies.get(SESSION_COOKIE),
        )
