"""
CRM sessions and the session store.

A CrmSession is the decrypted credential set for one team's CRM connection.
Its access token is replaced in place after a refresh, so every query in
the same search picks up the new token. The session store is owned by the
caller and injected into the server; the engine itself keeps no sessions.
"""

import time
from typing import Dict, Optional, Protocol, Tuple

from pydantic import BaseModel, Field, field_validator

from crm_search.utils.logging import get_logger

logger = get_logger(__name__)


class CrmSession(BaseModel):
    """Credential/session object for one CRM connection."""

    access_token: str
    instance_url: str
    refresh_token: Optional[str] = None
    team_id: Optional[str] = None
    refreshed_at: Optional[float] = Field(None, description="Epoch seconds of the last refresh")

    @field_validator("instance_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def replace_access_token(self, access_token: str) -> None:
        """Swap in a refreshed access token."""
        self.access_token = access_token
        self.refreshed_at = time.time()


class SessionStore(Protocol):
    """Lookup of team sessions, owned by the embedding application."""

    def get(self, team_id: str) -> Optional[CrmSession]:
        ...

    def put(self, session: CrmSession) -> None:
        ...

    def remove(self, team_id: str) -> None:
        ...


class InMemorySessionStore:
    """
    Session store keeping sessions in a dict for a fixed time.

    Entries older than ``ttl_seconds`` are evicted on read, so a team whose
    credentials change upstream is reloaded within one TTL.
    """

    def __init__(self, ttl_seconds: float = 15 * 60):
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[str, Tuple[CrmSession, float]] = {}

    def get(self, team_id: str) -> Optional[CrmSession]:
        entry = self._sessions.get(team_id)
        if entry is None:
            return None

        session, stored_at = entry
        if time.monotonic() - stored_at > self.ttl_seconds:
            logger.debug(f"Session for team {team_id} expired")
            del self._sessions[team_id]
            return None
        return session

    def put(self, session: CrmSession) -> None:
        if not session.team_id:
            raise ValueError("Session must carry a team_id to be stored")
        self._sessions[session.team_id] = (session, time.monotonic())

    def remove(self, team_id: str) -> None:
        self._sessions.pop(team_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
