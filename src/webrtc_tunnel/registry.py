"""Session registry keyed by session id."""

from pydantic import BaseModel, ConfigDict, Field

from .common.exceptions import SessionRegistryError
from .common.logging import get_logger
from .endpoints.base import PeerSession
from .models import SessionStatus

logger = get_logger(__name__)


class SessionRegistry(BaseModel):
    """In-memory store for active peer sessions of one role."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(default="sessions", description="Registry name used in logs")
    sessions: dict[str, PeerSession] = Field(
        default_factory=dict, description="Active sessions by ID"
    )

    def add(self, session: PeerSession) -> None:
        """Add a session.

        Raises:
            SessionRegistryError: If a session with the same ID is registered
        """
        if session.id in self.sessions:
            raise SessionRegistryError(f"Session '{session.id}' already exists")

        self.sessions[session.id] = session
        logger.debug("Session registered", registry=self.name, session=session.id)

    def remove(self, session_id: str) -> PeerSession:
        """Remove a session.

        Raises:
            SessionRegistryError: If the session is not registered
        """
        if session_id not in self.sessions:
            raise SessionRegistryError(f"Session '{session_id}' not found")

        session = self.sessions.pop(session_id)
        logger.debug("Session removed", registry=self.name, session=session_id)
        return session

    def discard(self, session_id: str) -> PeerSession | None:
        """Remove a session if present; used by close callbacks."""
        session = self.sessions.pop(session_id, None)
        if session is not None:
            logger.debug("Session removed", registry=self.name, session=session_id)
        return session

    def get(self, session_id: str) -> PeerSession | None:
        return self.sessions.get(session_id)

    def list_sessions(self, status: SessionStatus | None = None) -> list[PeerSession]:
        """List sessions, optionally filtered by status."""
        sessions = list(self.sessions.values())
        if status is not None:
            sessions = [s for s in sessions if s.status == status]
        return sessions

    def close_all(self) -> None:
        """Close every registered session; their close callbacks unregister them."""
        for session in list(self.sessions.values()):
            session.close("shutting down")
        self.sessions.clear()

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self.sessions
