"""Behaviour shared by both ends of a peer session."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from ..common.logging import get_logger
from ..heartbeat import DEFAULT_ERROR_THRESHOLD, DEFAULT_INTERVAL, HeartbeatMonitor
from ..ice import IceCandidateFilter
from ..models import SessionRole, SessionStatus
from ..peer import DataChannel, PeerConnection, PeerFactory, create_peer_connection, schedule

logger = get_logger(__name__)


class PeerSession:
    """One peer connection plus everything it owns.

    Listeners can subscribe to three events with :meth:`add_listener`:

    - ``icecandidate``: ``{"id": ..., "candidate": ...}`` to forward to the peer
    - ``usable``: the heartbeat channel opened for the first time
    - ``close``: the session id, emitted exactly once
    """

    role: SessionRole
    relay_only = False

    def __init__(
        self,
        session_id: str,
        ice_servers: list[dict[str, Any]] | None = None,
        *,
        candidate_filter: IceCandidateFilter | None = None,
        peer_factory: PeerFactory = create_peer_connection,
        heartbeat_interval: float = DEFAULT_INTERVAL,
        heartbeat_error_threshold: int = DEFAULT_ERROR_THRESHOLD,
    ):
        self.id = session_id
        self.ice_servers = list(ice_servers or [])
        self.candidate_filter = candidate_filter or IceCandidateFilter()
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_error_threshold = heartbeat_error_threshold
        self.status = SessionStatus.NEGOTIATING
        self.heartbeat: HeartbeatMonitor | None = None

        self._listeners: dict[str, list[Callable[..., Any]]] = {}
        self._closed = False
        self._peer_close_task: asyncio.Task[Any] | None = None

        self.peer: PeerConnection = peer_factory(self.ice_servers, self.relay_only)
        self.peer.on("icecandidate", self._handle_local_candidate)
        self.peer.on("connectionstatechange", self._handle_connection_state)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, event: str, handler: Callable[..., Any]) -> None:
        self._listeners.setdefault(event, []).append(handler)

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners.get(event, [])):
            handler(*args)

    def _handle_local_candidate(self, candidate: dict[str, Any]) -> None:
        if self._closed:
            return
        self._emit("icecandidate", {"id": self.id, "candidate": candidate})

    def _handle_connection_state(self, state: str) -> None:
        logger.debug("Peer connection state", session=self.id, state=state)
        if state in ("failed", "closed"):
            self.close(f"peer connection {state}")

    async def set_candidate(self, candidate: dict[str, Any]) -> None:
        """Add a remote candidate unless it is blacklisted or malformed."""
        if self._closed or not candidate:
            return
        if not self.candidate_filter.is_allowed(candidate):
            return
        try:
            await self.peer.add_ice_candidate(candidate)
        except Exception as e:
            logger.debug("Ignoring remote candidate", session=self.id, error=str(e))

    def _attach_heartbeat(self, channel: DataChannel) -> None:
        self.heartbeat = HeartbeatMonitor(
            channel,
            on_usable=self._handle_usable,
            on_dead=self.close,
            interval=self.heartbeat_interval,
            error_threshold=self.heartbeat_error_threshold,
        )
        self.heartbeat.start()

    def _handle_usable(self) -> None:
        if self._closed:
            return
        self.status = SessionStatus.CONNECTED
        logger.info("Peer session usable", session=self.id, role=self.role.value)
        self._emit("usable")

    def _release(self) -> None:
        """Close what this session owns. Every step tolerates repetition."""
        if self.heartbeat is not None:
            self.heartbeat.stop()
        if self._peer_close_task is None:
            self._peer_close_task = schedule(
                self.peer.close(), name=f"peer-close-{self.id}"
            )

    def close(self, reason: str = "closed locally") -> None:
        """Tear the session down and notify listeners once."""
        first = not self._closed
        self._closed = True
        self.status = SessionStatus.CLOSED
        self._release()
        if first:
            logger.info("Peer session closed", session=self.id, reason=reason)
            self._emit("close", self.id)
