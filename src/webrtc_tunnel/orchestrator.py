"""Wires signaling messages to peer sessions."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from .common.exceptions import NegotiationError, SessionClosedError, SignalingError
from .common.logging import get_logger
from .config import TunnelConfig
from .endpoints import ListenEndpoint, PeerSession, SendEndpoint
from .ice import IceCandidateFilter
from .models import Mapping, TunnelMode
from .peer import PeerFactory, create_peer_connection, schedule
from .registry import SessionRegistry
from .signaling import SignalingClient

logger = get_logger(__name__)

# tunnel message types
OFFER = "offer"
ANSWER = "answer"
LISTEN_CANDIDATE = "tcpListen_icecandidate"
SEND_CANDIDATE = "tcpSend_icecandidate"


class CandidateOutbox:
    """Holds local candidates until the offer or answer has been signaled.

    The remote side ignores candidates for a session id it has not seen yet.
    """

    def __init__(self, signaling: SignalingClient, message_type: str):
        self.signaling = signaling
        self.message_type = message_type
        self.pending: list[dict[str, Any]] = []
        self.is_open = False

    def push(self, data: dict[str, Any]) -> None:
        if self.is_open:
            schedule(self.signaling.send_tunnel(self.message_type, data))
        else:
            self.pending.append(data)

    async def open(self) -> None:
        self.is_open = True
        pending, self.pending = self.pending, []
        for data in pending:
            await self.signaling.send_tunnel(self.message_type, data)


class TunnelOrchestrator:
    """Runs one tunnel process in listen or send mode.

    In listen mode a new listen session is negotiated every time the
    signaling connection is (re)established. In both modes incoming offers
    are answered, so a process can serve as the responder for its peers.
    """

    def __init__(
        self,
        config: TunnelConfig,
        mode: TunnelMode,
        signaling: SignalingClient | None = None,
        peer_factory: PeerFactory = create_peer_connection,
    ):
        self.config = config
        self.mode = TunnelMode(mode)
        self.peer_factory = peer_factory
        self.candidate_filter = IceCandidateFilter(config.ice_addr_blacklist)
        self.listen_sessions = SessionRegistry(name="listen")
        self.send_sessions = SessionRegistry(name="send")

        if signaling is None:
            signaling = SignalingClient(
                config.server.url, config.secret_key, path=config.server.path
            )
        self.signaling = signaling
        self.signaling.on_connect(self._handle_connect)
        self.signaling.on_tunnel(self.handle_tunnel)

    def _session_options(self) -> dict[str, Any]:
        return {
            "candidate_filter": self.candidate_filter,
            "peer_factory": self.peer_factory,
            "heartbeat_interval": self.config.heartbeat_interval,
            "heartbeat_error_threshold": self.config.heartbeat_error_threshold,
        }

    async def run(self) -> None:
        """Connect to the relay and serve until the connection ends.

        Raises:
            SignalingError: If the relay cannot be reached
        """
        logger.info("Starting tunnel", mode=self.mode.value)
        await self.signaling.connect()
        await self.signaling.wait()

    def _handle_connect(self) -> None:
        if self.mode != TunnelMode.LISTEN:
            return
        if not self.config.mapping:
            logger.warning("Listen mode without mappings, nothing to expose")
            return
        # the relay answers requests only once the connect handler returns
        schedule(self._listen_configured(), name="start-listen")

    async def _listen_configured(self) -> None:
        try:
            await self.start_listen(self.config.mapping)
        except (NegotiationError, SessionClosedError, SignalingError) as e:
            logger.error("Failed to start listen session", error=str(e))

    async def start_listen(self, mappings: Iterable[Mapping]) -> ListenEndpoint:
        """Negotiate a new listen session exposing ``mappings``.

        Raises:
            SignalingError: If the ICE servers cannot be fetched
            NegotiationError: If the offer cannot be created
        """
        mappings = list(mappings)
        ice_servers = await self.signaling.get_ice_servers()
        endpoint = ListenEndpoint(
            ice_servers, capacity=self.config.capacity, **self._session_options()
        )
        self.listen_sessions.add(endpoint)

        outbox = CandidateOutbox(self.signaling, LISTEN_CANDIDATE)
        endpoint.add_listener("icecandidate", outbox.push)
        endpoint.add_listener(
            "usable", lambda: schedule(endpoint.start_listening(mappings))
        )
        endpoint.add_listener("close", self.listen_sessions.discard)

        offer = await endpoint.create_offer()
        await self.signaling.send_tunnel(OFFER, offer)
        await outbox.open()
        logger.info("Offer sent", session=endpoint.id, mappings=len(mappings))
        return endpoint

    async def handle_tunnel(self, message: dict[str, Any]) -> None:
        """Route one ``tunnel`` message to the session it names.

        Unknown message types and unknown session ids are ignored.
        """
        message_type = message.get("type")
        data = message.get("data")
        if not isinstance(data, dict):
            logger.debug("Ignoring tunnel message without data", type=message_type)
            return

        if message_type == OFFER:
            await self._handle_offer(data)
        elif message_type == ANSWER:
            session = self._lookup(self.listen_sessions, data)
            if session is not None:
                try:
                    await session.set_answer(data.get("answer"))
                except NegotiationError as e:
                    logger.error("Negotiation failed", error=str(e))
        elif message_type == LISTEN_CANDIDATE:
            session = self._lookup(self.send_sessions, data)
            if session is not None:
                await session.set_candidate(data.get("candidate"))
        elif message_type == SEND_CANDIDATE:
            session = self._lookup(self.listen_sessions, data)
            if session is not None:
                await session.set_candidate(data.get("candidate"))
        else:
            logger.debug("Ignoring unknown tunnel message", type=message_type)

    def _lookup(self, registry: SessionRegistry, data: dict[str, Any]) -> Any:
        session_id = data.get("id")
        session = registry.get(session_id) if isinstance(session_id, str) else None
        if session is None:
            logger.debug("No such session", registry=registry.name, session=session_id)
        return session

    async def _handle_offer(self, data: dict[str, Any]) -> SendEndpoint | None:
        session_id = data.get("id")
        offer = data.get("offer")
        if not isinstance(session_id, str) or not session_id or not offer:
            logger.debug("Ignoring malformed offer")
            return None
        if session_id in self.send_sessions:
            logger.warning("Duplicate offer ignored", session=session_id)
            return None

        endpoint = SendEndpoint(
            session_id, data.get("iceServers") or [], **self._session_options()
        )
        self.send_sessions.add(endpoint)

        outbox = CandidateOutbox(self.signaling, SEND_CANDIDATE)
        endpoint.add_listener("icecandidate", outbox.push)
        endpoint.add_listener("close", self.send_sessions.discard)

        try:
            answer = await endpoint.set_offer(offer)
        except (NegotiationError, SessionClosedError) as e:
            logger.error("Negotiation failed", error=str(e))
            return None

        await self.signaling.send_tunnel(ANSWER, answer)
        await outbox.open()
        logger.info("Answer sent", session=session_id)
        return endpoint

    @property
    def sessions(self) -> list[PeerSession]:
        return self.listen_sessions.list_sessions() + self.send_sessions.list_sessions()

    async def close(self) -> None:
        """Close every session and leave the relay."""
        self.listen_sessions.close_all()
        self.send_sessions.close_all()
        await self.signaling.disconnect()
        logger.info("Tunnel stopped")
