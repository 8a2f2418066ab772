"""Responder side: dials mapping targets for inbound stream channels."""

from __future__ import annotations

from typing import Any

from ..common.exceptions import NegotiationError, SessionClosedError
from ..common.logging import get_logger
from ..models import SessionRole
from ..peer import DataChannel
from ..protocol import HEARTBEAT_LABEL, parse_stream_label
from ..relay import StreamRelay
from .base import PeerSession

logger = get_logger(__name__)


class SendEndpoint(PeerSession):
    """Owns the answering peer connection.

    The responder never learns targets up front: each inbound stream channel
    names its own mapping in its first message, so one peer connection can
    carry streams to any number of targets.

    Only relay candidates are published, keeping this host's local network
    layout out of signaling.
    """

    role = SessionRole.RESPONDER
    relay_only = True

    def __init__(
        self,
        session_id: str,
        ice_servers: list[dict[str, Any]] | None = None,
        **kwargs: Any,
    ):
        super().__init__(session_id, ice_servers, **kwargs)
        self.relays: dict[str, StreamRelay] = {}
        self.peer.on("datachannel", self._handle_datachannel)

    async def set_offer(self, offer: dict[str, str]) -> dict[str, Any]:
        """Apply the remote offer and answer it.

        Returns:
            ``{"id", "answer"}`` ready to be signaled

        Raises:
            SessionClosedError: If the session was already closed
            NegotiationError: If negotiation fails; the session is closed
        """
        if self.closed:
            raise SessionClosedError(f"Session {self.id} is closed")
        try:
            await self.peer.set_remote_description(offer)
            answer = await self.peer.create_answer()
            await self.peer.set_local_description(answer)
        except Exception as e:
            self.close(f"offer rejected: {e}")
            raise NegotiationError(self.id, f"failed to answer offer: {e}") from e

        return {"id": self.id, "answer": self.peer.local_description or answer}

    def _handle_datachannel(self, channel: DataChannel) -> None:
        label = channel.label
        if self.closed:
            channel.close()
            return

        if label == HEARTBEAT_LABEL:
            if self.heartbeat is not None:
                logger.warning("Duplicate heartbeat channel ignored", session=self.id)
                return
            self._attach_heartbeat(channel)
            return

        if parse_stream_label(label) is None:
            logger.debug("Ignoring unknown channel", session=self.id, label=label)
            return

        relay = StreamRelay.for_receiver(channel, on_close=self._handle_relay_closed)
        self.relays[label] = relay
        relay.start()

    def _handle_relay_closed(self, label: str) -> None:
        relay = self.relays.get(label)
        if relay is not None and relay.closed:
            del self.relays[label]

    def _release(self) -> None:
        for relay in list(self.relays.values()):
            relay.close()
        self.relays.clear()
        super()._release()
