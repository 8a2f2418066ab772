"""Initiator side: exposes remote services on local TCP listeners."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from functools import partial
from typing import Any

from ..common.exceptions import NegotiationError, SessionClosedError
from ..common.logging import get_logger
from ..models import Mapping, SessionRole
from ..protocol import HEARTBEAT_LABEL, capacity_notice, parse_stream_label, stream_label
from ..relay import StreamRelay
from .base import PeerSession

logger = get_logger(__name__)

DEFAULT_CAPACITY = 1000


class ListenEndpoint(PeerSession):
    """Owns the offering peer connection and the local TCP listeners.

    Every accepted TCP connection takes the lowest free stream slot and gets
    its own data channel labeled after that slot. Connections beyond
    ``capacity`` are told so and dropped.
    """

    role = SessionRole.INITIATOR

    def __init__(
        self,
        ice_servers: list[dict[str, Any]] | None = None,
        session_id: str | None = None,
        *,
        capacity: int = DEFAULT_CAPACITY,
        **kwargs: Any,
    ):
        super().__init__(session_id or str(uuid.uuid4()), ice_servers, **kwargs)
        self.capacity = capacity
        self.slots: dict[int, StreamRelay] = {}
        self.servers: list[asyncio.Server] = []
        # the offer needs at least one channel to negotiate SCTP
        self._attach_heartbeat(self.peer.create_data_channel(HEARTBEAT_LABEL))

    async def create_offer(self) -> dict[str, Any]:
        """Create and apply the local offer.

        Returns:
            ``{"id", "offer", "iceServers"}`` ready to be signaled

        Raises:
            SessionClosedError: If the session was already closed
            NegotiationError: If the offer cannot be created; the session is closed
        """
        if self.closed:
            raise SessionClosedError(f"Session {self.id} is closed")
        try:
            offer = await self.peer.create_offer()
            await self.peer.set_local_description(offer)
        except Exception as e:
            self.close(f"offer failed: {e}")
            raise NegotiationError(self.id, f"failed to create offer: {e}") from e

        return {
            "id": self.id,
            "offer": self.peer.local_description or offer,
            "iceServers": self.ice_servers,
        }

    async def set_answer(self, answer: dict[str, str]) -> None:
        """Apply the remote answer; a failure aborts the session."""
        if self.closed:
            return
        try:
            await self.peer.set_remote_description(answer)
        except Exception as e:
            self.close(f"answer rejected: {e}")
            raise NegotiationError(self.id, f"failed to apply answer: {e}") from e

    async def start_listening(self, mappings: Iterable[Mapping]) -> None:
        """Bind one TCP listener per mapping.

        A mapping whose address cannot be bound is logged and skipped.
        """
        for mapping in mappings:
            if self.closed:
                return
            try:
                server = await asyncio.start_server(
                    partial(self._handle_accept, mapping),
                    host=mapping.local_ip,
                    port=mapping.local_port or None,
                )
            except OSError as e:
                logger.error(
                    "Failed to bind listener",
                    session=self.id,
                    address=f"{mapping.local_ip}:{mapping.local_port}",
                    error=str(e),
                )
                continue

            if self.closed:
                server.close()
                return

            self.servers.append(server)
            host, port = server.sockets[0].getsockname()[:2]
            logger.info(
                f"listen {host}:{port} => {mapping.remote_ip}:{mapping.remote_port}",
                session=self.id,
            )

    def allocate_slot(self) -> int | None:
        """Return the lowest free slot number, or None when all are taken."""
        for slot in range(1, self.capacity + 1):
            if slot not in self.slots:
                return slot
        return None

    def _handle_accept(
        self,
        mapping: Mapping,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        if self.closed:
            writer.close()
            return

        slot = self.allocate_slot() if len(self.slots) < self.capacity else None
        if slot is None:
            logger.warning(
                "Stream capacity reached, rejecting connection",
                session=self.id,
                capacity=self.capacity,
            )
            try:
                writer.write(capacity_notice(self.capacity))
            finally:
                writer.close()
            return

        channel = self.peer.create_data_channel(stream_label(slot))
        relay = StreamRelay.for_listener(
            channel, reader, writer, mapping, on_close=self._handle_relay_closed
        )
        self.slots[slot] = relay
        logger.debug("Stream accepted", session=self.id, slot=slot, mapping=str(mapping))
        relay.start()

    def _handle_relay_closed(self, label: str) -> None:
        slot = parse_stream_label(label)
        relay = self.slots.get(slot) if slot is not None else None
        if relay is not None and relay.closed:
            del self.slots[slot]

    def _release(self) -> None:
        for server in self.servers:
            server.close()
        self.servers.clear()
        for relay in list(self.slots.values()):
            relay.close()
        self.slots.clear()
        super()._release()
