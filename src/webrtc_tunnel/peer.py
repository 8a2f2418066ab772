"""Peer connection capability used by the tunnel endpoints.

The endpoints only rely on the small surface described by the
:class:`PeerConnection` and :class:`DataChannel` protocols. The aiortc
adapter below is the production implementation; tests plug in fakes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Protocol

from aiortc import RTCConfiguration, RTCPeerConnection, RTCSessionDescription

from .common.logging import get_logger
from .ice import (
    candidate_from_wire,
    candidates_from_sdp,
    ice_servers_from_wire,
    is_relay_candidate,
    strip_non_relay_candidates,
)

logger = get_logger(__name__)

Handler = Callable[..., Any]


class DataChannel(Protocol):
    """One labeled, ordered and reliable sub-channel of a peer connection.

    Events: ``open``, ``message`` (str or bytes), ``close`` and ``error``.
    """

    @property
    def label(self) -> str: ...

    @property
    def readyState(self) -> str: ...

    def send(self, data: str | bytes) -> None: ...

    def close(self) -> None: ...

    def on(self, event: str, f: Handler | None = None) -> Any: ...


class PeerConnection(Protocol):
    """Black-box WebRTC peer connection.

    Events: ``datachannel`` (DataChannel), ``icecandidate`` (candidate dict)
    and ``connectionstatechange`` (state string).
    """

    @property
    def connection_state(self) -> str: ...

    @property
    def local_description(self) -> dict[str, str] | None: ...

    async def create_offer(self) -> dict[str, str]: ...

    async def create_answer(self) -> dict[str, str]: ...

    async def set_local_description(self, description: dict[str, str]) -> None: ...

    async def set_remote_description(self, description: dict[str, str]) -> None: ...

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None: ...

    def create_data_channel(self, label: str) -> DataChannel: ...

    def on(self, event: str, handler: Handler) -> None: ...

    async def close(self) -> None: ...


PeerFactory = Callable[[list[dict[str, Any]], bool], PeerConnection]


class AiortcPeerConnection:
    """PeerConnection implemented with aiortc.

    aiortc does not trickle candidates: everything is gathered while the local
    description is applied. Candidates are read back from that description
    and emitted one by one so that trickle-ICE peers receive them too.
    """

    def __init__(self, ice_servers: list[dict[str, Any]], relay_only: bool = False):
        servers = ice_servers_from_wire(ice_servers)
        self._pc = RTCPeerConnection(
            configuration=RTCConfiguration(iceServers=servers or None)
        )
        self.relay_only = relay_only
        self._handlers: dict[str, list[Handler]] = {}

        self._pc.on("datachannel", lambda channel: self._emit("datachannel", channel))
        self._pc.on(
            "connectionstatechange",
            lambda: self._emit("connectionstatechange", self._pc.connectionState),
        )

    def on(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler(*args)

    @property
    def connection_state(self) -> str:
        return str(self._pc.connectionState)

    @property
    def local_description(self) -> dict[str, str] | None:
        description = self._pc.localDescription
        if description is None:
            return None
        sdp = description.sdp
        if self.relay_only:
            sdp = strip_non_relay_candidates(sdp)
        return {"type": description.type, "sdp": sdp}

    async def create_offer(self) -> dict[str, str]:
        offer = await self._pc.createOffer()
        return {"type": offer.type, "sdp": offer.sdp}

    async def create_answer(self) -> dict[str, str]:
        answer = await self._pc.createAnswer()
        return {"type": answer.type, "sdp": answer.sdp}

    async def set_local_description(self, description: dict[str, str]) -> None:
        await self._pc.setLocalDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )
        gathered = self._pc.localDescription
        for candidate in candidates_from_sdp(gathered.sdp if gathered else ""):
            if self.relay_only and not is_relay_candidate(candidate):
                continue
            self._emit("icecandidate", candidate)

    async def set_remote_description(self, description: dict[str, str]) -> None:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        await self._pc.addIceCandidate(candidate_from_wire(candidate))

    def create_data_channel(self, label: str) -> DataChannel:
        return self._pc.createDataChannel(label, ordered=True)

    async def close(self) -> None:
        await self._pc.close()


def create_peer_connection(
    ice_servers: list[dict[str, Any]], relay_only: bool = False
) -> PeerConnection:
    """Default peer factory used by the endpoints."""
    return AiortcPeerConnection(ice_servers, relay_only=relay_only)


_background_tasks: set[asyncio.Task[Any]] = set()


def schedule(coro: Any, name: str | None = None) -> asyncio.Task[Any]:
    """Run a coroutine in the background and log its failure, if any."""
    task = asyncio.ensure_future(coro)
    if name is not None:
        task.set_name(name)
    _background_tasks.add(task)

    def _done(t: asyncio.Task[Any]) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error("Background task failed", task=t.get_name(), error=str(exc))

    task.add_done_callback(_done)
    return task
