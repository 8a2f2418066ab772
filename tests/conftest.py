"""Shared pytest fixtures for WebRTC tunnel tests."""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio


class FakeDataChannel:
    """In-memory data channel.

    Two channels can be paired: whatever one sends is delivered to the other
    as a ``message`` event, and closing one closes the other.
    """

    def __init__(self, label: str, ready_state: str = "connecting"):
        self.label = label
        self.readyState = ready_state
        self.sent: list[Any] = []
        self.peer_channel: "FakeDataChannel | None" = None
        self.fail_send = False
        self._handlers: dict[str, list[Callable[..., Any]]] = {}

    def on(self, event: str, f: Callable[..., Any] | None = None) -> Any:
        if f is None:

            def decorator(handler: Callable[..., Any]) -> Callable[..., Any]:
                self._handlers.setdefault(event, []).append(handler)
                return handler

            return decorator
        self._handlers.setdefault(event, []).append(f)
        return f

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler(*args)

    def open(self) -> None:
        self.readyState = "open"
        self.emit("open")

    def send(self, data: Any) -> None:
        if self.fail_send:
            raise ConnectionError("send failed")
        if self.readyState != "open":
            raise RuntimeError(f"channel {self.label} is {self.readyState}")
        self.sent.append(data)
        if self.peer_channel is not None and self.peer_channel.readyState == "open":
            self.peer_channel.emit("message", data)

    def close(self) -> None:
        if self.readyState in ("closing", "closed"):
            return
        self.readyState = "closed"
        self.emit("close")
        if self.peer_channel is not None:
            self.peer_channel.close()

    def payload(self) -> bytes:
        """Bytes sent after the first (control) message."""
        return b"".join(data for data in self.sent[1:] if isinstance(data, bytes))


class FakePeerConnection:
    """In-memory peer connection.

    Applying an answer connects the pair: existing channels are mirrored to
    the answering side and opened, and later channels open as they are made.
    """

    def __init__(
        self,
        ice_servers: list[dict[str, Any]] | None = None,
        relay_only: bool = False,
        network: "FakeNetwork | None" = None,
        name: str = "peer",
    ):
        self.ice_servers = ice_servers
        self.relay_only = relay_only
        self.network = network
        self.name = name
        self.channels: list[FakeDataChannel] = []
        self.received: list[FakeDataChannel] = []
        self.candidates: list[dict[str, Any]] = []
        self.local_candidates: list[dict[str, Any]] = []
        self.local_description: dict[str, str] | None = None
        self.remote_description: dict[str, str] | None = None
        self.connection_state = "new"
        self.remote: "FakePeerConnection | None" = None
        self.connected = False
        self.fail: set[str] = set()
        self.close_calls = 0
        self._handlers: dict[str, list[Callable[..., Any]]] = {}

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler(*args)

    def _check(self, operation: str) -> None:
        if operation in self.fail:
            raise RuntimeError(f"{operation} failed")

    async def create_offer(self) -> dict[str, str]:
        self._check("create_offer")
        return {"type": "offer", "sdp": f"fake-sdp {self.name}"}

    async def create_answer(self) -> dict[str, str]:
        self._check("create_answer")
        return {"type": "answer", "sdp": f"fake-sdp {self.name}"}

    async def set_local_description(self, description: dict[str, str]) -> None:
        self._check("set_local_description")
        self.local_description = description
        for candidate in self.local_candidates:
            self.emit("icecandidate", candidate)

    async def set_remote_description(self, description: dict[str, str]) -> None:
        self._check("set_remote_description")
        self.remote_description = description
        if self.network is None:
            return
        other = self.network.find(description["sdp"].split()[-1])
        if other is None:
            return
        self.remote, other.remote = other, self
        if description["type"] == "answer":
            self._connect()

    async def add_ice_candidate(self, candidate: dict[str, Any]) -> None:
        self._check("add_ice_candidate")
        self.candidates.append(candidate)

    def create_data_channel(self, label: str) -> FakeDataChannel:
        channel = FakeDataChannel(label)
        self.channels.append(channel)
        if self.connected:
            self._mirror(channel)
        return channel

    def _connect(self) -> None:
        self.connected = True
        self.connection_state = "connected"
        for channel in list(self.channels):
            self._mirror(channel)

    def _mirror(self, channel: FakeDataChannel) -> None:
        assert self.remote is not None
        remote_channel = FakeDataChannel(channel.label, ready_state="open")
        channel.peer_channel = remote_channel
        remote_channel.peer_channel = channel
        self.remote.received.append(remote_channel)
        self.remote.emit("datachannel", remote_channel)
        channel.open()

    def set_state(self, state: str) -> None:
        self.connection_state = state
        self.emit("connectionstatechange", state)

    async def close(self) -> None:
        self.close_calls += 1
        self.connection_state = "closed"
        for channel in self.channels + self.received:
            channel.close()


class FakeNetwork:
    """Creates fake peers that find each other through their descriptions."""

    def __init__(self):
        self.peers: list[FakePeerConnection] = []
        self.local_candidates: list[dict[str, Any]] = []

    def factory(
        self, ice_servers: list[dict[str, Any]], relay_only: bool = False
    ) -> FakePeerConnection:
        peer = FakePeerConnection(
            ice_servers, relay_only, network=self, name=f"peer-{len(self.peers)}"
        )
        peer.local_candidates = list(self.local_candidates)
        self.peers.append(peer)
        return peer

    def find(self, name: str) -> FakePeerConnection | None:
        for peer in self.peers:
            if peer.name == name:
                return peer
        return None


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def network():
    """Fake peer network whose ``factory`` plugs into the endpoints.

    Returns:
        FakeNetwork: Network tracking every peer it created
    """
    return FakeNetwork()


@pytest.fixture
def peer_factory(network):
    """Peer factory producing fake peer connections."""
    return network.factory


@pytest.fixture
def make_channel():
    """Build fake data channels.

    Returns:
        Callable: ``make_channel(label, ready_state="connecting")``
    """
    return FakeDataChannel


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds.

    Returns:
        Callable: ``await wait_until(predicate, timeout=2.0)``
    """
    return _wait_until


@pytest_asyncio.fixture
async def tcp_pair():
    """Connected TCP socket pairs on the loopback interface.

    Yields:
        Callable: ``await tcp_pair()`` returns ``(client, server)`` where each
        side is a ``(reader, writer)`` tuple
    """
    accepted: asyncio.Queue = asyncio.Queue()

    async def handle(reader, writer):
        await accepted.put((reader, writer))

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    writers = []

    async def connect():
        client = await asyncio.open_connection("127.0.0.1", port)
        served = await asyncio.wait_for(accepted.get(), 2.0)
        writers.extend([client[1], served[1]])
        return client, served

    yield connect

    for writer in writers:
        writer.close()
    server.close()


@pytest_asyncio.fixture
async def echo_server():
    """Loopback TCP server echoing everything back.

    Yields:
        tuple: ``(port, received)`` where ``received`` collects all bytes
    """
    received = bytearray()
    writers = []

    async def handle(reader, writer):
        writers.append(writer)
        while True:
            data = await reader.read(65536)
            if not data:
                break
            received.extend(data)
            writer.write(data)
            await writer.drain()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]

    yield port, received

    for writer in writers:
        writer.close()
    server.close()
