"""Tests for the signaling client."""

from unittest.mock import AsyncMock, Mock

import pytest
import socketio

from webrtc_tunnel.common.exceptions import SignalingError
from webrtc_tunnel.signaling import SignalingClient


@pytest.fixture
def sio():
    """Mocked Socket.IO client.

    Returns:
        Mock: Client whose network calls are AsyncMocks
    """
    client = Mock()
    client.connected = True
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.emit = AsyncMock()
    client.call = AsyncMock(return_value=[{"urls": "stun:stun.example.com"}])
    client.wait = AsyncMock()
    return client


@pytest.fixture
def signaling(sio):
    return SignalingClient(
        "https://relay.example.com", "s3cret-key", path="/relay/socket.io", client=sio
    )


def handler_for(sio, event):
    for call in sio.on.call_args_list:
        if call.args[0] == event:
            return call.args[1]
    raise AssertionError(f"no handler registered for {event}")


class TestSignalingClient:
    def test_handlers_registered(self, signaling, sio):
        """Test that relay events are subscribed on creation"""
        events = [call.args[0] for call in sio.on.call_args_list]
        assert events == ["connect", "disconnect", "tunnel"]

    @pytest.mark.asyncio
    async def test_connect_uses_configured_path(self, signaling, sio):
        """Test that the Socket.IO path is passed through"""
        await signaling.connect()
        sio.connect.assert_awaited_once_with(
            "https://relay.example.com", socketio_path="/relay/socket.io"
        )

    @pytest.mark.asyncio
    async def test_connect_failure(self, signaling, sio):
        """Test that an unreachable relay raises SignalingError"""
        sio.connect.side_effect = socketio.exceptions.ConnectionError("refused")

        with pytest.raises(SignalingError, match="Cannot connect"):
            await signaling.connect()

    @pytest.mark.asyncio
    async def test_secret_sent_on_every_connect(self, signaling, sio):
        """Test that the secret is announced before connect handlers run"""
        order = []
        sio.emit.side_effect = lambda *args: order.append(args)
        signaling.on_connect(lambda: order.append("sync handler"))
        signaling.on_connect(AsyncMock(side_effect=lambda: order.append("async handler")))

        await handler_for(sio, "connect")()
        await handler_for(sio, "connect")()

        assert order == [
            ("secretKey", "s3cret-key"),
            "sync handler",
            "async handler",
        ] * 2

    @pytest.mark.asyncio
    async def test_tunnel_messages_dispatched(self, signaling, sio):
        """Test that tunnel messages reach every handler"""
        received = []
        signaling.on_tunnel(received.append)
        message = {"type": "answer", "data": {"id": "abc"}}

        await handler_for(sio, "tunnel")(message)
        await handler_for(sio, "tunnel")("not a dict")

        assert received == [message]

    @pytest.mark.asyncio
    async def test_send_tunnel(self, signaling, sio):
        """Test the emitted tunnel envelope"""
        await signaling.send_tunnel("offer", {"id": "abc"})
        sio.emit.assert_awaited_once_with("tunnel", {"type": "offer", "data": {"id": "abc"}})

    @pytest.mark.asyncio
    async def test_get_ice_servers(self, signaling, sio):
        """Test the ICE server request"""
        servers = await signaling.get_ice_servers()

        assert servers == [{"urls": "stun:stun.example.com"}]
        sio.call.assert_awaited_once_with("iceServer", timeout=30.0)

    @pytest.mark.asyncio
    async def test_get_ice_servers_normalizes_response(self, signaling, sio):
        """Test single-server and empty responses"""
        sio.call.return_value = {"urls": "stun:a"}
        assert await signaling.get_ice_servers() == [{"urls": "stun:a"}]

        sio.call.return_value = None
        assert await signaling.get_ice_servers() == []

        sio.call.return_value = "stun:a"
        with pytest.raises(SignalingError, match="Unexpected"):
            await signaling.get_ice_servers()

    @pytest.mark.asyncio
    async def test_get_ice_servers_timeout(self, signaling, sio):
        """Test that an unanswered request raises SignalingError"""
        sio.call.side_effect = socketio.exceptions.TimeoutError()

        with pytest.raises(SignalingError, match="Timed out"):
            await signaling.get_ice_servers()

    @pytest.mark.asyncio
    async def test_disconnect_only_when_connected(self, signaling, sio):
        """Test that disconnect is skipped when there is no connection"""
        await signaling.disconnect()
        sio.disconnect.assert_awaited_once()

        sio.connected = False
        await signaling.disconnect()
        sio.disconnect.assert_awaited_once()
        assert not signaling.connected
