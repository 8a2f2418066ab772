"""Tests for the aiortc peer connection adapter."""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest
from aiortc import RTCSessionDescription

from webrtc_tunnel.peer import AiortcPeerConnection, _background_tasks, create_peer_connection, schedule

HOST = "candidate:1 1 udp 2122260223 192.168.1.2 50123 typ host"
RELAY = "candidate:3 1 udp 41885439 198.51.100.9 3478 typ relay raddr 203.0.113.7 rport 50123"
SDP = "\r\n".join(
    [
        "v=0",
        "o=- 1 1 IN IP4 0.0.0.0",
        "s=-",
        "t=0 0",
        "m=application 9 DTLS/SCTP 5000",
        "a=mid:0",
        "a=" + HOST,
        "a=" + RELAY,
    ]
) + "\r\n"


def with_gathered_description(peer):
    """Replace the aiortc connection with one whose description holds SDP."""
    pc = Mock()
    pc.setLocalDescription = AsyncMock()
    pc.localDescription = RTCSessionDescription(sdp=SDP, type="offer")
    pc.close = AsyncMock()
    peer._pc = pc
    return pc


class TestAiortcPeerConnection:
    @pytest.mark.asyncio
    async def test_candidates_emitted_from_description(self):
        """Test that gathered candidates are trickled one by one"""
        peer = AiortcPeerConnection([])
        with_gathered_description(peer)
        emitted = []
        peer.on("icecandidate", emitted.append)

        await peer.set_local_description({"type": "offer", "sdp": "v=0"})

        assert [c["candidate"] for c in emitted] == [HOST, RELAY]
        assert emitted[0]["sdpMid"] == "0"
        assert peer.local_description == {"type": "offer", "sdp": SDP}

    @pytest.mark.asyncio
    async def test_relay_only(self):
        """Test that a relay-only peer publishes nothing but relay candidates"""
        peer = create_peer_connection([{"urls": "turn:turn.example.com"}], relay_only=True)
        with_gathered_description(peer)
        emitted = []
        peer.on("icecandidate", emitted.append)

        await peer.set_local_description({"type": "offer", "sdp": "v=0"})

        assert [c["candidate"] for c in emitted] == [RELAY]
        assert HOST not in peer.local_description["sdp"]
        assert RELAY in peer.local_description["sdp"]

    @pytest.mark.asyncio
    async def test_events_reemitted(self):
        """Test that aiortc events reach the adapter's listeners"""
        peer = AiortcPeerConnection([])
        channels, states = [], []
        peer.on("datachannel", channels.append)
        peer.on("connectionstatechange", states.append)
        channel = Mock()

        peer._pc.emit("datachannel", channel)
        peer._pc.emit("connectionstatechange")

        assert channels == [channel]
        assert states == ["new"]
        assert peer.connection_state == "new"
        assert peer.local_description is None
        await peer.close()

    @pytest.mark.asyncio
    async def test_create_data_channel(self):
        """Test that channels are ordered and keep their label"""
        peer = AiortcPeerConnection([])

        channel = peer.create_data_channel("heart")

        assert channel.label == "heart"
        assert channel.ordered is True
        await peer.close()

    @pytest.mark.asyncio
    async def test_add_ice_candidate(self):
        """Test conversion of signaled candidates"""
        peer = AiortcPeerConnection([])
        pc = with_gathered_description(peer)
        pc.addIceCandidate = AsyncMock()

        await peer.add_ice_candidate({"candidate": RELAY, "sdpMid": "0", "sdpMLineIndex": 0})

        candidate = pc.addIceCandidate.await_args.args[0]
        assert candidate.ip == "198.51.100.9"
        assert candidate.type == "relay"


class TestSchedule:
    @pytest.mark.asyncio
    async def test_result(self):
        """Test that a scheduled coroutine runs and is forgotten when done"""

        async def work():
            return 42

        task = schedule(work(), name="work")

        assert await task == 42
        assert task.get_name() == "work"
        await asyncio.sleep(0)
        assert task not in _background_tasks

    @pytest.mark.asyncio
    async def test_failure_logged(self):
        """Test that a failing background task is logged"""

        async def fail():
            raise RuntimeError("boom")

        with patch("webrtc_tunnel.peer.logger") as logger:
            task = schedule(fail(), name="failing")
            with pytest.raises(RuntimeError):
                await task
            await asyncio.sleep(0)

        logger.error.assert_called_once_with(
            "Background task failed", task="failing", error="boom"
        )
