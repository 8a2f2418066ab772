"""ICE candidate handling: blacklist filtering and wire conversion.

Candidates travel over signaling in the browser's JSON shape::

    {"candidate": "candidate:1 1 udp 2122260223 10.0.0.2 50123 typ host",
     "sdpMid": "0", "sdpMLineIndex": 0}

Some peers attach the parsed ``address`` as well; when present it wins over
the address found in the candidate line.
"""

from collections.abc import Iterable
from typing import Any

from aiortc import RTCIceCandidate, RTCIceServer
from aiortc.sdp import candidate_from_sdp

from .common.logging import get_logger

logger = get_logger(__name__)

CANDIDATE_PREFIX = "candidate:"
RELAY_TYPE = "relay"


def _candidate_line(candidate: dict[str, Any]) -> str:
    line = candidate.get("candidate") or ""
    if line.startswith("a="):
        line = line[2:]
    if line.startswith(CANDIDATE_PREFIX):
        line = line[len(CANDIDATE_PREFIX) :]
    return line


def candidate_address(candidate: dict[str, Any]) -> str | None:
    """Extract the connection address of a signaled candidate."""
    address = candidate.get("address")
    if address:
        return str(address)

    bits = _candidate_line(candidate).split()
    if len(bits) < 8:
        return None
    return bits[4]


def is_candidate_allowed(candidate: dict[str, Any], blacklist: Iterable[str]) -> bool:
    """Return whether a candidate's address is not blacklisted.

    A candidate whose address cannot be determined is allowed; parsing it is
    left to the peer connection, which drops it if it is really malformed.
    """
    address = candidate_address(candidate)
    return address is None or address not in set(blacklist)


class IceCandidateFilter:
    """Blacklist filter applied to remote candidates on both roles."""

    def __init__(self, blacklist: Iterable[str] = ()):
        self.blacklist = frozenset(blacklist)

    def is_allowed(self, candidate: dict[str, Any]) -> bool:
        allowed = is_candidate_allowed(candidate, self.blacklist)
        if not allowed:
            logger.debug(
                "Dropping blacklisted candidate", address=candidate_address(candidate)
            )
        return allowed

    __call__ = is_allowed


def candidate_from_wire(candidate: dict[str, Any]) -> RTCIceCandidate:
    """Convert a signaled candidate into an aiortc candidate.

    Raises:
        ValueError: If the candidate line is malformed or carries no media id
    """
    line = _candidate_line(candidate)
    if len(line.split()) < 8:
        raise ValueError(f"Malformed candidate line: {line!r}")

    sdp_mid = candidate.get("sdpMid")
    sdp_mline_index = candidate.get("sdpMLineIndex")
    if sdp_mid is None and sdp_mline_index is None:
        raise ValueError("Candidate must have either sdpMid or sdpMLineIndex")

    ice_candidate = candidate_from_sdp(line)
    ice_candidate.sdpMid = sdp_mid
    ice_candidate.sdpMLineIndex = sdp_mline_index
    return ice_candidate


def candidates_from_sdp(sdp: str) -> list[dict[str, Any]]:
    """Collect the candidates embedded in a session description.

    aiortc gathers every local candidate before the description is set, so
    trickling them is a matter of reading them back out of the SDP.
    """
    candidates: list[dict[str, Any]] = []
    mline_index = -1
    mid: str | None = None
    pending: list[str] = []

    def flush() -> None:
        for line in pending:
            candidates.append(
                {"candidate": line, "sdpMid": mid, "sdpMLineIndex": mline_index}
            )
        pending.clear()

    for raw in sdp.splitlines():
        line = raw.strip()
        if line.startswith("m="):
            flush()
            mline_index += 1
            mid = None
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:") :]
        elif line.startswith("a=" + CANDIDATE_PREFIX) and mline_index >= 0:
            pending.append(line[2:])
    flush()
    return candidates


def is_relay_candidate(candidate: dict[str, Any]) -> bool:
    bits = _candidate_line(candidate).split()
    return len(bits) >= 8 and bits[7] == RELAY_TYPE


def strip_non_relay_candidates(sdp: str) -> str:
    """Remove host and server-reflexive candidates from a session description."""
    kept = []
    for line in sdp.splitlines():
        if line.startswith("a=" + CANDIDATE_PREFIX) and not is_relay_candidate(
            {"candidate": line}
        ):
            continue
        kept.append(line)
    return "\r\n".join(kept) + "\r\n"


def ice_servers_from_wire(servers: Iterable[dict[str, Any]] | None) -> list[RTCIceServer]:
    """Convert relay-provided ICE server descriptors into aiortc servers."""
    result = []
    for server in servers or []:
        urls = server.get("urls") or server.get("url")
        if not urls:
            logger.warning("Skipping ICE server without urls")
            continue
        result.append(
            RTCIceServer(
                urls=urls,
                username=server.get("username"),
                credential=server.get("credential"),
            )
        )
    return result
