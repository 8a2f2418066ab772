"""In-band multiplexing protocol carried over the peer connection.

Each tunneled TCP stream gets its own ordered, reliable data channel:

    heart                  liveness channel, one per peer connection
    tcpDataChannel_<slot>  one stream, slot in [1, capacity]

The first message on a stream channel is a text control envelope naming the
mapping the initiator accepted the connection for:

    {"type": "mapping", "data": {"localIp": ..., "localPort": ...,
                                 "remoteIp": ..., "remotePort": ...}}

Every later message on that channel is raw payload.
"""

import json
import re

from pydantic import ValidationError

from .common.exceptions import ControlMessageError
from .models import Mapping

HEARTBEAT_LABEL = "heart"
STREAM_LABEL_PREFIX = "tcpDataChannel_"
STREAM_LABEL_PATTERN = re.compile(rf"^{STREAM_LABEL_PREFIX}(\d+)$")

CONTROL_TYPE_MAPPING = "mapping"


def stream_label(slot: int) -> str:
    """Build the data channel label for a stream slot."""
    return f"{STREAM_LABEL_PREFIX}{slot}"


def parse_stream_label(label: str) -> int | None:
    """Return the slot number of a stream label, or None for any other label."""
    match = STREAM_LABEL_PATTERN.match(label)
    if match is None:
        return None
    return int(match.group(1))


def encode_control_message(mapping: Mapping) -> str:
    """Encode the control envelope sent as the first message of a stream."""
    return json.dumps({"type": CONTROL_TYPE_MAPPING, "data": mapping.to_wire()})


def decode_control_message(message: str | bytes) -> Mapping:
    """Decode a stream's control envelope.

    Args:
        message: First message received on a stream channel

    Returns:
        The mapping the initiator attached to the stream

    Raises:
        ControlMessageError: If the message is not a valid mapping envelope
    """
    try:
        envelope = json.loads(message)
    except (UnicodeDecodeError, ValueError) as e:
        raise ControlMessageError(f"Control message is not JSON: {e}") from e

    if not isinstance(envelope, dict) or envelope.get("type") != CONTROL_TYPE_MAPPING:
        raise ControlMessageError("Control message is not a mapping envelope")

    try:
        return Mapping.model_validate(envelope.get("data"))
    except ValidationError as e:
        raise ControlMessageError(f"Invalid mapping in control message: {e}") from e


def capacity_notice(limit: int) -> bytes:
    """Text written to a local client rejected because all slots are taken."""
    return f"current tunnel count >= limit {limit}".encode()
