"""Tunnel data models.

This module defines the service mapping exchanged between peers and the
state enumerations used by sessions and stream relays.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common.utils import validate_port

DEFAULT_LOCAL_IP = "127.0.0.1"


class TunnelMode(str, Enum):
    """Operating mode of a tunnel process."""

    LISTEN = "listen"
    SEND = "send"


class SessionRole(str, Enum):
    """Role of one peer session in the offer/answer exchange."""

    INITIATOR = "initiator"
    RESPONDER = "responder"


class SessionStatus(str, Enum):
    """Peer session status enumeration."""

    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


class RelayState(str, Enum):
    """Stream relay state machine."""

    CREATED = "created"
    AWAITING_MAPPING = "awaiting_mapping"
    CONNECTING = "connecting"
    RELAYING = "relaying"
    CLOSED = "closed"


class Mapping(BaseModel):
    """One exposed service: a local listen address paired with a remote target.

    Field names follow Python conventions; the camelCase aliases are what
    travels over signaling and inside the stream control envelope.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    local_ip: str = Field(
        default=DEFAULT_LOCAL_IP, alias="localIp", description="Local bind address"
    )
    local_port: int = Field(
        default=0,
        alias="localPort",
        description="Local bind port (0 picks an ephemeral port)",
    )
    remote_ip: str = Field(
        min_length=1, alias="remoteIp", description="Address the peer dials"
    )
    remote_port: int = Field(alias="remotePort", description="Port the peer dials")

    @field_validator("local_ip", mode="before")
    @classmethod
    def default_local_ip(cls, v: Any) -> Any:
        """Treat a missing or empty local address as the loopback default."""
        if v is None or v == "":
            return DEFAULT_LOCAL_IP
        return v

    @field_validator("local_port", mode="before")
    @classmethod
    def default_local_port(cls, v: Any) -> Any:
        """Treat a missing local port as 'any free port'."""
        if v is None or v == "":
            return 0
        return v

    @field_validator("local_port")
    @classmethod
    def validate_local_port(cls, v: int) -> int:
        validate_port(v, "Local port", allow_zero=True)
        return v

    @field_validator("remote_port")
    @classmethod
    def validate_remote_port(cls, v: int) -> int:
        validate_port(v, "Remote port")
        return v

    def to_wire(self) -> dict[str, Any]:
        """Serialize with the camelCase names used on the wire."""
        return self.model_dump(by_alias=True)

    def __str__(self) -> str:
        return (
            f"{self.local_ip}:{self.local_port} => {self.remote_ip}:{self.remote_port}"
        )
