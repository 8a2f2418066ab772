"""WebRTC TCP Tunnel - TCP port forwarding over WebRTC data channels."""

from .common.exceptions import (
    ConfigurationError,
    ControlMessageError,
    NegotiationError,
    SessionClosedError,
    SessionRegistryError,
    SignalingError,
    TunnelError,
)
from .common.logging import get_logger, setup_logging
from .config import TunnelConfig, load_config
from .endpoints import ListenEndpoint, PeerSession, SendEndpoint
from .heartbeat import HeartbeatMonitor
from .ice import IceCandidateFilter
from .models import Mapping, RelayState, SessionRole, SessionStatus, TunnelMode
from .orchestrator import TunnelOrchestrator
from .registry import SessionRegistry
from .relay import StreamRelay
from .signaling import SignalingClient

# Setup logging on package initialization
setup_logging(level="INFO")

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # Orchestration
    "TunnelOrchestrator",
    "SignalingClient",
    "SessionRegistry",
    # Sessions and streams
    "PeerSession",
    "ListenEndpoint",
    "SendEndpoint",
    "StreamRelay",
    "HeartbeatMonitor",
    "IceCandidateFilter",
    # Models and configuration
    "Mapping",
    "TunnelMode",
    "SessionRole",
    "SessionStatus",
    "RelayState",
    "TunnelConfig",
    "load_config",
    # Exceptions
    "TunnelError",
    "ConfigurationError",
    "SignalingError",
    "NegotiationError",
    "SessionClosedError",
    "SessionRegistryError",
    "ControlMessageError",
    # Utilities
    "get_logger",
    "setup_logging",
]
