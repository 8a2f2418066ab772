"""Common utilities and shared functionality."""

from .exceptions import (
    ConfigurationError,
    ControlMessageError,
    NegotiationError,
    SessionClosedError,
    SessionRegistryError,
    SignalingError,
    TunnelError,
)
from .logging import get_logger, setup_logging
from .utils import (
    MAX_PORT,
    MIN_PORT,
    mask_sensitive_data,
    sanitize_log_data,
    validate_port,
)

__all__ = [
    # Exceptions
    "TunnelError",
    "ConfigurationError",
    "SignalingError",
    "NegotiationError",
    "SessionClosedError",
    "SessionRegistryError",
    "ControlMessageError",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "mask_sensitive_data",
    "sanitize_log_data",
    "MIN_PORT",
    "MAX_PORT",
]
