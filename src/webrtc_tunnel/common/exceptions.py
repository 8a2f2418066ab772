"""Custom exceptions for the WebRTC tunnel."""


class TunnelError(Exception):
    """Base exception for all tunnel errors."""

    pass


class ConfigurationError(TunnelError):
    """Raised when the configuration file is missing or invalid."""

    pass


class SignalingError(TunnelError):
    """Raised when the signaling relay cannot be reached or answers badly."""

    pass


class NegotiationError(TunnelError):
    """Raised when offer/answer or description application fails."""

    def __init__(self, session_id: str, message: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id}: {message}")


class SessionClosedError(TunnelError):
    """Raised when an operation targets a session that is already closed."""

    pass


class SessionRegistryError(TunnelError):
    """Raised for session registry operations."""

    pass


class ControlMessageError(TunnelError):
    """Raised when a stream's control envelope cannot be decoded."""

    pass
