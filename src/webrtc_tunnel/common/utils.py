"""Utility functions shared by the tunnel modules."""

from typing import Any

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535


def validate_port(port: int, port_name: str = "Port", allow_zero: bool = False) -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages
        allow_zero: Accept 0 (ask the OS for an ephemeral port)

    Raises:
        ValueError: If port is not in the valid range
    """
    low = 0 if allow_zero else MIN_PORT
    if isinstance(port, bool) or not isinstance(port, int) or not (low <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {low} and {MAX_PORT}")


def mask_sensitive_data(
    value: str | None, mask_char: str = "*", show_chars: int = 4
) -> str:
    """Mask sensitive data for logging while preserving some characters.

    Args:
        value: Sensitive string to mask (e.g. the relay secret key)
        mask_char: Character to use for masking
        show_chars: Number of characters to show at the end

    Returns:
        Masked string safe for logging
    """
    if not value:
        return "<None>"

    if len(value) <= show_chars:
        return mask_char * len(value)

    masked_length = len(value) - show_chars
    return mask_char * masked_length + value[-show_chars:]


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """Mask secret-looking fields of a dictionary before it is logged.

    ICE server descriptors carry TURN credentials, so ``credential`` is
    treated as sensitive alongside the usual key/secret/password names.
    """
    sensitive_fields = {
        "secret",
        "password",
        "credential",
        "token",
        "key",
    }

    sanitized = {}
    for key, value in data.items():
        if any(field in key.lower() for field in sensitive_fields):
            sanitized[key] = mask_sensitive_data(str(value) if value else None)
        else:
            sanitized[key] = value

    return sanitized
