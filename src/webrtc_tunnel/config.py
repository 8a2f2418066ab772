"""Tunnel configuration model and loader."""

import json
import sys
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .common.exceptions import ConfigurationError
from .common.logging import get_logger
from .endpoints.listen import DEFAULT_CAPACITY
from .heartbeat import DEFAULT_ERROR_THRESHOLD, DEFAULT_INTERVAL
from .models import Mapping

logger = get_logger(__name__)

# A developer override wins over the deployed file
CONFIG_FILE_NAMES = ("config.dev.json", "config.json")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ServerSettings(BaseModel):
    """Signaling relay location."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    url: str = Field(min_length=1, description="Signaling server URL")
    path: str = Field(default="/socket.io", description="Socket.IO endpoint path")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Only HTTP(S) and WS(S) URLs reach a Socket.IO server."""
        if not v.startswith(("http://", "https://", "ws://", "wss://")):
            raise ValueError("Server URL must start with http(s):// or ws(s)://")
        return v


class TunnelConfig(BaseModel):
    """Configuration of one tunnel process.

    Keys use the camelCase names of the JSON file; snake_case names are
    accepted too.
    """

    model_config = ConfigDict(
        populate_by_name=True, str_strip_whitespace=True, extra="ignore"
    )

    server: ServerSettings
    secret_key: str = Field(
        min_length=1, alias="secretKey", description="Shared secret sent to the relay"
    )
    mapping: list[Mapping] = Field(
        default_factory=list, description="Services exposed in listen mode"
    )
    ice_addr_blacklist: list[str] = Field(
        default_factory=list,
        alias="iceAddrBlacklist",
        description="Candidate addresses never handed to the peer connection",
    )
    capacity: int = Field(
        default=DEFAULT_CAPACITY,
        ge=1,
        le=65535,
        description="Maximum concurrent streams per listen session",
    )
    heartbeat_interval: float = Field(
        default=DEFAULT_INTERVAL,
        gt=0,
        alias="heartbeatInterval",
        description="Seconds between heartbeat messages",
    )
    heartbeat_error_threshold: int = Field(
        default=DEFAULT_ERROR_THRESHOLD,
        ge=0,
        alias="heartbeatErrorThreshold",
        description="Consecutive heartbeat errors tolerated before closing",
    )
    log_level: str = Field(default="INFO", alias="logLevel")
    log_json: bool = Field(default=False, alias="logJson")
    log_file: str | None = Field(default=None, alias="logFile")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of {', '.join(LOG_LEVELS)}")
        return level


def default_search_dirs() -> list[Path]:
    """Working directory first, then the directory above the launched script."""
    dirs = [Path.cwd()]
    if sys.argv and sys.argv[0]:
        dirs.append(Path(sys.argv[0]).resolve().parent.parent)
    return dirs


def find_config_file(search_dirs: Iterable[Path] | None = None) -> Path | None:
    """Locate the configuration file, preferring ``config.dev.json``."""
    for directory in search_dirs if search_dirs is not None else default_search_dirs():
        for name in CONFIG_FILE_NAMES:
            candidate = Path(directory) / name
            if candidate.is_file():
                return candidate
    return None


def load_config(
    path: str | Path | None = None, search_dirs: Iterable[Path] | None = None
) -> TunnelConfig:
    """Load and validate the tunnel configuration.

    Args:
        path: Explicit JSON file; searched for when omitted
        search_dirs: Directories to search when ``path`` is omitted

    Raises:
        ConfigurationError: If no file is found or its content is invalid
    """
    config_path = Path(path) if path is not None else find_config_file(search_dirs)
    if config_path is None:
        raise ConfigurationError(
            f"No configuration file found (looked for {', '.join(CONFIG_FILE_NAMES)})"
        )

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e
    except ValueError as e:
        raise ConfigurationError(f"{config_path} is not valid JSON: {e}") from e

    try:
        config = TunnelConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    logger.debug("Configuration loaded", path=str(config_path))
    return config
