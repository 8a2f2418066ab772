"""Command line entry point.

Usage:
    webrtc-tunnel listen [--config PATH]
    webrtc-tunnel send [--config PATH]
"""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from .common.exceptions import ConfigurationError, SignalingError
from .common.logging import get_logger, setup_logging
from .config import load_config
from .models import TunnelMode
from .orchestrator import TunnelOrchestrator

logger = get_logger(__name__)

app = typer.Typer(
    name="webrtc-tunnel",
    help="Tunnel TCP connections over WebRTC data channels",
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Configuration file (default: config.dev.json or config.json)",
        envvar="WEBRTC_TUNNEL_CONFIG",
    ),
]


async def _serve(orchestrator: TunnelOrchestrator) -> None:
    try:
        await orchestrator.run()
    finally:
        await orchestrator.close()


def _run(mode: TunnelMode, config_path: Path | None) -> None:
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2) from e

    setup_logging(
        level=config.log_level, json_format=config.log_json, log_file=config.log_file
    )
    orchestrator = TunnelOrchestrator(config, mode)

    try:
        asyncio.run(_serve(orchestrator))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except SignalingError as e:
        logger.error("Signaling failed", error=str(e))
        raise typer.Exit(code=1) from e


@app.command()
def listen(config: ConfigOption = None):
    """Expose the configured remote services on local TCP listeners."""
    _run(TunnelMode.LISTEN, config)


@app.command()
def send(config: ConfigOption = None):
    """Answer listen sessions and dial the services they request."""
    _run(TunnelMode.SEND, config)


if __name__ == "__main__":
    app()
