"""Liveness monitoring of a peer session over its dedicated data channel."""

import asyncio
from collections.abc import Callable
from typing import Any

from .common.logging import get_logger
from .peer import DataChannel

logger = get_logger(__name__)

DEFAULT_INTERVAL = 3.0
DEFAULT_ERROR_THRESHOLD = 3


class HeartbeatMonitor:
    """Drives the ``heart`` channel of one peer session.

    The first time the channel opens the session is reported usable. From
    then on a counter is sent every ``interval`` seconds. More than
    ``error_threshold`` consecutive errors, or the channel closing, reports
    the session dead.
    """

    def __init__(
        self,
        channel: DataChannel,
        on_usable: Callable[[], None],
        on_dead: Callable[[str], None],
        interval: float = DEFAULT_INTERVAL,
        error_threshold: int = DEFAULT_ERROR_THRESHOLD,
    ):
        self.channel = channel
        self.interval = interval
        self.error_threshold = error_threshold
        self.counter = 1
        self.errors = 0
        self._on_usable = on_usable
        self._on_dead = on_dead
        self._task: asyncio.Task[None] | None = None
        self._usable_reported = False
        self._stopped = False

    def start(self) -> None:
        """Subscribe to the channel; fires immediately if it is already open."""
        self.channel.on("open", self._handle_open)
        self.channel.on("error", self._handle_error)
        self.channel.on("close", self._handle_close)
        if self.channel.readyState == "open":
            self._handle_open()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _handle_open(self) -> None:
        if self._stopped:
            return
        if self._task is not None:
            self._task.cancel()
        self._task = asyncio.ensure_future(self._run())

        if not self._usable_reported:
            self._usable_reported = True
            logger.info("Heartbeat channel open", label=self.channel.label)
            self._on_usable()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    def tick(self) -> None:
        """Run one send cycle."""
        if self._stopped:
            return
        try:
            self.channel.send(str(self.counter))
        except Exception as e:
            self.record_error(e)
            return
        self.counter += 1
        self.errors = 0

    def record_error(self, error: Any = None) -> None:
        """Count one consecutive error; past the threshold the session is dead."""
        if self._stopped:
            return
        self.errors += 1
        logger.warning("Heartbeat error", errors=self.errors, error=str(error))
        if self.errors > self.error_threshold:
            self._declare_dead(f"{self.errors} consecutive heartbeat errors")

    def _handle_error(self, error: Any = None) -> None:
        self.record_error(error)

    def _handle_close(self) -> None:
        if self._stopped:
            return
        self._declare_dead("heartbeat channel closed")

    def _declare_dead(self, reason: str) -> None:
        self.stop()
        logger.warning("Peer session lost", reason=reason)
        self._on_dead(reason)

    def stop(self) -> None:
        """Cancel the send timer and close the channel. Safe to call repeatedly."""
        self._stopped = True
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self.channel.readyState not in ("closing", "closed"):
            self.channel.close()
