"""Byte pump between one TCP connection and one stream data channel."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from .common.exceptions import ControlMessageError
from .common.logging import get_logger
from .models import Mapping, RelayState
from .peer import DataChannel
from .protocol import decode_control_message, encode_control_message

logger = get_logger(__name__)

READ_CHUNK_SIZE = 64 * 1024


def _to_bytes(message: str | bytes) -> bytes:
    if isinstance(message, str):
        return message.encode("utf-8")
    return bytes(message)


class StreamRelay:
    """Relays one tunneled TCP stream.

    Listener side (:meth:`for_listener`): the TCP connection already exists;
    once the channel is open the control envelope is sent and relaying starts.

    Receiver side (:meth:`for_receiver`): the first channel message must be
    the control envelope; the relay then dials the mapping's remote address
    and relays everything that follows verbatim. Messages received while
    dialing are held and written first, in order.

    Either side closing, or any error, closes the relay. ``on_close`` is
    called with the channel label exactly once.
    """

    def __init__(
        self,
        channel: DataChannel,
        on_close: Callable[[str], None],
        state: RelayState,
        mapping: Mapping | None = None,
        reader: asyncio.StreamReader | None = None,
        writer: asyncio.StreamWriter | None = None,
    ):
        self.channel = channel
        self.label = channel.label
        self.state = state
        self.mapping = mapping
        self.reader = reader
        self.writer = writer
        self._on_close = on_close
        self._pending: list[bytes] = []
        self._read_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._closed = False

    @classmethod
    def for_listener(
        cls,
        channel: DataChannel,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        mapping: Mapping,
        on_close: Callable[[str], None],
    ) -> StreamRelay:
        return cls(
            channel,
            on_close,
            RelayState.CREATED,
            mapping=mapping,
            reader=reader,
            writer=writer,
        )

    @classmethod
    def for_receiver(
        cls, channel: DataChannel, on_close: Callable[[str], None]
    ) -> StreamRelay:
        return cls(channel, on_close, RelayState.AWAITING_MAPPING)

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Subscribe to the channel; the listener side may begin relaying at once."""
        self.channel.on("open", self._handle_open)
        self.channel.on("message", self._handle_message)
        self.channel.on("error", self._handle_error)
        self.channel.on("close", self._handle_channel_close)
        if self.channel.readyState == "open":
            self._handle_open()

    def _handle_open(self) -> None:
        if self.state != RelayState.CREATED or self.mapping is None:
            return
        try:
            self.channel.send(encode_control_message(self.mapping))
        except Exception as e:
            self._handle_close(f"failed to send control message: {e}")
            return
        self._start_relaying()

    def _handle_message(self, message: str | bytes) -> None:
        if self.state == RelayState.AWAITING_MAPPING:
            try:
                self.mapping = decode_control_message(message)
            except ControlMessageError as e:
                self._handle_close(str(e))
                return
            self.state = RelayState.CONNECTING
            self._connect_task = asyncio.ensure_future(self._connect(self.mapping))
        elif self.state == RelayState.CONNECTING:
            self._pending.append(_to_bytes(message))
        elif self.state in (RelayState.RELAYING, RelayState.CREATED):
            self._write(_to_bytes(message))

    def _write(self, data: bytes) -> None:
        if self.writer is None or self.writer.is_closing():
            return
        try:
            self.writer.write(data)
        except Exception as e:
            self._handle_close(f"socket write failed: {e}")

    async def _connect(self, mapping: Mapping) -> None:
        try:
            reader, writer = await asyncio.open_connection(
                mapping.remote_ip, mapping.remote_port
            )
        except OSError as e:
            self._handle_close(
                f"connect to {mapping.remote_ip}:{mapping.remote_port} failed: {e}"
            )
            return

        self.reader, self.writer = reader, writer
        if self.state != RelayState.CONNECTING:
            # closed while dialing
            writer.close()
            return

        logger.debug("Stream connected", label=self.label, mapping=str(mapping))
        pending, self._pending = self._pending, []
        for data in pending:
            self._write(data)
        if self.state == RelayState.CONNECTING:
            self._start_relaying()

    def _start_relaying(self) -> None:
        self.state = RelayState.RELAYING
        self._read_task = asyncio.ensure_future(self._pump())

    async def _pump(self) -> None:
        """Copy socket bytes to the channel until EOF or an error."""
        assert self.reader is not None
        try:
            while True:
                data = await self.reader.read(READ_CHUNK_SIZE)
                if not data:
                    reason = "socket reached EOF"
                    break
                self.channel.send(data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"socket relay failed: {e}"
        self._handle_close(reason)

    def _handle_error(self, error: Any = None) -> None:
        self._handle_close(f"channel error: {error}")

    def _handle_channel_close(self) -> None:
        self._handle_close("channel closed")

    def _handle_close(self, reason: str) -> None:
        first = not self._closed
        self._closed = True
        self.close()
        if first:
            logger.debug("Stream closed", label=self.label, reason=reason)
            self._on_close(self.label)

    def close(self) -> None:
        """Release the socket and the channel. Safe to call repeatedly."""
        self.state = RelayState.CLOSED
        self._pending = []
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in (self._read_task, self._connect_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        if self.writer is not None and not self.writer.is_closing():
            self.writer.close()
        if self.channel.readyState not in ("closing", "closed"):
            self.channel.close()
