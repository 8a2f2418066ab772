"""Socket.IO client for the signaling relay.

The relay only ever sees session-setup metadata:

- ``secretKey`` (out): the shared secret, sent on every (re)connect
- ``tunnel`` (in/out): ``{"type": ..., "data": ...}`` negotiation messages
- ``iceServer`` (call): returns the ICE server list to use for a session
"""

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import socketio

from .common.exceptions import SignalingError
from .common.logging import get_logger
from .common.utils import mask_sensitive_data, sanitize_log_data

logger = get_logger(__name__)

TUNNEL_EVENT = "tunnel"
SECRET_KEY_EVENT = "secretKey"
ICE_SERVER_EVENT = "iceServer"

ConnectHandler = Callable[[], Awaitable[None] | None]
TunnelHandler = Callable[[dict[str, Any]], Awaitable[None] | None]


class SignalingClient:
    """Named-event channel to the signaling relay."""

    def __init__(
        self,
        url: str,
        secret_key: str,
        path: str = "/socket.io",
        request_timeout: float = 30.0,
        client: socketio.AsyncClient | None = None,
    ):
        self.url = url
        self.path = path
        self.request_timeout = request_timeout
        self._secret_key = secret_key
        self._connect_handlers: list[ConnectHandler] = []
        self._tunnel_handlers: list[TunnelHandler] = []

        self.sio = client if client is not None else socketio.AsyncClient()
        self.sio.on("connect", self._handle_connect)
        self.sio.on("disconnect", self._handle_disconnect)
        self.sio.on(TUNNEL_EVENT, self._handle_tunnel)

    @property
    def connected(self) -> bool:
        return bool(self.sio.connected)

    def on_connect(self, handler: ConnectHandler) -> None:
        self._connect_handlers.append(handler)

    def on_tunnel(self, handler: TunnelHandler) -> None:
        self._tunnel_handlers.append(handler)

    async def connect(self) -> None:
        """Open the connection to the relay.

        Raises:
            SignalingError: If the relay cannot be reached
        """
        logger.info("Connecting to signaling server", url=self.url, path=self.path)
        try:
            await self.sio.connect(self.url, socketio_path=self.path)
        except socketio.exceptions.ConnectionError as e:
            raise SignalingError(f"Cannot connect to {self.url}: {e}") from e

    async def wait(self) -> None:
        """Block until the connection ends for good."""
        await self.sio.wait()

    async def disconnect(self) -> None:
        if self.sio.connected:
            await self.sio.disconnect()

    async def _handle_connect(self) -> None:
        logger.info(
            "Signaling connected", secret=mask_sensitive_data(self._secret_key)
        )
        await self.sio.emit(SECRET_KEY_EVENT, self._secret_key)
        for handler in list(self._connect_handlers):
            result = handler()
            if inspect.isawaitable(result):
                await result

    async def _handle_disconnect(self, *args: Any) -> None:
        logger.warning("Signaling disconnected")

    async def _handle_tunnel(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.debug("Ignoring malformed tunnel message")
            return
        for handler in list(self._tunnel_handlers):
            result = handler(message)
            if inspect.isawaitable(result):
                await result

    async def send_tunnel(self, message_type: str, data: dict[str, Any]) -> None:
        """Emit one ``tunnel`` negotiation message."""
        await self.sio.emit(TUNNEL_EVENT, {"type": message_type, "data": data})

    async def get_ice_servers(self) -> list[dict[str, Any]]:
        """Ask the relay for the ICE servers of a new session.

        Raises:
            SignalingError: If the relay does not answer in time
        """
        try:
            servers = await self.sio.call(ICE_SERVER_EVENT, timeout=self.request_timeout)
        except socketio.exceptions.TimeoutError as e:
            raise SignalingError("Timed out waiting for ICE servers") from e

        if servers is None:
            return []
        if isinstance(servers, dict):
            servers = [servers]
        if not isinstance(servers, list):
            raise SignalingError(f"Unexpected ICE server response: {type(servers).__name__}")

        logger.debug(
            "ICE servers received",
            servers=[sanitize_log_data(s) if isinstance(s, dict) else s for s in servers],
        )
        return servers
