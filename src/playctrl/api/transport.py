"""Duplex text transport used to reach a media-player server.

The remote speaks JSON frames over a WebSocket. Everything above this module
(probe, session) is written against the small ``Transport`` protocol so the
socket can be replaced in tests.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from playctrl.errors import TransportUnreachableError

logger = logging.getLogger(__name__)

# Close codes treated as an orderly shutdown (normal closure, going away)
_CLEAN_CLOSE_CODES = frozenset({1000, 1001})

# Close code reported when the peer vanished without a close frame
ABNORMAL_CLOSE_CODE = 1006

_MAX_FRAME_SIZE = 1024 * 1024

# Keepalive: a peer that misses a pong within the timeout is treated as gone
DEFAULT_PING_INTERVAL = 20.0
DEFAULT_PING_TIMEOUT = 20.0


class TransportClosed(ConnectionError):
    """The transport was closed, cleanly or not.

    Attributes:
        code: Close code reported by the transport.
        reason: Close reason, may be empty.
    """

    def __init__(self, code: int = ABNORMAL_CLOSE_CODE, reason: str = "") -> None:
        super().__init__(f"transport closed ({code}) {reason}".strip())
        self.code = code
        self.reason = reason

    @property
    def clean(self) -> bool:
        """Return True if the peer closed the transport in an orderly way."""
        return self.code in _CLEAN_CLOSE_CODES


class Transport(Protocol):
    """Message-oriented duplex connection carrying text frames."""

    async def send(self, message: str) -> None:
        """Send one text frame."""
        ...

    async def recv(self) -> str:
        """Wait for the next text frame.

        Raises:
            TransportClosed: When the connection closes.
        """
        ...

    async def close(self) -> None:
        """Close the connection with a normal close code."""
        ...


# (address, port, timeout seconds) -> open transport
Connector = Callable[[str, int, float], Awaitable[Transport]]


def websocket_uri(address: str, port: int) -> str:
    """Build the ``ws://`` URI for a server, bracketing IPv6 literals."""
    host = address
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"ws://{host}:{port}"


class WebSocketTransport:
    """``Transport`` backed by a ``websockets`` client connection."""

    def __init__(self, connection: ClientConnection) -> None:
        self._connection = connection

    async def send(self, message: str) -> None:
        try:
            await self._connection.send(message)
        except ConnectionClosed as e:
            raise _closed_from(e) from e

    async def recv(self) -> str:
        try:
            frame = await self._connection.recv()
        except ConnectionClosed as e:
            raise _closed_from(e) from e
        if isinstance(frame, bytes):
            # Some servers push status as binary frames
            return frame.decode("utf-8", errors="replace")
        return frame

    async def close(self) -> None:
        await self._connection.close()


def _closed_from(error: ConnectionClosed) -> TransportClosed:
    """Translate a websockets close exception into ``TransportClosed``."""
    if error.rcvd is not None:
        return TransportClosed(error.rcvd.code, error.rcvd.reason)
    if isinstance(error, ConnectionClosedOK):
        return TransportClosed(1000)
    return TransportClosed()


async def open_websocket(
    address: str,
    port: int,
    timeout: float,
    *,
    ping_interval: float = DEFAULT_PING_INTERVAL,
    ping_timeout: float = DEFAULT_PING_TIMEOUT,
) -> Transport:
    """Open a WebSocket transport to ``address:port``.

    Args:
        address: Server hostname or IP address.
        port: Server port.
        timeout: Seconds allowed for the TCP connect and opening handshake.
        ping_interval: Seconds between keepalive pings.
        ping_timeout: Seconds to wait for a pong before the connection is dropped.

    Returns:
        An open transport.

    Raises:
        TransportUnreachableError: If the connection could not be opened.
    """
    uri = websocket_uri(address, port)
    try:
        connection = await connect(
            uri,
            open_timeout=timeout,
            ping_interval=ping_interval,
            ping_timeout=ping_timeout,
            max_size=_MAX_FRAME_SIZE,
        )
    except (OSError, TimeoutError, WebSocketException) as e:
        logger.debug("Could not open %s: %s", uri, e)
        raise TransportUnreachableError(f"Failed to connect to {address}:{port}: {e}") from e
    logger.debug("Opened %s", uri)
    return WebSocketTransport(connection)
