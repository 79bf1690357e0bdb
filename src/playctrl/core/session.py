"""The live control connection to one media-player server.

A session moves through ``IDLE -> HANDSHAKING -> LIVE -> CLOSED``. It asks for
the current status as soon as the transport opens, becomes LIVE on the first
well-formed frame, merges status pushes into its cached ``MediaStatus`` and
reports every update through its event handlers. CLOSED is terminal; restarting
is the reconnector's job.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from enum import Enum

from playctrl.api.protocol import (
    Command,
    GetStatus,
    Identify,
    IdentifyResponse,
    Message,
    StatusUpdate,
    UnknownMessage,
    parse_server_message,
)
from playctrl.api.transport import Connector, Transport, TransportClosed, open_websocket
from playctrl.core.probe import DEFAULT_APPLICATION_ID, DEFAULT_PROBE_TIMEOUT
from playctrl.errors import MalformedMessageError, NotConnectedError, TransportUnreachableError
from playctrl.models.media_status import MediaStatus

logger = logging.getLogger(__name__)

_CLOSE_TIMEOUT = 1.0

# Type aliases for event handlers
StatusHandler = Callable[[MediaStatus], None]
IdentifiedHandler = Callable[[str], None]
ClosedHandler = Callable[["Session", Exception | None], None]


class SessionState(Enum):
    """Lifecycle of a session."""

    IDLE = "idle"
    HANDSHAKING = "handshaking"
    LIVE = "live"
    CLOSED = "closed"


class Session:
    """One control connection with its handshake and message state.

    Example:
        session = Session("192.168.1.20", 10010)
        session.set_event_handlers(on_status=print)
        await session.open()
        await session.send(TogglePause())
        await session.close()
    """

    def __init__(
        self,
        address: str,
        port: int,
        *,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        application_id: str = DEFAULT_APPLICATION_ID,
        identify: bool = True,
        connector: Connector = open_websocket,
    ) -> None:
        """Initialize the session.

        Args:
            address: Server hostname or IP address.
            port: Server port.
            timeout: Seconds allowed for the transport to open.
            application_id: Application an identification reply must name.
            identify: Whether to ask the server for its name after connecting.
            connector: Transport factory.
        """
        self._address = address
        self._port = port
        self._timeout = timeout
        self._application_id = application_id
        self._identify = identify
        self._connector = connector
        self._transport: Transport | None = None
        self._state = SessionState.IDLE
        self._status = MediaStatus()
        self._receive_task: asyncio.Task[None] | None = None
        self._malformed_count = 0
        self._server_name = ""

        # Event handlers
        self._on_status: StatusHandler | None = None
        self._on_identified: IdentifiedHandler | None = None
        self._on_closed: ClosedHandler | None = None

    @property
    def address(self) -> str:
        """Return server address."""
        return self._address

    @property
    def port(self) -> int:
        """Return server port."""
        return self._port

    @property
    def state(self) -> SessionState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def is_open(self) -> bool:
        """Return True if commands can be sent."""
        return self._state in (SessionState.HANDSHAKING, SessionState.LIVE)

    @property
    def media_status(self) -> MediaStatus:
        """Return the merged status received on this session."""
        return self._status

    @property
    def server_name(self) -> str:
        """Return the name the server identified with, if any."""
        return self._server_name

    @property
    def malformed_count(self) -> int:
        """Return how many unparseable frames were dropped."""
        return self._malformed_count

    def set_event_handlers(
        self,
        on_status: StatusHandler | None = None,
        on_identified: IdentifiedHandler | None = None,
        on_closed: ClosedHandler | None = None,
    ) -> None:
        """Set event handlers for session events.

        Args:
            on_status: Called with the merged status after each push.
            on_identified: Called with the server name from an identification reply.
            on_closed: Called once when the session closes, with the error
                that closed it (None for a local close).
        """
        self._on_status = on_status
        self._on_identified = on_identified
        self._on_closed = on_closed

    async def open(self) -> None:
        """Open the transport and start the handshake.

        Raises:
            TransportUnreachableError: If the transport could not be opened.
            RuntimeError: If the session was already opened.
        """
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Session already {self._state.value}")

        self._state = SessionState.HANDSHAKING
        try:
            self._transport = await asyncio.wait_for(
                self._connector(self._address, self._port, self._timeout),
                timeout=self._timeout,
            )
        except (TimeoutError, TransportUnreachableError, OSError) as e:
            self._state = SessionState.CLOSED
            raise TransportUnreachableError(
                f"Failed to connect to {self._address}:{self._port}: {e}"
            ) from e

        logger.info("Connected to %s:%d", self._address, self._port)
        self._receive_task = asyncio.create_task(self._receive_loop())

        try:
            # Ask right away so the first push is not awaited idly
            await self._write(GetStatus())
            if self._identify:
                await self._write(Identify())
        except ConnectionError as e:
            logger.debug("Handshake send failed: %s", e)

    async def send(self, command: Command) -> None:
        """Send a command to the server.

        Raises:
            NotConnectedError: If the session is not handshaking or live.
        """
        if not self.is_open:
            raise NotConnectedError("Not connected to server")
        await self._write(command)

    async def _write(self, message: Message) -> None:
        if self._transport is None:
            raise NotConnectedError("Not connected to server")
        try:
            await self._transport.send(message.to_json())
        except ConnectionError as e:
            raise NotConnectedError(f"Failed to send {message.TYPE}: {e}") from e
        logger.debug("Sent %s", message.TYPE)

    async def close(self) -> None:
        """Close the session. Safe to call more than once."""
        if self._state is SessionState.CLOSED and self._transport is None:
            return
        self._state = SessionState.CLOSED

        task = self._receive_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._receive_task = None

        await self._release_transport()
        self._finish(None)

    async def _release_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            await asyncio.wait_for(transport.close(), timeout=_CLOSE_TIMEOUT)
        except (ConnectionError, OSError, TimeoutError) as e:
            logger.debug("Error closing transport: %s", e)

    async def _receive_loop(self) -> None:
        """Background task: receive and dispatch frames in arrival order."""
        transport = self._transport
        if transport is None:
            return

        error: Exception | None = None
        try:
            while True:
                raw = await transport.recv()
                try:
                    message = parse_server_message(raw)
                except MalformedMessageError as e:
                    self._malformed_count += 1
                    logger.warning("Dropping malformed frame: %s", e)
                    continue
                if self._state is SessionState.HANDSHAKING:
                    self._state = SessionState.LIVE
                    logger.debug("Session live with %s:%d", self._address, self._port)
                self._dispatch(message)
        except asyncio.CancelledError:
            return
        except TransportClosed as e:
            logger.info("Connection to %s:%d closed: %s", self._address, self._port, e)
            error = e
        except ConnectionError as e:
            logger.warning("Connection to %s:%d failed: %s", self._address, self._port, e)
            error = e
        except Exception as e:
            logger.exception("Receive loop for %s:%d failed", self._address, self._port)
            error = e

        self._state = SessionState.CLOSED
        self._receive_task = None
        await self._release_transport()
        self._finish(error)

    def _dispatch(self, message: IdentifyResponse | StatusUpdate | UnknownMessage) -> None:
        if isinstance(message, StatusUpdate):
            self._status = self._status.merged(message.data)
            if self._on_status:
                self._on_status(self._status)
        elif isinstance(message, IdentifyResponse):
            if not message.matches(self._application_id):
                logger.warning(
                    "Server identified as %r, expected %r",
                    message.application,
                    self._application_id,
                )
                return
            self._server_name = message.name
            logger.info("Server identified as %s", message.name)
            if self._on_identified and message.name:
                self._on_identified(message.name)
        else:
            logger.debug("Ignoring message of type %s", message.type)

    def _finish(self, error: Exception | None) -> None:
        """Report closure exactly once."""
        handler, self._on_closed = self._on_closed, None
        self._on_status = None
        self._on_identified = None
        if handler:
            handler(self, error)
