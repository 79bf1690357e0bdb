"""Supervisor that keeps one session connected, with exponential backoff.

State machine::

    DISCONNECTED --start--> CONNECTING --open ok--> CONNECTED
    CONNECTING/CONNECTED --session lost--> RECONNECTING(1, base)
    RECONNECTING(n) --open ok--> CONNECTED (attempt counter reset)
    RECONNECTING(n) --open failed, n < max--> RECONNECTING(n + 1, base * 2**n)
    RECONNECTING(max) --open failed--> DISCONNECTED (gave up)
    any --stop--> DISCONNECTED

Only this class reacts to a session closing; everything else just observes
``ConnectionState``.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress

from playctrl.api.protocol import Command
from playctrl.api.transport import Connector, open_websocket
from playctrl.core.config import DEFAULT_RECONNECT_BASE_DELAY, DEFAULT_RECONNECT_MAX_ATTEMPTS
from playctrl.core.probe import DEFAULT_APPLICATION_ID, DEFAULT_PROBE_TIMEOUT
from playctrl.core.registry import ServerRegistry
from playctrl.core.session import Session
from playctrl.errors import NotConnectedError, TransportUnreachableError
from playctrl.models.connection import ConnectionPhase, ConnectionState
from playctrl.models.media_status import MediaStatus
from playctrl.models.server import ServerRecord, ServerStatus

logger = logging.getLogger(__name__)

# Type aliases for event handlers
StateHandler = Callable[[ConnectionState], None]
StatusHandler = Callable[[MediaStatus], None]
IdentifiedHandler = Callable[[str], None]


def backoff_delay(attempt: int, base_delay: float = DEFAULT_RECONNECT_BASE_DELAY) -> float:
    """Return the delay before reconnect ``attempt`` (1-based)."""
    return base_delay * 2 ** (attempt - 1)


class Reconnector:
    """Owns the active ``Session`` and restarts it after unexpected closure.

    Example:
        reconnector = Reconnector(registry)
        reconnector.set_event_handlers(on_state_changed=print)
        reconnector.start("192.168.1.20", 10010)
        ...
        reconnector.stop()
    """

    def __init__(
        self,
        registry: ServerRegistry | None = None,
        *,
        base_delay: float = DEFAULT_RECONNECT_BASE_DELAY,
        max_attempts: int = DEFAULT_RECONNECT_MAX_ATTEMPTS,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        application_id: str = DEFAULT_APPLICATION_ID,
        connector: Connector = open_websocket,
    ) -> None:
        """Initialize the reconnector.

        Args:
            registry: Registry to record status and last used server in.
            base_delay: Delay in seconds before the first reconnect attempt.
            max_attempts: Reconnect attempts before giving up.
            timeout: Seconds allowed for each transport to open.
            application_id: Application the server must identify as.
            connector: Transport factory.
        """
        self._registry = registry
        self._base_delay = base_delay
        self._max_attempts = max_attempts
        self._timeout = timeout
        self._application_id = application_id
        self._connector = connector

        self._state = ConnectionState.disconnected()
        self._target: tuple[str, int] | None = None
        self._session: Session | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._closing: set[asyncio.Task[None]] = set()
        self._state_waiters: set[asyncio.Event] = set()

        # Event handlers
        self._on_state_changed: StateHandler | None = None
        self._on_status: StatusHandler | None = None
        self._on_identified: IdentifiedHandler | None = None

    @classmethod
    def from_registry(
        cls, registry: ServerRegistry, *, connector: Connector = open_websocket
    ) -> "Reconnector":
        """Create a reconnector configured from the registry's settings."""
        config = registry.config
        return cls(
            registry,
            base_delay=config.get_reconnect_base_delay(),
            max_attempts=config.get_reconnect_max_attempts(),
            timeout=config.get_probe_timeout(),
            application_id=config.get_application_id(),
            connector=connector,
        )

    @property
    def state(self) -> ConnectionState:
        """Return the current connection state."""
        return self._state

    @property
    def target(self) -> tuple[str, int] | None:
        """Return the ``(address, port)`` being supervised, if any."""
        return self._target

    @property
    def session(self) -> Session | None:
        """Return the current session, if one exists."""
        return self._session

    @property
    def max_attempts(self) -> int:
        """Return the number of reconnect attempts before giving up."""
        return self._max_attempts

    def set_event_handlers(
        self,
        on_state_changed: StateHandler | None = None,
        on_status: StatusHandler | None = None,
        on_identified: IdentifiedHandler | None = None,
    ) -> None:
        """Set event handlers.

        Args:
            on_state_changed: Called on every state transition.
            on_status: Called with each merged status, and with the empty
                status when a session ends.
            on_identified: Called with the server name when it identifies.
        """
        self._on_state_changed = on_state_changed
        self._on_status = on_status
        self._on_identified = on_identified

    # -- Control ---------------------------------------------------------------

    def start(self, address: str, port: int) -> None:
        """Start supervising a session to ``address:port``.

        Any current session is stopped first. Must be called from a running
        event loop.
        """
        self.stop()
        self._target = (address, port)
        if self._registry is not None:
            self._registry.set_last_used(address, port)
        self._set_state(ConnectionState.connecting())
        self._launch()

    def stop(self) -> None:
        """Stop supervising and go DISCONNECTED. Idempotent."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._connect_task is not None:
            self._connect_task.cancel()
            self._connect_task = None
        self._drop_session()
        self._set_state(ConnectionState.disconnected())

    def reconnect(self) -> None:
        """Restart immediately with a fresh attempt counter, skipping backoff.

        Raises:
            RuntimeError: If no server was ever started.
        """
        if self._target is None:
            raise RuntimeError("No server to reconnect to")
        address, port = self._target
        logger.info("Manual reconnect to %s:%d", address, port)
        self.start(address, port)

    async def send(self, command: Command) -> None:
        """Send a command on the current session.

        Raises:
            NotConnectedError: If there is no open session.
        """
        session = self._session
        if session is None or not session.is_open:
            raise NotConnectedError("Not connected to server")
        await session.send(command)

    async def wait_for_phase(self, phase: ConnectionPhase, timeout: float) -> bool:
        """Wait until the connection reaches ``phase``.

        Returns:
            True if the phase was reached within ``timeout`` seconds.
        """
        with suppress(TimeoutError):
            async with asyncio.timeout(timeout):
                while self._state.phase is not phase:
                    changed = asyncio.Event()
                    self._state_waiters.add(changed)
                    try:
                        await changed.wait()
                    finally:
                        self._state_waiters.discard(changed)
                return True
        return self._state.phase is phase

    async def aclose(self) -> None:
        """Stop and wait for the session to finish closing."""
        self.stop()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    # -- Internals -------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        logger.debug("Connection state: %s", state.describe())
        for waiter in self._state_waiters:
            waiter.set()
        if self._on_state_changed:
            self._on_state_changed(state)

    def _launch(self) -> None:
        self._timer = None
        self._connect_task = asyncio.get_running_loop().create_task(self._connect())

    async def _connect(self) -> None:
        """Open one session for the current target."""
        assert self._target is not None
        address, port = self._target
        session = Session(
            address,
            port,
            timeout=self._timeout,
            application_id=self._application_id,
            connector=self._connector,
        )
        session.set_event_handlers(
            on_status=self._handle_status,
            on_identified=self._handle_identified,
            on_closed=self._handle_session_closed,
        )
        self._session = session
        try:
            await session.open()
        except TransportUnreachableError as e:
            if self._session is session:
                self._session = None
                logger.info("Connect to %s:%d failed: %s", address, port, e)
                self._connect_task = None
                self._after_failure()
            return
        except asyncio.CancelledError:
            if self._session is session:
                self._session = None
            self._close_in_background(session)
            raise

        if self._session is not session:
            # Stopped or restarted while the transport was opening
            self._close_in_background(session)
            return

        self._connect_task = None
        self._set_state(ConnectionState.connected())
        self._update_registry(ServerStatus.ONLINE)

    def _after_failure(self) -> None:
        """Schedule the next attempt, or give up."""
        if self._state.phase is ConnectionPhase.RECONNECTING:
            attempt = self._state.attempt + 1
            if attempt > self._max_attempts:
                logger.warning("Could not reconnect after %d attempts", self._max_attempts)
                self._update_registry(ServerStatus.OFFLINE)
                self._set_state(ConnectionState.disconnected(gave_up=True))
                return
        elif self._state.phase in (ConnectionPhase.CONNECTING, ConnectionPhase.CONNECTED):
            attempt = 1
        else:
            return
        self._schedule(attempt)

    def _schedule(self, attempt: int) -> None:
        delay = backoff_delay(attempt, self._base_delay)
        self._set_state(ConnectionState.reconnecting(attempt, delay))
        logger.info("Reconnect attempt %d/%d in %gs", attempt, self._max_attempts, delay)
        self._timer = asyncio.get_running_loop().call_later(delay, self._launch)

    def _handle_session_closed(self, session: Session, error: Exception | None) -> None:
        if session is not self._session:
            return
        self._session = None
        self._publish_status(MediaStatus())
        self._update_registry(ServerStatus.OFFLINE)
        if self._state.is_active:
            logger.info("Session lost: %s", error)
            self._after_failure()

    def _handle_status(self, status: MediaStatus) -> None:
        self._publish_status(status)

    def _handle_identified(self, name: str) -> None:
        if self._registry is not None and self._target is not None:
            address, port = self._target
            if self._registry.rename(address, port, name) is None:
                # Reply arrived before the record was marked online
                self._registry.upsert(ServerRecord(address, port, name=name))
        if self._on_identified:
            self._on_identified(name)

    def _publish_status(self, status: MediaStatus) -> None:
        if self._on_status:
            self._on_status(status)

    def _update_registry(self, status: ServerStatus) -> None:
        if self._registry is None or self._target is None:
            return
        address, port = self._target
        updated = self._registry.update_status(address, port, status)
        if updated is None and status is ServerStatus.ONLINE:
            self._registry.upsert(ServerRecord(address, port).with_status(ServerStatus.ONLINE))

    def _drop_session(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        self._publish_status(MediaStatus())
        self._close_in_background(session)

    def _close_in_background(self, session: Session) -> None:
        task = asyncio.get_running_loop().create_task(session.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
