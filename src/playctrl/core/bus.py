"""Command/status bus: the face the rest of the application talks to.

The bus caches the latest ``MediaStatus`` and ``ConnectionState`` published by
the reconnector and re-emits them as Qt signals. Subscribers get the latest
value on each change; missed updates are not replayed.

This follows the Observer pattern via Qt's signal/slot mechanism.
"""

import logging
from collections.abc import Callable

from PySide6.QtCore import QObject, Signal

from playctrl.api.protocol import Command
from playctrl.core.reconnector import Reconnector
from playctrl.core.registry import ServerRegistry
from playctrl.errors import NotConnectedError
from playctrl.models.connection import ConnectionState
from playctrl.models.media_status import MediaStatus

logger = logging.getLogger(__name__)


class CommandBus(QObject):
    """Submit commands and observe status and connection state.

    Example:
        bus = CommandBus(Reconnector(registry), registry)
        bus.on_status(lambda status: print(status.title))
        bus.on_connection_state_change(lambda state: print(state.describe()))
        bus.connect_to("192.168.1.20", 10010)
        await bus.send_command(TogglePause())
    """

    # Note: Using object for complex types (PySide6 limitation)
    status_changed = Signal(object)  # MediaStatus
    connection_state_changed = Signal(object)  # ConnectionState
    server_identified = Signal(str)
    command_failed = Signal(object)  # NotConnectedError

    def __init__(
        self,
        reconnector: Reconnector,
        registry: ServerRegistry | None = None,
        parent: QObject | None = None,
    ) -> None:
        """Initialize the bus and take over the reconnector's events.

        Args:
            reconnector: Supervisor owning the live session.
            registry: Registry used to pick the default server.
            parent: Optional parent QObject.
        """
        super().__init__(parent)
        self._reconnector = reconnector
        self._registry = registry
        self._status = MediaStatus()
        self._connection_state = reconnector.state
        self._server_name = ""
        reconnector.set_event_handlers(
            on_state_changed=self._handle_state_changed,
            on_status=self._handle_status,
            on_identified=self._handle_identified,
        )

    @property
    def reconnector(self) -> Reconnector:
        """Return the reconnector behind this bus."""
        return self._reconnector

    @property
    def server_name(self) -> str:
        """Return the name the current server identified with."""
        return self._server_name

    # -- Subscriptions ---------------------------------------------------------

    def on_status(self, callback: Callable[[MediaStatus], None]) -> None:
        """Call ``callback`` with every merged status."""
        self.status_changed.connect(callback)

    def on_connection_state_change(self, callback: Callable[[ConnectionState], None]) -> None:
        """Call ``callback`` on every connection state transition."""
        self.connection_state_changed.connect(callback)

    # -- Snapshots -------------------------------------------------------------

    def current_status(self) -> MediaStatus:
        """Return the latest status (the empty status while disconnected)."""
        return self._status

    def current_connection_state(self) -> ConnectionState:
        """Return the current connection state."""
        return self._connection_state

    @property
    def is_connected(self) -> bool:
        """Return True if a session is connected."""
        return self._connection_state.is_connected

    # -- Commands --------------------------------------------------------------

    async def send_command(self, command: Command) -> None:
        """Forward a command to the live session.

        Raises:
            NotConnectedError: If no session is connected. ``command_failed``
                is emitted as well so a UI can show a notice.
        """
        try:
            await self._reconnector.send(command)
        except NotConnectedError as e:
            logger.warning("Cannot send %s: %s", command.TYPE, e)
            self.command_failed.emit(e)
            raise

    def connect_to(self, address: str, port: int) -> None:
        """Start a supervised connection to ``address:port``."""
        self._reconnector.start(address, port)

    def connect_default(self) -> tuple[str, int]:
        """Connect to the last used server (or the local default).

        Returns:
            The ``(address, port)`` connected to.
        """
        if self._registry is not None:
            address, port = self._registry.default_target()
        elif self._reconnector.target is not None:
            address, port = self._reconnector.target
        else:
            raise RuntimeError("No server to connect to")
        self.connect_to(address, port)
        return address, port

    def reconnect(self) -> None:
        """Reconnect now, skipping any backoff."""
        self._reconnector.reconnect()

    def disconnect_server(self) -> None:
        """Stop the connection."""
        self._reconnector.stop()

    # -- Reconnector events ----------------------------------------------------

    def _handle_state_changed(self, state: ConnectionState) -> None:
        self._connection_state = state
        if not state.is_connected:
            self._server_name = ""
        self.connection_state_changed.emit(state)

    def _handle_status(self, status: MediaStatus) -> None:
        self._status = status
        self.status_changed.emit(status)

    def _handle_identified(self, name: str) -> None:
        self._server_name = name
        self.server_identified.emit(name)
