"""Configuration manager using QSettings for persistent storage."""

import logging
from pathlib import Path

from PySide6.QtCore import QSettings

from playctrl.core.probe import (
    DEFAULT_APPLICATION_ID,
    DEFAULT_IDENTIFY_TIMEOUT,
    DEFAULT_PROBE_TIMEOUT,
)
from playctrl.models.server import DEFAULT_PORT

logger = logging.getLogger(__name__)

# Registry
_KEY_SERVERS = "servers"
_KEY_LAST_ADDRESS = "last_server/address"
_KEY_LAST_PORT = "last_server/port"

# Connection
_KEY_PROBE_TIMEOUT = "connection/probe_timeout"
_KEY_IDENTIFY_TIMEOUT = "connection/identify_timeout"
_KEY_RECONNECT_BASE_DELAY = "connection/reconnect_base_delay"
_KEY_RECONNECT_MAX_ATTEMPTS = "connection/reconnect_max_attempts"
_KEY_APPLICATION_ID = "connection/application_id"

# Discovery
_KEY_DEFAULT_PORT = "discovery/default_port"
_KEY_MAX_CONCURRENCY = "discovery/max_concurrency"

DEFAULT_RECONNECT_BASE_DELAY = 1.0
DEFAULT_RECONNECT_MAX_ATTEMPTS = 5
DEFAULT_MAX_CONCURRENCY = 64


class ConfigManager:
    """Wrapper around QSettings for type-safe config access.

    QSettings stores config in platform-specific locations:
    - Windows: HKEY_CURRENT_USER\\Software\\playctrl\\playctrl
    - macOS: ~/Library/Preferences/com.playctrl.playctrl.plist
    - Linux: ~/.config/playctrl/playctrl.conf

    Passing ``path`` stores everything in that INI file instead. Every setter
    syncs, so a value is on disk when the call returns.

    Example:
        config = ConfigManager()
        raw = config.get_servers_json()
        config.set_last_server("192.168.1.20", 10010)
    """

    def __init__(
        self,
        organization: str = "playctrl",
        application: str = "playctrl",
        path: str | Path | None = None,
    ) -> None:
        """Initialize the config manager.

        Args:
            organization: Organization name for QSettings.
            application: Application name for QSettings.
            path: Optional INI file overriding the native store.
        """
        if path is not None:
            self._settings = QSettings(str(path), QSettings.Format.IniFormat)
        else:
            self._settings = QSettings(organization, application)

    @property
    def settings(self) -> QSettings:
        """Return the underlying QSettings instance."""
        return self._settings

    def _set(self, key: str, value: object) -> None:
        self._settings.setValue(key, value)
        self._settings.sync()
        if self._settings.status() != QSettings.Status.NoError:
            logger.error("Failed to write setting %s: %s", key, self._settings.status())

    # -- Server registry -------------------------------------------------------

    def get_servers_json(self) -> str:
        """Return the persisted server list as a JSON string.

        Returns:
            JSON text, or an empty string if nothing was saved.
        """
        value = self._settings.value(_KEY_SERVERS, "", str)
        return str(value) if value else ""

    def set_servers_json(self, data: str) -> None:
        """Persist the server list.

        Args:
            data: JSON text of the server list.
        """
        self._set(_KEY_SERVERS, data)

    def get_last_server(self) -> tuple[str, int] | None:
        """Get the last used server.

        Returns:
            ``(address, port)``, or None if no server was used yet.
        """
        address = self._settings.value(_KEY_LAST_ADDRESS, "", str)
        if not address:
            return None
        port = self._settings.value(_KEY_LAST_PORT, self.get_default_port(), int)
        return str(address), max(1, min(65535, int(port)))  # type: ignore[arg-type]

    def set_last_server(self, address: str, port: int) -> None:
        """Remember the last used server.

        Args:
            address: Server address.
            port: Server port.
        """
        self._settings.setValue(_KEY_LAST_ADDRESS, address)
        self._set(_KEY_LAST_PORT, port)

    # -- Connection settings ---------------------------------------------------

    def get_probe_timeout(self) -> float:
        """Return the transport-open timeout in seconds (default 3)."""
        value = self._settings.value(_KEY_PROBE_TIMEOUT, DEFAULT_PROBE_TIMEOUT, float)
        return max(0.1, min(60.0, float(value)))  # type: ignore[arg-type]

    def set_probe_timeout(self, seconds: float) -> None:
        """Set the transport-open timeout (0.1-60 seconds)."""
        self._set(_KEY_PROBE_TIMEOUT, max(0.1, min(60.0, seconds)))

    def get_identify_timeout(self) -> float:
        """Return the identification-reply timeout in seconds (default 2)."""
        value = self._settings.value(_KEY_IDENTIFY_TIMEOUT, DEFAULT_IDENTIFY_TIMEOUT, float)
        return max(0.1, min(60.0, float(value)))  # type: ignore[arg-type]

    def set_identify_timeout(self, seconds: float) -> None:
        """Set the identification-reply timeout (0.1-60 seconds)."""
        self._set(_KEY_IDENTIFY_TIMEOUT, max(0.1, min(60.0, seconds)))

    def get_reconnect_base_delay(self) -> float:
        """Return the first reconnect delay in seconds (default 1)."""
        value = self._settings.value(_KEY_RECONNECT_BASE_DELAY, DEFAULT_RECONNECT_BASE_DELAY, float)
        return max(0.1, min(60.0, float(value)))  # type: ignore[arg-type]

    def set_reconnect_base_delay(self, seconds: float) -> None:
        """Set the first reconnect delay (0.1-60 seconds)."""
        self._set(_KEY_RECONNECT_BASE_DELAY, max(0.1, min(60.0, seconds)))

    def get_reconnect_max_attempts(self) -> int:
        """Return the number of reconnect attempts (default 5)."""
        value = self._settings.value(
            _KEY_RECONNECT_MAX_ATTEMPTS, DEFAULT_RECONNECT_MAX_ATTEMPTS, int
        )
        return max(1, min(20, int(value)))  # type: ignore[arg-type]

    def set_reconnect_max_attempts(self, attempts: int) -> None:
        """Set the number of reconnect attempts (1-20)."""
        self._set(_KEY_RECONNECT_MAX_ATTEMPTS, max(1, min(20, attempts)))

    def get_application_id(self) -> str:
        """Return the application a server must identify as."""
        value = self._settings.value(_KEY_APPLICATION_ID, DEFAULT_APPLICATION_ID, str)
        return str(value) if value else DEFAULT_APPLICATION_ID

    def set_application_id(self, application_id: str) -> None:
        """Set the application a server must identify as."""
        self._set(_KEY_APPLICATION_ID, application_id)

    # -- Discovery settings ----------------------------------------------------

    def get_default_port(self) -> int:
        """Return the port used when none is given (default 10010)."""
        value = self._settings.value(_KEY_DEFAULT_PORT, DEFAULT_PORT, int)
        return max(1, min(65535, int(value)))  # type: ignore[arg-type]

    def set_default_port(self, port: int) -> None:
        """Set the default server port (1-65535)."""
        self._set(_KEY_DEFAULT_PORT, max(1, min(65535, port)))

    def get_max_concurrency(self) -> int:
        """Return how many probes a scan keeps in flight (default 64)."""
        value = self._settings.value(_KEY_MAX_CONCURRENCY, DEFAULT_MAX_CONCURRENCY, int)
        return max(1, min(256, int(value)))  # type: ignore[arg-type]

    def set_max_concurrency(self, count: int) -> None:
        """Set how many probes a scan keeps in flight (1-256)."""
        self._set(_KEY_MAX_CONCURRENCY, max(1, min(256, count)))

    # -- General settings ------------------------------------------------------

    def clear(self) -> None:
        """Clear all settings (useful for testing or reset)."""
        self._settings.clear()
        self._settings.sync()

    def sync(self) -> None:
        """Force settings to be written to disk."""
        self._settings.sync()
