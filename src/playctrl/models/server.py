"""Known media-player server model."""

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Self

DEFAULT_PORT = 10010

_MINUTE = 60
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR


class ServerStatus(Enum):
    """Last observed reachability of a server."""

    UNKNOWN = "unknown"
    CHECKING = "checking"
    ONLINE = "online"
    OFFLINE = "offline"

    @classmethod
    def from_string(cls, value: str) -> "ServerStatus":
        """Convert a stored string to ServerStatus, falling back to UNKNOWN."""
        try:
            return cls(value.lower())
        except (ValueError, AttributeError):
            return cls.UNKNOWN


def default_server_name(address: str) -> str:
    """Return the display name used when a server has not named itself."""
    return f"IINA Server ({address})"


@dataclass(frozen=True, slots=True)
class ServerRecord:
    """Persisted identity and status of a known server.

    ``(address, port)`` is the identity; a registry holds at most one record
    per pair.

    Attributes:
        address: Server hostname or IP address.
        port: Server port (1-65535).
        name: Display label.
        status: Last observed status.
        last_seen: When the server was last seen online (UTC), if ever.
    """

    address: str
    port: int = DEFAULT_PORT
    name: str = ""
    status: ServerStatus = ServerStatus.UNKNOWN
    last_seen: datetime | None = None

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", default_server_name(self.address))

    @property
    def key(self) -> tuple[str, int]:
        """Return the registry key for this record."""
        return (self.address, self.port)

    @property
    def endpoint(self) -> str:
        """Return ``host:port``."""
        return f"{self.address}:{self.port}"

    @property
    def is_online(self) -> bool:
        """Return True if the server was last observed online."""
        return self.status is ServerStatus.ONLINE

    def with_status(self, status: ServerStatus, now: datetime | None = None) -> Self:
        """Return a copy with a new status.

        ``last_seen`` is refreshed only when the new status is ONLINE.
        """
        if status is ServerStatus.ONLINE:
            return replace(self, status=status, last_seen=now or datetime.now(UTC))
        return replace(self, status=status)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted JSON layout."""
        return {
            "name": self.name,
            "address": self.address,
            "port": self.port,
            "status": self.status.value,
            "lastSeen": self.last_seen.isoformat() if self.last_seen else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerRecord":
        """Create a record from the persisted JSON layout.

        Raises:
            ValueError: If address or port is missing or invalid.
        """
        address = data.get("address")
        port = data.get("port")
        if not isinstance(address, str) or not address:
            raise ValueError("record has no address")
        if isinstance(port, bool) or not isinstance(port, int | str):
            raise ValueError(f"record has invalid port: {port!r}")
        port = int(port)
        if not 1 <= port <= 65535:
            raise ValueError(f"record port out of range: {port}")

        last_seen_raw = data.get("lastSeen")
        last_seen: datetime | None = None
        if isinstance(last_seen_raw, str) and last_seen_raw:
            last_seen = _parse_timestamp(last_seen_raw)

        name = data.get("name")
        status = data.get("status")
        return cls(
            address=address,
            port=port,
            name=str(name) if name else "",
            status=ServerStatus.from_string(status)
            if isinstance(status, str)
            else ServerStatus.UNKNOWN,
            last_seen=last_seen,
        )


def _parse_timestamp(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is given."""
    # JavaScript's toISOString() ends with "Z"
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_last_seen(when: datetime, now: datetime | None = None) -> str:
    """Format how long ago a server was seen.

    Args:
        when: Last-seen time.
        now: Reference time (default: current UTC time).

    Returns:
        "just now", "12m ago", "3h ago" or "2d ago".
    """
    now = now or datetime.now(UTC)
    elapsed = int((now - when).total_seconds())
    if elapsed < _MINUTE:
        return "just now"
    if elapsed < _HOUR:
        return f"{elapsed // _MINUTE}m ago"
    if elapsed < _DAY:
        return f"{elapsed // _HOUR}h ago"
    return f"{elapsed // _DAY}d ago"
