"""Connection state published by the reconnector."""

from dataclasses import dataclass
from enum import Enum


class ConnectionPhase(Enum):
    """Coarse phase of the control connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True, slots=True)
class ConnectionState:
    """Snapshot of the reconnector state machine.

    Attributes:
        phase: Current phase.
        attempt: Reconnect attempt number (1-based), 0 outside RECONNECTING.
        next_delay: Backoff delay in seconds before this attempt.
        gave_up: True when DISCONNECTED because reconnect attempts ran out.
    """

    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    attempt: int = 0
    next_delay: float = 0.0
    gave_up: bool = False

    @classmethod
    def disconnected(cls, gave_up: bool = False) -> "ConnectionState":
        return cls(ConnectionPhase.DISCONNECTED, gave_up=gave_up)

    @classmethod
    def connecting(cls) -> "ConnectionState":
        return cls(ConnectionPhase.CONNECTING)

    @classmethod
    def connected(cls) -> "ConnectionState":
        return cls(ConnectionPhase.CONNECTED)

    @classmethod
    def reconnecting(cls, attempt: int, delay: float) -> "ConnectionState":
        return cls(ConnectionPhase.RECONNECTING, attempt=attempt, next_delay=delay)

    @property
    def is_connected(self) -> bool:
        """Return True if a session is connected."""
        return self.phase is ConnectionPhase.CONNECTED

    @property
    def is_active(self) -> bool:
        """Return True while connected or trying to connect."""
        return self.phase is not ConnectionPhase.DISCONNECTED

    def describe(self) -> str:
        """Return a short human-readable description."""
        if self.phase is ConnectionPhase.RECONNECTING:
            return f"Reconnecting (attempt {self.attempt}, in {self.next_delay:g}s)"
        if self.gave_up:
            return "Could not reconnect"
        return self.phase.value.capitalize()
