"""Wire message types for the media-player remote protocol.

Every frame is a flat JSON object tagged by ``type``. Outbound frames are
modelled as frozen dataclasses; inbound frames are validated once, at
``parse_server_message``, and everything downstream works with typed values.
"""

import json
import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, cast

from playctrl.errors import MalformedMessageError

# Seconds moved by skip-forward / skip-backward when no amount is given
DEFAULT_SKIP_AMOUNT = 10

VOLUME_MIN = 0
VOLUME_MAX = 100
VOLUME_STEP = 5


@dataclass(frozen=True)
class Message:
    """Base for outbound frames. Subclasses set ``TYPE``."""

    TYPE: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {"type": self.TYPE, **asdict(self)}

    def to_json(self) -> str:
        """Serialize to a text frame."""
        return json.dumps(self.to_dict())


@dataclass(frozen=True)
class Identify(Message):
    """Identification request sent by probes.

    Attributes:
        timestamp: Send time in epoch milliseconds.
    """

    TYPE: ClassVar[str] = "identify"

    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))


@dataclass(frozen=True)
class Command(Message):
    """Base for control commands accepted by the server."""


@dataclass(frozen=True)
class GetStatus(Command):
    TYPE: ClassVar[str] = "get-status"


@dataclass(frozen=True)
class TogglePause(Command):
    TYPE: ClassVar[str] = "toggle-pause"


@dataclass(frozen=True)
class Seek(Command):
    """Jump to an absolute position.

    Attributes:
        position: Target position in seconds.
    """

    TYPE: ClassVar[str] = "seek"

    position: float


@dataclass(frozen=True)
class SkipForward(Command):
    TYPE: ClassVar[str] = "skip-forward"

    amount: float = DEFAULT_SKIP_AMOUNT


@dataclass(frozen=True)
class SkipBackward(Command):
    TYPE: ClassVar[str] = "skip-backward"

    amount: float = DEFAULT_SKIP_AMOUNT


@dataclass(frozen=True)
class SetVolume(Command):
    """Set the absolute volume.

    Attributes:
        volume: Volume percentage 0-100.
    """

    TYPE: ClassVar[str] = "set-volume"

    volume: int

    def clamped(self) -> "SetVolume":
        """Return a copy with the volume limited to 0-100."""
        return SetVolume(max(VOLUME_MIN, min(VOLUME_MAX, int(self.volume))))


@dataclass(frozen=True)
class ToggleMute(Command):
    TYPE: ClassVar[str] = "toggle-mute"


@dataclass(frozen=True)
class ToggleFullscreen(Command):
    TYPE: ClassVar[str] = "toggle-fullscreen"


COMMAND_TYPES: dict[str, type[Command]] = {
    cls.TYPE: cls
    for cls in (
        GetStatus,
        TogglePause,
        Seek,
        SkipForward,
        SkipBackward,
        SetVolume,
        ToggleMute,
        ToggleFullscreen,
    )
}


def volume_up(current: int, step: int = VOLUME_STEP) -> SetVolume:
    """Return the command raising the volume by ``step``."""
    return SetVolume(current + step).clamped()


def volume_down(current: int, step: int = VOLUME_STEP) -> SetVolume:
    """Return the command lowering the volume by ``step``."""
    return SetVolume(current - step).clamped()


def command_from_dict(data: Mapping[str, Any]) -> Command:
    """Build a command from a ``{"type": ..., <payload>}`` mapping.

    Args:
        data: Command mapping as it would appear on the wire.

    Returns:
        The typed command.

    Raises:
        MalformedMessageError: If the type is unknown or the payload is invalid.
    """
    type_ = data.get("type")
    command_cls = COMMAND_TYPES.get(type_) if isinstance(type_, str) else None
    if command_cls is None:
        raise MalformedMessageError(f"Unknown command type: {type_!r}")
    payload = {k: v for k, v in data.items() if k != "type"}
    try:
        return command_cls(**payload)
    except TypeError as e:
        raise MalformedMessageError(f"Invalid payload for {type_}: {e}") from e


@dataclass(frozen=True)
class IdentifyResponse:
    """Server reply to ``identify``.

    Attributes:
        application: Application identifier claimed by the server.
        name: Display name of the server.
    """

    TYPE: ClassVar[str] = "identify_response"

    application: str
    name: str = ""

    def matches(self, application_id: str) -> bool:
        """Return True if the server claims the expected application."""
        return self.application == application_id


@dataclass(frozen=True)
class StatusUpdate:
    """Partial ``MediaStatus`` pushed by the server.

    Attributes:
        data: Wire fields present in this push.
    """

    TYPE: ClassVar[str] = "status"

    data: dict[str, Any]


@dataclass(frozen=True)
class UnknownMessage:
    """Well-formed frame with a type this client does not handle."""

    type: str


ServerMessage = IdentifyResponse | StatusUpdate | UnknownMessage


def parse_server_message(raw: str | bytes) -> ServerMessage:
    """Parse one inbound frame.

    Args:
        raw: Frame text as received.

    Returns:
        The typed message. Unrecognised types yield ``UnknownMessage``.

    Raises:
        MalformedMessageError: If the frame is not a JSON object with a
            string ``type``, or a known type lacks its required payload.
    """
    try:
        decoded = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessageError(f"Frame is not JSON: {e}") from e

    if not isinstance(decoded, dict):
        raise MalformedMessageError("Frame is not a JSON object")
    data = cast(dict[str, Any], decoded)

    type_ = data.get("type")
    if not isinstance(type_, str) or not type_:
        raise MalformedMessageError("Frame has no type")

    if type_ == StatusUpdate.TYPE:
        payload = data.get("data")
        if not isinstance(payload, dict):
            raise MalformedMessageError("Status frame without data object")
        return StatusUpdate(data=cast(dict[str, Any], payload))

    if type_ == IdentifyResponse.TYPE:
        application = data.get("application")
        name = data.get("name")
        return IdentifyResponse(
            application=str(application) if application is not None else "",
            name=str(name) if name is not None else "",
        )

    return UnknownMessage(type=type_)
