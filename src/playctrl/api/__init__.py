"""Wire protocol and transport for talking to a media-player server."""

from playctrl.api.protocol import (
    Command,
    GetStatus,
    Identify,
    IdentifyResponse,
    Seek,
    SetVolume,
    SkipBackward,
    SkipForward,
    StatusUpdate,
    ToggleFullscreen,
    ToggleMute,
    TogglePause,
    UnknownMessage,
    command_from_dict,
    parse_server_message,
)
from playctrl.api.transport import Connector, Transport, TransportClosed, open_websocket

__all__ = [
    "Command",
    "Connector",
    "GetStatus",
    "Identify",
    "IdentifyResponse",
    "Seek",
    "SetVolume",
    "SkipBackward",
    "SkipForward",
    "StatusUpdate",
    "ToggleFullscreen",
    "ToggleMute",
    "TogglePause",
    "Transport",
    "TransportClosed",
    "UnknownMessage",
    "command_from_dict",
    "open_websocket",
    "parse_server_message",
]
