"""Tests for wire message types."""

import json

import pytest

from playctrl.api.protocol import (
    COMMAND_TYPES,
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
    volume_down,
    volume_up,
)
from playctrl.errors import MalformedMessageError


class TestOutboundMessages:
    """Tests for command and identify serialization."""

    def test_identify_carries_timestamp(self) -> None:
        """Test identify frame has type and millisecond timestamp."""
        data = json.loads(Identify(timestamp=1700000000000).to_json())
        assert data == {"type": "identify", "timestamp": 1700000000000}

    def test_identify_default_timestamp_is_epoch_ms(self) -> None:
        """Test the default timestamp is in milliseconds."""
        assert Identify().timestamp > 1_000_000_000_000

    def test_command_without_payload(self) -> None:
        """Test parameterless commands serialize to their type only."""
        assert GetStatus().to_dict() == {"type": "get-status"}
        assert TogglePause().to_dict() == {"type": "toggle-pause"}
        assert ToggleMute().to_dict() == {"type": "toggle-mute"}
        assert ToggleFullscreen().to_dict() == {"type": "toggle-fullscreen"}

    def test_command_with_payload(self) -> None:
        """Test payload fields are flattened next to the type."""
        assert Seek(42.5).to_dict() == {"type": "seek", "position": 42.5}
        assert SetVolume(30).to_dict() == {"type": "set-volume", "volume": 30}

    def test_skip_defaults_to_ten_seconds(self) -> None:
        """Test skip commands default to a 10 second amount."""
        assert SkipForward().to_dict() == {"type": "skip-forward", "amount": 10}
        assert SkipBackward(30).to_dict() == {"type": "skip-backward", "amount": 30}

    def test_set_volume_clamped(self) -> None:
        """Test volume is limited to 0-100."""
        assert SetVolume(150).clamped().volume == 100
        assert SetVolume(-5).clamped().volume == 0
        assert SetVolume(55).clamped().volume == 55

    def test_volume_steps(self) -> None:
        """Test volume helpers step by 5 and clamp."""
        assert volume_up(50).volume == 55
        assert volume_down(50).volume == 45
        assert volume_up(98).volume == 100
        assert volume_down(3).volume == 0


class TestCommandFromDict:
    """Tests for command_from_dict."""

    def test_known_types_registered(self) -> None:
        """Test every command type is in the registry."""
        assert set(COMMAND_TYPES) == {
            "get-status",
            "toggle-pause",
            "seek",
            "skip-forward",
            "skip-backward",
            "set-volume",
            "toggle-mute",
            "toggle-fullscreen",
        }

    def test_builds_command(self) -> None:
        """Test building a command with payload."""
        assert command_from_dict({"type": "seek", "position": 12}) == Seek(12)
        assert command_from_dict({"type": "skip-forward"}) == SkipForward()

    def test_unknown_type(self) -> None:
        """Test unknown command types are rejected."""
        with pytest.raises(MalformedMessageError):
            command_from_dict({"type": "eject"})

    def test_missing_type(self) -> None:
        """Test a mapping without type is rejected."""
        with pytest.raises(MalformedMessageError):
            command_from_dict({"position": 3})

    def test_missing_payload(self) -> None:
        """Test a command missing a required field is rejected."""
        with pytest.raises(MalformedMessageError):
            command_from_dict({"type": "set-volume"})

    def test_unexpected_payload(self) -> None:
        """Test extra fields are rejected."""
        with pytest.raises(MalformedMessageError):
            command_from_dict({"type": "toggle-pause", "force": True})


class TestParseServerMessage:
    """Tests for parse_server_message."""

    def test_identify_response(self) -> None:
        """Test parsing an identification reply."""
        raw = '{"type": "identify_response", "application": "IINA", "name": "Den"}'
        message = parse_server_message(raw)
        assert message == IdentifyResponse(application="IINA", name="Den")
        assert message.matches("IINA")
        assert not message.matches("VLC")

    def test_identify_response_without_name(self) -> None:
        """Test a reply without name gets an empty name."""
        message = parse_server_message('{"type": "identify_response", "application": "IINA"}')
        assert isinstance(message, IdentifyResponse)
        assert message.name == ""

    def test_status(self) -> None:
        """Test parsing a status push."""
        message = parse_server_message('{"type": "status", "data": {"volume": 40}}')
        assert message == StatusUpdate(data={"volume": 40})

    def test_status_accepts_bytes(self) -> None:
        """Test binary frames are decoded."""
        message = parse_server_message(b'{"type": "status", "data": {}}')
        assert isinstance(message, StatusUpdate)

    def test_unknown_type_is_not_an_error(self) -> None:
        """Test unrecognised types are returned for the caller to ignore."""
        assert parse_server_message('{"type": "playlist"}') == UnknownMessage(type="playlist")

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2, 3]",
            '"status"',
            "{}",
            '{"type": ""}',
            '{"type": 5}',
            '{"type": "status"}',
            '{"type": "status", "data": [1]}',
        ],
    )
    def test_malformed(self, raw: str) -> None:
        """Test malformed frames raise MalformedMessageError."""
        with pytest.raises(MalformedMessageError):
            parse_server_message(raw)
