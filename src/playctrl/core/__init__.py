"""Core connection and discovery logic.

This module ties the wire layer to the rest of the application: it finds
servers, remembers them, and keeps one control session alive.

Classes:
    ConfigManager: QSettings wrapper for configuration.
    ServerRegistry: Durable list of known servers.
    Scanner: Concurrent range scan built on ``probe``.
    Session: One live control connection.
    Reconnector: Keeps a session connected with exponential backoff.
    CommandBus: Qt-signal facade for commands and status.
"""

from playctrl.core.bus import CommandBus
from playctrl.core.config import ConfigManager
from playctrl.core.probe import ProbeOutcome, ProbeResult, check_reachable, probe
from playctrl.core.reconnector import Reconnector
from playctrl.core.registry import ServerRegistry
from playctrl.core.scanner import Scanner, ScanResult, ScanSummary
from playctrl.core.session import Session, SessionState

__all__ = [
    "CommandBus",
    "ConfigManager",
    "ProbeOutcome",
    "ProbeResult",
    "Reconnector",
    "ScanResult",
    "ScanSummary",
    "Scanner",
    "ServerRegistry",
    "Session",
    "SessionState",
    "check_reachable",
    "probe",
]
