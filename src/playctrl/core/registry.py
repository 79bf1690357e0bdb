"""Durable registry of known media-player servers.

The registry is an explicitly constructed object, created at application start
and handed to whatever needs it. It keeps one ``ServerRecord`` per
``(address, port)`` and writes through to ``ConfigManager`` on every mutation,
so the stored list is current as soon as a call returns.
"""

import asyncio
import json
import logging
from dataclasses import replace
from typing import Any, cast
from urllib.parse import parse_qs, urlparse

from playctrl.api.transport import Connector, open_websocket
from playctrl.core.config import ConfigManager
from playctrl.core.probe import check_reachable
from playctrl.errors import InvalidAddressError
from playctrl.models.server import ServerRecord, ServerStatus

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "localhost"


def validate_endpoint(address: str, port: int) -> tuple[str, int]:
    """Validate a manually entered server endpoint.

    Args:
        address: Hostname or IP address.
        port: Port number.

    Returns:
        ``(address, port)`` with surrounding whitespace removed.

    Raises:
        InvalidAddressError: If the address is empty or the port is not 1-65535.
    """
    address = address.strip()
    if not address:
        raise InvalidAddressError("Please enter a server address")
    if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
        raise InvalidAddressError("Please enter a valid port number (1-65535)")
    return address, port


def parse_deep_link(url: str) -> tuple[str, int] | None:
    """Extract a server endpoint from a link.

    Both ``?ip=...&port=...`` and ``#/remote?ip=...&port=...`` are accepted.

    Args:
        url: Link to parse.

    Returns:
        ``(ip, port)``, or None if the link carries no valid endpoint.
    """
    parsed = urlparse(url)
    params = parse_qs(parsed.query)
    if "?" in parsed.fragment:
        for key, values in parse_qs(parsed.fragment.split("?", 1)[1]).items():
            params.setdefault(key, values)

    ip = params.get("ip", [""])[0].strip()
    port_raw = params.get("port", [""])[0].strip()
    if not ip or not port_raw:
        return None
    try:
        port = int(port_raw)
    except ValueError:
        return None
    if not 0 < port <= 65535:
        return None
    return ip, port


class ServerRegistry:
    """Known servers, keyed by ``(address, port)``.

    Example:
        registry = ServerRegistry(ConfigManager())
        registry.load()
        registry.add_manual("192.168.1.20", 10010)
        last = registry.most_recently_seen()
    """

    def __init__(
        self,
        config: ConfigManager,
        *,
        probe_timeout: float | None = None,
        connector: Connector = open_websocket,
    ) -> None:
        """Initialize the registry.

        Args:
            config: Persistent settings store.
            probe_timeout: Reachability check timeout (default from config).
            connector: Transport factory used by reachability checks.
        """
        self._config = config
        self._probe_timeout = probe_timeout
        self._connector = connector
        self._records: dict[tuple[str, int], ServerRecord] = {}
        self._check_task: asyncio.Task[bool] | None = None

    @property
    def config(self) -> ConfigManager:
        """Return the settings store backing this registry."""
        return self._config

    @property
    def pending_check(self) -> asyncio.Task[bool] | None:
        """Return the startup reachability check, if one was scheduled."""
        return self._check_task

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    # -- Persistence -----------------------------------------------------------

    def load(self, check: bool = True) -> list[ServerRecord]:
        """Load records from storage.

        Records stored as ONLINE are reset to CHECKING. When ``check`` is set
        and an event loop is running, one reachability check is scheduled for
        the most recently seen record only.

        Args:
            check: Whether to schedule the startup reachability check.

        Returns:
            The loaded records.
        """
        self._records = {}
        for record in self._read():
            if record.status is ServerStatus.ONLINE:
                record = record.with_status(ServerStatus.CHECKING)
            self._records[record.key] = record
        self._write()
        logger.debug("Loaded %d known servers", len(self._records))

        latest = self.most_recently_seen()
        if check and latest is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No running event loop, skipping startup check")
            else:
                self._check_task = loop.create_task(self.check(latest.address, latest.port))
        return self.list_servers()

    def _read(self) -> list[ServerRecord]:
        raw = self._config.get_servers_json()
        if not raw:
            return []
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Ignoring unreadable server list: %s", e)
            return []
        if not isinstance(decoded, list):
            logger.warning("Ignoring server list of unexpected type %s", type(decoded).__name__)
            return []

        records: list[ServerRecord] = []
        for raw_item in cast(list[object], decoded):
            if not isinstance(raw_item, dict):
                continue
            try:
                records.append(ServerRecord.from_dict(cast(dict[str, Any], raw_item)))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping invalid server entry: %s", e)
        return records

    def _write(self) -> None:
        data = [record.to_dict() for record in self._records.values()]
        self._config.set_servers_json(json.dumps(data))

    # -- Queries ---------------------------------------------------------------

    def get(self, address: str, port: int) -> ServerRecord | None:
        """Return the record for ``(address, port)``, if known."""
        return self._records.get((address, port))

    def list_servers(self) -> list[ServerRecord]:
        """Return all known records. Order carries no meaning."""
        return list(self._records.values())

    def most_recently_seen(self) -> ServerRecord | None:
        """Return the record with the latest ``last_seen``.

        Records never seen are only returned when no record has been seen.
        Ties go to the first record in iteration order.
        """
        latest: ServerRecord | None = None
        for record in self._records.values():
            if latest is None:
                latest = record
            elif record.last_seen is not None and (
                latest.last_seen is None or record.last_seen > latest.last_seen
            ):
                latest = record
        return latest

    def last_used(self) -> tuple[str, int] | None:
        """Return the last server a session was started against."""
        return self._config.get_last_server()

    def default_target(self) -> tuple[str, int]:
        """Return the last used server, or ``localhost`` on the default port."""
        return self.last_used() or (DEFAULT_ADDRESS, self._config.get_default_port())

    # -- Mutations -------------------------------------------------------------

    def upsert(self, record: ServerRecord) -> ServerRecord:
        """Insert or replace the record for its ``(address, port)``.

        Returns:
            The stored record.
        """
        self._records[record.key] = record
        self._write()
        return record

    def remove(self, address: str, port: int) -> bool:
        """Remove a record.

        Returns:
            True if a record was removed, False if none was known.
        """
        if self._records.pop((address, port), None) is None:
            return False
        self._write()
        logger.info("Removed server %s:%d", address, port)
        return True

    def update_status(
        self, address: str, port: int, status: ServerStatus
    ) -> ServerRecord | None:
        """Set the status of a known record.

        ``last_seen`` is refreshed when the new status is ONLINE.

        Returns:
            The updated record, or None if the server is not known.
        """
        record = self._records.get((address, port))
        if record is None:
            return None
        return self.upsert(record.with_status(status))

    def rename(self, address: str, port: int, name: str) -> ServerRecord | None:
        """Set the display name of a known record."""
        record = self._records.get((address, port))
        if record is None or not name or record.name == name:
            return record
        return self.upsert(replace(record, name=name))

    def set_last_used(self, address: str, port: int) -> None:
        """Remember the server a session was started against."""
        self._config.set_last_server(address, port)

    def add_manual(self, address: str, port: int, name: str | None = None) -> ServerRecord:
        """Record a manually entered server and make it the last used one.

        Raises:
            InvalidAddressError: If the endpoint is not valid.
        """
        address, port = validate_endpoint(address, port)
        existing = self._records.get((address, port))
        record = self.upsert(
            ServerRecord(
                address=address,
                port=port,
                name=name or (existing.name if existing else ""),
                status=ServerStatus.CHECKING,
                last_seen=existing.last_seen if existing else None,
            )
        )
        self.set_last_used(address, port)
        return record

    def add_from_link(self, url: str) -> ServerRecord | None:
        """Record the server named by a deep link.

        Returns:
            The stored record, or None if the link has no valid endpoint.
        """
        endpoint = parse_deep_link(url)
        if endpoint is None:
            return None
        address, port = endpoint
        return self.add_manual(address, port, name=f"Server ({address})")

    async def check(self, address: str, port: int, timeout: float | None = None) -> bool:
        """Re-check that a known server is reachable.

        The record moves to CHECKING, then to ONLINE or OFFLINE.

        Returns:
            True if a transport could be opened.
        """
        self.update_status(address, port, ServerStatus.CHECKING)
        if timeout is None:
            timeout = self._probe_timeout or self._config.get_probe_timeout()
        reachable = await check_reachable(address, port, timeout, connector=self._connector)
        status = ServerStatus.ONLINE if reachable else ServerStatus.OFFLINE
        self.update_status(address, port, status)
        logger.info("Server %s:%d is %s", address, port, "online" if reachable else "offline")
        return reachable
