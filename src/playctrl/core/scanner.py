"""Concurrent network scan for media-player servers.

``Scanner.scan`` validates its input up front, then probes every candidate
address concurrently (bounded by ``max_concurrency``) and yields results as
they settle, fastest first. Compatible servers are written to the registry the
moment they are found, so a scan that is cancelled or abandoned half way keeps
its hits.
"""

import asyncio
import ipaddress
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass

from playctrl.api.transport import Connector, open_websocket
from playctrl.core.config import DEFAULT_MAX_CONCURRENCY
from playctrl.core.probe import (
    DEFAULT_APPLICATION_ID,
    DEFAULT_IDENTIFY_TIMEOUT,
    DEFAULT_PROBE_TIMEOUT,
    ProbeOutcome,
    ProbeResult,
    probe,
)
from playctrl.core.registry import ServerRegistry, validate_endpoint
from playctrl.errors import InvalidAddressError, InvalidRangeError
from playctrl.models.server import ServerRecord, ServerStatus

logger = logging.getLogger(__name__)

# Usable host suffixes in a /24 (network and broadcast excluded)
HOST_SUFFIX_MIN = 1
HOST_SUFFIX_MAX = 254

_PREFIX_OCTETS = 3


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Outcome of probing one scanned address."""

    address: str
    port: int
    outcome: ProbeOutcome


@dataclass
class ScanSummary:
    """Counts for a scan, final once every probe has settled.

    Attributes:
        compatible: Probes that found a compatible server.
        non_compatible: Probes that reached something else.
        unreachable: Probes that could not connect.
        cancelled: Whether the scan stopped issuing probes early.
        complete: Whether every issued probe has settled.
    """

    compatible: int = 0
    non_compatible: int = 0
    unreachable: int = 0
    cancelled: bool = False
    complete: bool = False

    @property
    def total(self) -> int:
        """Return the number of settled probes."""
        return self.compatible + self.non_compatible + self.unreachable

    @property
    def reachable(self) -> int:
        """Return the number of probes that opened a transport."""
        return self.compatible + self.non_compatible

    def count(self, outcome: ProbeOutcome) -> None:
        if outcome.result is ProbeResult.COMPATIBLE:
            self.compatible += 1
        elif outcome.result is ProbeResult.NON_COMPATIBLE:
            self.non_compatible += 1
        else:
            self.unreachable += 1


def normalize_prefix(prefix: str) -> str:
    """Validate a ``a.b.c`` network prefix.

    A trailing dot is accepted ("192.168.1.").

    Raises:
        InvalidAddressError: If the prefix is not three octets 0-255.
    """
    cleaned = prefix.strip().rstrip(".")
    parts = cleaned.split(".")
    if len(parts) != _PREFIX_OCTETS or not all(p.isdigit() and int(p) <= 255 for p in parts):
        raise InvalidAddressError(f"Invalid network prefix: {prefix!r} (expected e.g. 192.168.1)")
    return ".".join(str(int(p)) for p in parts)


def build_addresses(prefix: str, start: int, end: int) -> list[str]:
    """Expand a prefix and suffix range into candidate addresses.

    Args:
        prefix: Network prefix such as "192.168.1".
        start: First host suffix.
        end: Last host suffix (inclusive).

    Returns:
        Addresses in ascending order.

    Raises:
        InvalidAddressError: If the prefix is malformed.
        InvalidRangeError: If the bounds are not integers within 1-254 with
            ``start <= end``.
    """
    network = normalize_prefix(prefix)
    for bound in (start, end):
        if isinstance(bound, bool) or not isinstance(bound, int):
            raise InvalidRangeError(f"Host suffix must be an integer, got {bound!r}")
        if not HOST_SUFFIX_MIN <= bound <= HOST_SUFFIX_MAX:
            raise InvalidRangeError(
                f"Host suffix {bound} outside {HOST_SUFFIX_MIN}-{HOST_SUFFIX_MAX}"
            )
    if start > end:
        raise InvalidRangeError(f"Range start {start} is after end {end}")
    return [str(ipaddress.IPv4Address(f"{network}.{suffix}")) for suffix in range(start, end + 1)]


class Scanner:
    """Fan-out prober over an address range.

    A scanner instance runs one scan; it is not restartable once finished.

    Example:
        scanner = Scanner(registry)
        async for result in scanner.scan("192.168.1", 1, 254, 10010):
            if result.outcome.is_compatible:
                print(result.address, result.outcome.name)
        print(scanner.summary)
    """

    def __init__(
        self,
        registry: ServerRegistry | None = None,
        *,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        identify_timeout: float = DEFAULT_IDENTIFY_TIMEOUT,
        application_id: str = DEFAULT_APPLICATION_ID,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        connector: Connector = open_websocket,
    ) -> None:
        """Initialize the scanner.

        Args:
            registry: Registry that compatible servers are recorded in.
            timeout: Seconds allowed for each transport to open.
            identify_timeout: Seconds allowed for each identification reply.
            application_id: Application a server must identify as.
            max_concurrency: Maximum probes in flight.
            connector: Transport factory.
        """
        self._registry = registry
        self._timeout = timeout
        self._identify_timeout = identify_timeout
        self._application_id = application_id
        self._max_concurrency = max(1, max_concurrency)
        self._connector = connector
        self._cancelled = False
        self._started = False
        self._summary = ScanSummary()
        self._launcher: asyncio.Task[None] | None = None

    @classmethod
    def from_registry(
        cls, registry: ServerRegistry, *, connector: Connector = open_websocket
    ) -> "Scanner":
        """Create a scanner configured from the registry's settings."""
        config = registry.config
        return cls(
            registry,
            timeout=config.get_probe_timeout(),
            identify_timeout=config.get_identify_timeout(),
            application_id=config.get_application_id(),
            max_concurrency=config.get_max_concurrency(),
            connector=connector,
        )

    @property
    def summary(self) -> ScanSummary:
        """Return the running (or final) scan summary."""
        return self._summary

    @property
    def cancelled(self) -> bool:
        """Return True if the scan was cancelled."""
        return self._cancelled

    def cancel(self) -> None:
        """Stop issuing new probes. In-flight probes still finish and record."""
        if not self._cancelled:
            logger.info("Scan cancelled")
        self._cancelled = True
        self._summary.cancelled = True

    def scan(self, prefix: str, start: int, end: int, port: int) -> AsyncIterator[ScanResult]:
        """Scan ``prefix.start`` .. ``prefix.end`` on ``port``.

        Input is validated before this returns; probing starts when the
        returned iterator is first awaited.

        Raises:
            InvalidAddressError: If the prefix or port is malformed.
            InvalidRangeError: If the suffix range is invalid.
        """
        addresses = build_addresses(prefix, start, end)
        _, port = validate_endpoint(addresses[0], port)
        return self._run(addresses, port)

    async def scan_all(self, prefix: str, start: int, end: int, port: int) -> list[ScanResult]:
        """Scan a range and return every result once all probes settled."""
        return [result async for result in self.scan(prefix, start, end, port)]

    async def scan_address(self, address: str, port: int) -> ScanResult:
        """Probe a single, manually entered address.

        Raises:
            InvalidAddressError: If the address or port is malformed.
        """
        address, port = validate_endpoint(address, port)
        results = [result async for result in self._run([address], port)]
        return results[0]

    async def _run(self, addresses: Sequence[str], port: int) -> AsyncIterator[ScanResult]:
        if self._started:
            raise RuntimeError("Scanner already used; create a new one")
        self._started = True
        logger.info("Scanning %d addresses on port %d", len(addresses), port)

        queue: asyncio.Queue[ScanResult | None] = asyncio.Queue()
        self._launcher = asyncio.create_task(self._launch_all(addresses, port, queue))
        try:
            while (result := await queue.get()) is not None:
                yield result
        finally:
            if not self._summary.complete:
                # Consumer stopped early: let in-flight probes finish in the background
                self.cancel()

        logger.info(
            "Scan finished: %d compatible, %d other, %d unreachable",
            self._summary.compatible,
            self._summary.non_compatible,
            self._summary.unreachable,
        )

    async def _launch_all(
        self, addresses: Sequence[str], port: int, queue: "asyncio.Queue[ScanResult | None]"
    ) -> None:
        semaphore = asyncio.Semaphore(self._max_concurrency)
        tasks: list[asyncio.Task[None]] = []
        try:
            for address in addresses:
                if self._cancelled:
                    break
                await semaphore.acquire()
                if self._cancelled:
                    semaphore.release()
                    break
                tasks.append(asyncio.create_task(self._probe_one(address, port, semaphore, queue)))
            await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._summary.complete = True
            queue.put_nowait(None)

    async def _probe_one(
        self,
        address: str,
        port: int,
        semaphore: asyncio.Semaphore,
        queue: "asyncio.Queue[ScanResult | None]",
    ) -> None:
        try:
            outcome = await probe(
                address,
                port,
                self._timeout,
                identify_timeout=self._identify_timeout,
                application_id=self._application_id,
                connector=self._connector,
            )
            if outcome.is_compatible:
                self._record(address, port, outcome)
            self._summary.count(outcome)
            queue.put_nowait(ScanResult(address, port, outcome))
        finally:
            semaphore.release()

    def _record(self, address: str, port: int, outcome: ProbeOutcome) -> None:
        logger.info("Found server %r at %s:%d", outcome.name, address, port)
        if self._registry is None:
            return
        existing = self._registry.get(address, port)
        name = outcome.name or (existing.name if existing else "")
        record = ServerRecord(address=address, port=port, name=name)
        self._registry.upsert(record.with_status(ServerStatus.ONLINE))
