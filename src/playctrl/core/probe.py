"""Probe a single endpoint and classify what answers there.

A probe opens one transport, sends ``identify`` and waits for the reply:

- the transport never opens, errors, or drops abnormally -> UNREACHABLE
- it opens but nobody identifies in time, or the reply names another
  application -> NON_COMPATIBLE
- the reply names the expected application -> COMPATIBLE

Probes never raise; every failure is folded into the returned outcome, and
the transport is always closed before the probe returns.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from playctrl.api.protocol import Identify, IdentifyResponse, parse_server_message
from playctrl.api.transport import Connector, Transport, TransportClosed, open_websocket
from playctrl.errors import MalformedMessageError, TransportUnreachableError

logger = logging.getLogger(__name__)

DEFAULT_APPLICATION_ID = "IINA"
DEFAULT_PROBE_TIMEOUT = 3.0
DEFAULT_IDENTIFY_TIMEOUT = 2.0

_CLOSE_TIMEOUT = 1.0


class ProbeResult(Enum):
    """Classification of a probed endpoint."""

    UNREACHABLE = "unreachable"
    NON_COMPATIBLE = "non_compatible"
    COMPATIBLE = "compatible"


class ProbeFailure(Enum):
    """Why a probe did not find a compatible server."""

    TRANSPORT_UNREACHABLE = "transport_unreachable"
    PROTOCOL_TIMEOUT = "protocol_timeout"
    PROTOCOL_MISMATCH = "protocol_mismatch"


@dataclass(frozen=True, slots=True)
class ProbeOutcome:
    """Result of probing one endpoint.

    Attributes:
        result: Classification.
        name: Server display name (COMPATIBLE only).
        failure: Failure cause (not set for COMPATIBLE).
        detail: Human-readable detail for logs.
    """

    result: ProbeResult
    name: str = ""
    failure: ProbeFailure | None = None
    detail: str = ""

    @property
    def is_compatible(self) -> bool:
        """Return True if a compatible server answered."""
        return self.result is ProbeResult.COMPATIBLE

    @property
    def is_reachable(self) -> bool:
        """Return True if a transport could be opened."""
        return self.result is not ProbeResult.UNREACHABLE

    @classmethod
    def compatible(cls, name: str) -> "ProbeOutcome":
        return cls(ProbeResult.COMPATIBLE, name=name)

    @classmethod
    def unreachable(cls, detail: str = "") -> "ProbeOutcome":
        return cls(
            ProbeResult.UNREACHABLE, failure=ProbeFailure.TRANSPORT_UNREACHABLE, detail=detail
        )

    @classmethod
    def timed_out(cls, detail: str = "") -> "ProbeOutcome":
        return cls(ProbeResult.NON_COMPATIBLE, failure=ProbeFailure.PROTOCOL_TIMEOUT, detail=detail)

    @classmethod
    def mismatch(cls, detail: str = "") -> "ProbeOutcome":
        return cls(
            ProbeResult.NON_COMPATIBLE, failure=ProbeFailure.PROTOCOL_MISMATCH, detail=detail
        )


async def probe(
    address: str,
    port: int,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    *,
    identify_timeout: float = DEFAULT_IDENTIFY_TIMEOUT,
    application_id: str = DEFAULT_APPLICATION_ID,
    connector: Connector = open_websocket,
) -> ProbeOutcome:
    """Probe ``address:port`` for a compatible media-player server.

    Args:
        address: Hostname or IP address.
        port: Port to probe.
        timeout: Seconds allowed for the transport to open.
        identify_timeout: Seconds allowed for the identification reply.
        application_id: Application the server must identify as.
        connector: Transport factory.

    Returns:
        Exactly one classified outcome.
    """
    transport = await _open(address, port, timeout, connector)
    if isinstance(transport, ProbeOutcome):
        return transport

    try:
        outcome = await _identify(transport, identify_timeout, application_id)
    finally:
        await _close_quietly(transport)

    logger.debug("Probe %s:%d -> %s %s", address, port, outcome.result.value, outcome.detail)
    return outcome


async def check_reachable(
    address: str,
    port: int,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    *,
    connector: Connector = open_websocket,
) -> bool:
    """Check that a transport to ``address:port`` can be opened and closed.

    Skips identification; use it to re-check a server already known to be
    compatible.
    """
    transport = await _open(address, port, timeout, connector)
    if isinstance(transport, ProbeOutcome):
        return False
    await _close_quietly(transport)
    return True


async def _open(
    address: str, port: int, timeout: float, connector: Connector
) -> Transport | ProbeOutcome:
    """Open a transport, or return an UNREACHABLE outcome."""
    try:
        return await asyncio.wait_for(connector(address, port, timeout), timeout=timeout)
    except TimeoutError:
        return ProbeOutcome.unreachable(f"no connection within {timeout:g}s")
    except (TransportUnreachableError, OSError) as e:
        return ProbeOutcome.unreachable(str(e))


async def _identify(transport: Transport, timeout: float, application_id: str) -> ProbeOutcome:
    """Send ``identify`` and classify the reply."""
    try:
        async with asyncio.timeout(timeout):
            await transport.send(Identify().to_json())
            while True:
                try:
                    message = parse_server_message(await transport.recv())
                except MalformedMessageError as e:
                    logger.debug("Ignoring malformed frame while probing: %s", e)
                    continue
                if isinstance(message, IdentifyResponse):
                    break
                # Servers may push status before answering
    except TimeoutError:
        return ProbeOutcome.timed_out(f"no identification within {timeout:g}s")
    except TransportClosed as e:
        if e.clean:
            return ProbeOutcome.timed_out(f"closed before identifying ({e.code})")
        return ProbeOutcome.unreachable(str(e))
    except (ConnectionError, OSError) as e:
        return ProbeOutcome.unreachable(str(e))

    if not message.matches(application_id):
        return ProbeOutcome.mismatch(f"application {message.application!r}")
    return ProbeOutcome.compatible(message.name)


async def _close_quietly(transport: Transport) -> None:
    """Close a disposable transport, ignoring close-time failures."""
    try:
        await asyncio.wait_for(transport.close(), timeout=_CLOSE_TIMEOUT)
    except (ConnectionError, OSError, TimeoutError) as e:
        logger.debug("Error closing probe transport: %s", e)
