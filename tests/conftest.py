"""Test fixtures for playctrl tests."""

import asyncio
import json
import os
import socket
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
from websockets.asyncio.server import ServerConnection, serve

from playctrl.api.transport import TransportClosed
from playctrl.core.config import ConfigManager
from playctrl.core.registry import ServerRegistry
from playctrl.errors import TransportUnreachableError

# Let pytest-qt create its QApplication on machines without a display
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

# Incoming command dict -> frames the fake server answers with
Responder = Callable[[dict[str, Any]], list[dict[str, Any] | str]]


def iina_responder(
    name: str = "Living Room", application: str = "IINA", status: dict[str, Any] | None = None
) -> Responder:
    """Return a responder that answers like a media-player server."""
    status = status or {"paused": False, "title": "Movie", "hasMedia": True, "volume": 80}

    def respond(message: dict[str, Any]) -> list[dict[str, Any] | str]:
        if message.get("type") == "identify":
            return [{"type": "identify_response", "application": application, "name": name}]
        if message.get("type") == "get-status":
            return [{"type": "status", "data": status}]
        return []

    return respond


def silent_responder(message: dict[str, Any]) -> list[dict[str, Any] | str]:
    """Responder for a server that accepts connections but never answers."""
    return []


class FakeTransport:
    """In-memory ``Transport`` driven by the test."""

    def __init__(self, responder: Responder | None = None) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._responder = responder
        self._inbox: asyncio.Queue[str | TransportClosed] = asyncio.Queue()

    @property
    def sent_types(self) -> list[str]:
        """Return the ``type`` of every frame sent, in order."""
        return [json.loads(frame)["type"] for frame in self.sent]

    def push(self, frame: dict[str, Any] | str) -> None:
        """Deliver a frame to the client."""
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self, code: int = 1006) -> None:
        """Simulate the server closing the connection."""
        self._inbox.put_nowait(TransportClosed(code))

    async def send(self, message: str) -> None:
        if self.closed:
            raise TransportClosed(1000)
        self.sent.append(message)
        if self._responder is not None:
            for frame in self._responder(json.loads(message)):
                self.push(frame)

    async def recv(self) -> str:
        item = await self._inbox.get()
        if isinstance(item, TransportClosed):
            # Keep raising on further reads
            self._inbox.put_nowait(item)
            raise item
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(TransportClosed(1000))


@dataclass
class FakeConnector:
    """Connector over a fake network of ``(address, port)`` hosts."""

    hosts: dict[tuple[str, int], Responder] = field(default_factory=dict)
    hanging: set[tuple[str, int]] = field(default_factory=set)
    calls: list[tuple[str, int]] = field(default_factory=list)
    transports: list[FakeTransport] = field(default_factory=list)

    def add(self, address: str, port: int, responder: Responder | None = None) -> None:
        """Make ``address:port`` accept connections."""
        self.hosts[(address, port)] = responder or iina_responder()

    def remove(self, address: str, port: int) -> None:
        """Make ``address:port`` refuse connections."""
        self.hosts.pop((address, port), None)

    def hang(self, address: str, port: int) -> None:
        """Make ``address:port`` never complete the connect."""
        self.hanging.add((address, port))

    @property
    def last(self) -> FakeTransport:
        """Return the most recently opened transport."""
        return self.transports[-1]

    async def __call__(self, address: str, port: int, timeout: float) -> FakeTransport:
        self.calls.append((address, port))
        if (address, port) in self.hanging:
            await asyncio.sleep(3600)
        responder = self.hosts.get((address, port))
        if responder is None:
            raise TransportUnreachableError(f"Connection refused: {address}:{port}")
        transport = FakeTransport(responder)
        self.transports.append(transport)
        return transport


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds, failing the test on timeout."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture
def connector() -> FakeConnector:
    """Return an empty fake network."""
    return FakeConnector()


@pytest.fixture
def config(tmp_path: Path) -> ConfigManager:
    """Return a ConfigManager backed by a temporary INI file."""
    return ConfigManager(path=tmp_path / "playctrl.ini")


@pytest.fixture
def registry(config: ConfigManager, connector: FakeConnector) -> ServerRegistry:
    """Return an empty registry using the fake network."""
    return ServerRegistry(config, probe_timeout=0.5, connector=connector)


@pytest.fixture
def settle() -> Callable[[Callable[[], bool], float], Awaitable[None]]:
    """Return the ``wait_until`` helper."""
    return wait_until


@dataclass
class MockServer:
    """A running WebSocket server impersonating a media player."""

    host: str
    port: int
    received: list[dict[str, Any]] = field(default_factory=list)
    connections: list[ServerConnection] = field(default_factory=list)


@pytest.fixture
async def mock_server() -> AsyncGenerator[MockServer, None]:
    """Fixture providing a media-player WebSocket server on localhost."""
    state = MockServer(host="127.0.0.1", port=0)
    respond = iina_responder(name="Test Player")

    async def handler(websocket: ServerConnection) -> None:
        state.connections.append(websocket)
        async for message in websocket:
            data = json.loads(message)
            state.received.append(data)
            for frame in respond(data):
                await websocket.send(json.dumps(frame))

    async with serve(handler, "127.0.0.1", 0) as server:
        state.port = server.sockets[0].getsockname()[1]
        yield state


@pytest.fixture
async def stalled_server() -> AsyncGenerator[tuple[str, int], None]:
    """Fixture providing a server that accepts, then stops reading (and answering pings)."""

    async def handler(websocket: ServerConnection) -> None:
        websocket.transport.pause_reading()
        await websocket.wait_closed()

    async with serve(handler, "127.0.0.1", 0, close_timeout=0.1) as server:
        yield "127.0.0.1", server.sockets[0].getsockname()[1]


@pytest.fixture
def closed_port() -> int:
    """Return a localhost port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
