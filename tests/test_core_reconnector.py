"""Tests for Reconnector."""

import asyncio
from collections.abc import AsyncGenerator

import pytest

from playctrl.api.protocol import TogglePause
from playctrl.core.reconnector import Reconnector, backoff_delay
from playctrl.core.registry import ServerRegistry
from playctrl.errors import NotConnectedError
from playctrl.models.connection import ConnectionPhase, ConnectionState
from playctrl.models.media_status import MediaStatus
from playctrl.models.server import ServerRecord, ServerStatus
from tests.conftest import FakeConnector, iina_responder, wait_until

BASE_DELAY = 0.01


@pytest.fixture
async def reconnector(
    registry: ServerRegistry, connector: FakeConnector
) -> AsyncGenerator[Reconnector, None]:
    """Return a reconnector with a short backoff, closed after the test."""
    reconnector = Reconnector(
        registry, base_delay=BASE_DELAY, max_attempts=5, timeout=0.5, connector=connector
    )
    yield reconnector
    await reconnector.aclose()


def _record_states(reconnector: Reconnector) -> list[ConnectionState]:
    states: list[ConnectionState] = []
    reconnector.set_event_handlers(on_state_changed=states.append)
    return states


class TestBackoff:
    """Tests for backoff_delay."""

    def test_doubles_from_base(self) -> None:
        """Test delays for attempts 1-5 with a one second base."""
        assert [backoff_delay(n, 1.0) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_custom_base(self) -> None:
        """Test the base delay scales every attempt."""
        assert backoff_delay(3, 0.5) == 2.0


class TestReconnectorConnect:
    """Tests for a successful connection."""

    @pytest.mark.asyncio
    async def test_connects(
        self, reconnector: Reconnector, connector: FakeConnector, registry: ServerRegistry
    ) -> None:
        """Test DISCONNECTED -> CONNECTING -> CONNECTED and registry updates."""
        connector.add("10.0.0.5", 10010, iina_responder(name="Den"))
        states = _record_states(reconnector)

        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: reconnector.state.is_connected)

        assert [s.phase for s in states] == [ConnectionPhase.CONNECTING, ConnectionPhase.CONNECTED]
        assert reconnector.target == ("10.0.0.5", 10010)
        assert registry.last_used() == ("10.0.0.5", 10010)
        await wait_until(lambda: getattr(registry.get("10.0.0.5", 10010), "name", "") == "Den")
        record = registry.get("10.0.0.5", 10010)
        assert record is not None
        assert record.status is ServerStatus.ONLINE
        assert record.last_seen is not None

    @pytest.mark.asyncio
    async def test_status_forwarded(
        self, reconnector: Reconnector, connector: FakeConnector
    ) -> None:
        """Test merged status is published."""
        connector.add("10.0.0.5", 10010)
        statuses: list[MediaStatus] = []
        reconnector.set_event_handlers(on_status=statuses.append)
        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: bool(statuses))
        assert statuses[-1].title == "Movie"

    @pytest.mark.asyncio
    async def test_send(self, reconnector: Reconnector, connector: FakeConnector) -> None:
        """Test commands go to the live session."""
        connector.add("10.0.0.5", 10010)
        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: reconnector.state.is_connected)
        await reconnector.send(TogglePause())
        assert connector.last.sent_types[-1] == "toggle-pause"

    @pytest.mark.asyncio
    async def test_send_while_disconnected(self, reconnector: Reconnector) -> None:
        """Test sending with no session."""
        with pytest.raises(NotConnectedError):
            await reconnector.send(TogglePause())


class TestReconnectorBackoff:
    """Tests for reconnect attempts and giving up."""

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(
        self, reconnector: Reconnector, connector: FakeConnector, registry: ServerRegistry
    ) -> None:
        """Test five doubling attempts, then a terminal DISCONNECTED."""
        registry.upsert(ServerRecord("10.0.0.5", status=ServerStatus.CHECKING))
        states = _record_states(reconnector)

        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: reconnector.state.gave_up)

        retries = [s for s in states if s.phase is ConnectionPhase.RECONNECTING]
        assert [s.attempt for s in retries] == [1, 2, 3, 4, 5]
        assert [s.next_delay for s in retries] == [BASE_DELAY * 2**n for n in range(5)]
        assert states[-1] == ConnectionState.disconnected(gave_up=True)
        assert len(connector.calls) == 6
        record = registry.get("10.0.0.5", 10010)
        assert record is not None
        assert record.status is ServerStatus.OFFLINE

    @pytest.mark.asyncio
    async def test_session_loss_reconnects(
        self, reconnector: Reconnector, connector: FakeConnector
    ) -> None:
        """Test a dropped session is restarted after the first backoff."""
        connector.add("10.0.0.5", 10010)
        states = _record_states(reconnector)
        statuses: list[MediaStatus] = []
        reconnector.set_event_handlers(on_state_changed=states.append, on_status=statuses.append)

        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: reconnector.state.is_connected)
        connector.last.drop(1006)
        await wait_until(lambda: len(connector.calls) == 2 and reconnector.state.is_connected)

        assert ConnectionState.reconnecting(1, BASE_DELAY) in states
        assert MediaStatus() in statuses

    @pytest.mark.asyncio
    async def test_attempts_reset_after_success(
        self, reconnector: Reconnector, connector: FakeConnector
    ) -> None:
        """Test a successful reconnect starts the next outage at attempt 1."""
        connector.add("10.0.0.5", 10010)
        states = _record_states(reconnector)
        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: reconnector.state.is_connected)

        connector.remove("10.0.0.5", 10010)
        connector.last.drop()
        await wait_until(lambda: reconnector.state.attempt == 3)
        connector.add("10.0.0.5", 10010)
        await wait_until(lambda: reconnector.state.is_connected)

        connector.last.drop()
        await wait_until(lambda: reconnector.state.phase is ConnectionPhase.RECONNECTING)
        assert reconnector.state.attempt == 1
        assert states[-1] == ConnectionState.reconnecting(1, BASE_DELAY)

    @pytest.mark.asyncio
    async def test_clean_close_also_reconnects(
        self, reconnector: Reconnector, connector: FakeConnector
    ) -> None:
        """Test the server closing normally is still unexpected."""
        connector.add("10.0.0.5", 10010)
        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: reconnector.state.is_connected)
        connector.last.drop(1000)
        await wait_until(lambda: len(connector.calls) == 2)

    @pytest.mark.asyncio
    async def test_handler_error_reconnects(
        self, reconnector: Reconnector, connector: FakeConnector
    ) -> None:
        """Test a session killed by a failing status handler is restarted."""
        connector.add("10.0.0.5", 10010)
        failures: list[MediaStatus] = []

        def on_status(status: MediaStatus) -> None:
            if status.title == "Movie" and not failures:
                failures.append(status)
                raise RuntimeError("handler failed")

        reconnector.set_event_handlers(on_status=on_status)
        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: len(connector.calls) == 2 and reconnector.state.is_connected)
        assert connector.transports[0].closed


class TestReconnectorControl:
    """Tests for stop and manual reconnect."""

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(
        self, reconnector: Reconnector, connector: FakeConnector
    ) -> None:
        """Test stop from CONNECTED and again from DISCONNECTED."""
        connector.add("10.0.0.5", 10010)
        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: reconnector.state.is_connected)
        transport = connector.last

        reconnector.stop()
        reconnector.stop()
        assert reconnector.state == ConnectionState.disconnected()
        assert reconnector.session is None
        await wait_until(lambda: transport.closed)

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_retry(self, connector: FakeConnector) -> None:
        """Test no attempt fires after stop."""
        reconnector = Reconnector(base_delay=0.05, connector=connector)
        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: reconnector.state.phase is ConnectionPhase.RECONNECTING)
        reconnector.stop()
        await asyncio.sleep(0.1)
        assert len(connector.calls) == 1
        assert reconnector.state.phase is ConnectionPhase.DISCONNECTED

    @pytest.mark.asyncio
    async def test_stop_while_connecting(self, connector: FakeConnector) -> None:
        """Test stop during a hanging connect."""
        connector.hang("10.0.0.5", 10010)
        reconnector = Reconnector(timeout=5.0, connector=connector)
        reconnector.start("10.0.0.5", 10010)
        await asyncio.sleep(0.01)
        reconnector.stop()
        await asyncio.sleep(0.01)
        assert reconnector.state == ConnectionState.disconnected()

    @pytest.mark.asyncio
    async def test_manual_reconnect_after_giving_up(
        self, reconnector: Reconnector, connector: FakeConnector
    ) -> None:
        """Test reconnect restarts with a fresh counter."""
        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: reconnector.state.gave_up)

        connector.add("10.0.0.5", 10010)
        reconnector.reconnect()
        assert reconnector.state.phase is ConnectionPhase.CONNECTING
        await wait_until(lambda: reconnector.state.is_connected)

    def test_reconnect_without_target(self) -> None:
        """Test reconnect needs a previous start."""
        with pytest.raises(RuntimeError):
            Reconnector().reconnect()

    @pytest.mark.asyncio
    async def test_start_replaces_session(
        self, reconnector: Reconnector, connector: FakeConnector
    ) -> None:
        """Test starting another server drops the first."""
        connector.add("10.0.0.5", 10010)
        connector.add("10.0.0.6", 10010)
        reconnector.start("10.0.0.5", 10010)
        await wait_until(lambda: reconnector.state.is_connected)
        first = connector.last

        reconnector.start("10.0.0.6", 10010)
        await wait_until(lambda: reconnector.state.is_connected)
        await wait_until(lambda: first.closed)
        assert reconnector.target == ("10.0.0.6", 10010)


class TestReconnectorHelpers:
    """Tests for from_registry and wait_for_phase."""

    def test_from_registry(self, registry: ServerRegistry) -> None:
        """Test settings come from the registry's config."""
        registry.config.set_reconnect_max_attempts(3)
        reconnector = Reconnector.from_registry(registry)
        assert reconnector.max_attempts == 3

    @pytest.mark.asyncio
    async def test_wait_for_phase_timeout(self) -> None:
        """Test waiting for a phase that never comes."""
        reconnector = Reconnector()
        assert not await reconnector.wait_for_phase(ConnectionPhase.CONNECTED, 0.05)
        assert await reconnector.wait_for_phase(ConnectionPhase.DISCONNECTED, 0.05)

    @pytest.mark.asyncio
    async def test_wait_for_phase_wakes_on_transition(
        self, reconnector: Reconnector, connector: FakeConnector
    ) -> None:
        """Test a waiter returns once the connection comes up."""
        connector.add("10.0.0.5", 10010)
        waiter = asyncio.create_task(reconnector.wait_for_phase(ConnectionPhase.CONNECTED, 2.0))
        await asyncio.sleep(0)
        reconnector.start("10.0.0.5", 10010)
        assert await waiter
        assert reconnector.state.is_connected
