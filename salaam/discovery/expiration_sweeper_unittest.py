import asyncio
import time

import pytest

from salaam.discovery.client_registry import ClientRegistry
from salaam.discovery.expiration_sweeper import ExpirationSweeper
from salaam.discovery.service_instance import ServiceInstance


def make_instance(name: str = "Printer1") -> ServiceInstance:
    return ServiceInstance(
        address="10.0.0.5",
        host_name="host1",
        service_type="print",
        name=name,
        port=9100,
        message="ready",
    )


# --- Fixtures ---


@pytest.fixture
def mock_client(mocker):
    return mocker.create_autospec(ExpirationSweeper.Client, instance=True)


@pytest.fixture
def registry():
    return ClientRegistry()


# --- Test Cases ---


def test_init_defaults(registry, mock_client):
    sweeper = ExpirationSweeper(registry, mock_client)

    assert sweeper.disappearance_delay == 4.0
    assert sweeper.sweep_interval == pytest.approx(0.8)
    assert not sweeper.is_running


@pytest.mark.parametrize("delay", [0, -1.0, "4", True])
def test_init_rejects_invalid_delay(registry, mock_client, delay):
    with pytest.raises(ValueError, match="Disappearance delay"):
        ExpirationSweeper(registry, mock_client, disappearance_delay=delay)


def test_init_rejects_invalid_divisor(registry, mock_client):
    with pytest.raises(ValueError, match="Sweep divisor"):
        ExpirationSweeper(registry, mock_client, sweep_divisor=0)


def test_delay_setter_retunes_interval(registry, mock_client):
    sweeper = ExpirationSweeper(
        registry, mock_client, disappearance_delay=4.0, sweep_divisor=4
    )

    sweeper.disappearance_delay = 10.0

    assert sweeper.disappearance_delay == 10.0
    assert sweeper.sweep_interval == pytest.approx(2.5)
    with pytest.raises(ValueError):
        sweeper.disappearance_delay = 0


def test_sweep_removes_only_expired(registry, mock_client, fake_clock):
    stale = make_instance("Stale")
    fresh = make_instance("Fresh")
    registry.add(stale, 990.0)
    registry.add(fresh, 999.0)
    sweeper = ExpirationSweeper(
        registry, mock_client, disappearance_delay=4.0, clock=fake_clock
    )

    removed = sweeper.sweep()

    assert removed == [stale]
    mock_client._on_instance_expired.assert_called_once_with(stale)
    assert fresh.identity in registry
    assert stale.identity not in registry


def test_sweep_boundary_is_exclusive(registry, mock_client, fake_clock):
    instance = make_instance()
    registry.add(instance, 996.0)
    sweeper = ExpirationSweeper(
        registry, mock_client, disappearance_delay=4.0, clock=fake_clock
    )

    assert sweeper.sweep() == []

    fake_clock.advance(0.5)
    assert sweeper.sweep() == [instance]
    mock_client._on_instance_expired.assert_called_once_with(instance)


def test_sweep_reports_each_instance_once(registry, mock_client, fake_clock):
    instance = make_instance()
    registry.add(instance, 0.0)
    sweeper = ExpirationSweeper(registry, mock_client, clock=fake_clock)

    sweeper.sweep()
    sweeper.sweep()

    assert mock_client._on_instance_expired.call_count == 1


def test_sweep_continues_after_client_exception(
    registry, mock_client, fake_clock
):
    first = make_instance("First")
    second = make_instance("Second")
    registry.add(first, 0.0)
    registry.add(second, 0.0)
    mock_client._on_instance_expired.side_effect = [
        RuntimeError("client broke"),
        None,
    ]
    sweeper = ExpirationSweeper(registry, mock_client, clock=fake_clock)

    removed = sweeper.sweep()

    assert removed == [first, second]
    assert mock_client._on_instance_expired.call_count == 2
    assert len(registry) == 0


def test_start_without_event_loop_raises(registry, mock_client):
    sweeper = ExpirationSweeper(registry, mock_client)

    with pytest.raises(RuntimeError):
        sweeper.start()
    assert not sweeper.is_running


def test_stop_when_not_running_is_noop(registry, mock_client):
    sweeper = ExpirationSweeper(registry, mock_client)

    sweeper.stop()
    sweeper.stop()

    assert not sweeper.is_running


@pytest.mark.asyncio
async def test_start_twice_raises(registry, mock_client):
    sweeper = ExpirationSweeper(registry, mock_client)
    sweeper.start()
    try:
        with pytest.raises(RuntimeError, match="already running"):
            sweeper.start()
    finally:
        sweeper.stop()


@pytest.mark.asyncio
async def test_periodic_sweep_expires_silent_instance(registry, mock_client):
    expired = asyncio.Event()
    mock_client._on_instance_expired.side_effect = (
        lambda instance: expired.set()
    )
    instance = make_instance()
    sweeper = ExpirationSweeper(
        registry, mock_client, disappearance_delay=0.1, sweep_divisor=5
    )
    registry.add(instance, time.monotonic())

    sweeper.start()
    try:
        await asyncio.wait_for(expired.wait(), timeout=5.0)
    finally:
        sweeper.stop()

    mock_client._on_instance_expired.assert_called_once_with(instance)
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_stop_cancels_periodic_task(registry, mock_client):
    sweeper = ExpirationSweeper(
        registry, mock_client, disappearance_delay=0.05
    )
    sweeper.start()
    task = sweeper._ExpirationSweeper__periodic_task
    assert sweeper.is_running

    sweeper.stop()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not sweeper.is_running
    registry.add(make_instance(), 0.0)
    await asyncio.sleep(0.05)
    mock_client._on_instance_expired.assert_not_called()


@pytest.mark.asyncio
async def test_periodic_sweep_survives_clock_failure(registry, mock_client):
    expired = asyncio.Event()
    mock_client._on_instance_expired.side_effect = (
        lambda instance: expired.set()
    )
    calls = []

    def flaky_clock() -> float:
        calls.append(None)
        if len(calls) == 1:
            raise RuntimeError("clock unavailable")
        return time.monotonic()

    instance = make_instance()
    registry.add(instance, time.monotonic() - 10.0)
    sweeper = ExpirationSweeper(
        registry,
        mock_client,
        disappearance_delay=0.1,
        sweep_divisor=5,
        clock=flaky_clock,
    )

    sweeper.start()
    try:
        await asyncio.wait_for(expired.wait(), timeout=5.0)
        assert sweeper.is_running
    finally:
        sweeper.stop()

    assert len(calls) >= 2
    mock_client._on_instance_expired.assert_called_once_with(instance)


@pytest.mark.asyncio
async def test_lowering_delay_restarts_countdown(registry, mock_client):
    expired = asyncio.Event()
    mock_client._on_instance_expired.side_effect = (
        lambda instance: expired.set()
    )
    instance = make_instance()
    registry.add(instance, time.monotonic() - 2.0)
    sweeper = ExpirationSweeper(
        registry, mock_client, disappearance_delay=60.0, sweep_divisor=5
    )

    sweeper.start()
    try:
        # Let the task enter its 12 second wait before retuning.
        await asyncio.sleep(0.05)
        mock_client._on_instance_expired.assert_not_called()

        sweeper.disappearance_delay = 0.5
        await asyncio.wait_for(expired.wait(), timeout=2.0)
    finally:
        sweeper.stop()

    mock_client._on_instance_expired.assert_called_once_with(instance)


def test_delay_change_while_stopped_is_stored(registry, mock_client):
    sweeper = ExpirationSweeper(registry, mock_client)

    sweeper.disappearance_delay = 1.0

    assert sweeper.sweep_interval == pytest.approx(0.2)
    assert not sweeper.is_running
