import asyncio
import socket

import pytest
import pytest_asyncio

from salaam.discovery.browser_config import BrowserConfig
from salaam.discovery.salaam_browser import SalaamBrowser
from salaam.discovery.service_instance import ServiceInstance
from salaam.test.announcement_fixtures import (
    FakeDatagramSourceFactory,
    build_datagram,
    wrap_message_data,
)

LOCAL_HOST_NAME = "myhost"
LOCAL_ADDRESSES = ["192.168.1.20", "fe80::20%eth0"]
REMOTE_ADDRESS = "10.0.0.5"


def local_addresses_provider(host_name):
    assert host_name == LOCAL_HOST_NAME
    return list(LOCAL_ADDRESSES)


async def drain_event_loop():
    """Lets tasks scheduled by the browser run to completion."""
    for _ in range(5):
        await asyncio.sleep(0)


def make_browser(client, source_factory, clock, **kwargs) -> SalaamBrowser:
    return SalaamBrowser(
        client,
        datagram_source_factory=source_factory,
        host_name_provider=lambda: LOCAL_HOST_NAME,
        local_addresses_provider=local_addresses_provider,
        clock=clock,
        **kwargs,
    )


@pytest_asyncio.fixture
async def browser(recording_client, source_factory, fake_clock):
    browser = make_browser(recording_client, source_factory, fake_clock)
    yield browser
    await browser.stop()


@pytest_asyncio.fixture
async def started_browser(browser, recording_client):
    await browser.start("print")
    recording_client.clear()
    return browser


def registry_of(browser):
    return browser._SalaamBrowser__registry


def sweep(browser):
    return browser._SalaamBrowser__sweeper.sweep()


# --- Construction and properties ---


def test_client_none_rejected():
    with pytest.raises(ValueError, match="Client cannot be None"):
        SalaamBrowser(None)  # type: ignore[arg-type]


def test_defaults_from_config(recording_client):
    config = BrowserConfig(
        disappearance_delay_seconds=2.5, receive_from_local_machine=True
    )
    browser = SalaamBrowser(recording_client, config=config)

    assert not browser.enabled
    assert browser.service_type is None
    assert browser.disappearance_delay == 2.5
    assert browser.receive_from_local_machine is True
    assert browser.clients == ()


def test_disappearance_delay_setter(recording_client):
    browser = SalaamBrowser(recording_client)

    browser.disappearance_delay = 10
    assert browser.disappearance_delay == 10.0

    for invalid in (0, -1, "5"):
        with pytest.raises(ValueError, match="Disappearance delay"):
            browser.disappearance_delay = invalid
    assert browser.disappearance_delay == 10.0


# --- Lifecycle ---


@pytest.mark.asyncio
async def test_start_raises_started(browser, recording_client, source_factory):
    await browser.start("print")

    assert browser.enabled
    assert browser.service_type == "print"
    assert recording_client.kinds() == ["started"]
    assert source_factory.latest.is_open
    assert source_factory.latest.client is browser


@pytest.mark.asyncio
@pytest.mark.parametrize("service_type", ["pr;int", ";", "", None, 7])
async def test_start_rejects_invalid_service_type(
    browser, recording_client, source_factory, service_type
):
    with pytest.raises(ValueError, match="Service type"):
        await browser.start(service_type)

    assert not browser.enabled
    assert browser.service_type is None
    assert recording_client.events == []
    assert source_factory.sources == []


@pytest.mark.asyncio
async def test_start_failure_raises_start_failed(
    recording_client, fake_clock
):
    factory = FakeDatagramSourceFactory(start_error=OSError("in use"))
    browser = make_browser(recording_client, factory, fake_clock)

    await browser.start("print")

    assert not browser.enabled
    assert recording_client.kinds() == ["start_failed"]
    assert factory.latest.close_count == 1
    assert not browser._SalaamBrowser__sweeper.is_running


@pytest.mark.asyncio
async def test_resolver_failure_raises_start_failed(
    recording_client, source_factory, fake_clock
):
    def failing_provider(host_name):
        raise socket.gaierror("unknown host")

    browser = SalaamBrowser(
        recording_client,
        datagram_source_factory=source_factory,
        host_name_provider=lambda: LOCAL_HOST_NAME,
        local_addresses_provider=failing_provider,
        clock=fake_clock,
    )

    await browser.start("print")

    assert not browser.enabled
    assert recording_client.kinds() == ["start_failed"]
    assert source_factory.sources == []


@pytest.mark.asyncio
async def test_start_while_running_restarts(
    browser, recording_client, source_factory
):
    await browser.start("print")
    first_source = source_factory.latest
    first_source.deliver(build_datagram(), REMOTE_ADDRESS)
    assert len(browser.clients) == 1

    await browser.start("scan")

    assert recording_client.kinds() == [
        "started",
        "appeared",
        "stopped",
        "started",
    ]
    assert not first_source.is_open
    assert source_factory.latest is not first_source
    assert browser.service_type == "scan"
    assert browser.clients == ()


@pytest.mark.asyncio
async def test_stop_is_idempotent(started_browser, recording_client):
    await started_browser.stop()
    await started_browser.stop()

    assert not started_browser.enabled
    assert recording_client.kinds() == ["stopped", "stopped"]


@pytest.mark.asyncio
async def test_stop_swallows_close_failure(recording_client, fake_clock):
    factory = FakeDatagramSourceFactory(close_error=OSError("close failed"))
    browser = make_browser(recording_client, factory, fake_clock)
    await browser.start("print")

    await browser.stop()

    assert not browser.enabled
    assert factory.latest.close_count == 1
    assert recording_client.kinds() == ["started", "stopped"]


@pytest.mark.asyncio
async def test_set_enabled(browser, recording_client):
    with pytest.raises(ValueError, match="before a service type"):
        await browser.set_enabled(True)

    await browser.start("print")
    await browser.set_enabled(False)
    assert not browser.enabled

    await browser.set_enabled(True)
    assert browser.enabled
    assert browser.service_type == "print"
    assert recording_client.kinds() == ["started", "stopped", "started"]


@pytest.mark.asyncio
async def test_async_context_manager_stops(
    recording_client, source_factory, fake_clock
):
    async with make_browser(
        recording_client, source_factory, fake_clock
    ) as browser:
        await browser.start("print")
        assert browser.enabled

    assert not browser.enabled
    assert not source_factory.latest.is_open
    assert recording_client.kinds() == ["started", "stopped"]


@pytest.mark.asyncio
async def test_datagrams_ignored_when_stopped(
    started_browser, recording_client, source_factory
):
    source = source_factory.latest
    await started_browser.stop()
    recording_client.clear()

    source.deliver(build_datagram(), REMOTE_ADDRESS)

    assert recording_client.events == []
    assert started_browser.clients == ()


# --- Announcements ---


@pytest.mark.asyncio
async def test_printer_example_appears(
    started_browser, recording_client, source_factory
):
    datagram = wrap_message_data("32;host1;print;Printer1;9100;ready;")

    source_factory.latest.deliver(datagram, REMOTE_ADDRESS)

    expected = ServiceInstance(
        address=REMOTE_ADDRESS,
        host_name="host1",
        service_type="print",
        name="Printer1",
        port=9100,
        message="ready",
    )
    assert recording_client.of_kind("appeared") == [(expected, False)]
    assert started_browser.clients == (expected,)
    assert started_browser.clients[0].message == "ready"


@pytest.mark.asyncio
async def test_unchanged_announcement_is_silent(
    started_browser, recording_client, source_factory, fake_clock
):
    source = source_factory.latest
    source.deliver(build_datagram(), REMOTE_ADDRESS)
    identity = started_browser.clients[0].identity
    first_seen = registry_of(started_browser).get(identity).last_seen

    fake_clock.advance(1.5)
    source.deliver(build_datagram(), REMOTE_ADDRESS)

    assert recording_client.kinds() == ["appeared"]
    assert (
        registry_of(started_browser).get(identity).last_seen
        == first_seen + 1.5
    )


@pytest.mark.asyncio
async def test_changed_message_raises_changed_once(
    started_browser, recording_client, source_factory
):
    source = source_factory.latest
    source.deliver(build_datagram(message="ready"), REMOTE_ADDRESS)
    source.deliver(build_datagram(message="out of paper"), REMOTE_ADDRESS)
    source.deliver(build_datagram(message="out of paper"), REMOTE_ADDRESS)

    assert recording_client.kinds() == ["appeared", "changed"]
    changed, is_from_local = recording_client.of_kind("changed")[0]
    assert changed.message == "out of paper"
    assert is_from_local is False
    assert started_browser.clients[0].message == "out of paper"


@pytest.mark.asyncio
async def test_end_of_service_removes_known_instance(
    started_browser, recording_client, source_factory
):
    source = source_factory.latest
    source.deliver(build_datagram(), REMOTE_ADDRESS)
    source.deliver(build_datagram(control_code="EOS"), REMOTE_ADDRESS)

    assert recording_client.kinds() == ["appeared", "disappeared"]
    assert started_browser.clients == ()


@pytest.mark.asyncio
async def test_end_of_service_for_unknown_instance_is_noop(
    started_browser, recording_client, source_factory
):
    source_factory.latest.deliver(
        build_datagram(control_code="EOS"), REMOTE_ADDRESS
    )

    assert recording_client.events == []
    assert started_browser.clients == ()


@pytest.mark.asyncio
async def test_reserved_code_only_refreshes(
    started_browser, recording_client, source_factory, fake_clock
):
    source = source_factory.latest
    source.deliver(
        build_datagram(control_code="PING"), REMOTE_ADDRESS
    )
    assert started_browser.clients == ()

    source.deliver(build_datagram(), REMOTE_ADDRESS)
    identity = started_browser.clients[0].identity
    fake_clock.advance(2.0)
    source.deliver(
        build_datagram(message="busy", control_code="PING"), REMOTE_ADDRESS
    )

    assert recording_client.kinds() == ["appeared"]
    entry = registry_of(started_browser).get(identity)
    assert entry.last_seen == fake_clock.now
    assert entry.instance.message == "ready"


@pytest.mark.asyncio
@pytest.mark.parametrize("length_delta", [-1, 1])
async def test_off_by_one_length_rejected(
    started_browser, recording_client, source_factory, length_delta
):
    source_factory.latest.deliver(
        build_datagram(length_delta=length_delta), REMOTE_ADDRESS
    )

    assert recording_client.events == []
    assert started_browser.clients == ()


@pytest.mark.asyncio
async def test_malformed_datagrams_ignored(
    started_browser, recording_client, source_factory
):
    source = source_factory.latest
    for datagram in (b"", b"Salaam:", b"Salaam:!!!", b"\xff\xfe", b"hello"):
        source.deliver(datagram, REMOTE_ADDRESS)

    assert recording_client.events == []


@pytest.mark.asyncio
async def test_distinct_identities_tracked_separately(
    started_browser, recording_client, source_factory
):
    source = source_factory.latest
    source.deliver(build_datagram(), REMOTE_ADDRESS)
    source.deliver(build_datagram(), "10.0.0.6")
    source.deliver(build_datagram(port=9101), REMOTE_ADDRESS)
    source.deliver(build_datagram(name="Printer2"), REMOTE_ADDRESS)

    assert recording_client.kinds() == ["appeared"] * 4
    assert len(started_browser.clients) == 4


# --- Service type filter ---


@pytest.mark.asyncio
async def test_filter_is_case_insensitive(
    started_browser, recording_client, source_factory
):
    source = source_factory.latest
    source.deliver(build_datagram(service_type="scan"), REMOTE_ADDRESS)
    source.deliver(build_datagram(service_type="PRINT"), REMOTE_ADDRESS)

    appeared = recording_client.of_kind("appeared")
    assert len(appeared) == 1
    assert appeared[0][0].service_type == "PRINT"


@pytest.mark.asyncio
async def test_wildcard_accepts_every_type(
    browser, recording_client, source_factory
):
    await browser.start("*")
    source = source_factory.latest
    source.deliver(build_datagram(service_type="scan"), REMOTE_ADDRESS)
    source.deliver(build_datagram(service_type="print"), REMOTE_ADDRESS)

    assert recording_client.kinds() == ["started", "appeared", "appeared"]


# --- Local traffic ---


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "host_name, address",
    [
        ("myhost", "192.168.1.20"),
        ("MyHost", "192.168.1.20"),
        ("myhost", "127.0.0.1"),
        ("myhost", "::1"),
        ("myhost", "fe80::20%eth0"),
    ],
)
async def test_local_announcements_ignored_by_default(
    started_browser, recording_client, source_factory, host_name, address
):
    source_factory.latest.deliver(
        build_datagram(host_name=host_name), address
    )

    assert recording_client.events == []
    assert started_browser.clients == ()


@pytest.mark.asyncio
async def test_local_announcements_reported_when_enabled(
    started_browser, recording_client, source_factory
):
    started_browser.receive_from_local_machine = True

    source_factory.latest.deliver(
        build_datagram(host_name="myhost"), "fe80::20%eth0"
    )

    appeared = recording_client.of_kind("appeared")
    assert len(appeared) == 1
    instance, is_from_local = appeared[0]
    assert is_from_local is True
    assert instance.address == "fe80::20"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "host_name, address",
    [
        ("myhost", "10.9.9.9"),
        ("otherhost", "192.168.1.20"),
        ("otherhost", "127.0.0.1"),
    ],
)
async def test_remote_announcements_not_local(
    started_browser, recording_client, source_factory, host_name, address
):
    source_factory.latest.deliver(
        build_datagram(host_name=host_name), address
    )

    assert recording_client.of_kind("appeared")[0][1] is False


# --- Expiry ---


@pytest.mark.asyncio
async def test_silent_instance_disappears_once(
    started_browser, recording_client, source_factory, fake_clock
):
    source = source_factory.latest
    source.deliver(build_datagram(), REMOTE_ADDRESS)

    fake_clock.advance(4.0)
    assert sweep(started_browser) == []

    fake_clock.advance(0.1)
    sweep(started_browser)
    sweep(started_browser)
    source.deliver(build_datagram(control_code="EOS"), REMOTE_ADDRESS)

    assert recording_client.kinds() == ["appeared", "disappeared"]
    assert started_browser.clients == ()


@pytest.mark.asyncio
async def test_refreshed_instance_survives_sweep(
    started_browser, recording_client, source_factory, fake_clock
):
    source = source_factory.latest
    source.deliver(build_datagram(), REMOTE_ADDRESS)
    fake_clock.advance(3.0)
    source.deliver(build_datagram(), REMOTE_ADDRESS)
    fake_clock.advance(3.0)

    sweep(started_browser)

    assert recording_client.kinds() == ["appeared"]


@pytest.mark.asyncio
async def test_expired_local_instance_reported_as_local(
    started_browser, recording_client, source_factory, fake_clock
):
    started_browser.receive_from_local_machine = True
    source_factory.latest.deliver(
        build_datagram(host_name="myhost"), "192.168.1.20"
    )

    fake_clock.advance(5.0)
    sweep(started_browser)

    assert recording_client.of_kind("disappeared")[0][1] is True


@pytest.mark.asyncio
async def test_shorter_delay_applies_to_next_sweep(
    started_browser, recording_client, source_factory, fake_clock
):
    source_factory.latest.deliver(build_datagram(), REMOTE_ADDRESS)
    fake_clock.advance(1.5)

    started_browser.disappearance_delay = 1.0
    sweep(started_browser)

    assert recording_client.kinds() == ["appeared", "disappeared"]


# --- Failures ---


@pytest.mark.asyncio
async def test_receive_failure_raises_browser_failed_once(
    started_browser, recording_client, source_factory
):
    source = source_factory.latest

    source.fail(OSError("network is down"))
    source.fail(OSError("network is down"))
    await drain_event_loop()

    assert recording_client.kinds() == ["browser_failed"]
    assert source.close_count == 1

    source.deliver(build_datagram(), REMOTE_ADDRESS)
    assert started_browser.clients == ()


@pytest.mark.asyncio
async def test_receive_failure_recovered_by_restart(
    started_browser, recording_client, source_factory
):
    source_factory.latest.fail(OSError("network is down"))
    await drain_event_loop()

    await started_browser.stop()
    await started_browser.start("print")
    source_factory.latest.deliver(build_datagram(), REMOTE_ADDRESS)

    assert recording_client.kinds() == [
        "browser_failed",
        "stopped",
        "started",
        "appeared",
    ]


@pytest.mark.asyncio
async def test_receive_failure_while_stopped_ignored(
    started_browser, recording_client, source_factory
):
    source = source_factory.latest
    await started_browser.stop()
    recording_client.clear()

    source.fail(OSError("late"))
    await drain_event_loop()

    assert recording_client.events == []


@pytest.mark.asyncio
async def test_client_exception_does_not_break_receive_path(
    started_browser, recording_client, source_factory, mocker
):
    appeared = mocker.patch.object(
        recording_client,
        "_on_client_appeared",
        side_effect=RuntimeError("client broke"),
    )
    source = source_factory.latest

    source.deliver(build_datagram(name="Printer1"), REMOTE_ADDRESS)
    source.deliver(build_datagram(name="Printer2"), REMOTE_ADDRESS)

    assert appeared.call_count == 2
    assert len(started_browser.clients) == 2
