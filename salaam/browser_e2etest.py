"""End-to-end tests of SalaamBrowser over a real loopback UDP socket."""

import asyncio
import socket
from typing import List, Tuple

import pytest

from salaam.discovery.browser_config import BrowserConfig
from salaam.discovery.salaam_browser import SalaamBrowser
from salaam.discovery.service_instance import ServiceInstance
from salaam.test.announcement_fixtures import build_datagram
from salaam.transport.datagram_source import DatagramSource
from salaam.transport.udp_broadcast_listener import UdpBroadcastListener
from salaam.util import ip as ip_util

TIMEOUT_SECONDS = 5.0


def interface_addresses(host_name: str) -> List[str]:
    # Test machines often cannot resolve their own host name.
    return ip_util.get_all_address_strings()


class QueueingBrowserClient(SalaamBrowser.Client):
    """Pushes every service notification onto an asyncio.Queue."""

    __test__ = False

    def __init__(self) -> None:
        self.queue: "asyncio.Queue[Tuple[str, ServiceInstance, bool]]" = (
            asyncio.Queue()
        )
        self.browser_failed = False

    def _on_client_appeared(
        self, instance: ServiceInstance, is_from_local: bool
    ) -> None:
        self.queue.put_nowait(("appeared", instance, is_from_local))

    def _on_client_message_changed(
        self, instance: ServiceInstance, is_from_local: bool
    ) -> None:
        self.queue.put_nowait(("changed", instance, is_from_local))

    def _on_client_disappeared(
        self, instance: ServiceInstance, is_from_local: bool
    ) -> None:
        self.queue.put_nowait(("disappeared", instance, is_from_local))

    def _on_browser_failed(self) -> None:
        self.browser_failed = True

    async def next_event(self) -> Tuple[str, ServiceInstance, bool]:
        return await asyncio.wait_for(self.queue.get(), TIMEOUT_SECONDS)


class LoopbackListenerFactory:
    """Creates listeners bound to an ephemeral loopback port."""

    __test__ = False

    def __init__(self) -> None:
        self.listeners: List[UdpBroadcastListener] = []

    def __call__(self, client: DatagramSource.Client) -> UdpBroadcastListener:
        listener = UdpBroadcastListener(
            client, port=0, bind_address="127.0.0.1"
        )
        self.listeners.append(listener)
        return listener

    @property
    def port(self) -> int:
        address = self.listeners[-1].local_address
        assert address is not None
        return int(address[1])


@pytest.fixture
def sender():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    yield sock
    sock.close()


@pytest.mark.asyncio
async def test_announcement_lifecycle_over_loopback(sender):
    client = QueueingBrowserClient()
    factory = LoopbackListenerFactory()

    async with SalaamBrowser(
        client,
        datagram_source_factory=factory,
        local_addresses_provider=interface_addresses,
    ) as browser:
        await browser.start("print")
        assert browser.enabled, "Browser failed to start."
        destination = ("127.0.0.1", factory.port)

        sender.sendto(build_datagram(host_name="remotehost"), destination)
        kind, instance, is_from_local = await client.next_event()
        assert kind == "appeared"
        assert instance.name == "Printer1"
        assert instance.address == "127.0.0.1"
        assert instance.port == 9100
        assert is_from_local is False

        sender.sendto(
            build_datagram(host_name="remotehost", message="busy"),
            destination,
        )
        kind, instance, _ = await client.next_event()
        assert kind == "changed"
        assert instance.message == "busy"

        sender.sendto(
            build_datagram(host_name="remotehost", control_code="EOS"),
            destination,
        )
        kind, instance, _ = await client.next_event()
        assert kind == "disappeared"
        assert browser.clients == ()

    assert not browser.enabled
    assert factory.listeners[-1].local_address is None


@pytest.mark.asyncio
async def test_silent_instance_expires_over_loopback(sender):
    client = QueueingBrowserClient()
    factory = LoopbackListenerFactory()
    config = BrowserConfig(disappearance_delay_seconds=0.3)

    async with SalaamBrowser(
        client,
        config=config,
        datagram_source_factory=factory,
        local_addresses_provider=interface_addresses,
    ) as browser:
        await browser.start("*")
        assert browser.enabled, "Browser failed to start."

        sender.sendto(
            build_datagram(host_name="remotehost", service_type="scan"),
            ("127.0.0.1", factory.port),
        )
        kind, _, _ = await client.next_event()
        assert kind == "appeared"

        kind, instance, _ = await client.next_event()
        assert kind == "disappeared"
        assert instance.service_type == "scan"
        assert browser.clients == ()


@pytest.mark.asyncio
async def test_local_announcement_over_loopback(sender):
    client = QueueingBrowserClient()
    factory = LoopbackListenerFactory()
    local_host_name = socket.gethostname()

    async with SalaamBrowser(
        client,
        datagram_source_factory=factory,
        local_addresses_provider=lambda host_name: [],
    ) as browser:
        await browser.start("print")
        assert browser.enabled, "Browser failed to start."
        destination = ("127.0.0.1", factory.port)

        sender.sendto(
            build_datagram(host_name=local_host_name, name="Mine"),
            destination,
        )
        await asyncio.sleep(0.2)
        assert browser.clients == ()
        assert client.queue.empty()

        browser.receive_from_local_machine = True

        sender.sendto(
            build_datagram(host_name=local_host_name, name="Mine"),
            destination,
        )
        kind, instance, is_from_local = await client.next_event()
        assert kind == "appeared"
        assert instance.name == "Mine"
        assert is_from_local is True


@pytest.mark.asyncio
async def test_transient_socket_error_keeps_browsing(sender):
    client = QueueingBrowserClient()
    factory = LoopbackListenerFactory()

    async with SalaamBrowser(
        client,
        datagram_source_factory=factory,
        local_addresses_provider=interface_addresses,
    ) as browser:
        await browser.start("print")
        assert browser.enabled, "Browser failed to start."
        transport = factory.listeners[-1]._UdpBroadcastListener__transport
        transport.get_protocol().error_received(
            ConnectionRefusedError("port unreachable")
        )

        sender.sendto(
            build_datagram(host_name="remotehost"),
            ("127.0.0.1", factory.port),
        )
        kind, instance, _ = await client.next_event()

        assert kind == "appeared"
        assert instance.name == "Printer1"
        assert not client.browser_failed
        assert browser.enabled
