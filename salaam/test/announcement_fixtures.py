"""Builders and fakes shared by the Salaam unit and end-to-end tests."""

import base64
from typing import List, Optional, Tuple

from salaam.discovery.salaam_browser import SalaamBrowser
from salaam.discovery.service_instance import ServiceInstance
from salaam.protocol.constants import MESSAGE_PREFIX
from salaam.transport.datagram_source import DatagramSource


def build_message_data(
    host_name: str,
    service_type: str,
    name: str,
    port: int,
    message: str,
    control_code: str = "",
    length_delta: int = 0,
) -> str:
    """Builds an inner announcement message with a computed length field.

    `length_delta` is added to the correct length, to produce messages
    whose declared length is deliberately wrong.
    """
    body = f"{host_name};{service_type};{name};{port};{message};"
    if control_code:
        body += f"<{control_code}>"
    return f"{len(body) + length_delta};{body}"


def wrap_message_data(message_data: str) -> bytes:
    """Wraps an inner message in the `Salaam:<base64>` envelope."""
    payload = base64.b64encode(message_data.encode("utf-8")).decode("ascii")
    return f"{MESSAGE_PREFIX}{payload}".encode("utf-8")


def build_datagram(
    host_name: str = "host1",
    service_type: str = "print",
    name: str = "Printer1",
    port: int = 9100,
    message: str = "ready",
    control_code: str = "",
    length_delta: int = 0,
) -> bytes:
    """Builds a complete announcement datagram."""
    return wrap_message_data(
        build_message_data(
            host_name,
            service_type,
            name,
            port,
            message,
            control_code=control_code,
            length_delta=length_delta,
        )
    )


class FakeDatagramSource(DatagramSource):
    """In-memory `DatagramSource` that tests drive by hand."""

    __test__ = False

    def __init__(
        self,
        client: DatagramSource.Client,
        start_error: Optional[Exception] = None,
        close_error: Optional[Exception] = None,
    ) -> None:
        self.client = client
        self.start_error = start_error
        self.close_error = close_error
        self.start_count = 0
        self.close_count = 0
        self.is_open = False

    async def start(self) -> None:
        self.start_count += 1
        if self.start_error is not None:
            raise self.start_error
        self.is_open = True

    async def close(self) -> None:
        self.close_count += 1
        self.is_open = False
        if self.close_error is not None:
            raise self.close_error

    def deliver(self, data: bytes, address: str) -> None:
        """Delivers one datagram to the client, as the network would."""
        # pylint: disable=W0212 # Driving the client callback directly.
        self.client._on_datagram_received(data, address)

    def fail(self, error: Exception) -> None:
        """Reports a receive failure to the client."""
        # pylint: disable=W0212 # Driving the client callback directly.
        self.client._on_receive_failed(error)


class FakeDatagramSourceFactory:
    """Factory handing out `FakeDatagramSource`s and remembering them."""

    __test__ = False

    def __init__(
        self,
        start_error: Optional[Exception] = None,
        close_error: Optional[Exception] = None,
    ) -> None:
        self.start_error = start_error
        self.close_error = close_error
        self.sources: List[FakeDatagramSource] = []

    def __call__(self, client: DatagramSource.Client) -> FakeDatagramSource:
        source = FakeDatagramSource(
            client, start_error=self.start_error, close_error=self.close_error
        )
        self.sources.append(source)
        return source

    @property
    def latest(self) -> FakeDatagramSource:
        """The most recently created source."""
        assert self.sources, "No datagram source has been created yet."
        return self.sources[-1]


class RecordingBrowserClient(SalaamBrowser.Client):
    """Browser client that records every notification it receives.

    Events are stored as ``(kind, instance, is_from_local)`` tuples, with
    instance and flag set to None for browser lifecycle events.
    """

    __test__ = False

    def __init__(self) -> None:
        self.events: List[
            Tuple[str, Optional[ServiceInstance], Optional[bool]]
        ] = []

    def _on_client_appeared(
        self, instance: ServiceInstance, is_from_local: bool
    ) -> None:
        self.events.append(("appeared", instance, is_from_local))

    def _on_client_message_changed(
        self, instance: ServiceInstance, is_from_local: bool
    ) -> None:
        self.events.append(("changed", instance, is_from_local))

    def _on_client_disappeared(
        self, instance: ServiceInstance, is_from_local: bool
    ) -> None:
        self.events.append(("disappeared", instance, is_from_local))

    def _on_started(self) -> None:
        self.events.append(("started", None, None))

    def _on_stopped(self) -> None:
        self.events.append(("stopped", None, None))

    def _on_start_failed(self) -> None:
        self.events.append(("start_failed", None, None))

    def _on_browser_failed(self) -> None:
        self.events.append(("browser_failed", None, None))

    def kinds(self) -> List[str]:
        """Returns the kinds of all recorded events, in order."""
        return [kind for kind, _, _ in self.events]

    def of_kind(
        self, kind: str
    ) -> List[Tuple[ServiceInstance, Optional[bool]]]:
        """Returns ``(instance, is_from_local)`` for events of `kind`."""
        return [
            (instance, is_from_local)
            for event_kind, instance, is_from_local in self.events
            if event_kind == kind and instance is not None
        ]

    def clear(self) -> None:
        self.events.clear()
