"""SalaamBrowser: tracks the Salaam services announced on the local network."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import (
    Any,
    Callable,
    FrozenSet,
    Iterable,
    Optional,
    Tuple,
)

from salaam.discovery.browser_config import (
    BrowserConfig,
    validate_disappearance_delay,
)
from salaam.discovery.client_registry import (
    ClientRegistry,
    RegistryChange,
    RegistryUpdate,
)
from salaam.discovery.expiration_sweeper import ExpirationSweeper
from salaam.discovery.service_instance import ServiceInstance
from salaam.protocol.constants import ANY_SERVICE_TYPE, FIELD_SEPARATOR
from salaam.protocol.message_decoder import decode_announcement
from salaam.transport.datagram_source import (
    DatagramSource,
    DatagramSourceFactory,
)
from salaam.transport.udp_broadcast_listener import UdpBroadcastListener
from salaam.util import ip as ip_util

logger = logging.getLogger(__name__)


class SalaamBrowser(DatagramSource.Client, ExpirationSweeper.Client):
    """Listens for Salaam announcements and reports service changes.

    Once started for a service type, the browser decodes every received
    announcement, keeps a table of the instances currently announcing
    themselves and tells its `Client` when an instance appears, changes its
    status message or disappears. Instances disappear either by announcing
    end-of-service or by staying silent for longer than
    `disappearance_delay` seconds.

    All callbacks are invoked on the event loop that called `start`.
    """

    class Client(ABC):
        """Interface for `SalaamBrowser` clients.

        The three service callbacks must be implemented. The lifecycle
        callbacks default to doing nothing.
        """

        @abstractmethod
        def _on_client_appeared(
            self, instance: ServiceInstance, is_from_local: bool
        ) -> None:
            """Callback for a newly announced service instance.

            Args:
                instance: The instance, carrying its current message.
                is_from_local: Whether it was announced by this machine.
            """
            raise NotImplementedError(
                "SalaamBrowser.Client._on_client_appeared must be "
                "implemented by subclasses."
            )

        @abstractmethod
        def _on_client_message_changed(
            self, instance: ServiceInstance, is_from_local: bool
        ) -> None:
            """Callback for a known instance announcing a new message."""
            raise NotImplementedError(
                "SalaamBrowser.Client._on_client_message_changed must be "
                "implemented by subclasses."
            )

        @abstractmethod
        def _on_client_disappeared(
            self, instance: ServiceInstance, is_from_local: bool
        ) -> None:
            """Callback for an instance that ended service or went silent."""
            raise NotImplementedError(
                "SalaamBrowser.Client._on_client_disappeared must be "
                "implemented by subclasses."
            )

        def _on_started(self) -> None:
            """Called once the browser has started listening."""

        def _on_stopped(self) -> None:
            """Called whenever `stop` completes."""

        def _on_start_failed(self) -> None:
            """Called when `start` could not bring the browser up."""

        def _on_browser_failed(self) -> None:
            """Called when a running browser can no longer receive."""

    def __init__(
        self,
        client: "SalaamBrowser.Client",
        *,
        config: Optional[BrowserConfig] = None,
        datagram_source_factory: Optional[DatagramSourceFactory] = None,
        host_name_provider: Optional[Callable[[], str]] = None,
        local_addresses_provider: Optional[
            Callable[[str], Iterable[str]]
        ] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """Initializes the SalaamBrowser.

        Args:
            client: Receives all notifications of this browser.
            config: Browser settings. Defaults to `BrowserConfig()`.
            datagram_source_factory: Creates the source of announcement
                datagrams for each start. Defaults to a
                `UdpBroadcastListener` bound as `config` describes.
            host_name_provider: Returns the local host name. Defaults to
                `ip_util.get_local_host_name`.
            local_addresses_provider: Returns every address of the local
                machine, given its host name. Defaults to
                `ip_util.get_local_addresses`.
            clock: Returns the current time in seconds. Defaults to
                `time.monotonic`.

        Raises:
            ValueError: If `client` is None.
        """
        if client is None:
            raise ValueError("Client cannot be None for SalaamBrowser.")

        self.__client = client
        self.__config = config if config is not None else BrowserConfig()

        if datagram_source_factory is None:
            datagram_source_factory = self.__create_udp_listener
        self.__datagram_source_factory = datagram_source_factory
        self.__host_name_provider: Callable[[], str] = (
            host_name_provider or ip_util.get_local_host_name
        )
        self.__local_addresses_provider: Callable[[str], Iterable[str]] = (
            local_addresses_provider or ip_util.get_local_addresses
        )
        self.__clock: Callable[[], float] = clock or time.monotonic

        self.__registry = ClientRegistry()
        self.__sweeper = ExpirationSweeper(
            self.__registry,
            self,
            disappearance_delay=self.__config.disappearance_delay_seconds,
            sweep_divisor=self.__config.sweep_divisor,
            clock=self.__clock,
        )

        self.__receive_from_local_machine = (
            self.__config.receive_from_local_machine
        )
        self.__service_type: Optional[str] = None
        self.__local_host_name: Optional[str] = None
        self.__local_addresses: FrozenSet[str] = frozenset()

        self.__source: Optional[DatagramSource] = None
        self.__source_failed = False
        self.__failure_task: Optional[asyncio.Task[None]] = None
        self.__is_running = False

    @property
    def enabled(self) -> bool:
        """Whether the browser is currently started."""
        return self.__is_running

    @property
    def service_type(self) -> Optional[str]:
        """The service type most recently passed to `start`, if any."""
        return self.__service_type

    @property
    def disappearance_delay(self) -> float:
        """Seconds of silence after which an instance disappears."""
        return self.__sweeper.disappearance_delay

    @disappearance_delay.setter
    def disappearance_delay(self, value: float) -> None:
        self.__sweeper.disappearance_delay = validate_disappearance_delay(
            value
        )

    @property
    def receive_from_local_machine(self) -> bool:
        """Whether announcements made by this machine are reported."""
        return self.__receive_from_local_machine

    @receive_from_local_machine.setter
    def receive_from_local_machine(self, value: bool) -> None:
        self.__receive_from_local_machine = bool(value)

    @property
    def clients(self) -> Tuple[ServiceInstance, ...]:
        """Snapshot of the instances currently known to the browser."""
        return tuple(self.__registry.snapshot())

    async def start(self, service_type: str) -> None:
        """Starts browsing for `service_type`.

        `"*"` browses for every service type. A browser that is already
        running is stopped and started again. Failures to start are
        reported through `Client._on_start_failed` rather than raised.

        Raises:
            ValueError: If `service_type` is not a non-empty string free of
                the field separator. Nothing is changed in that case.
        """
        self.__validate_service_type(service_type)

        if self.__is_running:
            logger.info("SalaamBrowser restarting for '%s'.", service_type)
            await self.stop()

        self.__service_type = service_type
        try:
            self.__registry.clear()
            self.__source_failed = False
            self.__local_host_name = self.__host_name_provider()
            self.__local_addresses = frozenset(
                ip_util.normalize_address(address)
                for address in self.__local_addresses_provider(
                    self.__local_host_name
                )
            )

            self.__source = self.__datagram_source_factory(self)
            await self.__source.start()
            self.__sweeper.start()
            self.__is_running = True
        # pylint: disable=W0718 # Any failure to start is reported, not raised
        except Exception as e:
            logger.error(
                "SalaamBrowser failed to start for '%s': %s",
                service_type,
                e,
                exc_info=True,
            )
            await self.__tear_down()
            self.__notify(self.__client._on_start_failed)
            return

        logger.info(
            "SalaamBrowser started for '%s' on host '%s' (%d addresses).",
            service_type,
            self.__local_host_name,
            len(self.__local_addresses),
        )
        self.__notify(self.__client._on_started)

    async def stop(self) -> None:
        """Stops browsing. Safe to call at any time; never raises."""
        await self.__tear_down()
        logger.info("SalaamBrowser stopped.")
        self.__notify(self.__client._on_stopped)

    async def set_enabled(self, value: bool) -> None:
        """Starts (for the last used service type) or stops the browser.

        Raises:
            ValueError: If enabling a browser that was never started.
        """
        if not value:
            await self.stop()
            return

        if self.__service_type is None:
            raise ValueError(
                "SalaamBrowser cannot be enabled before a service type has "
                "been passed to start()."
            )
        await self.start(self.__service_type)

    async def __aenter__(self) -> "SalaamBrowser":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    def _on_datagram_received(self, data: bytes, address: str) -> None:
        if not self.__is_running or self.__source_failed:
            return

        address = ip_util.normalize_address(address)
        announcement = decode_announcement(data, address)
        if announcement is None:
            return

        is_from_local = self.__is_from_local(
            announcement.host_name, announcement.address
        )
        if is_from_local and not self.__receive_from_local_machine:
            logger.debug(
                "Ignoring local announcement of '%s' from %s.",
                announcement.name,
                address,
            )
            return

        if not self.__matches_service_type(announcement.service_type):
            logger.debug(
                "Ignoring announcement of '%s' with service type '%s'.",
                announcement.name,
                announcement.service_type,
            )
            return

        update = self.__registry.apply(announcement, self.__clock())
        self.__dispatch(update, is_from_local)

    def _on_receive_failed(self, error: Exception) -> None:
        if not self.__is_running or self.__source_failed:
            return

        logger.warning(
            "SalaamBrowser can no longer receive announcements: %s", error
        )
        self.__source_failed = True
        source, self.__source = self.__source, None
        loop = asyncio.get_running_loop()
        self.__failure_task = loop.create_task(
            self.__close_failed_source(source)
        )

    def _on_instance_expired(self, instance: ServiceInstance) -> None:
        logger.info(
            "Service '%s' at %s expired.", instance.name, instance.address
        )
        self.__notify(
            self.__client._on_client_disappeared,
            instance,
            self.__is_from_local(instance.host_name, instance.address),
        )

    async def __close_failed_source(
        self, source: Optional[DatagramSource]
    ) -> None:
        await self.__close_source(source)
        self.__notify(self.__client._on_browser_failed)

    async def __tear_down(self) -> None:
        self.__is_running = False

        try:
            self.__sweeper.stop()
        # pylint: disable=W0718 # Teardown is best-effort
        except Exception as e:
            logger.warning("Failed to stop the expiration sweeper: %s", e)

        failure_task, self.__failure_task = self.__failure_task, None
        if failure_task is not None and not failure_task.done():
            try:
                await failure_task
            # pylint: disable=W0718 # Teardown is best-effort
            except Exception as e:
                logger.warning("Failed to handle receive failure: %s", e)

        source, self.__source = self.__source, None
        await self.__close_source(source)

    async def __close_source(self, source: Optional[DatagramSource]) -> None:
        if source is None:
            return
        try:
            await source.close()
        # pylint: disable=W0718 # Teardown is best-effort
        except Exception as e:
            logger.warning("Failed to close the datagram source: %s", e)

    def __dispatch(self, update: RegistryUpdate, is_from_local: bool) -> None:
        instance = update.instance
        if instance is None or update.change == RegistryChange.NONE:
            return

        if update.change == RegistryChange.APPEARED:
            logger.info(
                "Service '%s' (%s) appeared at %s:%d.",
                instance.name,
                instance.service_type,
                instance.address,
                instance.port,
            )
            callback = self.__client._on_client_appeared
        elif update.change == RegistryChange.CHANGED:
            logger.debug(
                "Service '%s' changed its message to '%s'.",
                instance.name,
                instance.message,
            )
            callback = self.__client._on_client_message_changed
        else:
            logger.info(
                "Service '%s' at %s ended service.",
                instance.name,
                instance.address,
            )
            callback = self.__client._on_client_disappeared

        self.__notify(callback, instance, is_from_local)

    def __notify(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            callback(*args)
        # pylint: disable=W0718 # Catch any exception from client callback
        except Exception as e:
            logger.error(
                "Exception in SalaamBrowser client callback %s: %s",
                getattr(callback, "__name__", callback),
                e,
                exc_info=True,
            )

    def __is_from_local(self, host_name: str, address: str) -> bool:
        if self.__local_host_name is None:
            return False
        if host_name.casefold() != self.__local_host_name.casefold():
            return False
        return address in self.__local_addresses or (
            ip_util.is_loopback_address(address)
        )

    def __matches_service_type(self, service_type: str) -> bool:
        requested = self.__service_type
        if requested is None:
            return False
        if requested == ANY_SERVICE_TYPE:
            return True
        return service_type.casefold() == requested.casefold()

    def __create_udp_listener(
        self, client: DatagramSource.Client
    ) -> DatagramSource:
        return UdpBroadcastListener(
            client,
            port=self.__config.port,
            bind_address=self.__config.bind_address,
        )

    @staticmethod
    def __validate_service_type(service_type: str) -> None:
        if not isinstance(service_type, str) or not service_type:
            raise ValueError(
                f"Service type must be a non-empty string, got "
                f"{service_type!r}."
            )
        if FIELD_SEPARATOR in service_type:
            raise ValueError(
                f"Service type cannot contain '{FIELD_SEPARATOR}', got "
                f"'{service_type}'."
            )
