"""ExpirationSweeper: periodically evicts silent instances from a registry."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from salaam.discovery.browser_config import (
    DEFAULT_DISAPPEARANCE_DELAY_SECONDS,
    DEFAULT_SWEEP_DIVISOR,
    validate_disappearance_delay,
)
from salaam.discovery.client_registry import ClientRegistry
from salaam.discovery.service_instance import ServiceInstance

logger = logging.getLogger(__name__)


class ExpirationSweeper:
    """Removes registry entries that have not been refreshed recently.

    While running, the sweeper wakes every `sweep_interval` seconds and
    removes every entry last seen more than `disappearance_delay` seconds
    ago, reporting each removed instance to its `Client`. The interval is
    derived from the delay, so retuning the delay retunes both.
    """

    # pylint: disable=R0903 # Abstract listener interface
    class Client(ABC):
        """Interface for objects notified of expired instances."""

        @abstractmethod
        def _on_instance_expired(self, instance: ServiceInstance) -> None:
            """Callback invoked once for every instance removed by a sweep.

            Args:
                instance: The instance that was removed from the registry.
            """

    def __init__(
        self,
        registry: ClientRegistry,
        client: "ExpirationSweeper.Client",
        disappearance_delay: float = DEFAULT_DISAPPEARANCE_DELAY_SECONDS,
        sweep_divisor: int = DEFAULT_SWEEP_DIVISOR,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """Initializes the ExpirationSweeper.

        Args:
            registry: The registry to sweep.
            client: Notified of every expired instance.
            disappearance_delay: Seconds after which a silent entry expires.
            sweep_divisor: Number of sweeps per `disappearance_delay`.
            clock: Returns the current time in seconds. Must be the same
                clock used to timestamp registry entries. Defaults to
                `time.monotonic`.
        """
        if sweep_divisor < 1:
            raise ValueError(
                f"Sweep divisor must be an integer >= 1, got {sweep_divisor!r}."
            )

        self.__registry = registry
        self.__client = client
        self.__disappearance_delay = validate_disappearance_delay(
            disappearance_delay
        )
        self.__sweep_divisor = sweep_divisor
        self.__clock: Callable[[], float] = clock or time.monotonic
        self.__periodic_task: asyncio.Task[None] | None = None
        self.__delay_changed: asyncio.Event | None = None

    @property
    def disappearance_delay(self) -> float:
        return self.__disappearance_delay

    @disappearance_delay.setter
    def disappearance_delay(self, value: float) -> None:
        self.__disappearance_delay = validate_disappearance_delay(value)
        # Restarts the running countdown with the new interval.
        if self.__delay_changed is not None:
            self.__delay_changed.set()

    @property
    def sweep_interval(self) -> float:
        """Seconds between two sweeps."""
        return self.__disappearance_delay / self.__sweep_divisor

    @property
    def is_running(self) -> bool:
        return (
            self.__periodic_task is not None
            and not self.__periodic_task.done()
        )

    def start(self) -> None:
        """Starts sweeping periodically on the running event loop.

        Raises:
            RuntimeError: If called without a running event loop, or while
                the sweeper is already running.
        """
        if self.is_running:
            raise RuntimeError("ExpirationSweeper is already running.")

        loop = asyncio.get_running_loop()
        self.__delay_changed = asyncio.Event()
        self.__periodic_task = loop.create_task(
            self.__execute_periodically(self.__delay_changed)
        )
        logger.info(
            "ExpirationSweeper started: delay %.3fs, interval %.3fs.",
            self.__disappearance_delay,
            self.sweep_interval,
        )

    def stop(self) -> None:
        """Stops periodic sweeping. Safe to call when not running."""
        task, self.__periodic_task = self.__periodic_task, None
        self.__delay_changed = None
        if task is None:
            return
        if not task.done():
            task.cancel()
        logger.info("ExpirationSweeper stopped.")

    def sweep(self) -> List[ServiceInstance]:
        """Removes all expired entries now and notifies the client.

        Returns:
            The instances that were removed.
        """
        expired = self.__registry.remove_expired(
            self.__clock(), self.__disappearance_delay
        )
        for instance in expired:
            try:
                # pylint: disable=W0212 # Calling listener's callback method
                self.__client._on_instance_expired(instance)
            # pylint: disable=W0718 # Catch any exception from listener callback
            except Exception as e:
                logger.error(
                    "Exception in ExpirationSweeper client for %s: %s",
                    instance,
                    e,
                    exc_info=True,
                )
        return expired

    async def __execute_periodically(
        self, delay_changed: asyncio.Event
    ) -> None:
        logger.debug("ExpirationSweeper: Starting periodic execution.")
        try:
            while True:
                try:
                    await asyncio.wait_for(
                        delay_changed.wait(), timeout=self.sweep_interval
                    )
                except asyncio.TimeoutError:
                    self.__sweep_safely()
                else:
                    delay_changed.clear()
        finally:
            logger.debug("ExpirationSweeper: Stopped periodic execution.")

    def __sweep_safely(self) -> None:
        try:
            self.sweep()
        # pylint: disable=W0718 # Keep sweeping after unexpected failures
        except Exception as e:
            logger.error(
                "ExpirationSweeper: Sweep failed: %s", e, exc_info=True
            )
