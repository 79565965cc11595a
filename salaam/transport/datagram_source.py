"""DatagramSource ABC and client interface for receiving announcements."""

from abc import ABC, abstractmethod
from typing import Callable


class DatagramSource(ABC):
    """ABC for sources of raw announcement datagrams.

    A source is created for a `Client`, starts delivering datagrams once
    `start` completes and stops delivering once `close` is called.
    """

    class Client(ABC):
        """Interface for `DatagramSource` clients.

        Notified of every received datagram and of receive failures.
        """

        @abstractmethod
        def _on_datagram_received(self, data: bytes, address: str) -> None:
            """Callback for a received datagram.

            Args:
                data: Raw datagram payload.
                address: Address of the datagram's sender.
            """
            raise NotImplementedError(
                "DatagramSource.Client._on_datagram_received must be "
                "implemented by subclasses."
            )

        @abstractmethod
        def _on_receive_failed(self, error: Exception) -> None:
            """Callback for a failure that stops datagram delivery.

            Args:
                error: The error reported by the underlying transport.
            """
            raise NotImplementedError(
                "DatagramSource.Client._on_receive_failed must be "
                "implemented by subclasses."
            )

    @abstractmethod
    async def start(self) -> None:
        """Binds the source and begins delivering datagrams."""
        raise NotImplementedError(
            "DatagramSource.start must be implemented by subclasses."
        )

    @abstractmethod
    async def close(self) -> None:
        """Stops delivering datagrams and releases the source."""
        raise NotImplementedError()


DatagramSourceFactory = Callable[[DatagramSource.Client], DatagramSource]
