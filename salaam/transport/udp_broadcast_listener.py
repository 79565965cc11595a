"""Receives Salaam broadcast datagrams on a UDP socket using asyncio."""

import asyncio
import logging
from typing import Any, Optional, Tuple

from salaam.protocol.constants import SALAAM_PORT
from salaam.transport.datagram_source import DatagramSource

logger = logging.getLogger(__name__)


class UdpBroadcastListener(DatagramSource):
    """`DatagramSource` backed by an asyncio UDP datagram endpoint.

    Binds to `bind_address:port` with broadcast reception enabled and
    forwards every datagram to its client together with the sender's
    address.
    """

    def __init__(
        self,
        client: DatagramSource.Client,
        port: int = SALAAM_PORT,
        bind_address: str = "0.0.0.0",
    ) -> None:
        """Initializes the UdpBroadcastListener.

        Args:
            client: Receives datagrams and failure notifications.
            port: UDP port to bind. 0 binds an ephemeral port.
            bind_address: Local address to bind.

        Raises:
            ValueError: If `client` is None.
        """
        if client is None:
            raise ValueError("Client cannot be None for UdpBroadcastListener.")

        self.__client = client
        self.__port = port
        self.__bind_address = bind_address
        self.__transport: Optional[asyncio.DatagramTransport] = None
        self.__is_closing = False

    @property
    def local_address(self) -> Optional[Tuple[Any, ...]]:
        """The bound socket address, or None if the listener is not open."""
        if self.__transport is None:
            return None
        return self.__transport.get_extra_info("sockname")  # type: ignore[no-any-return]

    async def start(self) -> None:
        """Binds the socket and starts receiving.

        Raises:
            RuntimeError: If the listener was already started.
            OSError: If the socket cannot be bound.
        """
        if self.__transport is not None:
            raise RuntimeError("UdpBroadcastListener has already been started.")

        self.__is_closing = False
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _ListenerProtocol(self),
            local_addr=(self.__bind_address, self.__port),
            allow_broadcast=True,
        )
        self.__transport = transport
        logger.info(
            "Listening for Salaam announcements on %s.",
            transport.get_extra_info("sockname"),
        )

    async def close(self) -> None:
        # Safe to call repeatedly, and before start().
        self.__is_closing = True
        transport, self.__transport = self.__transport, None
        if transport is None:
            return
        transport.close()
        logger.info("Stopped listening for Salaam announcements.")

    def _handle_datagram(self, data: bytes, address: Tuple[Any, ...]) -> None:
        if self.__is_closing:
            return
        # pylint: disable=W0212 # Calling listener's callback method
        self.__client._on_datagram_received(data, str(address[0]))

    def _handle_transient_error(self, error: Exception) -> None:
        # The endpoint keeps reading after errors such as ICMP unreachable.
        if self.__is_closing:
            return
        logger.warning(
            "Transient error receiving Salaam announcements: %r", error
        )

    def _handle_connection_lost(self, error: Optional[Exception]) -> None:
        if self.__is_closing:
            return
        if error is None:
            error = ConnectionError(
                "UDP endpoint closed while still listening."
            )
        logger.warning("Receiving Salaam announcements failed: %r", error)
        self.__transport = None
        # pylint: disable=W0212 # Calling listener's callback method
        self.__client._on_receive_failed(error)


class _ListenerProtocol(asyncio.DatagramProtocol):
    """Forwards asyncio datagram events to a `UdpBroadcastListener`."""

    def __init__(self, listener: UdpBroadcastListener) -> None:
        self.__listener = listener

    def datagram_received(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        # pylint: disable=W0212 # Owned by the listener.
        self.__listener._handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        # pylint: disable=W0212 # Owned by the listener.
        self.__listener._handle_transient_error(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        # pylint: disable=W0212 # Owned by the listener.
        self.__listener._handle_connection_lost(exc)
