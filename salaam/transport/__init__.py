"""Transports delivering raw Salaam datagrams to the browser."""

from salaam.transport.datagram_source import (
    DatagramSource,
    DatagramSourceFactory,
)
from salaam.transport.udp_broadcast_listener import UdpBroadcastListener

__all__ = ["DatagramSource", "DatagramSourceFactory", "UdpBroadcastListener"]
