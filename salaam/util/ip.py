"""Utilities for identifying the local machine on the network."""

import ipaddress
import socket
from typing import List

import psutil  # type: ignore[import-untyped]


def get_local_host_name() -> str:
    """Returns the host name of the local machine."""
    return socket.gethostname()


def get_all_address_strings() -> List[str]:
    """Retrieves all IPv4 and IPv6 address strings for all interfaces.

    IPv6 zone suffixes (e.g. "%eth0") are stripped, so the results compare
    equal to sender addresses reported by the socket layer.

    Returns:
        A list of address strings. Empty if the machine has no addresses.
    """
    addresses: List[str] = []
    for _, interface_addresses in psutil.net_if_addrs().items():
        for address in interface_addresses:
            if address.family in (socket.AF_INET, socket.AF_INET6):
                addresses.append(normalize_address(address.address))
    return addresses


def resolve_host_addresses(host_name: str) -> List[str]:
    """Resolves `host_name` to the addresses the resolver knows for it.

    Raises:
        socket.gaierror: If `host_name` cannot be resolved.
    """
    addresses: List[str] = []
    for family, _, _, _, sockaddr in socket.getaddrinfo(host_name, None):
        if family in (socket.AF_INET, socket.AF_INET6):
            addresses.append(normalize_address(str(sockaddr[0])))
    return addresses


def get_local_addresses(host_name: str) -> List[str]:
    """Returns every address by which this machine may send announcements.

    Combines the addresses the resolver reports for `host_name` with the
    addresses assigned to the local network interfaces. Duplicates are
    removed; order is otherwise preserved.

    Raises:
        socket.gaierror: If `host_name` cannot be resolved.
    """
    combined = resolve_host_addresses(host_name) + get_all_address_strings()
    return list(dict.fromkeys(combined))


def normalize_address(address: str) -> str:
    """Returns `address` in canonical textual form, without a zone suffix.

    Strings that are not IP addresses are returned unchanged.
    """
    try:
        return str(ipaddress.ip_address(address.split("%", 1)[0]))
    except ValueError:
        return address


def is_loopback_address(address: str) -> bool:
    """Whether `address` is a loopback address.

    IPv4-mapped IPv6 addresses are checked as their IPv4 equivalent.
    Strings that are not IP addresses are never loopback.
    """
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped.is_loopback
    return ip.is_loopback
