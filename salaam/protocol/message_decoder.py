"""Decodes raw Salaam datagrams into validated ServiceAnnouncements.

A Salaam datagram has two nested layers. The outer envelope is UTF-8 text
of the form ``Salaam:<base64>``. The base64 payload decodes to the inner
message::

    <length>;<hostName>;<serviceType>;<name>;<port>;<message>;[<CODE>]

where ``length`` is the number of characters following ``<length>;`` and
the optional ``CODE`` is a short upper-case control code such as ``EOS``.

Arbitrary traffic may arrive on the shared broadcast port, so anything
that does not match exactly is dropped without raising.
"""

import base64
import binascii
import logging
import re
from typing import Optional

from salaam.protocol.constants import FIELD_SEPARATOR, MESSAGE_PREFIX
from salaam.protocol.service_announcement import ServiceAnnouncement

logger = logging.getLogger(__name__)

_ENVELOPE_PATTERN = re.compile(
    re.escape(MESSAGE_PREFIX)
    + r"(?P<payload>(?:[A-Za-z0-9+/]{4})*"
    + r"(?:[A-Za-z0-9+/]{2}==|[A-Za-z0-9+/]{3}=)?)"
)

_MESSAGE_PATTERN = re.compile(
    r"(?P<length>[0-9]+);"
    r"(?P<host_name>.*?);"
    r"(?P<service_type>.*?);"
    r"(?P<name>.*?);"
    r"(?P<port>[0-9]+);"
    r"(?P<message>.*);"
    r"(?:<(?P<control_code>[A-Z][A-Z0-9]{2,3})>)?"
)


def unwrap_envelope(data: bytes) -> Optional[str]:
    """Extracts the inner message from a datagram's outer envelope.

    Args:
        data: Raw datagram payload.

    Returns:
        The base64-decoded inner message, or None if `data` is not a
        well-formed Salaam envelope.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None

    match = _ENVELOPE_PATTERN.fullmatch(text)
    if match is None:
        return None

    try:
        payload = base64.b64decode(match.group("payload"), validate=True)
        return payload.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None


def has_consistent_length(message_data: str, declared_length: int) -> bool:
    """Checks the inner message's self-declared length.

    The declared length counts the characters after the length field and
    its separator, so the full message must be exactly that long plus the
    digits of the length and one separator.
    """
    expected = declared_length + len(str(declared_length)) + len(
        FIELD_SEPARATOR
    )
    return len(message_data) == expected


def decode_announcement(
    data: bytes, address: str
) -> Optional[ServiceAnnouncement]:
    """Decodes and validates one received datagram.

    Args:
        data: Raw datagram payload.
        address: Address of the datagram's sender.

    Returns:
        The decoded `ServiceAnnouncement`, or None if the datagram is not a
        valid Salaam announcement.
    """
    message_data = unwrap_envelope(data)
    if message_data is None:
        logger.debug("Dropping non-Salaam datagram from %s.", address)
        return None

    match = _MESSAGE_PATTERN.fullmatch(message_data)
    if match is None:
        logger.debug("Dropping malformed announcement from %s.", address)
        return None

    try:
        declared_length = int(match.group("length"))
        port = int(match.group("port"))
    except ValueError:
        logger.debug(
            "Dropping announcement from %s: unreadable length or port.",
            address,
        )
        return None

    if not has_consistent_length(message_data, declared_length):
        logger.debug(
            "Dropping announcement from %s: declared length %d does not "
            "match %d characters.",
            address,
            declared_length,
            len(message_data),
        )
        return None

    return ServiceAnnouncement(
        host_name=match.group("host_name"),
        service_type=match.group("service_type"),
        name=match.group("name"),
        port=port,
        message=match.group("message"),
        address=address,
        control_code=match.group("control_code") or "",
    )
