"""Wire format of the Salaam service-announcement protocol.

This package decodes and validates the two-layer announcement envelope
broadcast by Salaam publishers.
"""

from salaam.protocol.constants import (
    ANY_SERVICE_TYPE,
    END_OF_SERVICE,
    FIELD_SEPARATOR,
    MESSAGE_PREFIX,
    SALAAM_PORT,
)
from salaam.protocol.message_decoder import decode_announcement
from salaam.protocol.service_announcement import ServiceAnnouncement

__all__ = [
    "ANY_SERVICE_TYPE",
    "END_OF_SERVICE",
    "FIELD_SEPARATOR",
    "MESSAGE_PREFIX",
    "SALAAM_PORT",
    "ServiceAnnouncement",
    "decode_announcement",
]
