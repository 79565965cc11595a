"""Defines ServiceAnnouncement, the decoded form of a single datagram."""

import dataclasses

from salaam.protocol.constants import END_OF_SERVICE


@dataclasses.dataclass(frozen=True)
class ServiceAnnouncement:
    """A validated announcement, as decoded from one received datagram.

    Announcements are transient: one is produced per datagram and is not
    retained after it has been applied to the registry.

    Attributes:
        host_name: Host name the publisher reported for itself.
        service_type: Type of the announced service (e.g. "print").
        name: Instance name of the announced service.
        port: Port on which the announced service can be reached.
        message: Free-form status message.
        address: Address the datagram was received from.
        control_code: Optional protocol control code (e.g. "EOS"), or an
            empty string if the announcement carried none.
    """

    host_name: str
    service_type: str
    name: str
    port: int
    message: str
    address: str
    control_code: str = ""

    @property
    def has_control_code(self) -> bool:
        """Whether this announcement carries a protocol control code."""
        return bool(self.control_code)

    @property
    def is_end_of_service(self) -> bool:
        """Whether the publisher is announcing that the service ended."""
        return self.control_code.upper() == END_OF_SERVICE
