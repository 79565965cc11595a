"""Defines ServiceInstance, a remotely observed Salaam service."""

import dataclasses
from typing import NamedTuple

from salaam.protocol.service_announcement import ServiceAnnouncement


class InstanceIdentity(NamedTuple):
    """Key distinguishing one service instance from another."""

    address: str
    host_name: str
    service_type: str
    name: str
    port: int


@dataclasses.dataclass(frozen=True)
class ServiceInstance:
    """Represents one remotely observed service instance.

    Two instances are equal when their identities are equal. The status
    `message` is payload rather than identity, so it is excluded from
    comparison and hashing: a message-only change describes the same
    instance.
    """

    address: str
    host_name: str
    service_type: str
    name: str
    port: int
    message: str = dataclasses.field(default="", compare=False)

    @property
    def identity(self) -> InstanceIdentity:
        """Returns the identity tuple of this instance."""
        return InstanceIdentity(
            address=self.address,
            host_name=self.host_name,
            service_type=self.service_type,
            name=self.name,
            port=self.port,
        )

    def with_message(self, message: str) -> "ServiceInstance":
        """Returns a copy of this instance carrying `message`."""
        return dataclasses.replace(self, message=message)

    @classmethod
    def from_announcement(
        cls, announcement: ServiceAnnouncement
    ) -> "ServiceInstance":
        """Creates the instance described by a decoded announcement."""
        return cls(
            address=announcement.address,
            host_name=announcement.host_name,
            service_type=announcement.service_type,
            name=announcement.name,
            port=announcement.port,
            message=announcement.message,
        )
