"""Salaam: discovery of services announced over UDP broadcast.

Publishers periodically broadcast `Salaam:<base64>` announcements naming
their host, service type, instance name, port and a free-form status
message. `SalaamBrowser` listens for them and notifies its client as
instances appear, change their message and disappear.
"""

from salaam.discovery import (
    BrowserConfig,
    InstanceIdentity,
    SalaamBrowser,
    ServiceInstance,
)
from salaam.protocol import (
    ANY_SERVICE_TYPE,
    SALAAM_PORT,
    ServiceAnnouncement,
    decode_announcement,
)

__all__ = [
    "ANY_SERVICE_TYPE",
    "SALAAM_PORT",
    "BrowserConfig",
    "InstanceIdentity",
    "SalaamBrowser",
    "ServiceAnnouncement",
    "ServiceInstance",
    "decode_announcement",
]
