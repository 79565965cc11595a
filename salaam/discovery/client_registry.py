"""ClientRegistry: the table of currently visible Salaam service instances."""

import dataclasses
import threading
from enum import Enum
from typing import Dict, List, Optional

from salaam.discovery.service_instance import (
    InstanceIdentity,
    ServiceInstance,
)
from salaam.protocol.service_announcement import ServiceAnnouncement


class RegistryChange(Enum):
    """Outcome of applying one announcement to the registry."""

    NONE = 0
    APPEARED = 1
    CHANGED = 2
    DISAPPEARED = 3


@dataclasses.dataclass(frozen=True)
class RegistryUpdate:
    """The change caused by an announcement and the instance it concerns."""

    change: RegistryChange
    instance: Optional[ServiceInstance] = None


class RegistryEntry:
    """A known service instance and the time it was last announced."""

    def __init__(self, instance: ServiceInstance, last_seen: float) -> None:
        self.__instance = instance
        self.__last_seen = last_seen

    @property
    def instance(self) -> ServiceInstance:
        return self.__instance

    @property
    def last_seen(self) -> float:
        return self.__last_seen

    def _touch(self, now: float) -> None:
        # Clock readings may arrive out of order; never move backwards.
        self.__last_seen = max(self.__last_seen, now)

    def _set_message(self, message: str) -> None:
        self.__instance = self.__instance.with_message(message)

    def copy(self) -> "RegistryEntry":
        return RegistryEntry(self.__instance, self.__last_seen)

    def __repr__(self) -> str:
        return (
            f"RegistryEntry(instance={self.__instance!r}, "
            f"last_seen={self.__last_seen!r})"
        )


class ClientRegistry:
    """Thread-safe, identity-keyed table of `RegistryEntry` objects.

    Every mutation and every scan happens under a single lock, and all
    iteration returns copies, so readers on other threads never observe
    the table mid-update.
    """

    def __init__(self) -> None:
        self.__lock = threading.Lock()
        self.__entries: Dict[InstanceIdentity, RegistryEntry] = {}

    def get(self, identity: InstanceIdentity) -> Optional[RegistryEntry]:
        """Returns a copy of the entry for `identity`, if one exists."""
        with self.__lock:
            entry = self.__entries.get(identity)
            return entry.copy() if entry is not None else None

    def add(self, instance: ServiceInstance, now: float) -> bool:
        """Adds `instance`, last seen at `now`.

        Returns:
            False if an entry with the same identity already exists, in
            which case the registry is left unchanged.
        """
        with self.__lock:
            identity = instance.identity
            if identity in self.__entries:
                return False
            self.__entries[identity] = RegistryEntry(instance, now)
            return True

    def refresh(
        self,
        identity: InstanceIdentity,
        now: float,
        message: Optional[str] = None,
    ) -> bool:
        """Marks `identity` as seen at `now`, optionally updating its message.

        Returns:
            True if the stored message changed.
        """
        with self.__lock:
            entry = self.__entries.get(identity)
            if entry is None:
                return False
            return self.__refresh_locked(entry, now, message)

    def remove(self, identity: InstanceIdentity) -> Optional[ServiceInstance]:
        """Removes `identity`, returning the instance that was stored."""
        with self.__lock:
            entry = self.__entries.pop(identity, None)
            return entry.instance if entry is not None else None

    def apply(
        self, announcement: ServiceAnnouncement, now: float
    ) -> RegistryUpdate:
        """Applies one announcement as a single transition.

        Args:
            announcement: The decoded announcement to apply.
            now: The time at which the announcement was received.

        Returns:
            The resulting change. Instances in the update reflect the
            registry's state after the transition.
        """
        instance = ServiceInstance.from_announcement(announcement)
        identity = instance.identity
        with self.__lock:
            entry = self.__entries.get(identity)

            if entry is None:
                if announcement.has_control_code:
                    return RegistryUpdate(RegistryChange.NONE)
                self.__entries[identity] = RegistryEntry(instance, now)
                return RegistryUpdate(RegistryChange.APPEARED, instance)

            if announcement.is_end_of_service:
                del self.__entries[identity]
                return RegistryUpdate(
                    RegistryChange.DISAPPEARED, entry.instance
                )

            if announcement.has_control_code:
                # Reserved code: the publisher is alive, nothing else known.
                entry._touch(now)  # pylint: disable=W0212
                return RegistryUpdate(RegistryChange.NONE, entry.instance)

            if self.__refresh_locked(entry, now, instance.message):
                return RegistryUpdate(RegistryChange.CHANGED, entry.instance)
            return RegistryUpdate(RegistryChange.NONE, entry.instance)

    def remove_expired(
        self, now: float, window_seconds: float
    ) -> List[ServiceInstance]:
        """Removes every entry not seen for more than `window_seconds`.

        Returns:
            The removed instances, in insertion order.
        """
        with self.__lock:
            expired = [
                identity
                for identity, entry in self.__entries.items()
                if now - entry.last_seen > window_seconds
            ]
            return [
                self.__entries.pop(identity).instance for identity in expired
            ]

    def clear(self) -> None:
        with self.__lock:
            self.__entries.clear()

    def snapshot(self) -> List[ServiceInstance]:
        """Returns the currently known instances."""
        with self.__lock:
            return [entry.instance for entry in self.__entries.values()]

    def entries(self) -> List[RegistryEntry]:
        """Returns copies of all current entries."""
        with self.__lock:
            return [entry.copy() for entry in self.__entries.values()]

    def __len__(self) -> int:
        with self.__lock:
            return len(self.__entries)

    def __contains__(self, identity: object) -> bool:
        with self.__lock:
            return identity in self.__entries

    @staticmethod
    def __refresh_locked(
        entry: RegistryEntry, now: float, message: Optional[str]
    ) -> bool:
        # pylint: disable=W0212 # Entries are owned by the registry.
        entry._touch(now)
        if message is None or message == entry.instance.message:
            return False
        entry._set_message(message)
        return True
