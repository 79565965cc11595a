import threading

import pytest

from salaam.discovery.client_registry import (
    ClientRegistry,
    RegistryChange,
    RegistryEntry,
)
from salaam.discovery.service_instance import ServiceInstance
from salaam.protocol.service_announcement import ServiceAnnouncement


def make_instance(
    name: str = "Printer1", message: str = "ready", address="10.0.0.5"
) -> ServiceInstance:
    return ServiceInstance(
        address=address,
        host_name="host1",
        service_type="print",
        name=name,
        port=9100,
        message=message,
    )


def make_announcement(
    name: str = "Printer1",
    message: str = "ready",
    address="10.0.0.5",
    control_code: str = "",
) -> ServiceAnnouncement:
    return ServiceAnnouncement(
        host_name="host1",
        service_type="print",
        name=name,
        port=9100,
        message=message,
        address=address,
        control_code=control_code,
    )


@pytest.fixture
def registry() -> ClientRegistry:
    return ClientRegistry()


class TestClientRegistry:

    def test_new_registry_is_empty(self, registry):
        assert len(registry) == 0
        assert registry.snapshot() == []
        assert registry.get(make_instance().identity) is None

    def test_add_and_get(self, registry):
        instance = make_instance()

        assert registry.add(instance, now=10.0)

        entry = registry.get(instance.identity)
        assert entry is not None
        assert entry.instance == instance
        assert entry.last_seen == 10.0
        assert instance.identity in registry
        assert len(registry) == 1

    def test_add_duplicate_identity_rejected(self, registry):
        registry.add(make_instance(message="ready"), now=1.0)

        assert not registry.add(make_instance(message="busy"), now=2.0)

        entry = registry.get(make_instance().identity)
        assert entry.instance.message == "ready"
        assert entry.last_seen == 1.0
        assert len(registry) == 1

    def test_refresh_updates_timestamp_and_message(self, registry):
        instance = make_instance()
        registry.add(instance, now=1.0)

        assert not registry.refresh(instance.identity, now=2.0)
        assert registry.get(instance.identity).last_seen == 2.0

        assert registry.refresh(instance.identity, now=3.0, message="busy")
        entry = registry.get(instance.identity)
        assert entry.instance.message == "busy"
        assert entry.last_seen == 3.0

    def test_refresh_never_moves_backwards(self, registry):
        instance = make_instance()
        registry.add(instance, now=5.0)

        registry.refresh(instance.identity, now=4.0)

        assert registry.get(instance.identity).last_seen == 5.0

    def test_refresh_unknown_identity(self, registry):
        assert not registry.refresh(make_instance().identity, now=1.0)
        assert len(registry) == 0

    def test_remove(self, registry):
        instance = make_instance()
        registry.add(instance, now=1.0)

        removed = registry.remove(instance.identity)

        assert removed == instance
        assert len(registry) == 0
        assert registry.remove(instance.identity) is None

    def test_get_returns_copy(self, registry):
        instance = make_instance()
        registry.add(instance, now=1.0)

        entry = registry.get(instance.identity)
        registry.refresh(instance.identity, now=9.0, message="busy")

        assert entry.last_seen == 1.0
        assert entry.instance.message == "ready"

    def test_clear(self, registry):
        registry.add(make_instance("a"), now=1.0)
        registry.add(make_instance("b"), now=1.0)

        registry.clear()

        assert len(registry) == 0

    def test_snapshot_and_entries(self, registry):
        first = make_instance("a")
        second = make_instance("b")
        registry.add(first, now=1.0)
        registry.add(second, now=2.0)

        assert registry.snapshot() == [first, second]
        entries = registry.entries()
        assert all(isinstance(entry, RegistryEntry) for entry in entries)
        assert [entry.last_seen for entry in entries] == [1.0, 2.0]


class TestApply:

    def test_new_instance_appears(self, registry):
        instance = make_instance()

        update = registry.apply(make_announcement(), now=1.0)

        assert update.change is RegistryChange.APPEARED
        assert update.instance == instance
        assert registry.snapshot() == [instance]

    def test_end_of_service_for_unknown_instance_is_noop(self, registry):
        update = registry.apply(
            make_announcement(control_code="EOS"), now=1.0
        )

        assert update.change is RegistryChange.NONE
        assert update.instance is None
        assert len(registry) == 0

    def test_unchanged_reannouncement_refreshes_silently(self, registry):
        registry.apply(make_announcement(), now=1.0)

        update = registry.apply(make_announcement(), now=2.0)

        assert update.change is RegistryChange.NONE
        assert registry.get(make_instance().identity).last_seen == 2.0

    def test_changed_message(self, registry):
        registry.apply(make_announcement(message="ready"), now=1.0)

        update = registry.apply(make_announcement(message="busy"), now=2.0)

        assert update.change is RegistryChange.CHANGED
        assert update.instance.message == "busy"
        assert registry.snapshot()[0].message == "busy"

    def test_end_of_service_removes_known_instance(self, registry):
        registry.apply(make_announcement(message="ready"), now=1.0)

        update = registry.apply(
            make_announcement(message="bye", control_code="EOS"), now=2.0
        )

        assert update.change is RegistryChange.DISAPPEARED
        assert update.instance.message == "ready"
        assert len(registry) == 0

    def test_reserved_code_only_refreshes(self, registry):
        registry.apply(make_announcement(message="ready"), now=1.0)

        update = registry.apply(
            make_announcement(message="busy", control_code="PING"), now=5.0
        )

        assert update.change is RegistryChange.NONE
        entry = registry.get(make_instance().identity)
        assert entry.last_seen == 5.0
        assert entry.instance.message == "ready"

    def test_reserved_code_for_unknown_instance_is_noop(self, registry):
        update = registry.apply(
            make_announcement(control_code="PING"), now=1.0
        )

        assert update.change is RegistryChange.NONE
        assert len(registry) == 0

    def test_identity_includes_address(self, registry):
        registry.apply(make_announcement(address="10.0.0.5"), now=1.0)

        update = registry.apply(
            make_announcement(address="10.0.0.6"), now=1.0
        )

        assert update.change is RegistryChange.APPEARED
        assert len(registry) == 2


class TestRemoveExpired:

    def test_only_stale_entries_removed(self, registry):
        stale = make_instance("stale")
        fresh = make_instance("fresh")
        registry.add(stale, now=0.0)
        registry.add(fresh, now=8.0)

        removed = registry.remove_expired(now=10.0, window_seconds=4.0)

        assert removed == [stale]
        assert registry.snapshot() == [fresh]

    def test_entry_exactly_at_window_is_kept(self, registry):
        registry.add(make_instance(), now=6.0)

        assert registry.remove_expired(now=10.0, window_seconds=4.0) == []
        assert len(registry) == 1

    def test_removed_entry_not_removed_twice(self, registry):
        instance = make_instance()
        registry.add(instance, now=0.0)

        assert registry.remove_expired(now=10.0, window_seconds=4.0) == [
            instance
        ]
        assert registry.remove_expired(now=20.0, window_seconds=4.0) == []
        assert (
            registry.apply(
                make_announcement(control_code="EOS"), now=21.0
            ).change
            is RegistryChange.NONE
        )


def test_concurrent_mutation_and_scans():
    registry = ClientRegistry()
    errors = []

    def writer(prefix: str) -> None:
        try:
            for i in range(500):
                registry.apply(
                    make_announcement(f"{prefix}{i}"), now=float(i)
                )
        except Exception as e:  # pylint: disable=W0718
            errors.append(e)

    def sweeper() -> None:
        try:
            for i in range(500):
                registry.remove_expired(now=float(i), window_seconds=50.0)
                registry.snapshot()
        except Exception as e:  # pylint: disable=W0718
            errors.append(e)

    threads = [
        threading.Thread(target=writer, args=("a",)),
        threading.Thread(target=writer, args=("b",)),
        threading.Thread(target=sweeper),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    identities = [instance.identity for instance in registry.snapshot()]
    assert len(identities) == len(set(identities))
