import dataclasses

import pytest

from salaam.discovery.service_instance import (
    InstanceIdentity,
    ServiceInstance,
)
from salaam.protocol.service_announcement import ServiceAnnouncement


@pytest.fixture
def instance() -> ServiceInstance:
    return ServiceInstance(
        address="10.0.0.5",
        host_name="host1",
        service_type="print",
        name="Printer1",
        port=9100,
        message="ready",
    )


def test_identity(instance):
    assert instance.identity == InstanceIdentity(
        address="10.0.0.5",
        host_name="host1",
        service_type="print",
        name="Printer1",
        port=9100,
    )


def test_equality_ignores_message(instance):
    other = instance.with_message("busy")

    assert other == instance
    assert hash(other) == hash(instance)
    assert other.message == "busy"
    assert instance.message == "ready"


@pytest.mark.parametrize(
    "field, value",
    [
        ("address", "10.0.0.6"),
        ("host_name", "host2"),
        ("service_type", "scan"),
        ("name", "Printer2"),
        ("port", 9101),
    ],
)
def test_identity_fields_distinguish_instances(instance, field, value):
    other = dataclasses.replace(instance, **{field: value})

    assert other != instance
    assert other.identity != instance.identity


def test_instances_are_immutable(instance):
    with pytest.raises(dataclasses.FrozenInstanceError):
        instance.message = "busy"  # type: ignore[misc]


def test_from_announcement():
    announcement = ServiceAnnouncement(
        host_name="host1",
        service_type="print",
        name="Printer1",
        port=9100,
        message="ready",
        address="10.0.0.5",
        control_code="EOS",
    )

    instance = ServiceInstance.from_announcement(announcement)

    assert instance.identity == InstanceIdentity(
        "10.0.0.5", "host1", "print", "Printer1", 9100
    )
    assert instance.message == "ready"
