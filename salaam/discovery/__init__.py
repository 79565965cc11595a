"""Tracks the Salaam service instances visible on the local network."""

from salaam.discovery.service_instance import (
    InstanceIdentity,
    ServiceInstance,
)
from salaam.discovery.client_registry import (
    ClientRegistry,
    RegistryChange,
    RegistryEntry,
    RegistryUpdate,
)
from salaam.discovery.browser_config import BrowserConfig
from salaam.discovery.expiration_sweeper import ExpirationSweeper
from salaam.discovery.salaam_browser import SalaamBrowser

__all__ = [
    "BrowserConfig",
    "ClientRegistry",
    "ExpirationSweeper",
    "InstanceIdentity",
    "RegistryChange",
    "RegistryEntry",
    "RegistryUpdate",
    "SalaamBrowser",
    "ServiceInstance",
]
