"""
Persistence — project/deployment registry backends.

    from sitedeploy.core.persistence import create_registry, RegistryResult
"""

from sitedeploy.core.persistence.json_store import JsonFileRegistry
from sitedeploy.core.persistence.registry import (
    InMemoryRegistry,
    Registry,
    RegistryError,
    RegistryResult,
    create_registry,
)

__all__ = [
    "InMemoryRegistry",
    "JsonFileRegistry",
    "Registry",
    "RegistryError",
    "RegistryResult",
    "create_registry",
]
