"""Provisioning API collaborators.

Exports:
    ProvisioningAPI            -- abstract CRUD + poll interface.
    InMemoryProvisioningAPI    -- deterministic simulator with fault injection.
    LocalStateProvisioningAPI  -- simulator persisted to a JSON state file.
"""

from eksorch.provider.base import ProvisioningAPI
from eksorch.provider.local import LocalStateProvisioningAPI
from eksorch.provider.memory import Call, InMemoryProvisioningAPI

__all__ = [
    "Call",
    "InMemoryProvisioningAPI",
    "LocalStateProvisioningAPI",
    "ProvisioningAPI",
]
