"""In-memory provisioning API.

Simulates the cloud side closely enough to exercise the executor: id
allocation, CIDR overlap detection, per-zone capacity, cluster-scoped
children, add-on conflict resolution and long-running operations that
need several polls. Faults can be injected per resource and operation,
and every call is recorded so tests can assert on ordering.
"""

from __future__ import annotations

import asyncio
import ipaddress
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from eksorch.errors import (
    AllocationConflict,
    CapacityExhausted,
    ConflictOnUpdate,
    DependencyNotReady,
    ExternalServiceError,
    ResourceNotFound,
)
from eksorch.models.cluster import ConflictPolicy
from eksorch.models.resources import RemoteState, ResourceKind, ResourceRecord, freeze, thaw
from eksorch.observability.logging import get_logger
from eksorch.provider.base import ProvisioningAPI

_log = get_logger("provider.memory")

# Removed together with their cluster.
_CLUSTER_CHILDREN = (ResourceKind.ACCESS_ENTRY, ResourceKind.ADDON)


@dataclass
class _Entry:
    kind: ResourceKind
    resource_id: str
    config: dict[str, Any]
    outputs: dict[str, Any]
    state: RemoteState = RemoteState.PENDING
    pending_polls: int = 0
    deleting: bool = False
    fail_on_settle: str = ""
    drifted: bool = False
    message: str = ""

    def record(self) -> ResourceRecord:
        return ResourceRecord(
            kind=self.kind,
            resource_id=self.resource_id,
            state=self.state,
            config=freeze(self.config),
            outputs=freeze(self.outputs),
            message=self.message,
        )


@dataclass
class _Fault:
    remaining: int | None  # None: never recovers
    message: str
    terminal: bool  # True: operation is accepted, then settles in ERROR


@dataclass(frozen=True)
class Call:
    """One recorded API call."""

    operation: str
    kind: ResourceKind
    resource_id: str
    config: Mapping[str, Any] = field(default_factory=dict)


class InMemoryProvisioningAPI(ProvisioningAPI):
    """Deterministic provisioning API backed by a dict.

    Args:
        account_id: Account used when building ARNs.
        region:     Region used when building ARNs and endpoints.
        poll_delay: Number of polls an operation stays pending.
        latency:    Seconds each call sleeps (0 still yields to the loop).
    """

    def __init__(
        self,
        account_id: str = "123456789012",
        region: str = "us-east-1",
        poll_delay: int = 0,
        latency: float = 0.0,
    ) -> None:
        self.account_id = account_id
        self.region = region
        self.poll_delay = poll_delay
        self.latency = latency
        self.calls: list[Call] = []
        self._entries: dict[tuple[ResourceKind, str], _Entry] = {}
        self._faults: dict[tuple[str, str], _Fault] = {}
        self._unmanaged_addons: dict[tuple[str, str], str] = {}
        self._exhausted_zones: set[str] = set()
        self._seq = 0

    # ------------------------------------------------------------------
    # Fault injection and inspection
    # ------------------------------------------------------------------

    def fail_transient(self, resource_id: str, operation: str = "create", times: int = 1) -> None:
        """Make the next *times* calls raise ExternalServiceError."""
        self._faults[(resource_id, operation)] = _Fault(times, "throttled by provider", terminal=False)

    def fail_terminal(
        self,
        resource_id: str,
        operation: str = "create",
        times: int | None = None,
        message: str = "operation failed",
    ) -> None:
        """Accept the call but settle it in the ERROR state."""
        self._faults[(resource_id, operation)] = _Fault(times, message, terminal=True)

    def preinstall_addon(self, cluster_name: str, addon_name: str, version: str) -> None:
        """Simulate an add-on the platform installed outside our management."""
        self._unmanaged_addons[(cluster_name, addon_name)] = version

    def drift(self, kind: ResourceKind, resource_id: str, **changes: Any) -> None:
        """Change a resource out-of-band, as an operator would by hand."""
        entry = self._entries[(kind, resource_id)]
        entry.config.update(changes)
        if kind is ResourceKind.ADDON and "addon_version" in changes:
            entry.outputs["addon_version"] = changes["addon_version"]
        entry.drifted = True

    def exhaust_zone(self, zone: str) -> None:
        self._exhausted_zones.add(zone)

    def installed_addon_version(self, cluster_name: str, addon_name: str) -> str | None:
        for entry in self._entries.values():
            if (
                entry.kind is ResourceKind.ADDON
                and entry.config.get("cluster_name") == cluster_name
                and entry.config.get("addon_name") == addon_name
                and not entry.deleting
            ):
                return str(entry.outputs.get("addon_version", ""))
        return self._unmanaged_addons.get((cluster_name, addon_name))

    def resource_ids(self, kind: ResourceKind | None = None) -> list[str]:
        return [rid for (k, rid) in self._entries if kind is None or k is kind]

    def operations(self, operation: str | None = None) -> list[Call]:
        return [c for c in self.calls if operation is None or c.operation == operation]

    # ------------------------------------------------------------------
    # ProvisioningAPI
    # ------------------------------------------------------------------

    async def read(self, kind: ResourceKind, resource_id: str) -> ResourceRecord | None:
        await self._tick("read", kind, resource_id)
        entry = self._entries.get((kind, resource_id))
        return entry.record() if entry else None

    async def create(self, kind: ResourceKind, resource_id: str, config: Mapping[str, Any]) -> ResourceRecord:
        await self._tick("create", kind, resource_id, config)
        fault = self._take_fault(resource_id, "create")
        plain = thaw(config)

        existing = self._entries.get((kind, resource_id))
        if existing and existing.state is not RemoteState.ERROR and existing.config == plain:
            return existing.record()

        self._check_create(kind, resource_id, plain)
        entry = _Entry(
            kind=kind,
            resource_id=resource_id,
            config=plain,
            outputs=self._allocate(kind, resource_id, plain),
            pending_polls=self.poll_delay,
            fail_on_settle=fault.message if fault else "",
        )
        self._entries[(kind, resource_id)] = entry
        await self._changed()
        return entry.record()

    async def update(self, kind: ResourceKind, resource_id: str, config: Mapping[str, Any]) -> ResourceRecord:
        await self._tick("update", kind, resource_id, config)
        fault = self._take_fault(resource_id, "update")
        entry = self._entries.get((kind, resource_id))
        if entry is None or entry.deleting:
            raise ResourceNotFound(f"{kind.value} '{resource_id}' does not exist")

        plain = thaw(config)
        if kind is ResourceKind.NETWORK and plain["cidr_block"] != entry.config["cidr_block"]:
            self._check_overlap(resource_id, plain["cidr_block"])
        if kind is ResourceKind.ADDON:
            plain = self._resolve_addon_update(resource_id, entry, plain)

        entry.config = plain
        entry.outputs = self._refresh_outputs(kind, entry, plain)
        entry.state = RemoteState.PENDING
        entry.pending_polls = self.poll_delay
        entry.fail_on_settle = fault.message if fault else ""
        entry.drifted = False
        entry.message = ""
        await self._changed()
        return entry.record()

    async def delete(self, kind: ResourceKind, resource_id: str) -> ResourceRecord | None:
        await self._tick("delete", kind, resource_id)
        fault = self._take_fault(resource_id, "delete")
        entry = self._entries.get((kind, resource_id))
        if entry is None:
            return None
        if kind is ResourceKind.CLUSTER:
            self._cascade_cluster_delete(entry.config["name"])
        entry.deleting = True
        entry.state = RemoteState.PENDING
        entry.pending_polls = self.poll_delay
        entry.fail_on_settle = fault.message if fault else ""
        await self._changed()
        return entry.record()

    async def poll(self, kind: ResourceKind, resource_id: str) -> ResourceRecord | None:
        await self._tick("poll", kind, resource_id)
        entry = self._entries.get((kind, resource_id))
        if entry is None:
            return None
        if entry.state is not RemoteState.PENDING:
            return entry.record()
        if entry.pending_polls > 0:
            entry.pending_polls -= 1
            return entry.record()

        if entry.fail_on_settle:
            entry.state = RemoteState.ERROR
            entry.message = entry.fail_on_settle
            entry.deleting = False
            entry.fail_on_settle = ""
        elif entry.deleting:
            del self._entries[(kind, resource_id)]
            await self._changed()
            return None
        else:
            entry.state = RemoteState.READY
        await self._changed()
        return entry.record()

    # ------------------------------------------------------------------
    # Simulation internals
    # ------------------------------------------------------------------

    async def _tick(
        self,
        operation: str,
        kind: ResourceKind,
        resource_id: str,
        config: Mapping[str, Any] | None = None,
    ) -> None:
        self.calls.append(Call(operation, kind, resource_id, freeze(dict(config or {}))))
        await asyncio.sleep(self.latency)

    def _take_fault(self, resource_id: str, operation: str) -> _Fault | None:
        fault = self._faults.get((resource_id, operation))
        if fault is None:
            return None
        if fault.remaining is not None:
            fault.remaining -= 1
            if fault.remaining <= 0:
                del self._faults[(resource_id, operation)]
        if not fault.terminal:
            raise ExternalServiceError(f"{operation} {resource_id}: {fault.message}")
        return fault

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq:017x}"

    def _arn(self, service: str, resource: str) -> str:
        return f"arn:aws:{service}:{self.region}:{self.account_id}:{resource}"

    def _cluster_ready(self, cluster_name: str) -> bool:
        return any(
            e.kind is ResourceKind.CLUSTER
            and e.config.get("name") == cluster_name
            and e.state is RemoteState.READY
            and not e.deleting
            for e in self._entries.values()
        )

    def _check_create(self, kind: ResourceKind, resource_id: str, config: dict[str, Any]) -> None:
        if kind is ResourceKind.NETWORK:
            self._check_overlap(resource_id, config["cidr_block"])
        elif kind is ResourceKind.SUBNETS:
            for zone in config["zones"]:
                if zone["zone"] in self._exhausted_zones:
                    raise CapacityExhausted(f"availability zone {zone['zone']} has no free address space")
        elif kind in (ResourceKind.ACCESS_ENTRY, ResourceKind.ADDON):
            if not self._cluster_ready(config["cluster_name"]):
                raise DependencyNotReady(resource_id, config["cluster_name"])
        if kind is ResourceKind.ADDON:
            self._resolve_unmanaged_addon(resource_id, config)

    def _check_overlap(self, resource_id: str, cidr: str) -> None:
        requested = ipaddress.ip_network(cidr, strict=False)
        for entry in self._entries.values():
            if entry.kind is not ResourceKind.NETWORK or entry.resource_id == resource_id:
                continue
            existing = ipaddress.ip_network(entry.config["cidr_block"], strict=False)
            if requested.overlaps(existing):
                raise AllocationConflict(
                    f"{cidr} overlaps {existing} allocated to network '{entry.resource_id}'"
                )

    def _resolve_unmanaged_addon(self, resource_id: str, config: dict[str, Any]) -> None:
        key = (config["cluster_name"], config["addon_name"])
        installed = self._unmanaged_addons.get(key)
        if installed is None:
            return
        requested = config.get("addon_version") or installed
        policy = ConflictPolicy(config.get("resolve_conflicts_on_create", ConflictPolicy.NONE))
        if installed != requested and policy is not ConflictPolicy.OVERWRITE:
            raise ConflictOnUpdate(resource_id, installed, requested)
        _log.debug("unmanaged_addon_adopted", addon=config["addon_name"], installed=installed, requested=requested)
        del self._unmanaged_addons[key]

    def _resolve_addon_update(self, resource_id: str, entry: _Entry, config: dict[str, Any]) -> dict[str, Any]:
        """Apply the update conflict policy. PRESERVE always keeps live configuration values."""
        policy = ConflictPolicy(config.get("resolve_conflicts_on_update", ConflictPolicy.NONE))
        if policy is ConflictPolicy.NONE and entry.drifted:
            raise ConflictOnUpdate(
                resource_id,
                str(entry.config.get("addon_version", "")),
                str(config.get("addon_version", "")),
            )
        if policy is ConflictPolicy.PRESERVE:
            return {**config, "configuration_values": entry.config.get("configuration_values")}
        return config

    def _cascade_cluster_delete(self, cluster_name: str) -> None:
        doomed = [
            key
            for key, entry in self._entries.items()
            if entry.kind in _CLUSTER_CHILDREN and entry.config.get("cluster_name") == cluster_name
        ]
        for key in doomed:
            del self._entries[key]

    def _allocate(self, kind: ResourceKind, resource_id: str, config: dict[str, Any]) -> dict[str, Any]:
        if kind is ResourceKind.NETWORK:
            return {
                "vpc_id": self._next_id("vpc"),
                "igw_id": self._next_id("igw"),
                "cidr_block": config["cidr_block"],
            }
        if kind is ResourceKind.SUBNETS:
            zones = config["zones"]
            outputs: dict[str, Any] = {
                "availability_zones": [z["zone"] for z in zones],
                "public_subnet_ids": [self._next_id("subnet") for _ in zones],
                "private_subnet_ids": [self._next_id("subnet") for _ in zones],
                "public_subnet_cidrs": [z["public_cidr"] for z in zones],
                "private_subnet_cidrs": [z["private_cidr"] for z in zones],
                "nat_gateway_ids": [],
            }
            if config.get("nat_gateway_enabled"):
                outputs["nat_gateway_ids"] = [self._next_id("nat") for _ in zones]
            return outputs
        if kind is ResourceKind.CLUSTER:
            name = config["name"]
            return {
                "cluster_name": name,
                "cluster_arn": self._arn("eks", f"cluster/{name}"),
                "endpoint": f"https://{self._next_id('eks')[4:].upper()}.gr7.{self.region}.eks.amazonaws.com",
                "version": config["version"],
                "oidc_issuer_url": (
                    f"https://oidc.eks.{self.region}.amazonaws.com/id/{self._next_id('oidc')[5:].upper()}"
                    if config.get("oidc_provider_enabled")
                    else ""
                ),
            }
        if kind is ResourceKind.NODE_POOL:
            cluster, pool = config["cluster_name"], config["node_group_name"]
            return {
                "node_group_name": pool,
                "node_group_arn": self._arn("eks", f"nodegroup/{cluster}/{pool}/{self._next_id('ng')[3:]}"),
                "scaling": dict(config["scaling"]),
            }
        if kind is ResourceKind.ACCESS_ENTRY:
            return {
                "access_entry_arn": self._arn(
                    "eks", f"access-entry/{config['cluster_name']}/{self._next_id('ae')[3:]}"
                ),
                "principal_arn": config["principal_arn"],
            }
        if kind is ResourceKind.ADDON:
            cluster, addon = config["cluster_name"], config["addon_name"]
            return {
                "addon_arn": self._arn("eks", f"addon/{cluster}/{addon}"),
                "addon_version": config.get("addon_version") or "default",
            }
        return {}

    def _refresh_outputs(self, kind: ResourceKind, entry: _Entry, config: dict[str, Any]) -> dict[str, Any]:
        outputs = dict(entry.outputs)
        if kind is ResourceKind.NODE_POOL:
            outputs["scaling"] = dict(config["scaling"])
        elif kind is ResourceKind.ADDON:
            outputs["addon_version"] = config.get("addon_version") or "default"
        elif kind is ResourceKind.CLUSTER:
            outputs["version"] = config["version"]
        elif kind is ResourceKind.NETWORK:
            outputs["cidr_block"] = config["cidr_block"]
        elif kind is ResourceKind.ACCESS_ENTRY:
            outputs["principal_arn"] = config["principal_arn"]
        return outputs

    async def _changed(self) -> None:
        """Hook for subclasses that persist state."""

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        return {
            "seq": self._seq,
            "unmanaged_addons": [[c, a, v] for (c, a), v in self._unmanaged_addons.items()],
            "resources": [
                {
                    "kind": e.kind.value,
                    "resource_id": e.resource_id,
                    "state": e.state.value,
                    "config": e.config,
                    "outputs": e.outputs,
                    "deleting": e.deleting,
                    "message": e.message,
                }
                for e in self._entries.values()
            ],
        }

    def restore(self, data: Mapping[str, Any]) -> None:
        self._seq = int(data.get("seq", 0))
        self._unmanaged_addons = {(c, a): v for c, a, v in data.get("unmanaged_addons", [])}
        self._entries = {}
        for raw in data.get("resources", []):
            entry = _Entry(
                kind=ResourceKind(raw["kind"]),
                resource_id=raw["resource_id"],
                config=dict(raw["config"]),
                outputs=dict(raw["outputs"]),
                state=RemoteState(raw["state"]),
                deleting=bool(raw.get("deleting", False)),
                message=raw.get("message", ""),
            )
            self._entries[(entry.kind, entry.resource_id)] = entry
