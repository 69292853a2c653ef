"""InMemoryProvider: a simulated control plane for local runs and tests."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from resource_orchestrator.config.models import MemoryProviderConfig
from resource_orchestrator.orchestrator.errors import (
    AlreadyDeletedError,
    ConfigurationError,
    OrchestratorError,
)
from resource_orchestrator.orchestrator.models import (
    NodeState,
    OperationResult,
    ResourceKind,
    ResourceNode,
)

logger = structlog.get_logger()

ResourcePath = tuple[tuple[str, str], ...]

DEFAULT_NAMESPACE_RULE = "RootManageSharedAccessKey"
_LOCATED_KINDS = frozenset(
    {ResourceKind.RESOURCE_GROUP, ResourceKind.SERVICEBUS_NAMESPACE}
)

Fault = OrchestratorError | list[OrchestratorError]


def _path(node: ResourceNode | None) -> ResourcePath:
    if node is None:
        return ()
    chain = [node, *node.ancestors()]
    return tuple((n.kind, n.resource_name) for n in reversed(chain))


class InMemoryProvider:
    """Keeps resources in a dict keyed by their (kind, name) path.

    Mirrors the behaviour the orchestrator relies on from a real cloud:
    children need an existing parent, deletes cascade to children, deleting
    a missing resource reports AlreadyDeletedError, and a new namespace
    comes with a default authorization rule.

    Faults are injected with *fail_on*, keyed by ``(operation, name)`` where
    operation is ``create``, ``delete`` or ``list``. A single error fails
    every matching call; a list of errors fails one call per entry and then
    lets calls through. Names in *partial_on* are stored before their create
    fails, simulating a half-finished long-running operation.
    """

    def __init__(
        self,
        config: MemoryProviderConfig | None = None,
        *,
        fail_on: dict[tuple[str, str], Fault] | None = None,
        partial_on: set[str] | None = None,
    ) -> None:
        self._config = config or MemoryProviderConfig()
        self._resources: dict[ResourcePath, dict[str, Any]] = {}
        self._fail_on: dict[tuple[str, str], Fault] = dict(fail_on or {})
        self._partial_on = set(partial_on or ())
        self.calls: list[tuple[str, str, str]] = []

    # -- Introspection ---------------------------------------------------------

    def exists(self, kind: str, name: str, parent: ResourceNode | None = None) -> bool:
        return (*_path(parent), (kind, name)) in self._resources

    @property
    def resource_count(self) -> int:
        return len(self._resources)

    def calls_for(self, operation: str) -> list[str]:
        """Resource names passed to *operation*, in call order."""
        return [name for op, _kind, name in self.calls if op == operation]

    def inject_fault(self, operation: str, name: str, fault: Fault) -> None:
        """Fail later *operation* calls on *name* (see class docstring)."""
        self._fail_on[(operation, name)] = fault

    # -- ProviderAdapter -------------------------------------------------------

    async def create_or_update(
        self,
        kind: str,
        name: str,
        config: dict[str, Any],
        *,
        parent: ResourceNode | None = None,
    ) -> OperationResult:
        self.calls.append(("create", kind, name))
        await self._wait()

        parent_path = _path(parent)
        if parent_path and parent_path not in self._resources:
            msg = f"Parent {parent_path[-1][0]} '{parent_path[-1][1]}' does not exist"
            return OperationResult.failed(ConfigurationError(msg))

        fault = self._take_fault("create", name)
        path: ResourcePath = (*parent_path, (kind, name))
        if fault is not None:
            partial = name in self._partial_on
            if partial:
                self._resources[path] = self._snapshot(path, config)
            logger.info(
                "memory.create_faulted", kind=kind, name=name, partial=partial
            )
            return OperationResult.failed(fault, partial=partial)

        existed = path in self._resources
        self._resources[path] = self._snapshot(path, config)
        if kind == ResourceKind.SERVICEBUS_NAMESPACE and not existed:
            rule_path: ResourcePath = (
                *path,
                (ResourceKind.NAMESPACE_AUTHORIZATION_RULE, DEFAULT_NAMESPACE_RULE),
            )
            self._resources[rule_path] = self._snapshot(
                rule_path, {"rights": ["Listen", "Send", "Manage"]}
            )
        logger.debug(
            "memory.resource_updated" if existed else "memory.resource_created",
            kind=kind,
            name=name,
        )
        return OperationResult.ok(snapshot=dict(self._resources[path]))

    async def delete(
        self,
        kind: str,
        name: str,
        *,
        parent: ResourceNode | None = None,
    ) -> OperationResult:
        self.calls.append(("delete", kind, name))
        await self._wait()

        fault = self._take_fault("delete", name)
        if fault is not None:
            return OperationResult.failed(fault)

        path: ResourcePath = (*_path(parent), (kind, name))
        if path not in self._resources:
            msg = f"{kind} '{name}' not found"
            return OperationResult.failed(AlreadyDeletedError(msg))

        doomed = [p for p in self._resources if p[: len(path)] == path]
        snapshot = self._resources[path]
        for p in doomed:
            del self._resources[p]
        logger.debug(
            "memory.resource_deleted", kind=kind, name=name, removed=len(doomed)
        )
        return OperationResult.ok(snapshot=snapshot)

    async def list(
        self, kind: str, parent: ResourceNode | None = None
    ) -> OperationResult:
        name = parent.resource_name if parent is not None else ""
        self.calls.append(("list", kind, name))
        await self._wait()

        fault = self._take_fault("list", name)
        if fault is not None:
            return OperationResult.failed(fault)

        parent_path = _path(parent)
        if parent_path and parent_path not in self._resources:
            msg = f"Parent {parent_path[-1][0]} '{parent_path[-1][1]}' does not exist"
            return OperationResult.failed(ConfigurationError(msg))

        depth = len(parent_path) + 1
        nodes = [
            ResourceNode(
                name=path[-1][1],
                kind=kind,
                config={k: v for k, v in data.items() if k not in ("id", "name")},
                parent=parent,
                state=NodeState.CREATED,
                snapshot=dict(data),
            )
            for path, data in self._resources.items()
            if len(path) == depth and path[:-1] == parent_path and path[-1][0] == kind
        ]
        return OperationResult.ok(nodes=nodes)

    # -- Helpers ---------------------------------------------------------------

    async def _wait(self) -> None:
        if self._config.latency_seconds:
            await asyncio.sleep(self._config.latency_seconds)

    def _take_fault(self, operation: str, name: str) -> OrchestratorError | None:
        fault = self._fail_on.get((operation, name))
        if isinstance(fault, list):
            if not fault:
                return None
            return fault.pop(0)
        return fault

    def _snapshot(self, path: ResourcePath, config: dict[str, Any]) -> dict[str, Any]:
        kind, name = path[-1]
        data = dict(config)
        if kind in _LOCATED_KINDS:
            data.setdefault("location", self._config.location)
        data["id"] = "/" + "/".join(f"{k}/{n}" for k, n in path)
        data["name"] = name
        return data
