"""Plan data model: resource nodes, their lifecycle states and operation results."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from resource_orchestrator.config.models import PlanConfig, StepAction
from resource_orchestrator.orchestrator.errors import (
    AlreadyDeletedError,
    ConfigurationError,
    OrchestratorError,
)


class NodeState(StrEnum):
    """Lifecycle state of a single resource node."""

    PENDING = "pending"
    CREATED = "created"
    FAILED = "failed"
    DELETED = "deleted"


class ResourceKind(StrEnum):
    """Resource kinds the bundled providers understand.

    Node kinds are plain strings, so plans may use kinds outside this set
    as long as the configured provider supports them.
    """

    RESOURCE_GROUP = "resource_group"
    SERVICEBUS_NAMESPACE = "servicebus_namespace"
    SERVICEBUS_QUEUE = "servicebus_queue"
    QUEUE_AUTHORIZATION_RULE = "queue_authorization_rule"
    NAMESPACE_AUTHORIZATION_RULE = "namespace_authorization_rule"


IMMUTABLE_FIELDS: dict[str, frozenset[str]] = {
    ResourceKind.RESOURCE_GROUP: frozenset({"location"}),
    ResourceKind.SERVICEBUS_NAMESPACE: frozenset({"location", "sku"}),
    ResourceKind.SERVICEBUS_QUEUE: frozenset(
        {"requires_session", "requires_duplicate_detection", "enable_partitioning"}
    ),
}


def immutable_fields(kind: str) -> frozenset[str]:
    return IMMUTABLE_FIELDS.get(kind, frozenset())


@dataclass(eq=False)
class ResourceNode:
    """One provisionable resource inside a plan.

    ``name`` is the plan-unique key used for parent references and steps;
    ``resource_name`` is what the provider actually creates (it may carry
    a random suffix).
    """

    name: str
    kind: str
    config: dict[str, Any] = field(default_factory=dict)
    parent: ResourceNode | None = field(default=None, repr=False)
    resource_name: str = ""
    state: NodeState = NodeState.PENDING
    snapshot: dict[str, Any] | None = field(default=None, repr=False)
    error: OrchestratorError | None = None
    partially_created: bool = False

    def __post_init__(self) -> None:
        if not self.resource_name:
            self.resource_name = self.name

    @property
    def parent_name(self) -> str | None:
        return self.parent.name if self.parent is not None else None

    def ancestors(self) -> Iterator[ResourceNode]:
        """Yield parent, grandparent, ... up to the root."""
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    @property
    def needs_delete(self) -> bool:
        if self.state == NodeState.CREATED:
            return True
        return self.state == NodeState.FAILED and self.partially_created


@dataclass
class OperationResult:
    """Outcome of one provider call."""

    success: bool
    snapshot: dict[str, Any] | None = None
    error: OrchestratorError | None = None
    partial: bool = False
    nodes: list[ResourceNode] = field(default_factory=list)

    @classmethod
    def ok(
        cls,
        snapshot: dict[str, Any] | None = None,
        nodes: list[ResourceNode] | None = None,
    ) -> OperationResult:
        return cls(success=True, snapshot=snapshot, nodes=list(nodes or []))

    @classmethod
    def failed(
        cls, error: OrchestratorError, *, partial: bool = False
    ) -> OperationResult:
        return cls(success=False, error=error, partial=partial)

    @property
    def already_deleted(self) -> bool:
        return isinstance(self.error, AlreadyDeletedError)


@dataclass(frozen=True)
class Step:
    """A post-provision operation: update, delete or list."""

    action: StepAction
    node: str | None = None
    patch: dict[str, Any] = field(default_factory=dict)
    kind: str | None = None


class Plan:
    """Dependency-ordered forest of resource nodes for one run.

    Creation order is declaration order; every parent must be declared
    before its children, which also rules out cycles. Deletion order is
    the reverse of creation order.
    """

    def __init__(self, nodes: list[ResourceNode], plan_id: str = "plan") -> None:
        self.plan_id = plan_id
        self._nodes: dict[str, ResourceNode] = {}
        for node in nodes:
            if node.name in self._nodes:
                msg = f"Duplicate node name '{node.name}' in plan '{plan_id}'"
                raise ConfigurationError(msg)
            parent = node.parent
            if parent is not None and self._nodes.get(parent.name) is not parent:
                msg = (
                    f"Node '{node.name}' depends on '{parent.name}', "
                    "which is not declared earlier in the plan"
                )
                raise ConfigurationError(msg)
            self._nodes[node.name] = node

    @classmethod
    def from_config(
        cls,
        config: PlanConfig,
        name_factory: Callable[[str, str], str] | None = None,
    ) -> tuple[Plan, list[Step]]:
        """Build fresh nodes and steps from a validated plan config.

        *name_factory* maps ``(kind, name)`` to a provider resource name for
        nodes marked ``randomize_name``.
        """
        built: dict[str, ResourceNode] = {}
        nodes: list[ResourceNode] = []
        for spec in config.nodes:
            if spec.parent is not None and spec.parent not in built:
                msg = (
                    f"Node '{spec.name}' depends on '{spec.parent}', "
                    "which is not declared earlier in the plan"
                )
                raise ConfigurationError(msg)
            resource_name = spec.resource_name or spec.name
            if spec.randomize_name and name_factory is not None:
                resource_name = name_factory(spec.kind, resource_name)
            node = ResourceNode(
                name=spec.name,
                kind=spec.kind,
                config=dict(spec.config),
                parent=built.get(spec.parent) if spec.parent else None,
                resource_name=resource_name,
            )
            built[spec.name] = node
            nodes.append(node)

        steps = [
            Step(action=s.action, node=s.node, patch=dict(s.patch), kind=s.kind)
            for s in config.steps
        ]
        return cls(nodes, plan_id=config.plan_id), steps

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(self._nodes.values())

    def __contains__(self, name: object) -> bool:
        return name in self._nodes

    def get(self, name: str) -> ResourceNode:
        try:
            return self._nodes[name]
        except KeyError:
            msg = f"Unknown node '{name}' in plan '{self.plan_id}'"
            raise ConfigurationError(msg) from None

    @property
    def roots(self) -> list[ResourceNode]:
        return [n for n in self._nodes.values() if n.parent is None]

    def children(self, node: ResourceNode) -> list[ResourceNode]:
        return [n for n in self._nodes.values() if n.parent is node]

    def descendants(self, node: ResourceNode) -> list[ResourceNode]:
        """All nodes below *node*, in creation order."""
        return [n for n in self._nodes.values() if node in n.ancestors()]

    def create_order(self) -> list[ResourceNode]:
        return list(self._nodes.values())

    def destroy_order(self) -> list[ResourceNode]:
        return list(reversed(self.create_order()))

    def states(self) -> dict[str, NodeState]:
        return {n.name: n.state for n in self._nodes.values()}
