"""Unit tests for the plan data model."""

from __future__ import annotations

import pytest

from resource_orchestrator.config.models import PlanConfig, StepAction
from resource_orchestrator.orchestrator.errors import (
    AlreadyDeletedError,
    ConfigurationError,
    TransientProviderError,
)
from resource_orchestrator.orchestrator.models import (
    NodeState,
    OperationResult,
    Plan,
    ResourceKind,
    ResourceNode,
    immutable_fields,
)


def _tree() -> Plan:
    group = ResourceNode("group", ResourceKind.RESOURCE_GROUP)
    ns = ResourceNode("ns", ResourceKind.SERVICEBUS_NAMESPACE, parent=group)
    q1 = ResourceNode("q1", ResourceKind.SERVICEBUS_QUEUE, parent=ns)
    q2 = ResourceNode("q2", ResourceKind.SERVICEBUS_QUEUE, parent=ns)
    rule = ResourceNode("rule", ResourceKind.QUEUE_AUTHORIZATION_RULE, parent=q1)
    return Plan([group, ns, q1, q2, rule], plan_id="tree")


class TestResourceNode:
    def test_resource_name_defaults_to_name(self):
        node = ResourceNode("queue1", ResourceKind.SERVICEBUS_QUEUE)
        assert node.resource_name == "queue1"
        assert node.state == NodeState.PENDING

    def test_explicit_resource_name_kept(self):
        node = ResourceNode("queue1", "servicebus_queue", resource_name="queue1_ab12")
        assert node.resource_name == "queue1_ab12"

    def test_ancestors_walk_to_root(self):
        plan = _tree()
        rule = plan.get("rule")
        assert [n.name for n in rule.ancestors()] == ["q1", "ns", "group"]
        assert rule.parent_name == "q1"
        assert plan.get("group").parent_name is None

    def test_needs_delete(self):
        node = ResourceNode("n", "servicebus_queue")
        assert not node.needs_delete
        node.state = NodeState.CREATED
        assert node.needs_delete
        node.state = NodeState.FAILED
        assert not node.needs_delete
        node.partially_created = True
        assert node.needs_delete
        node.state = NodeState.DELETED
        assert not node.needs_delete


class TestPlanOrdering:
    def test_create_order_is_declaration_order(self):
        plan = _tree()
        assert [n.name for n in plan.create_order()] == [
            "group",
            "ns",
            "q1",
            "q2",
            "rule",
        ]

    def test_destroy_order_is_reverse_of_create(self):
        plan = _tree()
        assert plan.destroy_order() == list(reversed(plan.create_order()))

    def test_every_child_destroyed_before_its_parent(self):
        plan = _tree()
        position = {n.name: i for i, n in enumerate(plan.destroy_order())}
        for node in plan:
            for ancestor in node.ancestors():
                assert position[node.name] < position[ancestor.name]

    def test_roots_children_descendants(self):
        plan = _tree()
        ns = plan.get("ns")
        assert [n.name for n in plan.roots] == ["group"]
        assert [n.name for n in plan.children(ns)] == ["q1", "q2"]
        assert [n.name for n in plan.descendants(ns)] == ["q1", "q2", "rule"]

    def test_container_protocol(self):
        plan = _tree()
        assert len(plan) == 5
        assert "q2" in plan
        assert "missing" not in plan
        assert plan.states() == {n.name: NodeState.PENDING for n in plan}


class TestPlanValidation:
    def test_duplicate_names_rejected(self):
        with pytest.raises(ConfigurationError, match="Duplicate node name 'a'"):
            Plan([ResourceNode("a", "k"), ResourceNode("a", "k")])

    def test_parent_must_be_declared_first(self):
        parent = ResourceNode("group", ResourceKind.RESOURCE_GROUP)
        child = ResourceNode("ns", ResourceKind.SERVICEBUS_NAMESPACE, parent=parent)
        with pytest.raises(ConfigurationError, match="not declared earlier"):
            Plan([child, parent])

    def test_parent_outside_plan_rejected(self):
        stranger = ResourceNode("group", ResourceKind.RESOURCE_GROUP)
        child = ResourceNode("ns", ResourceKind.SERVICEBUS_NAMESPACE, parent=stranger)
        with pytest.raises(ConfigurationError):
            Plan([ResourceNode("group", ResourceKind.RESOURCE_GROUP), child])

    def test_unknown_node_lookup(self):
        with pytest.raises(ConfigurationError, match="Unknown node 'nope'"):
            _tree().get("nope")


class TestPlanFromConfig:
    def _config(self) -> PlanConfig:
        return PlanConfig.model_validate(
            {
                "plan_id": "demo",
                "nodes": [
                    {
                        "name": "group",
                        "kind": "resource_group",
                        "resource_name": "rg_",
                        "randomize_name": True,
                        "config": {"location": "westus"},
                    },
                    {"name": "ns", "kind": "servicebus_namespace", "parent": "group"},
                ],
                "steps": [
                    {"action": "update", "node": "ns", "patch": {"tags": {"a": 1}}},
                    {"action": "list", "kind": "servicebus_queue", "node": "ns"},
                ],
            }
        )

    def test_builds_linked_nodes(self):
        plan, steps = Plan.from_config(self._config())
        assert plan.plan_id == "demo"
        assert plan.get("ns").parent is plan.get("group")
        assert plan.get("group").config == {"location": "westus"}
        assert [s.action for s in steps] == [StepAction.UPDATE, StepAction.LIST]
        assert steps[0].patch == {"tags": {"a": 1}}
        assert steps[1].kind == "servicebus_queue"

    def test_name_factory_only_for_randomized_nodes(self):
        calls: list[tuple[str, str]] = []

        def factory(kind: str, base: str) -> str:
            calls.append((kind, base))
            return f"{base}xyz"

        plan, _ = Plan.from_config(self._config(), name_factory=factory)
        assert calls == [("resource_group", "rg_")]
        assert plan.get("group").resource_name == "rg_xyz"
        assert plan.get("ns").resource_name == "ns"

    def test_each_call_builds_fresh_nodes(self):
        config = self._config()
        first, _ = Plan.from_config(config)
        second, _ = Plan.from_config(config)
        first.get("group").state = NodeState.CREATED
        first.get("group").config["location"] = "eastus"
        assert second.get("group").state == NodeState.PENDING
        assert config.nodes[0].config["location"] == "westus"


class TestOperationResult:
    def test_ok(self):
        result = OperationResult.ok(snapshot={"id": "x"})
        assert result.success
        assert result.snapshot == {"id": "x"}
        assert result.nodes == []
        assert not result.already_deleted

    def test_failed(self):
        result = OperationResult.failed(TransientProviderError("busy"), partial=True)
        assert not result.success
        assert result.partial
        assert not result.already_deleted

    def test_already_deleted(self):
        result = OperationResult.failed(AlreadyDeletedError("gone"))
        assert result.already_deleted


class TestImmutableFields:
    def test_known_kinds(self):
        assert immutable_fields("resource_group") == {"location"}
        assert immutable_fields("servicebus_namespace") == {"location", "sku"}
        assert "requires_session" in immutable_fields("servicebus_queue")

    def test_unknown_kind_has_none(self):
        assert immutable_fields("storage_account") == frozenset()
