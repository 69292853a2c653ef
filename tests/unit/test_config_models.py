"""Unit tests for plan and platform configuration models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from resource_orchestrator.config.models import (
    AzureConfig,
    CleanupConfig,
    LoggingConfig,
    NodeSpec,
    PlanConfig,
    PlatformConfig,
    ProviderConfig,
    ProviderMode,
    RetryConfig,
    StepAction,
    StepSpec,
)


def _nodes() -> list[dict]:
    return [
        {"name": "group", "kind": "resource_group"},
        {"name": "ns", "kind": "servicebus_namespace", "parent": "group"},
    ]


class TestNodeSpec:
    def test_defaults(self):
        spec = NodeSpec(name="group", kind="resource_group")
        assert spec.parent is None
        assert spec.resource_name is None
        assert spec.randomize_name is False
        assert spec.config == {}

    @pytest.mark.parametrize("name", ["1group", "", "has space", "-dash"])
    def test_invalid_names(self, name: str):
        with pytest.raises(ValidationError):
            NodeSpec(name=name, kind="resource_group")

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            NodeSpec(name="group", kind="resource_group", colour="blue")


class TestStepSpec:
    def test_update_needs_node_and_patch(self):
        with pytest.raises(ValidationError, match="node is required"):
            StepSpec(action="update", patch={"a": 1})
        with pytest.raises(ValidationError, match="patch is required"):
            StepSpec(action="update", node="ns")

    def test_delete_needs_node(self):
        with pytest.raises(ValidationError, match="node is required"):
            StepSpec(action="delete")

    def test_list_needs_kind(self):
        with pytest.raises(ValidationError, match="kind is required"):
            StepSpec(action="list", node="ns")

    def test_valid_list_without_node(self):
        step = StepSpec(action="list", kind="resource_group")
        assert step.action == StepAction.LIST
        assert step.node is None


class TestPlanConfig:
    def test_valid_plan(self):
        plan = PlanConfig(
            plan_id="demo",
            nodes=_nodes(),
            steps=[{"action": "delete", "node": "ns"}],
        )
        assert [n.name for n in plan.nodes] == ["group", "ns"]
        assert plan.steps[0].action == StepAction.DELETE

    def test_needs_at_least_one_node(self):
        with pytest.raises(ValidationError):
            PlanConfig(plan_id="empty", nodes=[])

    def test_duplicate_names(self):
        nodes = [*_nodes(), {"name": "ns", "kind": "servicebus_namespace"}]
        with pytest.raises(ValidationError, match="duplicate node name 'ns'"):
            PlanConfig(plan_id="demo", nodes=nodes)

    def test_parent_declared_later(self):
        nodes = list(reversed(_nodes()))
        with pytest.raises(ValidationError, match="not declared before it"):
            PlanConfig(plan_id="demo", nodes=nodes)

    def test_self_parent_rejected(self):
        nodes = [{"name": "loop", "kind": "resource_group", "parent": "loop"}]
        with pytest.raises(ValidationError, match="not declared before it"):
            PlanConfig(plan_id="demo", nodes=nodes)

    def test_step_unknown_node(self):
        with pytest.raises(ValidationError, match="unknown node 'queue9'"):
            PlanConfig(
                plan_id="demo",
                nodes=_nodes(),
                steps=[{"action": "delete", "node": "queue9"}],
            )


class TestAzureConfig:
    def test_location_normalised(self):
        assert AzureConfig(subscription_id="s", location="West US").location == "westus"

    def test_default_credential_chain(self):
        cfg = AzureConfig(subscription_id="s")
        assert not cfg.uses_service_principal
        assert cfg.operation_timeout_seconds == 900.0

    def test_service_principal_complete(self):
        cfg = AzureConfig(
            subscription_id="s", tenant_id="t", client_id="c", client_secret="hunter2"
        )
        assert cfg.uses_service_principal
        assert "hunter2" not in repr(cfg)

    def test_service_principal_partial_rejected(self):
        with pytest.raises(ValidationError, match="must all be set"):
            AzureConfig(subscription_id="s", client_id="c")

    def test_subscription_required(self):
        with pytest.raises(ValidationError):
            AzureConfig(subscription_id="")


class TestProviderConfig:
    def test_defaults_to_memory(self):
        cfg = ProviderConfig()
        assert cfg.mode == ProviderMode.MEMORY
        assert cfg.memory.latency_seconds == 0.0

    def test_azure_mode_needs_azure_section(self):
        with pytest.raises(ValidationError, match="azure config is required"):
            ProviderConfig(mode="azure")

    def test_azure_mode(self):
        cfg = ProviderConfig(mode="azure", azure={"subscription_id": "s"})
        assert cfg.azure is not None
        assert cfg.azure.subscription_id == "s"


class TestPlatformConfig:
    def test_defaults(self):
        cfg = PlatformConfig()
        assert cfg.retry == RetryConfig()
        assert cfg.retry.max_attempts == 3
        assert cfg.cleanup == CleanupConfig()
        assert cfg.cleanup.cascade_kinds == []
        assert cfg.logging.level == "info"
        assert cfg.name_suffix_length == 8

    @pytest.mark.parametrize("length", [3, 17])
    def test_suffix_length_bounds(self, length: int):
        with pytest.raises(ValidationError):
            PlatformConfig(name_suffix_length=length)

    def test_retry_attempts_positive(self):
        with pytest.raises(ValidationError):
            RetryConfig(max_attempts=0)


class TestLoggingConfig:
    def test_level_case_insensitive(self):
        assert LoggingConfig(level="DEBUG").level == "debug"

    def test_unknown_level(self):
        with pytest.raises(ValidationError, match="Unknown log level"):
            LoggingConfig(level="chatty")
