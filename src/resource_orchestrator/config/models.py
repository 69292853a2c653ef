"""Pydantic configuration models for plans and the orchestration platform."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Annotated, Any, Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator


class ProviderMode(StrEnum):
    """Supported provider adapters."""

    MEMORY = "memory"
    AZURE = "azure"


class StepAction(StrEnum):
    """Post-provision operations a plan can declare."""

    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"


NodeName = Annotated[str, Field(pattern=r"^[a-zA-Z][a-zA-Z0-9._-]*$")]


class NodeSpec(BaseModel, extra="forbid"):
    """Declarative description of one resource node."""

    name: NodeName
    kind: str = Field(min_length=1)
    parent: str | None = None
    # Provider-side name; defaults to ``name``.
    resource_name: str | None = None
    # Append a random suffix to the provider-side name (unique per run).
    randomize_name: bool = False
    config: dict[str, Any] = Field(default_factory=dict)


class StepSpec(BaseModel, extra="forbid"):
    """A post-provision step: update a node, delete a node, or list a kind."""

    action: StepAction
    node: str | None = None
    patch: dict[str, Any] = Field(default_factory=dict)
    kind: str | None = None

    @model_validator(mode="after")
    def check_action_fields(self) -> Self:
        """Ensure the fields the action needs are present."""
        if self.action in (StepAction.UPDATE, StepAction.DELETE) and not self.node:
            msg = f"node is required when action is '{self.action.value}'"
            raise ValueError(msg)
        if self.action == StepAction.UPDATE and not self.patch:
            msg = "patch is required when action is 'update'"
            raise ValueError(msg)
        if self.action == StepAction.LIST and not self.kind:
            msg = "kind is required when action is 'list'"
            raise ValueError(msg)
        return self


class PlanConfig(BaseModel, extra="forbid"):
    """A resource plan: ordered nodes plus the steps to run after provisioning."""

    plan_id: str
    nodes: list[NodeSpec] = Field(min_length=1)
    steps: list[StepSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_graph(self) -> Self:
        """Names are unique, parents come first, steps reference known nodes."""
        seen: set[str] = set()
        for node in self.nodes:
            if node.name in seen:
                msg = f"duplicate node name '{node.name}'"
                raise ValueError(msg)
            if node.parent is not None and node.parent not in seen:
                msg = (
                    f"node '{node.name}' has parent '{node.parent}' "
                    "which is not declared before it"
                )
                raise ValueError(msg)
            seen.add(node.name)
        for step in self.steps:
            if step.node is not None and step.node not in seen:
                msg = (
                    f"step '{step.action.value}' references "
                    f"unknown node '{step.node}'"
                )
                raise ValueError(msg)
        return self


class AzureConfig(BaseModel):
    """Azure Resource Manager credentials and defaults."""

    subscription_id: str = Field(min_length=1)
    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: SecretStr | None = None
    location: str = "westus"
    # Seconds to wait on a single long-running operation poller.
    operation_timeout_seconds: float = Field(default=900.0, gt=0)

    @field_validator("location")
    @classmethod
    def normalize_location(cls, v: str) -> str:
        """Azure accepts 'West US' and 'westus'; store the short form."""
        return re.sub(r"\s+", "", v).lower()

    @model_validator(mode="after")
    def check_service_principal(self) -> Self:
        """Service-principal fields go together or not at all."""
        given = [
            f
            for f in ("tenant_id", "client_id", "client_secret")
            if getattr(self, f) not in (None, "")
        ]
        if given and len(given) != 3:
            msg = (
                "tenant_id, client_id and client_secret must all be set "
                "to use a service principal"
            )
            raise ValueError(msg)
        return self

    @property
    def uses_service_principal(self) -> bool:
        return self.client_secret is not None and bool(
            self.client_secret.get_secret_value()
        )


class MemoryProviderConfig(BaseModel):
    """In-memory provider settings (local runs and tests)."""

    latency_seconds: float = Field(default=0.0, ge=0.0)
    location: str = "westus"


class ProviderConfig(BaseModel):
    """Which provider adapter to use, and its settings."""

    mode: ProviderMode = ProviderMode.MEMORY
    azure: AzureConfig | None = None
    memory: MemoryProviderConfig = MemoryProviderConfig()

    @model_validator(mode="after")
    def check_mode_requirements(self) -> Self:
        """Ensure mode-specific config is present."""
        if self.mode == ProviderMode.AZURE and self.azure is None:
            msg = "azure config is required when provider mode is 'azure'"
            raise ValueError(msg)
        return self


class RetryConfig(BaseModel):
    """Retry / backoff configuration for transient provider errors."""

    enabled: bool = True
    max_attempts: int = Field(default=3, ge=1)
    initial_wait_seconds: float = Field(default=1.0, ge=0)
    max_wait_seconds: float = Field(default=30.0, ge=0)
    jitter: float = Field(default=1.0, ge=0)


class CleanupConfig(BaseModel):
    """Teardown behaviour."""

    # Kinds whose delete removes all their children (e.g. resource_group).
    # Empty means every node is deleted explicitly in reverse order.
    cascade_kinds: list[str] = Field(default_factory=list)


class LoggingConfig(BaseModel):
    """structlog output settings."""

    level: str = "info"
    json_output: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.lower()
        if level not in {"debug", "info", "warning", "error", "critical"}:
            msg = f"Unknown log level '{v}'"
            raise ValueError(msg)
        return level


class PlatformConfig(BaseModel):
    """Platform configuration: provider, retries, cleanup and logging."""

    provider: ProviderConfig = ProviderConfig()
    retry: RetryConfig = RetryConfig()
    cleanup: CleanupConfig = CleanupConfig()
    logging: LoggingConfig = LoggingConfig()
    # Length of the random suffix appended to randomized resource names.
    name_suffix_length: int = Field(default=8, ge=4, le=16)
