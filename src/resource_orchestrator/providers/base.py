"""Provider adapter protocol: the narrow contract the orchestrator depends on."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from resource_orchestrator.orchestrator.models import OperationResult, ResourceNode


@runtime_checkable
class ProviderAdapter(Protocol):
    """Performs create/update/delete/list calls against a remote system.

    Implementations never raise for provider failures; they classify the
    failure into the error taxonomy and return a failed OperationResult.
    Each call may be long-running and returns only once the provider
    reports completion.
    """

    async def create_or_update(
        self,
        kind: str,
        name: str,
        config: dict[str, Any],
        *,
        parent: ResourceNode | None = None,
    ) -> OperationResult:
        """Create the resource, or converge an existing one onto *config*."""
        ...

    async def delete(
        self,
        kind: str,
        name: str,
        *,
        parent: ResourceNode | None = None,
    ) -> OperationResult:
        """Delete the resource; a missing resource yields AlreadyDeletedError."""
        ...

    async def list(
        self, kind: str, parent: ResourceNode | None = None
    ) -> OperationResult:
        """List resources of *kind* under *parent* (in ``result.nodes``)."""
        ...
