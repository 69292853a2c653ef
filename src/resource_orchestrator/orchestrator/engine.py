"""Resource lifecycle orchestrator.

Provisions a plan in dependency order, applies idempotent updates, and
guarantees a single best-effort teardown of everything it created on every
exit path of a run.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import structlog

from resource_orchestrator.config.models import CleanupConfig, StepAction
from resource_orchestrator.orchestrator.errors import (
    ConfigurationError,
    InvalidStateError,
    OrchestratorError,
    RunCancelledError,
)
from resource_orchestrator.orchestrator.events import (
    EventType,
    LoggingSink,
    OrchestratorEvent,
    ReportingSink,
)
from resource_orchestrator.orchestrator.models import (
    NodeState,
    OperationResult,
    Plan,
    ResourceNode,
    Step,
    immutable_fields,
)
from resource_orchestrator.providers.base import ProviderAdapter

logger = structlog.get_logger()


@dataclass
class CleanupReport:
    """What a cleanup pass reclaimed, and what it could not."""

    deleted: list[str] = field(default_factory=list)
    already_deleted: list[str] = field(default_factory=list)
    cascaded: list[str] = field(default_factory=list)
    leaked: list[str] = field(default_factory=list)
    errors: dict[str, Exception] = field(default_factory=dict)
    nothing_to_clean_up: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.errors and not self.leaked


@dataclass
class RunScope:
    plan: Plan
    cleanup: CleanupReport | None = None


@dataclass
class StepFailure:
    step: Step
    error: Exception | None


@dataclass
class RunReport:
    """Outcome of one provision → steps → cleanup run."""

    plan_id: str
    provisioned: bool = False
    cancelled: bool = False
    error: Exception | None = None
    failed_nodes: list[str] = field(default_factory=list)
    step_failures: list[StepFailure] = field(default_factory=list)
    listings: dict[str, list[str]] = field(default_factory=dict)
    nodes: dict[str, NodeState] = field(default_factory=dict)
    cleanup: CleanupReport | None = None

    @property
    def succeeded(self) -> bool:
        return (
            self.provisioned
            and not self.cancelled
            and self.error is None
            and not self.failed_nodes
            and not self.step_failures
            and self.cleanup is not None
            and self.cleanup.succeeded
        )

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1


class Orchestrator:
    """Drives a Plan through create, update and delete against a provider.

    Holds no state between runs; every ResourceNode transition is made on
    the Plan passed in, which the caller owns exclusively for the run.
    """

    def __init__(
        self,
        provider: ProviderAdapter,
        sink: ReportingSink | None = None,
        cleanup_config: CleanupConfig | None = None,
    ) -> None:
        self._provider = provider
        self._sink = sink or LoggingSink()
        cfg = cleanup_config or CleanupConfig()
        self._cascade_kinds = frozenset(cfg.cascade_kinds)
        self._cancelled = False

    # -- Cancellation ----------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation; honoured before the next node operation.

        The request applies to the current run only; the next ``lifecycle``
        or ``run`` starts uncancelled.
        """
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _check_cancelled(self, node: ResourceNode | None = None) -> None:
        if not self._cancelled:
            return
        self._emit(EventType.RUN_CANCELLED, node)
        where = f" before node '{node.name}'" if node is not None else ""
        msg = f"Run cancelled{where}"
        raise RunCancelledError(msg)

    # -- Provision -------------------------------------------------------------

    async def provision(self, plan: Plan) -> bool:
        """Create every pending node in dependency order.

        Stops at the first failure and returns False; the failed node is
        marked FAILED and nothing after it is attempted.
        """
        for node in plan.create_order():
            if node.state == NodeState.CREATED:
                continue
            if node.state != NodeState.PENDING:
                msg = f"Cannot provision node '{node.name}' in state '{node.state}'"
                raise InvalidStateError(msg)
            parent = node.parent
            if parent is not None and parent.state != NodeState.CREATED:
                msg = (
                    f"Cannot provision node '{node.name}': parent "
                    f"'{parent.name}' is '{parent.state}'"
                )
                raise InvalidStateError(msg)
            self._check_cancelled(node)

            self._emit(EventType.NODE_CREATING, node)
            result = await self._provider.create_or_update(
                node.kind, node.resource_name, dict(node.config), parent=parent
            )
            if not result.success:
                node.state = NodeState.FAILED
                node.error = result.error
                node.partially_created = result.partial
                self._emit(
                    EventType.NODE_CREATE_FAILED,
                    node,
                    error=result.error,
                    partial=result.partial,
                )
                return False

            node.state = NodeState.CREATED
            node.snapshot = result.snapshot
            node.error = None
            self._emit(EventType.NODE_CREATED, node)
        return True

    # -- Update / delete / list --------------------------------------------------

    async def update(
        self, node: ResourceNode, patch: dict[str, Any]
    ) -> OperationResult:
        """Apply a partial config change to a created node.

        Idempotent: re-applying the same patch converges on the same state.
        A provider failure leaves the node CREATED with its previous config.
        """
        if node.state != NodeState.CREATED:
            msg = f"Cannot update node '{node.name}' in state '{node.state}'"
            raise InvalidStateError(msg)
        self._check_immutable(node, patch)
        self._check_cancelled(node)

        desired = {**node.config, **patch}
        result = await self._provider.create_or_update(
            node.kind, node.resource_name, desired, parent=node.parent
        )
        if not result.success:
            self._emit(
                EventType.NODE_UPDATE_FAILED,
                node,
                error=result.error,
                fields=sorted(patch),
            )
            return result

        node.config = desired
        node.snapshot = result.snapshot
        self._emit(EventType.NODE_UPDATED, node, fields=sorted(patch))
        return result

    async def delete(self, node: ResourceNode) -> OperationResult:
        """Delete a created node mid-run. An already-gone resource is success."""
        if node.state != NodeState.CREATED:
            msg = f"Cannot delete node '{node.name}' in state '{node.state}'"
            raise InvalidStateError(msg)
        self._check_cancelled(node)

        result = await self._provider.delete(
            node.kind, node.resource_name, parent=node.parent
        )
        if self._record_delete(node, result):
            return OperationResult.ok(snapshot=node.snapshot)
        return result

    async def list(
        self, kind: str, parent: ResourceNode | None = None
    ) -> OperationResult:
        """List resources of *kind* under *parent* through the provider."""
        self._check_cancelled(parent)
        result = await self._provider.list(kind, parent)
        if result.success:
            self._publish(
                OrchestratorEvent(
                    type=EventType.NODES_LISTED,
                    node=parent.name if parent is not None else None,
                    kind=kind,
                    detail={
                        "count": len(result.nodes),
                        "names": [n.resource_name for n in result.nodes],
                    },
                )
            )
        return result

    # -- Cleanup ---------------------------------------------------------------

    async def cleanup(self, plan: Plan) -> CleanupReport:
        """Best-effort, exhaustive teardown in reverse dependency order.

        Never raises: every delete failure is collected in the report and
        the pass continues with the remaining nodes. Cancellation is ignored.
        """
        report = CleanupReport()
        if not any(n.needs_delete for n in plan):
            report.nothing_to_clean_up = True
            self._publish(
                OrchestratorEvent(
                    type=EventType.NOTHING_TO_CLEAN_UP,
                    detail={"plan_id": plan.plan_id},
                )
            )
            return report

        deferred: list[ResourceNode] = []
        for node in plan.destroy_order():
            if not node.needs_delete:
                continue
            if self._cascading_ancestor(node) is not None:
                deferred.append(node)
                continue

            gone = await self._cleanup_node(node, report)
            if node.kind not in self._cascade_kinds:
                continue
            below = [d for d in deferred if node in d.ancestors()]
            for child in below:
                deferred.remove(child)
                if gone:
                    child.state = NodeState.DELETED
                    report.cascaded.append(child.name)
                    self._emit(
                        EventType.NODE_DELETE_CASCADED, child, via=node.name
                    )
                else:
                    await self._cleanup_node(child, report)

        report.leaked = [n.name for n in plan.destroy_order() if n.needs_delete]
        return report

    async def _cleanup_node(self, node: ResourceNode, report: CleanupReport) -> bool:
        self._emit(EventType.NODE_DELETING, node)
        try:
            result = await self._provider.delete(
                node.kind, node.resource_name, parent=node.parent
            )
        except Exception as exc:
            logger.exception(
                "orchestrator.provider_raised", node=node.name, kind=node.kind
            )
            report.errors[node.name] = exc
            self._emit(EventType.NODE_DELETE_FAILED, node, error=None, raised=True)
            return False

        gone = self._record_delete(node, result)
        if not gone:
            report.errors[node.name] = result.error or OrchestratorError(
                f"Delete of '{node.name}' failed without an error"
            )
        elif result.already_deleted:
            report.already_deleted.append(node.name)
        else:
            report.deleted.append(node.name)
        return gone

    def _record_delete(self, node: ResourceNode, result: OperationResult) -> bool:
        if result.success:
            node.state = NodeState.DELETED
            self._emit(EventType.NODE_DELETED, node)
            return True
        if result.already_deleted:
            node.state = NodeState.DELETED
            self._emit(EventType.NODE_ALREADY_DELETED, node)
            return True
        self._emit(EventType.NODE_DELETE_FAILED, node, error=result.error)
        return False

    def _cascading_ancestor(self, node: ResourceNode) -> ResourceNode | None:
        """Topmost live ancestor whose delete also removes *node*."""
        found: ResourceNode | None = None
        for ancestor in node.ancestors():
            if ancestor.kind in self._cascade_kinds and ancestor.needs_delete:
                found = ancestor
        return found

    # -- Scoped runs -------------------------------------------------------------

    @asynccontextmanager
    async def lifecycle(self, plan: Plan) -> AsyncIterator[RunScope]:
        """Scope whose exit always runs cleanup exactly once.

        ``scope.cleanup`` holds the CleanupReport once the block has exited.
        """
        self._cancelled = False
        scope = RunScope(plan=plan)
        try:
            yield scope
        finally:
            scope.cleanup = await self.cleanup(plan)
            self._cancelled = False

    async def run(self, plan: Plan, steps: Iterable[Step] = ()) -> RunReport:
        """Provision, run steps, then clean up, on every exit path.

        Orchestrator errors are recorded in the report; anything else
        propagates once cleanup has finished.
        """
        report = RunReport(plan_id=plan.plan_id)
        scope: RunScope | None = None
        try:
            async with self.lifecycle(plan) as scope:
                try:
                    report.provisioned = await self.provision(plan)
                    report.failed_nodes = [
                        n.name for n in plan if n.state == NodeState.FAILED
                    ]
                    if report.provisioned:
                        await self._run_steps(plan, steps, report)
                except RunCancelledError as exc:
                    report.cancelled = True
                    report.error = exc
                except OrchestratorError as exc:
                    logger.error(
                        "orchestrator.run_aborted",
                        plan_id=plan.plan_id,
                        error=str(exc),
                        error_kind=type(exc).__name__,
                    )
                    report.error = exc
        finally:
            if scope is not None:
                report.cleanup = scope.cleanup
            report.nodes = plan.states()
        return report

    async def _run_steps(
        self, plan: Plan, steps: Iterable[Step], report: RunReport
    ) -> None:
        for step in steps:
            result = await self._run_step(plan, step, report)
            if not result.success:
                logger.error(
                    "orchestrator.step_failed",
                    action=step.action.value,
                    node=step.node,
                    kind=step.kind,
                    error=str(result.error),
                )
                report.step_failures.append(StepFailure(step, result.error))
                return

    async def _run_step(
        self, plan: Plan, step: Step, report: RunReport
    ) -> OperationResult:
        if step.action == StepAction.UPDATE:
            assert step.node is not None
            return await self.update(plan.get(step.node), step.patch)
        if step.action == StepAction.DELETE:
            assert step.node is not None
            return await self.delete(plan.get(step.node))
        if step.action == StepAction.LIST:
            assert step.kind is not None
            parent = plan.get(step.node) if step.node else None
            result = await self.list(step.kind, parent)
            if result.success:
                key = f"{step.kind}@{step.node}" if step.node else step.kind
                report.listings[key] = [n.resource_name for n in result.nodes]
            return result
        msg = f"Unknown step action: {step.action}"
        raise ConfigurationError(msg)

    # -- Helpers ---------------------------------------------------------------

    def _check_immutable(self, node: ResourceNode, patch: dict[str, Any]) -> None:
        changed = sorted(
            key
            for key in immutable_fields(node.kind) & patch.keys()
            if node.config.get(key) != patch[key]
        )
        if changed:
            msg = (
                f"Cannot change immutable field(s) {changed} "
                f"of {node.kind} '{node.name}'"
            )
            raise ConfigurationError(msg)

    def _emit(
        self,
        event_type: EventType,
        node: ResourceNode | None,
        *,
        error: OrchestratorError | None = None,
        **detail: Any,
    ) -> None:
        self._publish(
            OrchestratorEvent(
                type=event_type,
                node=node.name if node is not None else None,
                kind=node.kind if node is not None else None,
                resource_name=node.resource_name if node is not None else None,
                detail=detail,
                error=error,
            )
        )

    def _publish(self, event: OrchestratorEvent) -> None:
        # A broken sink must not stop provisioning or teardown.
        try:
            self._sink.emit(event)
        except Exception:
            logger.exception(
                "orchestrator.sink_error", event_type=event.type.value, node=event.node
            )
