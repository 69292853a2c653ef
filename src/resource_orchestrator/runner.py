"""Plan runner: wires config, provider and reporting into one run."""

from __future__ import annotations

import asyncio
import signal
from contextlib import suppress
from typing import Any

import structlog

from resource_orchestrator.config.models import PlanConfig, PlatformConfig
from resource_orchestrator.orchestrator.engine import Orchestrator, RunReport
from resource_orchestrator.orchestrator.errors import OrchestratorError
from resource_orchestrator.orchestrator.events import LoggingSink, ReportingSink
from resource_orchestrator.orchestrator.models import (
    OperationResult,
    Plan,
    ResourceNode,
)
from resource_orchestrator.providers.base import ProviderAdapter
from resource_orchestrator.providers.factory import create_provider
from resource_orchestrator.providers.naming import name_factory

logger = structlog.get_logger()


class UnavailableProvider:
    """Stands in when the real provider could not be constructed.

    Every call fails with the construction error, so a cleanup over a plan
    with nothing created stays a no-op.
    """

    def __init__(self, error: OrchestratorError) -> None:
        self._error = error

    async def create_or_update(
        self,
        kind: str,
        name: str,
        config: dict[str, Any],
        *,
        parent: ResourceNode | None = None,
    ) -> OperationResult:
        return OperationResult.failed(self._error)

    async def delete(
        self,
        kind: str,
        name: str,
        *,
        parent: ResourceNode | None = None,
    ) -> OperationResult:
        return OperationResult.failed(self._error)

    async def list(
        self, kind: str, parent: ResourceNode | None = None
    ) -> OperationResult:
        return OperationResult.failed(self._error)


class PlanRunner:
    """Executes one plan end-to-end: provision, steps, cleanup.

    SIGINT / SIGTERM request cancellation; the orchestrator stops at the
    next node boundary and still tears down what it created.
    """

    def __init__(
        self,
        plan_config: PlanConfig,
        platform: PlatformConfig,
        *,
        sink: ReportingSink | None = None,
        provider: ProviderAdapter | None = None,
    ) -> None:
        self._plan_config = plan_config
        self._platform = platform
        self._sink = sink or LoggingSink()
        self._provider = provider
        self._orchestrator: Orchestrator | None = None
        self.plan: Plan | None = None

    def run(self) -> RunReport:
        """Run the plan (blocking)."""
        return asyncio.run(self.run_async())

    def cancel(self) -> None:
        if self._orchestrator is not None:
            self._orchestrator.cancel()

    async def run_async(self) -> RunReport:
        plan, steps = Plan.from_config(
            self._plan_config,
            name_factory=name_factory(self._platform.name_suffix_length),
        )
        self.plan = plan

        try:
            provider = self._provider or create_provider(self._platform)
        except OrchestratorError as exc:
            logger.error(
                "runner.provider_unavailable",
                plan_id=plan.plan_id,
                error=str(exc),
            )
            orchestrator = Orchestrator(
                UnavailableProvider(exc), self._sink, self._platform.cleanup
            )
            report = RunReport(plan_id=plan.plan_id, error=exc)
            report.cleanup = await orchestrator.cleanup(plan)
            report.nodes = plan.states()
            return report

        self._orchestrator = Orchestrator(provider, self._sink, self._platform.cleanup)
        logger.info(
            "runner.started",
            plan_id=plan.plan_id,
            nodes=[n.resource_name for n in plan],
            steps=len(steps),
            provider=self._platform.provider.mode.value,
        )
        self._install_signal_handlers()
        try:
            report = await self._orchestrator.run(plan, steps)
        finally:
            self._remove_signal_handlers()

        logger.info(
            "runner.finished",
            plan_id=plan.plan_id,
            succeeded=report.succeeded,
            states={k: v.value for k, v in report.nodes.items()},
        )
        return report

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows event loops.
            with suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self._on_signal, sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.warning("runner.cancel_requested", signal=sig.name)
        self.cancel()
