"""Retry layer: re-issues provider calls that failed with a transient error."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential_jitter,
)

from resource_orchestrator.config.models import RetryConfig
from resource_orchestrator.orchestrator.errors import TransientProviderError
from resource_orchestrator.orchestrator.models import OperationResult, ResourceNode
from resource_orchestrator.providers.base import ProviderAdapter

logger = structlog.get_logger()


def _is_transient(result: OperationResult) -> bool:
    return not result.success and isinstance(result.error, TransientProviderError)


def _last_result(state: RetryCallState) -> OperationResult:
    assert state.outcome is not None
    return state.outcome.result()  # type: ignore[no-any-return]


class RetryingProvider:
    """Wraps a ProviderAdapter and retries TransientProviderError results.

    Retries stay in the adapter layer so the orchestrator itself never
    retries. When attempts run out, the last failed result is returned.
    """

    def __init__(self, inner: ProviderAdapter, config: RetryConfig) -> None:
        self._inner = inner
        self._config = config

    @property
    def inner(self) -> ProviderAdapter:
        return self._inner

    async def create_or_update(
        self,
        kind: str,
        name: str,
        config: dict[str, Any],
        *,
        parent: ResourceNode | None = None,
    ) -> OperationResult:
        return await self._call(
            "create_or_update",
            kind,
            name,
            lambda: self._inner.create_or_update(kind, name, config, parent=parent),
        )

    async def delete(
        self,
        kind: str,
        name: str,
        *,
        parent: ResourceNode | None = None,
    ) -> OperationResult:
        return await self._call(
            "delete",
            kind,
            name,
            lambda: self._inner.delete(kind, name, parent=parent),
        )

    async def list(
        self, kind: str, parent: ResourceNode | None = None
    ) -> OperationResult:
        name = parent.resource_name if parent is not None else ""
        return await self._call(
            "list", kind, name, lambda: self._inner.list(kind, parent)
        )

    async def _call(
        self,
        operation: str,
        kind: str,
        name: str,
        fn: Callable[[], Awaitable[OperationResult]],
    ) -> OperationResult:
        cfg = self._config

        def _before_sleep(state: RetryCallState) -> None:
            result = _last_result(state)
            logger.warning(
                "provider.retrying",
                operation=operation,
                kind=kind,
                name=name,
                attempt=state.attempt_number,
                max_attempts=cfg.max_attempts,
                error=str(result.error),
            )

        retrying = AsyncRetrying(
            retry=retry_if_result(_is_transient),
            stop=stop_after_attempt(cfg.max_attempts),
            wait=wait_exponential_jitter(
                initial=cfg.initial_wait_seconds,
                max=cfg.max_wait_seconds,
                jitter=cfg.jitter,
            ),
            before_sleep=_before_sleep,
            retry_error_callback=_last_result,
            reraise=True,
        )
        return await retrying(fn)  # type: ignore[no-any-return]
