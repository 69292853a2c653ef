"""Unit tests for the RetryingProvider wrapper."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from resource_orchestrator.config.models import RetryConfig
from resource_orchestrator.orchestrator.errors import (
    AlreadyDeletedError,
    ConfigurationError,
    TransientProviderError,
)
from resource_orchestrator.orchestrator.models import OperationResult, ResourceKind
from resource_orchestrator.providers.base import ProviderAdapter
from resource_orchestrator.providers.memory import InMemoryProvider
from resource_orchestrator.providers.retry import RetryingProvider


def _fast(max_attempts: int = 3) -> RetryConfig:
    return RetryConfig(
        max_attempts=max_attempts,
        initial_wait_seconds=0,
        max_wait_seconds=0,
        jitter=0,
    )


class TestRetryingProvider:
    def test_satisfies_provider_protocol(self):
        wrapped = RetryingProvider(InMemoryProvider(), _fast())
        assert isinstance(wrapped, ProviderAdapter)

    def test_exposes_inner(self):
        inner = InMemoryProvider()
        assert RetryingProvider(inner, _fast()).inner is inner


@pytest.mark.asyncio
class TestRetryBehaviour:
    async def test_transient_errors_are_retried(self):
        inner = InMemoryProvider(
            fail_on={
                ("create", "rg1"): [
                    TransientProviderError("throttled"),
                    TransientProviderError("throttled"),
                ]
            }
        )
        provider = RetryingProvider(inner, _fast(max_attempts=3))

        result = await provider.create_or_update(ResourceKind.RESOURCE_GROUP, "rg1", {})

        assert result.success
        assert inner.calls_for("create") == ["rg1", "rg1", "rg1"]

    async def test_gives_up_and_returns_last_failure(self):
        inner = InMemoryProvider(
            fail_on={("create", "rg1"): TransientProviderError("still throttled")}
        )
        provider = RetryingProvider(inner, _fast(max_attempts=2))

        result = await provider.create_or_update(ResourceKind.RESOURCE_GROUP, "rg1", {})

        assert not result.success
        assert isinstance(result.error, TransientProviderError)
        assert len(inner.calls_for("create")) == 2

    async def test_non_transient_errors_not_retried(self):
        inner = InMemoryProvider(
            fail_on={("create", "rg1"): ConfigurationError("bad location")}
        )
        provider = RetryingProvider(inner, _fast(max_attempts=5))

        result = await provider.create_or_update(ResourceKind.RESOURCE_GROUP, "rg1", {})

        assert isinstance(result.error, ConfigurationError)
        assert len(inner.calls_for("create")) == 1

    async def test_already_deleted_passes_through(self):
        inner = InMemoryProvider()
        provider = RetryingProvider(inner, _fast())

        result = await provider.delete(ResourceKind.RESOURCE_GROUP, "missing")

        assert result.already_deleted
        assert isinstance(result.error, AlreadyDeletedError)
        assert inner.calls_for("delete") == ["missing"]

    async def test_list_is_retried(self):
        inner = AsyncMock()
        inner.list.side_effect = [
            OperationResult.failed(TransientProviderError("reset")),
            OperationResult.ok(nodes=[]),
        ]
        provider = RetryingProvider(inner, _fast())

        result = await provider.list(ResourceKind.RESOURCE_GROUP)

        assert result.success
        assert inner.list.await_count == 2

    async def test_exceptions_propagate(self):
        inner = AsyncMock()
        inner.delete.side_effect = RuntimeError("boom")
        provider = RetryingProvider(inner, _fast())

        with pytest.raises(RuntimeError, match="boom"):
            await provider.delete(ResourceKind.RESOURCE_GROUP, "rg1")
        assert inner.delete.await_count == 1
