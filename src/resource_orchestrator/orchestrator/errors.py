"""Error taxonomy for provider calls and orchestration."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for every error the orchestrator classifies."""

    retryable: bool = False


class ConfigurationError(OrchestratorError):
    """Invalid or missing required option. Fatal, never retried."""


class TransientProviderError(OrchestratorError):
    """Network or throttling failure. The adapter layer may retry it."""

    retryable = True


class InvalidStateError(OrchestratorError):
    """Operation attempted on a node in the wrong lifecycle state."""


class AlreadyDeletedError(OrchestratorError):
    """The resource is already gone. Treated as success during cleanup."""


class RunCancelledError(OrchestratorError):
    """The run was cancelled at a node boundary."""
