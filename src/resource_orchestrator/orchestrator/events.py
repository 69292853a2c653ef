"""Structured orchestration events and the sinks that receive them.

The orchestrator never formats text; it emits :class:`OrchestratorEvent`
objects and leaves rendering to whichever :class:`ReportingSink` is wired in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

import structlog

from resource_orchestrator.orchestrator.errors import OrchestratorError

logger = structlog.get_logger()


class EventType(StrEnum):
    NODE_CREATING = "node_creating"
    NODE_CREATED = "node_created"
    NODE_CREATE_FAILED = "node_create_failed"
    NODE_UPDATED = "node_updated"
    NODE_UPDATE_FAILED = "node_update_failed"
    NODE_DELETING = "node_deleting"
    NODE_DELETED = "node_deleted"
    NODE_ALREADY_DELETED = "node_already_deleted"
    NODE_DELETE_FAILED = "node_delete_failed"
    NODE_DELETE_CASCADED = "node_delete_cascaded"
    NODES_LISTED = "nodes_listed"
    NOTHING_TO_CLEAN_UP = "nothing_to_clean_up"
    RUN_CANCELLED = "run_cancelled"


_FAILURES = frozenset(
    {
        EventType.NODE_CREATE_FAILED,
        EventType.NODE_UPDATE_FAILED,
        EventType.NODE_DELETE_FAILED,
    }
)
_WARNINGS = frozenset({EventType.RUN_CANCELLED, EventType.NODE_ALREADY_DELETED})


@dataclass(frozen=True)
class OrchestratorEvent:
    type: EventType
    node: str | None = None
    kind: str | None = None
    resource_name: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    error: OrchestratorError | None = None

    @property
    def is_failure(self) -> bool:
        return self.type in _FAILURES


@runtime_checkable
class ReportingSink(Protocol):
    """Receives orchestration events as they happen."""

    def emit(self, event: OrchestratorEvent) -> None:
        """Handle a single event."""
        ...


class LoggingSink:
    """Writes every event to structlog as ``orchestrator.<event type>``."""

    def emit(self, event: OrchestratorEvent) -> None:
        fields: dict[str, Any] = dict(event.detail)
        if event.node is not None:
            fields["node"] = event.node
        if event.kind is not None:
            fields["kind"] = event.kind
        if event.resource_name is not None:
            fields["resource"] = event.resource_name
        if event.error is not None:
            fields["error"] = str(event.error)
            fields["error_kind"] = type(event.error).__name__

        key = f"orchestrator.{event.type.value}"
        if event.is_failure:
            logger.error(key, **fields)
        elif event.type in _WARNINGS:
            logger.warning(key, **fields)
        else:
            logger.info(key, **fields)


class RecordingSink:
    """Keeps events in memory, in emission order."""

    def __init__(self) -> None:
        self.events: list[OrchestratorEvent] = []

    def emit(self, event: OrchestratorEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[OrchestratorEvent]:
        return [e for e in self.events if e.type == event_type]

    def nodes(self, event_type: EventType) -> list[str]:
        """Node names for every event of *event_type*, in order."""
        return [e.node for e in self.of_type(event_type) if e.node is not None]


class MultiSink:
    """Fans each event out to several sinks."""

    def __init__(self, *sinks: ReportingSink) -> None:
        self._sinks = list(sinks)

    def emit(self, event: OrchestratorEvent) -> None:
        for sink in self._sinks:
            sink.emit(event)
