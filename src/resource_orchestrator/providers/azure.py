"""AzureServiceBusProvider: resource groups, namespaces, queues and rules via ARM."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import structlog
from pydantic import TypeAdapter

from resource_orchestrator.config.models import AzureConfig
from resource_orchestrator.orchestrator.errors import (
    AlreadyDeletedError,
    ConfigurationError,
    OrchestratorError,
    TransientProviderError,
)
from resource_orchestrator.orchestrator.models import (
    NodeState,
    OperationResult,
    ResourceKind,
    ResourceNode,
)

logger = structlog.get_logger()

_DURATION_FIELDS = frozenset(
    {
        "default_message_time_to_live",
        "auto_delete_on_idle",
        "duplicate_detection_history_time_window",
        "lock_duration",
    }
)
_TRANSIENT_STATUS = frozenset({408, 429})
_duration = TypeAdapter(timedelta)


@dataclass
class _LongRunning:
    """An ARM poller whose completion still has to be awaited."""

    poller: Any


def build_credential(config: AzureConfig) -> Any:
    """Service-principal credential when configured, else the default chain."""
    from azure.identity import ClientSecretCredential, DefaultAzureCredential

    if config.uses_service_principal:
        assert config.client_secret is not None
        return ClientSecretCredential(
            tenant_id=config.tenant_id,
            client_id=config.client_id,
            client_secret=config.client_secret.get_secret_value(),
        )
    return DefaultAzureCredential()


def classify_error(exc: Exception, *, deleting: bool = False) -> OrchestratorError:
    """Map an Azure SDK exception onto the orchestrator's error taxonomy."""
    from azure.core.exceptions import (
        AzureError,
        ClientAuthenticationError,
        HttpResponseError,
        ResourceNotFoundError,
        ServiceRequestError,
        ServiceResponseError,
    )

    message = str(exc) or type(exc).__name__
    if isinstance(exc, ResourceNotFoundError) and deleting:
        return AlreadyDeletedError(message)
    if isinstance(exc, ClientAuthenticationError):
        return ConfigurationError(message)
    if isinstance(exc, (ServiceRequestError, ServiceResponseError, TimeoutError)):
        return TransientProviderError(message)
    if isinstance(exc, HttpResponseError):
        status = exc.status_code or 0
        if status in _TRANSIENT_STATUS or status >= 500:
            return TransientProviderError(message)
        return ConfigurationError(message)
    if isinstance(exc, (AzureError, ValueError, TypeError)):
        return ConfigurationError(message)
    raise exc


def _as_dict(model: Any) -> dict[str, Any] | None:
    if model is None:
        return None
    if hasattr(model, "as_dict"):
        return model.as_dict()  # type: ignore[no-any-return]
    if isinstance(model, dict):
        return dict(model)
    return {"value": model}


def queue_parameters(config: dict[str, Any]) -> dict[str, Any]:
    """Queue options with ISO-8601 / seconds durations converted to timedelta."""
    params = dict(config)
    for key in _DURATION_FIELDS & params.keys():
        params[key] = _duration.validate_python(params[key])
    return params


class AzureServiceBusProvider:
    """Drives Azure Resource Manager for the Service Bus resource family.

    Resource groups go through ``azure-mgmt-resource``; namespaces, queues and
    authorization rules through ``azure-mgmt-servicebus``. Scoping (resource
    group, namespace, queue) is read from the parent chain of each call.
    Blocking SDK calls and long-running pollers run in the default executor.
    """

    def __init__(self, config: AzureConfig, credential: Any | None = None) -> None:
        self._config = config
        self._credential = credential
        self._resources: Any = None
        self._servicebus: Any = None

    def _clients(self) -> tuple[Any, Any]:
        if self._servicebus is None:
            from azure.mgmt.resource import ResourceManagementClient
            from azure.mgmt.servicebus import ServiceBusManagementClient

            if self._credential is None:
                self._credential = build_credential(self._config)
            self._resources = ResourceManagementClient(
                self._credential, self._config.subscription_id
            )
            self._servicebus = ServiceBusManagementClient(
                self._credential, self._config.subscription_id
            )
        return self._resources, self._servicebus

    # -- ProviderAdapter -------------------------------------------------------

    async def create_or_update(
        self,
        kind: str,
        name: str,
        config: dict[str, Any],
        *,
        parent: ResourceNode | None = None,
    ) -> OperationResult:
        return await self._execute(
            "create", kind, name, lambda: self._create(kind, name, config, parent)
        )

    async def delete(
        self,
        kind: str,
        name: str,
        *,
        parent: ResourceNode | None = None,
    ) -> OperationResult:
        return await self._execute(
            "delete", kind, name, lambda: self._delete(kind, name, parent)
        )

    async def list(
        self, kind: str, parent: ResourceNode | None = None
    ) -> OperationResult:
        loop = asyncio.get_running_loop()
        try:
            items = await loop.run_in_executor(
                None, lambda: list(self._list(kind, parent))
            )
        except Exception as exc:
            error = classify_error(exc)
            logger.warning("azure.list_failed", kind=kind, error=str(error))
            return OperationResult.failed(error)

        nodes = [
            ResourceNode(
                name=item.name,
                kind=kind,
                parent=parent,
                state=NodeState.CREATED,
                snapshot=_as_dict(item),
            )
            for item in items
        ]
        logger.info("azure.listed", kind=kind, count=len(nodes))
        return OperationResult.ok(nodes=nodes)

    # -- Execution -------------------------------------------------------------

    async def _execute(
        self,
        operation: str,
        kind: str,
        name: str,
        submit: Callable[[], Any],
    ) -> OperationResult:
        loop = asyncio.get_running_loop()
        deleting = operation == "delete"
        try:
            outcome = await loop.run_in_executor(None, submit)
        except Exception as exc:
            error = classify_error(exc, deleting=deleting)
            logger.warning(
                f"azure.{operation}_failed", kind=kind, name=name, error=str(error)
            )
            return OperationResult.failed(error)

        if isinstance(outcome, _LongRunning):
            poller = outcome.poller
            timeout = self._config.operation_timeout_seconds
            try:
                outcome = await loop.run_in_executor(
                    None, lambda: poller.result(timeout=timeout)
                )
            except Exception as exc:
                error = classify_error(exc, deleting=deleting)
                logger.warning(
                    f"azure.{operation}_failed",
                    kind=kind,
                    name=name,
                    error=str(error),
                    stage="polling",
                )
                # The request was accepted, so a create may have left a resource.
                return OperationResult.failed(error, partial=not deleting)
            if not poller.done():
                msg = f"{kind} '{name}' still in progress after {timeout:.0f}s"
                logger.warning(f"azure.{operation}_timed_out", kind=kind, name=name)
                return OperationResult.failed(
                    TransientProviderError(msg), partial=not deleting
                )

        logger.info(f"azure.{operation}d", kind=kind, name=name)
        return OperationResult.ok(snapshot=_as_dict(outcome))

    # -- Per-kind calls --------------------------------------------------------

    def _create(
        self,
        kind: str,
        name: str,
        config: dict[str, Any],
        parent: ResourceNode | None,
    ) -> Any:
        resources, servicebus = self._clients()
        scope = _scope(parent)

        if kind == ResourceKind.RESOURCE_GROUP:
            params: dict[str, Any] = {
                "location": config.get("location", self._config.location)
            }
            if "tags" in config:
                params["tags"] = config["tags"]
            return resources.resource_groups.create_or_update(name, params)

        from azure.mgmt.servicebus.models import (
            SBAuthorizationRule,
            SBNamespace,
            SBQueue,
            SBSku,
        )

        if kind == ResourceKind.SERVICEBUS_NAMESPACE:
            sku = config.get("sku", "Standard")
            namespace = SBNamespace(
                location=config.get("location", self._config.location),
                sku=SBSku(name=sku, tier=sku),
                tags=config.get("tags"),
            )
            return _LongRunning(
                servicebus.namespaces.begin_create_or_update(
                    _require(scope, "resource_group", kind),
                    name,
                    namespace,
                )
            )
        if kind == ResourceKind.SERVICEBUS_QUEUE:
            return servicebus.queues.create_or_update(
                _require(scope, "resource_group", kind),
                _require(scope, "namespace", kind),
                name,
                SBQueue(**queue_parameters(config)),
            )
        if kind == ResourceKind.QUEUE_AUTHORIZATION_RULE:
            return servicebus.queues.create_or_update_authorization_rule(
                _require(scope, "resource_group", kind),
                _require(scope, "namespace", kind),
                _require(scope, "queue", kind),
                name,
                SBAuthorizationRule(rights=list(config.get("rights", []))),
            )
        if kind == ResourceKind.NAMESPACE_AUTHORIZATION_RULE:
            return servicebus.namespaces.create_or_update_authorization_rule(
                _require(scope, "resource_group", kind),
                _require(scope, "namespace", kind),
                name,
                SBAuthorizationRule(rights=list(config.get("rights", []))),
            )
        msg = f"Unsupported resource kind '{kind}'"
        raise ValueError(msg)

    def _delete(self, kind: str, name: str, parent: ResourceNode | None) -> Any:
        resources, servicebus = self._clients()
        scope = _scope(parent)

        if kind == ResourceKind.RESOURCE_GROUP:
            return _LongRunning(resources.resource_groups.begin_delete(name))
        if kind == ResourceKind.SERVICEBUS_NAMESPACE:
            return _LongRunning(
                servicebus.namespaces.begin_delete(
                    _require(scope, "resource_group", kind), name
                )
            )
        if kind == ResourceKind.SERVICEBUS_QUEUE:
            return servicebus.queues.delete(
                _require(scope, "resource_group", kind),
                _require(scope, "namespace", kind),
                name,
            )
        if kind == ResourceKind.QUEUE_AUTHORIZATION_RULE:
            return servicebus.queues.delete_authorization_rule(
                _require(scope, "resource_group", kind),
                _require(scope, "namespace", kind),
                _require(scope, "queue", kind),
                name,
            )
        if kind == ResourceKind.NAMESPACE_AUTHORIZATION_RULE:
            return servicebus.namespaces.delete_authorization_rule(
                _require(scope, "resource_group", kind),
                _require(scope, "namespace", kind),
                name,
            )
        msg = f"Unsupported resource kind '{kind}'"
        raise ValueError(msg)

    def _list(self, kind: str, parent: ResourceNode | None) -> Any:
        resources, servicebus = self._clients()
        scope = _scope(parent)

        if kind == ResourceKind.RESOURCE_GROUP:
            return resources.resource_groups.list()
        if kind == ResourceKind.SERVICEBUS_NAMESPACE:
            return servicebus.namespaces.list_by_resource_group(
                _require(scope, "resource_group", kind)
            )
        if kind == ResourceKind.SERVICEBUS_QUEUE:
            return servicebus.queues.list_by_namespace(
                _require(scope, "resource_group", kind),
                _require(scope, "namespace", kind),
            )
        if kind == ResourceKind.QUEUE_AUTHORIZATION_RULE:
            return servicebus.queues.list_authorization_rules(
                _require(scope, "resource_group", kind),
                _require(scope, "namespace", kind),
                _require(scope, "queue", kind),
            )
        if kind == ResourceKind.NAMESPACE_AUTHORIZATION_RULE:
            return servicebus.namespaces.list_authorization_rules(
                _require(scope, "resource_group", kind),
                _require(scope, "namespace", kind),
            )
        msg = f"Unsupported resource kind '{kind}'"
        raise ValueError(msg)


_SCOPE_KEYS: dict[str, str] = {
    ResourceKind.RESOURCE_GROUP: "resource_group",
    ResourceKind.SERVICEBUS_NAMESPACE: "namespace",
    ResourceKind.SERVICEBUS_QUEUE: "queue",
}


def _scope(parent: ResourceNode | None) -> dict[str, str]:
    """Resource group / namespace / queue names from a node's parent chain."""
    if parent is None:
        return {}
    scope: dict[str, str] = {}
    for node in (parent, *parent.ancestors()):
        key = _SCOPE_KEYS.get(node.kind)
        if key is not None:
            scope.setdefault(key, node.resource_name)
    return scope


def _require(scope: dict[str, str], key: str, kind: str) -> str:
    try:
        return scope[key]
    except KeyError:
        msg = f"{kind} needs a {key.replace('_', ' ')} ancestor"
        raise ValueError(msg) from None
