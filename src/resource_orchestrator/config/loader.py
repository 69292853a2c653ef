"""Loads platform and plan YAML files.

Both kinds of file support ``${VAR}`` and ``${VAR:-default}`` references in
any string value. A plan file may also name a built-in template to start
from::

    template: servicebus_queue_features
    steps: []

Its own keys are then merged over the template (lists replace lists).
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from resource_orchestrator.config.defaults import load_defaults, merge_configs
from resource_orchestrator.config.models import PlanConfig, PlatformConfig
from resource_orchestrator.config.templates import load_template

_ModelT = TypeVar("_ModelT", bound=BaseModel)

_REFERENCE = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<default>(?:[^}\\]|\\.)*))?}")

TEMPLATE_KEY = "template"


def resolve_env_vars(data: Any, environ: Mapping[str, str] | None = None) -> Any:
    """Expand ``${VAR}`` / ``${VAR:-default}`` in every string inside *data*.

    *environ* defaults to ``os.environ``. A reference to an unset variable
    without a default raises ValueError.
    """
    env = os.environ if environ is None else environ

    def expand(match: re.Match[str]) -> str:
        name, default = match.group("name", "default")
        if name in env:
            return env[name]
        if default is None:
            msg = f"Environment variable '{name}' is not set and no default provided"
            raise ValueError(msg)
        return default.replace("\\}", "}")

    def walk(value: Any) -> Any:
        match value:
            case str():
                return _REFERENCE.sub(expand, value)
            case dict():
                return {k: walk(v) for k, v in value.items()}
            case list():
                return [walk(v) for v in value]
            case _:
                return value

    return walk(data)


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Read *path* as a YAML mapping with env references resolved.

    Raises FileNotFoundError, ValueError (parse error, with position) or
    TypeError (top level is not a mapping).
    """
    p = Path(path)
    if not p.exists():
        msg = f"Config file not found: {p}"
        raise FileNotFoundError(msg)
    try:
        data = yaml.safe_load(p.read_text())
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
        msg = f"Failed to parse YAML in {p}{where}: {exc}"
        raise ValueError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {p}, got {type(data).__name__}"
        raise TypeError(msg)
    return resolve_env_vars(data)  # type: ignore[no-any-return]


def _validate(model: type[_ModelT], data: dict[str, Any], label: str) -> _ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid {label}:\n{exc}"
        raise ValueError(msg) from exc


def load_platform_config(path: str | Path | None = None) -> PlatformConfig:
    """Built-in platform defaults, deep-merged with the file at *path* if given."""
    data = resolve_env_vars(load_defaults("platform"))
    if path is not None:
        data = merge_configs(data, load_yaml(path))
    source = path or "built-in defaults"
    return _validate(PlatformConfig, data, f"platform config ({source})")


def load_plan_config(path: str | Path) -> PlanConfig:
    """Load a plan file, starting from its ``template`` when it names one.

    ``plan_id`` defaults to the file name without its extension.
    """
    data = load_yaml(path)
    template = data.pop(TEMPLATE_KEY, None)
    if template is not None:
        try:
            base = load_template(str(template))
        except FileNotFoundError as exc:
            msg = f"Invalid plan config ({path}): unknown template '{template}'"
            raise ValueError(msg) from exc
        data = merge_configs(base, data)
    data.setdefault("plan_id", Path(path).stem)
    return _validate(PlanConfig, data, f"plan config ({path})")
