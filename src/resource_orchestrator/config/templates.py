"""Plan templates: ready-made scenarios shipped as YAML."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from resource_orchestrator.config.defaults import merge_configs
from resource_orchestrator.config.models import PlanConfig

TEMPLATES_DIR = Path(__file__).parent / "templates"
DEFAULT_TEMPLATE = "servicebus_queue_features"


def available_templates() -> list[str]:
    return sorted(p.stem for p in TEMPLATES_DIR.glob("*.yaml"))


def load_template(name: str = DEFAULT_TEMPLATE) -> dict[str, Any]:
    """Load a YAML template by name from the templates directory."""
    path = TEMPLATES_DIR / f"{name}.yaml"
    if not path.exists():
        msg = f"Template '{name}' not found at {path}"
        raise FileNotFoundError(msg)
    with path.open() as f:
        return yaml.safe_load(f)  # type: ignore[no-any-return]


def build_plan_config(
    overrides: dict[str, Any] | None = None,
    *,
    template: str = DEFAULT_TEMPLATE,
) -> PlanConfig:
    """Build a validated PlanConfig by merging a template with overrides.

    Lists (``nodes``, ``steps``) are replaced wholesale, not merged.
    """
    base = load_template(template)
    merged = merge_configs(base, overrides or {})
    return PlanConfig.model_validate(merged)
