"""Resource naming conventions for provider-side names."""

from __future__ import annotations

import re
import secrets
import string
from collections.abc import Callable

from resource_orchestrator.orchestrator.models import ResourceKind

_ALPHABET = string.ascii_lowercase + string.digits
_NAMESPACE_MIN = 6
_NAMESPACE_MAX = 50


def random_suffix(length: int = 8) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def random_name(prefix: str, length: int = 8) -> str:
    """Append a random lowercase suffix to *prefix*, e.g. ``queue1_x7k2p9ab``."""
    return f"{prefix}{random_suffix(length)}"


def namespace_name(name: str) -> str:
    """Make a name valid for a Service Bus namespace.

    Namespaces allow only letters, digits and hyphens, are 6 to 50
    characters long, start with a letter and end with a letter or digit.
    Short names are padded with zeros.
    """
    safe = re.sub(r"[^a-zA-Z0-9-]", "-", name).strip("-")
    if not safe or not safe[0].isalpha():
        safe = f"ns-{safe}"
    safe = safe[:_NAMESPACE_MAX].rstrip("-")
    return safe.ljust(_NAMESPACE_MIN, "0")


def name_factory(length: int = 8) -> Callable[[str, str], str]:
    """Build the randomizer used for nodes declared with ``randomize_name``."""

    def _make(kind: str, base: str) -> str:
        return provider_name(kind, random_name(base, length))

    return _make


def provider_name(kind: str, name: str) -> str:
    """Apply kind-specific naming rules to a provider-side name."""
    if kind == ResourceKind.SERVICEBUS_NAMESPACE:
        return namespace_name(name)
    return name
