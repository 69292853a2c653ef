"""Unit tests for provider-side resource naming."""

from __future__ import annotations

import re

from resource_orchestrator.orchestrator.models import ResourceKind
from resource_orchestrator.providers.naming import (
    name_factory,
    namespace_name,
    provider_name,
    random_name,
    random_suffix,
)


class TestRandomNames:
    def test_suffix_length_and_alphabet(self):
        suffix = random_suffix(12)
        assert len(suffix) == 12
        assert re.fullmatch(r"[a-z0-9]+", suffix)

    def test_random_name_keeps_prefix(self):
        name = random_name("queue1_", 8)
        assert name.startswith("queue1_")
        assert len(name) == len("queue1_") + 8

    def test_names_differ_between_calls(self):
        assert len({random_name("q", 8) for _ in range(20)}) == 20


class TestNamespaceName:
    def test_invalid_characters_replaced(self):
        assert namespace_name("name_Space.x") == "name-Space-x"

    def test_must_start_with_letter(self):
        assert namespace_name("1abc") == "ns-1abc"

    def test_truncated_to_50(self):
        assert len(namespace_name("a" * 80)) == 50

    def test_truncation_never_ends_with_hyphen(self):
        name = namespace_name("a" * 49 + "-bcd")
        assert name == "a" * 49
        assert name[-1].isalnum()

    def test_short_names_padded(self):
        assert namespace_name("ab") == "ab0000"
        assert namespace_name("abc-") == "abc000"

    def test_empty_name(self):
        assert namespace_name("__") == "ns0000"


class TestNameFactory:
    def test_namespace_names_sanitised(self):
        make = name_factory(6)
        name = make(ResourceKind.SERVICEBUS_NAMESPACE, "name_Space")
        assert re.fullmatch(r"name-Space[a-z0-9]{6}", name)

    def test_other_kinds_untouched(self):
        make = name_factory(6)
        name = make(ResourceKind.SERVICEBUS_QUEUE, "queue1_")
        assert re.fullmatch(r"queue1_[a-z0-9]{6}", name)

    def test_provider_name_passthrough(self):
        assert provider_name(ResourceKind.RESOURCE_GROUP, "rg_1") == "rg_1"
