"""Tests for the shared comparison operators."""

import pytest

from handlers.operators import compare, is_empty, normalize_operator


@pytest.mark.unit
class TestCompare:

    @pytest.mark.parametrize("actual,operator,expected,result", [
        (5, "equals", "5", True),
        ("abc", "not_equals", "abd", True),
        ("Hello world", "contains", "world", True),
        (["a", "b"], "contains", "b", True),
        ("abc", "starts_with", "ab", True),
        ("abc", "ends_with", "bc", True),
        (10, "greater_than", 9.5, True),
        ("10", "less_than_or_equal", 10, True),
        ("abc", "greater_than", 1, False),
        ("gold", "in", "gold, silver", True),
        (3, "not_in", [1, 2], True),
    ])
    def test_binary(self, actual, operator, expected, result):
        assert compare(actual, operator, expected) is result

    def test_symbol_aliases(self):
        assert compare(3, ">=", 3)
        assert normalize_operator("!=") == "not_equals"
        assert normalize_operator(None) == "equals"

    def test_null_only_satisfies_null_checks(self):
        assert compare(None, "is_null")
        assert compare(None, "is_empty")
        assert not compare(None, "equals", None)
        assert not compare(None, "not_equals", "x")
        assert not compare(None, "not_contains", "x")

    def test_empty_values(self):
        assert is_empty("  ")
        assert is_empty([])
        assert not is_empty(0)
        assert compare("x", "is_not_empty")

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            compare(1, "resembles", 2)
