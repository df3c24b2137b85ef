"""Comparison operators shared by condition nodes and filter_collection.

A null actual value only satisfies ``is_null`` and ``is_empty``. Ordering
operators compare numerically and are false when either side is not a
number.
"""

from typing import Any

from core.utils import to_number
from workflow.resolver import stringify

ALIASES = {
    "==": "equals",
    "!=": "not_equals",
    ">": "greater_than",
    "<": "less_than",
    ">=": "greater_than_or_equal",
    "<=": "less_than_or_equal",
}


def normalize_operator(operator: Any) -> str:
    name = str(operator or "equals").strip()
    return ALIASES.get(name, name.lower())


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _equal(actual: Any, expected: Any) -> bool:
    left, right = to_number(actual), to_number(expected)
    if left is not None and right is not None:
        return left == right
    return stringify(actual) == stringify(expected)


def _members(expected: Any) -> list:
    if isinstance(expected, (list, tuple, set)):
        return list(expected)
    if isinstance(expected, str):
        return [part.strip() for part in expected.split(",")]
    return [expected]


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple, set)):
        return any(_equal(item, expected) for item in actual)
    if isinstance(actual, dict):
        return stringify(expected) in actual
    return stringify(expected) in stringify(actual)


def _ordered(actual: Any, expected: Any, check) -> bool:
    left, right = to_number(actual), to_number(expected)
    if left is None or right is None:
        return False
    return check(left, right)


def compare(actual: Any, operator: Any, expected: Any = None) -> bool:
    """Evaluate ``actual <operator> expected``.

    Raises:
        ValueError: Unknown operator
    """
    op = normalize_operator(operator)

    if op == "is_null":
        return actual is None
    if op == "is_not_null":
        return actual is not None
    if op == "is_empty":
        return is_empty(actual)
    if op == "is_not_empty":
        return not is_empty(actual)

    if op not in _BINARY:
        raise ValueError(f"Unknown operator: {operator}")
    if actual is None:
        return False
    return _BINARY[op](actual, expected)


_BINARY = {
    "equals": _equal,
    "not_equals": lambda a, e: not _equal(a, e),
    "contains": _contains,
    "not_contains": lambda a, e: not _contains(a, e),
    "starts_with": lambda a, e: stringify(a).startswith(stringify(e)),
    "ends_with": lambda a, e: stringify(a).endswith(stringify(e)),
    "greater_than": lambda a, e: _ordered(a, e, lambda x, y: x > y),
    "less_than": lambda a, e: _ordered(a, e, lambda x, y: x < y),
    "greater_than_or_equal": lambda a, e: _ordered(a, e, lambda x, y: x >= y),
    "less_than_or_equal": lambda a, e: _ordered(a, e, lambda x, y: x <= y),
    "in": lambda a, e: any(_equal(a, m) for m in _members(e)),
    "not_in": lambda a, e: not any(_equal(a, m) for m in _members(e)),
}
