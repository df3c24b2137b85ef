"""Variable Resolver — ``{{path.to.value}}`` template substitution.

Paths are dot-separated keys walked into the execution's variable scope.
A missing segment, or a segment that lands on a non-mapping value, yields
an empty string. Resolution is total: it never raises for a malformed
path or template.

Usage:
    VariableResolver.resolve("Hello {{user.name}}", context)   # "Hello Ann"
    VariableResolver.resolve_map(node.config, context)          # resolved copy
"""

import json
import re
from typing import Any, Mapping, Optional, Union

from workflow.models import ExecutionContext

TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

_MISSING = object()

Scope = Union[ExecutionContext, Mapping[str, Any]]


def _variables(scope: Optional[Scope]) -> Mapping[str, Any]:
    if scope is None:
        return {}
    if isinstance(scope, ExecutionContext):
        return scope.variables
    return scope


def stringify(value: Any) -> str:
    """Text form of a variable value as it appears inside a template."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


class VariableResolver:
    """Resolves templates and dotted paths against a variable scope."""

    @staticmethod
    def lookup(path: str, scope: Optional[Scope]) -> Any:
        """Walk a dotted path; return the raw value or a private sentinel when missing."""
        current: Any = _variables(scope)
        for segment in path.strip().split("."):
            segment = segment.strip()
            if not segment or not isinstance(current, Mapping) or segment not in current:
                return _MISSING
            current = current[segment]
        return current

    @classmethod
    def get_value(cls, path: str, scope: Optional[Scope], default: Any = None) -> Any:
        """Raw value at a dotted path, or ``default`` when any segment is missing."""
        if not path:
            return default
        value = cls.lookup(path, scope)
        return default if value is _MISSING else value

    @classmethod
    def has_template(cls, value: Any) -> bool:
        return isinstance(value, str) and TEMPLATE_PATTERN.search(value) is not None

    @classmethod
    def resolve(cls, template: Any, scope: Optional[Scope]) -> str:
        """Replace every ``{{path}}`` in template with its stringified value."""
        if template is None:
            return ""
        if not isinstance(template, str):
            return stringify(template)

        def _replace(match: re.Match) -> str:
            value = cls.lookup(match.group(1), scope)
            return "" if value is _MISSING else stringify(value)

        return TEMPLATE_PATTERN.sub(_replace, template)

    @classmethod
    def resolve_value(cls, value: Any, scope: Optional[Scope]) -> Any:
        """Resolve one config value.

        A string that is exactly one template keeps the referenced value's
        type (a list stays a list); mixed text becomes a string.
        """
        if isinstance(value, str):
            match = TEMPLATE_PATTERN.fullmatch(value.strip())
            if match:
                raw = cls.lookup(match.group(1), scope)
                return "" if raw is _MISSING else raw
            return cls.resolve(value, scope)
        if isinstance(value, Mapping):
            return cls.resolve_map(value, scope)
        if isinstance(value, list):
            return [cls.resolve_value(v, scope) for v in value]
        return value

    @classmethod
    def resolve_map(cls, data: Optional[Mapping[str, Any]], scope: Optional[Scope]) -> dict:
        """Return a copy of data with every string value resolved, recursing into nested maps and lists."""
        if not data:
            return {}
        return {key: cls.resolve_value(value, scope) for key, value in data.items()}
