"""Tests for {{template}} resolution against the variable scope."""

import pytest

from helpers import make_context
from workflow.resolver import VariableResolver, stringify


@pytest.fixture
def context():
    return make_context(
        {
            "user": {"name": "Ann", "address": {"city": "Sofia"}},
            "count": 3,
            "ratio": 2.0,
            "active": True,
            "tags": ["a", "b"],
            "empty": None,
        }
    )


@pytest.mark.unit
class TestResolve:

    def test_simple_path(self, context):
        assert VariableResolver.resolve("Hello {{user.name}}", context) == "Hello Ann"

    def test_missing_path_renders_empty(self, context):
        assert VariableResolver.resolve("Hello {{user.nickname}}", context) == "Hello "

    def test_segment_on_scalar_renders_empty(self, context):
        assert VariableResolver.resolve("{{count.value}}", context) == ""

    def test_nested_path(self, context):
        assert VariableResolver.resolve("{{user.address.city}}", context) == "Sofia"

    def test_whitespace_inside_braces(self, context):
        assert VariableResolver.resolve("{{ user.name }}", context) == "Ann"

    def test_multiple_templates(self, context):
        result = VariableResolver.resolve("{{user.name}} has {{count}} items", context)
        assert result == "Ann has 3 items"

    def test_scalar_formatting(self, context):
        assert VariableResolver.resolve("{{ratio}}", context) == "2"
        assert VariableResolver.resolve("{{active}}", context) == "true"
        assert VariableResolver.resolve("{{empty}}", context) == ""

    def test_list_renders_as_json(self, context):
        assert VariableResolver.resolve("{{tags}}", context) == '["a", "b"]'

    def test_plain_text_passthrough(self, context):
        assert VariableResolver.resolve("plain text", context) == "plain text"

    def test_unterminated_template_left_alone(self, context):
        assert VariableResolver.resolve("{{user.name", context) == "{{user.name"
        assert VariableResolver.resolve("{{}}", context) == "{{}}"

    def test_none_template(self, context):
        assert VariableResolver.resolve(None, context) == ""

    def test_plain_mapping_scope(self):
        assert VariableResolver.resolve("{{a.b}}", {"a": {"b": 1}}) == "1"


@pytest.mark.unit
class TestResolveValue:

    def test_single_template_keeps_type(self, context):
        assert VariableResolver.resolve_value("{{tags}}", context) == ["a", "b"]
        assert VariableResolver.resolve_value("{{count}}", context) == 3

    def test_single_missing_template_is_empty_string(self, context):
        assert VariableResolver.resolve_value("{{nope}}", context) == ""

    def test_mixed_text_becomes_string(self, context):
        assert VariableResolver.resolve_value("n={{count}}", context) == "n=3"

    def test_non_string_passthrough(self, context):
        assert VariableResolver.resolve_value(42, context) == 42

    def test_resolve_map_recurses(self, context):
        resolved = VariableResolver.resolve_map(
            {"to": "{{user.name}}", "meta": {"city": "{{user.address.city}}"}, "list": ["{{count}}", "x"]},
            context,
        )
        assert resolved == {"to": "Ann", "meta": {"city": "Sofia"}, "list": [3, "x"]}

    def test_resolve_map_does_not_mutate(self, context):
        original = {"to": "{{user.name}}"}
        VariableResolver.resolve_map(original, context)
        assert original == {"to": "{{user.name}}"}

    def test_resolve_map_empty(self, context):
        assert VariableResolver.resolve_map(None, context) == {}


@pytest.mark.unit
class TestGetValue:

    def test_default_for_missing(self, context):
        assert VariableResolver.get_value("user.age", context, default=0) == 0

    def test_none_value_is_returned(self, context):
        assert VariableResolver.get_value("empty", context, default="x") is None

    def test_empty_path(self, context):
        assert VariableResolver.get_value("", context, default="x") == "x"

    def test_has_template(self):
        assert VariableResolver.has_template("a {{b}}")
        assert not VariableResolver.has_template("a b")
        assert not VariableResolver.has_template(5)

    def test_stringify_dict(self):
        assert stringify({"a": 1}) == '{"a": 1}'
