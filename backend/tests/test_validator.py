"""Tests for the workflow validator."""

import pytest

from helpers import make_graph, make_node
from workflow.validator import WORKFLOW_SCOPE, WorkflowValidator

START = make_node("start", "trigger", "record_created", {"entity": "LEAD"}, default="a")


def _set(node_id: str, **connections) -> dict:
    return make_node(node_id, "data", "set_field", {"field": node_id, "value": 1}, **connections)


@pytest.fixture
def validator():
    return WorkflowValidator()


@pytest.mark.unit
class TestStructure:

    def test_valid_linear_graph(self, validator):
        result = validator.validate(make_graph(START, _set("a", default="b"), _set("b")))
        assert result.is_valid
        assert result.errors == []

    def test_cycle_rejected(self, validator):
        result = validator.validate(make_graph(START, _set("a", default="b"), _set("b", default="a")))

        assert not result.is_valid
        assert "Workflow contains infinite loop involving node: a" in result.errors_for(WORKFLOW_SCOPE)

    def test_self_loop_rejected(self, validator):
        result = validator.validate(make_graph(START, _set("a", default="a")))
        assert not result.is_valid

    def test_diamond_is_not_a_cycle(self, validator):
        graph = make_graph(
            make_node("start", "trigger", "manual", default="check"),
            make_node("check", "condition", "if_else",
                      {"field": "x", "operator": "equals", "value": 1}, true="a", false="b"),
            _set("a", default="end"),
            _set("b", default="end"),
            _set("end"),
        )
        result = validator.validate(graph)

        assert result.is_valid
        assert validator.find_cycle(graph) is None

    def test_dangling_connection(self, validator):
        result = validator.validate(make_graph(START, _set("a", default="ghost")))
        assert "Connection 'default' points to non-existent node: ghost" in result.errors_for("a")

    def test_unreachable_node_warns(self, validator):
        result = validator.validate(make_graph(START, _set("a"), _set("island")))

        assert result.is_valid
        assert "Node is not reachable from any trigger (orphaned)" in result.warnings_for("island")

    def test_missing_trigger(self, validator):
        result = validator.validate(make_graph(_set("a")))
        assert "Workflow must have at least one trigger node" in result.errors_for(WORKFLOW_SCOPE)

    def test_empty_graph(self, validator):
        result = validator.validate({"nodes": []})
        assert result.errors_for(WORKFLOW_SCOPE) == ["Workflow must have at least one node"]

    def test_duplicate_node_ids(self, validator):
        result = validator.validate(make_graph(START, _set("a"), _set("a")))
        assert "Duplicate node id: a" in result.errors_for("a")

    def test_accepts_raw_definition(self, validator):
        result = validator.validate({"nodes": [START, _set("a")]})
        assert result.is_valid

    def test_malformed_definition(self, validator):
        result = validator.validate({"nodes": "not a list"})
        assert not result.is_valid

    def test_report_dict(self, validator):
        report = validator.validate(make_graph(_set("a"))).to_dict()
        assert report["valid"] is False
        assert report["errors"][0]["severity"] == "ERROR"


@pytest.mark.unit
class TestLoopBodies:

    def test_body_nodes_count_as_reachable(self, validator):
        result = validator.validate(make_graph(
            make_node("start", "trigger", "manual", default="loop"),
            make_node("loop", "collection", "loop",
                      {"collection": "items", "maxIterations": 5, "bodyNodes": ["step"]}),
            _set("step"),
        ))
        assert result.is_valid
        assert result.warnings_for("step") == []

    def test_missing_body_node(self, validator):
        result = validator.validate(make_graph(
            make_node("start", "trigger", "manual", default="loop"),
            make_node("loop", "collection", "loop",
                      {"collection": "items", "maxIterations": 5, "bodyNodes": ["ghost"]}),
        ))
        assert "Loop body references non-existent node: ghost" in result.errors_for("loop")

    def test_suspending_body_warns(self, validator):
        result = validator.validate(make_graph(
            make_node("start", "trigger", "manual", default="loop"),
            make_node("loop", "collection", "loop",
                      {"collection": "items", "maxIterations": 5, "bodyNodes": ["wait"]}),
            make_node("wait", "delay", "wait_duration", {"duration": 1, "unit": "MINUTES"}),
        ))
        assert result.is_valid
        assert any("can suspend" in w for w in result.warnings_for("loop"))

    def test_loop_without_cap_warns(self, validator):
        result = validator.validate(make_graph(
            make_node("start", "trigger", "manual", default="loop"),
            make_node("loop", "collection", "loop", {"collection": "items"}),
        ))
        assert "Loop should have maxIterations to prevent infinite loops" in result.warnings_for("loop")


@pytest.mark.unit
class TestNodeConfig:

    def _errors(self, validator, node: dict) -> list:
        start = make_node("start", "trigger", "manual", default=node["id"])
        return validator.validate(make_graph(start, node)).errors_for(node["id"])

    def test_unknown_type(self, validator):
        assert self._errors(validator, make_node("x", "teleport", "now", {"a": 1})) == [
            "Unknown node type: teleport"
        ]

    def test_unknown_subtype_is_a_warning(self, validator):
        start = make_node("start", "trigger", "manual", default="x")
        result = validator.validate(make_graph(start, make_node("x", "data", "transmogrify", {"a": 1})))
        assert result.is_valid
        assert "Unknown data subtype: transmogrify" in result.warnings_for("x")

    def test_missing_config(self, validator):
        assert "Data node must have configuration" in self._errors(validator, make_node("x", "data", "set_field"))

    def test_record_trigger_requires_entity(self, validator):
        result = validator.validate(make_graph(make_node("start", "trigger", "record_created", {})))
        assert "Trigger must specify entity (LEAD, CONTACT, DEAL, etc.)" in result.errors_for("start")

    def test_condition_operator(self, validator):
        errors = self._errors(validator, make_node("x", "condition", "if_else", {"field": "a", "operator": "~"}))
        assert "Invalid operator: ~" in errors

    def test_null_check_needs_no_value(self, validator):
        node = make_node("x", "condition", "if_else", {"field": "a", "operator": "is_null"})
        assert self._errors(validator, node) == []

    def test_invalid_email(self, validator):
        node = make_node("x", "communication", "send_email", {"to": "nobody", "subject": "s", "body": "b"})
        assert "Invalid email address: nobody" in self._errors(validator, node)

    def test_templated_email_accepted(self, validator):
        node = make_node("x", "communication", "send_email", {"to": "{{email}}", "subject": "s", "body": "b"})
        assert self._errors(validator, node) == []

    def test_wait_duration_unit(self, validator):
        node = make_node("x", "delay", "wait_duration", {"duration": 5, "unit": "FORTNIGHTS"})
        assert "Invalid time unit: FORTNIGHTS" in self._errors(validator, node)

    def test_wait_duration_minimum(self, validator):
        node = make_node("x", "delay", "wait_duration", {"duration": 0, "unit": "MINUTES"})
        assert "Duration must be at least 1" in self._errors(validator, node)

    def test_required_approvals_exceeds_approvers(self, validator):
        node = make_node("x", "approval", "parallel_approval",
                         {"approvers": ["a", "b"], "requiredApprovals": 3, "message": "m"})
        assert "requiredApprovals exceeds the number of approvers" in self._errors(validator, node)

    def test_webhook_url(self, validator):
        node = make_node("x", "integration", "webhook", {"url": "ftp://host", "method": "POST", "timeout": 5})
        assert "Invalid URL: ftp://host" in self._errors(validator, node)

    def test_formula_syntax(self, validator):
        node = make_node("x", "condition", "formula", {"formula": "ROUND(1,"})
        assert "Invalid formula syntax" in self._errors(validator, node)

    def test_recurring_frequency(self, validator):
        result = validator.validate(make_graph(
            make_node("start", "scheduled", "recurring", {"frequency": "hourly"})
        ))
        assert "Invalid recurrence frequency: hourly" in result.errors_for("start")

    def test_cron_expression(self, validator):
        result = validator.validate(make_graph(make_node("start", "scheduled", "scheduled", {"schedule": "* *"})))
        assert "Invalid cron expression: * *" in result.errors_for("start")

    def test_valid_cron_expression(self, validator):
        result = validator.validate(make_graph(make_node("start", "scheduled", "scheduled", {"schedule": "0 9 * * MON-FRI"})))
        assert result.errors_for("start") == []

    def test_create_lead_required_fields(self, validator):
        node = make_node("x", "data", "create_record", {"entity": "LEAD", "fields": {"firstName": "A"}})
        errors = self._errors(validator, node)
        assert "Missing required field for LEAD: lastName" in errors
        assert "Missing required field for LEAD: email" in errors

    def test_templated_increment_amount(self, validator):
        node = make_node("x", "data", "increment", {"field": "n", "amount": "{{step}}"})
        assert self._errors(validator, node) == []

    def test_error_action(self, validator):
        node = make_node("x", "error", "error_handler", {"action": "PANIC"})
        assert "Invalid error action: PANIC" in self._errors(validator, node)
