"""Condition nodes: branch the run on field checks, case lists and formulas.

Binary conditions choose the ``"true"`` / ``"false"`` edge and record
``conditionResult``. Case lists (multi_branch, switch) choose the outcome
of the first matching case, else ``"default"``.
"""

from typing import Any

import structlog

from core.exceptions import FormulaError
from handlers.base_handler import NodeHandler
from handlers.operators import compare
from workflow.models import DEFAULT_OUTCOME, ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)


def _outcome(flag: bool) -> str:
    return "true" if flag else "false"


def _formula_truth(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return value is not None


class ConditionHandler(NodeHandler):
    """Evaluates branching conditions against the variable scope."""

    node_type = "condition"
    display_name = "Condition"

    def operations(self):
        return {
            "if_else": self._field_check,
            "field_check": self._field_check,
            "multi_branch": self._multi_branch,
            "switch": self._multi_branch,
            "compare_fields": self._compare_fields,
            "formula": self._formula,
        }

    async def _field_check(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        field = config.get("field")
        actual = self.lookup(field, context)
        expected = self.resolve_value(config.get("value"), context)
        result = compare(actual, config.get("operator"), expected)

        logger.info("Condition evaluated", field=field, operator=config.get("operator"), result=result)
        return ExecutionResult.ok(
            {
                "conditionResult": result,
                "field": field,
                "actualValue": actual,
                "expectedValue": expected,
            },
            outcome=_outcome(result),
        )

    async def _multi_branch(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        cases = config.get("cases") or config.get("branches") or []
        default_field = config.get("field")

        for index, case in enumerate(cases):
            if not isinstance(case, dict):
                continue
            if self._case_matches(case, default_field, context):
                outcome = str(case.get("outcome") or DEFAULT_OUTCOME)
                logger.info("Branch matched", node_id=node.id, case=index, outcome=outcome)
                return ExecutionResult.ok(
                    {"conditionResult": True, "matchedCase": index, "branch": outcome},
                    outcome=outcome,
                )

        logger.info("No branch matched, taking default", node_id=node.id)
        return ExecutionResult.ok(
            {"conditionResult": False, "matchedCase": None, "branch": DEFAULT_OUTCOME},
            outcome=DEFAULT_OUTCOME,
        )

    def _case_matches(self, case: dict, default_field: Any, context: ExecutionContext) -> bool:
        if case.get("formula"):
            return _formula_truth(self.services.formula.evaluate(case["formula"], context.variables))
        field = case.get("field") or default_field
        operator = case.get("operator", "equals")
        return compare(self.lookup(field, context), operator, self.resolve_value(case.get("value"), context))

    async def _compare_fields(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        left = self.lookup(config.get("field1"), context)
        right = self.lookup(config.get("field2"), context)
        result = compare(left, config.get("operator"), right)
        return ExecutionResult.ok(
            {
                "conditionResult": result,
                "field1": config.get("field1"),
                "field2": config.get("field2"),
                "value1": left,
                "value2": right,
            },
            outcome=_outcome(result),
        )

    async def _formula(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        formula = node.config.get("formula")
        if not self.services.formula.validate_formula(formula):
            return ExecutionResult.failed(f"Invalid formula syntax: {formula}")

        try:
            value = self.services.formula.evaluate(formula, context.variables)
        except FormulaError as e:
            return ExecutionResult.failed(f"Formula evaluation failed: {e.message}")

        result = _formula_truth(value)
        result_variable = node.config.get("resultVariable") or "formulaResult"
        return ExecutionResult.ok(
            {result_variable: value, "conditionResult": result, "formula": formula},
            outcome=_outcome(result),
        )


CONDITION_HANDLERS = {
    "condition": ConditionHandler,
}
