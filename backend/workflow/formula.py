"""Formula Engine — a small expression interpreter for workflow formulas.

Pipeline:
1. Substitute ``{{path}}`` references with literals (strings quoted,
   missing values become ``null``).
2. Expand built-in function calls, innermost first. Each function gets
   its already-substituted, comma-split arguments.
3. Evaluate the remaining scalar/binary expression. Literals short-circuit;
   otherwise the first operator found in the order
   ``+ - * / >= <= > < == !=`` is applied left to right across its operands.

This is a pragmatic one-operator-per-expression evaluator, not a full
precedence parser. Operands of the chosen operator are themselves evaluated
the same way, so ``{{amount}} * 2 > 100`` is read as ``amount * (2 > 100)``.

Examples:
    engine.evaluate("2 + 3", {})                 # 5
    engine.evaluate("ROUND(2.567, 1)", {})       # 2.6
    engine.evaluate('IF(true, "a", "b")', {})    # "a"
    engine.evaluate("UPPER({{lead.name}})", {"lead": {"name": "ann"}})  # "ANN"
"""

import json
import logging
import math
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Callable, Optional

from core.exceptions import FormulaError
from core.utils import is_truthy, parse_datetime, to_number, utc_now
from workflow.resolver import TEMPLATE_PATTERN, VariableResolver

logger = logging.getLogger(__name__)

FUNCTION_PATTERN = re.compile(r"([A-Z_]+)\(([^()]*)\)")
NUMBER_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")

# Fixed scan order, see module docstring
OPERATORS = ("+", "-", "*", "/", ">=", "<=", ">", "<", "==", "!=")

# Bound on function-expansion passes for one formula
_MAX_EXPANSIONS = 1000

_QUOTES = ('"', "'")


# ─── Literal helpers ──────────────────────────────────────────

def to_literal(value: Any) -> str:
    """Render a Python value as formula source text."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, datetime):
        return _quote(value.isoformat())
    if isinstance(value, date):
        return _quote(value.isoformat())
    if isinstance(value, (dict, list)):
        return _quote(json.dumps(value, default=str))
    return _quote(str(value))


def _quote(text: str) -> str:
    if '"' in text and "'" not in text:
        return f"'{text}'"
    return '"' + text.replace('"', "'") + '"'


def _is_quoted(text: str) -> bool:
    return (
        len(text) >= 2
        and text[0] in _QUOTES
        and text[-1] == text[0]
        and text[0] not in text[1:-1]
    )


def _parse_number(text: str):
    if not NUMBER_PATTERN.match(text):
        return None
    return float(text) if "." in text else int(text)


def _display(value: Any) -> str:
    """String form used by == and != when operands are not both numeric."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def split_args(args: str) -> list[str]:
    """Split a function argument list on commas outside quotes."""
    if not args.strip():
        return []
    parts, current, quote = [], [], None
    for ch in args:
        if quote:
            current.append(ch)
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
            current.append(ch)
        elif ch == ",":
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    parts.append("".join(current).strip())
    return parts


def _split_operator(expr: str, op: str) -> list[str]:
    """Split expr on every top-level (unquoted) occurrence of op."""
    parts, start, quote, i = [], 0, None, 0
    while i < len(expr):
        ch = expr[i]
        if quote:
            if ch == quote:
                quote = None
            i += 1
            continue
        if ch in _QUOTES:
            quote = ch
            i += 1
            continue
        if expr.startswith(op, i) and _is_binary_at(expr, i, op):
            parts.append(expr[start:i])
            i += len(op)
            start = i
            continue
        i += 1
    parts.append(expr[start:])
    return parts if len(parts) > 1 else [expr]


def _is_binary_at(expr: str, index: int, op: str) -> bool:
    if op in (">", "<"):
        # Part of >= / <= which are scanned earlier
        return not expr.startswith("=", index + 1)
    if op in ("-", "+"):
        before = expr[:index].rstrip()
        if not before:
            return False
        prev = before[-1]
        return prev.isalnum() or prev in "\"')._"
    return True


# ─── Engine ───────────────────────────────────────────────────

class FormulaEngine:
    """Evaluates formulas against a variable mapping."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utc_now
        self._functions: dict[str, Callable[[list], Any]] = {
            # Math
            "ABS": self._fn_abs,
            "ROUND": self._fn_round,
            "CEIL": lambda a: math.ceil(self._num(a, 0)),
            "FLOOR": lambda a: math.floor(self._num(a, 0)),
            "MAX": lambda a: max(self._numbers(a)),
            "MIN": lambda a: min(self._numbers(a)),
            "SUM": lambda a: sum(self._numbers(a)),
            "AVG": self._fn_avg,
            # String
            "UPPER": lambda a: self._str(a, 0).upper(),
            "LOWER": lambda a: self._str(a, 0).lower(),
            "TRIM": lambda a: self._str(a, 0).strip(),
            "LEN": lambda a: len(self._str(a, 0)),
            "CONCAT": lambda a: "".join(_display(v) if v is not None else "" for v in a),
            "SUBSTRING": self._fn_substring,
            "REPLACE": lambda a: self._str(a, 0).replace(self._str(a, 1), self._str(a, 2)),
            # Date
            "NOW": lambda a: self._clock().replace(microsecond=0).isoformat(),
            "TODAY": lambda a: self._clock().date().isoformat(),
            "DATE_ADD": self._fn_date_add,
            "DATE_DIFF": self._fn_date_diff,
            "YEAR": lambda a: self._date(a, 0).year,
            "MONTH": lambda a: self._date(a, 0).month,
            "DAY": lambda a: self._date(a, 0).day,
            # Logical
            "IF": self._fn_if,
            "AND": lambda a: all(is_truthy(v) for v in a),
            "OR": lambda a: any(is_truthy(v) for v in a),
            "NOT": lambda a: not is_truthy(a[0] if a else None),
            # Utility
            "ISBLANK": lambda a: not a or a[0] is None or str(a[0]).strip() == "",
            "ISNUMBER": lambda a: bool(a) and to_number(a[0]) is not None,
        }

    @property
    def supported_functions(self) -> list[str]:
        return sorted(self._functions)

    # ─── Public API ───

    def evaluate(self, expression: str, variables: Optional[dict] = None) -> Any:
        """Evaluate a formula.

        Raises:
            FormulaError: If the formula is empty or a function/operator
                cannot be applied to its operands
        """
        if expression is None or not str(expression).strip():
            raise FormulaError("Formula is empty")
        text = self._substitute_variables(str(expression), variables or {})
        text = self._apply_functions(text)
        return self.evaluate_expression(text)

    @staticmethod
    def validate_formula(expression: str) -> bool:
        """Cheap pre-check: non-empty with balanced parentheses."""
        if expression is None or not str(expression).strip():
            return False
        depth = 0
        for ch in str(expression):
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth < 0:
                    return False
        return depth == 0

    # ─── Pipeline stages ───

    @staticmethod
    def _substitute_variables(expression: str, variables: dict) -> str:
        def _replace(match: re.Match) -> str:
            return to_literal(VariableResolver.get_value(match.group(1), variables))

        return TEMPLATE_PATTERN.sub(_replace, expression)

    def _apply_functions(self, expression: str) -> str:
        for _ in range(_MAX_EXPANSIONS):
            match = FUNCTION_PATTERN.search(expression)
            if not match:
                return expression
            name, raw_args = match.group(1), match.group(2)
            args = [self.evaluate_expression(a) for a in split_args(raw_args)]
            func = self._functions.get(name)
            if func is None:
                logger.warning(f"Unknown formula function: {name}")
                replacement = raw_args
            else:
                try:
                    replacement = to_literal(func(args))
                except FormulaError:
                    raise
                except (ValueError, TypeError, IndexError, ArithmeticError) as e:
                    raise FormulaError(f"{name}() failed: {e}") from e
            expression = expression[: match.start()] + replacement + expression[match.end():]
        raise FormulaError("Formula expansion limit exceeded")

    def evaluate_expression(self, expression: str) -> Any:
        """Evaluate a function-free expression (stage 3)."""
        expr = expression.strip()
        if not expr:
            return None

        lowered = expr.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        if lowered == "null":
            return None
        if _is_quoted(expr):
            return expr[1:-1]
        number = _parse_number(expr)
        if number is not None:
            return number

        for op in OPERATORS:
            parts = _split_operator(expr, op)
            if len(parts) > 1:
                operands = [self.evaluate_expression(p) for p in parts]
                return self._apply_operator(op, operands, expr)

        return expr

    # ─── Operators ───

    def _apply_operator(self, op: str, operands: list, expr: str) -> Any:
        if op == "+" and any(
            isinstance(v, str) and to_number(v) is None for v in operands
        ):
            return "".join(_display(v) for v in operands)

        if op in ("+", "-", "*", "/"):
            numbers = []
            for value in operands:
                n = to_number(value)
                if n is None:
                    raise FormulaError(f"Non-numeric operand {value!r} in '{expr}'")
                numbers.append(n)
            result = numbers[0]
            for n in numbers[1:]:
                if op == "+":
                    result += n
                elif op == "-":
                    result -= n
                elif op == "*":
                    result *= n
                else:
                    if n == 0:
                        raise FormulaError(f"Division by zero in '{expr}'")
                    result /= n
            all_ints = all(isinstance(v, int) and not isinstance(v, bool) for v in operands)
            if op != "/" and all_ints:
                return int(result)
            return result

        if len(operands) != 2:
            raise FormulaError(f"Comparison '{op}' needs exactly two operands in '{expr}'")
        left, right = operands

        if op in ("==", "!="):
            ln, rn = to_number(left), to_number(right)
            if ln is not None and rn is not None:
                equal = ln == rn
            else:
                equal = _display(left) == _display(right)
            return equal if op == "==" else not equal

        ln, rn = to_number(left), to_number(right)
        if ln is None or rn is None:
            ln, rn = _display(left), _display(right)
        if op == ">=":
            return ln >= rn
        if op == "<=":
            return ln <= rn
        if op == ">":
            return ln > rn
        return ln < rn

    # ─── Function implementations ───

    @staticmethod
    def _num(args: list, index: int) -> float:
        if index >= len(args):
            raise FormulaError(f"Missing argument {index + 1}")
        n = to_number(args[index])
        if n is None:
            raise FormulaError(f"Argument {index + 1} is not a number: {args[index]!r}")
        return n

    @staticmethod
    def _numbers(args: list) -> list[float]:
        values = args[0] if len(args) == 1 and isinstance(args[0], list) else args
        numbers = [to_number(v) for v in values]
        if not numbers or any(n is None for n in numbers):
            raise FormulaError(f"Expected numeric arguments, got {values!r}")
        return numbers

    @staticmethod
    def _str(args: list, index: int) -> str:
        if index >= len(args) or args[index] is None:
            return ""
        return _display(args[index])

    @staticmethod
    def _date(args: list, index: int) -> datetime:
        if index >= len(args):
            raise FormulaError(f"Missing date argument {index + 1}")
        try:
            return parse_datetime(args[index])
        except ValueError as e:
            raise FormulaError(str(e)) from e

    def _fn_abs(self, args: list):
        value = args[0] if args else None
        if isinstance(value, int) and not isinstance(value, bool):
            return abs(value)
        return abs(self._num(args, 0))

    def _fn_round(self, args: list):
        decimals = int(self._num(args, 1)) if len(args) > 1 else 0
        try:
            quantum = Decimal(1).scaleb(-decimals)
            rounded = Decimal(str(self._num(args, 0))).quantize(quantum, rounding=ROUND_HALF_UP)
        except InvalidOperation as e:
            raise FormulaError(f"ROUND() failed: {e}") from e
        return int(rounded) if decimals <= 0 else float(rounded)

    def _fn_avg(self, args: list):
        numbers = self._numbers(args)
        return sum(numbers) / len(numbers)

    def _fn_substring(self, args: list) -> str:
        text = self._str(args, 0)
        start = int(self._num(args, 1))
        end = int(self._num(args, 2)) if len(args) > 2 else len(text)
        return text[start:min(end, len(text))]

    def _fn_date_add(self, args: list) -> str:
        base = self._date(args, 0)
        days = int(self._num(args, 1))
        result = base + timedelta(days=days)
        if isinstance(args[0], str) and len(args[0].strip()) <= 10:
            return result.date().isoformat()
        return result.isoformat()

    def _fn_date_diff(self, args: list) -> int:
        first = self._date(args, 0).date()
        second = self._date(args, 1).date()
        return (second - first).days

    @staticmethod
    def _fn_if(args: list):
        if len(args) < 2:
            raise FormulaError("IF() needs a condition and at least one branch")
        if is_truthy(args[0]):
            return args[1]
        return args[2] if len(args) > 2 else None
