""" Evaluation of transition conditions of the form `input.<field> <operator> <literal>`. """

import logging
import operator
import re
from typing import Any, Dict, Optional, Sequence, Tuple

from .schema import WorkflowStepNextCondition

logger = logging.getLogger(__name__)

FIELD_PREFIX = "input."

# two-character operators first so ">=" is never read as ">"
_OPERATOR_PRIORITY = ("==", "!=", ">=", "<=", ">", "<")

_ORDERING = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}

_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


class MalformedExpression(ValueError):
    pass


def parse_expression(expression: str) -> Tuple[str, str, Any]:
    """Split an expression into (field name, operator, literal value).

    Raises MalformedExpression on a wrong token count, a field reference without
    the `input.` prefix, or an unknown operator.
    """
    tokens = expression.strip().split(None, 2)
    if len(tokens) != 3:
        raise MalformedExpression(f"expected 3 tokens, got {len(tokens)}")
    field_ref, op_token, raw_literal = tokens

    if not field_ref.startswith(FIELD_PREFIX):
        raise MalformedExpression(f"field reference must start with '{FIELD_PREFIX}': {field_ref}")
    field_name = field_ref[len(FIELD_PREFIX):]
    if not _FIELD_NAME.match(field_name):
        raise MalformedExpression(f"unparsable field reference: {field_ref}")

    op = next((candidate for candidate in _OPERATOR_PRIORITY if op_token.startswith(candidate)), None)
    if op is None or op != op_token:
        raise MalformedExpression(f"unknown operator: {op_token}")

    return field_name, op, parse_literal(raw_literal)


def parse_literal(raw: str) -> Any:
    """Quoted string, then boolean, then null, then number, else the raw text."""
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ("'", '"'):
        return raw[1:-1]
    if any(ch.isspace() for ch in raw):
        raise MalformedExpression(f"unquoted literal contains whitespace: {raw}")
    lowered = raw.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered in ("null", "none"):
        return None
    if _NUMBER.match(raw):
        if re.match(r"^[+-]?\d+$", raw):
            return int(raw)
        return float(raw)
    return raw


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMBER.match(value.strip()):
        return float(value.strip())
    return None


def loose_equals(left: Any, right: Any) -> bool:
    """Type-coercing equality: numbers, booleans and numeric strings compare by value."""
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if isinstance(left, (bool, int, float)) or isinstance(right, (bool, int, float)):
        a, b = _as_number(left), _as_number(right)
        if a is None or b is None:
            return False
        return a == b
    return left == right


def _compare_ordered(left: Any, op: str, right: Any) -> bool:
    if left is None or right is None:
        return False
    a, b = left, right
    if isinstance(a, str) != isinstance(b, str):
        # a numeric string on one side and a number on the other compare numerically
        a, b = _as_number(left), _as_number(right)
        if a is None or b is None:
            raise TypeError(f"cannot order {type(left).__name__} and {type(right).__name__}")
    return bool(_ORDERING[op](a, b))


def evaluate_condition(expression: str, inputs: Dict[str, Any]) -> bool:
    """
    Evaluate a single condition against collected inputs.

    Malformed expressions and incomparable operands are logged and evaluate to False.
    """
    try:
        field_name, op, literal = parse_expression(expression)
    except MalformedExpression as e:
        logger.warning("Malformed condition %r: %s", expression, e)
        return False

    value = inputs.get(field_name)
    if op == "==":
        return loose_equals(value, literal)
    if op == "!=":
        return not loose_equals(value, literal)
    try:
        return _compare_ordered(value, op, literal)
    except TypeError as e:
        logger.warning("Condition %r could not be evaluated: %s", expression, e)
        return False


def find_matching_condition(
    conditions: Sequence[WorkflowStepNextCondition], inputs: Dict[str, Any]
) -> Optional[Tuple[int, WorkflowStepNextCondition]]:
    """Index and condition of the first condition that holds, in declared order."""
    for index, condition in enumerate(conditions):
        if evaluate_condition(condition.when, inputs):
            return index, condition
    return None


def evaluate_conditions(
    conditions: Sequence[WorkflowStepNextCondition], inputs: Dict[str, Any]
) -> Optional[WorkflowStepNextCondition]:
    match = find_matching_condition(conditions, inputs)
    return match[1] if match else None


# Alias used by the transition engine
evaluate = evaluate_condition
