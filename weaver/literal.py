"""
Directive literals.

Trailing directive text is coerced in a fixed order:
    true / false          -> bool
    42, -7, 0x1f          -> int
    3.5, 1e3              -> float
    anything else         -> str (verbatim)

Comparisons never raise: a value that cannot take part in a comparison
simply does not match.
"""

from __future__ import annotations
from typing import Any

# symbol -> operator name
OPERATORS = {
    "=": "eq",
    "!=": "ne",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
}

OPERATOR_NAMES = {"truthy", "eq", "ne", "gt", "gte", "lt", "lte"}


def coerce(text: str) -> Any:
    """Turn a directive operand into a bool, int, float or str."""
    if text == "true":
        return True
    if text == "false":
        return False
    try:
        return int(text, 0)
    except ValueError:
        pass
    # float() also takes "inf"/"nan", which stay strings here
    if not any(ch.isdigit() for ch in text):
        return text
    try:
        return float(text)
    except ValueError:
        return text


def to_text(value: Any) -> str:
    """Render a flag value for ${flag} substitution in include paths."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def operator_name(token: str) -> str | None:
    if token in OPERATORS:
        return OPERATORS[token]
    if token in OPERATOR_NAMES and token != "truthy":
        return token
    return None


def _to_number(value: Any) -> float | int | None:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        coerced = coerce(value.strip())
        if isinstance(coerced, (int, float)) and not isinstance(coerced, bool):
            return coerced
    return None


def _strict_equal(a: Any, b: Any) -> bool:
    # bool is never equal to a number, numbers compare across int/float
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    return type(a) is type(b) and a == b


def compare(value: Any, op: str, literal: Any) -> bool:
    """Evaluate `value <op> literal` the way #if/#unless conditions do."""
    if op == "truthy":
        return bool(value)
    if op == "eq":
        return _strict_equal(value, literal)
    if op == "ne":
        return not _strict_equal(value, literal)

    lhs = _to_number(value)
    rhs = _to_number(literal)
    if lhs is None or rhs is None:
        return False
    if op == "gt":
        return lhs > rhs
    if op == "gte":
        return lhs >= rhs
    if op == "lt":
        return lhs < rhs
    if op == "lte":
        return lhs <= rhs
    return False
