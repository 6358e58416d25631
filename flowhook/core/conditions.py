"""Condition evaluation.

Type coercion and the fixed operator set shared by the conditional and
switch nodes. Evaluation never raises: anything that cannot be compared
evaluates to False.
"""

import operator as op
import re
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()


class DataType(str, Enum):
    """Declared type of a condition clause."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE_TIME = "dateTime"


class CombineOperation(str, Enum):
    """How clause results are combined."""

    AND = "AND"
    OR = "OR"


# Operators that only look at the first operand
UNARY_OPERATORS = frozenset({"exists", "notExists", "isEmpty", "isNotEmpty"})
LITERAL_OPERATORS = frozenset({"true", "false"})

_TRUTHY = frozenset({"1", "true", "on", "yes"})


def is_numeric(value: Any) -> bool:
    """Check for a number or a numeric string (booleans excluded)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value.strip())
        except ValueError:
            return False
        return bool(value.strip())
    return False


def coerce_number(value: Any) -> float:
    """Coerce to float; non-numeric values become 0."""
    if not is_numeric(value):
        return 0.0
    return float(value.strip() if isinstance(value, str) else value)


def coerce_boolean(value: Any) -> bool:
    """Permissive truthy parsing: ``1``, ``true``, ``on`` and ``yes`` are True."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().lower() in _TRUTHY


def coerce_datetime(value: Any) -> datetime:
    """Parse an ISO-8601 value; naive datetimes are taken as UTC.

    Raises:
        ValueError: If the value is not a date/time
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip())
    else:
        raise ValueError(f"Not a date/time: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_string(value: Any) -> Any:
    if value is None or isinstance(value, (str, list, dict)):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def coerce_operands(value1: Any, value2: Any, data_type: str) -> tuple[Any, Any]:
    """Coerce both operands to a clause's declared type.

    A date/time parse failure turns both operands into None so that any
    comparison evaluates False. An empty second date operand stays None.
    """
    if data_type == DataType.NUMBER:
        return coerce_number(value1), coerce_number(value2)
    if data_type == DataType.BOOLEAN:
        return coerce_boolean(value1), coerce_boolean(value2)
    if data_type == DataType.DATE_TIME:
        try:
            first = coerce_datetime(value1)
            second = coerce_datetime(value2) if value2 not in (None, "") else None
        except (TypeError, ValueError) as e:
            logger.debug("condition_datetime_unparsable", error=str(e))
            return None, None
        return first, second
    return _coerce_string(value1), _coerce_string(value2)


def _is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value.strip() == "" or value == "0"
    if isinstance(value, (list, dict, tuple)):
        return len(value) == 0
    if isinstance(value, (int, float)):
        return value == 0
    return False


def _loose_equal(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return False
    if is_numeric(a) and is_numeric(b):
        return coerce_number(a) == coerce_number(b)
    return a == b


def _compare(a: Any, b: Any, compare: Callable[[Any, Any], bool]) -> bool:
    if a is None or b is None:
        return False
    if is_numeric(a) and is_numeric(b):
        return compare(coerce_number(a), coerce_number(b))
    try:
        return bool(compare(a, b))
    except TypeError:
        return False


def _strings(a: Any, b: Any) -> bool:
    return isinstance(a, str) and isinstance(b, str)


def _regex(value: Any, pattern: Any) -> bool | None:
    """Search a pattern; None when the operands or pattern are unusable."""
    if not _strings(value, pattern):
        return None
    try:
        return re.search(pattern, value) is not None
    except re.error:
        logger.debug("condition_regex_invalid")
        return None


def _length(value: Any, bound: Any, compare: Callable[[Any, Any], bool]) -> bool:
    if not isinstance(value, (list, dict)) or not is_numeric(bound):
        return False
    return compare(len(value), coerce_number(bound))


_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "gt": op.gt,
    "lt": op.lt,
    "gte": op.ge,
    "lte": op.le,
    "after": op.gt,
    "before": op.lt,
    "afterOrEqual": op.ge,
    "beforeOrEqual": op.le,
}

_LENGTHS: dict[str, Callable[[Any, Any], bool]] = {
    "lengthEqual": op.eq,
    "lengthNotEqual": op.ne,
    "lengthGt": op.gt,
    "lengthLt": op.lt,
    "lengthGte": op.ge,
    "lengthLte": op.le,
}


def evaluate_condition(value1: Any, operator: str, value2: Any) -> bool:
    """Evaluate one operator against already-coerced operands.

    Args:
        value1: Left operand
        operator: Operator name (e.g. ``equal``, ``lengthGt``)
        value2: Right operand (ignored by unary operators)

    Returns:
        Clause result; unknown operators evaluate False
    """
    if operator == "exists":
        return value1 is not None and value1 != ""
    if operator == "notExists":
        return value1 is None or value1 == ""
    if operator == "isEmpty":
        return _is_empty(value1)
    if operator == "isNotEmpty":
        return not _is_empty(value1)
    if operator == "true":
        return value1 is True
    if operator == "false":
        return value1 is False
    if operator == "equal":
        return _loose_equal(value1, value2)
    if operator == "notEqual":
        if value1 is None or value2 is None:
            return False
        return not _loose_equal(value1, value2)

    if operator in ("contains", "notContains"):
        if not _strings(value1, value2):
            return False
        found = value2 in value1
        return found if operator == "contains" else not found
    if operator in ("startsWith", "notStartsWith"):
        if not _strings(value1, value2):
            return False
        found = value1.startswith(value2)
        return found if operator == "startsWith" else not found
    if operator in ("endsWith", "notEndsWith"):
        if not _strings(value1, value2):
            return False
        found = value1.endswith(value2)
        return found if operator == "endsWith" else not found
    if operator in ("regex", "notRegex"):
        found = _regex(value1, value2)
        if found is None:
            return False
        return found if operator == "regex" else not found

    if operator in _COMPARISONS:
        return _compare(value1, value2, _COMPARISONS[operator])
    if operator in _LENGTHS:
        return _length(value1, value2, _LENGTHS[operator])

    logger.debug("condition_operator_unknown", operator=operator)
    return False


def combine(results: Iterable[bool], operation: str = CombineOperation.AND) -> bool:
    """Combine clause results with AND (default) or OR."""
    results = list(results)
    if operation == CombineOperation.OR:
        return any(r is True for r in results)
    return all(r is True for r in results)
