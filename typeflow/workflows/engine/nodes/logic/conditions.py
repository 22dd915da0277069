"""
Condition evaluation shared by filter, if and switch nodes.

Field values are compared the way the workflow editor displays them:
string operators work on the string form of the value, numeric operators
on its numeric form, where anything that is not a number never compares
true. Null counts as 0; a field the item does not have at all is not a
number.
"""

import logging
import math
import re
from typing import Any, Dict, Iterable

from typeflow.workflows.engine.expressions.resolver import to_js_string
from typeflow.workflows.engine.nodes.configs import Condition
from typeflow.workflows.engine.nodes.data.paths import get_nested_value

logger = logging.getLogger(__name__)

NUMERIC_STRING = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

# Field value of a path the item does not have
MISSING = object()


def to_number(value: Any) -> float:
    """Numeric form of a value; NaN when it has none."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if NUMERIC_STRING.match(text):
            return float(text)
        if text in ("Infinity", "+Infinity"):
            return math.inf
        if text == "-Infinity":
            return -math.inf
    return math.nan


def _regex_test(pattern: str, text: str) -> bool:
    try:
        return re.search(pattern, text) is not None
    except re.error:
        logger.debug(f"Invalid regex in condition: {pattern!r}")
        return False


def evaluate_condition(field_value: Any, operator: str, compare_value: Any) -> bool:
    """Evaluate one condition; unknown operators behave like `equals`."""
    missing = field_value is MISSING
    text = "" if missing else to_js_string(field_value)
    compare = to_js_string(compare_value)

    if operator in ("equals", "equal"):
        return text == compare
    if operator in ("notEquals", "notEqual"):
        return text != compare
    if operator == "contains":
        return compare in text
    if operator == "notContains":
        return compare not in text
    if operator == "startsWith":
        return text.startswith(compare)
    if operator == "endsWith":
        return text.endswith(compare)

    # NaN compares false on both sides
    if operator == "greaterThan":
        return to_number(field_value) > to_number(compare)
    if operator == "lessThan":
        return to_number(field_value) < to_number(compare)
    if operator in ("greaterThanOrEqual", ">="):
        return to_number(field_value) >= to_number(compare)
    if operator in ("lessThanOrEqual", "<="):
        return to_number(field_value) <= to_number(compare)

    if operator == "isEmpty":
        return missing or field_value is None or text == ""
    if operator == "isNotEmpty":
        return not missing and field_value is not None and text != ""
    if operator == "isTrue":
        return field_value is True or text == "true"
    if operator == "isFalse":
        return field_value is False or text == "false"
    if operator == "regex":
        return _regex_test(compare, text)

    return text == compare


def matches(conditions: Iterable[Condition], item_json: Dict[str, Any], combine_with: str = "and") -> bool:
    """All conditions for "and", any of them otherwise."""
    results = [
        evaluate_condition(
            get_nested_value(item_json, condition.field, MISSING), condition.operator, condition.value
        )
        for condition in conditions
    ]
    if combine_with == "and":
        return all(results)
    return any(results)
