"""Condition evaluation and left-to-right logical combination."""
import re
from collections.abc import Mapping, MutableMapping
from functools import lru_cache
from typing import Any, Sequence

import structlog

from .errors import RuleDefinitionError
from .models import Condition, ConditionOperator, LogicalOperator

log = structlog.get_logger()


def get_field_value(record: Mapping[str, Any], field: str) -> Any:
    """
    Read a field from a record.

    Supports:
    - plain keys ("email")
    - dotted paths into nested mappings ("address.city") when no plain key matches

    Returns:
        Field value, or None if the field is absent
    """
    if field in record:
        return record[field]

    if "." not in field:
        return None

    current: Any = record
    for part in field.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def set_field_value(record: MutableMapping[str, Any], field: str, value: Any) -> None:
    """
    Write a field so that get_field_value reads it back.

    A dotted path writes into nested mappings, creating missing levels,
    unless a plain key of that name exists or a level on the path is not
    a mapping. In those cases the plain key is written.
    """
    if field in record or "." not in field:
        record[field] = value
        return

    *parents, leaf = field.split(".")
    current: Any = record
    for part in parents:
        if part not in current:
            current[part] = {}
        elif not isinstance(current[part], MutableMapping):
            record[field] = value
            return
        current = current[part]
    current[leaf] = value


def as_text(value: Any) -> str:
    """String form used for equality, contains and regex tests."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def as_number(value: Any) -> int | float | None:
    """Parse a value as a number, or None if it is not one."""
    if value is None or isinstance(value, bool):
        return None
    # ints stay exact; float() overflows past ~1e308
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def is_empty(value: Any) -> bool:
    return value is None or value == ""


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern:
    """
    Compile a regex pattern.

    Raises:
        RuleDefinitionError: If the pattern does not compile
    """
    try:
        return re.compile(pattern)
    except re.error as e:
        raise RuleDefinitionError(f"Invalid regex pattern '{pattern}': {e}")


def apply_operator(
    value: Any,
    operator: str,
    operand: Any,
    location: str | None = None,
    errors: list[RuleDefinitionError] | None = None,
) -> bool:
    """
    Apply one operator to a field value and an operand.

    Never raises for data-shaped problems: missing values and type
    mismatches evaluate to False. Definition problems (bad regex, unknown
    operator) also evaluate to False and are appended to `errors`.
    """
    try:
        if operator == ConditionOperator.EQUALS:
            if value is None and operand is None:
                return True
            return as_text(value) == as_text(operand)

        elif operator == ConditionOperator.NOT_EQUALS:
            if value is None and operand is None:
                return False
            return as_text(value) != as_text(operand)

        elif operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
            left = as_number(value)
            right = as_number(operand)
            if left is None or right is None:
                return False
            if operator == ConditionOperator.GREATER_THAN:
                return left > right
            return left < right

        elif operator == ConditionOperator.CONTAINS:
            if value is None:
                return False
            return as_text(operand) in as_text(value)

        elif operator == ConditionOperator.IS_EMPTY:
            return is_empty(value)

        elif operator == ConditionOperator.IS_NOT_EMPTY:
            return not is_empty(value)

        elif operator == ConditionOperator.REGEX:
            if not isinstance(operand, str):
                raise RuleDefinitionError(f"Regex operand must be a string, got {type(operand).__name__}")
            return compile_pattern(operand).search(as_text(value)) is not None

        raise RuleDefinitionError(f"Unknown operator '{operator}'")

    except RuleDefinitionError as e:
        e.location = e.location or location
        log.warning("rule.definition_error", error=e.message, location=e.location)
        if errors is not None:
            errors.append(e)
        return False


def evaluate_condition(
    condition: Condition,
    record: Mapping[str, Any],
    errors: list[RuleDefinitionError] | None = None,
    location: str | None = None,
) -> bool:
    """
    Evaluate a single condition against a record.

    Pure: the record is only read.

    Args:
        condition: Condition to evaluate
        record: Field name -> value mapping
        errors: Optional list collecting definition errors
        location: Where the condition sits in the rule, for error reports

    Returns:
        True if the condition holds
    """
    value = get_field_value(record, condition.field)
    result = apply_operator(
        value,
        condition.operator,
        condition.value,
        location=location or f"condition[{condition.id}]",
        errors=errors,
    )
    log.debug(
        "condition.evaluated",
        field=condition.field,
        operator=condition.operator,
        result=result,
    )
    return result


def combine_conditions(
    conditions: Sequence[Condition],
    record: Mapping[str, Any],
    errors: list[RuleDefinitionError] | None = None,
    location: str = "conditions",
) -> bool:
    """
    Fold a condition list left to right.

    The logical operator stored on conditions[i-1] joins the running result
    with conditions[i]:
    - AND: result and c[i]
    - OR:  result or c[i]
    - NOT: result and not c[i]

    Every condition is evaluated so that all definition errors are reported.
    An empty list is vacuously True.
    """
    if not conditions:
        return True

    outcomes = [
        evaluate_condition(c, record, errors, location=f"{location}[{i}]")
        for i, c in enumerate(conditions)
    ]

    result = outcomes[0]
    for i in range(1, len(conditions)):
        junction = conditions[i - 1].logical_operator
        if junction == LogicalOperator.OR:
            result = result or outcomes[i]
        elif junction == LogicalOperator.NOT:
            result = result and not outcomes[i]
        else:
            result = result and outcomes[i]

    return result
