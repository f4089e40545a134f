"""Regex field validation and check-table lookup."""
from collections.abc import Mapping
from typing import Any, Sequence

import structlog

from .actions import LookupValue
from .conditions import apply_operator, as_text, compile_pattern, get_field_value
from .errors import RuleDefinitionError
from .models import CheckRow

log = structlog.get_logger()

DEFAULT_PATTERN_MESSAGE = "Value does not match the required pattern"


def validate_pattern(pattern: str, record: Mapping[str, Any], field: str) -> bool:
    """
    Test one field against a regex pattern.

    Pass/fail only. An absent field is tested as the empty string.

    Raises:
        RuleDefinitionError: If the pattern does not compile
    """
    value = get_field_value(record, field)
    matched = compile_pattern(pattern).search(as_text(value)) is not None
    log.debug("regex.checked", field=field, matched=matched)
    return matched


def lookup_check_table(
    rows: Sequence[CheckRow],
    record: Mapping[str, Any],
    errors: list[RuleDefinitionError] | None = None,
) -> LookupValue:
    """
    Scan check rows in table order and return the first row's result.

    No matching row means "no classification found": matched is False and
    value is None. That is not a failure.
    """
    for row in rows:
        value = get_field_value(record, row.field)
        if apply_operator(
            value,
            row.operator,
            row.value,
            location=f"checkTable[{row.id}]",
            errors=errors,
        ):
            log.debug("check_row.matched", row_id=row.id, result=row.result)
            return LookupValue(value=row.result, matched=True)

    return LookupValue()
