"""Decision table resolution (first matching row wins)."""
import copy
from collections.abc import Mapping
from typing import Any, Sequence

import structlog

from .actions import LookupValue, apply_actions
from .conditions import combine_conditions
from .errors import RuleDefinitionError
from .models import DecisionRow
from .results import DecisionOutcome

log = structlog.get_logger()

# Rows without an explicit priority sort with this value
DEFAULT_ROW_PRIORITY = 1


def order_rows(rows: Sequence[DecisionRow]) -> list[DecisionRow]:
    """Rows in ascending priority; ties keep table order (sorted() is stable)."""
    return sorted(
        rows,
        key=lambda r: r.priority if r.priority is not None else DEFAULT_ROW_PRIORITY,
    )


def find_matching_row(
    rows: Sequence[DecisionRow],
    record: Mapping[str, Any],
    errors: list[RuleDefinitionError] | None = None,
) -> DecisionRow | None:
    """
    Return the first row, in priority order, whose conditions hold.

    A row's conditions are folded with the same left-to-right combinator as
    top-level conditions (AND unless a condition says otherwise). Rows with
    no conditions are definition errors and never match.
    """
    for row in order_rows(rows):
        location = f"decisionTable[{row.id}]"
        if not row.conditions:
            e = RuleDefinitionError("Decision row has no conditions", location=location)
            log.warning("rule.definition_error", error=e.message, location=location)
            if errors is not None:
                errors.append(e)
            continue

        if combine_conditions(row.conditions, record, errors, location=f"{location}.conditions"):
            log.debug("decision_row.matched", row_id=row.id)
            return row

    return None


def resolve_decision_table(
    rows: Sequence[DecisionRow],
    record: Mapping[str, Any],
    lookup: LookupValue | None = None,
    errors: list[RuleDefinitionError] | None = None,
) -> DecisionOutcome:
    """
    Resolve a decision table against a record.

    Runs the matched row's actions. No match is a no-op: the returned record
    equals the input and matched_row_id is None.

    Args:
        rows: Decision table rows
        record: Input record (not mutated)
        lookup: Check-table outcome for LOOKUP_RESULT
        errors: Optional list collecting definition errors

    Returns:
        DecisionOutcome
    """
    row = find_matching_row(rows, record, errors)
    if row is None:
        log.debug("decision_table.no_match", rows=len(rows))
        return DecisionOutcome(record=copy.deepcopy(dict(record)))

    applied = apply_actions(
        row.actions,
        record,
        conditions_met=True,
        lookup=lookup,
        errors=errors,
        location=f"decisionTable[{row.id}].actions",
    )
    return DecisionOutcome(
        matched_row_id=row.id,
        record=applied.record,
        messages=applied.messages,
        failures=applied.failures,
        directives=applied.directives,
    )
