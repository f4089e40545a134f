"""Tests for decision table resolution and check-table lookup."""
import pytest
from mdg_rules.rules.decision_table import resolve_decision_table
from mdg_rules.rules.errors import RuleDefinitionError
from mdg_rules.rules.lookup import lookup_check_table, validate_pattern
from mdg_rules.rules.models import Action, CheckRow, Condition, DecisionRow


def _row(row_id, value, out, priority=None, **condition_kwargs):
    return DecisionRow(
        id=row_id,
        priority=priority,
        conditions=[Condition(field="rag", operator="equals", value=value, **condition_kwargs)],
        actions=[Action(type="setField", field="out", value=out)],
    )


def test_single_row_match():
    """Test a matching row runs its actions and is reported."""
    rows = [_row(1, "12", "100")]

    outcome = resolve_decision_table(rows, {"rag": "12"})
    assert outcome.matched_row_id == 1
    assert outcome.record["out"] == "100"


def test_no_match_is_noop():
    rows = [_row(1, "12", "100")]
    record = {"rag": "13"}

    outcome = resolve_decision_table(rows, record)
    assert outcome.matched_row_id is None
    assert outcome.record == record


def test_rows_ordered_by_priority():
    """Test lower priority rows are tried first."""
    rows = [_row(1, "12", "A", priority=2), _row(2, "12", "B", priority=1)]

    outcome = resolve_decision_table(rows, {"rag": "12"})
    assert outcome.matched_row_id == 2
    assert outcome.record["out"] == "B"


def test_priority_ties_keep_table_order():
    rows = [_row("first", "12", "A"), _row("second", "12", "B")]

    outcome = resolve_decision_table(rows, {"rag": "12"})
    assert outcome.matched_row_id == "first"


def test_first_match_wins_only_one_row_runs():
    rows = [
        _row(1, "12", "A"),
        DecisionRow(
            id=2,
            conditions=[Condition(field="rag", operator="isNotEmpty")],
            actions=[Action(type="setField", field="other", value="B")],
        ),
    ]
    outcome = resolve_decision_table(rows, {"rag": "12"})
    assert outcome.record == {"rag": "12", "out": "A"}


def test_row_without_conditions_is_definition_error():
    """Test a condition-less row is reported and skipped."""
    rows = [
        DecisionRow(id=1, conditions=[], actions=[Action(type="setField", field="out", value="X")]),
        _row(2, "12", "B"),
    ]
    errors: list[RuleDefinitionError] = []

    outcome = resolve_decision_table(rows, {"rag": "12"}, errors=errors)
    assert outcome.matched_row_id == 2
    assert len(errors) == 1
    assert errors[0].location == "decisionTable[1]"


def test_row_conditions_use_logical_operators():
    rows = [
        DecisionRow(
            id="tier",
            conditions=[
                Condition(field="creditScore", operator="greaterThan", value=700, logical_operator="OR"),
                Condition(field="vip", operator="equals", value=True),
            ],
            actions=[Action(type="setValue", field="creditApproval", value="APPROVED")],
        )
    ]
    outcome = resolve_decision_table(rows, {"creditScore": 500, "vip": True})
    assert outcome.record["creditApproval"] == "APPROVED"


def test_resolution_is_idempotent():
    rows = [_row(1, "12", "A", priority=3), _row(2, "12", "B", priority=3)]
    record = {"rag": "12"}

    first = resolve_decision_table(rows, record)
    second = resolve_decision_table(rows, record)
    assert first.matched_row_id == second.matched_row_id == 1
    assert record == {"rag": "12"}


def test_check_table_first_match():
    """Test check rows are scanned in order and the first result wins."""
    rows = [
        CheckRow(id=1, field="materialType", operator="equals", value="Raw Material", result="Manufacturing"),
        CheckRow(id=2, field="materialType", operator="isNotEmpty", result="General"),
    ]

    lookup = lookup_check_table(rows, {"materialType": "Raw Material"})
    assert lookup.matched is True
    assert lookup.value == "Manufacturing"

    lookup = lookup_check_table(rows, {"materialType": "Finished Good"})
    assert lookup.value == "General"


def test_check_table_no_match():
    rows = [CheckRow(id=1, field="materialType", operator="equals", value="Raw Material", result="Manufacturing")]

    lookup = lookup_check_table(rows, {"materialType": "Service"})
    assert lookup.matched is False
    assert lookup.value is None


def test_validate_pattern():
    assert validate_pattern(r"^MAT-[0-9]{6}$", {"materialCode": "MAT-123456"}, "materialCode") is True
    assert validate_pattern(r"^MAT-[0-9]{6}$", {"materialCode": "MAT-12"}, "materialCode") is False
    assert validate_pattern(r"^MAT-[0-9]{6}$", {}, "materialCode") is False

    with pytest.raises(RuleDefinitionError):
        validate_pattern("[", {"materialCode": "x"}, "materialCode")
