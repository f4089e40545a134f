"""Tests for the rule engine facade and pipeline."""
import threading

import orjson
import pytest
from prometheus_client import CollectorRegistry

from mdg_rules.metrics import Metrics
from mdg_rules.rules.engine import RuleEngine, regex_target_field
from mdg_rules.rules.errors import EvaluationFault
from mdg_rules.rules.lookup import DEFAULT_PATTERN_MESSAGE
from mdg_rules.rules.models import Action, CheckRow, Condition, DecisionRow, Rule
from mdg_rules.rules.results import EvaluationResult, FieldFailure
from mdg_rules.rules.statistics import StatisticsTracker


@pytest.fixture
def engine():
    return RuleEngine(tracker=StatisticsTracker(effectiveness_threshold=0.8))


def active_rule(**kwargs) -> Rule:
    kwargs.setdefault("id", "rule-1")
    kwargs.setdefault("name", "Test rule")
    return Rule(status="active", **kwargs)


def test_invalid_regex_is_definition_error_not_fault(engine):
    """Test a broken pattern fails the rule, is tagged, and counts as a failure."""
    rule = active_rule(
        conditions=[Condition(field="email", operator="regex", value="([a-z")],
        actions=[Action(type="validate", field="email", message="Invalid email")],
    )

    result = engine.evaluate_rule(rule, {"email": "a@b.com"})

    assert result.success is False
    assert result.has_definition_error
    assert result.issues[0].location == "conditions[0]"
    assert result.statistics.failure_count == 1
    assert result.statistics.execution_count == 1


def test_conditions_and_actions_path(engine):
    rule = active_rule(
        conditions=[
            Condition(field="creditScore", operator="greaterThan", value=700, logical_operator="AND"),
            Condition(field="orderValue", operator="lessThan", value=10000),
        ],
        actions=[Action(type="setValue", field="creditApproval", value="APPROVED")],
    )
    record = {"creditScore": 750, "orderValue": 500}

    result = engine.evaluate_rule(rule, record)

    assert result.success is True
    assert result.conditions_met is True
    assert result.updated_record["creditApproval"] == "APPROVED"
    assert "creditApproval" not in record


def test_validate_action_failure(engine):
    """Test an unmet mandatory-field rule reports the field failure."""
    rule = active_rule(
        conditions=[Condition(field="baseUom", operator="isNotEmpty")],
        actions=[Action(type="validate", field="baseUom", message="Base UoM is mandatory field")],
    )

    result = engine.evaluate_rule(rule, {"baseUom": ""})

    assert result.success is False
    assert result.conditions_met is False
    assert result.failures == [FieldFailure(field="baseUom", message="Base UoM is mandatory field")]
    assert result.issues == []


def test_regex_pattern_path(engine):
    """Test the top-level pattern checks the validate action's field."""
    rule = active_rule(
        regex_pattern=r"^MAT-[0-9]{6}$",
        actions=[Action(type="validate", field="materialCode", message="Material code must be MAT-NNNNNN")],
    )

    ok = engine.evaluate_rule(rule, {"materialCode": "MAT-123456"})
    bad = engine.evaluate_rule(rule, {"materialCode": "M-1"})

    assert ok.success is True
    assert bad.success is False
    assert bad.failures == [FieldFailure(field="materialCode", message="Material code must be MAT-NNNNNN")]


def test_regex_pattern_default_message(engine):
    rule = active_rule(
        regex_pattern=r"^\d+$",
        conditions=[Condition(field="zip", operator="isNotEmpty")],
    )

    result = engine.evaluate_rule(rule, {"zip": "12a"})
    assert result.failures == [FieldFailure(field="zip", message=DEFAULT_PATTERN_MESSAGE)]


def test_regex_pattern_without_field_is_definition_error(engine):
    rule = active_rule(regex_pattern=r"^\d+$")

    result = engine.evaluate_rule(rule, {"zip": "123"})
    assert result.success is False
    assert result.issues[0].location == "regexPattern"


def test_invalid_top_level_regex(engine):
    rule = active_rule(
        regex_pattern="[",
        actions=[Action(type="validate", field="code", message="bad code")],
    )

    result = engine.evaluate_rule(rule, {"code": "x"})
    assert result.has_definition_error
    assert result.issues[0].location == "regexPattern"
    assert result.failures == []


def test_regex_target_field_precedence():
    rule = Rule(
        id="r",
        regex_pattern="x",
        conditions=[
            Condition(field="first", operator="isNotEmpty"),
            Condition(field="second", operator="regex", value="y"),
        ],
    )
    assert regex_target_field(rule) == "second"

    rule = Rule(id="r", actions=[
        Action(type="setField", field="other", value="1"),
        Action(type="validate", field="code", message="m"),
    ])
    assert regex_target_field(rule) == "code"


def test_decision_table_path(engine):
    """Test a decision table runs and conditions/actions are not applied."""
    rule = active_rule(
        conditions=[Condition(field="rag", operator="isNotEmpty")],
        actions=[Action(type="setField", field="fromActions", value="yes")],
        decision_table=[
            DecisionRow(
                id=7,
                conditions=[Condition(field="rag", operator="equals", value="12")],
                actions=[Action(type="setField", field="out", value="100")],
            )
        ],
    )

    result = engine.evaluate_rule(rule, {"rag": "12"})

    assert result.matched_decision_row_id == 7
    assert result.updated_record == {"rag": "12", "out": "100"}
    assert result.success is True


def test_check_table_feeds_lookup_result(engine):
    rule = active_rule(
        check_table=[
            CheckRow(id=1, field="materialType", operator="equals", value="Raw Material", result="Manufacturing"),
        ],
        conditions=[Condition(field="materialType", operator="isNotEmpty")],
        actions=[Action(type="setValue", field="classification", value="LOOKUP_RESULT")],
    )

    result = engine.evaluate_rule(rule, {"materialType": "Raw Material"})

    assert result.check_table_result == "Manufacturing"
    assert result.updated_record["classification"] == "Manufacturing"


def test_statistics_accumulate(engine):
    """Test counters and effectiveness across several evaluations."""
    rule = active_rule(
        conditions=[Condition(field="vatId", operator="isNotEmpty")],
        actions=[Action(type="validate", field="vatId", message="VAT ID required")],
    )

    for _ in range(4):
        engine.evaluate_rule(rule, {"vatId": "DE1"})
    result = engine.evaluate_rule(rule, {})

    stats = result.statistics
    assert stats.usage_count == 5
    assert stats.execution_count == 5
    assert stats.success_count == 4
    assert stats.failure_count == 1
    assert stats.success_rate == pytest.approx(0.8)
    assert stats.is_effective is True


def test_preview_and_draft_do_not_touch_statistics(engine):
    rule = active_rule(conditions=[Condition(field="a", operator="isNotEmpty")])
    draft = Rule(id="draft", conditions=[Condition(field="a", operator="isNotEmpty")])

    preview = engine.evaluate_rule(rule, {"a": "1"}, preview=True)
    on_draft = engine.evaluate_rule(draft, {"a": "1"})

    assert preview.statistics is None
    assert on_draft.statistics is None
    assert engine.tracker.get("rule-1") is None
    assert engine.tracker.get("draft") is None


def test_disabled_rule_does_not_count(engine):
    rule = active_rule(enabled=False, conditions=[Condition(field="a", operator="isNotEmpty")])

    result = engine.evaluate_rule(rule, {"a": "1"})
    assert result.statistics is None


def test_rule_is_not_mutated(engine):
    rule = active_rule(
        conditions=[Condition(field="a", operator="isNotEmpty")],
        actions=[Action(type="setField", field="b", value="1")],
    )
    before = rule.model_dump()

    engine.evaluate_rule(rule, {"a": "x"})
    assert rule.model_dump() == before


def test_non_mapping_record_is_fault(engine):
    rule = active_rule()

    with pytest.raises(EvaluationFault) as exc_info:
        engine.evaluate_rule(rule, ["not", "a", "record"])
    assert exc_info.value.rule_id == "rule-1"


def test_result_json_round_trip(engine):
    """Test results serialize with camelCase keys and parse back."""
    rule = active_rule(
        conditions=[Condition(field="a", operator="isNotEmpty")],
        actions=[Action(type="hideField", field="b")],
    )
    result = engine.evaluate_rule(rule, {"a": "x"})

    payload = orjson.loads(result.model_dump_json(by_alias=True))
    assert "updatedRecord" in payload
    assert payload["ruleId"] == "rule-1"
    assert payload["directives"] == [{"field": "b", "visible": False}]

    parsed = EvaluationResult.model_validate(payload)
    assert parsed.updated_record == result.updated_record


def test_malformed_calculation_is_tagged_not_fault(engine):
    """Test bad calculation parameters fail the rule as a definition error."""
    rule = active_rule(
        conditions=[Condition(field="orderValue", operator="isNotEmpty")],
        actions=[Action(
            type="calculate", field="discount", value="CALCULATED_DISCOUNT", parameters={"rates": ["gold"]},
        )],
    )

    result = engine.evaluate_rule(rule, {"customerTier": "gold", "orderValue": 100})

    assert result.success is False
    assert result.has_definition_error
    assert not result.has_fault
    assert result.issues[0].location == "actions[0]"
    assert "discount" not in result.updated_record
    assert result.statistics.failure_count == 1


@pytest.mark.parametrize("record", [
    {"materialType": "FERT", "name": "steel bar", "quantity": 2, "unitPrice": 3, "weight": 50},
    {"materialType": "raw", "name": "steel bar", "weight": 5},
])
def test_rule_json_round_trip_evaluates_identically(record):
    """Test a rule dumped to camelCase JSON and read back behaves the same."""
    rule = active_rule(
        id="round-trip",
        regex_pattern=r"^[A-Z]{4}$",
        conditions=[
            Condition(field="materialType", operator="equals", value="FERT", logical_operator="OR"),
            Condition(field="weight", operator="greaterThan", value=10),
        ],
        actions=[
            Action(type="setValue", field="name", value="TITLE_CASE"),
            Action(type="calculate", field="total", value="LINE_TOTAL"),
            Action(type="setValue", field="classification", value="LOOKUP_RESULT"),
            Action(type="showMessage", message="Finished goods checked"),
            Action(type="validate", field="materialType", message="Material type must be a 4-letter code"),
        ],
        check_table=[CheckRow(id=1, field="materialType", value="FERT", result="Finished")],
        usage_count=3,
        execution_count=2,
        success_count=1,
        failure_count=1,
    )
    restored = Rule.model_validate(orjson.loads(rule.model_dump_json(by_alias=True)))

    assert restored == rule

    first = RuleEngine().evaluate_rule(rule, record, preview=True)
    second = RuleEngine().evaluate_rule(restored, record, preview=True)

    assert first.success == second.success
    assert first.conditions_met == second.conditions_met
    assert first.updated_record == second.updated_record
    assert first.failures == second.failures
    assert first.messages == second.messages


def test_concurrent_evaluations_do_not_lose_counts(engine):
    rule = active_rule(conditions=[Condition(field="a", operator="isNotEmpty")])

    def worker():
        for _ in range(50):
            engine.evaluate_rule(rule, {"a": "x"})

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stats = engine.tracker.get("rule-1")
    assert stats.execution_count == 400
    assert stats.success_count == 400


def test_metrics_recorded():
    metrics = Metrics(registry=CollectorRegistry())
    engine = RuleEngine(tracker=StatisticsTracker(0.8), metrics=metrics)
    rule = active_rule(conditions=[Condition(field="email", operator="regex", value="((")])

    engine.evaluate_rule(rule, {"email": "x"})

    registry = metrics.registry
    assert registry.get_sample_value(
        "rule_evaluations_total", {"rule_type": "validation", "outcome": "failed"}
    ) == 1.0
    assert registry.get_sample_value(
        "rule_definition_errors_total", {"rule_type": "validation"}
    ) == 1.0


def test_pipeline_feeds_forward_in_priority_order(engine):
    """Test each rule sees the previous rule's output."""
    normalize = active_rule(
        id="normalize",
        priority=1,
        conditions=[Condition(field="firstName", operator="isNotEmpty")],
        actions=[Action(type="setValue", field="firstName", value="TITLE_CASE")],
    )
    greet = active_rule(
        id="greet",
        priority=2,
        conditions=[Condition(field="firstName", operator="equals", value="John")],
        actions=[Action(type="setField", field="greeting", value="hello")],
    )

    pipeline = engine.evaluate_pipeline([greet, normalize], {"firstName": "john"})

    assert [r.rule_id for r in pipeline.results] == ["normalize", "greet"]
    assert pipeline.final_record == {"firstName": "John", "greeting": "hello"}
    assert pipeline.success is True


def test_pipeline_skips_ineligible_rules(engine):
    draft = Rule(id="draft", actions=[Action(type="setField", field="x", value="1")])
    disabled = active_rule(id="off", enabled=False)

    pipeline = engine.evaluate_pipeline([draft, disabled], {})

    assert pipeline.results == []
    assert pipeline.skipped_rule_ids == ["draft", "off"]


def test_pipeline_discards_output_of_broken_rule(engine):
    broken = active_rule(
        id="broken",
        priority=1,
        conditions=[Condition(field="a", operator="isNotEmpty")],
        actions=[
            Action(type="setField", field="written", value="1"),
            Action(type="calculate", field="total", value="UNKNOWN"),
        ],
    )
    after = active_rule(
        id="after",
        priority=2,
        conditions=[Condition(field="written", operator="isEmpty")],
        actions=[Action(type="setField", field="clean", value="yes")],
    )

    pipeline = engine.evaluate_pipeline([broken, after], {"a": "x"})

    assert pipeline.results[0].has_definition_error
    assert pipeline.final_record == {"a": "x", "clean": "yes"}
    assert pipeline.success is False


def test_pipeline_reports_faults(engine):
    rule = active_rule()

    pipeline = engine.evaluate_pipeline([rule], "not a record")

    assert pipeline.results[0].has_fault
    assert pipeline.final_record == {}
