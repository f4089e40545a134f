"""Rule engine facade: strategy dispatch, result aggregation and statistics."""
import copy
import time
from collections.abc import Mapping
from typing import Any, Sequence

import structlog

from .actions import LookupValue, apply_actions
from .conditions import combine_conditions
from .decision_table import resolve_decision_table
from .errors import EvaluationFault, RuleDefinitionError
from .lookup import DEFAULT_PATTERN_MESSAGE, lookup_check_table, validate_pattern
from .models import ActionType, ConditionOperator, Rule
from .results import (
    EvaluationResult,
    FieldFailure,
    PipelineResult,
    RuleIssue,
)
from .statistics import StatisticsTracker

log = structlog.get_logger()


class RuleEngine:
    """Evaluates business rules against data records."""

    def __init__(self, tracker: StatisticsTracker | None = None, metrics=None):
        """
        Initialize rules engine.

        Args:
            tracker: Statistics tracker (defaults to a fresh one)
            metrics: Optional Prometheus Metrics to record evaluations into
        """
        self.tracker = tracker or StatisticsTracker()
        self.metrics = metrics

    def evaluate_rule(
        self,
        rule: Rule,
        record: Mapping[str, Any],
        preview: bool = False,
    ) -> EvaluationResult:
        """
        Evaluate one rule against a record.

        All strategies the rule declares run in this order, each seeing the
        record as left by the previous one:
        1. check table lookup (feeds LOOKUP_RESULT)
        2. conditions + actions, when there is no decision table
        3. decision table
        4. regex pattern, when there is no decision table

        Definition errors never raise; they mark the result failed. Statistics
        are updated only for eligible rules outside preview mode.

        Args:
            rule: Rule to evaluate (a snapshot is taken, the rule is not touched)
            record: Field name -> value mapping (not mutated)
            preview: Evaluate on demand without updating statistics

        Returns:
            EvaluationResult

        Raises:
            EvaluationFault: If the record is not a mapping or evaluation
                fails unexpectedly
        """
        if not isinstance(record, Mapping):
            raise EvaluationFault(
                f"Record must be a mapping, got {type(record).__name__}",
                rule_id=rule.id,
            )

        start_time = time.time()
        snapshot = rule.snapshot()

        try:
            result = self._run_strategies(snapshot, record)
        except RuleDefinitionError as e:
            log.warning("rule.definition_error", rule_id=rule.id, error=e.message, location=e.location)
            result = EvaluationResult(
                rule_id=rule.id,
                success=False,
                updated_record=copy.deepcopy(dict(record)),
                issues=[RuleIssue(kind="definition", message=e.message, location=e.location)],
            )
        except Exception as e:
            log.error(
                "rule.evaluation_fault",
                rule_id=rule.id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise EvaluationFault(f"Evaluation of rule {rule.id} failed: {e}", rule_id=rule.id) from e

        if not preview and snapshot.is_eligible:
            result.statistics = self.tracker.record(snapshot, result.success)

        duration = time.time() - start_time
        result.duration_ms = round(duration * 1000, 3)

        if self.metrics is not None:
            self.metrics.record_evaluation(
                rule_type=snapshot.type,
                outcome="succeeded" if result.success else "failed",
                duration_seconds=duration,
                definition_error=result.has_definition_error,
            )

        log.info(
            "rule.evaluated",
            rule_id=rule.id,
            success=result.success,
            failures=len(result.failures),
            issues=len(result.issues),
            preview=preview,
            duration_ms=result.duration_ms,
        )
        return result

    def _run_strategies(self, rule: Rule, record: Mapping[str, Any]) -> EvaluationResult:
        errors: list[RuleDefinitionError] = []
        working = copy.deepcopy(dict(record))
        result = EvaluationResult(rule_id=rule.id, success=False)

        lookup: LookupValue | None = None
        if rule.check_table:
            lookup = lookup_check_table(rule.check_table, working, errors)
            result.check_table_result = lookup.value

        if rule.conditions:
            result.conditions_met = combine_conditions(rule.conditions, working, errors)

        if rule.conditions and rule.actions and not rule.decision_table:
            outcome = apply_actions(
                rule.actions,
                working,
                conditions_met=result.conditions_met,
                lookup=lookup,
                errors=errors,
            )
            working = outcome.record
            result.messages.extend(outcome.messages)
            result.failures.extend(outcome.failures)
            result.directives.extend(outcome.directives)

        if rule.decision_table:
            decision = resolve_decision_table(rule.decision_table, working, lookup, errors)
            working = decision.record
            result.matched_decision_row_id = decision.matched_row_id
            result.messages.extend(decision.messages)
            result.failures.extend(decision.failures)
            result.directives.extend(decision.directives)

        if rule.regex_pattern and not rule.decision_table:
            failure = self._check_regex(rule, working, errors)
            if failure is not None and failure not in result.failures:
                result.failures.append(failure)

        result.updated_record = working
        result.issues = [
            RuleIssue(kind="definition", message=e.message, location=e.location)
            for e in errors
        ]
        result.success = not result.failures and not errors
        return result

    def _check_regex(
        self,
        rule: Rule,
        record: Mapping[str, Any],
        errors: list[RuleDefinitionError],
    ) -> FieldFailure | None:
        """Apply the rule's top-level pattern to its target field."""
        field = regex_target_field(rule)
        if field is None:
            errors.append(RuleDefinitionError(
                "Regex pattern set but no condition or action names a field",
                location="regexPattern",
            ))
            return None

        try:
            matched = validate_pattern(rule.regex_pattern, record, field)
        except RuleDefinitionError as e:
            e.location = "regexPattern"
            log.warning("rule.definition_error", rule_id=rule.id, error=e.message, location=e.location)
            errors.append(e)
            return None

        if matched:
            return None
        message = next(
            (a.message for a in rule.actions if a.type == ActionType.VALIDATE and a.field == field),
            DEFAULT_PATTERN_MESSAGE,
        )
        return FieldFailure(field=field, message=message)

    def evaluate_pipeline(
        self,
        rules: Sequence[Rule],
        record: Mapping[str, Any],
    ) -> PipelineResult:
        """
        Apply rules to one record in ascending priority.

        Each rule's updated record feeds the next rule. Rules that are not
        enabled and active are skipped. A rule with a definition error or an
        evaluation fault still gets a result, but its record changes are
        discarded and the remaining rules run on the record as it was.

        Args:
            rules: Rules applicable to the record
            record: Input record (not mutated)

        Returns:
            PipelineResult with one EvaluationResult per evaluated rule
        """
        pipeline = PipelineResult()
        current: Any = copy.deepcopy(dict(record)) if isinstance(record, Mapping) else record

        for rule in sorted(rules, key=lambda r: r.priority):
            if not rule.is_eligible:
                pipeline.skipped_rule_ids.append(rule.id)
                log.info("pipeline.rule_skipped", rule_id=rule.id, status=rule.status, enabled=rule.enabled)
                continue

            try:
                result = self.evaluate_rule(rule, current)
            except EvaluationFault as e:
                log.error("pipeline.rule_faulted", rule_id=rule.id, error=e.message)
                result = EvaluationResult(
                    rule_id=rule.id,
                    success=False,
                    updated_record=current if isinstance(current, Mapping) else {},
                    issues=[RuleIssue(kind="fault", message=e.message)],
                )
                pipeline.results.append(result)
                continue

            pipeline.results.append(result)
            if result.has_definition_error:
                log.warning("pipeline.rule_discarded", rule_id=rule.id)
                continue
            current = result.updated_record

        pipeline.final_record = current if isinstance(current, Mapping) else {}
        return pipeline


def regex_target_field(rule: Rule) -> str | None:
    """
    Field a rule's top-level regex pattern applies to.

    First regex condition, else first condition, else first validate action,
    else first action with a field.
    """
    for condition in rule.conditions:
        if condition.operator == ConditionOperator.REGEX:
            return condition.field
    if rule.conditions:
        return rule.conditions[0].field
    for action in rule.actions:
        if action.type == ActionType.VALIDATE and action.field:
            return action.field
    for action in rule.actions:
        if action.field:
            return action.field
    return None
