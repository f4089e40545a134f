"""Evaluation result models."""
from typing import Any, Literal

from pydantic import Field, computed_field

from .models import RuleBaseModel


class FieldFailure(RuleBaseModel):
    """Data-level validation failure produced by a `validate` action or regex check."""
    field: str
    message: str


class FieldDirective(RuleBaseModel):
    """UI visibility directive for the form-rendering collaborator."""
    field: str
    visible: bool


class RuleIssue(RuleBaseModel):
    """A problem with the rule itself or with its evaluation."""
    kind: Literal["definition", "fault"]
    message: str
    location: str | None = None


class RuleStatisticsSnapshot(RuleBaseModel):
    """Counters written back to the rule's storage record after an evaluation."""
    usage_count: int = 0
    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_rate: float = 0.0
    is_effective: bool = False


class ActionOutcome(RuleBaseModel):
    """What a list of actions did to a record."""
    record: dict[str, Any] = Field(default_factory=dict)
    messages: list[str] = Field(default_factory=list)
    failures: list[FieldFailure] = Field(default_factory=list)
    directives: list[FieldDirective] = Field(default_factory=list)


class DecisionOutcome(ActionOutcome):
    """Action outcome of the matched decision row, if any."""
    matched_row_id: int | str | None = None


class EvaluationResult(RuleBaseModel):
    """Structured result of evaluating one rule against one record."""
    rule_id: str
    success: bool
    updated_record: dict[str, Any] = Field(default_factory=dict)
    messages: list[str] = Field(default_factory=list)
    failures: list[FieldFailure] = Field(default_factory=list)
    directives: list[FieldDirective] = Field(default_factory=list)
    issues: list[RuleIssue] = Field(default_factory=list)
    conditions_met: bool | None = None
    matched_decision_row_id: int | str | None = None
    check_table_result: Any = None
    statistics: RuleStatisticsSnapshot | None = None
    duration_ms: float = 0.0

    @property
    def has_definition_error(self) -> bool:
        return any(issue.kind == "definition" for issue in self.issues)

    @property
    def has_fault(self) -> bool:
        return any(issue.kind == "fault" for issue in self.issues)


class PipelineResult(RuleBaseModel):
    """Per-rule results of a bulk evaluation plus the record they produced."""
    results: list[EvaluationResult] = Field(default_factory=list)
    final_record: dict[str, Any] = Field(default_factory=dict)
    skipped_rule_ids: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)
