"""Business rule definition models."""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ..config import get_settings


class RuleType(str, Enum):
    """Classification of a rule."""
    VALIDATION = "validation"
    BUSINESS = "business"
    CALCULATION = "calculation"
    DATA = "data"


class RuleScope(str, Enum):
    """What a rule is attached to."""
    GLOBAL = "global"
    DATA_OBJECT = "dataObject"
    FIELD = "field"


class RuleStatus(str, Enum):
    """Rule lifecycle status."""
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class ConditionOperator(str, Enum):
    """Supported condition operators."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    CONTAINS = "contains"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"
    REGEX = "regex"


class LogicalOperator(str, Enum):
    """Junction between a condition and the one after it."""
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


class ActionType(str, Enum):
    """Supported action types."""
    SET_FIELD = "setField"
    CLEAR_FIELD = "clearField"
    SHOW_FIELD = "showField"
    HIDE_FIELD = "hideField"
    VALIDATE = "validate"
    SHOW_MESSAGE = "showMessage"
    SET_VALUE = "setValue"
    CALCULATE = "calculate"


VALUE_ACTIONS = {ActionType.SET_FIELD.value, ActionType.SET_VALUE.value, ActionType.CALCULATE.value}
MESSAGE_ACTIONS = {ActionType.VALIDATE.value, ActionType.SHOW_MESSAGE.value}


class RuleBaseModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class Condition(RuleBaseModel):
    """Atomic predicate over one record field."""
    id: int | str | None = None
    field: str = Field(..., min_length=1, description="Record field to read")
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: Any = Field(default=None, description="Operand compared against the field value")
    logical_operator: LogicalOperator = Field(
        default=LogicalOperator.AND,
        description="How this condition joins the next one in the list",
    )


class Action(RuleBaseModel):
    """Side effect applied when a rule's conditions hold."""
    id: int | str | None = None
    type: ActionType
    field: str | None = None
    value: Any = None
    message: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_required_parts(self) -> "Action":
        if self.type != ActionType.SHOW_MESSAGE and not self.field:
            raise ValueError(f"Action type '{self.type}' requires a field")
        if self.type in VALUE_ACTIONS and self.value is None:
            raise ValueError(f"Action type '{self.type}' requires a value")
        if self.type in MESSAGE_ACTIONS and not self.message:
            raise ValueError(f"Action type '{self.type}' requires a message")
        return self


class DecisionRow(RuleBaseModel):
    """One row of a decision table."""
    id: int | str
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    priority: int | None = None


class CheckRow(RuleBaseModel):
    """Single-field lookup: if `field operator value` holds, `result` is derived."""
    id: int | str
    field: str = Field(..., min_length=1)
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: Any = None
    result: Any = None


class Rule(RuleBaseModel):
    """A stored unit of governance logic."""

    id: str = Field(..., min_length=1, frozen=True, description="Stable external identifier")
    storage_id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        frozen=True,
        description="Opaque internal storage identifier",
    )
    name: str = Field(default="", max_length=200)
    description: str | None = Field(default=None, max_length=1000)

    type: RuleType = RuleType.VALIDATION
    scope: RuleScope = RuleScope.GLOBAL
    data_object: str | None = None

    status: RuleStatus = RuleStatus.DRAFT
    enabled: bool = True
    version: str = "1.0.0"
    priority: int = Field(default=1, description="Lower = evaluated first")

    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    decision_table: list[DecisionRow] = Field(default_factory=list)
    check_table: list[CheckRow] = Field(default_factory=list)
    regex_pattern: str | None = None

    tags: list[str] = Field(default_factory=list)
    category: str | None = None
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    usage_count: int = Field(default=0, ge=0)
    execution_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    last_executed_at: datetime | None = None

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        parts = v.split(".")
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise ValueError("Version must be a semantic version such as 1.0.0")
        return v

    @field_validator("regex_pattern")
    @classmethod
    def blank_pattern_is_none(cls, v: str | None) -> str | None:
        # The rule builder sends "" for "no pattern"
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_scope(self) -> "Rule":
        if self.scope == RuleScope.DATA_OBJECT and not self.data_object:
            raise ValueError("dataObject is required when scope is 'dataObject'")
        return self

    @model_validator(mode="after")
    def check_counters(self) -> "Rule":
        # Keeps 0 <= successRate <= 1 for stored and seeded rules
        if self.success_count + self.failure_count > self.execution_count:
            raise ValueError("successCount + failureCount cannot exceed executionCount")
        if self.execution_count > self.usage_count:
            raise ValueError("executionCount cannot exceed usageCount")
        return self

    @computed_field(alias="conditionCount")
    @property
    def condition_count(self) -> int:
        return len(self.conditions)

    @computed_field(alias="actionCount")
    @property
    def action_count(self) -> int:
        return len(self.actions)

    @computed_field(alias="complexityScore")
    @property
    def complexity_score(self) -> int:
        score = self.condition_count * 2
        score += self.action_count
        score += len(self.decision_table) * 3
        score += len(self.check_table)
        if self.regex_pattern:
            score += 3
        return score

    @computed_field(alias="successRate")
    @property
    def success_rate(self) -> float:
        if self.execution_count == 0:
            return 0.0
        return self.success_count / self.execution_count

    @computed_field(alias="isEffective")
    @property
    def is_effective(self) -> bool:
        threshold = get_settings().EFFECTIVENESS_THRESHOLD
        return self.execution_count > 0 and self.success_rate >= threshold

    @property
    def is_eligible(self) -> bool:
        """Whether the rule takes part in automatic evaluation."""
        return self.enabled and self.status == RuleStatus.ACTIVE

    def snapshot(self) -> "Rule":
        """Deep copy used for the duration of one evaluation."""
        return self.model_copy(deep=True)

    def duplicate(self, new_id: str, created_by: str | None = None) -> "Rule":
        """
        Copy this rule under a new external id.

        Logic payload is deep-copied; storage id, statistics and lifecycle
        are reset so the copy starts as a fresh draft.
        """
        data = self.model_dump(
            exclude={
                "id", "storage_id", "status", "created_at", "updated_at",
                "usage_count", "execution_count", "success_count",
                "failure_count", "last_executed_at",
                "condition_count", "action_count", "complexity_score",
                "success_rate", "is_effective",
            }
        )
        data["created_by"] = created_by or self.created_by
        data["updated_by"] = None
        return Rule(id=new_id, status=RuleStatus.DRAFT, **data)
