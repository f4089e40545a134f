from pydantic import Field, model_validator
from typing import Any, List
from ..rules.models import Rule, RuleBaseModel, RuleStatus

class EvaluateRequest(RuleBaseModel):
    # Validated as a mapping by the engine, not here
    data: Any = Field(..., description="Record to evaluate: field name -> value")

class BulkEvaluateRequest(RuleBaseModel):
    data: Any = Field(..., description="Record to evaluate: field name -> value")
    rule_ids: List[str] | None = None
    data_object: str | None = None

    @model_validator(mode="after")
    def check_rule_source(self) -> "BulkEvaluateRequest":
        if not self.rule_ids and not self.data_object:
            raise ValueError("Either ruleIds or dataObject is required")
        return self

class StatusUpdate(RuleBaseModel):
    status: RuleStatus
    updated_by: str | None = None

class EnabledUpdate(RuleBaseModel):
    enabled: bool
    updated_by: str | None = None

class PriorityUpdate(RuleBaseModel):
    priority: int
    updated_by: str | None = None

class DuplicateRequest(RuleBaseModel):
    new_id: str = Field(..., min_length=1)
    created_by: str | None = None

class RuleListResponse(RuleBaseModel):
    total: int
    rules: List[Rule]
    # Only set for sortBy=bestMatch: rule id -> relevance
    match_scores: dict[str, float] | None = None

class UserRulesResponse(RuleBaseModel):
    user_id: str
    include_inactive: bool
    total: int
    rules: List[Rule]
