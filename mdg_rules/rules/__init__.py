"""
Business rule evaluation engine.

Evaluates declarative rules (conditions, actions, decision tables,
check tables, regex patterns) against data records:
- Condition evaluation and left-to-right logical combination
- Action execution with sentinel and calculation registries
- First-match decision tables and check-table lookups
- Per-rule execution statistics
"""

from .engine import RuleEngine
from .errors import EvaluationFault, RuleDefinitionError, RuleEngineError
from .models import (
    Action,
    ActionType,
    CheckRow,
    Condition,
    ConditionOperator,
    DecisionRow,
    LogicalOperator,
    Rule,
    RuleScope,
    RuleStatus,
    RuleType,
)
from .results import EvaluationResult, PipelineResult
from .statistics import StatisticsTracker

__all__ = [
    "RuleEngine",
    "StatisticsTracker",
    "EvaluationFault",
    "RuleDefinitionError",
    "RuleEngineError",
    "Action",
    "ActionType",
    "CheckRow",
    "Condition",
    "ConditionOperator",
    "DecisionRow",
    "LogicalOperator",
    "Rule",
    "RuleScope",
    "RuleStatus",
    "RuleType",
    "EvaluationResult",
    "PipelineResult",
]
