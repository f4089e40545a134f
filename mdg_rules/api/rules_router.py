"""API routes for business rule management and evaluation."""
from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Query

from ..rules.engine import RuleEngine
from ..rules.models import Rule
from ..rules.persistence import BEST_MATCH, match_score, rule_repository
from ..rules.results import EvaluationResult, PipelineResult
from .schemas import (
    BulkEvaluateRequest,
    DuplicateRequest,
    EnabledUpdate,
    EvaluateRequest,
    PriorityUpdate,
    RuleListResponse,
    StatusUpdate,
    UserRulesResponse,
)

router = APIRouter(prefix="/v1/rules", tags=["rules"])

# Global rules engine instance
rule_engine = RuleEngine()

SortKey = Literal[
    "bestMatch", "priority", "name", "createdAt", "updatedAt",
    "usageCount", "executionCount", "successRate",
]


def set_metrics(metrics):
    """Attach Prometheus metrics to the global engine."""
    rule_engine.metrics = metrics


async def _get_or_404(rule_id: str) -> Rule:
    rule = await rule_repository.get(rule_id)
    if not rule:
        raise HTTPException(404, detail=f"Rule {rule_id} not found")
    return rule


async def _refresh_rules_gauge():
    if rule_engine.metrics is not None:
        rule_engine.metrics.set_rules_stored(await rule_repository.count())


async def _write_back(result: EvaluationResult):
    """Persist counters from an evaluation to the stored rule."""
    if result.statistics is None:
        return
    await rule_repository.apply_statistics(
        result.rule_id,
        result.statistics,
        rule_engine.tracker.last_executed_at(result.rule_id),
    )


async def _replace(rule: Rule, **changes: Any) -> Rule:
    changes["updated_at"] = datetime.utcnow()
    return await rule_repository.save(rule.model_copy(update=changes))


@router.post("", response_model=Rule, status_code=201)
async def create_rule(rule: Rule):
    """Create a new business rule."""
    existing = await rule_repository.get(rule.id)
    if existing:
        raise HTTPException(409, detail=f"Rule with ID {rule.id} already exists")
    saved = await rule_repository.save(rule)
    await _refresh_rules_gauge()
    return saved


@router.get("", response_model=RuleListResponse)
async def list_rules(
    status: str | None = None,
    type: str | None = None,
    dataObject: str | None = None,
    enabled: bool | None = None,
    createdBy: str | None = None,
    tags: list[str] | None = Query(None),
    category: str | None = None,
    scope: str | None = None,
    minPriority: int | None = None,
    maxPriority: int | None = None,
    startDate: datetime | None = None,
    endDate: datetime | None = None,
    minExecutions: int | None = None,
    minSuccessRate: float | None = None,
    search: str | None = None,
    sortBy: SortKey | None = None,
    sortOrder: Literal["asc", "desc"] = "desc",
):
    """
    List business rules.

    Filters combine with AND; `tags` matches any of the given tags and
    `search` matches name, description or data object case-insensitively.
    Default order is ascending priority, newest first. `sortBy=bestMatch`
    with a `search` term ranks by relevance and returns `matchScores`.
    """
    rules = await rule_repository.list_all(
        status=status,
        rule_type=type,
        data_object=dataObject,
        enabled=enabled,
        created_by=createdBy,
        tags=tags,
        category=category,
        scope=scope,
        min_priority=minPriority,
        max_priority=maxPriority,
        start_date=startDate,
        end_date=endDate,
        min_executions=minExecutions,
        min_success_rate=minSuccessRate,
        search=search,
        sort_by=sortBy,
        sort_order=sortOrder,
    )
    scores = None
    if sortBy == BEST_MATCH and search:
        scores = {r.id: match_score(r, search) for r in rules}
    return RuleListResponse(total=len(rules), rules=rules, match_scores=scores)


@router.get("/user/{user_id}", response_model=UserRulesResponse)
async def list_user_rules(user_id: str, includeInactive: bool = False):
    """Rules created by a user; active-status rules only unless includeInactive."""
    rules = await rule_repository.list_by_creator(user_id, include_inactive=includeInactive)
    return UserRulesResponse(
        user_id=user_id,
        include_inactive=includeInactive,
        total=len(rules),
        rules=rules,
    )


@router.post("/evaluate", response_model=PipelineResult)
async def evaluate_bulk(req: BulkEvaluateRequest):
    """
    Run a priority-ordered pipeline of rules over one record.

    Rules come from `ruleIds` (404 if any is missing) or, when absent, from
    the eligible rules of `dataObject` plus eligible global rules.
    """
    if req.rule_ids:
        rules = [await _get_or_404(rule_id) for rule_id in req.rule_ids]
    else:
        rules = await rule_repository.find_applicable(req.data_object)

    pipeline = rule_engine.evaluate_pipeline(rules, req.data)
    for result in pipeline.results:
        await _write_back(result)
    return pipeline


@router.get("/stats/overview")
async def stats_overview():
    """Aggregate rule and execution statistics."""
    return await rule_repository.overview()


@router.get("/meta/types")
async def meta_types():
    return await rule_repository.distinct("type")


@router.get("/meta/data-objects")
async def meta_data_objects():
    return await rule_repository.distinct("data_object")


@router.get("/meta/statuses")
async def meta_statuses():
    return await rule_repository.distinct("status")


@router.get("/meta/tags")
async def meta_tags():
    return await rule_repository.distinct("tags")


@router.get("/meta/categories")
async def meta_categories():
    return await rule_repository.distinct("category")


@router.get("/{rule_id}", response_model=Rule)
async def get_rule(rule_id: str):
    """Get a specific rule by ID."""
    return await _get_or_404(rule_id)


@router.put("/{rule_id}", response_model=Rule)
async def update_rule(rule_id: str, rule: Rule):
    """Replace a rule's definition, keeping its identity and statistics."""
    if rule_id != rule.id:
        raise HTTPException(400, detail="Rule ID in path must match rule ID in body")

    existing = await _get_or_404(rule_id)
    updated = rule.model_copy(update={
        "storage_id": existing.storage_id,
        "created_at": existing.created_at,
        "created_by": existing.created_by,
        "updated_at": datetime.utcnow(),
        "usage_count": existing.usage_count,
        "execution_count": existing.execution_count,
        "success_count": existing.success_count,
        "failure_count": existing.failure_count,
        "last_executed_at": existing.last_executed_at,
    })
    return await rule_repository.save(updated)


@router.patch("/{rule_id}/status", response_model=Rule)
async def update_status(rule_id: str, req: StatusUpdate):
    rule = await _get_or_404(rule_id)
    return await _replace(rule, status=req.status, updated_by=req.updated_by or rule.updated_by)


@router.patch("/{rule_id}/enabled", response_model=Rule)
async def update_enabled(rule_id: str, req: EnabledUpdate):
    rule = await _get_or_404(rule_id)
    return await _replace(rule, enabled=req.enabled, updated_by=req.updated_by or rule.updated_by)


@router.patch("/{rule_id}/priority", response_model=Rule)
async def update_priority(rule_id: str, req: PriorityUpdate):
    rule = await _get_or_404(rule_id)
    return await _replace(rule, priority=req.priority, updated_by=req.updated_by or rule.updated_by)


@router.post("/{rule_id}/duplicate", response_model=Rule, status_code=201)
async def duplicate_rule(rule_id: str, req: DuplicateRequest):
    """Copy a rule under a new ID as a fresh draft."""
    rule = await _get_or_404(rule_id)
    if await rule_repository.get(req.new_id):
        raise HTTPException(409, detail=f"Rule with ID {req.new_id} already exists")
    saved = await rule_repository.save(rule.duplicate(req.new_id, created_by=req.created_by))
    await _refresh_rules_gauge()
    return saved


@router.post("/{rule_id}/evaluate", response_model=EvaluationResult)
async def evaluate_rule(rule_id: str, req: EvaluateRequest):
    """
    Evaluate an enabled, active rule and record its statistics.

    A record that is not an object raises EvaluationFault, which the error
    middleware turns into a 422.
    """
    rule = await _get_or_404(rule_id)
    if not rule.is_eligible:
        raise HTTPException(400, detail=f"Rule {rule_id} is not enabled or active")

    result = rule_engine.evaluate_rule(rule, req.data)
    await _write_back(result)
    return result


@router.post("/{rule_id}/preview", response_model=EvaluationResult)
async def preview_rule(rule_id: str, req: EvaluateRequest):
    """Evaluate any rule on demand without touching its statistics."""
    rule = await _get_or_404(rule_id)
    return rule_engine.evaluate_rule(rule, req.data, preview=True)


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(rule_id: str):
    """Delete a rule."""
    deleted = await rule_repository.delete(rule_id)
    if not deleted:
        raise HTTPException(404, detail=f"Rule {rule_id} not found")

    rule_engine.tracker.forget(rule_id)
    await _refresh_rules_gauge()
    return None
