"""Rule persistence layer (in-memory).

Stands in for the external storage collaborator: it stores whole rules,
answers the lookups the API needs, and receives statistics written back
after each evaluation. Rules are replaced, never mutated in place, so an
evaluation that already took a snapshot is unaffected by a concurrent update.
"""
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson
import structlog
from pydantic import TypeAdapter

from .models import Rule
from .results import RuleStatisticsSnapshot

log = structlog.get_logger()

_rule_list = TypeAdapter(list[Rule])

BEST_MATCH = "bestMatch"

# sortBy value -> Rule attribute
SORT_FIELDS = {
    "priority": "priority",
    "name": "name",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "usageCount": "usage_count",
    "executionCount": "execution_count",
    "successRate": "success_rate",
}


def _naive_utc(value: datetime | None) -> datetime | None:
    # Stored timestamps are naive UTC
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _searchable(rule: Rule) -> list[str]:
    return [text for text in (rule.name, rule.description, rule.data_object) if text]


def match_score(rule: Rule, term: str) -> float:
    """
    Relevance of a rule to a search term.

    Text hits weigh most (name 100, description 50, data object 30), then
    status (active 20, draft 10), low priority numbers, usage (capped at 10)
    and effectiveness (15).
    """
    term = term.lower()
    score = 0.0
    if rule.name and term in rule.name.lower():
        score += 100
    if rule.description and term in rule.description.lower():
        score += 50
    if rule.data_object and term in rule.data_object.lower():
        score += 30

    if rule.status == "active":
        score += 20
    elif rule.status == "draft":
        score += 10

    score += (100 - rule.priority) * 0.1
    score += min(rule.usage_count * 0.1, 10)
    if rule.is_effective:
        score += 15
    return score


class RuleRepository:
    """In-memory rule storage keyed by external rule id."""

    def __init__(self):
        """Initialize in-memory rule storage."""
        self._rules: dict[str, Rule] = {}
        log.info("rules.persistence.initialized", backend="memory")

    async def save(self, rule: Rule) -> Rule:
        """
        Save or replace a rule.

        Args:
            rule: Rule to save

        Returns:
            Saved rule
        """
        self._rules[rule.id] = rule
        log.info("rule.saved", rule_id=rule.id, rule_name=rule.name)
        return rule

    async def get(self, rule_id: str) -> Rule | None:
        """
        Get a rule by ID.

        Returns:
            Rule if found, None otherwise
        """
        return self._rules.get(rule_id)

    async def list_all(
        self,
        status: str | None = None,
        rule_type: str | None = None,
        data_object: str | None = None,
        enabled: bool | None = None,
        *,
        created_by: str | None = None,
        tags: list[str] | None = None,
        category: str | None = None,
        scope: str | None = None,
        min_priority: int | None = None,
        max_priority: int | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        min_executions: int | None = None,
        min_success_rate: float | None = None,
        search: str | None = None,
        sort_by: str | None = None,
        sort_order: str = "desc",
    ) -> list[Rule]:
        """
        List rules matching every given filter.

        Args:
            tags: Keep rules carrying any of these tags
            start_date, end_date: Inclusive bounds on created_at
            min_success_rate: Percentage (0-100)
            search: Case-insensitive substring of name, description or data object
            sort_by: One of SORT_FIELDS, or "bestMatch" to rank by match_score
                when a search term is given
            sort_order: "asc" or "desc" for sort_by

        Returns:
            Matching rules; ascending priority, newest first, unless sort_by is set
        """
        start_date = _naive_utc(start_date)
        end_date = _naive_utc(end_date)
        term = search.lower() if search else None

        rules = [
            r for r in self._rules.values()
            if (status is None or r.status == status)
            and (rule_type is None or r.type == rule_type)
            and (data_object is None or r.data_object == data_object)
            and (enabled is None or r.enabled == enabled)
            and (created_by is None or r.created_by == created_by)
            and (not tags or any(tag in r.tags for tag in tags))
            and (category is None or r.category == category)
            and (scope is None or r.scope == scope)
            and (min_priority is None or r.priority >= min_priority)
            and (max_priority is None or r.priority <= max_priority)
            and (start_date is None or r.created_at >= start_date)
            and (end_date is None or r.created_at <= end_date)
            and (min_executions is None or r.execution_count >= min_executions)
            and (min_success_rate is None or r.success_rate * 100 >= min_success_rate)
            and (term is None or any(term in text.lower() for text in _searchable(r)))
        ]

        if sort_by == BEST_MATCH and term is not None:
            return sorted(rules, key=lambda r: match_score(r, term), reverse=True)

        if sort_by in SORT_FIELDS:
            attribute = SORT_FIELDS[sort_by]
            return sorted(rules, key=lambda r: getattr(r, attribute), reverse=sort_order != "asc")

        rules.sort(key=lambda r: r.created_at, reverse=True)
        return sorted(rules, key=lambda r: r.priority)

    async def list_by_creator(self, user_id: str, include_inactive: bool = False) -> list[Rule]:
        """Rules created by a user; only active-status rules unless include_inactive."""
        rules = await self.list_all(created_by=user_id)
        if include_inactive:
            return rules
        return [r for r in rules if r.status == "active"]

    async def find_applicable(self, data_object: str) -> list[Rule]:
        """Eligible rules for a data object plus eligible global rules, by priority."""
        rules = [
            r for r in self._rules.values()
            if r.is_eligible and (r.data_object == data_object or r.scope == "global")
        ]
        return sorted(rules, key=lambda r: r.priority)

    async def delete(self, rule_id: str) -> bool:
        """
        Delete a rule by ID.

        Returns:
            True if deleted, False if not found
        """
        if rule_id in self._rules:
            del self._rules[rule_id]
            log.info("rule.deleted", rule_id=rule_id)
            return True
        return False

    async def count(self) -> int:
        """Get total number of rules."""
        return len(self._rules)

    async def apply_statistics(
        self,
        rule_id: str,
        stats: RuleStatisticsSnapshot,
        last_executed_at: datetime | None = None,
    ) -> Rule | None:
        """
        Write evaluation counters back to a stored rule.

        Snapshots older than what is stored are ignored, so counters never
        move backwards when write-backs arrive out of order.

        Returns:
            Updated rule, or None if the rule no longer exists
        """
        rule = self._rules.get(rule_id)
        if rule is None:
            return None
        if stats.execution_count < rule.execution_count:
            return rule

        updated = rule.model_copy(update={
            "usage_count": stats.usage_count,
            "execution_count": stats.execution_count,
            "success_count": stats.success_count,
            "failure_count": stats.failure_count,
            "last_executed_at": last_executed_at or datetime.utcnow(),
        })
        self._rules[rule_id] = updated
        return updated

    async def distinct(self, attribute: str) -> list[Any]:
        """Sorted distinct values of a rule attribute (list attributes are flattened)."""
        values: set = set()
        for rule in self._rules.values():
            value = getattr(rule, attribute)
            if isinstance(value, list):
                values.update(value)
            elif value is not None:
                values.add(value)
        return sorted(values)

    async def overview(self) -> dict[str, Any]:
        """Aggregate counts and execution totals across all rules."""
        rules = list(self._rules.values())
        statuses = Counter(r.status for r in rules)
        by_type: dict[str, dict[str, int]] = {}
        by_data_object: dict[str, dict[str, int]] = {}

        for rule in rules:
            t = by_type.setdefault(rule.type, {"count": 0, "totalExecutions": 0, "totalSuccesses": 0})
            t["count"] += 1
            t["totalExecutions"] += rule.execution_count
            t["totalSuccesses"] += rule.success_count

            key = rule.data_object or "global"
            d = by_data_object.setdefault(key, {"count": 0, "totalExecutions": 0})
            d["count"] += 1
            d["totalExecutions"] += rule.execution_count

        return {
            "overview": {
                "totalRules": len(rules),
                "enabledRules": sum(1 for r in rules if r.enabled),
                "activeStatusRules": statuses.get("active", 0),
                "draftRules": statuses.get("draft", 0),
                "archivedRules": statuses.get("archived", 0),
                "totalExecutions": sum(r.execution_count for r in rules),
                "totalSuccesses": sum(r.success_count for r in rules),
                "totalFailures": sum(r.failure_count for r in rules),
            },
            "byType": by_type,
            "byDataObject": by_data_object,
        }

    async def clear(self):
        """Remove all rules (useful for testing)."""
        self._rules.clear()


def load_seed_file(path: str | Path) -> list[Rule]:
    """
    Parse a JSON array of rule definitions.

    Raises:
        FileNotFoundError: If the file does not exist
        pydantic.ValidationError: If a rule definition is invalid
    """
    raw = orjson.loads(Path(path).read_bytes())
    return _rule_list.validate_python(raw)


# Global repository instance
rule_repository = RuleRepository()
