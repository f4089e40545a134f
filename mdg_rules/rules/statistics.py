"""Per-rule execution statistics."""
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict

import structlog

from ..config import get_settings
from .models import Rule
from .results import RuleStatisticsSnapshot

log = structlog.get_logger()


@dataclass
class _Counters:
    usage_count: int = 0
    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_executed_at: datetime | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class StatisticsTracker:
    """
    Thread-safe arena of counters keyed by rule id.

    Each entry has its own lock so concurrent evaluations of the same rule
    never lose an increment, while different rules do not contend.
    """

    def __init__(self, effectiveness_threshold: float | None = None):
        """
        Initialize tracker.

        Args:
            effectiveness_threshold: Success rate at or above which a rule is
                effective (defaults to EFFECTIVENESS_THRESHOLD setting)
        """
        if effectiveness_threshold is None:
            effectiveness_threshold = get_settings().EFFECTIVENESS_THRESHOLD
        self.effectiveness_threshold = effectiveness_threshold
        self._entries: Dict[str, _Counters] = {}
        self._arena_lock = threading.Lock()

    def _entry(self, rule: Rule) -> _Counters:
        with self._arena_lock:
            entry = self._entries.get(rule.id)
            if entry is None:
                # Continue from whatever the storage record already holds
                entry = _Counters(
                    usage_count=rule.usage_count,
                    execution_count=rule.execution_count,
                    success_count=rule.success_count,
                    failure_count=rule.failure_count,
                    last_executed_at=rule.last_executed_at,
                )
                self._entries[rule.id] = entry
            return entry

    def record(self, rule: Rule, success: bool) -> RuleStatisticsSnapshot:
        """
        Count one evaluation of a rule.

        Args:
            rule: Rule that was evaluated
            success: Whether the evaluation produced no failures

        Returns:
            Snapshot of the counters right after this update
        """
        entry = self._entry(rule)
        with entry.lock:
            entry.usage_count += 1
            entry.execution_count += 1
            if success:
                entry.success_count += 1
            else:
                entry.failure_count += 1
            entry.last_executed_at = datetime.utcnow()
            snapshot = self._snapshot(entry)

        log.debug(
            "rule.statistics_updated",
            rule_id=rule.id,
            execution_count=snapshot.execution_count,
            success_rate=snapshot.success_rate,
        )
        return snapshot

    def get(self, rule_id: str) -> RuleStatisticsSnapshot | None:
        """Current counters for a rule, or None if it was never evaluated."""
        with self._arena_lock:
            entry = self._entries.get(rule_id)
        if entry is None:
            return None
        with entry.lock:
            return self._snapshot(entry)

    def last_executed_at(self, rule_id: str) -> datetime | None:
        with self._arena_lock:
            entry = self._entries.get(rule_id)
        return entry.last_executed_at if entry else None

    def forget(self, rule_id: str) -> bool:
        """Drop a rule's entry (e.g. after the rule is deleted)."""
        with self._arena_lock:
            return self._entries.pop(rule_id, None) is not None

    def reset(self):
        """Drop all entries (useful for testing)."""
        with self._arena_lock:
            self._entries.clear()
        log.info("statistics.reset")

    def _snapshot(self, entry: _Counters) -> RuleStatisticsSnapshot:
        rate = success_rate(entry.success_count, entry.execution_count)
        return RuleStatisticsSnapshot(
            usage_count=entry.usage_count,
            execution_count=entry.execution_count,
            success_count=entry.success_count,
            failure_count=entry.failure_count,
            success_rate=rate,
            is_effective=entry.execution_count > 0 and rate >= self.effectiveness_threshold,
        )


def success_rate(success_count: int, execution_count: int) -> float:
    """successCount / executionCount, 0 when nothing has run."""
    if execution_count == 0:
        return 0.0
    return success_count / execution_count
