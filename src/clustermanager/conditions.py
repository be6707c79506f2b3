"""Status condition bookkeeping with upsert-by-type semantics.

A ClusterManager carries at most one condition per type. Writing a
condition replaces the existing one of the same type and leaves every other
condition untouched. ConditionSet keeps the conditions in a mapping keyed by
type so the replacement rule is structural; the ordered list form only exists
on the ClusterManagerStatus model.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from .models import Condition, ConditionStatus

# Condition types and reasons written by this operator
CONDITION_APPLIED = "Applied"
REASON_HUB_RESOURCE_APPLY_FAILED = "HubResourceApplyFailed"
REASON_CLUSTER_MANAGER_APPLIED = "ClusterManagerApplied"


class ConditionSet:
    """Conditions keyed by type, preserving first-insertion order."""

    def __init__(self, conditions: Iterable[Condition] = ()) -> None:
        self._conditions: dict[str, Condition] = {}
        for condition in conditions:
            self._conditions[condition.type] = condition

    def get(self, condition_type: str) -> Condition | None:
        return self._conditions.get(condition_type)

    def set(self, condition: Condition, now: datetime | None = None) -> ConditionSet:
        """Insert or replace the condition of the same type.

        The last transition time only moves when the status changes; an
        update that keeps the status keeps the previous timestamp.
        """
        existing = self._conditions.get(condition.type)
        transition_time = condition.last_transition_time or now or datetime.now(UTC)
        if existing is not None and existing.status == condition.status:
            transition_time = existing.last_transition_time or transition_time

        self._conditions[condition.type] = condition.model_copy(
            update={"last_transition_time": transition_time}
        )
        return self

    def remove(self, condition_type: str) -> bool:
        return self._conditions.pop(condition_type, None) is not None

    def is_true(self, condition_type: str) -> bool:
        condition = self._conditions.get(condition_type)
        return condition is not None and condition.status == ConditionStatus.TRUE

    def to_list(self) -> list[Condition]:
        return list(self._conditions.values())

    def __len__(self) -> int:
        return len(self._conditions)

    def __contains__(self, condition_type: object) -> bool:
        return condition_type in self._conditions


def set_status_condition(conditions: list[Condition], condition: Condition) -> list[Condition]:
    """Upsert a condition into a list in place and return the list."""
    updated = ConditionSet(conditions).set(condition).to_list()
    conditions[:] = updated
    return conditions


def find_status_condition(conditions: Iterable[Condition], condition_type: str) -> Condition | None:
    return ConditionSet(conditions).get(condition_type)
