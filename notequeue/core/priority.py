"""
Queue ordering policy.

Jobs are ordered by priority rank (urgent > high > normal > low), then by
created_at ascending, then by job_id. Strict ordering means sustained high
priority load can starve low priority jobs; there is no aging.
"""

from datetime import datetime

from sqlalchemy import case

from notequeue.models.enums import JobPriority, SubscriptionTier

PRIORITY_RANK = {
    JobPriority.URGENT.value: 3,
    JobPriority.HIGH.value: 2,
    JobPriority.NORMAL.value: 1,
    JobPriority.LOW.value: 0,
}

TIER_PRIORITY = {
    SubscriptionTier.FREE.value: JobPriority.LOW,
    SubscriptionTier.STUDENT.value: JobPriority.NORMAL,
    SubscriptionTier.PRO.value: JobPriority.HIGH,
}


def priority_for_tier(tier: str | SubscriptionTier | None) -> JobPriority:
    """Map a subscription tier to a queue priority. Unknown tiers get LOW.

    URGENT is never derived from a tier; it can only be assigned directly.
    """
    if isinstance(tier, SubscriptionTier):
        tier = tier.value
    if not tier:
        return JobPriority.LOW
    return TIER_PRIORITY.get(str(tier).lower(), JobPriority.LOW)


def normalize_priority(priority: str | JobPriority | None) -> JobPriority:
    if priority is None:
        return JobPriority.NORMAL
    try:
        return JobPriority(priority)
    except ValueError:
        raise ValueError(f"Unknown priority: {priority}")


def ordering_key(priority: str | JobPriority, created_at: datetime, job_id: str = ""):
    """Sort key equivalent to the store's claim order; smaller sorts first."""
    rank = PRIORITY_RANK[JobPriority(priority).value]
    return (-rank, created_at, job_id)


def priority_rank_expr(column):
    """SQL expression ranking a priority column the same way as PRIORITY_RANK."""
    return case(PRIORITY_RANK, value=column, else_=0)
