"""
Audit query service.

Read-only. Pagination is keyed on the monotonic entry id: the cursor is the
last id the caller has seen, so entries appended while a caller pages
through the log never shift rows between pages. Aggregates run over the
exact filter set the detail query uses.
"""
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, List, Optional
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.base import as_utc, utcnow
from app.features.audit.models import AuditDecision, AuditEntry
from app.features.audit.schemas import (
    ActivitySummary,
    AggregateBucket,
    AggregateGroupBy,
    AuditAggregate,
    AuditEntryResponse,
    AuditFilters,
    AuditPage,
)


CATEGORICAL_COLUMNS = {
    AggregateGroupBy.ACTION: AuditEntry.action,
    AggregateGroupBy.RESOURCE_TYPE: AuditEntry.resource_type,
    AggregateGroupBy.DECISION: AuditEntry.decision,
}


def filter_conditions(filters: Optional[AuditFilters]) -> List[Any]:
    """WHERE clauses for `filters`; the single source for detail and aggregate queries."""
    if filters is None:
        return []

    conditions = []
    if filters.action:
        conditions.append(AuditEntry.action == filters.action)
    if filters.resource_type:
        conditions.append(AuditEntry.resource_type == filters.resource_type)
    if filters.resource_id:
        conditions.append(AuditEntry.resource_id == filters.resource_id)
    if filters.property_id:
        conditions.append(AuditEntry.property_id == filters.property_id)
    if filters.actor_id:
        conditions.append(AuditEntry.actor_id == filters.actor_id)
    if filters.decision:
        conditions.append(AuditEntry.decision == filters.decision.value)
    if filters.start is not None:
        conditions.append(AuditEntry.timestamp >= as_utc(filters.start))
    if filters.end is not None:
        conditions.append(AuditEntry.timestamp <= as_utc(filters.end))
    return conditions


def clamp_limit(limit: Optional[int]) -> int:
    if not limit or limit < 1:
        return config.AUDIT_PAGE_SIZE
    return min(limit, config.AUDIT_MAX_PAGE_SIZE)


async def count_matching(db: AsyncSession, filters: Optional[AuditFilters]) -> int:
    result = await db.execute(
        select(func.count()).select_from(AuditEntry).where(*filter_conditions(filters))
    )
    return result.scalar_one()


async def get_entry(db: AsyncSession, entry_id: int) -> Optional[AuditEntry]:
    result = await db.execute(select(AuditEntry).where(AuditEntry.id == entry_id))
    return result.scalar_one_or_none()


async def query_audit_log(
    db: AsyncSession,
    filters: Optional[AuditFilters] = None,
    cursor: Optional[int] = None,
    limit: Optional[int] = None,
    descending: bool = False,
) -> AuditPage:
    """
    One page of matching entries in id order.

    Args:
        filters: action / resource / actor / decision / date-range filters
        cursor: `next_cursor` from the previous page; None for the first page
        limit: page size, clamped to AUDIT_MAX_PAGE_SIZE
        descending: newest first; entries appended after the first page are
            then not part of this walk

    Returns:
        AuditPage with `next_cursor` None once the walk is complete
    """
    page_size = clamp_limit(limit)
    conditions = filter_conditions(filters)

    stmt = select(AuditEntry).where(*conditions)
    if cursor is not None:
        stmt = stmt.where(AuditEntry.id < cursor if descending else AuditEntry.id > cursor)
    stmt = stmt.order_by(AuditEntry.id.desc() if descending else AuditEntry.id.asc())
    # One extra row tells us whether another page exists
    stmt = stmt.limit(page_size + 1)

    result = await db.execute(stmt)
    rows = list(result.scalars().all())
    has_more = len(rows) > page_size
    rows = rows[:page_size]

    return AuditPage(
        entries=[AuditEntryResponse.model_validate(row) for row in rows],
        next_cursor=rows[-1].id if has_more else None,
        total_matching=await count_matching(db, filters),
    )


def time_bucket(timestamp: datetime, group_by: AggregateGroupBy) -> str:
    moment = as_utc(timestamp)
    if group_by == AggregateGroupBy.HOUR:
        return moment.strftime("%Y-%m-%dT%H:00Z")
    if group_by == AggregateGroupBy.DAY:
        return moment.strftime("%Y-%m-%d")
    year, week, _ = moment.isocalendar()
    return f"{year}-W{week:02d}"


async def query_audit_aggregate(
    db: AsyncSession,
    filters: Optional[AuditFilters] = None,
    group_by: AggregateGroupBy = AggregateGroupBy.ACTION,
) -> AuditAggregate:
    """
    Counts of matching entries grouped by a column or a UTC time bucket.

    Categorical buckets come back largest first, time buckets oldest first.
    """
    group_by = AggregateGroupBy(group_by)
    conditions = filter_conditions(filters)

    if group_by in CATEGORICAL_COLUMNS:
        column = CATEGORICAL_COLUMNS[group_by]
        result = await db.execute(
            select(column, func.count())
            .where(*conditions)
            .group_by(column)
            .order_by(func.count().desc(), column)
        )
        buckets = [AggregateBucket(key=str(key), count=count) for key, count in result.all()]
    else:
        # Bucketed in Python so the same code runs on SQLite and PostgreSQL
        result = await db.execute(select(AuditEntry.timestamp).where(*conditions))
        counts = Counter(time_bucket(ts, group_by) for ts in result.scalars())
        buckets = [AggregateBucket(key=key, count=counts[key]) for key in sorted(counts)]

    return AuditAggregate(
        group_by=group_by,
        buckets=buckets,
        total=sum(bucket.count for bucket in buckets),
    )


async def activity_summary(
    db: AsyncSession,
    filters: Optional[AuditFilters] = None,
    now: Optional[datetime] = None,
) -> ActivitySummary:
    """Dashboard headline: activity in the last day and week, and what it was."""
    now = as_utc(now or utcnow())
    base = filters or AuditFilters()

    day = base.model_copy(update={"start": now - timedelta(hours=24), "end": now})
    week = base.model_copy(update={"start": now - timedelta(days=7), "end": now})
    denied_week = week.model_copy(update={"decision": AuditDecision.DENIED})

    by_action = await query_audit_aggregate(db, week, AggregateGroupBy.ACTION)
    latest = await db.execute(select(func.max(AuditEntry.id)).where(*filter_conditions(base)))

    return ActivitySummary(
        last_24_hours=await count_matching(db, day),
        last_7_days=by_action.total,
        denied_last_7_days=await count_matching(db, denied_week),
        by_action_last_7_days={bucket.key: bucket.count for bucket in by_action.buckets},
        latest_entry_id=latest.scalar_one_or_none(),
    )
