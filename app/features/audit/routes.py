"""
Audit trail API routes.

The full log and its aggregates are super admin only. A property's activity
feed is readable by anyone who may view the property.
"""
from datetime import datetime
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.rate_limit import limiter
from app.features.actors.dependencies import get_current_actor, get_current_super_admin
from app.features.actors.models import Actor
from app.features.audit.models import AuditDecision
from app.features.audit.query import activity_summary, get_entry, query_audit_aggregate, query_audit_log
from app.features.audit.schemas import (
    ActivitySummary,
    AggregateGroupBy,
    AuditAggregate,
    AuditEntryResponse,
    AuditFilters,
    AuditPage,
)
from app.features.authorization.capabilities import Action
from app.features.authorization.dependencies import authorize
from app.features.properties.dependencies import get_property_or_404, property_ref


router = APIRouter()


def get_audit_filters(
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    property_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    decision: Optional[AuditDecision] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
) -> AuditFilters:
    """Query-string filters shared by the log and aggregate endpoints."""
    try:
        return AuditFilters(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            property_id=property_id,
            actor_id=actor_id,
            decision=decision,
            start=start,
            end=end,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start must not be after end"
        ) from exc


@router.get("/entries", response_model=AuditPage)
@limiter.limit(config.AUDIT_QUERY_RATE_LIMIT)
async def list_audit_entries(
    request: Request,
    admin: Annotated[Actor, Depends(get_current_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    filters: Annotated[AuditFilters, Depends(get_audit_filters)],
    cursor: Optional[int] = None,
    limit: int = Query(config.AUDIT_PAGE_SIZE, ge=1),
    descending: bool = False
):
    """
    Page through the audit log.

    Pass `next_cursor` from the previous page as `cursor`; each matching
    entry is returned exactly once even while new entries are appended.
    """
    return await query_audit_log(db, filters, cursor=cursor, limit=limit, descending=descending)


@router.get("/entries/{entry_id}", response_model=AuditEntryResponse)
@limiter.limit(config.AUDIT_QUERY_RATE_LIMIT)
async def get_audit_entry(
    entry_id: int,
    request: Request,
    admin: Annotated[Actor, Depends(get_current_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    entry = await get_entry(db, entry_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Audit entry not found"
        )
    return entry


@router.get("/aggregate", response_model=AuditAggregate)
@limiter.limit(config.AUDIT_QUERY_RATE_LIMIT)
async def aggregate_audit_entries(
    request: Request,
    admin: Annotated[Actor, Depends(get_current_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    filters: Annotated[AuditFilters, Depends(get_audit_filters)],
    group_by: AggregateGroupBy = AggregateGroupBy.ACTION
):
    """Counts over the same filter set as `/entries`."""
    return await query_audit_aggregate(db, filters, group_by)


@router.get("/summary", response_model=ActivitySummary)
@limiter.limit(config.AUDIT_QUERY_RATE_LIMIT)
async def get_activity_summary(
    request: Request,
    admin: Annotated[Actor, Depends(get_current_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    filters: Annotated[AuditFilters, Depends(get_audit_filters)]
):
    """Activity-monitor headline numbers."""
    return await activity_summary(db, filters)


@router.get("/properties/{property_id}", response_model=AuditPage)
async def get_property_activity(
    property_id: str,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)],
    cursor: Optional[int] = None,
    limit: int = Query(config.AUDIT_PAGE_SIZE, ge=1)
):
    """Recent activity on a property, newest first."""
    prop = await get_property_or_404(db, property_id)
    await authorize(db, actor, Action.VIEW, property_ref(prop), request=request)

    return await query_audit_log(
        db, AuditFilters(property_id=prop.id), cursor=cursor, limit=limit, descending=True
    )
