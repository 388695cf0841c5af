"""
Actor feature routes.

Status and permission overrides change only through super admin actions,
and every such change is written to the audit trail.
"""
from typing import Annotated, Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.actors.dependencies import get_actor_or_404, get_current_actor, get_current_super_admin
from app.features.actors.models import Actor
from app.features.actors.schemas import (
    ActorCreate,
    ActorPublic,
    ActorResponse,
    OverridesUpdate,
    SuspendRequest,
)
from app.features.audit.models import AuditDecision
from app.features.audit.recorder import record
from app.features.audit.schemas import AuditEntryDraft
from app.features.authorization.capabilities import ActorStatus, Role
from app.features.authorization.dependencies import client_ip, user_agent
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["actors"])


# Delegate accounts are audited under their delegate resource type
ACTOR_RESOURCE_TYPES = {
    Role.PROPERTY_MANAGER.value: "manager",
    Role.VENDOR.value: "vendor",
}


async def _record_admin_action(
    db: AsyncSession,
    admin: Actor,
    action: str,
    target: Actor,
    request: Request,
    details: Optional[Dict[str, Any]] = None,
):
    await record(db, AuditEntryDraft(
        actor_id=admin.id,
        actor_role=admin.role,
        action=action,
        resource_type=ACTOR_RESOURCE_TYPES.get(target.role, "actor"),
        resource_id=target.id,
        decision=AuditDecision.ALLOWED,
        details={"basis": "super_admin", "target_role": target.role, **(details or {})},
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    ))


@router.post("/", response_model=ActorResponse, status_code=status.HTTP_201_CREATED)
async def register_actor(
    body: ActorCreate,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Register a new actor. Accounts start active with no overrides."""
    actor = Actor(
        email=body.email,
        name=body.name,
        role=body.role.value,
        status=ActorStatus.ACTIVE.value,
        permission_overrides={},
    )
    db.add(actor)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An actor with this email already exists"
        )
    await db.refresh(actor)

    log.info(f"Registered actor {actor.id} as {actor.role}")
    return actor


@router.get("/me", response_model=ActorResponse)
async def get_current_actor_profile(
    actor: Annotated[Actor, Depends(get_current_actor)]
):
    """Get the current actor's profile, including status and overrides."""
    return actor


@router.get("/", response_model=list[ActorResponse])
async def list_actors(
    admin: Annotated[Actor, Depends(get_current_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)],
    role: Optional[Role] = None,
    actor_status: Optional[ActorStatus] = None,
    skip: int = 0,
    limit: int = 100
):
    """List actors (super admin only)."""
    stmt = select(Actor).order_by(Actor.created_at, Actor.id)
    if role:
        stmt = stmt.where(Actor.role == role.value)
    if actor_status:
        stmt = stmt.where(Actor.status == actor_status.value)

    result = await db.execute(stmt.offset(skip).limit(limit))
    return result.scalars().all()


@router.get("/{actor_id}", response_model=ActorPublic)
async def get_actor(
    actor_id: str,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get public actor information."""
    return await get_actor_or_404(db, actor_id)


@router.post("/{actor_id}/suspend", response_model=ActorResponse)
async def suspend_actor(
    actor_id: str,
    body: SuspendRequest,
    request: Request,
    admin: Annotated[Actor, Depends(get_current_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Suspend an actor (super admin only).

    Takes effect on the actor's next evaluation; every grant, including
    ownership, is denied while suspended.
    """
    target = await get_actor_or_404(db, actor_id)

    if target.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot suspend your own account"
        )
    if target.is_suspended:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Actor is already suspended"
        )

    target.status = ActorStatus.SUSPENDED.value
    await db.commit()
    await db.refresh(target)
    response = ActorResponse.model_validate(target)
    log.info(f"Actor {target.id} suspended by {admin.id}")

    await _record_admin_action(
        db, admin, "suspend_actor", target, request,
        details={"reason": body.reason, "note": body.note},
    )
    return response


@router.post("/{actor_id}/activate", response_model=ActorResponse)
async def activate_actor(
    actor_id: str,
    request: Request,
    admin: Annotated[Actor, Depends(get_current_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Lift a suspension (super admin only)."""
    target = await get_actor_or_404(db, actor_id)

    if not target.is_suspended:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Actor is not suspended"
        )

    target.status = ActorStatus.ACTIVE.value
    await db.commit()
    await db.refresh(target)
    response = ActorResponse.model_validate(target)
    log.info(f"Actor {target.id} activated by {admin.id}")

    await _record_admin_action(db, admin, "activate_actor", target, request)
    return response


@router.put("/{actor_id}/overrides", response_model=ActorResponse)
async def set_permission_overrides(
    actor_id: str,
    body: OverridesUpdate,
    request: Request,
    admin: Annotated[Actor, Depends(get_current_super_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Replace an actor's permission overrides (super admin only)."""
    target = await get_actor_or_404(db, actor_id)

    previous = dict(target.permission_overrides or {})
    # Reassign rather than mutate: plain JSON columns do not track in-place changes
    target.permission_overrides = dict(body.permission_overrides)
    await db.commit()
    await db.refresh(target)
    response = ActorResponse.model_validate(target)

    await _record_admin_action(
        db, admin, "update_permission_overrides", target, request,
        details={"previous": previous, "current": response.permission_overrides},
    )
    return response
