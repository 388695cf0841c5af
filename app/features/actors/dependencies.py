"""
FastAPI dependencies for resolving the calling actor.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.actors.auth import verify_jwt_token
from app.features.actors.models import Actor
from app.features.authorization.capabilities import Role


security = HTTPBearer()


async def get_actor_by_id(db: AsyncSession, actor_id: str) -> Actor | None:
    result = await db.execute(select(Actor).where(Actor.id == actor_id))
    return result.scalar_one_or_none()


async def get_actor_or_404(db: AsyncSession, actor_id: str) -> Actor:
    actor = await get_actor_by_id(db, actor_id)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Actor not found"
        )
    return actor


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Actor:
    """
    Resolve the bearer token to an Actor.
    
    Suspended actors are returned as well: the policy evaluator denies them
    with ActorSuspended, and that denial belongs in the audit trail.
    
    Usage:
        @router.get("/me")
        async def get_me(actor: Actor = Depends(get_current_actor)):
            return actor
    """
    payload = verify_jwt_token(credentials.credentials)
    actor = await get_actor_by_id(db, payload["sub"])
    
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown actor",
            headers={"WWW-Authenticate": "Bearer"},
        )
    
    return actor


async def get_current_super_admin(
    actor: Annotated[Actor, Depends(get_current_actor)]
) -> Actor:
    """
    Require an active super admin.
    
    Usage:
        @router.post("/{actor_id}/suspend")
        async def suspend(admin: Actor = Depends(get_current_super_admin)):
            ...
    """
    if actor.role != Role.SUPER_ADMIN.value or actor.is_suspended:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Super admin privileges required",
        )
    return actor
