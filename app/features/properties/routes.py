"""
Property registry routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import generate_ulid
from app.core.database.engine import get_db
from app.features.actors.dependencies import get_actor_or_404, get_current_actor
from app.features.actors.models import Actor
from app.features.authorization.capabilities import Action, ResourceType, Role
from app.features.authorization.dependencies import authorize, record_allowed
from app.features.authorization.schemas import ResourceRef
from app.features.properties.dependencies import get_property_or_404, property_ref
from app.features.properties.models import Property
from app.features.properties.schemas import PropertyCreate, PropertyResponse


router = APIRouter()


@router.post("/", response_model=PropertyResponse, status_code=status.HTTP_201_CREATED)
async def create_property(
    body: PropertyCreate,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Register a property. Owners register their own; super admins on behalf of an owner."""
    owner_id = actor.id if actor.role == Role.PROPERTY_OWNER.value else body.owner_id
    if owner_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="owner_id is required when registering on behalf of an owner"
        )
    
    # The new property is evaluated as already owned by `owner_id`
    resource = ResourceRef(
        resource_type=ResourceType.PROPERTY,
        resource_id=generate_ulid(),
        owner_id=owner_id,
    )
    decision = await authorize(
        db, actor, Action.EDIT_PROPERTY, resource, request=request, audit_action="create_property"
    )
    
    owner = await get_actor_or_404(db, owner_id)
    if owner.role != Role.PROPERTY_OWNER.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Properties must be owned by a property owner"
        )
    
    prop = Property(id=resource.resource_id, owner_id=owner.id, title=body.title, address=body.address)
    db.add(prop)
    await db.commit()
    await db.refresh(prop)
    response = PropertyResponse.model_validate(prop)
    
    await record_allowed(
        db,
        actor,
        property_ref(prop),
        decision,
        request=request,
        audit_action="create_property",
        details={"title": response.title},
    )
    return response


@router.get("/mine", response_model=list[PropertyResponse])
async def list_my_properties(
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Properties owned by the current actor."""
    result = await db.execute(
        select(Property)
        .where(Property.owner_id == actor.id)
        .order_by(Property.created_at, Property.id)
    )
    return result.scalars().all()


@router.get("/{property_id}", response_model=PropertyResponse)
async def get_property(
    property_id: str,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get a property the current actor may view."""
    prop = await get_property_or_404(db, property_id)
    await authorize(db, actor, Action.VIEW, property_ref(prop), request=request)
    return prop
