"""
Assignment API routes.

Called by the owner and manager assignment workflows whenever a delegation
relationship changes. Each workflow is authorized against the property,
performs the edge mutation, then records one audit entry for the property.
"""
from datetime import datetime
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.actors.dependencies import get_actor_or_404, get_current_actor
from app.features.actors.models import Actor
from app.features.assignments import service
from app.features.assignments.models import RelationKind
from app.features.assignments.schemas import (
    ActiveEdgeResponse,
    AssignmentEdgeResponse,
    AssignmentResult,
    GoverningRelationResponse,
    ManagerSubscriptionCreate,
    RevocationResult,
    VendorAssignmentCreate,
)
from app.features.authorization.capabilities import Action, Role, Scope
from app.features.authorization.dependencies import authorize, record_allowed
from app.features.properties.dependencies import get_property_or_404, property_ref
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# Capability needed to change a delegate's edge, by delegate role
ASSIGNING_CAPABILITY = {
    Role.PROPERTY_MANAGER.value: Action.ASSIGN_MANAGER,
    Role.VENDOR.value: Action.ASSIGN_SUB_VENDOR,
}

RELATION_CAPABILITY = {
    RelationKind.SUBSCRIPTION.value: Action.ASSIGN_MANAGER,
    RelationKind.TASK_GRANT.value: Action.ASSIGN_SUB_VENDOR,
}


async def _load_delegate(db: AsyncSession, subject_id: str, expected_role: Role) -> Actor:
    subject = await get_actor_or_404(db, subject_id)
    if subject.role != expected_role.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Actor {subject_id} is not a {expected_role.value}"
        )
    if subject.is_suspended:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Actor {subject_id} is suspended and cannot be assigned"
        )
    return subject


async def _assign(
    db: AsyncSession,
    actor: Actor,
    request: Request,
    *,
    property_id: str,
    subject_id: str,
    subject_role: Role,
    scope: Scope,
    kind: RelationKind,
    ends_at: Optional[datetime],
    replace: bool,
    audit_action: str,
    extra_details: Optional[dict] = None,
) -> AssignmentResult:
    prop = await get_property_or_404(db, property_id)
    resource = property_ref(prop)
    capability = ASSIGNING_CAPABILITY[subject_role.value]
    details = {"subject_id": subject_id, "scope": scope.value, **(extra_details or {})}

    decision = await authorize(
        db, actor, capability, resource, request=request, audit_action=audit_action, details=details
    )

    subject = await _load_delegate(db, subject_id, subject_role)

    relation = await service.create_governing_relation(
        db,
        kind,
        property_id=prop.id,
        grantor_id=actor.id,
        grantee_id=subject.id,
        ends_at=ends_at,
        commit=False,
    )
    previous = None
    if replace:
        edge, previous = await service.replace_edge(db, subject.id, prop.id, scope, relation.id, actor.id)
    else:
        edge = await service.create_edge(db, subject.id, prop.id, scope, relation.id, actor.id)

    # Snapshot before the audit write; a retried commit expires the session
    edge_response = AssignmentEdgeResponse.model_validate(edge)
    relation_response = GoverningRelationResponse.model_validate(relation)
    replaced_edge_id = previous.id if previous else None

    entry = await record_allowed(
        db,
        actor,
        resource,
        decision,
        request=request,
        audit_action=audit_action,
        details={
            **details,
            "edge_id": edge_response.id,
            "governing_relation_id": relation_response.id,
            "relation_kind": relation_response.kind,
            "replaced_edge_id": replaced_edge_id,
        },
    )

    return AssignmentResult(
        edge=edge_response,
        relation=relation_response,
        replaced_edge_id=replaced_edge_id,
        audit_entry_id=entry.id,
    )


@router.post("/subscriptions", response_model=AssignmentResult, status_code=status.HTTP_201_CREATED)
async def subscribe_manager(
    body: ManagerSubscriptionCreate,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Subscribe a property manager to a property (owner or super admin)."""
    return await _assign(
        db,
        actor,
        request,
        property_id=body.property_id,
        subject_id=body.manager_id,
        subject_role=Role.PROPERTY_MANAGER,
        scope=body.scope,
        kind=RelationKind.SUBSCRIPTION,
        ends_at=body.ends_at,
        replace=body.replace,
        audit_action="subscribe_manager",
    )


@router.post("/vendors", response_model=AssignmentResult, status_code=status.HTTP_201_CREATED)
async def assign_vendor(
    body: VendorAssignmentCreate,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Assign a vendor to a property (owner, assigned manager, or super admin)."""
    return await _assign(
        db,
        actor,
        request,
        property_id=body.property_id,
        subject_id=body.vendor_id,
        subject_role=Role.VENDOR,
        scope=body.scope,
        kind=RelationKind.TASK_GRANT,
        ends_at=body.ends_at,
        replace=body.replace,
        audit_action="assign_vendor",
        extra_details={"task_id": body.task_id} if body.task_id else None,
    )


@router.delete("/{property_id}/{subject_id}", response_model=RevocationResult)
async def revoke_assignment(
    property_id: str,
    subject_id: str,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Revoke a delegate's assignment on a property. The edge is kept as history."""
    prop = await get_property_or_404(db, property_id)
    resource = property_ref(prop)
    subject = await get_actor_or_404(db, subject_id)

    capability = ASSIGNING_CAPABILITY.get(subject.role)
    if capability is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Actor {subject_id} cannot hold assignments"
        )

    details = {"subject_id": subject.id}
    decision = await authorize(
        db, actor, capability, resource, request=request, audit_action="revoke_assignment", details=details
    )
    edge = AssignmentEdgeResponse.model_validate(await service.revoke_edge(db, subject.id, prop.id, actor.id))

    entry = await record_allowed(
        db,
        actor,
        resource,
        decision,
        request=request,
        audit_action="revoke_assignment",
        details={**details, "edge_id": edge.id, "scope": edge.scope.value},
    )
    return RevocationResult(edge=edge, audit_entry_id=entry.id)


@router.post("/relations/{relation_id}/end", response_model=GoverningRelationResponse)
async def end_relation(
    relation_id: str,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    End a subscription or task grant.

    Edges it justifies stop granting access immediately, without a
    cascading write.
    """
    relation = await service.get_governing_relation(db, relation_id)
    if relation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Governing relation not found"
        )

    prop = await get_property_or_404(db, relation.property_id)
    resource = property_ref(prop)
    audit_action = f"end_{relation.kind}"
    details = {"governing_relation_id": relation.id, "grantee_id": relation.grantee_id}

    decision = await authorize(
        db,
        actor,
        RELATION_CAPABILITY[relation.kind],
        resource,
        request=request,
        audit_action=audit_action,
        details=details,
    )
    relation = GoverningRelationResponse.model_validate(await service.end_governing_relation(db, relation_id))

    await record_allowed(
        db, actor, resource, decision, request=request, audit_action=audit_action, details=details
    )
    return relation


@router.get("/properties/{property_id}", response_model=list[AssignmentEdgeResponse])
async def list_property_assignments(
    property_id: str,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)],
    include_revoked: bool = False
):
    """Assignments on a property; revoked and lapsed edges with `include_revoked`."""
    prop = await get_property_or_404(db, property_id)
    await authorize(db, actor, Action.VIEW, property_ref(prop), request=request)
    return await service.list_property_edges(db, prop.id, include_revoked=include_revoked)


@router.get("/active", response_model=ActiveEdgeResponse)
async def get_active_assignment(
    subject_id: str,
    property_id: str,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """The edge currently granting `subject_id` access to `property_id`, if any."""
    prop = await get_property_or_404(db, property_id)
    if actor.id != subject_id:
        await authorize(db, actor, Action.VIEW, property_ref(prop), request=request)

    edge = await service.find_active_edge(db, subject_id, prop.id)
    return ActiveEdgeResponse(
        subject_id=subject_id,
        property_id=prop.id,
        edge=AssignmentEdgeResponse.model_validate(edge) if edge else None,
    )
