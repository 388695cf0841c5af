"""
Authorization API routes.

`/evaluate` is the preflight used by UI gates before rendering an
affordance. `/enforce` is for external adapters and background jobs that
perform a decision-worthy action elsewhere and need the verdict recorded.
Both describe the resource from stored rows, never from the request body.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.actors.dependencies import get_current_actor
from app.features.actors.models import Actor
from app.features.audit.recorder import record_decision
from app.features.authorization.capabilities import (
    CAPABILITY_TABLE_VERSION,
    PERMISSION_KEYS,
    ROLE_BASE_GRANTS,
    SCOPE_CAPABILITIES,
)
from app.features.authorization.dependencies import client_ip, deny_exception, resolve_resource, user_agent
from app.features.authorization.evaluator import evaluate
from app.features.authorization.schemas import DecisionResponse, EnforceRequest, EvaluateRequest
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


@router.post("/evaluate", response_model=DecisionResponse)
async def evaluate_action(
    body: EvaluateRequest,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Evaluate an action for the current actor without performing it."""
    resource = await resolve_resource(db, body.resource)
    decision = await evaluate(db, actor, body.action, resource)
    
    entry_id = None
    if body.record:
        entry = await record_decision(
            db,
            actor,
            body.action,
            resource,
            decision,
            details={"preflight": True},
            ip_address=client_ip(request),
            user_agent=user_agent(request),
        )
        entry_id = entry.id
    
    return DecisionResponse.from_decision(decision, entry_id)


@router.post("/enforce", response_model=DecisionResponse, status_code=status.HTTP_201_CREATED)
async def enforce_action(
    body: EnforceRequest,
    request: Request,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Evaluate and record a decision-worthy action.
    
    Allowed actions return 201 with the audit entry id; denials are recorded
    and answered with 403.
    """
    resource = await resolve_resource(db, body.resource)
    decision = await evaluate(db, actor, body.action, resource)
    entry = await record_decision(
        db,
        actor,
        body.action,
        resource,
        decision,
        details=body.details,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
    
    if not decision.allowed:
        raise deny_exception(decision, entry.id)
    
    return DecisionResponse.from_decision(decision, entry.id)


@router.get("/capabilities")
async def get_capability_table():
    """The capability table this process enforces."""
    return {
        "version": CAPABILITY_TABLE_VERSION,
        "scopes": {scope.value: sorted(a.value for a in actions) for scope, actions in SCOPE_CAPABILITIES.items()},
        "role_base_grants": {role.value: sorted(a.value for a in actions) for role, actions in ROLE_BASE_GRANTS.items()},
        "permission_keys": {action.value: key for action, key in PERMISSION_KEYS.items()},
    }
