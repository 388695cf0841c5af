"""
Enforcement adapter between HTTP routes and the authorization core.

Routes call `authorize` before a mutation: it evaluates, records and raises
on a denial, and hands back the Decision on allow. After the mutation has
committed, the route records the allowed action with `record_allowed`.
"""
from typing import Any, Dict, Optional
from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.actors.models import Actor
from app.features.audit.models import AuditEntry
from app.features.audit.recorder import record_decision
from app.features.authorization.capabilities import Action, ResourceType
from app.features.authorization.evaluator import evaluate
from app.features.authorization.schemas import Decision, DecisionReason, ResourceRef
from app.features.properties.dependencies import get_property_or_404, property_ref


DENY_MESSAGES = {
    DecisionReason.ACTOR_SUSPENDED: "Your account is suspended",
    DecisionReason.INSUFFICIENT_SCOPE: "Your assignment on this property does not allow '{action}'",
    DecisionReason.NO_GRANT: "You are not assigned to this property",
}


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def user_agent(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    return request.headers.get("user-agent")


def deny_exception(decision: Decision, audit_entry_id: Optional[int] = None) -> HTTPException:
    """403 carrying the machine-readable reason so clients can branch on it."""
    message = DENY_MESSAGES.get(decision.reason, "Permission denied")
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "reason": decision.reason.value if decision.reason else None,
            "action": decision.action.value,
            "detail": message.format(action=decision.action.value),
            "audit_entry_id": audit_entry_id,
        },
    )


async def resolve_resource(db: AsyncSession, resource: ResourceRef) -> ResourceRef:
    """
    Rebuild a caller-described resource from stored state.

    Ownership never comes from the request. A property is described from
    its row; anything inside a property is owned by that property's owner;
    anything else has no owner.
    """
    if resource.resource_type == ResourceType.PROPERTY:
        prop = await get_property_or_404(db, resource.resource_id)
        return property_ref(prop)
    
    owner_id = None
    if resource.property_id is not None:
        prop = await get_property_or_404(db, resource.property_id)
        owner_id = prop.owner_id
    return resource.model_copy(update={"owner_id": owner_id})


def _entry_details(
    decision: Decision,
    audit_action: Optional[str],
    details: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    entry_details: Dict[str, Any] = {}
    if audit_action and audit_action != decision.action.value:
        entry_details["capability"] = decision.action.value
    entry_details.update(details or {})
    return entry_details


async def authorize(
    db: AsyncSession,
    actor: Actor,
    action: Action,
    resource: ResourceRef,
    request: Optional[Request] = None,
    audit_action: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Decision:
    """
    Evaluate and, on deny, record the attempt and raise 403.

    Args:
        audit_action: verb written to the audit trail; defaults to `action`
        details: extra context stored with a denial entry
    """
    decision = await evaluate(db, actor, action, resource)
    if not decision.allowed:
        entry = await record_decision(
            db,
            actor,
            audit_action or action.value,
            resource,
            decision,
            details=_entry_details(decision, audit_action, details),
            ip_address=client_ip(request),
            user_agent=user_agent(request),
        )
        raise deny_exception(decision, entry.id)
    return decision


async def record_allowed(
    db: AsyncSession,
    actor: Actor,
    resource: ResourceRef,
    decision: Decision,
    request: Optional[Request] = None,
    audit_action: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    """Record a committed, allowed action."""
    return await record_decision(
        db,
        actor,
        audit_action or decision.action.value,
        resource,
        decision,
        details=_entry_details(decision, audit_action, details),
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
