"""
Policy evaluator.

`decide` is the whole policy: a pure function of the actor, the action, the
resource and the assignment edge consulted for it. `evaluate` only loads
that edge from the assignment graph and hands over. Neither writes the
audit trail; the calling adapter records the decision.

Precedence, first match wins:
    1. suspended actor          -> deny  ActorSuspended
    2. super_admin              -> allow
    3. owner with base grant    -> allow
    4. active assignment edge   -> allow if its scope covers the action,
                                   else deny InsufficientScope
    5. permission override      -> allow ExplicitOverride
    6. otherwise                -> deny  NoGrant
"""
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.assignments.service import find_active_edge
from app.features.authorization.capabilities import (
    Action,
    ActorStatus,
    Role,
    Scope,
    base_grant,
    permission_key_for,
    scope_covers,
)
from app.features.authorization.schemas import Decision, DecisionReason, GrantBasis, ResourceRef
from app.utils import get_logger


log = get_logger(__name__)


class ActorLike(Protocol):
    id: str
    role: str
    status: str
    permission_overrides: Optional[Mapping[str, Any]]


class EdgeLike(Protocol):
    id: str
    scope: str


def decide(
    actor: ActorLike,
    action: Action | str,
    resource: ResourceRef,
    edge: Optional[EdgeLike] = None,
) -> Decision:
    """
    Decide whether `actor` may perform `action` on `resource`.

    `edge` must be the active assignment edge for (actor, resource.property_id)
    or None; callers outside tests should use `evaluate`, which looks it up.
    """
    action = Action(action)

    if actor.status == ActorStatus.SUSPENDED.value:
        return Decision.deny(action, DecisionReason.ACTOR_SUSPENDED)

    if actor.role == Role.SUPER_ADMIN.value:
        return Decision.allow(action, GrantBasis.SUPER_ADMIN)

    if resource.owner_id is not None and resource.owner_id == actor.id:
        if action in base_grant(actor.role):
            return Decision.allow(action, GrantBasis.OWNERSHIP)

    if edge is not None:
        scope = Scope(edge.scope)
        if scope_covers(scope, action):
            return Decision.allow(action, GrantBasis.ASSIGNMENT, scope=scope, edge_id=edge.id)
        return Decision.deny(action, DecisionReason.INSUFFICIENT_SCOPE, scope=scope, edge_id=edge.id)

    overrides = actor.permission_overrides or {}
    if overrides.get(permission_key_for(action)) is True:
        return Decision.allow(action, GrantBasis.OVERRIDE, reason=DecisionReason.EXPLICIT_OVERRIDE)

    return Decision.deny(action, DecisionReason.NO_GRANT)


async def evaluate(
    db: AsyncSession,
    actor: ActorLike,
    action: Action | str,
    resource: ResourceRef,
    now: Optional[datetime] = None,
) -> Decision:
    """
    Evaluate a request against the live assignment graph. Read-only.
    """
    edge = None
    # Suspension and super admin never depend on the graph
    needs_edge = (
        actor.status != ActorStatus.SUSPENDED.value
        and actor.role != Role.SUPER_ADMIN.value
        and resource.property_id is not None
    )
    if needs_edge:
        edge = await find_active_edge(db, actor.id, resource.property_id, now=now)

    decision = decide(actor, action, resource, edge)

    if decision.reason == DecisionReason.EXPLICIT_OVERRIDE:
        log.warning(
            f"Override grant: actor={actor.id} action={decision.action.value} "
            f"resource={resource.resource_type.value}:{resource.resource_id}"
        )
    elif not decision.allowed:
        log.info(
            f"Denied: actor={actor.id} action={decision.action.value} "
            f"resource={resource.resource_type.value}:{resource.resource_id} reason={decision.reason.value}"
        )
    else:
        log.debug(
            f"Allowed: actor={actor.id} action={decision.action.value} "
            f"resource={resource.resource_type.value}:{resource.resource_id} basis={decision.basis.value}"
        )
    return decision
