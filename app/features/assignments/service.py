"""
Assignment graph store.

Edge mutations are the only synchronized writes in the authorization core.
The partial unique index over non-revoked rows is the authority on "one
active edge per (subject, property)"; the read before insert only gives a
friendlier error when the pair is already taken, and a racing insert that
slips past it surfaces as IntegrityError and is turned into ConflictError.
"""
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.core.database.base import utcnow
from app.core.errors import ConflictError, EdgeNotFound, RelationNotActive
from app.features.assignments.models import (
    AssignmentEdge,
    GoverningRelation,
    RelationKind,
    RelationStatus,
)
from app.features.authorization.capabilities import Scope
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Governing relations
# ============================================================================

async def create_governing_relation(
    db: AsyncSession,
    kind: RelationKind,
    property_id: str,
    grantor_id: str,
    grantee_id: str,
    ends_at: Optional[datetime] = None,
    commit: bool = True,
) -> GoverningRelation:
    """
    Create a subscription or task grant.

    With `commit=False` the relation is only flushed, so that the edge it
    justifies can be created in the same transaction.
    """
    relation = GoverningRelation(
        kind=RelationKind(kind).value,
        property_id=property_id,
        grantor_id=grantor_id,
        grantee_id=grantee_id,
        status=RelationStatus.ACTIVE.value,
        starts_at=utcnow(),
        ends_at=ends_at,
    )
    db.add(relation)
    await db.flush()
    if commit:
        await db.commit()

    log.info(f"Governing relation {relation.id} ({relation.kind}) created on property {property_id}")
    return relation


async def get_governing_relation(db: AsyncSession, relation_id: str) -> Optional[GoverningRelation]:
    result = await db.execute(
        select(GoverningRelation)
        .where(GoverningRelation.id == relation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def end_governing_relation(db: AsyncSession, relation_id: str) -> GoverningRelation:
    """
    End a subscription or task grant.

    Edges citing it stop granting anything immediately; their `revoked_at`
    is filled in lazily the next time the pair is reassigned.
    """
    relation = await get_governing_relation(db, relation_id)
    if relation is None or relation.status != RelationStatus.ACTIVE.value:
        raise RelationNotActive(relation_id)

    relation.status = RelationStatus.ENDED.value
    relation.ended_at = utcnow()
    await db.commit()

    log.info(f"Governing relation {relation_id} ended")
    return relation


async def _require_active_relation(
    db: AsyncSession,
    relation_id: str,
    subject_id: str,
    property_id: str,
    now: datetime,
) -> GoverningRelation:
    relation = await get_governing_relation(db, relation_id)
    if (
        relation is None
        or not relation.is_active(now)
        or relation.property_id != property_id
        or relation.grantee_id != subject_id
    ):
        raise RelationNotActive(relation_id)
    return relation


# ============================================================================
# Edges
# ============================================================================

async def _current_edge(
    db: AsyncSession,
    subject_id: str,
    property_id: str,
) -> Optional[AssignmentEdge]:
    """The non-revoked edge for the pair, whether or not its relation is still active."""
    result = await db.execute(
        select(AssignmentEdge).where(
            AssignmentEdge.subject_id == subject_id,
            AssignmentEdge.property_id == property_id,
            AssignmentEdge.revoked_at.is_(None),
        )
        # Another session may have ended the relation since we last looked
        .execution_options(populate_existing=True)
    )
    return result.unique().scalar_one_or_none()


async def _mark_revoked(
    db: AsyncSession,
    edge: AssignmentEdge,
    revoked_by: Optional[str],
    now: datetime,
) -> bool:
    """Compare-and-set `revoked_at`; False when another writer got there first."""
    result = await db.execute(
        update(AssignmentEdge)
        .where(AssignmentEdge.id == edge.id, AssignmentEdge.revoked_at.is_(None))
        .values(revoked_at=now, revoked_by=revoked_by)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    # Mirror the row without marking the instance dirty
    set_committed_value(edge, "revoked_at", now)
    set_committed_value(edge, "revoked_by", revoked_by)
    return True


async def _insert_edge(
    db: AsyncSession,
    subject_id: str,
    property_id: str,
    scope: Scope,
    relation: GoverningRelation,
    assigned_by: str,
    now: datetime,
) -> AssignmentEdge:
    edge = AssignmentEdge(
        subject_id=subject_id,
        property_id=property_id,
        scope=Scope(scope).value,
        governing_relation_id=relation.id,
        assigned_by=assigned_by,
        assigned_at=now,
    )
    edge.governing_relation = relation
    db.add(edge)
    await db.flush()
    return edge


async def create_edge(
    db: AsyncSession,
    subject_id: str,
    property_id: str,
    scope: Scope,
    governing_relation_id: str,
    assigned_by: str,
) -> AssignmentEdge:
    """
    Create an edge for a pair that has no active one.

    Raises:
        ConflictError: an active edge exists, or a concurrent create won
        RelationNotActive: the governing relation cannot justify this edge
    """
    now = utcnow()
    try:
        relation = await _require_active_relation(db, governing_relation_id, subject_id, property_id, now)

        current = await _current_edge(db, subject_id, property_id)
        if current is not None:
            if current.is_active(now):
                raise ConflictError(subject_id, property_id)
            # Relation lapsed: materialise the implicit revocation
            log.info(f"Revoking stale edge {current.id}: governing relation no longer active")
            if not await _mark_revoked(db, current, None, now):
                raise ConflictError(subject_id, property_id)

        edge = await _insert_edge(db, subject_id, property_id, scope, relation, assigned_by, now)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        log.info(f"Concurrent assignment lost the race for subject={subject_id} property={property_id}")
        raise ConflictError(subject_id, property_id)
    except (ConflictError, RelationNotActive):
        await db.rollback()
        raise

    log.info(f"Edge {edge.id} created: subject={subject_id} property={property_id} scope={edge.scope}")
    return edge


async def revoke_edge(
    db: AsyncSession,
    subject_id: str,
    property_id: str,
    revoked_by: str,
) -> AssignmentEdge:
    """
    Revoke the pair's non-revoked edge. The row is kept.

    Raises:
        EdgeNotFound: nothing to revoke
    """
    now = utcnow()
    edge = await _current_edge(db, subject_id, property_id)
    if edge is None or not await _mark_revoked(db, edge, revoked_by, now):
        await db.rollback()
        raise EdgeNotFound(subject_id, property_id)

    await db.commit()
    log.info(f"Edge {edge.id} revoked by {revoked_by}")
    return edge


async def replace_edge(
    db: AsyncSession,
    subject_id: str,
    property_id: str,
    scope: Scope,
    governing_relation_id: str,
    assigned_by: str,
) -> Tuple[AssignmentEdge, Optional[AssignmentEdge]]:
    """
    Revoke the pair's current edge (if any) and create a new one, atomically.

    Returns:
        (new edge, revoked edge or None)

    Raises:
        ConflictError: a concurrent mutation changed the pair first
        RelationNotActive: the governing relation cannot justify this edge
    """
    now = utcnow()
    try:
        relation = await _require_active_relation(db, governing_relation_id, subject_id, property_id, now)

        previous = await _current_edge(db, subject_id, property_id)
        if previous is not None and not await _mark_revoked(db, previous, assigned_by, now):
            raise ConflictError(subject_id, property_id)

        edge = await _insert_edge(db, subject_id, property_id, scope, relation, assigned_by, now)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(subject_id, property_id)
    except (ConflictError, RelationNotActive):
        await db.rollback()
        raise

    log.info(
        f"Edge {edge.id} replaced {previous.id if previous else 'nothing'}: "
        f"subject={subject_id} property={property_id} scope={edge.scope}"
    )
    return edge, previous


async def find_active_edge(
    db: AsyncSession,
    subject_id: str,
    property_id: str,
    now: Optional[datetime] = None,
) -> Optional[AssignmentEdge]:
    """
    The edge that currently grants `subject_id` anything on `property_id`.

    None when there is no non-revoked edge or when its governing relation is
    no longer active. Read-only.
    """
    edge = await _current_edge(db, subject_id, property_id)
    if edge is None or not edge.is_active(now):
        return None
    return edge


async def list_property_edges(
    db: AsyncSession,
    property_id: str,
    include_revoked: bool = False,
) -> List[AssignmentEdge]:
    """Edges on a property in assignment order; revoked rows only on request."""
    stmt = (
        select(AssignmentEdge)
        .where(AssignmentEdge.property_id == property_id)
        .order_by(AssignmentEdge.assigned_at, AssignmentEdge.id)
    )
    if not include_revoked:
        stmt = stmt.where(AssignmentEdge.revoked_at.is_(None))

    result = await db.execute(stmt)
    edges = list(result.unique().scalars().all())
    if include_revoked:
        return edges
    return [edge for edge in edges if edge.is_active()]
