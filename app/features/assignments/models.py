"""
Assignment graph models.

An AssignmentEdge delegates a capability scope on a property to a manager or
vendor. Every edge cites the GoverningRelation (subscription or task grant)
that justifies it; an edge whose relation is no longer active is treated as
revoked even if `revoked_at` is still null.
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, as_utc, generate_ulid, utcnow


class RelationKind(str, Enum):
    SUBSCRIPTION = "subscription"
    TASK_GRANT = "task_grant"


class RelationStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


class GoverningRelation(Base, TimestampMixin):
    """
    Subscription (owner -> manager) or task grant (manager/owner -> vendor).
    """
    __tablename__ = "governing_relations"
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    property_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("properties.id"),
        nullable=False,
        index=True
    )
    grantor_id: Mapped[str] = mapped_column(String(26), ForeignKey("actors.id"), nullable=False)
    grantee_id: Mapped[str] = mapped_column(String(26), ForeignKey("actors.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=RelationStatus.ACTIVE.value)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    
    def is_active(self, now: datetime | None = None) -> bool:
        if self.status != RelationStatus.ACTIVE.value:
            return False
        if self.ends_at is None:
            return True
        return as_utc(self.ends_at) > as_utc(now or utcnow())
    
    def __repr__(self) -> str:
        return f"<GoverningRelation(id={self.id}, kind={self.kind}, status={self.status})>"


class AssignmentEdge(Base):
    """
    Delegation of a scope on a property to a subject.

    Rows are revoked, never deleted, so history stays available for audit.
    """
    __tablename__ = "assignment_edges"
    __table_args__ = (
        # At most one non-revoked edge per (subject, property)
        Index(
            "uq_assignment_edges_active_pair",
            "subject_id",
            "property_id",
            unique=True,
            sqlite_where=text("revoked_at IS NULL"),
            postgresql_where=text("revoked_at IS NULL"),
        ),
        Index("ix_assignment_edges_property_history", "property_id", "assigned_at"),
    )
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    subject_id: Mapped[str] = mapped_column(String(26), ForeignKey("actors.id"), nullable=False, index=True)
    property_id: Mapped[str] = mapped_column(String(26), ForeignKey("properties.id"), nullable=False)
    scope: Mapped[str] = mapped_column(String(20), nullable=False)
    governing_relation_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("governing_relations.id"),
        nullable=False,
        index=True
    )
    assigned_by: Mapped[str] = mapped_column(String(26), ForeignKey("actors.id"), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String(26), ForeignKey("actors.id"), nullable=True)
    
    governing_relation: Mapped["GoverningRelation"] = relationship(
        "GoverningRelation",
        lazy="joined"
    )
    
    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None
    
    def is_active(self, now: datetime | None = None) -> bool:
        return not self.is_revoked and self.governing_relation.is_active(now)
    
    def __repr__(self) -> str:
        return (
            f"<AssignmentEdge(id={self.id}, subject_id={self.subject_id}, "
            f"property_id={self.property_id}, scope={self.scope}, revoked={self.is_revoked})>"
        )
