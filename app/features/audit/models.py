"""
Append-only audit trail.

The sequence of AuditEntry rows ordered by `id` is the system of record.
Entries are written once by the recorder and never updated or deleted; the
mapper hooks below refuse both at the ORM level.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict
from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, utcnow


class AuditDecision(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"


class AuditEntry(Base):
    __tablename__ = "audit_entries"
    __table_args__ = (
        Index("ix_audit_entries_filters", "action", "resource_type", "actor_id", "timestamp"),
        Index("ix_audit_entries_resource", "resource_type", "resource_id"),
        {"sqlite_autoincrement": True},
    )
    
    # Monotonic, assigned by the database
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    
    # Actor
    actor_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    actor_role: Mapped[str] = mapped_column(String(32), nullable=False)
    
    # Action details
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    property_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    
    # Outcome
    decision: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    deny_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    
    # Context
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    
    def __repr__(self) -> str:
        return (
            f"<AuditEntry(id={self.id}, actor_id={self.actor_id}, action={self.action}, "
            f"resource={self.resource_type}:{self.resource_id}, decision={self.decision})>"
        )


class ImmutableAuditEntry(Exception):
    """Raised when code tries to update or delete a written audit entry."""


@event.listens_for(AuditEntry, "before_update")
def _refuse_update(mapper, connection, target):
    raise ImmutableAuditEntry(f"Audit entry {target.id} is immutable")


@event.listens_for(AuditEntry, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ImmutableAuditEntry(f"Audit entry {target.id} cannot be deleted")
