"""
Actor model: any authenticated user of the platform.
"""
from typing import Any, Dict
from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.authorization.capabilities import ActorStatus


class Actor(Base, TimestampMixin):
    """
    Platform user with a single role.

    Actors are never hard-deleted; suspension is the only way to take access
    away from an account. `permission_overrides` maps permission keys to
    booleans and is consulted only after role and assignment checks.
    """
    __tablename__ = "actors"
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=ActorStatus.ACTIVE.value,
        index=True
    )
    permission_overrides: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    
    @property
    def is_suspended(self) -> bool:
        return self.status == ActorStatus.SUSPENDED.value
    
    def __repr__(self) -> str:
        return f"<Actor(id={self.id}, role={self.role}, status={self.status})>"
