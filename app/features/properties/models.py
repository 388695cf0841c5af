"""
Property registry.

Only what the authorization core needs to turn a property id into a
resource reference: who owns it.
"""
from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Property(Base, TimestampMixin):
    __tablename__ = "properties"
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    owner_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("actors.id"),
        nullable=False,
        index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    
    def __repr__(self) -> str:
        return f"<Property(id={self.id}, owner_id={self.owner_id}, title={self.title!r})>"
