"""
Pydantic schemas for actor requests and responses.
"""
from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

from app.features.authorization.capabilities import ActorStatus, Role, known_permission_keys


class ActorBase(BaseModel):
    """Base actor schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)


class ActorCreate(ActorBase):
    """Self-registration. Super admins are seeded, never registered."""
    role: Role
    
    @field_validator("role")
    @classmethod
    def role_not_super_admin(cls, v: Role) -> Role:
        if v == Role.SUPER_ADMIN:
            raise ValueError("super_admin accounts cannot be self-registered")
        return v


class ActorResponse(ActorBase):
    """Full actor view for the actor themselves and super admins."""
    id: str
    role: Role
    status: ActorStatus
    permission_overrides: Dict[str, bool] = {}
    created_at: datetime
    updated_at: datetime
    
    model_config = {"from_attributes": True}


class ActorPublic(BaseModel):
    """Public actor information (limited fields)."""
    id: str
    name: str
    role: Role
    status: ActorStatus
    
    model_config = {"from_attributes": True}


class SuspendRequest(BaseModel):
    """Reason and note are kept in the audit entry, not on the actor."""
    reason: Optional[str] = Field(None, max_length=255)
    note: Optional[str] = Field(None, max_length=1000)


class OverridesUpdate(BaseModel):
    """Replace the actor's permission overrides wholesale."""
    permission_overrides: Dict[str, bool] = Field(default_factory=dict)
    
    @field_validator("permission_overrides")
    @classmethod
    def known_keys_only(cls, v: Dict[str, bool]) -> Dict[str, bool]:
        unknown = sorted(set(v) - known_permission_keys())
        if unknown:
            raise ValueError(f"Unknown permission keys: {', '.join(unknown)}")
        return v
