"""
Pydantic schemas for authorization decisions.

ResourceRef and Decision are plain values shared by the evaluator, the
recorder and the HTTP layer.
"""
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.features.authorization.capabilities import Action, ResourceType, Scope


class DecisionEffect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class DecisionReason(str, Enum):
    ACTOR_SUSPENDED = "ActorSuspended"
    INSUFFICIENT_SCOPE = "InsufficientScope"
    NO_GRANT = "NoGrant"
    # Informational: allowed, but only through a permission override
    EXPLICIT_OVERRIDE = "ExplicitOverride"


class GrantBasis(str, Enum):
    SUPER_ADMIN = "super_admin"
    OWNERSHIP = "ownership"
    ASSIGNMENT = "assignment"
    OVERRIDE = "override"


class ResourceRef(BaseModel):
    """Typed pointer to the resource an action targets."""
    resource_type: ResourceType
    resource_id: str = Field(..., min_length=1, max_length=64)
    owner_id: Optional[str] = Field(None, description="Actor that owns the resource; the HTTP routes fill it from stored rows")
    property_id: Optional[str] = Field(None, description="Property used for assignment lookups")
    
    model_config = ConfigDict(frozen=True)
    
    @model_validator(mode="before")
    @classmethod
    def default_property_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("property_id"):
            if data.get("resource_type") == ResourceType.PROPERTY:
                data = {**data, "property_id": data.get("resource_id")}
        return data


class Decision(BaseModel):
    """Evaluator verdict. Denials are values, never exceptions."""
    effect: DecisionEffect
    action: Action
    reason: Optional[DecisionReason] = None
    basis: Optional[GrantBasis] = None
    scope: Optional[Scope] = None
    edge_id: Optional[str] = None
    
    model_config = ConfigDict(frozen=True)
    
    @property
    def allowed(self) -> bool:
        return self.effect == DecisionEffect.ALLOW
    
    @classmethod
    def allow(cls, action: Action, basis: GrantBasis, **kwargs) -> "Decision":
        return cls(effect=DecisionEffect.ALLOW, action=action, basis=basis, **kwargs)
    
    @classmethod
    def deny(cls, action: Action, reason: DecisionReason, **kwargs) -> "Decision":
        return cls(effect=DecisionEffect.DENY, action=action, reason=reason, **kwargs)
    
    def audit_details(self) -> Dict[str, Any]:
        """Decision facts worth keeping next to the audit entry."""
        details: Dict[str, Any] = {}
        if self.basis is not None:
            details["basis"] = self.basis.value
        if self.reason is not None:
            details["reason"] = self.reason.value
        if self.scope is not None:
            details["scope"] = self.scope.value
        if self.edge_id is not None:
            details["edge_id"] = self.edge_id
        return details


# ============================================================================
# Request / response schemas
# ============================================================================

class EvaluateRequest(BaseModel):
    """Preflight check, typically from a UI gate."""
    action: Action
    resource: ResourceRef
    record: bool = Field(False, description="Also write the decision to the audit trail")


class EnforceRequest(BaseModel):
    """Decision-worthy action performed by an external adapter or job."""
    action: Action
    resource: ResourceRef
    details: Dict[str, Any] = Field(default_factory=dict)


class DecisionResponse(BaseModel):
    allowed: bool
    effect: DecisionEffect
    action: Action
    reason: Optional[DecisionReason] = None
    basis: Optional[GrantBasis] = None
    scope: Optional[Scope] = None
    audit_entry_id: Optional[int] = None
    
    @classmethod
    def from_decision(cls, decision: Decision, audit_entry_id: Optional[int] = None) -> "DecisionResponse":
        return cls(
            allowed=decision.allowed,
            effect=decision.effect,
            action=decision.action,
            reason=decision.reason,
            basis=decision.basis,
            scope=decision.scope,
            audit_entry_id=audit_entry_id,
        )
