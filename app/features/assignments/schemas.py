"""
Pydantic schemas for assignment requests and responses.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from app.features.authorization.capabilities import DEFAULT_SCOPE, Role, Scope


class ManagerSubscriptionCreate(BaseModel):
    """Owner subscribes a property manager to a property."""
    property_id: str
    manager_id: str
    scope: Scope = DEFAULT_SCOPE[Role.PROPERTY_MANAGER]
    ends_at: Optional[datetime] = Field(None, description="Subscription end; open-ended when null")
    replace: bool = Field(False, description="Atomically replace an existing active assignment")


class VendorAssignmentCreate(BaseModel):
    """Manager or owner grants a vendor access to a property."""
    property_id: str
    vendor_id: str
    scope: Scope = DEFAULT_SCOPE[Role.VENDOR]
    task_id: Optional[str] = Field(None, description="Task the grant was issued for")
    ends_at: Optional[datetime] = None
    replace: bool = False


class GoverningRelationResponse(BaseModel):
    id: str
    kind: str
    property_id: str
    grantor_id: str
    grantee_id: str
    status: str
    starts_at: datetime
    ends_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AssignmentEdgeResponse(BaseModel):
    id: str
    subject_id: str
    property_id: str
    scope: Scope
    governing_relation_id: str
    assigned_by: str
    assigned_at: datetime
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class AssignmentResult(BaseModel):
    """Outcome of an assignment workflow."""
    edge: AssignmentEdgeResponse
    relation: GoverningRelationResponse
    replaced_edge_id: Optional[str] = None
    audit_entry_id: int


class RevocationResult(BaseModel):
    edge: AssignmentEdgeResponse
    audit_entry_id: int


class ActiveEdgeResponse(BaseModel):
    """Lookup result; `edge` is null when nothing currently grants access."""
    subject_id: str
    property_id: str
    edge: Optional[AssignmentEdgeResponse] = None
