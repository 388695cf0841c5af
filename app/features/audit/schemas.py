"""
Pydantic schemas for the audit trail.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.features.audit.models import AuditDecision


class AuditEntryDraft(BaseModel):
    """Everything the recorder needs; `id` and `timestamp` are assigned on write."""
    actor_id: str
    actor_role: str
    action: str = Field(..., min_length=1, max_length=64)
    resource_type: str = Field(..., min_length=1, max_length=32)
    resource_id: str = Field(..., min_length=1, max_length=64)
    property_id: Optional[str] = None
    decision: AuditDecision
    deny_reason: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @model_validator(mode="after")
    def deny_reason_only_on_denials(self) -> "AuditEntryDraft":
        if self.decision == AuditDecision.ALLOWED and self.deny_reason is not None:
            raise ValueError("deny_reason is only recorded for denied decisions")
        return self


class AuditEntryResponse(BaseModel):
    id: int
    actor_id: str
    actor_role: str
    action: str
    resource_type: str
    resource_id: str
    property_id: Optional[str] = None
    decision: AuditDecision
    deny_reason: Optional[str] = None
    details: Dict[str, Any]
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditFilters(BaseModel):
    """Shared by the detail query and the aggregates."""
    action: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    property_id: Optional[str] = None
    actor_id: Optional[str] = None
    decision: Optional[AuditDecision] = None
    start: Optional[datetime] = Field(None, description="Inclusive lower bound on timestamp")
    end: Optional[datetime] = Field(None, description="Inclusive upper bound on timestamp")

    @model_validator(mode="after")
    def start_before_end(self) -> "AuditFilters":
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class AuditPage(BaseModel):
    """One page of entries. Pass `next_cursor` back to continue; None means done."""
    entries: List[AuditEntryResponse]
    next_cursor: Optional[int] = None
    total_matching: int


class AggregateGroupBy(str, Enum):
    ACTION = "action"
    RESOURCE_TYPE = "resource_type"
    DECISION = "decision"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"


class AggregateBucket(BaseModel):
    key: str
    count: int


class AuditAggregate(BaseModel):
    group_by: AggregateGroupBy
    buckets: List[AggregateBucket]
    total: int


class ActivitySummary(BaseModel):
    """Headline numbers for the activity-monitor dashboard."""
    last_24_hours: int
    last_7_days: int
    denied_last_7_days: int
    by_action_last_7_days: Dict[str, int]
    latest_entry_id: Optional[int] = None
