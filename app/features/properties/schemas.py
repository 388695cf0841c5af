"""
Pydantic schemas for the property registry.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class PropertyCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    address: Optional[str] = Field(None, max_length=500)
    owner_id: Optional[str] = Field(None, description="Super admins register on behalf of an owner")


class PropertyResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    address: Optional[str] = None
    created_at: datetime
    
    model_config = ConfigDict(from_attributes=True)
