"""
Property lookups shared by the assignment and audit routes.
"""
from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.authorization.capabilities import ResourceType
from app.features.authorization.schemas import ResourceRef
from app.features.properties.models import Property


async def get_property_or_404(db: AsyncSession, property_id: str) -> Property:
    result = await db.execute(select(Property).where(Property.id == property_id))
    prop = result.scalar_one_or_none()
    
    if prop is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Property not found"
        )
    
    return prop


def property_ref(prop: Property) -> ResourceRef:
    return ResourceRef(
        resource_type=ResourceType.PROPERTY,
        resource_id=prop.id,
        owner_id=prop.owner_id,
        property_id=prop.id,
    )
