"""
Seed script to bootstrap the super admin and, optionally, demo actors.

Super admins cannot self-register; the first one comes from SUPER_ADMIN_EMAIL.
With --demo, one actor per delegate role is created as well, plus a property
owned by the demo owner. A bearer token is logged for every seeded actor.

Usage:
    uv run python -m scripts.seed_actors
    uv run python -m scripts.seed_actors --demo
"""
import asyncio
import sys
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db, init_db
from app.features.actors.auth import create_access_token
from app.features.actors.models import Actor
from app.features.authorization.capabilities import ActorStatus, Role
from app.features.properties.models import Property
from app.utils import get_logger


log = get_logger(__name__)


DEMO_ACTORS = [
    ("owner@example.com", "Olivia Owner", Role.PROPERTY_OWNER),
    ("manager@example.com", "Morgan Manager", Role.PROPERTY_MANAGER),
    ("vendor@example.com", "Val Vendor", Role.VENDOR),
    ("tenant@example.com", "Taylor Tenant", Role.TENANT),
]

DEMO_PROPERTY = ("Maple Court", "12 Maple Court, Springfield")


async def seed_actor(db: AsyncSession, email: str, name: str, role: Role) -> Actor:
    """Create the actor unless one with `email` already exists."""
    result = await db.execute(select(Actor).where(Actor.email == email))
    existing = result.scalars().first()

    if existing:
        log.debug(f"Actor '{email}' already exists, skipping")
        return existing

    actor = Actor(
        email=email,
        name=name,
        role=role.value,
        status=ActorStatus.ACTIVE.value,
        permission_overrides={},
    )
    db.add(actor)
    await db.commit()
    await db.refresh(actor)
    log.info(f"Created {role.value}: {email}")
    return actor


async def seed_demo_property(db: AsyncSession, owner: Actor) -> Property:
    title, address = DEMO_PROPERTY
    result = await db.execute(
        select(Property).where(Property.owner_id == owner.id, Property.title == title)
    )
    existing = result.scalars().first()
    if existing:
        return existing

    prop = Property(owner_id=owner.id, title=title, address=address)
    db.add(prop)
    await db.commit()
    await db.refresh(prop)
    log.info(f"Created demo property {prop.id} owned by {owner.email}")
    return prop


async def main(demo: bool = False):
    """Seed the super admin, then demo data when asked."""
    if not config.SUPER_ADMIN_EMAIL:
        log.error("SUPER_ADMIN_EMAIL is not set; nothing to seed")
        sys.exit(1)

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            seeded = [await seed_actor(db, config.SUPER_ADMIN_EMAIL, config.SUPER_ADMIN_NAME, Role.SUPER_ADMIN)]

            if demo:
                for email, name, role in DEMO_ACTORS:
                    seeded.append(await seed_actor(db, email, name, role))
                owner = next(actor for actor in seeded if actor.role == Role.PROPERTY_OWNER.value)
                await seed_demo_property(db, owner)

            log.info("Seeding completed successfully!")
            for actor in seeded:
                log.info(f"  - {actor.role} {actor.email}: {create_access_token(actor.id, actor.role)}")

        except Exception as e:
            log.error(f"Error seeding actors: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main(demo="--demo" in sys.argv[1:]))
