# tests/conftest.py

"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite file so that concurrent sessions really
contend on the database, the way two API workers would.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.database.base import generate_ulid
from app.core.database.engine import build_engine, build_sessionmaker, get_db, init_db
from app.features.actors.auth import create_access_token
from app.features.actors.models import Actor
from app.features.assignments import service
from app.features.assignments.models import RelationKind
from app.features.authorization.capabilities import ActorStatus, ResourceType, Role, Scope
from app.features.authorization.schemas import ResourceRef
from app.features.properties.models import Property


@pytest.fixture
async def engine(tmp_path):
    """Fresh database with all tables created."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(bind=test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    """Session used by tests to arrange data and call services directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_actor(db):
    """Factory for committed actors."""
    async def _make(role: Role, status: ActorStatus = ActorStatus.ACTIVE, overrides=None, name=None) -> Actor:
        actor = Actor(
            email=f"{role.value}-{generate_ulid().lower()}@example.com",
            name=name or role.value.replace("_", " ").title(),
            role=role.value,
            status=status.value,
            permission_overrides=overrides or {},
        )
        db.add(actor)
        await db.commit()
        await db.refresh(actor)
        return actor
    return _make


@pytest.fixture
def make_property(db):
    """Factory for committed properties."""
    async def _make(owner: Actor, title: str = "Maple Court") -> Property:
        prop = Property(owner_id=owner.id, title=title, address="12 Maple Court")
        db.add(prop)
        await db.commit()
        await db.refresh(prop)
        return prop
    return _make


@pytest.fixture
def make_edge(db):
    """Factory for an active edge backed by a fresh governing relation."""
    async def _make(subject: Actor, prop: Property, scope: Scope, grantor: Actor, kind: RelationKind | None = None):
        if kind is None:
            kind = RelationKind.SUBSCRIPTION if subject.role == Role.PROPERTY_MANAGER.value else RelationKind.TASK_GRANT
        relation = await service.create_governing_relation(db, kind, prop.id, grantor.id, subject.id)
        edge = await service.create_edge(db, subject.id, prop.id, scope, relation.id, grantor.id)
        return edge, relation
    return _make


@pytest.fixture
async def super_admin(make_actor):
    return await make_actor(Role.SUPER_ADMIN)


@pytest.fixture
async def owner(make_actor):
    return await make_actor(Role.PROPERTY_OWNER)


@pytest.fixture
async def manager(make_actor):
    return await make_actor(Role.PROPERTY_MANAGER)


@pytest.fixture
async def vendor(make_actor):
    return await make_actor(Role.VENDOR)


@pytest.fixture
async def tenant(make_actor):
    return await make_actor(Role.TENANT)


@pytest.fixture
async def prop(make_property, owner):
    return await make_property(owner)


def property_resource(prop: Property) -> ResourceRef:
    return ResourceRef(
        resource_type=ResourceType.PROPERTY,
        resource_id=prop.id,
        owner_id=prop.owner_id,
    )


def auth_headers(actor: Actor) -> dict:
    return {"Authorization": f"Bearer {create_access_token(actor.id, actor.role)}"}


@pytest.fixture
def app(session_factory):
    """The FastAPI application wired to the test database."""
    from app.main import app as fastapi_app

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = _get_test_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    """Async HTTP client talking to the app in-process."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client
