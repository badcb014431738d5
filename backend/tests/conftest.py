"""
Centralized Test Configuration.
"""

import time
import uuid

import pytest
from httpx import AsyncClient, ASGITransport
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.core.config import settings
from backend.app.db.session import get_db, Base
from backend.app.core.redis_client import get_redis
from backend.app.domain.reservations.actor import Actor
from backend.app.models.enums import UserRole
from backend.app.models.vehicle import Vehicle
from backend.app.models.checklist_template import ChecklistTemplate, ChecklistTemplateItem
from backend.app.models.reservation_enums import ChecklistItemType, VehicleStatus
import backend.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_ID = "tenant-a"
OTHER_TENANT_ID = "tenant-b"


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.expiry = {}
        self._closed = False

    def _expire(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.store.pop(key, None)
            self.expiry.pop(key, None)

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        self._expire(key)
        return self.store.get(key)

    async def set(self, key, value, ex=None, px=None, nx=False):
        if self._closed:
            return False
        self._expire(key)
        if nx and key in self.store:
            return None
        self.store[key] = value
        if px is not None:
            self.expiry[key] = time.monotonic() + px / 1000
        elif ex is not None:
            self.expiry[key] = time.monotonic() + ex
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        self.expiry.pop(key, None)
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        self._expire(key)
        return 1 if key in self.store else 0


@pytest.fixture
def mock_redis(monkeypatch):
    """Patch the global redis client used by the vehicle locks."""
    client = MockRedis()
    monkeypatch.setattr(redis_client_module, "redis_client", client)
    return client


@pytest.fixture
async def session_factory(mock_redis):
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable foreign key constraints for SQLite."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    async def override_get_redis():
        return mock_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    yield factory

    app.dependency_overrides = {}
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Actors

@pytest.fixture
def requester():
    return Actor(id="user-requester", role=UserRole.REQUESTER, tenant_id=TENANT_ID, branch_id="branch-1")


@pytest.fixture
def other_requester():
    return Actor(id="user-other", role=UserRole.REQUESTER, tenant_id=TENANT_ID, branch_id="branch-1")


@pytest.fixture
def approver():
    return Actor(id="user-approver", role=UserRole.APPROVER, tenant_id=TENANT_ID)


@pytest.fixture
def admin():
    return Actor(id="user-admin", role=UserRole.ADMIN, tenant_id=TENANT_ID)


@pytest.fixture
def foreign_admin():
    return Actor(id="user-foreign", role=UserRole.ADMIN, tenant_id=OTHER_TENANT_ID)


def make_token(actor: Actor) -> str:
    payload = {
        "sub": actor.id,
        "user_id": actor.id,
        "role": actor.role.value,
        "tenant_id": actor.tenant_id,
        "branch_id": actor.branch_id,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def auth_headers(actor: Actor) -> dict:
    return {"Authorization": f"Bearer {make_token(actor)}"}


# Vehicles

async def add_vehicle(
    db_session,
    tenant_id: str = TENANT_ID,
    status: VehicleStatus = VehicleStatus.AVAILABLE,
    plate: str = None
) -> Vehicle:
    vehicle = Vehicle(
        tenant_id=tenant_id,
        plate=plate or f"TST-{uuid.uuid4().hex[:6]}",
        model="Test Van",
        status=status
    )
    db_session.add(vehicle)
    await db_session.commit()
    await db_session.refresh(vehicle)
    return vehicle


@pytest.fixture
async def vehicle(db_session):
    return await add_vehicle(db_session)


async def vehicle_status(session_factory, vehicle_id: str) -> VehicleStatus:
    """Read a vehicle's status through a fresh session."""
    async with session_factory() as session:
        fresh = await session.get(Vehicle, vehicle_id)
        return fresh.status


async def add_checklist_template(db_session, vehicle: Vehicle, is_active: bool = True) -> ChecklistTemplate:
    template = ChecklistTemplate(
        tenant_id=vehicle.tenant_id,
        vehicle_id=vehicle.id,
        name=f"Return {vehicle.plate}",
        is_active=is_active
    )
    db_session.add(template)
    await db_session.flush()
    db_session.add_all([
        ChecklistTemplateItem(template_id=template.id, label="Fuel level (%)", type=ChecklistItemType.NUMBER, position=0),
        ChecklistTemplateItem(template_id=template.id, label="Any damage?", type=ChecklistItemType.BOOLEAN, position=1),
    ])
    await db_session.commit()
    await db_session.refresh(template)
    return template


@pytest.fixture
async def template_id(db_session, vehicle):
    template = await add_checklist_template(db_session, vehicle)
    return template.id
