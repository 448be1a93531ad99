"""
Pytest configuration and shared fixtures for the fleet core test suite.

This module provides:
- Database fixtures (in-memory SQLite for fast tests)
- Service fixtures wired on the composed-query data path
- FastAPI async client fixture
- Data factories for users, vehicles and blocks
- A scripted stand-in for the server-side procedure caller
"""

from datetime import datetime
from typing import AsyncGenerator, Callable, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.db import Base, get_db
from core.prometheus_metrics import REGISTRY
from main import app
from models.block import Block, BlockStatus
from models.user import User, UserRole
from models.vehicle import Vehicle, VehicleStatus
from services.block_scheduler import BlockScheduler
from services.calendar_projection import CalendarProjection
from services.data_access import QueryStrategy
from services.exceptions import ProcedureUnavailableError
from services.status_sync import VehicleStatusSynchronizer
from services.vehicle_directory import VehicleDirectory


# Test Database Configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed clock for deterministic scheduling tests
T0 = datetime(2030, 1, 10, 8, 0)


@pytest.fixture
async def async_engine():
    """Create async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def async_db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for testing."""
    async_session = async_sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session


@pytest.fixture
async def async_client(async_db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client with database dependency override."""

    async def override_get_db():
        yield async_db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.use_procedures = False

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# Service Fixtures
@pytest.fixture
def strategy(async_db_session) -> QueryStrategy:
    return QueryStrategy(async_db_session)


@pytest.fixture
def synchronizer(strategy) -> VehicleStatusSynchronizer:
    return VehicleStatusSynchronizer(strategy)


@pytest.fixture
def scheduler(strategy, synchronizer) -> BlockScheduler:
    return BlockScheduler(strategy, synchronizer)


@pytest.fixture
def directory(strategy, synchronizer) -> VehicleDirectory:
    return VehicleDirectory(strategy, synchronizer)


@pytest.fixture
def calendar(strategy) -> CalendarProjection:
    return CalendarProjection(strategy)


# Test Data Factories
@pytest.fixture
async def admin_user(async_db_session) -> User:
    """Create an admin user."""
    user = User(name="Admin One", email="admin1@example.com", role=UserRole.ADMIN)
    async_db_session.add(user)
    await async_db_session.commit()
    return user


@pytest.fixture
async def driver_user(async_db_session) -> User:
    """Create a driver."""
    user = User(name="Dana Driver", email="dana@example.com", phone="555-0101", role=UserRole.DRIVER)
    async_db_session.add(user)
    await async_db_session.commit()
    return user


@pytest.fixture
def make_vehicle(async_db_session) -> Callable:
    """Factory inserting vehicle rows directly, bypassing the services."""
    async def _make(plate_number="ABC1234", model="Fiat Strada", year=2022,
                    status=VehicleStatus.AVAILABLE, assigned_to=None) -> Vehicle:
        vehicle = Vehicle(
            plate_number=plate_number,
            model=model,
            year=year,
            status=status,
            assigned_to=assigned_to,
        )
        async_db_session.add(vehicle)
        await async_db_session.commit()
        return vehicle
    return _make


@pytest.fixture
async def test_vehicle(make_vehicle) -> Vehicle:
    """Create an available vehicle."""
    return await make_vehicle()


@pytest.fixture
def make_block(async_db_session) -> Callable:
    """Factory inserting block rows directly, without touching the vehicle status."""
    async def _make(vehicle_id, start_date, end_date, reason="scheduled maintenance",
                    status=BlockStatus.ACTIVE, blocked_by=None) -> Block:
        block = Block(
            vehicle_id=vehicle_id,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
            status=status,
            blocked_by=blocked_by,
        )
        async_db_session.add(block)
        await async_db_session.commit()
        return block
    return _make


# Procedure Path Test Doubles
class ScriptedProcedureCaller:
    """
    Stand-in for ProcedureCaller.

    Each catalogued name maps to a coroutine function taking the params dict,
    or to an exception instance to raise. Unscripted names behave as if the
    function were not installed.
    """

    def __init__(self, script: Dict = None):
        self.script = script or {}
        self.calls = []

    async def call(self, name, params):
        self.calls.append((name, params))
        outcome = self.script.get(name)
        if outcome is None:
            raise ProcedureUnavailableError(f"function {name} does not exist")
        if isinstance(outcome, Exception):
            raise outcome
        return await outcome(params)


@pytest.fixture
def scripted_procedures() -> Callable:
    return ScriptedProcedureCaller


# Common Test Doubles
@pytest.fixture
def mock_strategy():
    """Strategy double whose data calls are AsyncMocks; tests set return values."""
    strategy = MagicMock(spec=QueryStrategy)
    for name in (
        "get_vehicle",
        "get_user",
        "count_active_blocks",
        "write_vehicle_status",
        "assign_vehicle",
        "list_vehicle_ids",
    ):
        setattr(strategy, name, AsyncMock())
    return strategy


@pytest.fixture
def metric_value() -> Callable:
    """Reads the current value of a fleet Prometheus sample, 0 when never recorded."""
    def _read(name: str, labels: Dict[str, str]) -> float:
        return REGISTRY.get_sample_value(name, labels) or 0.0
    return _read
