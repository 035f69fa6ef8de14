"""
Shared test fixtures.

Each test gets a fresh SQLite file database (via aiosqlite) built from the
production metadata, so tests run without Docker / PostgreSQL / Redis.
A file database gives every session its own connection, which the
concurrency tests rely on.  ``FOR UPDATE`` is a no-op on SQLite; the
compare-and-set and unique-index guards still apply.
"""

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from loadboard.domain.entities import Actor, utcnow
from loadboard.domain.enums import (
    LoadStatus,
    OrganizationKind,
    PostingStatus,
    RequestDirection,
    ResponseAction,
    Role,
    TripStatus,
    TruckApprovalStatus,
    UserStatus,
)
from loadboard.infrastructure.database import Base
from loadboard.infrastructure.models import (
    FinancialAccountModel,
    LoadModel,
    OrganizationModel,
    TruckModel,
    TruckPostingModel,
    UserModel,
)
from loadboard.services.requests import RequestWorkflowService
from loadboard.services.trips import TripService


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'loadboard.db'}", echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return AsyncMock()


# ── Marketplace ───────────────────────────────────────────────────────


async def seed_marketplace(session: AsyncSession) -> SimpleNamespace:
    """Two shippers, two carriers, an admin, a small fleet and two loads.

    Only ids and ``Actor`` values are returned; tests re-read rows through
    their own session.
    """
    shipper_org = OrganizationModel(name="Acme Cement", kind=OrganizationKind.SHIPPER)
    other_shipper_org = OrganizationModel(name="Grain Co", kind=OrganizationKind.SHIPPER)
    carrier_org = OrganizationModel(name="Nile Haulage", kind=OrganizationKind.CARRIER)
    other_carrier_org = OrganizationModel(name="Awash Trucks", kind=OrganizationKind.CARRIER)
    session.add_all([shipper_org, other_shipper_org, carrier_org, other_carrier_org])
    await session.flush()

    def user(name, role, org, token, status=UserStatus.ACTIVE):
        return UserModel(
            name=name,
            email=f"{token}@example.com",
            role=role,
            status=status,
            organization_id=org.id if org is not None else None,
            api_token=token,
        )

    users = {
        "shipper": user("Sara Shipper", Role.SHIPPER, shipper_org, "shipper-token"),
        "other_shipper": user(
            "Omar Shipper", Role.SHIPPER, other_shipper_org, "other-shipper-token"
        ),
        "carrier": user("Kebede Carrier", Role.CARRIER, carrier_org, "carrier-token"),
        "other_carrier": user(
            "Lina Carrier", Role.CARRIER, other_carrier_org, "other-carrier-token"
        ),
        "suspended_carrier": user(
            "Sam Suspended",
            Role.CARRIER,
            carrier_org,
            "suspended-token",
            status=UserStatus.SUSPENDED,
        ),
        "dispatcher": user("Dee Dispatcher", Role.DISPATCHER, None, "dispatcher-token"),
        "admin": user("Ada Admin", Role.ADMIN, None, "admin-token"),
    }
    session.add_all(users.values())
    await session.flush()

    truck = TruckModel(
        carrier_id=carrier_org.id,
        license_plate="AA-1-0001",
        approval_status=TruckApprovalStatus.APPROVED,
    )
    second_truck = TruckModel(
        carrier_id=carrier_org.id,
        license_plate="AA-1-0002",
        approval_status=TruckApprovalStatus.APPROVED,
    )
    pending_truck = TruckModel(
        carrier_id=carrier_org.id,
        license_plate="AA-1-0003",
        approval_status=TruckApprovalStatus.PENDING,
    )
    other_truck = TruckModel(
        carrier_id=other_carrier_org.id,
        license_plate="OR-2-0001",
        approval_status=TruckApprovalStatus.APPROVED,
    )
    session.add_all([truck, second_truck, pending_truck, other_truck])
    await session.flush()

    now = utcnow()
    session.add(
        TruckPostingModel(
            truck_id=truck.id,
            carrier_id=carrier_org.id,
            origin_city="Addis Ababa",
            available_from=now,
            status=PostingStatus.ACTIVE,
        )
    )

    load = LoadModel(
        shipper_id=shipper_org.id,
        created_by_id=users["shipper"].id,
        status=LoadStatus.POSTED,
        pickup_city="Addis Ababa",
        delivery_city="Adama",
        distance_km=100.0,
        posted_at=now,
    )
    draft_load = LoadModel(
        shipper_id=shipper_org.id,
        created_by_id=users["shipper"].id,
        status=LoadStatus.DRAFT,
        pickup_city="Addis Ababa",
        delivery_city="Hawassa",
        distance_km=270.0,
    )
    session.add_all([load, draft_load])

    session.add_all(
        [
            FinancialAccountModel(organization_id=shipper_org.id, balance=1000.0),
            FinancialAccountModel(organization_id=carrier_org.id, balance=1000.0),
        ]
    )
    await session.commit()

    def actor(key):
        u = users[key]
        return Actor(
            user_id=u.id, role=u.role, organization_id=u.organization_id, status=u.status
        )

    return SimpleNamespace(
        shipper_org_id=shipper_org.id,
        other_shipper_org_id=other_shipper_org.id,
        carrier_org_id=carrier_org.id,
        other_carrier_org_id=other_carrier_org.id,
        shipper=actor("shipper"),
        other_shipper=actor("other_shipper"),
        carrier=actor("carrier"),
        other_carrier=actor("other_carrier"),
        suspended_carrier=actor("suspended_carrier"),
        dispatcher=actor("dispatcher"),
        admin=actor("admin"),
        truck_id=truck.id,
        second_truck_id=second_truck.id,
        pending_truck_id=pending_truck.id,
        other_truck_id=other_truck.id,
        load_id=load.id,
        draft_load_id=draft_load.id,
    )


@pytest_asyncio.fixture
async def world(session_factory) -> SimpleNamespace:
    async with session_factory() as session:
        return await seed_marketplace(session)


@pytest.fixture
def fetch(session_factory):
    """Read a row through a fresh session, bypassing any test session cache."""

    async def _fetch(model, ident):
        async with session_factory() as session:
            return await session.get(model, ident)

    return _fetch


@pytest.fixture
def lapse_posting(session_factory):
    """Move a truck's ACTIVE posting window entirely into the past."""

    async def _lapse(truck_id: int) -> None:
        now = utcnow()
        async with session_factory() as session:
            await session.execute(
                update(TruckPostingModel)
                .where(
                    TruckPostingModel.truck_id == truck_id,
                    TruckPostingModel.status == PostingStatus.ACTIVE,
                )
                .values(
                    available_from=now - timedelta(days=3),
                    available_to=now - timedelta(hours=1),
                )
            )
            await session.commit()

    return _lapse


@pytest.fixture
def make_posted_load(session_factory, world):
    async def _make(distance_km: float = 200.0, shipper_org_id: int | None = None) -> int:
        async with session_factory() as session:
            load = LoadModel(
                shipper_id=shipper_org_id or world.shipper_org_id,
                created_by_id=world.shipper.user_id,
                status=LoadStatus.POSTED,
                pickup_city="Adama",
                delivery_city="Dire Dawa",
                distance_km=distance_km,
                posted_at=utcnow(),
            )
            session.add(load)
            await session.commit()
            return load.id

    return _make


@pytest_asyncio.fixture
async def assigned_trip(session_factory, world) -> int:
    """Carrier requests the seeded load, shipper approves; returns the trip id."""
    async with session_factory() as session:
        service = RequestWorkflowService(session)
        request = await service.create_request(
            RequestDirection.LOAD_REQUEST, world.load_id, world.truck_id, world.carrier
        )
        result = await service.respond_to_request(
            request.id, ResponseAction.APPROVE, world.shipper
        )
        return result.trip.id


@pytest.fixture
def drive_trip(session_factory, world):
    """Advance a trip through *targets* as the owning carrier."""

    async def _drive(trip_id: int, *targets: TripStatus) -> None:
        async with session_factory() as session:
            service = TripService(session)
            for target in targets:
                await service.advance_trip(trip_id, target, world.carrier)

    return _drive


# ── API client ────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory, world, notifier):
    """AsyncClient backed by the per-test SQLite database."""
    with (
        patch(
            "loadboard.workers.notifier.start_notification_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "loadboard.workers.notifier.stop_notification_loop",
            new_callable=AsyncMock,
        ),
    ):

        async def _test_db():
            async with session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        from loadboard.api.app import create_app
        from loadboard.api.dependencies import get_db, get_notifier

        app = create_app()
        app.dependency_overrides[get_db] = _test_db
        app.dependency_overrides[get_notifier] = lambda: notifier

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
