"""
Seed script -- populates the database with a small marketplace for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 2 shipper and 2 carrier organizations, each with a funded wallet
  - 1 admin plus one ACTIVE user per organization (API tokens printed below)
  - 5 trucks (4 approved, 1 awaiting review) and 2 active postings
  - 4 loads (DRAFT, POSTED x2, UNPOSTED)
  - 1 pending load request on a posted load
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from loadboard.domain.entities import utcnow
from loadboard.domain.enums import (
    LoadStatus,
    OrganizationKind,
    PostingStatus,
    RequestDirection,
    RequestStatus,
    Role,
    TruckApprovalStatus,
    UserStatus,
)
from loadboard.infrastructure.database import async_session_factory, engine
from loadboard.infrastructure.models import (
    FinancialAccountModel,
    LoadModel,
    MatchRequestModel,
    OrganizationModel,
    TruckModel,
    TruckPostingModel,
    UserModel,
)

ORGANIZATIONS = [
    {"name": "Addis Cement Works", "kind": OrganizationKind.SHIPPER, "balance": 5000.0},
    {"name": "Rift Valley Grain", "kind": OrganizationKind.SHIPPER, "balance": 800.0},
    {"name": "Blue Nile Haulage", "kind": OrganizationKind.CARRIER, "balance": 3000.0},
    {"name": "Awash Logistics", "kind": OrganizationKind.CARRIER, "balance": 150.0},
]

TRUCKS = [
    # (org index, plate, type, capacity, approval)
    (2, "AA-3-10452", "FLATBED", 20000, TruckApprovalStatus.APPROVED),
    (2, "AA-3-10877", "DRY_VAN", 15000, TruckApprovalStatus.APPROVED),
    (2, "AA-3-11290", "REFRIGERATED", 12000, TruckApprovalStatus.PENDING),
    (3, "OR-3-20411", "FLATBED", 25000, TruckApprovalStatus.APPROVED),
    (3, "OR-3-20988", "TANKER", 18000, TruckApprovalStatus.APPROVED),
]

LOADS = [
    # (org index, pickup, delivery, km, status)
    (0, "Addis Ababa", "Adama", 99.0, LoadStatus.DRAFT),
    (0, "Addis Ababa", "Dire Dawa", 453.0, LoadStatus.POSTED),
    (1, "Hawassa", "Addis Ababa", 273.0, LoadStatus.POSTED),
    (1, "Bahir Dar", "Gondar", 180.0, LoadStatus.UNPOSTED),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM organizations"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Organizations, wallets, users ─────────────────────────────
        orgs = []
        for o in ORGANIZATIONS:
            org = OrganizationModel(name=o["name"], kind=o["kind"], is_verified=True)
            session.add(org)
            orgs.append(org)
        await session.flush()

        users = []
        for org, o in zip(orgs, ORGANIZATIONS):
            session.add(FinancialAccountModel(organization_id=org.id, balance=o["balance"]))
            slug = org.name.split()[0].lower()
            user = UserModel(
                name=f"{org.name} Ops",
                email=f"ops@{slug}.example.com",
                role=Role.SHIPPER if org.kind == OrganizationKind.SHIPPER else Role.CARRIER,
                status=UserStatus.ACTIVE,
                organization_id=org.id,
                api_token=f"dev-{slug}",
            )
            session.add(user)
            users.append(user)
        admin = UserModel(
            name="Platform Admin",
            email="admin@loadboard.example.com",
            role=Role.ADMIN,
            status=UserStatus.ACTIVE,
            api_token="dev-admin",
        )
        session.add(admin)
        await session.flush()
        print(f"  Created {len(orgs)} organizations and {len(users) + 1} users")

        # ── Fleet ─────────────────────────────────────────────────────
        trucks = []
        for org_idx, plate, kind, capacity, approval in TRUCKS:
            truck = TruckModel(
                carrier_id=orgs[org_idx].id,
                license_plate=plate,
                truck_type=kind,
                capacity_kg=capacity,
                approval_status=approval,
            )
            session.add(truck)
            trucks.append(truck)
        await session.flush()

        now = utcnow()
        for truck, origin in ((trucks[0], "Addis Ababa"), (trucks[3], "Hawassa")):
            session.add(
                TruckPostingModel(
                    truck_id=truck.id,
                    carrier_id=truck.carrier_id,
                    origin_city=origin,
                    available_from=now,
                    available_to=now + timedelta(days=7),
                    status=PostingStatus.ACTIVE,
                )
            )
        print(f"  Created {len(trucks)} trucks and 2 postings")

        # ── Loads ─────────────────────────────────────────────────────
        loads = []
        for org_idx, pickup, delivery, km, status in LOADS:
            load = LoadModel(
                shipper_id=orgs[org_idx].id,
                created_by_id=users[org_idx].id,
                status=status,
                pickup_city=pickup,
                delivery_city=delivery,
                distance_km=km,
                posted_at=now if status == LoadStatus.POSTED else None,
            )
            session.add(load)
            loads.append(load)
        await session.flush()
        print(f"  Created {len(loads)} loads")

        # ── Requests ──────────────────────────────────────────────────
        session.add(
            MatchRequestModel(
                direction=RequestDirection.LOAD_REQUEST,
                load_id=loads[1].id,
                truck_id=trucks[1].id,
                shipper_id=loads[1].shipper_id,
                carrier_id=trucks[1].carrier_id,
                requested_by_id=users[2].id,
                status=RequestStatus.PENDING,
                notes="Available from tomorrow morning",
                expires_at=now + timedelta(hours=24),
            )
        )
        await session.commit()
        print("  Created 1 pending load request")

        print("\nSeed complete! API tokens:")
        for user in users + [admin]:
            print(f"  {user.email:<36} Bearer {user.api_token}")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
