"""
Concurrency safety tests.

Demonstrates:
1. The ``WHERE status = 'PENDING'`` guard lets exactly one responder win,
   even when the loser acted on a stale read.
2. The partial unique index stops a second pending request on a pair
   that slipped past the application-level duplicate check.
3. The wallet settlement is idempotent per trip.
4. Every writer locks a load row before its requests or its trip.
5. The Redis lease elects a single notification drainer.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from loadboard.domain.entities import utcnow
from loadboard.domain.enums import (
    LoadStatus,
    RequestDirection,
    RequestStatus,
    ResponseAction,
    TripStatus,
)
from loadboard.domain.errors import Conflict, PreconditionFailed
from loadboard.domain.fees import ServiceFees
from loadboard.infrastructure.locks import DistributedLock
from loadboard.infrastructure.models import (
    FinancialAccountModel,
    MatchRequestModel,
    TripModel,
)
from loadboard.services.loads import LoadService
from loadboard.services.requests import RequestWorkflowService
from loadboard.services.settlement import SettlementOutcome, WalletSettlementGateway
from loadboard.services.trips import TripService


async def trip_count(session_factory, load_id: int) -> int:
    async with session_factory() as session:
        return await session.scalar(
            select(func.count()).select_from(TripModel).where(TripModel.load_id == load_id)
        )


class TestRespondRace:
    """Two responders read the same PENDING row; only one write lands."""

    @pytest.mark.asyncio
    async def test_stale_reject_loses_to_approve(self, session_factory, world, fetch):
        async with session_factory() as setup:
            request = await RequestWorkflowService(setup).create_request(
                RequestDirection.LOAD_REQUEST, world.load_id, world.truck_id, world.carrier
            )
            request_id = request.id

        async with session_factory() as first, session_factory() as second:
            # both sides hold the row as PENDING; the identity map is weak-keyed
            cached = await first.get(MatchRequestModel, request_id)
            stale = await second.get(MatchRequestModel, request_id)
            assert cached.status == stale.status == RequestStatus.PENDING

            await RequestWorkflowService(first).respond_to_request(
                request_id, ResponseAction.APPROVE, world.shipper
            )
            with pytest.raises(PreconditionFailed, match="already been approved"):
                await RequestWorkflowService(second).respond_to_request(
                    request_id, ResponseAction.REJECT, world.shipper
                )

        assert (await fetch(MatchRequestModel, request_id)).status == RequestStatus.APPROVED
        assert await trip_count(session_factory, world.load_id) == 1

    @pytest.mark.asyncio
    async def test_double_approve_creates_one_trip(self, session_factory, world):
        async with session_factory() as setup:
            request = await RequestWorkflowService(setup).create_request(
                RequestDirection.LOAD_REQUEST, world.load_id, world.truck_id, world.carrier
            )
            request_id = request.id

        async with session_factory() as first, session_factory() as second:
            cached = await first.get(MatchRequestModel, request_id)
            stale = await second.get(MatchRequestModel, request_id)
            assert cached.status == stale.status == RequestStatus.PENDING

            won = await RequestWorkflowService(first).respond_to_request(
                request_id, ResponseAction.APPROVE, world.shipper
            )
            assert won.trip is not None
            with pytest.raises(PreconditionFailed, match="already been approved"):
                await RequestWorkflowService(second).respond_to_request(
                    request_id, ResponseAction.APPROVE, world.shipper
                )

        assert await trip_count(session_factory, world.load_id) == 1

    @pytest.mark.asyncio
    async def test_fresh_session_repeat_approve_replays(self, session_factory, world):
        async with session_factory() as setup:
            request = await RequestWorkflowService(setup).create_request(
                RequestDirection.LOAD_REQUEST, world.load_id, world.truck_id, world.carrier
            )
            request_id = request.id

        async with session_factory() as first:
            won = await RequestWorkflowService(first).respond_to_request(
                request_id, ResponseAction.APPROVE, world.shipper
            )
            trip_id = won.trip.id

        async with session_factory() as later:
            again = await RequestWorkflowService(later).respond_to_request(
                request_id, ResponseAction.APPROVE, world.shipper
            )

        assert again.idempotent is True
        assert again.trip.id == trip_id
        assert again.load.status == LoadStatus.ASSIGNED
        assert await trip_count(session_factory, world.load_id) == 1

    @pytest.mark.asyncio
    async def test_competing_requests_for_one_load(self, session_factory, world, fetch):
        async with session_factory() as setup:
            service = RequestWorkflowService(setup)
            mine = await service.create_request(
                RequestDirection.LOAD_REQUEST, world.load_id, world.truck_id, world.carrier
            )
            theirs = await service.create_request(
                RequestDirection.LOAD_REQUEST,
                world.load_id,
                world.other_truck_id,
                world.other_carrier,
            )
            mine_id, theirs_id = mine.id, theirs.id

        async with session_factory() as first, session_factory() as second:
            stale = await second.get(MatchRequestModel, theirs_id)
            assert stale.status == RequestStatus.PENDING

            await RequestWorkflowService(first).respond_to_request(
                mine_id, ResponseAction.APPROVE, world.shipper
            )
            with pytest.raises(PreconditionFailed, match="already been cancelled"):
                await RequestWorkflowService(second).respond_to_request(
                    theirs_id, ResponseAction.APPROVE, world.shipper
                )

        assert (await fetch(MatchRequestModel, theirs_id)).status == RequestStatus.CANCELLED
        assert await trip_count(session_factory, world.load_id) == 1


class TestLockOrder:
    """Writers lock a load row before its requests or its trip."""

    @staticmethod
    def record(calls: list[str], name: str, method):
        async def wrapper(*args, **kwargs):
            calls.append(name)
            return await method(*args, **kwargs)

        return wrapper

    @pytest.mark.asyncio
    async def test_approve_locks_load_before_claiming(self, db_session, world):
        service = RequestWorkflowService(db_session)
        request = await service.create_request(
            RequestDirection.LOAD_REQUEST, world.load_id, world.truck_id, world.carrier
        )
        calls: list[str] = []
        service.loads.get_for_update = self.record(
            calls, "load", service.loads.get_for_update
        )
        service.requests.compare_and_set_status = self.record(
            calls, "request", service.requests.compare_and_set_status
        )

        await service.respond_to_request(request.id, ResponseAction.APPROVE, world.shipper)

        assert calls == ["load", "request"]

    @pytest.mark.asyncio
    async def test_cancelling_a_load_locks_load_before_requests(self, db_session, world):
        await RequestWorkflowService(db_session).create_request(
            RequestDirection.LOAD_REQUEST, world.load_id, world.truck_id, world.carrier
        )
        service = LoadService(db_session)
        calls: list[str] = []
        service.loads.get_for_update = self.record(
            calls, "load", service.loads.get_for_update
        )
        service.requests.close_pending_for_load = self.record(
            calls, "requests", service.requests.close_pending_for_load
        )

        await service.update_load_status(world.load_id, LoadStatus.CANCELLED, world.shipper)

        assert calls == ["load", "requests"]

    @pytest.mark.asyncio
    async def test_trip_advance_locks_load_before_trip(
        self, db_session, world, assigned_trip
    ):
        service = TripService(db_session)
        calls: list[str] = []
        service.loads.get_for_update = self.record(
            calls, "load", service.loads.get_for_update
        )
        service.trips.get_for_update = self.record(
            calls, "trip", service.trips.get_for_update
        )

        await service.advance_trip(assigned_trip, TripStatus.PICKUP_PENDING, world.carrier)

        assert calls == ["load", "trip"]


class TestPendingUniqueness:
    @pytest.mark.asyncio
    async def test_index_rejects_second_pending_row(self, db_session, world):
        expires = utcnow()
        for _ in range(2):
            db_session.add(
                MatchRequestModel(
                    direction=RequestDirection.LOAD_REQUEST,
                    load_id=world.load_id,
                    truck_id=world.truck_id,
                    shipper_id=world.shipper_org_id,
                    carrier_id=world.carrier_org_id,
                    requested_by_id=world.carrier.user_id,
                    status=RequestStatus.PENDING,
                    expires_at=expires,
                )
            )
        with pytest.raises(IntegrityError):
            await db_session.commit()

    @pytest.mark.asyncio
    async def test_racing_creator_gets_conflict(self, session_factory, world):
        async with session_factory() as first:
            await RequestWorkflowService(first).create_request(
                RequestDirection.LOAD_REQUEST, world.load_id, world.truck_id, world.carrier
            )

        async with session_factory() as second:
            late = RequestWorkflowService(second)
            # the duplicate read happened before the first insert committed
            late.requests.get_pending_for_pair = AsyncMock(return_value=None)
            with pytest.raises(Conflict):
                await late.create_request(
                    RequestDirection.TRUCK_REQUEST,
                    world.load_id,
                    world.truck_id,
                    world.shipper,
                )


class TestSettlementIdempotency:
    @pytest.mark.asyncio
    async def test_second_deduction_is_a_noop(
        self, db_session, world, assigned_trip
    ):
        trip = await db_session.get(TripModel, assigned_trip)
        gateway = WalletSettlementGateway(db_session)
        fees = ServiceFees(shipper_fee=150.0, carrier_fee=100.0)

        first = await gateway.deduct_fees(trip, fees)
        await db_session.commit()
        second = await gateway.deduct_fees(trip, fees)
        await db_session.commit()

        assert first.outcome == SettlementOutcome.SETTLED
        assert second.outcome == SettlementOutcome.ALREADY_SETTLED
        assert second.fees == fees

        balance = await db_session.scalar(
            select(FinancialAccountModel.balance).where(
                FinancialAccountModel.organization_id == world.shipper_org_id
            )
        )
        assert balance == 850.0

    @pytest.mark.asyncio
    async def test_refusal_leaves_balances_alone(self, db_session, world, assigned_trip):
        trip = await db_session.get(TripModel, assigned_trip)
        gateway = WalletSettlementGateway(db_session)

        result = await gateway.deduct_fees(
            trip, ServiceFees(shipper_fee=5000.0, carrier_fee=10.0)
        )
        assert result.outcome == SettlementOutcome.INSUFFICIENT_FUNDS
        assert not result.succeeded
        assert "shipper" in result.detail
        assert trip.status == TripStatus.ASSIGNED

    @pytest.mark.asyncio
    async def test_fractional_fees_deducted_in_whole_cents(
        self, db_session, world, assigned_trip
    ):
        trip = await db_session.get(TripModel, assigned_trip)
        gateway = WalletSettlementGateway(db_session)

        result = await gateway.deduct_fees(
            trip, ServiceFees(shipper_fee=0.1 + 0.2, carrier_fee=33.335)
        )
        await db_session.commit()
        assert result.outcome == SettlementOutcome.SETTLED

        balances = dict(
            (
                await db_session.execute(
                    select(
                        FinancialAccountModel.organization_id,
                        FinancialAccountModel.balance,
                    )
                )
            ).all()
        )
        assert balances[world.shipper_org_id] == Decimal("999.70")
        assert balances[world.carrier_org_id] == Decimal("966.66")


class TestDistributedLock:
    """Tests the Redis lease logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is True
        assert lock.held
        mock_redis.set.assert_awaited_once_with(
            "loadboard:lock:test-key", lock.token, nx=True, px=10_000
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is False
        assert not lock.held

    @pytest.mark.asyncio
    async def test_release_calls_eval(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        await lock.release()

        mock_redis.eval.assert_called_once()
        assert not lock.held

    @pytest.mark.asyncio
    async def test_release_without_lease_is_noop(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)
        mock_redis.eval = AsyncMock(return_value=0)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        await lock.release()

        mock_redis.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_renew_detects_lost_lease(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=0)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        assert await lock.renew() is False
        assert not lock.held

    @pytest.mark.asyncio
    async def test_context_manager_releases(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        async with DistributedLock(mock_redis, "test-key", ttl_seconds=10) as lock:
            assert lock.held
        assert not lock.held
        mock_redis.eval.assert_called_once()
