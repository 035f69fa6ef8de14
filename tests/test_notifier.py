"""Notification dispatch and drain-worker tests (mocked Redis)."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from loadboard.infrastructure.repositories import NotificationRepository
from loadboard.services.notifications import (
    NotificationEvent,
    RedisNotificationDispatcher,
    dispatch_safely,
)
from loadboard.workers.notifier import render, run_drain_cycle


def envelope(event: NotificationEvent, org_ids: list[int], **payload) -> str:
    return json.dumps(
        {"event": event.value, "organization_ids": org_ids, "payload": payload}
    )


def queue_redis(*items, lease: bool = True) -> AsyncMock:
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=lease)
    redis.eval = AsyncMock(return_value=1)
    redis.rpop = AsyncMock(side_effect=[*items, None])
    return redis


class TestDispatch:
    @pytest.mark.asyncio
    async def test_redis_dispatcher_pushes_envelope(self):
        redis = AsyncMock()
        dispatcher = RedisNotificationDispatcher(redis, "q")

        await dispatcher.notify(NotificationEvent.POD_SUBMITTED, [7], {"load_id": 3})

        queue, raw = redis.lpush.await_args.args
        assert queue == "q"
        assert json.loads(raw) == {
            "event": "POD_SUBMITTED",
            "organization_ids": [7],
            "payload": {"load_id": 3},
        }

    @pytest.mark.asyncio
    async def test_dispatch_failure_is_swallowed(self):
        dispatcher = AsyncMock()
        dispatcher.notify = AsyncMock(side_effect=ConnectionError("redis down"))

        await dispatch_safely(dispatcher, NotificationEvent.TRIP_CANCELLED, [1], {})

        dispatcher.notify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_recipients_sends_nothing(self):
        dispatcher = AsyncMock()
        await dispatch_safely(dispatcher, NotificationEvent.TRIP_CANCELLED, [], {})
        dispatcher.notify.assert_not_awaited()


class TestRender:
    def test_fills_payload(self):
        title, message = render(
            NotificationEvent.TRIP_STATUS_CHANGED, {"trip_id": 4, "status": "IN_TRANSIT"}
        )
        assert title == "Trip Status Updated"
        assert message == "Trip #4 is now IN_TRANSIT."

    def test_missing_keys_render_placeholder(self):
        _, message = render(NotificationEvent.TRIP_CANCELLED, {})
        assert message == "Trip #? was cancelled."


class TestDrainCycle:
    @pytest.mark.asyncio
    async def test_writes_one_row_per_active_user(self, session_factory, world):
        redis = queue_redis(
            envelope(
                NotificationEvent.REQUEST_APPROVED,
                [world.carrier_org_id, world.shipper_org_id],
                request_id=1,
                trip_id=2,
            )
        )

        written = await run_drain_cycle(redis=redis, session_factory=session_factory)

        # the suspended carrier member is skipped
        assert written == 2
        async with session_factory() as session:
            rows = await NotificationRepository(session).list_for_user(world.carrier.user_id)
            assert len(rows) == 1
            assert rows[0].title == "Request Approved"
            assert rows[0].message == "Request #1 was approved; trip #2 is assigned."
            assert not rows[0].is_read
            assert (
                await NotificationRepository(session).list_for_user(
                    world.suspended_carrier.user_id
                )
                == []
            )
        redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_malformed_envelopes_are_dropped(self, session_factory, world):
        redis = queue_redis(
            b"not json",
            json.dumps({"event": "NO_SUCH_EVENT", "organization_ids": [1]}),
            json.dumps({"event": "POD_VERIFIED"}),
            envelope(NotificationEvent.POD_VERIFIED, [world.carrier_org_id], load_id=5),
        )

        written = await run_drain_cycle(redis=redis, session_factory=session_factory)

        assert written == 1

    @pytest.mark.asyncio
    async def test_skips_cycle_without_lease(self, session_factory, world):
        redis = queue_redis(
            envelope(NotificationEvent.POD_VERIFIED, [world.carrier_org_id]),
            lease=False,
        )

        assert await run_drain_cycle(redis=redis, session_factory=session_factory) == 0
        redis.rpop.assert_not_awaited()
        redis.eval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_batch_size_bounds_a_cycle(self, session_factory, world):
        items = [
            envelope(NotificationEvent.POD_SUBMITTED, [world.shipper_org_id], load_id=i)
            for i in range(3)
        ]
        redis = queue_redis(*items)

        written = await run_drain_cycle(
            redis=redis, session_factory=session_factory, batch_size=2
        )

        assert written == 2
        assert redis.rpop.await_count == 2
