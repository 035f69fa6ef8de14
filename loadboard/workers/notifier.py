"""
Background Notification Worker
==============================

Runs every ``NOTIFIER_INTERVAL_SECONDS`` (default 5 s).

Services push JSON envelopes onto the Redis list named by
``settings.notification_queue`` after their transaction commits.  Each
cycle of this worker:

1. Takes the ``notification_drain`` Redis lease so only one API process
   drains at a time.
2. Pops up to ``batch_size`` envelopes.
3. Resolves the recipient organizations to their ACTIVE users.
4. Writes one ``notifications`` row per user, committing once per cycle.

A malformed envelope is logged and dropped; it never stalls the queue.
"""

from __future__ import annotations

import asyncio
import json
import logging

from loadboard.config import settings
from loadboard.infrastructure.database import async_session_factory
from loadboard.infrastructure.locks import DistributedLock
from loadboard.infrastructure.redis_client import get_redis
from loadboard.infrastructure.repositories import (
    NotificationRepository,
    UserRepository,
)
from loadboard.services.notifications import TITLES, NotificationEvent

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None

MESSAGES: dict[NotificationEvent, str] = {
    NotificationEvent.LOAD_REQUEST_RECEIVED: "A carrier requested load #{load_id} for truck #{truck_id}.",
    NotificationEvent.TRUCK_REQUEST_RECEIVED: "A shipper requested truck #{truck_id} for load #{load_id}.",
    NotificationEvent.REQUEST_APPROVED: "Request #{request_id} was approved; trip #{trip_id} is assigned.",
    NotificationEvent.REQUEST_REJECTED: "Your request on load #{load_id} was rejected.",
    NotificationEvent.REQUEST_CANCELLED: "A request on load #{load_id} was withdrawn.",
    NotificationEvent.TRIP_STATUS_CHANGED: "Trip #{trip_id} is now {status}.",
    NotificationEvent.TRIP_CANCELLED: "Trip #{trip_id} was cancelled.",
    NotificationEvent.POD_SUBMITTED: "Proof of delivery was uploaded for load #{load_id}.",
    NotificationEvent.POD_VERIFIED: "Proof of delivery for load #{load_id} was verified.",
    NotificationEvent.SERVICE_FEE_DEDUCTED: "Service fees for trip #{trip_id} were deducted.",
}


class _Blank(dict):
    def __missing__(self, key):
        return "?"


def render(event: NotificationEvent, payload: dict) -> tuple[str, str]:
    return TITLES[event], MESSAGES[event].format_map(_Blank(payload or {}))


# ── Public API ────────────────────────────────────────────────────────


async def start_notification_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Notification worker started (interval=%ds)",
        settings.notifier_interval_seconds,
    )


async def stop_notification_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Notification worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_drain_cycle()
        except Exception:
            logger.exception("Unhandled error in notification cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.notifier_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_drain_cycle(
    redis=None,
    session_factory=async_session_factory,
    batch_size: int = 100,
) -> int:
    """Drain one batch from the queue.  Returns the number of rows written."""
    redis = redis or await get_redis()
    lock = DistributedLock(redis, "notification_drain", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Drain lease held by another process, skipping cycle")
        return 0

    written = 0
    try:
        async with session_factory() as session:
            users = UserRepository(session)
            notifications = NotificationRepository(session)

            for _ in range(batch_size):
                raw = await redis.rpop(settings.notification_queue)
                if raw is None:
                    break
                try:
                    envelope = json.loads(raw)
                    event = NotificationEvent(envelope["event"])
                    org_ids = [int(o) for o in envelope["organization_ids"]]
                    payload = envelope.get("payload") or {}
                except (ValueError, KeyError, TypeError):
                    logger.warning("Dropping malformed notification envelope: %r", raw)
                    continue

                user_ids = await users.active_ids_for_organizations(org_ids)
                if not user_ids:
                    continue
                title, message = render(event, payload)
                written += await notifications.create_many(
                    user_ids,
                    event=event.value,
                    title=title,
                    message=message,
                    payload=payload,
                )

            await session.commit()
            if written:
                logger.info("Notification cycle: %d rows written", written)
    except Exception:
        logger.exception("Error in notification cycle")
    finally:
        await lock.release()

    return written
