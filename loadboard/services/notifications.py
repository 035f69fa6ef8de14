"""
Notification dispatch.

Dispatch is fire-and-forget: services call ``dispatch_safely`` only after
their transaction has committed, and a failing dispatcher is logged and
swallowed so it can never reverse a workflow transition.

The production dispatcher pushes JSON envelopes onto a Redis list; the
background worker in ``loadboard.workers.notifier`` turns them into
per-user ``notifications`` rows.
"""

from __future__ import annotations

import enum
import json
import logging
from typing import Any, Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class NotificationEvent(str, enum.Enum):
    LOAD_REQUEST_RECEIVED = "LOAD_REQUEST_RECEIVED"
    TRUCK_REQUEST_RECEIVED = "TRUCK_REQUEST_RECEIVED"
    REQUEST_APPROVED = "REQUEST_APPROVED"
    REQUEST_REJECTED = "REQUEST_REJECTED"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"
    TRIP_STATUS_CHANGED = "TRIP_STATUS_CHANGED"
    TRIP_CANCELLED = "TRIP_CANCELLED"
    POD_SUBMITTED = "POD_SUBMITTED"
    POD_VERIFIED = "POD_VERIFIED"
    SERVICE_FEE_DEDUCTED = "SERVICE_FEE_DEDUCTED"


TITLES: dict[NotificationEvent, str] = {
    NotificationEvent.LOAD_REQUEST_RECEIVED: "New Load Request",
    NotificationEvent.TRUCK_REQUEST_RECEIVED: "New Truck Request",
    NotificationEvent.REQUEST_APPROVED: "Request Approved",
    NotificationEvent.REQUEST_REJECTED: "Request Rejected",
    NotificationEvent.REQUEST_CANCELLED: "Request Withdrawn",
    NotificationEvent.TRIP_STATUS_CHANGED: "Trip Status Updated",
    NotificationEvent.TRIP_CANCELLED: "Trip Cancelled",
    NotificationEvent.POD_SUBMITTED: "POD Submitted",
    NotificationEvent.POD_VERIFIED: "POD Verified",
    NotificationEvent.SERVICE_FEE_DEDUCTED: "Service Fee Deducted",
}


class NotificationDispatcher(Protocol):
    async def notify(
        self,
        event: NotificationEvent,
        recipients: list[int],
        payload: dict[str, Any],
    ) -> None:
        """Queue *event* for every active user of the *recipients* organizations."""


class RedisNotificationDispatcher:
    def __init__(self, client: aioredis.Redis, queue: str):
        self.redis = client
        self.queue = queue

    async def notify(
        self,
        event: NotificationEvent,
        recipients: list[int],
        payload: dict[str, Any],
    ) -> None:
        envelope = {
            "event": NotificationEvent(event).value,
            "organization_ids": list(recipients),
            "payload": payload,
        }
        await self.redis.lpush(self.queue, json.dumps(envelope, default=str))


async def dispatch_safely(
    dispatcher: NotificationDispatcher | None,
    event: NotificationEvent,
    recipients: list[int],
    payload: dict[str, Any],
) -> None:
    if dispatcher is None or not recipients:
        return
    try:
        await dispatcher.notify(event, recipients, payload)
    except Exception:
        logger.exception(
            "Notification %s to organizations %s dropped", event.value, recipients
        )
