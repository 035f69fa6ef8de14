"""
Trip State Machine service
==========================

``advance_trip`` is the carrier's entry point for moving a trip along:

1. Lock the trip row, check the caller is the owning carrier.
2. Lock the load row, validate the edge and the POD gate.
3. Apply the trip transition and mirror it onto the load.
4. On COMPLETED, run the settlement trigger; a refusal aborts everything.
5. Commit, then notify the shipper side.

Trip and load are written in one transaction, so a failure at any step
leaves both rows exactly as they were.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from loadboard.domain.access import get_access_roles, require_active
from loadboard.domain.entities import Actor, utcnow
from loadboard.domain.enums import TripStatus
from loadboard.domain.errors import Forbidden, NotFound
from loadboard.domain.lifecycle import (
    apply_trip_transition,
    authorize_trip_cancel,
    authorize_trip_update,
    sync_load_with_trip,
    validate_trip_transition,
)
from loadboard.infrastructure.database import transaction
from loadboard.infrastructure.models import LoadModel, TripModel
from loadboard.infrastructure.repositories import (
    LoadEventRepository,
    LoadRepository,
    TripRepository,
)
from loadboard.services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    dispatch_safely,
)
from loadboard.services.settlement import (
    SettlementResult,
    SettlementTrigger,
    WalletSettlementGateway,
)

logger = logging.getLogger(__name__)


@dataclass
class TripUpdate:
    trip: TripModel
    load: LoadModel
    load_synced: bool
    previous_status: TripStatus
    settlement: Optional[SettlementResult] = None


class TripService:
    def __init__(
        self,
        session: AsyncSession,
        settlement: SettlementTrigger | None = None,
        notifier: NotificationDispatcher | None = None,
    ):
        self.session = session
        self.trips = TripRepository(session)
        self.loads = LoadRepository(session)
        self.events = LoadEventRepository(session)
        self.settlement = settlement or SettlementTrigger(
            WalletSettlementGateway(session)
        )
        self.notifier = notifier

    async def get_trip(self, trip_id: int, actor: Actor) -> TripModel:
        trip = await self.trips.get_by_id(trip_id)
        if trip is None:
            raise NotFound("Trip not found")
        roles = get_access_roles(
            actor, shipper_org_id=trip.shipper_id, carrier_org_id=trip.carrier_id
        )
        if not roles.can_view:
            raise Forbidden("You do not have permission to view this trip")
        return trip

    async def _lock_pair(self, trip_id: int) -> tuple[TripModel, LoadModel]:
        """Lock the trip's load, then the trip itself.

        Every writer takes the load row first. ``load_id`` never changes, so
        an unlocked read is enough to find it.
        """
        found = await self.trips.get_by_id(trip_id)
        if found is None:
            raise NotFound("Trip not found")
        load = await self.loads.get_for_update(found.load_id)
        trip = await self.trips.get_for_update(trip_id)
        return trip, load

    async def advance_trip(
        self,
        trip_id: int,
        target: TripStatus,
        actor: Actor,
        *,
        receiver_name: str | None = None,
        receiver_phone: str | None = None,
        delivery_notes: str | None = None,
    ) -> TripUpdate:
        target = TripStatus(target)

        async with transaction(self.session):
            trip, load = await self._lock_pair(trip_id)
            authorize_trip_update(trip, actor)
            require_active(actor)

            update = await self.transition_locked(
                trip,
                load,
                target,
                actor,
                receiver_name=receiver_name,
                receiver_phone=receiver_phone,
                delivery_notes=delivery_notes,
            )

        await dispatch_safely(
            self.notifier,
            NotificationEvent.TRIP_STATUS_CHANGED,
            [trip.shipper_id],
            {
                "trip_id": trip.id,
                "load_id": trip.load_id,
                "previous_status": update.previous_status.value,
                "status": target.value,
            },
        )
        return update

    async def transition_locked(
        self,
        trip: TripModel,
        load: LoadModel,
        target: TripStatus,
        actor: Actor,
        **delivery,
    ) -> TripUpdate:
        """Apply *target* to rows the caller already holds locked.

        Must run inside the caller's transaction.
        """
        previous = TripStatus(trip.status)
        validate_trip_transition(trip, target, load)

        now = utcnow()
        apply_trip_transition(trip, target, now, **delivery)
        load_synced = sync_load_with_trip(load, target, now)

        settlement = None
        if target == TripStatus.COMPLETED:
            settlement = await self.settlement.settle(trip, load)

        await self.events.record(
            load.id,
            "TRIP_STATUS_UPDATED",
            f"Trip status changed to {target.value}",
            user_id=actor.user_id,
            payload={
                "trip_id": trip.id,
                "previous_status": previous.value,
                "new_status": target.value,
                "load_status_synced": load_synced,
            },
        )
        logger.info(
            "Trip %s: %s -> %s (load %s now %s)",
            trip.id,
            previous.value,
            target.value,
            load.id,
            load.status.value,
        )
        return TripUpdate(trip, load, load_synced, previous, settlement)

    async def cancel_trip(
        self, trip_id: int, actor: Actor, reason: str | None = None
    ) -> TripUpdate:
        async with transaction(self.session):
            trip, load = await self._lock_pair(trip_id)
            authorize_trip_cancel(trip, actor)
            require_active(actor)

            previous = TripStatus(trip.status)
            validate_trip_transition(trip, TripStatus.CANCELLED, load)

            now = utcnow()
            apply_trip_transition(trip, TripStatus.CANCELLED, now)
            trip.cancel_reason = reason
            load_synced = sync_load_with_trip(load, TripStatus.CANCELLED, now)

            await self.events.record(
                load.id,
                "TRIP_CANCELLED",
                f"Trip cancelled from {previous.value}",
                user_id=actor.user_id,
                payload={"trip_id": trip.id, "reason": reason},
            )

        logger.info("Trip %s cancelled by user %s", trip.id, actor.user_id)
        counterparty = (
            trip.carrier_id
            if actor.organization_id == trip.shipper_id
            else trip.shipper_id
        )
        await dispatch_safely(
            self.notifier,
            NotificationEvent.TRIP_CANCELLED,
            [counterparty],
            {"trip_id": trip.id, "load_id": trip.load_id, "reason": reason},
        )
        return TripUpdate(trip, load, load_synced, previous)
