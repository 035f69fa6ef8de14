"""
Load service: owner-driven lifecycle, edits and proof of delivery.

Direct status changes go through ``request_load_transition``; everything a
trip drives (ASSIGNED onwards) is refused here.  POD upload and
verification set the two flags the trip completion gate reads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from loadboard.config import settings
from loadboard.domain.access import (
    Permission,
    get_access_roles,
    has_permission,
    require_active,
    require_permission,
)
from loadboard.domain.entities import Actor, utcnow
from loadboard.domain.enums import LoadStatus, RequestStatus, TripStatus
from loadboard.domain.errors import (
    Forbidden,
    NotFound,
    PreconditionFailed,
    ValidationFailed,
)
from loadboard.domain.fees import ServiceFees
from loadboard.domain.lifecycle import (
    apply_load_transition,
    ensure_load_editable,
    request_load_transition,
)
from loadboard.infrastructure.database import transaction
from loadboard.infrastructure.models import LoadModel, TripModel
from loadboard.infrastructure.repositories import (
    LoadEventRepository,
    LoadRepository,
    MatchRequestRepository,
    TripRepository,
)
from loadboard.services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    dispatch_safely,
)
from loadboard.services.settlement import SettlementResult, SettlementTrigger
from loadboard.services.trips import TripService

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset(
    {"pickup_city", "delivery_city", "cargo_description", "weight_kg", "distance_km"}
)
REQUIRED_FIELDS = frozenset({"pickup_city", "delivery_city"})


@dataclass
class PodVerification:
    load: LoadModel
    trip: TripModel
    fees: ServiceFees
    settlement: Optional[SettlementResult] = None

    @property
    def trip_completed(self) -> bool:
        return self.settlement is not None


class LoadService:
    def __init__(
        self,
        session: AsyncSession,
        settlement: SettlementTrigger | None = None,
        notifier: NotificationDispatcher | None = None,
        auto_complete_on_pod_verification: bool | None = None,
    ):
        self.session = session
        self.loads = LoadRepository(session)
        self.trips = TripRepository(session)
        self.requests = MatchRequestRepository(session)
        self.events = LoadEventRepository(session)
        self.trip_service = TripService(session, settlement, notifier)
        self.notifier = notifier
        if auto_complete_on_pod_verification is None:
            auto_complete_on_pod_verification = (
                settings.auto_complete_on_pod_verification
            )
        self.auto_complete = auto_complete_on_pod_verification

    async def _locked_load(self, load_id: int) -> LoadModel:
        load = await self.loads.get_for_update(load_id)
        if load is None:
            raise NotFound("Load not found")
        return load

    def _require_owner(self, load: LoadModel, actor: Actor, verb: str) -> None:
        roles = get_access_roles(actor, shipper_org_id=load.shipper_id)
        if roles.is_shipper:
            return
        if roles.is_admin and has_permission(actor, Permission.EDIT_LOADS):
            return
        raise Forbidden(f"You do not have permission to {verb} this load")

    # ── lifecycle ──────────────────────────────────────────────────────

    async def create_load(
        self,
        actor: Actor,
        *,
        pickup_city: str,
        delivery_city: str,
        cargo_description: str | None = None,
        weight_kg: float | None = None,
        distance_km: float | None = None,
        post: bool = False,
    ) -> LoadModel:
        require_permission(actor, Permission.CREATE_LOAD)
        require_active(actor)
        if actor.organization_id is None:
            raise Forbidden("You must belong to an organization to create loads")

        _validate_fields(
            {
                "pickup_city": pickup_city,
                "delivery_city": delivery_city,
                "weight_kg": weight_kg,
                "distance_km": distance_km,
            }
        )

        async with transaction(self.session):
            load = LoadModel(
                shipper_id=actor.organization_id,
                created_by_id=actor.user_id,
                status=LoadStatus.DRAFT,
                pickup_city=pickup_city,
                delivery_city=delivery_city,
                cargo_description=cargo_description,
                weight_kg=weight_kg,
                distance_km=distance_km,
            )
            if post:
                apply_load_transition(load, LoadStatus.POSTED)
            await self.loads.create(load)
            await self.events.record(
                load.id,
                "CREATED",
                f"Load created as {load.status.value}",
                user_id=actor.user_id,
            )

        logger.info(
            "Load %s created by org %s (%s)", load.id, load.shipper_id, load.status.value
        )
        return load

    async def update_load_status(
        self, load_id: int, target: LoadStatus, actor: Actor
    ) -> LoadModel:
        target = LoadStatus(target)
        closed = []

        async with transaction(self.session):
            load = await self._locked_load(load_id)
            previous = LoadStatus(load.status)
            request_load_transition(load, target, actor)
            require_active(actor)

            if target == LoadStatus.CANCELLED:
                closed = await self.requests.close_pending_for_load(
                    load.id,
                    RequestStatus.CANCELLED,
                    response_notes="Load was cancelled by shipper",
                )

            await self.events.record(
                load.id,
                "STATUS_CHANGED",
                f"Status changed from {previous.value} to {target.value}",
                user_id=actor.user_id,
                payload={"previous_status": previous.value, "new_status": target.value},
            )

        logger.info("Load %s: %s -> %s", load.id, previous.value, target.value)
        await self._notify_closed(closed, load.id, "Load cancelled")
        return load

    async def edit_load(
        self, load_id: int, actor: Actor, changes: dict[str, Any]
    ) -> LoadModel:
        async with transaction(self.session):
            load = await self._locked_load(load_id)
            self._require_owner(load, actor, "edit")
            require_active(actor)
            ensure_load_editable(load)

            unknown = set(changes) - EDITABLE_FIELDS
            if unknown:
                raise ValidationFailed(
                    "Unknown or read-only fields",
                    details={"fields": sorted(unknown)},
                )
            _validate_fields(changes)

            for field, value in changes.items():
                setattr(load, field, value)

            await self.events.record(
                load.id,
                "EDITED",
                "Load details updated",
                user_id=actor.user_id,
                payload={"fields": sorted(changes)},
            )
        return load

    async def delete_load(self, load_id: int, actor: Actor) -> None:
        async with transaction(self.session):
            load = await self._locked_load(load_id)
            roles = get_access_roles(actor, shipper_org_id=load.shipper_id)
            if not (
                roles.is_shipper
                or roles.is_admin
                or load.created_by_id == actor.user_id
            ):
                raise Forbidden("You do not have permission to delete this load")
            require_active(actor)
            ensure_load_editable(load)

            closed = await self.requests.close_pending_for_load(
                load.id,
                RequestStatus.REJECTED,
                response_notes="Load was deleted by shipper",
            )
            recipients = sorted({r.carrier_id for r in closed})
            await self.loads.delete(load)

        logger.info("Load %s deleted (%d pending requests closed)", load_id, len(closed))
        await dispatch_safely(
            self.notifier,
            NotificationEvent.REQUEST_REJECTED,
            recipients,
            {"load_id": load_id, "reason": "Load deleted"},
        )

    # ── proof of delivery ─────────────────────────────────────────────

    async def submit_pod(self, load_id: int, actor: Actor, pod_url: str) -> LoadModel:
        if not pod_url or not pod_url.strip():
            raise ValidationFailed(
                "POD document is required", details={"field": "pod_url"}
            )

        async with transaction(self.session):
            load = await self._locked_load(load_id)
            trip = await self.trips.get_by_load(load.id)
            carrier_id = trip.carrier_id if trip is not None else None
            roles = get_access_roles(actor, carrier_org_id=carrier_id)
            if not roles.is_carrier:
                raise Forbidden("Only the assigned carrier can upload POD")
            require_permission(actor, Permission.UPLOAD_POD)
            require_active(actor)

            if LoadStatus(load.status) != LoadStatus.DELIVERED:
                raise PreconditionFailed("Load must be DELIVERED before uploading POD")
            if load.pod_submitted:
                raise PreconditionFailed("POD already submitted for this load")

            load.pod_url = pod_url.strip()
            load.pod_submitted = True
            load.pod_submitted_at = utcnow()
            await self.events.record(
                load.id,
                "POD_SUBMITTED",
                "Proof of delivery uploaded",
                user_id=actor.user_id,
                payload={"pod_url": load.pod_url},
            )

        logger.info("POD submitted for load %s", load.id)
        await dispatch_safely(
            self.notifier,
            NotificationEvent.POD_SUBMITTED,
            [load.shipper_id],
            {"load_id": load.id, "trip_id": trip.id},
        )
        return load

    async def verify_pod(self, load_id: int, actor: Actor) -> PodVerification:
        """Shipper confirms the POD; optionally completes the trip in place.

        With auto-completion off the verification only unlocks the carrier's
        DELIVERED -> COMPLETED step, and the returned fees are a quote.
        """
        async with transaction(self.session):
            load = await self._locked_load(load_id)
            roles = get_access_roles(actor, shipper_org_id=load.shipper_id)
            if not roles.is_shipper:
                raise Forbidden("Only the shipper can verify POD")
            require_active(actor)

            if not load.pod_submitted:
                raise PreconditionFailed("No POD has been submitted for this load")
            if load.pod_verified:
                raise PreconditionFailed("POD already verified")

            load.pod_verified = True
            load.pod_verified_at = utcnow()
            await self.events.record(
                load.id,
                "POD_VERIFIED",
                "Proof of delivery verified by shipper",
                user_id=actor.user_id,
            )

            trip = await self.trips.get_by_load_for_update(load.id)
            fees = await self.trip_service.settlement.quote(trip, load)

            settlement = None
            if self.auto_complete and TripStatus(trip.status) == TripStatus.DELIVERED:
                update = await self.trip_service.transition_locked(
                    trip, load, TripStatus.COMPLETED, actor
                )
                settlement = update.settlement
                fees = settlement.fees

        logger.info(
            "POD verified for load %s (trip %s %s)", load.id, trip.id, trip.status.value
        )
        await dispatch_safely(
            self.notifier,
            NotificationEvent.POD_VERIFIED,
            [trip.carrier_id],
            {"load_id": load.id, "trip_id": trip.id},
        )
        if settlement is not None:
            await dispatch_safely(
                self.notifier,
                NotificationEvent.SERVICE_FEE_DEDUCTED,
                [trip.shipper_id, trip.carrier_id],
                {
                    "trip_id": trip.id,
                    "shipper_fee": f"{fees.shipper_fee:.2f}",
                    "carrier_fee": f"{fees.carrier_fee:.2f}",
                },
            )
        return PodVerification(load, trip, fees, settlement)

    async def _notify_closed(self, closed, load_id: int, reason: str) -> None:
        recipients = sorted({r.carrier_id for r in closed})
        await dispatch_safely(
            self.notifier,
            NotificationEvent.REQUEST_CANCELLED,
            recipients,
            {"load_id": load_id, "reason": reason},
        )


def _validate_fields(values: dict[str, Any]) -> None:
    errors = {}
    for field in REQUIRED_FIELDS & set(values):
        value = values[field]
        if value is None or not str(value).strip():
            errors[field] = "must not be empty"
    for field in ("weight_kg", "distance_km"):
        value = values.get(field)
        if value is not None and value <= 0:
            errors[field] = "must be positive"
    if errors:
        raise ValidationFailed("Invalid load fields", details=errors)
