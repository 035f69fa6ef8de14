"""
Request Workflow Engine
=======================

One engine for both proposal directions:

* ``LOAD_REQUEST``  -- a carrier offers one of its trucks for a posted load;
  the load's shipper responds.
* ``TRUCK_REQUEST`` -- a shipper asks for a posted truck to carry one of its
  loads; the truck's carrier responds.

Concurrency
-----------
* Creation: the partial unique index on ``(load_id, truck_id) WHERE
  status = 'PENDING'`` backs the duplicate check, so two racing creators
  cannot both insert.
* Response: ``UPDATE ... WHERE status = 'PENDING'`` is the commit guard.
  Exactly one responder sees ``rowcount == 1``; the loser re-reads the row
  and reports what happened.  APPROVE locks the load row before the guard,
  the same order load cancellation and deletion use, then the truck row;
  the trip is created in the same transaction.

Expiry is evaluated against the clock wherever validity matters; a stale
PENDING row is persisted as EXPIRED the first time it is touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loadboard.config import settings
from loadboard.domain.access import (
    RULE_CARRIER_FINAL_AUTHORITY,
    RULE_CARRIER_OWNS_TRUCKS,
    RULE_SHIPPER_DEMAND_FOCUS,
    Permission,
    can_approve_requests,
    can_request_truck,
    get_access_roles,
    has_permission,
    require_active,
    require_permission,
)
from loadboard.domain.entities import (
    Actor,
    is_posting_lapsed,
    is_request_expired,
    utcnow,
)
from loadboard.domain.enums import (
    LoadStatus,
    RequestDirection,
    RequestStatus,
    ResponseAction,
    TripStatus,
    TruckApprovalStatus,
)
from loadboard.domain.errors import (
    Conflict,
    Forbidden,
    NotFound,
    PreconditionFailed,
    ValidationFailed,
)
from loadboard.domain.lifecycle import apply_load_transition
from loadboard.infrastructure.database import transaction
from loadboard.infrastructure.models import LoadModel, MatchRequestModel, TripModel
from loadboard.infrastructure.repositories import (
    LoadEventRepository,
    LoadRepository,
    MatchRequestRepository,
    TripRepository,
    TruckPostingRepository,
    TruckRepository,
)
from loadboard.services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    dispatch_safely,
)

logger = logging.getLogger(__name__)

DUPLICATE_PENDING = "A pending request already exists for this load-truck combination"

_OUTCOME = {
    ResponseAction.APPROVE: RequestStatus.APPROVED,
    ResponseAction.REJECT: RequestStatus.REJECTED,
}


@dataclass
class RequestResponse:
    request: MatchRequestModel
    trip: Optional[TripModel] = None
    load: Optional[LoadModel] = None
    idempotent: bool = False


def responder_org_id(request) -> int:
    if RequestDirection(request.direction) == RequestDirection.LOAD_REQUEST:
        return request.shipper_id
    return request.carrier_id


def initiator_org_id(request) -> int:
    if RequestDirection(request.direction) == RequestDirection.LOAD_REQUEST:
        return request.carrier_id
    return request.shipper_id


def _already(status: RequestStatus) -> PreconditionFailed:
    return PreconditionFailed(
        f"Request has already been {status.value.lower()}",
        details={"current_status": status.value},
    )


class RequestWorkflowService:
    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
    ):
        self.session = session
        self.requests = MatchRequestRepository(session)
        self.loads = LoadRepository(session)
        self.trucks = TruckRepository(session)
        self.postings = TruckPostingRepository(session)
        self.trips = TripRepository(session)
        self.events = LoadEventRepository(session)
        self.notifier = notifier

    # ── create ─────────────────────────────────────────────────────────

    def _authorize_create(self, direction: RequestDirection, actor: Actor) -> None:
        if direction == RequestDirection.LOAD_REQUEST:
            if not has_permission(actor, Permission.REQUEST_LOADS):
                raise Forbidden(
                    "Only carriers can request loads",
                    rule=RULE_CARRIER_FINAL_AUTHORITY,
                )
        elif not has_permission(actor, Permission.REQUEST_TRUCKS):
            raise Forbidden(
                "Only shippers can request trucks", rule=RULE_SHIPPER_DEMAND_FOCUS
            )
        if actor.organization_id is None:
            raise Forbidden("You must belong to an organization to make requests")
        require_active(actor)

    async def create_request(
        self,
        direction: RequestDirection,
        load_id: int,
        truck_id: int,
        actor: Actor,
        *,
        notes: str | None = None,
        expires_in_hours: int | None = None,
    ) -> MatchRequestModel:
        direction = RequestDirection(direction)
        self._authorize_create(direction, actor)

        ttl = expires_in_hours or settings.request_default_ttl_hours
        if not 1 <= ttl <= settings.request_max_ttl_hours:
            raise ValidationFailed(
                f"expires_in_hours must be between 1 and {settings.request_max_ttl_hours}",
                details={"expires_in_hours": ttl},
            )
        subject = "load" if direction == RequestDirection.LOAD_REQUEST else "truck"

        async with transaction(self.session):
            # serializes with a concurrent cancel or approval of the same load
            load = await self.loads.get_for_update(load_id)
            if load is None:
                raise NotFound("Load not found")
            if direction == RequestDirection.TRUCK_REQUEST and not can_request_truck(
                actor, load.shipper_id
            ):
                raise Forbidden("You can only request trucks for your own loads")
            if LoadStatus(load.status) != LoadStatus.POSTED:
                raise PreconditionFailed(
                    f"Cannot request {subject} for load with status {load.status.value}"
                )
            if load.assigned_truck_id is not None:
                raise PreconditionFailed("Load is already assigned to a truck")

            truck = await self.trucks.get_by_id(truck_id)
            if truck is None:
                raise NotFound("Truck not found")
            if (
                direction == RequestDirection.LOAD_REQUEST
                and truck.carrier_id != actor.organization_id
            ):
                raise Forbidden(
                    "You can only request loads for your own trucks",
                    rule=RULE_CARRIER_OWNS_TRUCKS,
                )
            if truck.approval_status != TruckApprovalStatus.APPROVED:
                raise PreconditionFailed(
                    "Truck must be approved before requesting loads"
                    if direction == RequestDirection.LOAD_REQUEST
                    else "Truck must be approved before it can be requested"
                )
            if direction == RequestDirection.TRUCK_REQUEST:
                posting = await self.postings.get_active_for_truck(truck.id)
                if posting is None or is_posting_lapsed(posting):
                    raise PreconditionFailed("Truck is not currently posted as available")

            existing = await self.requests.get_pending_for_pair(load.id, truck.id)
            if existing is not None:
                if not is_request_expired(existing):
                    raise Conflict(DUPLICATE_PENDING)
                # stale row would hold the unique slot
                existing.status = RequestStatus.EXPIRED
                await self.session.flush()

            now = utcnow()
            request = MatchRequestModel(
                direction=direction,
                load_id=load.id,
                truck_id=truck.id,
                shipper_id=load.shipper_id,
                carrier_id=truck.carrier_id,
                requested_by_id=actor.user_id,
                status=RequestStatus.PENDING,
                notes=notes,
                expires_at=now + timedelta(hours=ttl),
            )
            try:
                await self.requests.create(request)
            except IntegrityError as exc:
                raise Conflict(DUPLICATE_PENDING) from exc

            await self.events.record(
                load.id,
                f"{direction.value}_CREATED",
                f"{subject.capitalize()} request created for truck {truck.license_plate}",
                user_id=actor.user_id,
                payload={"request_id": request.id, "truck_id": truck.id},
            )

        logger.info(
            "%s %s created: load %s, truck %s, expires %s",
            direction.value,
            request.id,
            request.load_id,
            request.truck_id,
            request.expires_at.isoformat(),
        )
        event = (
            NotificationEvent.LOAD_REQUEST_RECEIVED
            if direction == RequestDirection.LOAD_REQUEST
            else NotificationEvent.TRUCK_REQUEST_RECEIVED
        )
        await dispatch_safely(
            self.notifier,
            event,
            [responder_org_id(request)],
            {
                "request_id": request.id,
                "load_id": request.load_id,
                "truck_id": request.truck_id,
            },
        )
        return request

    # ── respond ────────────────────────────────────────────────────────

    async def respond_to_request(
        self,
        request_id: int,
        action: ResponseAction,
        actor: Actor,
        response_notes: str | None = None,
    ) -> RequestResponse:
        try:
            action = ResponseAction(action)
        except ValueError:
            raise ValidationFailed(
                "Action must be APPROVE or REJECT", details={"action": str(action)}
            ) from None

        request = await self.requests.get_by_id(request_id)
        if request is None:
            raise NotFound("Request not found")

        if not can_approve_requests(actor, responder_org_id(request)):
            raise Forbidden(
                "You do not have permission to respond to this request",
                rule=(
                    RULE_CARRIER_FINAL_AUTHORITY
                    if request.direction == RequestDirection.TRUCK_REQUEST
                    else None
                ),
            )
        require_permission(
            actor,
            Permission.RESPOND_LOAD_REQUESTS
            if request.direction == RequestDirection.LOAD_REQUEST
            else Permission.RESPOND_TRUCK_REQUESTS,
        )
        require_active(actor)

        status = RequestStatus(request.status)
        target = _OUTCOME[action]
        if status == target:
            return await self._replay(request)
        if status != RequestStatus.PENDING:
            raise _already(status)
        if is_request_expired(request):
            await self._expire(request)
            raise PreconditionFailed(
                "Request has expired",
                details={"expired_at": request.expires_at.isoformat()},
            )

        if action == ResponseAction.REJECT:
            result = await self._reject(request, actor, response_notes)
        else:
            result = await self._approve(request, actor, response_notes)

        await dispatch_safely(
            self.notifier,
            NotificationEvent.REQUEST_APPROVED
            if action == ResponseAction.APPROVE
            else NotificationEvent.REQUEST_REJECTED,
            [initiator_org_id(request)],
            {
                "request_id": request.id,
                "load_id": request.load_id,
                "trip_id": result.trip.id if result.trip is not None else None,
            },
        )
        return result

    async def _claim(
        self,
        request: MatchRequestModel,
        target: RequestStatus,
        actor: Actor,
        response_notes: str | None,
    ) -> None:
        won = await self.requests.compare_and_set_status(
            request.id,
            RequestStatus.PENDING,
            target,
            responded_by_id=actor.user_id,
            responded_at=utcnow(),
            response_notes=response_notes,
        )
        await self.requests.refresh(request)
        if not won:
            current = RequestStatus(request.status)
            logger.info(
                "Request %s lost the race: wanted %s, found %s",
                request.id,
                target.value,
                current.value,
            )
            raise _already(current)

    async def _reject(
        self, request: MatchRequestModel, actor: Actor, response_notes: str | None
    ) -> RequestResponse:
        async with transaction(self.session):
            await self._claim(request, RequestStatus.REJECTED, actor, response_notes)
            await self.events.record(
                request.load_id,
                f"{request.direction.value}_REJECTED",
                "Request rejected",
                user_id=actor.user_id,
                payload={"request_id": request.id},
            )
        logger.info("Request %s rejected by user %s", request.id, actor.user_id)
        return RequestResponse(request)

    async def _approve(
        self, request: MatchRequestModel, actor: Actor, response_notes: str | None
    ) -> RequestResponse:
        async with transaction(self.session):
            # load row before its requests, the order load cancel/delete use
            load = await self.loads.get_for_update(request.load_id)
            if load is None:
                raise NotFound("Load not found")
            await self._claim(request, RequestStatus.APPROVED, actor, response_notes)

            if LoadStatus(load.status) != LoadStatus.POSTED:
                raise PreconditionFailed(
                    f"Load is no longer available (status {load.status.value})"
                )
            if load.assigned_truck_id is not None:
                raise PreconditionFailed("Load is already assigned to a truck")

            truck = await self.trucks.get_for_update(request.truck_id)
            if truck is None:
                raise NotFound("Truck not found")
            if truck.approval_status != TruckApprovalStatus.APPROVED:
                raise PreconditionFailed("Truck is no longer approved")
            busy = await self.loads.get_active_for_truck(truck.id, exclude_load_id=load.id)
            if busy is not None:
                raise PreconditionFailed(
                    "Truck is already assigned to an active load",
                    details={"load_id": busy.id},
                )

            now = utcnow()
            trip = TripModel(
                load_id=load.id,
                truck_id=truck.id,
                carrier_id=truck.carrier_id,
                shipper_id=load.shipper_id,
                status=TripStatus.ASSIGNED,
            )
            try:
                await self.trips.create(trip)
            except IntegrityError as exc:
                raise Conflict("A trip already exists for this load") from exc

            load.assigned_truck_id = truck.id
            apply_load_transition(load, LoadStatus.ASSIGNED, now)

            siblings = await self.requests.close_pending_for_load(
                load.id,
                RequestStatus.CANCELLED,
                exclude_request_id=request.id,
                response_notes="Load was assigned to another truck",
            )
            await self.events.record(
                load.id,
                "ASSIGNED",
                f"Load assigned to truck {truck.license_plate}",
                user_id=actor.user_id,
                payload={
                    "request_id": request.id,
                    "trip_id": trip.id,
                    "cancelled_requests": [s.id for s in siblings],
                },
            )

        logger.info(
            "Request %s approved: load %s -> trip %s (truck %s), %d sibling(s) cancelled",
            request.id,
            load.id,
            trip.id,
            truck.id,
            len(siblings),
        )
        if siblings:
            await dispatch_safely(
                self.notifier,
                NotificationEvent.REQUEST_CANCELLED,
                sorted({s.carrier_id for s in siblings}),
                {"load_id": load.id, "reason": "Load assigned"},
            )
        return RequestResponse(request, trip, load)

    async def _replay(self, request: MatchRequestModel) -> RequestResponse:
        trip = load = None
        if RequestStatus(request.status) == RequestStatus.APPROVED:
            trip = await self.trips.get_by_load(request.load_id)
            load = await self.loads.get_by_id(request.load_id)
        logger.info("Request %s already %s; replay", request.id, request.status.value)
        return RequestResponse(request, trip, load, idempotent=True)

    async def _expire(self, request: MatchRequestModel) -> None:
        async with transaction(self.session):
            await self.requests.compare_and_set_status(
                request.id, RequestStatus.PENDING, RequestStatus.EXPIRED
            )
        await self.requests.refresh(request)
        logger.info("Request %s expired at %s", request.id, request.expires_at)

    # ── read / withdraw ────────────────────────────────────────────────

    async def get_request(self, request_id: int, actor: Actor) -> MatchRequestModel:
        request = await self.requests.get_by_id(request_id)
        if request is None:
            raise NotFound("Request not found")
        roles = get_access_roles(
            actor, shipper_org_id=request.shipper_id, carrier_org_id=request.carrier_id
        )
        if not roles.can_view:
            raise Forbidden("You do not have permission to view this request")
        return request

    async def cancel_request(self, request_id: int, actor: Actor) -> MatchRequestModel:
        request = await self.requests.get_by_id(request_id)
        if request is None:
            raise NotFound("Request not found")
        if actor.organization_id is None or actor.organization_id != initiator_org_id(
            request
        ):
            raise Forbidden("Only the requesting party can cancel this request")
        require_active(actor)

        status = RequestStatus(request.status)
        if status != RequestStatus.PENDING:
            raise PreconditionFailed(f"Cannot cancel request with status {status.value}")
        if is_request_expired(request):
            await self._expire(request)
            raise PreconditionFailed("Request has expired")

        async with transaction(self.session):
            await self._claim(request, RequestStatus.CANCELLED, actor, None)
            await self.events.record(
                request.load_id,
                f"{request.direction.value}_CANCELLED",
                "Request withdrawn by requester",
                user_id=actor.user_id,
                payload={"request_id": request.id},
            )

        logger.info("Request %s withdrawn by user %s", request.id, actor.user_id)
        await dispatch_safely(
            self.notifier,
            NotificationEvent.REQUEST_CANCELLED,
            [responder_org_id(request)],
            {"request_id": request.id, "load_id": request.load_id},
        )
        return request

    async def list_requests(
        self,
        actor: Actor,
        direction: RequestDirection | None = None,
        status: RequestStatus | None = None,
    ) -> list[MatchRequestModel]:
        if actor.organization_id is None:
            if not has_permission(actor, Permission.VIEW_ALL_LOADS):
                raise Forbidden("You must belong to an organization to view requests")
            requests = await self.requests.list_visible(direction=direction)
        else:
            requests = await self.requests.list_visible(actor.organization_id, direction)
        if status is not None:
            status = RequestStatus(status)
            requests = [r for r in requests if r.effective_status == status]
        return requests
