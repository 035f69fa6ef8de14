"""Fleet and truck posting service (supply side of the board)."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loadboard.domain.access import (
    RULE_CARRIER_OWNS_TRUCKS,
    RULE_ONE_ACTIVE_POST_PER_TRUCK,
    Permission,
    assert_can_browse_fleet,
    get_access_roles,
    has_permission,
    require_active,
    require_permission,
)
from loadboard.domain.entities import Actor, as_utc, is_posting_lapsed
from loadboard.domain.enums import PostingStatus, TruckApprovalStatus
from loadboard.domain.errors import (
    Conflict,
    Forbidden,
    NotFound,
    PreconditionFailed,
    ValidationFailed,
)
from loadboard.infrastructure.database import transaction
from loadboard.infrastructure.models import TruckModel, TruckPostingModel
from loadboard.infrastructure.repositories import (
    TruckPostingRepository,
    TruckRepository,
)

logger = logging.getLogger(__name__)

ACTIVE_POSTING_EXISTS = "Truck already has an active posting"


class PostingService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.trucks = TruckRepository(session)
        self.postings = TruckPostingRepository(session)

    async def register_truck(
        self,
        actor: Actor,
        *,
        license_plate: str,
        truck_type: str = "FLATBED",
        capacity_kg: float | None = None,
    ) -> TruckModel:
        require_permission(actor, Permission.POST_TRUCKS)
        require_active(actor)
        if actor.organization_id is None:
            raise Forbidden("You must belong to a carrier organization to add trucks")

        async with transaction(self.session):
            truck = TruckModel(
                carrier_id=actor.organization_id,
                license_plate=license_plate.strip().upper(),
                truck_type=truck_type,
                capacity_kg=capacity_kg,
                approval_status=TruckApprovalStatus.PENDING,
            )
            try:
                await self.trucks.create(truck)
            except IntegrityError as exc:
                raise Conflict(
                    f"Truck with license plate {truck.license_plate} already exists"
                ) from exc

        logger.info("Truck %s registered for carrier %s", truck.id, truck.carrier_id)
        return truck

    async def review_truck(
        self, truck_id: int, actor: Actor, approve: bool
    ) -> TruckModel:
        require_permission(actor, Permission.APPROVE_TRUCKS)
        require_active(actor)

        async with transaction(self.session):
            truck = await self.trucks.get_for_update(truck_id)
            if truck is None:
                raise NotFound("Truck not found")
            truck.approval_status = (
                TruckApprovalStatus.APPROVED if approve else TruckApprovalStatus.REJECTED
            )

        logger.info("Truck %s reviewed: %s", truck.id, truck.approval_status.value)
        return truck

    async def list_fleet(self, actor: Actor) -> list[TruckModel]:
        assert_can_browse_fleet(actor)
        if get_access_roles(actor).is_admin:
            return await self.trucks.list_all()
        if actor.organization_id is None:
            return []
        return await self.trucks.list_for_carrier(actor.organization_id)

    async def create_posting(
        self,
        truck_id: int,
        actor: Actor,
        *,
        origin_city: str,
        available_from: datetime,
        destination_city: str | None = None,
        available_to: datetime | None = None,
    ) -> TruckPostingModel:
        require_permission(actor, Permission.POST_TRUCKS)
        require_active(actor)

        async with transaction(self.session):
            truck = await self.trucks.get_by_id(truck_id)
            if truck is None:
                raise NotFound("Truck not found")
            roles = get_access_roles(actor, carrier_org_id=truck.carrier_id)
            if not roles.is_carrier:
                raise Forbidden(
                    "You can only post your own trucks", rule=RULE_CARRIER_OWNS_TRUCKS
                )
            if truck.approval_status != TruckApprovalStatus.APPROVED:
                raise PreconditionFailed("Truck must be approved before posting")
            if not origin_city or not origin_city.strip():
                raise ValidationFailed(
                    "Origin city is required", details={"origin_city": "must not be empty"}
                )
            if available_to is not None and as_utc(available_to) <= as_utc(
                available_from
            ):
                raise ValidationFailed(
                    "available_to must be after available_from",
                    details={"available_to": "must be after available_from"},
                )

            current = await self.postings.get_active_for_truck(truck.id)
            if current is not None and is_posting_lapsed(current):
                # a lapsed posting would still hold the one-active slot
                current.status = PostingStatus.EXPIRED
                await self.session.flush()
                logger.info("Posting %s expired on repost", current.id)

            posting = TruckPostingModel(
                truck_id=truck.id,
                carrier_id=truck.carrier_id,
                origin_city=origin_city.strip(),
                destination_city=destination_city,
                available_from=available_from,
                available_to=available_to,
                status=PostingStatus.ACTIVE,
            )
            try:
                await self.postings.create(posting)
            except IntegrityError as exc:
                raise Conflict(
                    ACTIVE_POSTING_EXISTS, rule=RULE_ONE_ACTIVE_POST_PER_TRUCK
                ) from exc

        logger.info("Posting %s created for truck %s", posting.id, truck.id)
        return posting

    async def unpost(self, posting_id: int, actor: Actor) -> TruckPostingModel:
        async with transaction(self.session):
            posting = await self.postings.get_by_id(posting_id)
            if posting is None:
                raise NotFound("Posting not found")
            roles = get_access_roles(actor, carrier_org_id=posting.carrier_id)
            if not roles.is_carrier:
                raise Forbidden(
                    "You can only unpost your own trucks", rule=RULE_CARRIER_OWNS_TRUCKS
                )
            require_active(actor)
            if posting.status != PostingStatus.ACTIVE:
                raise PreconditionFailed(
                    f"Cannot unpost a posting with status {posting.status.value}"
                )
            posting.status = PostingStatus.UNPOSTED

        logger.info("Posting %s unposted", posting.id)
        return posting

    async def list_active_postings(self, actor: Actor) -> list[TruckPostingModel]:
        postings = [
            p for p in await self.postings.list_active() if not is_posting_lapsed(p)
        ]
        if not has_permission(actor, Permission.VIEW_POSTED_TRUCKS):
            # carriers see their own postings only
            return [p for p in postings if p.carrier_id == actor.organization_id]
        return postings
