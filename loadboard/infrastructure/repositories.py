"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  ``*_for_update`` variants issue
``SELECT ... FOR UPDATE`` so a transaction holds the row until it commits.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    FinancialAccountModel,
    JournalEntryModel,
    LoadEventModel,
    LoadModel,
    MatchRequestModel,
    NotificationModel,
    TripModel,
    TruckModel,
    TruckPostingModel,
    UserModel,
)
from loadboard.domain.entities import utcnow
from loadboard.domain.enums import (
    ACTIVE_LOAD_STATUSES,
    PostingStatus,
    RequestDirection,
    RequestStatus,
    UserStatus,
)


class LoadRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, load: LoadModel) -> LoadModel:
        self.session.add(load)
        await self.session.flush()
        return load

    async def get_by_id(self, load_id: int) -> Optional[LoadModel]:
        return await self.session.get(LoadModel, load_id)

    async def get_for_update(self, load_id: int) -> Optional[LoadModel]:
        result = await self.session.execute(
            select(LoadModel)
            .where(LoadModel.id == load_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_for_truck(
        self, truck_id: int, exclude_load_id: int | None = None
    ) -> Optional[LoadModel]:
        query = select(LoadModel).where(
            LoadModel.assigned_truck_id == truck_id,
            LoadModel.status.in_(ACTIVE_LOAD_STATUSES),
        )
        if exclude_load_id is not None:
            query = query.where(LoadModel.id != exclude_load_id)
        result = await self.session.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def delete(self, load: LoadModel) -> None:
        """Remove the load with its request history and audit trail."""
        await self.session.execute(
            delete(MatchRequestModel).where(MatchRequestModel.load_id == load.id)
        )
        await self.session.execute(
            delete(LoadEventModel).where(LoadEventModel.load_id == load.id)
        )
        await self.session.delete(load)
        await self.session.flush()


class TripRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, trip: TripModel) -> TripModel:
        self.session.add(trip)
        await self.session.flush()
        return trip

    async def get_by_id(self, trip_id: int) -> Optional[TripModel]:
        return await self.session.get(TripModel, trip_id)

    async def get_for_update(self, trip_id: int) -> Optional[TripModel]:
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.id == trip_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_load(self, load_id: int) -> Optional[TripModel]:
        result = await self.session.execute(
            select(TripModel).where(TripModel.load_id == load_id)
        )
        return result.scalar_one_or_none()

    async def get_by_load_for_update(self, load_id: int) -> Optional[TripModel]:
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.load_id == load_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


class MatchRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, request: MatchRequestModel) -> MatchRequestModel:
        self.session.add(request)
        await self.session.flush()
        return request

    async def get_by_id(self, request_id: int) -> Optional[MatchRequestModel]:
        return await self.session.get(MatchRequestModel, request_id)

    async def get_pending_for_pair(
        self, load_id: int, truck_id: int
    ) -> Optional[MatchRequestModel]:
        """Pending request on the pair, whichever side proposed it."""
        result = await self.session.execute(
            select(MatchRequestModel).where(
                MatchRequestModel.load_id == load_id,
                MatchRequestModel.truck_id == truck_id,
                MatchRequestModel.status == RequestStatus.PENDING,
            )
        )
        return result.scalars().first()

    async def compare_and_set_status(
        self,
        request_id: int,
        expected: RequestStatus,
        new_status: RequestStatus,
        **values,
    ) -> bool:
        """Conditional UPDATE; True only for the caller that won the row."""
        result = await self.session.execute(
            update(MatchRequestModel)
            .where(
                MatchRequestModel.id == request_id,
                MatchRequestModel.status == expected,
            )
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def close_pending_for_load(
        self,
        load_id: int,
        new_status: RequestStatus,
        *,
        exclude_request_id: int | None = None,
        response_notes: str | None = None,
    ) -> list[MatchRequestModel]:
        """Move the PENDING requests on *load_id* to *new_status*."""
        query = (
            select(MatchRequestModel)
            .where(
                MatchRequestModel.load_id == load_id,
                MatchRequestModel.status == RequestStatus.PENDING,
            )
            .with_for_update()
        )
        if exclude_request_id is not None:
            query = query.where(MatchRequestModel.id != exclude_request_id)
        result = await self.session.execute(query)
        closed = list(result.scalars().all())
        now = utcnow()
        for request in closed:
            request.status = new_status
            request.responded_at = now
            if response_notes:
                request.response_notes = response_notes
        await self.session.flush()
        return closed

    async def list_visible(
        self,
        organization_id: int | None = None,
        direction: RequestDirection | None = None,
    ) -> list[MatchRequestModel]:
        """Requests where *organization_id* is either party; all when None."""
        query = select(MatchRequestModel)
        if organization_id is not None:
            query = query.where(
                or_(
                    MatchRequestModel.shipper_id == organization_id,
                    MatchRequestModel.carrier_id == organization_id,
                )
            )
        if direction is not None:
            query = query.where(MatchRequestModel.direction == direction)
        result = await self.session.execute(
            query.order_by(MatchRequestModel.created_at.desc(), MatchRequestModel.id.desc())
        )
        return list(result.scalars().all())

    async def refresh(self, request: MatchRequestModel) -> MatchRequestModel:
        await self.session.refresh(request)
        return request


class TruckRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, truck: TruckModel) -> TruckModel:
        self.session.add(truck)
        await self.session.flush()
        return truck

    async def get_by_id(self, truck_id: int) -> Optional[TruckModel]:
        return await self.session.get(TruckModel, truck_id)

    async def get_for_update(self, truck_id: int) -> Optional[TruckModel]:
        result = await self.session.execute(
            select(TruckModel).where(TruckModel.id == truck_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def list_for_carrier(self, carrier_id: int) -> list[TruckModel]:
        result = await self.session.execute(
            select(TruckModel)
            .where(TruckModel.carrier_id == carrier_id)
            .order_by(TruckModel.id)
        )
        return list(result.scalars().all())

    async def list_all(self) -> list[TruckModel]:
        result = await self.session.execute(select(TruckModel).order_by(TruckModel.id))
        return list(result.scalars().all())


class TruckPostingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, posting: TruckPostingModel) -> TruckPostingModel:
        self.session.add(posting)
        await self.session.flush()
        return posting

    async def get_by_id(self, posting_id: int) -> Optional[TruckPostingModel]:
        return await self.session.get(TruckPostingModel, posting_id)

    async def get_active_for_truck(self, truck_id: int) -> Optional[TruckPostingModel]:
        result = await self.session.execute(
            select(TruckPostingModel).where(
                TruckPostingModel.truck_id == truck_id,
                TruckPostingModel.status == PostingStatus.ACTIVE,
            )
        )
        return result.scalars().first()

    async def list_active(self) -> list[TruckPostingModel]:
        result = await self.session.execute(
            select(TruckPostingModel)
            .where(TruckPostingModel.status == PostingStatus.ACTIVE)
            .order_by(TruckPostingModel.available_from)
        )
        return list(result.scalars().all())


class LoadEventRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        load_id: int,
        event_type: str,
        description: str,
        user_id: int | None = None,
        payload: dict | None = None,
    ) -> LoadEventModel:
        event = LoadEventModel(
            load_id=load_id,
            event_type=event_type,
            description=description,
            user_id=user_id,
            payload=payload,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_for_load(self, load_id: int) -> list[LoadEventModel]:
        result = await self.session.execute(
            select(LoadEventModel)
            .where(LoadEventModel.load_id == load_id)
            .order_by(LoadEventModel.id)
        )
        return list(result.scalars().all())


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def get_by_token(self, token: str) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.api_token == token)
        )
        return result.scalar_one_or_none()

    async def active_ids_for_organizations(self, org_ids: list[int]) -> list[int]:
        result = await self.session.execute(
            select(UserModel.id).where(
                UserModel.organization_id.in_(org_ids),
                UserModel.status == UserStatus.ACTIVE,
            )
        )
        return list(result.scalars().all())


class FinancialAccountRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_update(self, organization_id: int) -> Optional[FinancialAccountModel]:
        result = await self.session.execute(
            select(FinancialAccountModel)
            .where(FinancialAccountModel.organization_id == organization_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def entries_for_trip(self, trip_id: int) -> list[JournalEntryModel]:
        result = await self.session.execute(
            select(JournalEntryModel)
            .where(JournalEntryModel.trip_id == trip_id)
            .order_by(JournalEntryModel.id)
        )
        return list(result.scalars().all())

    async def add_entry(
        self, trip_id: int, organization_id: int, kind: str, amount: Decimal
    ) -> JournalEntryModel:
        entry = JournalEntryModel(
            trip_id=trip_id,
            organization_id=organization_id,
            kind=kind,
            amount=amount,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_many(
        self,
        user_ids: list[int],
        *,
        event: str,
        title: str,
        message: str,
        payload: dict | None = None,
    ) -> int:
        for user_id in user_ids:
            self.session.add(
                NotificationModel(
                    user_id=user_id,
                    event=event,
                    title=title,
                    message=message,
                    payload=payload,
                )
            )
        await self.session.flush()
        return len(user_ids)

    async def list_for_user(self, user_id: int) -> list[NotificationModel]:
        result = await self.session.execute(
            select(NotificationModel)
            .where(NotificationModel.user_id == user_id)
            .order_by(NotificationModel.id.desc())
        )
        return list(result.scalars().all())
