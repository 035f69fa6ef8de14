"""
Trip endpoints
==============

GET   /api/v1/trips/{trip_id}        -- trip detail for either party
PATCH /api/v1/trips/{trip_id}        -- carrier advances the trip
POST  /api/v1/trips/{trip_id}/cancel -- either party cancels before pickup
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loadboard.api.dependencies import get_actor, get_db, get_notifier
from loadboard.api.schemas import (
    ErrorResponse,
    LoadResponse,
    SettlementResponse,
    TripCancelRequest,
    TripResponse,
    TripStatusUpdate,
    TripUpdateResponse,
)
from loadboard.domain.entities import Actor
from loadboard.services.trips import TripService, TripUpdate

router = APIRouter(prefix="/trips", tags=["trips"])

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


def _render(update: TripUpdate) -> TripUpdateResponse:
    return TripUpdateResponse(
        trip=TripResponse.model_validate(update.trip),
        load=LoadResponse.model_validate(update.load),
        load_synced=update.load_synced,
        settlement=SettlementResponse.from_result(update.settlement),
    )


@router.get(
    "/{trip_id}",
    response_model=TripResponse,
    summary="Get a trip",
    responses=_ERRORS,
)
async def get_trip(
    trip_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await TripService(db).get_trip(trip_id, actor)


@router.patch(
    "/{trip_id}",
    response_model=TripUpdateResponse,
    summary="Advance trip status",
    description=(
        "Carrier-only. The load follows the trip in the same transaction; "
        "completion requires an uploaded and verified POD and triggers "
        "settlement."
    ),
    responses=_ERRORS,
)
async def update_trip_status(
    trip_id: int,
    body: TripStatusUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    update = await TripService(db, notifier=notifier).advance_trip(
        trip_id,
        body.status,
        actor,
        receiver_name=body.receiver_name,
        receiver_phone=body.receiver_phone,
        delivery_notes=body.delivery_notes,
    )
    return _render(update)


@router.post(
    "/{trip_id}/cancel",
    response_model=TripUpdateResponse,
    summary="Cancel a trip before pickup",
    responses=_ERRORS,
)
async def cancel_trip(
    trip_id: int,
    body: TripCancelRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    update = await TripService(db, notifier=notifier).cancel_trip(
        trip_id, actor, body.reason
    )
    return _render(update)
