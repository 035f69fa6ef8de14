"""
Load endpoints
==============

POST   /api/v1/loads               -- create a load (DRAFT, or POSTED with ``post``)
PATCH  /api/v1/loads/{load_id}     -- edit details while DRAFT / POSTED / UNPOSTED
DELETE /api/v1/loads/{load_id}     -- delete while DRAFT / POSTED / UNPOSTED
PATCH  /api/v1/loads/{load_id}/status -- owner-driven status change
POST   /api/v1/loads/{load_id}/pod -- carrier uploads proof of delivery
PUT    /api/v1/loads/{load_id}/pod -- shipper verifies proof of delivery
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loadboard.api.dependencies import get_actor, get_db, get_notifier
from loadboard.api.schemas import (
    ErrorResponse,
    FeesResponse,
    LoadCreateRequest,
    LoadEditRequest,
    LoadResponse,
    LoadStatusUpdate,
    PodSubmitRequest,
    PodVerifyResponse,
    SettlementResponse,
    TripResponse,
)
from loadboard.domain.entities import Actor
from loadboard.services.loads import LoadService

router = APIRouter(prefix="/loads", tags=["loads"])

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


@router.post(
    "",
    status_code=201,
    response_model=LoadResponse,
    summary="Create a load",
    responses=_ERRORS,
)
async def create_load(
    body: LoadCreateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await LoadService(db).create_load(actor, **body.model_dump())


@router.patch(
    "/{load_id}",
    response_model=LoadResponse,
    summary="Edit load details",
    responses=_ERRORS,
)
async def edit_load(
    load_id: int,
    body: LoadEditRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True)
    return await LoadService(db).edit_load(load_id, actor, changes)


@router.delete(
    "/{load_id}",
    status_code=204,
    summary="Delete a load",
    responses=_ERRORS,
)
async def delete_load(
    load_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    await LoadService(db, notifier=notifier).delete_load(load_id, actor)


@router.patch(
    "/{load_id}/status",
    response_model=LoadResponse,
    summary="Change load status",
    description=(
        "Owners move loads between DRAFT, POSTED and UNPOSTED, or cancel "
        "them. Statuses from ASSIGNED onwards follow the trip."
    ),
    responses=_ERRORS,
)
async def update_load_status(
    load_id: int,
    body: LoadStatusUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    return await LoadService(db, notifier=notifier).update_load_status(
        load_id, body.status, actor
    )


@router.post(
    "/{load_id}/pod",
    response_model=LoadResponse,
    summary="Upload proof of delivery",
    responses=_ERRORS,
)
async def submit_pod(
    load_id: int,
    body: PodSubmitRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    return await LoadService(db, notifier=notifier).submit_pod(
        load_id, actor, body.pod_url
    )


@router.put(
    "/{load_id}/pod",
    response_model=PodVerifyResponse,
    summary="Verify proof of delivery",
    responses=_ERRORS,
)
async def verify_pod(
    load_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    result = await LoadService(db, notifier=notifier).verify_pod(load_id, actor)
    return PodVerifyResponse(
        load=LoadResponse.model_validate(result.load),
        trip=TripResponse.model_validate(result.trip),
        fees=FeesResponse.model_validate(result.fees),
        trip_completed=result.trip_completed,
        settlement=SettlementResponse.from_result(result.settlement),
    )
