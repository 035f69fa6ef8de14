"""
Fleet and posting endpoints
===========================

POST /api/v1/truck-postings                  -- carrier posts an approved truck
POST /api/v1/truck-postings/{posting_id}/unpost -- carrier withdraws a posting
GET  /api/v1/truck-postings                  -- active postings (demand-side view)
GET  /api/v1/trucks                          -- carrier fleet (not for shippers)
POST /api/v1/trucks                          -- carrier registers a truck
POST /api/v1/trucks/{truck_id}/review        -- admin approves / rejects a truck
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loadboard.api.dependencies import get_actor, get_db
from loadboard.api.schemas import (
    ErrorResponse,
    PostingCreateRequest,
    PostingResponse,
    TruckCreateRequest,
    TruckResponse,
    TruckReviewRequest,
)
from loadboard.domain.entities import Actor
from loadboard.services.postings import PostingService

router = APIRouter(tags=["fleet"])

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.post(
    "/truck-postings",
    status_code=201,
    response_model=PostingResponse,
    summary="Post a truck as available",
    responses=_ERRORS,
)
async def create_posting(
    body: PostingCreateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await PostingService(db).create_posting(
        body.truck_id,
        actor,
        origin_city=body.origin_city,
        destination_city=body.destination_city,
        available_from=body.available_from,
        available_to=body.available_to,
    )


@router.post(
    "/truck-postings/{posting_id}/unpost",
    response_model=PostingResponse,
    summary="Withdraw a truck posting",
    responses=_ERRORS,
)
async def unpost(
    posting_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await PostingService(db).unpost(posting_id, actor)


@router.get(
    "/truck-postings",
    response_model=list[PostingResponse],
    summary="List active truck postings",
)
async def list_postings(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await PostingService(db).list_active_postings(actor)


@router.get(
    "/trucks",
    response_model=list[TruckResponse],
    summary="List your fleet",
    responses={403: {"model": ErrorResponse}},
)
async def list_fleet(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await PostingService(db).list_fleet(actor)


@router.post(
    "/trucks/{truck_id}/review",
    response_model=TruckResponse,
    summary="Approve or reject a truck",
    responses=_ERRORS,
)
async def review_truck(
    truck_id: int,
    body: TruckReviewRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await PostingService(db).review_truck(truck_id, actor, body.approve)


@router.post(
    "/trucks",
    status_code=201,
    response_model=TruckResponse,
    summary="Register a truck (pending approval)",
    responses=_ERRORS,
)
async def register_truck(
    body: TruckCreateRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await PostingService(db).register_truck(actor, **body.model_dump())
