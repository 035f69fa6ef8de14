"""
Load / truck request endpoints
==============================

POST /api/v1/load-requests               -- carrier offers a truck for a load
POST /api/v1/truck-requests              -- shipper asks for a posted truck
GET  /api/v1/requests                    -- requests visible to the caller
GET  /api/v1/requests/{request_id}       -- one request, expiry evaluated now
POST /api/v1/requests/{request_id}/respond -- APPROVE or REJECT
POST /api/v1/requests/{request_id}/cancel  -- requester withdraws
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loadboard.api.dependencies import get_actor, get_db, get_notifier
from loadboard.api.schemas import (
    ErrorResponse,
    LoadResponse,
    MatchRequestCreate,
    MatchRequestResponse,
    RespondRequest,
    RespondResponse,
    TripResponse,
)
from loadboard.domain.entities import Actor
from loadboard.domain.enums import RequestDirection, RequestStatus
from loadboard.services.requests import RequestWorkflowService

router = APIRouter(tags=["requests"])

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


async def _create(
    direction: RequestDirection,
    body: MatchRequestCreate,
    actor: Actor,
    db: AsyncSession,
    notifier,
):
    return await RequestWorkflowService(db, notifier).create_request(
        direction,
        body.load_id,
        body.truck_id,
        actor,
        notes=body.notes,
        expires_in_hours=body.expires_in_hours,
    )


@router.post(
    "/load-requests",
    status_code=201,
    response_model=MatchRequestResponse,
    summary="Request a load for one of your trucks",
    responses=_ERRORS,
)
async def create_load_request(
    body: MatchRequestCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    return await _create(RequestDirection.LOAD_REQUEST, body, actor, db, notifier)


@router.post(
    "/truck-requests",
    status_code=201,
    response_model=MatchRequestResponse,
    summary="Request a posted truck for one of your loads",
    responses=_ERRORS,
)
async def create_truck_request(
    body: MatchRequestCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    return await _create(RequestDirection.TRUCK_REQUEST, body, actor, db, notifier)


@router.get(
    "/requests",
    response_model=list[MatchRequestResponse],
    summary="List requests involving your organization",
)
async def list_requests(
    direction: Optional[RequestDirection] = None,
    status: Optional[RequestStatus] = None,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RequestWorkflowService(db).list_requests(actor, direction, status)


@router.get(
    "/requests/{request_id}",
    response_model=MatchRequestResponse,
    summary="Get a request",
    responses=_ERRORS,
)
async def get_request(
    request_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    return await RequestWorkflowService(db).get_request(request_id, actor)


@router.post(
    "/requests/{request_id}/respond",
    response_model=RespondResponse,
    summary="Approve or reject a request",
    description=(
        "Approval assigns the load and creates the trip in one transaction. "
        "Repeating the response that already took effect returns the "
        "current state with ``idempotent`` set."
    ),
    responses=_ERRORS,
)
async def respond_to_request(
    request_id: int,
    body: RespondRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    result = await RequestWorkflowService(db, notifier).respond_to_request(
        request_id, body.action, actor, body.response_notes
    )
    return RespondResponse(
        request=MatchRequestResponse.model_validate(result.request),
        trip=TripResponse.model_validate(result.trip) if result.trip else None,
        load=LoadResponse.model_validate(result.load) if result.load else None,
        idempotent=result.idempotent,
    )


@router.post(
    "/requests/{request_id}/cancel",
    response_model=MatchRequestResponse,
    summary="Withdraw your pending request",
    responses=_ERRORS,
)
async def cancel_request(
    request_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    return await RequestWorkflowService(db, notifier).cancel_request(request_id, actor)
