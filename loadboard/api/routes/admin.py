"""
Admin / observability endpoints
===============================

GET /api/v1/admin/loads/{load_id}/events -- audit trail of one load
GET /api/v1/admin/health                 -- simple health check
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loadboard.api.dependencies import get_actor, get_db
from loadboard.api.schemas import ErrorResponse, HealthResponse, LoadEventResponse
from loadboard.domain.access import Permission, require_permission
from loadboard.domain.entities import Actor
from loadboard.domain.errors import NotFound
from loadboard.infrastructure.repositories import LoadEventRepository, LoadRepository

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/loads/{load_id}/events",
    response_model=list[LoadEventResponse],
    summary="List the audit trail of a load",
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_load_events(
    load_id: int,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    require_permission(actor, Permission.VIEW_ALL_LOADS)
    if await LoadRepository(db).get_by_id(load_id) is None:
        raise NotFound("Load not found")
    return await LoadEventRepository(db).list_for_load(load_id)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
