"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from loadboard.domain.enums import (
    LoadStatus,
    PostingStatus,
    RequestDirection,
    RequestStatus,
    ResponseAction,
    TripStatus,
    TruckApprovalStatus,
)


# ── Requests ──────────────────────────────────────────────────────────


class LoadCreateRequest(BaseModel):
    pickup_city: str = Field(..., min_length=1, max_length=120)
    delivery_city: str = Field(..., min_length=1, max_length=120)
    cargo_description: Optional[str] = None
    weight_kg: Optional[float] = Field(None, gt=0)
    distance_km: Optional[float] = Field(None, gt=0)
    post: bool = Field(False, description="Publish immediately instead of saving a draft.")


class LoadEditRequest(BaseModel):
    pickup_city: Optional[str] = Field(None, min_length=1, max_length=120)
    delivery_city: Optional[str] = Field(None, min_length=1, max_length=120)
    cargo_description: Optional[str] = None
    weight_kg: Optional[float] = Field(None, gt=0)
    distance_km: Optional[float] = Field(None, gt=0)


class LoadStatusUpdate(BaseModel):
    status: LoadStatus


class PodSubmitRequest(BaseModel):
    pod_url: str = Field(..., min_length=1, max_length=500)


class MatchRequestCreate(BaseModel):
    load_id: int
    truck_id: int
    notes: Optional[str] = Field(None, max_length=500)
    expires_in_hours: Optional[int] = Field(
        None,
        ge=1,
        le=72,
        description="Hours until the request lapses (default 24).",
    )


class RespondRequest(BaseModel):
    action: ResponseAction
    response_notes: Optional[str] = Field(None, max_length=500)


class TripStatusUpdate(BaseModel):
    status: TripStatus
    receiver_name: Optional[str] = Field(None, max_length=100)
    receiver_phone: Optional[str] = Field(None, max_length=20)
    delivery_notes: Optional[str] = Field(None, max_length=500)


class TripCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PostingCreateRequest(BaseModel):
    truck_id: int
    origin_city: str = Field(..., min_length=1, max_length=120)
    destination_city: Optional[str] = Field(None, max_length=120)
    available_from: datetime
    available_to: Optional[datetime] = None


class TruckCreateRequest(BaseModel):
    license_plate: str = Field(..., min_length=2, max_length=32)
    truck_type: str = Field("FLATBED", max_length=32)
    capacity_kg: Optional[float] = Field(None, gt=0)


class TruckReviewRequest(BaseModel):
    approve: bool


# ── Responses ─────────────────────────────────────────────────────────


class LoadResponse(BaseModel):
    id: int
    shipper_id: int
    status: LoadStatus
    pickup_city: str
    delivery_city: str
    cargo_description: Optional[str] = None
    weight_kg: Optional[float] = None
    distance_km: Optional[float] = None
    assigned_truck_id: Optional[int] = None
    posted_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    pod_url: Optional[str] = None
    pod_submitted: bool = False
    pod_verified: bool = False

    model_config = {"from_attributes": True}


class TripResponse(BaseModel):
    id: int
    load_id: int
    truck_id: int
    carrier_id: int
    shipper_id: int
    status: TripStatus
    started_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    receiver_name: Optional[str] = None
    receiver_phone: Optional[str] = None
    cancel_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class MatchRequestResponse(BaseModel):
    id: int
    direction: RequestDirection
    load_id: int
    truck_id: int
    shipper_id: int
    carrier_id: int
    status: RequestStatus
    effective_status: RequestStatus
    notes: Optional[str] = None
    response_notes: Optional[str] = None
    expires_at: datetime
    responded_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RespondResponse(BaseModel):
    request: MatchRequestResponse
    trip: Optional[TripResponse] = None
    load: Optional[LoadResponse] = None
    idempotent: bool = False


class FeesResponse(BaseModel):
    shipper_fee: float
    carrier_fee: float
    total: float

    model_config = {"from_attributes": True}


class SettlementResponse(BaseModel):
    outcome: str
    fees: FeesResponse

    @classmethod
    def from_result(cls, result) -> Optional["SettlementResponse"]:
        if result is None:
            return None
        return cls(
            outcome=result.outcome.value,
            fees=FeesResponse.model_validate(result.fees),
        )


class TripUpdateResponse(BaseModel):
    trip: TripResponse
    load: LoadResponse
    load_synced: bool
    settlement: Optional[SettlementResponse] = None


class PodVerifyResponse(BaseModel):
    load: LoadResponse
    trip: TripResponse
    fees: FeesResponse
    trip_completed: bool
    settlement: Optional[SettlementResponse] = None


class TruckResponse(BaseModel):
    id: int
    carrier_id: int
    license_plate: str
    truck_type: str
    capacity_kg: Optional[float] = None
    approval_status: TruckApprovalStatus

    model_config = {"from_attributes": True}


class PostingResponse(BaseModel):
    id: int
    truck_id: int
    carrier_id: int
    origin_city: str
    destination_city: Optional[str] = None
    available_from: datetime
    available_to: Optional[datetime] = None
    status: PostingStatus
    effective_status: PostingStatus

    model_config = {"from_attributes": True}


class LoadEventResponse(BaseModel):
    id: int
    load_id: int
    event_type: str
    description: str
    user_id: Optional[int] = None
    payload: Optional[dict] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    rule: Optional[str] = None
    details: Optional[dict] = None
