"""
Domain entities.

These dataclasses mirror the persisted shapes closely enough that the
state machines in ``lifecycle`` can operate on either an entity or the
matching ORM row; only attribute names matter.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .enums import (
    LoadStatus,
    PostingStatus,
    RequestDirection,
    RequestStatus,
    Role,
    TripStatus,
    UserStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of an operation."""

    user_id: int
    role: Role
    organization_id: Optional[int] = None
    status: UserStatus = UserStatus.ACTIVE


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Load:
    id: Optional[int] = None
    shipper_id: int = 0
    status: LoadStatus = LoadStatus.DRAFT
    assigned_truck_id: Optional[int] = None
    posted_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    distance_km: Optional[float] = None
    pod_submitted: bool = False
    pod_submitted_at: Optional[datetime] = None
    pod_verified: bool = False
    pod_verified_at: Optional[datetime] = None


@dataclass
class Trip:
    id: Optional[int] = None
    load_id: int = 0
    truck_id: int = 0
    carrier_id: int = 0
    shipper_id: int = 0
    status: TripStatus = TripStatus.ASSIGNED
    started_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    receiver_name: Optional[str] = None
    receiver_phone: Optional[str] = None
    delivery_notes: Optional[str] = None


@dataclass
class MatchRequest:
    id: Optional[int] = None
    direction: RequestDirection = RequestDirection.LOAD_REQUEST
    load_id: int = 0
    truck_id: int = 0
    shipper_id: int = 0
    carrier_id: int = 0
    requested_by_id: int = 0
    status: RequestStatus = RequestStatus.PENDING
    expires_at: Optional[datetime] = None
    response_notes: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return is_request_expired(self, now)


def is_request_expired(request, now: Optional[datetime] = None) -> bool:
    """Expiry is a pure function of ``expires_at`` against the clock."""
    if request.expires_at is None:
        return False
    return (now or utcnow()) > as_utc(request.expires_at)


def effective_request_status(request, now: Optional[datetime] = None) -> RequestStatus:
    """The status a reader should see: stale PENDING rows read as EXPIRED."""
    status = RequestStatus(request.status)
    if status == RequestStatus.PENDING and is_request_expired(request, now):
        return RequestStatus.EXPIRED
    return status


def is_posting_lapsed(posting, now: Optional[datetime] = None) -> bool:
    """A posting stops advertising its truck once ``available_to`` has passed."""
    if posting.available_to is None:
        return False
    return (now or utcnow()) > as_utc(posting.available_to)


def effective_posting_status(posting, now: Optional[datetime] = None) -> PostingStatus:
    status = PostingStatus(posting.status)
    if status == PostingStatus.ACTIVE and is_posting_lapsed(posting, now):
        return PostingStatus.EXPIRED
    return status
