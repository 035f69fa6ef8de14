"""
Load and Trip state machines.

Patterns used
-------------
- **State Pattern** over plain transition tables (``LOAD_TRANSITIONS``,
  ``TRIP_TRANSITIONS``): every status change goes through a ``_check_edge``
  call that names both endpoints on failure.
- Functions take any object exposing the entity attributes, so the same
  rules run against the dataclasses in ``entities`` and the ORM rows.

Ownership of edges
~~~~~~~~~~~~~~~~~~
A Load's owner drives DRAFT / POSTED / UNPOSTED / CANCELLED directly.
ASSIGNED comes from request approval, and everything after it mirrors the
Trip (``sync_load_with_trip``).  The Trip itself is advanced only by the
carrier that owns it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from .access import RULE_CARRIER_FINAL_AUTHORITY, get_access_roles
from .entities import Actor, utcnow
from .enums import (
    LOAD_DIRECT_TARGETS,
    LOAD_EDITABLE_STATUSES,
    LOAD_TRANSITIONS,
    TRIP_TO_LOAD_STATUS,
    TRIP_TRANSITIONS,
    LoadStatus,
    TripStatus,
)
from .errors import Forbidden, InvalidTransition, PreconditionFailed

POD_NOT_UPLOADED = "POD must be uploaded before completing the trip"
POD_NOT_VERIFIED = "POD must be verified by shipper before completing the trip"


def _check_edge(table, current, target) -> None:
    allowed = table.get(current, set())
    if target not in allowed:
        raise InvalidTransition(current, target, allowed=allowed)


# ── Load ──────────────────────────────────────────────────────────────


def is_valid_load_transition(current: LoadStatus, target: LoadStatus) -> bool:
    return target in LOAD_TRANSITIONS.get(current, set())


def apply_load_transition(
    load, target: LoadStatus, now: Optional[datetime] = None
) -> None:
    """Validate and apply an edge with no actor gate (internal callers)."""
    current = LoadStatus(load.status)
    target = LoadStatus(target)
    _check_edge(LOAD_TRANSITIONS, current, target)

    now = now or utcnow()
    if target == LoadStatus.POSTED:
        load.posted_at = now
    elif target == LoadStatus.ASSIGNED:
        load.assigned_at = now
    load.status = target


def request_load_transition(
    load, target: LoadStatus, actor: Actor, now: Optional[datetime] = None
) -> None:
    """Direct status change requested by a caller.

    Raises ``InvalidTransition`` for an edge outside the table, then
    ``Forbidden`` when the caller may not originate that edge.
    """
    current = LoadStatus(load.status)
    target = LoadStatus(target)
    _check_edge(LOAD_TRANSITIONS, current, target)

    roles = get_access_roles(actor, shipper_org_id=load.shipper_id)
    if not (roles.is_shipper or roles.is_admin):
        raise Forbidden("You do not have permission to update this load")

    if current not in LOAD_EDITABLE_STATUSES or target not in LOAD_DIRECT_TARGETS:
        raise Forbidden(
            f"Load status {target.value} is set by trip updates, "
            "not by a direct status change"
        )

    apply_load_transition(load, target, now)


def ensure_load_editable(load) -> None:
    status = LoadStatus(load.status)
    if status not in LOAD_EDITABLE_STATUSES:
        raise PreconditionFailed(
            f"Cannot modify load with status {status.value}"
        )


# ── Trip ──────────────────────────────────────────────────────────────


def authorize_trip_update(trip, actor: Actor) -> None:
    roles = get_access_roles(actor, carrier_org_id=trip.carrier_id)
    if not roles.is_carrier:
        raise Forbidden(
            "Only the carrier can update trip status",
            rule=RULE_CARRIER_FINAL_AUTHORITY,
        )


def authorize_trip_cancel(trip, actor: Actor) -> None:
    roles = get_access_roles(
        actor, shipper_org_id=trip.shipper_id, carrier_org_id=trip.carrier_id
    )
    if not (roles.is_shipper or roles.is_carrier):
        raise Forbidden("Only the shipper or carrier on this trip can cancel it")


def validate_trip_transition(trip, target: TripStatus, load) -> None:
    """Edge check first, then the POD gate (uploaded before verified)."""
    current = TripStatus(trip.status)
    target = TripStatus(target)
    _check_edge(TRIP_TRANSITIONS, current, target)

    if target == TripStatus.COMPLETED:
        if not load.pod_submitted:
            raise PreconditionFailed(POD_NOT_UPLOADED, details={"requires_pod": True})
        if not load.pod_verified:
            raise PreconditionFailed(
                POD_NOT_VERIFIED, details={"awaiting_verification": True}
            )


def apply_trip_transition(
    trip,
    target: TripStatus,
    now: Optional[datetime] = None,
    *,
    receiver_name: Optional[str] = None,
    receiver_phone: Optional[str] = None,
    delivery_notes: Optional[str] = None,
) -> None:
    target = TripStatus(target)
    now = now or utcnow()

    if target == TripStatus.PICKUP_PENDING:
        trip.started_at = now
    elif target == TripStatus.IN_TRANSIT:
        trip.picked_up_at = now
    elif target == TripStatus.DELIVERED:
        trip.delivered_at = now
        # audit only, never part of validity
        if receiver_name:
            trip.receiver_name = receiver_name
        if receiver_phone:
            trip.receiver_phone = receiver_phone
        if delivery_notes:
            trip.delivery_notes = delivery_notes
    elif target == TripStatus.COMPLETED:
        trip.completed_at = now
    elif target == TripStatus.CANCELLED:
        trip.cancelled_at = now

    trip.status = target


def sync_load_with_trip(load, trip_status: TripStatus, now=None) -> bool:
    """Move the load to the status mirroring *trip_status*.

    Raises ``InvalidTransition`` when the load cannot follow, which aborts
    the enclosing transaction.
    """
    mapped = TRIP_TO_LOAD_STATUS[TripStatus(trip_status)]
    if LoadStatus(load.status) != mapped:
        apply_load_transition(load, mapped, now)
    return True
