"""Domain enumerations and state-transition rules."""

import enum


class Role(str, enum.Enum):
    SHIPPER = "SHIPPER"
    CARRIER = "CARRIER"
    DISPATCHER = "DISPATCHER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    SUSPENDED = "SUSPENDED"
    REJECTED = "REJECTED"


class OrganizationKind(str, enum.Enum):
    SHIPPER = "SHIPPER"
    CARRIER = "CARRIER"


class TruckApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PostingStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    UNPOSTED = "UNPOSTED"
    EXPIRED = "EXPIRED"


class LoadStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    UNPOSTED = "UNPOSTED"
    ASSIGNED = "ASSIGNED"
    PICKUP_PENDING = "PICKUP_PENDING"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXCEPTION = "EXCEPTION"


class TripStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    PICKUP_PENDING = "PICKUP_PENDING"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXCEPTION = "EXCEPTION"


class RequestDirection(str, enum.Enum):
    LOAD_REQUEST = "LOAD_REQUEST"  # carrier asks for a load
    TRUCK_REQUEST = "TRUCK_REQUEST"  # shipper asks for a truck


class RequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class ResponseAction(str, enum.Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


# State machine: maps current status -> set of valid next statuses
LOAD_TRANSITIONS: dict[LoadStatus, set[LoadStatus]] = {
    LoadStatus.DRAFT: {LoadStatus.POSTED, LoadStatus.CANCELLED},
    LoadStatus.POSTED: {
        LoadStatus.UNPOSTED,
        LoadStatus.ASSIGNED,
        LoadStatus.CANCELLED,
    },
    LoadStatus.UNPOSTED: {LoadStatus.POSTED, LoadStatus.CANCELLED},
    LoadStatus.ASSIGNED: {
        LoadStatus.PICKUP_PENDING,
        LoadStatus.IN_TRANSIT,
        LoadStatus.CANCELLED,
    },
    LoadStatus.PICKUP_PENDING: {LoadStatus.IN_TRANSIT, LoadStatus.CANCELLED},
    LoadStatus.IN_TRANSIT: {LoadStatus.DELIVERED, LoadStatus.EXCEPTION},
    LoadStatus.DELIVERED: {LoadStatus.COMPLETED},
    LoadStatus.COMPLETED: set(),
    LoadStatus.CANCELLED: set(),
    LoadStatus.EXCEPTION: set(),
}

# Statuses a load may be edited, deleted or moved by its owner in
LOAD_EDITABLE_STATUSES: frozenset[LoadStatus] = frozenset(
    {LoadStatus.DRAFT, LoadStatus.POSTED, LoadStatus.UNPOSTED}
)

# Targets an owner may request directly; the rest follow the trip
LOAD_DIRECT_TARGETS: frozenset[LoadStatus] = frozenset(
    {
        LoadStatus.DRAFT,
        LoadStatus.POSTED,
        LoadStatus.UNPOSTED,
        LoadStatus.CANCELLED,
    }
)

TRIP_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.ASSIGNED: {TripStatus.PICKUP_PENDING, TripStatus.CANCELLED},
    TripStatus.PICKUP_PENDING: {TripStatus.IN_TRANSIT, TripStatus.CANCELLED},
    # cargo already moving resolves via DELIVERED or EXCEPTION, never CANCELLED
    TripStatus.IN_TRANSIT: {TripStatus.DELIVERED, TripStatus.EXCEPTION},
    TripStatus.DELIVERED: {TripStatus.COMPLETED},
    TripStatus.COMPLETED: set(),
    TripStatus.CANCELLED: set(),
    TripStatus.EXCEPTION: set(),
}

TRIP_TO_LOAD_STATUS: dict[TripStatus, LoadStatus] = {
    TripStatus.ASSIGNED: LoadStatus.ASSIGNED,
    TripStatus.PICKUP_PENDING: LoadStatus.PICKUP_PENDING,
    TripStatus.IN_TRANSIT: LoadStatus.IN_TRANSIT,
    TripStatus.DELIVERED: LoadStatus.DELIVERED,
    TripStatus.COMPLETED: LoadStatus.COMPLETED,
    TripStatus.CANCELLED: LoadStatus.CANCELLED,
    TripStatus.EXCEPTION: LoadStatus.EXCEPTION,
}

# Loads in these statuses keep their truck busy
ACTIVE_LOAD_STATUSES: frozenset[LoadStatus] = frozenset(
    {
        LoadStatus.ASSIGNED,
        LoadStatus.PICKUP_PENDING,
        LoadStatus.IN_TRANSIT,
    }
)
