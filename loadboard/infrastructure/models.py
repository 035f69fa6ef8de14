"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``organizations``      -- shipper and carrier companies
* ``users``              -- platform accounts, one organization each
* ``trucks``             -- carrier-owned vehicles with an approval status
* ``truck_postings``     -- a truck's advertised availability
* ``loads``              -- shipper-owned shipments
* ``trips``              -- execution of one load by one truck
* ``match_requests``     -- load requests and truck requests (one table)
* ``load_events``        -- append-only audit trail per load
* ``financial_accounts`` -- organization wallets
* ``journal_entries``    -- service fee deductions, one per trip and party
* ``notifications``      -- in-app notifications written by the worker

Uniqueness guards
-----------------
* **Partial unique** on ``truck_postings(truck_id) WHERE status = 'ACTIVE'``
  -- at most one active posting per truck.
* **Partial unique** on ``match_requests(load_id, truck_id) WHERE
  status = 'PENDING'`` -- at most one pending request per pair, whichever
  side proposed it.
* **Unique** on ``trips.load_id`` and on
  ``journal_entries(trip_id, organization_id, kind)`` -- one trip per load,
  one fee deduction per trip and party.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)

from .database import Base
from loadboard.domain.entities import (
    effective_posting_status,
    effective_request_status,
    utcnow,
)
from loadboard.domain.enums import (
    LoadStatus,
    OrganizationKind,
    PostingStatus,
    RequestDirection,
    RequestStatus,
    Role,
    TripStatus,
    TruckApprovalStatus,
    UserStatus,
)


class OrganizationModel(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    kind = Column(Enum(OrganizationKind), nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(Enum(Role), nullable=False)
    status = Column(
        Enum(UserStatus), default=UserStatus.PENDING_VERIFICATION, nullable=False
    )
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    api_token = Column(String(128), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_users_organization", "organization_id"),)


class TruckModel(Base):
    __tablename__ = "trucks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    carrier_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    license_plate = Column(String(32), unique=True, nullable=False)
    truck_type = Column(String(32), default="FLATBED", nullable=False)
    capacity_kg = Column(Float, nullable=True)
    approval_status = Column(
        Enum(TruckApprovalStatus),
        default=TruckApprovalStatus.PENDING,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_trucks_carrier", "carrier_id"),
        Index("idx_trucks_approval", "approval_status"),
    )


class TruckPostingModel(Base):
    __tablename__ = "truck_postings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    truck_id = Column(Integer, ForeignKey("trucks.id"), nullable=False)
    carrier_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    origin_city = Column(String(120), nullable=False)
    destination_city = Column(String(120), nullable=True)
    available_from = Column(DateTime(timezone=True), nullable=False)
    available_to = Column(DateTime(timezone=True), nullable=True)
    status = Column(Enum(PostingStatus), default=PostingStatus.ACTIVE, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index(
            "uq_truck_postings_one_active",
            "truck_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index("idx_truck_postings_status", "status"),
    )

    @property
    def effective_status(self) -> PostingStatus:
        return effective_posting_status(self)


class LoadModel(Base):
    __tablename__ = "loads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shipper_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(Enum(LoadStatus), default=LoadStatus.DRAFT, nullable=False)

    pickup_city = Column(String(120), nullable=False)
    delivery_city = Column(String(120), nullable=False)
    cargo_description = Column(Text, nullable=True)
    weight_kg = Column(Float, nullable=True)
    distance_km = Column(Float, nullable=True)

    assigned_truck_id = Column(Integer, ForeignKey("trucks.id"), nullable=True)
    posted_at = Column(DateTime(timezone=True), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)

    pod_url = Column(String(500), nullable=True)
    pod_submitted = Column(Boolean, default=False, nullable=False)
    pod_submitted_at = Column(DateTime(timezone=True), nullable=True)
    pod_verified = Column(Boolean, default=False, nullable=False)
    pod_verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_loads_status", "status"),
        Index("idx_loads_shipper", "shipper_id"),
        Index("idx_loads_assigned_truck", "assigned_truck_id"),
    )


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    load_id = Column(Integer, ForeignKey("loads.id"), unique=True, nullable=False)
    truck_id = Column(Integer, ForeignKey("trucks.id"), nullable=False)
    carrier_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    shipper_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    status = Column(Enum(TripStatus), default=TripStatus.ASSIGNED, nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    receiver_name = Column(String(100), nullable=True)
    receiver_phone = Column(String(20), nullable=True)
    delivery_notes = Column(String(500), nullable=True)
    cancel_reason = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_trips_status", "status"),
        Index("idx_trips_carrier", "carrier_id"),
        Index("idx_trips_shipper", "shipper_id"),
    )


class MatchRequestModel(Base):
    __tablename__ = "match_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    direction = Column(Enum(RequestDirection), nullable=False)
    load_id = Column(Integer, ForeignKey("loads.id"), nullable=False)
    truck_id = Column(Integer, ForeignKey("trucks.id"), nullable=False)
    shipper_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    carrier_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    requested_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(Enum(RequestStatus), default=RequestStatus.PENDING, nullable=False)

    notes = Column(String(500), nullable=True)
    response_notes = Column(String(500), nullable=True)
    responded_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index(
            "uq_match_requests_pending_pair",
            "load_id",
            "truck_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index("idx_match_requests_status", "status"),
        Index("idx_match_requests_shipper", "shipper_id"),
        Index("idx_match_requests_carrier", "carrier_id"),
    )

    @property
    def effective_status(self) -> RequestStatus:
        return effective_request_status(self)


class LoadEventModel(Base):
    __tablename__ = "load_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    load_id = Column(Integer, ForeignKey("loads.id"), nullable=False)
    event_type = Column(String(50), nullable=False)
    description = Column(String(500), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_load_events_load", "load_id", "event_type"),)


class FinancialAccountModel(Base):
    __tablename__ = "financial_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id"), unique=True, nullable=False
    )
    balance = Column(Numeric(12, 2), default=0, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class JournalEntryModel(Base):
    __tablename__ = "journal_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    kind = Column(String(40), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "trip_id", "organization_id", "kind", name="uq_journal_trip_party_kind"
        ),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    event = Column(String(60), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(String(1000), nullable=False)
    payload = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_notifications_user", "user_id", "is_read"),)
