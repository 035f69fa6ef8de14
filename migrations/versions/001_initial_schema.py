"""Initial schema: organizations, fleet, loads, trips, requests, ledger.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

ROLE = sa.Enum("SHIPPER", "CARRIER", "DISPATCHER", "ADMIN", "SUPER_ADMIN", name="role")
USER_STATUS = sa.Enum(
    "ACTIVE", "PENDING_VERIFICATION", "SUSPENDED", "REJECTED", name="userstatus"
)
ORG_KIND = sa.Enum("SHIPPER", "CARRIER", name="organizationkind")
TRUCK_APPROVAL = sa.Enum("PENDING", "APPROVED", "REJECTED", name="truckapprovalstatus")
POSTING_STATUS = sa.Enum("ACTIVE", "UNPOSTED", "EXPIRED", name="postingstatus")
LOAD_STATUS = sa.Enum(
    "DRAFT",
    "POSTED",
    "UNPOSTED",
    "ASSIGNED",
    "PICKUP_PENDING",
    "IN_TRANSIT",
    "DELIVERED",
    "COMPLETED",
    "CANCELLED",
    "EXCEPTION",
    name="loadstatus",
)
TRIP_STATUS = sa.Enum(
    "ASSIGNED",
    "PICKUP_PENDING",
    "IN_TRANSIT",
    "DELIVERED",
    "COMPLETED",
    "CANCELLED",
    "EXCEPTION",
    name="tripstatus",
)
DIRECTION = sa.Enum("LOAD_REQUEST", "TRUCK_REQUEST", name="requestdirection")
REQUEST_STATUS = sa.Enum(
    "PENDING", "APPROVED", "REJECTED", "EXPIRED", "CANCELLED", name="requeststatus"
)


def _timestamps(updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())]
    if updated:
        cols.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now())
        )
    return cols


def upgrade() -> None:
    # ── organizations / users ─────────────────────────────────────────
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("kind", ORG_KIND, nullable=False),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("role", ROLE, nullable=False),
        sa.Column("status", USER_STATUS, nullable=False),
        sa.Column(
            "organization_id",
            sa.Integer,
            sa.ForeignKey("organizations.id"),
            nullable=True,
        ),
        sa.Column("api_token", sa.String(128), unique=True, nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("idx_users_organization", "users", ["organization_id"])

    # ── fleet ─────────────────────────────────────────────────────────
    op.create_table(
        "trucks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "carrier_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False
        ),
        sa.Column("license_plate", sa.String(32), unique=True, nullable=False),
        sa.Column("truck_type", sa.String(32), nullable=False),
        sa.Column("capacity_kg", sa.Float, nullable=True),
        sa.Column("approval_status", TRUCK_APPROVAL, nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("idx_trucks_carrier", "trucks", ["carrier_id"])
    op.create_index("idx_trucks_approval", "trucks", ["approval_status"])

    op.create_table(
        "truck_postings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("truck_id", sa.Integer, sa.ForeignKey("trucks.id"), nullable=False),
        sa.Column(
            "carrier_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False
        ),
        sa.Column("origin_city", sa.String(120), nullable=False),
        sa.Column("destination_city", sa.String(120), nullable=True),
        sa.Column("available_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("available_to", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", POSTING_STATUS, nullable=False),
        *_timestamps(),
    )
    # at most one ACTIVE posting per truck
    op.create_index(
        "uq_truck_postings_one_active",
        "truck_postings",
        ["truck_id"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )
    op.create_index("idx_truck_postings_status", "truck_postings", ["status"])

    # ── loads / trips ─────────────────────────────────────────────────
    op.create_table(
        "loads",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "shipper_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False
        ),
        sa.Column(
            "created_by_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("status", LOAD_STATUS, nullable=False),
        sa.Column("pickup_city", sa.String(120), nullable=False),
        sa.Column("delivery_city", sa.String(120), nullable=False),
        sa.Column("cargo_description", sa.Text, nullable=True),
        sa.Column("weight_kg", sa.Float, nullable=True),
        sa.Column("distance_km", sa.Float, nullable=True),
        sa.Column(
            "assigned_truck_id", sa.Integer, sa.ForeignKey("trucks.id"), nullable=True
        ),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pod_url", sa.String(500), nullable=True),
        sa.Column("pod_submitted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("pod_submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pod_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("pod_verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_loads_status", "loads", ["status"])
    op.create_index("idx_loads_shipper", "loads", ["shipper_id"])
    op.create_index("idx_loads_assigned_truck", "loads", ["assigned_truck_id"])

    op.create_table(
        "trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "load_id", sa.Integer, sa.ForeignKey("loads.id"), unique=True, nullable=False
        ),
        sa.Column("truck_id", sa.Integer, sa.ForeignKey("trucks.id"), nullable=False),
        sa.Column(
            "carrier_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False
        ),
        sa.Column(
            "shipper_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False
        ),
        sa.Column("status", TRIP_STATUS, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("receiver_name", sa.String(100), nullable=True),
        sa.Column("receiver_phone", sa.String(20), nullable=True),
        sa.Column("delivery_notes", sa.String(500), nullable=True),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_trips_status", "trips", ["status"])
    op.create_index("idx_trips_carrier", "trips", ["carrier_id"])
    op.create_index("idx_trips_shipper", "trips", ["shipper_id"])

    # ── requests ──────────────────────────────────────────────────────
    op.create_table(
        "match_requests",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("direction", DIRECTION, nullable=False),
        sa.Column("load_id", sa.Integer, sa.ForeignKey("loads.id"), nullable=False),
        sa.Column("truck_id", sa.Integer, sa.ForeignKey("trucks.id"), nullable=False),
        sa.Column(
            "shipper_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False
        ),
        sa.Column(
            "carrier_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False
        ),
        sa.Column(
            "requested_by_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("status", REQUEST_STATUS, nullable=False),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("response_notes", sa.String(500), nullable=True),
        sa.Column(
            "responded_by_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    # one PENDING request per load-truck pair, either direction
    op.create_index(
        "uq_match_requests_pending_pair",
        "match_requests",
        ["load_id", "truck_id"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
    )
    op.create_index("idx_match_requests_status", "match_requests", ["status"])
    op.create_index("idx_match_requests_shipper", "match_requests", ["shipper_id"])
    op.create_index("idx_match_requests_carrier", "match_requests", ["carrier_id"])

    # ── audit / ledger / notifications ────────────────────────────────
    op.create_table(
        "load_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("load_id", sa.Integer, sa.ForeignKey("loads.id"), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("payload", sa.JSON, nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("idx_load_events_load", "load_events", ["load_id", "event_type"])

    op.create_table(
        "financial_accounts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "organization_id",
            sa.Integer,
            sa.ForeignKey("organizations.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )

    op.create_table(
        "journal_entries",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=False),
        sa.Column(
            "organization_id",
            sa.Integer,
            sa.ForeignKey("organizations.id"),
            nullable=False,
        ),
        sa.Column("kind", sa.String(40), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint(
            "trip_id", "organization_id", "kind", name="uq_journal_trip_party_kind"
        ),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("event", sa.String(60), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.String(1000), nullable=False),
        sa.Column("payload", sa.JSON, nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
    )
    op.create_index("idx_notifications_user", "notifications", ["user_id", "is_read"])


def downgrade() -> None:
    for table in (
        "notifications",
        "journal_entries",
        "financial_accounts",
        "load_events",
        "match_requests",
        "trips",
        "loads",
        "truck_postings",
        "trucks",
        "users",
        "organizations",
    ):
        op.drop_table(table)
    for enum in (
        REQUEST_STATUS,
        DIRECTION,
        TRIP_STATUS,
        LOAD_STATUS,
        POSTING_STATUS,
        TRUCK_APPROVAL,
        ORG_KIND,
        USER_STATUS,
        ROLE,
    ):
        enum.drop(op.get_bind(), checkfirst=True)
