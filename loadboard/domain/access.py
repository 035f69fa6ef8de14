"""
Access Control Gate
===================

Two independent questions are answered here:

1. **Capability** -- does the caller's *role* carry a permission?  A static
   ``Role -> frozenset[Permission]`` table, checked by set membership.
2. **Ownership** -- does the caller's *organization* own the resource?
   ``get_access_roles`` folds role + organization + the resource's owner
   ids into one ``AccessRoles`` verdict that every entry point reuses.

Mutating operations must pass both.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from .entities import Actor
from .enums import Role, UserStatus
from .errors import Forbidden


class Permission(str, enum.Enum):
    VIEW_LOADS = "view_loads"
    VIEW_ALL_LOADS = "view_all_loads"
    CREATE_LOAD = "create_load"
    POST_LOADS = "post_loads"
    EDIT_LOADS = "edit_loads"
    DELETE_LOADS = "delete_loads"
    VIEW_TRUCKS = "view_trucks"  # own fleet inventory
    VIEW_POSTED_TRUCKS = "view_posted_trucks"
    POST_TRUCKS = "post_trucks"
    APPROVE_TRUCKS = "approve_trucks"
    REQUEST_LOADS = "request_loads"
    REQUEST_TRUCKS = "request_trucks"
    RESPOND_LOAD_REQUESTS = "respond_load_requests"
    RESPOND_TRUCK_REQUESTS = "respond_truck_requests"
    UPDATE_TRIP_STATUS = "update_trip_status"
    CANCEL_TRIP = "cancel_trip"
    UPLOAD_POD = "upload_pod"
    VERIFY_POD = "verify_pod"
    PROPOSE_MATCH = "propose_match"
    GLOBAL_OVERRIDE = "global_override"


# Foundation rule tags carried on Forbidden errors
RULE_SHIPPER_DEMAND_FOCUS = "SHIPPER_DEMAND_FOCUS"
RULE_CARRIER_FINAL_AUTHORITY = "CARRIER_FINAL_AUTHORITY"
RULE_CARRIER_OWNS_TRUCKS = "CARRIER_OWNS_TRUCKS"
RULE_ONE_ACTIVE_POST_PER_TRUCK = "ONE_ACTIVE_POST_PER_TRUCK"


_SHIPPER = frozenset(
    {
        Permission.VIEW_LOADS,
        Permission.CREATE_LOAD,
        Permission.POST_LOADS,
        Permission.EDIT_LOADS,
        Permission.DELETE_LOADS,
        Permission.VIEW_POSTED_TRUCKS,
        Permission.REQUEST_TRUCKS,
        Permission.RESPOND_LOAD_REQUESTS,
        Permission.CANCEL_TRIP,
        Permission.VERIFY_POD,
    }
)

_CARRIER = frozenset(
    {
        Permission.VIEW_LOADS,
        Permission.VIEW_TRUCKS,
        Permission.POST_TRUCKS,
        Permission.REQUEST_LOADS,
        Permission.RESPOND_TRUCK_REQUESTS,
        Permission.UPDATE_TRIP_STATUS,
        Permission.CANCEL_TRIP,
        Permission.UPLOAD_POD,
    }
)

_DISPATCHER = frozenset(
    {
        Permission.VIEW_LOADS,
        Permission.VIEW_ALL_LOADS,
        Permission.VIEW_POSTED_TRUCKS,
        Permission.PROPOSE_MATCH,
    }
)

_ADMIN = frozenset(
    {
        Permission.VIEW_LOADS,
        Permission.VIEW_ALL_LOADS,
        Permission.EDIT_LOADS,
        Permission.VIEW_TRUCKS,
        Permission.VIEW_POSTED_TRUCKS,
        Permission.APPROVE_TRUCKS,
        Permission.PROPOSE_MATCH,
    }
)

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.SHIPPER: _SHIPPER,
    Role.CARRIER: _CARRIER,
    Role.DISPATCHER: _DISPATCHER,
    Role.ADMIN: _ADMIN,
    Role.SUPER_ADMIN: _ADMIN | {Permission.GLOBAL_OVERRIDE},
}


@dataclass(frozen=True)
class AccessRoles:
    is_shipper: bool
    is_carrier: bool
    is_dispatcher: bool
    is_admin: bool
    is_super_admin: bool

    @property
    def has_access(self) -> bool:
        return self.is_shipper or self.is_carrier or self.is_dispatcher or self.is_admin

    @property
    def can_view(self) -> bool:
        return self.has_access

    @property
    def can_modify(self) -> bool:
        return self.is_shipper or self.is_carrier or self.is_admin


def get_access_roles(
    actor: Actor,
    shipper_org_id: Optional[int] = None,
    carrier_org_id: Optional[int] = None,
) -> AccessRoles:
    """Resolve role + ownership into the caller's access verdict.

    ``is_shipper`` / ``is_carrier`` require the matching role *and* that the
    caller's organization is the resource's owner on that side.
    """
    org = actor.organization_id
    is_super_admin = actor.role == Role.SUPER_ADMIN
    return AccessRoles(
        is_shipper=(
            actor.role == Role.SHIPPER
            and org is not None
            and org == shipper_org_id
        ),
        is_carrier=(
            actor.role == Role.CARRIER
            and org is not None
            and org == carrier_org_id
        ),
        is_dispatcher=actor.role == Role.DISPATCHER,
        is_admin=actor.role == Role.ADMIN or is_super_admin,
        is_super_admin=is_super_admin,
    )


def has_permission(actor: Actor, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS.get(actor.role, frozenset())


def require_permission(actor: Actor, permission: Permission) -> None:
    if not has_permission(actor, permission):
        raise Forbidden(
            f"Role {actor.role.value} lacks permission {permission.value}"
        )


def require_active(actor: Actor) -> None:
    if actor.status != UserStatus.ACTIVE:
        raise Forbidden(
            f"Account status {actor.status.value} cannot perform this action"
        )


def can_approve_requests(actor: Actor, owner_org_id: Optional[int]) -> bool:
    """Only members of the organization owning the resource may respond."""
    return actor.organization_id is not None and actor.organization_id == owner_org_id


def can_request_truck(actor: Actor, load_shipper_org_id: Optional[int]) -> bool:
    return (
        actor.role == Role.SHIPPER
        and actor.organization_id is not None
        and actor.organization_id == load_shipper_org_id
    )


def assert_can_browse_fleet(actor: Actor) -> None:
    """Shippers see truck *postings*, never the raw fleet."""
    if actor.role == Role.SHIPPER:
        raise Forbidden(
            "Shippers can browse truck postings but not carrier fleets",
            rule=RULE_SHIPPER_DEMAND_FOCUS,
        )
    require_permission(actor, Permission.VIEW_TRUCKS)
