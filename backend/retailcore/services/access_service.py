# Overview: Access gate (role capabilities + location assignment) and security audit log.

"""
Access Gate

WHY: Every mutating checkout/inventory/payment operation is checked before
any write happens. Two questions are asked:

1. Does the actor's role grant the capability? (static Role -> Capability map)
2. For location-scoped operations: does the role grant blanket access
   (access_all_locations), or is the actor explicitly assigned to the location?

authorize() itself has no side effects. Denials are written to the
security event log at the HTTP boundary (decorators.error_response).

MULTI-TENANT: an actor whose tenant differs from the resolved scope is
Forbidden, and a location outside the scope is LocationNotFound, exactly
as if it did not exist.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import (
    Forbidden,
    LocationAccessDenied,
    LocationNotFound,
    Unauthenticated,
    ValidationError,
)
from ..extensions import db
from ..models import Location, SecurityEvent, User, UserLocation
from ..permissions import Capability, Role, parse_role, role_grants
from ..time_utils import utcnow
from .concurrency import atomic
from .tenant_service import TenantScope


@dataclass(frozen=True)
class Actor:
    """Authenticated identity as consumed by the gate: id, tenant, role."""
    user_id: int
    tenant_id: int
    role: Role

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, tenant_id=user.tenant_id, role=parse_role(user.role))


def assigned_location_ids(scope: TenantScope, user_id: int) -> set[int]:
    rows = scope.query(UserLocation).filter(UserLocation.user_id == user_id).all()
    return {row.location_id for row in rows}


def authorize(
    scope: TenantScope,
    actor: Actor | None,
    capability: Capability,
    location_id: int | None = None,
) -> Location | None:
    """
    Gate check. Returns the Location when location_id is given.

    Raises:
        Unauthenticated: no actor
        Forbidden: actor belongs to another tenant, or role lacks capability
        LocationNotFound: location_id is not a location of this tenant
        LocationAccessDenied: role needs an assignment and the actor has none
    """
    if actor is None:
        raise Unauthenticated("Authentication required")

    if actor.tenant_id != scope.tenant_id:
        raise Forbidden("Actor does not belong to this tenant", details={"reason": "tenant_mismatch"})

    if not role_grants(actor.role, capability):
        raise Forbidden(
            f"Permission denied: {capability.value}",
            details={"required": capability.value, "role": actor.role.value},
        )

    if location_id is None:
        return None

    location = scope.get(Location, location_id)
    if location is None:
        raise LocationNotFound("Location not found")

    if role_grants(actor.role, Capability.ACCESS_ALL_LOCATIONS):
        return location

    if role_grants(actor.role, Capability.ACCESS_ASSIGNED_LOCATIONS):
        if location.id in assigned_location_ids(scope, actor.user_id):
            return location

    raise LocationAccessDenied(
        "Access denied to this location",
        details={"location_id": location.id},
    )


# =============================================================================
# Location assignments
# =============================================================================

def assign_location(
    scope: TenantScope,
    user_id: int,
    location_id: int,
    *,
    role_at_location: str = "cashier",
    is_primary: bool = False,
) -> UserLocation:
    """
    Assign a user to a location (idempotent for an existing pair).

    PRIMARY: the first assignment becomes primary; assigning with
    is_primary=True demotes the previous primary in the same transaction.
    """
    try:
        role_value = parse_role(role_at_location).value
    except ValueError:
        raise ValidationError("Invalid role_at_location", details={"role_at_location": role_at_location})

    def _op():
        user = scope.get(User, user_id, lock=True)
        if user is None:
            raise ValidationError("User not found", details={"user_id": user_id})
        location = scope.get(Location, location_id)
        if location is None:
            raise LocationNotFound("Location not found")

        rows = scope.query(UserLocation).filter(UserLocation.user_id == user.id).all()
        existing = next((r for r in rows if r.location_id == location.id), None)
        current_primary = next((r for r in rows if r.is_primary), None)

        make_primary = is_primary or current_primary is None
        if make_primary and current_primary is not None and current_primary is not existing:
            current_primary.is_primary = False
            # Clear before setting the new primary; the partial unique index checks per statement.
            db.session.flush()

        if existing is None:
            existing = UserLocation(
                tenant_id=scope.tenant_id,
                user_id=user.id,
                location_id=location.id,
                role_at_location=role_value,
                is_primary=make_primary,
                assigned_at=utcnow(),
            )
            db.session.add(existing)
        else:
            existing.role_at_location = role_value
            if make_primary:
                existing.is_primary = True
        db.session.flush()
        return existing

    return atomic(_op, context="assign_location")


def unassign_location(scope: TenantScope, user_id: int, location_id: int) -> bool:
    """
    Remove an assignment. Removing the primary promotes the oldest remaining
    assignment. Returns False if there was no such assignment.
    """
    def _op():
        rows = (
            scope.query(UserLocation)
            .filter(UserLocation.user_id == user_id)
            .order_by(UserLocation.assigned_at.asc(), UserLocation.id.asc())
            .all()
        )
        target = next((r for r in rows if r.location_id == location_id), None)
        if target is None:
            return False

        was_primary = target.is_primary
        db.session.delete(target)
        db.session.flush()

        remaining = [r for r in rows if r is not target]
        if was_primary and remaining:
            remaining[0].is_primary = True
            db.session.flush()
        return True

    return atomic(_op, context="unassign_location")


def primary_location_id(scope: TenantScope, user_id: int) -> int | None:
    row = scope.query(UserLocation).filter(
        UserLocation.user_id == user_id,
        UserLocation.is_primary.is_(True),
    ).first()
    return row.location_id if row else None


# =============================================================================
# Security audit log
# =============================================================================

def log_security_event(
    scope: TenantScope | None,
    *,
    event_type: str,
    success: bool,
    user_id: int | None = None,
    location_id: int | None = None,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
) -> SecurityEvent:
    """
    Append a security event with tenant context and commit it.

    Call only outside an open write transaction (before or after the unit
    of work), since this commits the session.

    event_type examples:
    - PERMISSION_DENIED
    - LOCATION_ACCESS_DENIED
    - CROSS_TENANT_ACCESS_DENIED
    - UNAUTHENTICATED
    """
    event = SecurityEvent(
        tenant_id=scope.tenant_id if scope else None,
        user_id=user_id,
        location_id=location_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.commit()
    return event
