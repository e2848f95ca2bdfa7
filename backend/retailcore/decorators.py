# Overview: Request context decorators (tenant, auth, capability) and the shared error response.

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import (
    DomainError,
    Forbidden,
    LocationAccessDenied,
    TenantNotFound,
    Unauthenticated,
)
from .permissions import Capability
from .services import access_service, session_service
from .services.access_service import Actor
from .services.tenant_service import resolve_tenant


TENANT_HEADER = "X-Tenant-ID"

_DENIAL_EVENT_TYPES = {
    Unauthenticated: "UNAUTHENTICATED",
    Forbidden: "PERMISSION_DENIED",
    LocationAccessDenied: "LOCATION_ACCESS_DENIED",
}


def _record_denial(e: DomainError) -> None:
    event_type = _DENIAL_EVENT_TYPES.get(type(e))
    if event_type is None:
        return
    if e.details.get("reason") == "tenant_mismatch":
        event_type = "CROSS_TENANT_ACCESS_DENIED"
    actor = getattr(g, "actor", None)
    access_service.log_security_event(
        getattr(g, "tenant_scope", None),
        event_type=event_type,
        success=False,
        user_id=actor.user_id if actor else None,
        location_id=e.details.get("location_id"),
        resource=request.path,
        action=request.method,
        reason=e.message,
        ip_address=request.remote_addr,
    )


def error_response(e: DomainError):
    """
    JSON body + status for a DomainError.

    Access-gate denials are written to the security event log here, at the
    HTTP boundary, so the gate itself stays free of side effects.
    """
    try:
        _record_denial(e)
    except Exception:
        current_app.logger.exception("Failed to record security event")
    return jsonify(e.to_dict()), e.status_code


def require_tenant(f):
    """
    Resolve the tenant for this request.

    MULTI-TENANT: reads X-Tenant-ID (or ?tenant_id=) and sets g.tenant_scope.
    Missing identifier -> 400, unknown or inactive tenant -> 404.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identifier = request.headers.get(TENANT_HEADER) or request.args.get("tenant_id")
        try:
            g.tenant_scope = resolve_tenant(identifier)
        except DomainError as e:
            return jsonify(e.to_dict()), e.status_code
        return f(*args, **kwargs)

    return decorated_function


def require_auth(f):
    """
    Require a valid Bearer session within the resolved tenant.

    Sets:
    - g.current_user: the authenticated User
    - g.actor: the Actor (id, tenant, role) consumed by the access gate
    - g.session_context: the full SessionContext

    SECURITY: a session issued for another tenant than X-Tenant-ID is a 403
    and is logged as a cross-tenant attempt. Must run after @require_tenant.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return error_response(Unauthenticated("Authentication required"))

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)
        if not context:
            return error_response(Unauthenticated("Invalid or expired token"))

        try:
            actor = Actor.from_user(context.user)
        except ValueError:
            return error_response(Forbidden("User has an unknown role"))

        g.current_user = context.user
        g.actor = actor
        g.session_context = context

        scope = getattr(g, "tenant_scope", None)
        if scope is None:
            return error_response(TenantNotFound("Tenant not found"))
        if context.tenant_id != scope.tenant_id:
            return error_response(Forbidden(
                "Session does not belong to this tenant",
                details={"reason": "tenant_mismatch"},
            ))

        return f(*args, **kwargs)

    return decorated_function


def require_capability(capability: Capability):
    """
    Require the actor's role to grant a capability (no location check).

    Location-scoped checks happen in the services, which know the location.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                access_service.authorize(g.tenant_scope, getattr(g, "actor", None), capability)
            except DomainError as e:
                return error_response(e)
            return f(*args, **kwargs)

        return decorated_function
    return decorator
