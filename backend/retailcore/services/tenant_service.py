"""
Multi-Tenant Service: Tenant Resolution and Scoped Queries

WHY: Every request is scoped to exactly one tenant, and cross-tenant reads
must be impossible rather than merely discouraged.

SECURITY INVARIANTS:
1. Every request handled by a tenant route has g.tenant_scope set
2. Services take a TenantScope as their first argument
3. All reads go through scope.query()/scope.get(), which filter on tenant_id
4. An entity of another tenant is indistinguishable from an absent one

USAGE:
    from retailcore.services.tenant_service import resolve_tenant

    scope = resolve_tenant(request.headers.get("X-Tenant-ID"))
    location = scope.get(Location, location_id)
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import TenantIdentifierMissing, TenantNotFound
from ..extensions import db
from ..models import Tenant
from .concurrency import lock_for_update


@dataclass(frozen=True)
class TenantScope:
    """
    Capability object for one resolved tenant.

    Holding a TenantScope is the only way to read tenant-owned rows through
    the service layer. Every model passed in must carry a tenant_id column.
    """
    tenant_id: int

    def query(self, model):
        return db.session.query(model).filter(model.tenant_id == self.tenant_id)

    def get(self, model, entity_id, *, lock: bool = False):
        """Row by primary key within this tenant, or None."""
        if entity_id is None:
            return None
        q = self.query(model).filter(model.id == entity_id)
        if lock:
            q = lock_for_update(q)
        return q.first()

    def owns(self, entity) -> bool:
        return entity is not None and getattr(entity, "tenant_id", None) == self.tenant_id


def resolve_tenant(identifier) -> TenantScope:
    """
    Resolve a raw tenant identifier (header or query value) to a TenantScope.

    Accepts the numeric tenant id or the tenant slug.

    Raises:
        TenantIdentifierMissing: identifier absent or blank
        TenantNotFound: malformed, unknown or inactive tenant
    """
    if identifier is None or str(identifier).strip() == "":
        raise TenantIdentifierMissing("Tenant ID required")

    raw = str(identifier).strip()
    tenant = None
    if raw.isdigit():
        tenant = db.session.get(Tenant, int(raw))
    if tenant is None:
        tenant = db.session.query(Tenant).filter_by(slug=raw).first()

    if tenant is None or not tenant.is_active:
        raise TenantNotFound("Tenant not found")

    return TenantScope(tenant_id=tenant.id)
