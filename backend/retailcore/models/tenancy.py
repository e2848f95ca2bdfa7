from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z

class Tenant(db.Model):
    """
    Multi-tenant root: every customer organization is a Tenant.

    WHY: Shared-database multi-tenancy with strict isolation.
    Every location, product, order and user carries tenant_id and every
    query filters on it (see services/tenant_service.TenantScope).

    Created at onboarding; never merged or split.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(64), nullable=True, unique=True, index=True)  # Subdomain / short code

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

class Location(db.Model):
    """
    Selling point within a tenant.

    MULTI-TENANT: Location codes are unique within a tenant, not globally.
    Pricing: pricing_multiplier scales the product base price unless the
    product carries an explicit per-location price.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_locations_tenant_code"),
        db.Index("ix_locations_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True)

    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0.00"))  # Percent
    pricing_multiplier = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("1.00"))
    currency = db.Column(db.String(3), nullable=False, default="USD")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("locations", lazy=True))

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "code": self.code,
            "tax_rate": str(self.tax_rate) if self.tax_rate is not None else None,
            "pricing_multiplier": str(self.pricing_multiplier) if self.pricing_multiplier is not None else None,
            "currency": self.currency,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
