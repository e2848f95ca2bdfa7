# Overview: Pytest coverage for tenant resolution and cross-tenant isolation.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that one tenant can never read or mutate another
tenant's locations, products, inventory or orders, and that a session is
bound to the tenant it was issued for.
"""

import pytest

from retailcore.errors import (
    LocationNotFound,
    ProductNotFound,
    TenantIdentifierMissing,
    TenantNotFound,
)
from retailcore.models import InventoryRecord, Product, SecurityEvent
from retailcore.services import checkout_service, inventory_service, order_service
from retailcore.services.order_service import CartItem, CheckoutRequest
from retailcore.services.session_service import create_session, validate_session
from retailcore.services.tenant_service import resolve_tenant

from conftest import actor_for, auth_headers


class TestResolveTenant:
    """resolve_tenant() turns a raw identifier into a TenantScope."""

    def test_resolves_numeric_id(self, db_session, tenant_a):
        scope = resolve_tenant(str(tenant_a.id))
        assert scope.tenant_id == tenant_a.id

    def test_resolves_slug(self, db_session, tenant_a):
        scope = resolve_tenant("acme")
        assert scope.tenant_id == tenant_a.id

    @pytest.mark.parametrize("identifier", [None, "", "   "])
    def test_missing_identifier(self, db_session, identifier):
        with pytest.raises(TenantIdentifierMissing):
            resolve_tenant(identifier)

    def test_unknown_tenant(self, db_session, tenant_a):
        with pytest.raises(TenantNotFound):
            resolve_tenant("99999")
        with pytest.raises(TenantNotFound):
            resolve_tenant("no-such-slug")

    def test_inactive_tenant_not_found(self, db_session, tenant_a):
        tenant_a.is_active = False
        db_session.commit()
        with pytest.raises(TenantNotFound):
            resolve_tenant(str(tenant_a.id))


class TestScopedReads:
    """Entities of another tenant are indistinguishable from absent ones."""

    def test_scope_get_hides_foreign_rows(self, db_session, scope_a, product_a, product_b):
        assert scope_a.get(Product, product_a.id).id == product_a.id
        assert scope_a.get(Product, product_b.id) is None

    def test_scope_query_filters_by_tenant(self, db_session, scope_a, scope_b, product_a, product_a2, product_b):
        ids_a = {p.id for p in scope_a.query(Product).all()}
        ids_b = {p.id for p in scope_b.query(Product).all()}
        assert ids_a == {product_a.id, product_a2.id}
        assert ids_b == {product_b.id}

    def test_assemble_rejects_foreign_product(self, db_session, scope_a, location_a, product_b):
        with pytest.raises(ProductNotFound):
            order_service.assemble_order(
                scope_a, location_a.id, (CartItem(product_b.id, 1),), 0, "cash",
            )

    def test_assemble_rejects_foreign_location(self, db_session, scope_a, location_b, product_a):
        with pytest.raises(LocationNotFound):
            order_service.assemble_order(
                scope_a, location_b.id, (CartItem(product_a.id, 1),), 0, "cash",
            )

    def test_inventory_write_rejects_foreign_location(self, db_session, scope_a, product_a, location_b):
        with pytest.raises(LocationNotFound):
            inventory_service.increment(scope_a, product_a.id, location_b.id, 5)
        assert db_session.query(InventoryRecord).count() == 0

    def test_foreign_key_reads_as_zero(self, db_session, scope_a, scope_b, product_b, location_b):
        inventory_service.upsert_levels(scope_b, product_b.id, location_b.id, quantity=7)
        assert inventory_service.get_quantity(scope_b, product_b.id, location_b.id) == 7
        assert inventory_service.get_quantity(scope_a, product_b.id, location_b.id) == 0


class TestSessionTenantContext:
    """Sessions carry the tenant they were issued for."""

    def test_session_captures_tenant_id(self, db_session, cashier_a, tenant_a):
        session, token = create_session(cashier_a.id)
        assert session.tenant_id == tenant_a.id

        context = validate_session(token)
        assert context is not None
        assert context.tenant_id == tenant_a.id
        assert context.user.id == cashier_a.id

    def test_inactive_tenant_session_rejected(self, db_session, cashier_a, tenant_a):
        _, token = create_session(cashier_a.id)
        tenant_a.is_active = False
        db_session.commit()
        assert validate_session(token) is None

    def test_session_used_against_other_tenant_is_forbidden(
        self, client, db_session, cashier_a, tenant_b, location_b
    ):
        headers = auth_headers(cashier_a, tenant=tenant_b)
        response = client.get('/api/checkout/orders', headers=headers)

        assert response.status_code == 403
        event = db_session.query(SecurityEvent).filter_by(
            event_type="CROSS_TENANT_ACCESS_DENIED"
        ).first()
        assert event is not None
        assert event.tenant_id == tenant_b.id
        assert event.user_id == cashier_a.id


class TestTenantHeader:
    """X-Tenant-ID resolution at the HTTP boundary."""

    def test_missing_header_is_400(self, client, db_session, cashier_a):
        headers = auth_headers(cashier_a)
        headers.pop('X-Tenant-ID')
        response = client.get('/api/checkout/orders', headers=headers)
        assert response.status_code == 400
        assert response.json['error'] == 'tenant_identifier_missing'

    def test_unknown_tenant_is_404(self, client, db_session, cashier_a):
        headers = auth_headers(cashier_a)
        headers['X-Tenant-ID'] = '424242'
        response = client.get('/api/checkout/orders', headers=headers)
        assert response.status_code == 404
        assert response.json['error'] == 'tenant_not_found'

    def test_slug_header_accepted(self, client, db_session, cashier_a):
        headers = auth_headers(cashier_a)
        headers['X-Tenant-ID'] = 'acme'
        response = client.get('/api/checkout/orders', headers=headers)
        assert response.status_code == 200

    def test_foreign_order_is_not_found(self, client, db_session, tenant_b, cashier_b, location_b,
                                        product_b, scope_b, cashier_a):
        inventory_service.upsert_levels(scope_b, product_b.id, location_b.id, quantity=3)
        result = checkout_service.checkout(
            scope_b,
            actor_for(cashier_b),
            CheckoutRequest(location_id=location_b.id, items=(CartItem(product_b.id, 1),), payment_method="cash"),
        )

        response = client.get(f'/api/checkout/orders/{result.order.id}', headers=auth_headers(cashier_a))
        assert response.status_code == 404
        assert response.json['error'] == 'order_not_found'
