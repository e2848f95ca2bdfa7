# Overview: Pytest coverage for role capabilities, location assignment and gate denials.

"""
Access Gate Tests

Covers:
- Static Role -> Capability map (exhaustive, manage implies view)
- authorize(): unauthenticated, tenant mismatch, missing capability,
  foreign or unassigned location
- Location assignment (primary handling)
- Denials are logged as security events at the HTTP boundary
"""

import pytest

from retailcore.errors import (
    Forbidden,
    LocationAccessDenied,
    LocationNotFound,
    Unauthenticated,
)
from retailcore.models import SecurityEvent, UserLocation
from retailcore.permissions import Capability, Role, capabilities_for, parse_role, role_grants
from retailcore.services import access_service
from retailcore.services.access_service import Actor, authorize

from conftest import actor_for, auth_headers


class TestCapabilityMap:
    """The Role -> Capability map is static and closed."""

    def test_every_role_has_capabilities(self):
        for role in Role:
            assert capabilities_for(role)

    def test_admin_has_blanket_location_access(self):
        assert Capability.ACCESS_ALL_LOCATIONS in capabilities_for(Role.ADMIN)
        assert Capability.ACCESS_ASSIGNED_LOCATIONS not in capabilities_for(Role.ADMIN)

    def test_cashier_is_location_scoped(self):
        caps = capabilities_for(Role.CASHIER)
        assert Capability.ACCESS_ASSIGNED_LOCATIONS in caps
        assert Capability.MANAGE_TRANSACTIONS in caps
        assert Capability.MANAGE_INVENTORY not in caps

    def test_manage_implies_view(self):
        assert role_grants(Role.MANAGER, Capability.VIEW_INVENTORY)
        assert role_grants(Role.ADMIN, Capability.VIEW_CUSTOMERS)
        assert not role_grants(Role.CASHIER, Capability.MANAGE_INVENTORY)

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            parse_role("superuser")


class TestAuthorize:
    """authorize() answers capability and location questions without side effects."""

    def test_no_actor_is_unauthenticated(self, db_session, scope_a):
        with pytest.raises(Unauthenticated):
            authorize(scope_a, None, Capability.MANAGE_TRANSACTIONS)

    def test_actor_of_other_tenant_is_forbidden(self, db_session, scope_a, cashier_b):
        with pytest.raises(Forbidden) as exc_info:
            authorize(scope_a, actor_for(cashier_b), Capability.MANAGE_TRANSACTIONS)
        assert exc_info.value.details["reason"] == "tenant_mismatch"

    def test_missing_capability_is_forbidden(self, db_session, scope_a, cashier_a, location_a):
        with pytest.raises(Forbidden):
            authorize(scope_a, actor_for(cashier_a), Capability.MANAGE_INVENTORY, location_a.id)

    def test_assigned_location_allowed(self, db_session, scope_a, cashier_a, location_a):
        location = authorize(scope_a, actor_for(cashier_a), Capability.MANAGE_TRANSACTIONS, location_a.id)
        assert location.id == location_a.id

    def test_unassigned_location_denied(self, db_session, scope_a, cashier_a, location_a2):
        with pytest.raises(LocationAccessDenied):
            authorize(scope_a, actor_for(cashier_a), Capability.MANAGE_TRANSACTIONS, location_a2.id)

    def test_admin_reaches_any_location(self, db_session, scope_a, admin_a, location_a, location_a2):
        actor = actor_for(admin_a)
        assert authorize(scope_a, actor, Capability.MANAGE_TRANSACTIONS, location_a2.id).id == location_a2.id
        assert authorize(scope_a, actor, Capability.MANAGE_INVENTORY, location_a.id).id == location_a.id

    def test_foreign_location_is_not_found(self, db_session, scope_a, admin_a, location_b):
        with pytest.raises(LocationNotFound):
            authorize(scope_a, actor_for(admin_a), Capability.MANAGE_TRANSACTIONS, location_b.id)

    def test_gate_writes_nothing(self, db_session, scope_a, cashier_a, location_a2):
        with pytest.raises(LocationAccessDenied):
            authorize(scope_a, actor_for(cashier_a), Capability.MANAGE_TRANSACTIONS, location_a2.id)
        assert db_session.query(SecurityEvent).count() == 0

    def test_actor_from_user(self, db_session, manager_a, tenant_a):
        actor = Actor.from_user(manager_a)
        assert actor.user_id == manager_a.id
        assert actor.tenant_id == tenant_a.id
        assert actor.role is Role.MANAGER


class TestLocationAssignments:
    """assign_location / unassign_location keep exactly one primary."""

    def test_first_assignment_is_primary(self, db_session, scope_a, cashier_a, location_a):
        assert access_service.primary_location_id(scope_a, cashier_a.id) == location_a.id

    def test_new_primary_demotes_old(self, db_session, scope_a, cashier_a, location_a, location_a2):
        access_service.assign_location(scope_a, cashier_a.id, location_a2.id, is_primary=True)

        primaries = db_session.query(UserLocation).filter_by(user_id=cashier_a.id, is_primary=True).all()
        assert [p.location_id for p in primaries] == [location_a2.id]

    def test_assignment_is_idempotent(self, db_session, scope_a, cashier_a, location_a):
        access_service.assign_location(scope_a, cashier_a.id, location_a.id)
        assert db_session.query(UserLocation).filter_by(user_id=cashier_a.id).count() == 1

    def test_unassign_primary_promotes_remaining(self, db_session, scope_a, cashier_a, location_a, location_a2):
        access_service.assign_location(scope_a, cashier_a.id, location_a2.id)
        assert access_service.unassign_location(scope_a, cashier_a.id, location_a.id) is True
        assert access_service.primary_location_id(scope_a, cashier_a.id) == location_a2.id

    def test_unassign_missing_returns_false(self, db_session, scope_a, cashier_a, location_a2):
        assert access_service.unassign_location(scope_a, cashier_a.id, location_a2.id) is False

    def test_assign_foreign_location_rejected(self, db_session, scope_a, cashier_a, location_b):
        with pytest.raises(LocationNotFound):
            access_service.assign_location(scope_a, cashier_a.id, location_b.id)


class TestDenialLogging:
    """Denials at the HTTP boundary land in the security event log."""

    def test_missing_token_logged(self, client, db_session, tenant_a):
        response = client.get('/api/checkout/orders', headers={'X-Tenant-ID': str(tenant_a.id)})
        assert response.status_code == 401
        assert db_session.query(SecurityEvent).filter_by(event_type="UNAUTHENTICATED").count() == 1

    def test_capability_denial_logged(self, client, db_session, cashier_a, product_a, location_a):
        response = client.put(
            f'/api/inventory/{product_a.id}/{location_a.id}',
            json={'quantity': 5},
            headers=auth_headers(cashier_a),
        )
        assert response.status_code == 403
        event = db_session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").one()
        assert event.user_id == cashier_a.id
        assert event.success is False

    def test_location_denial_logged(self, client, db_session, cashier_a, product_a, location_a2):
        response = client.post('/api/checkout', json={
            'location_id': location_a2.id,
            'items': [{'product_id': product_a.id, 'quantity': 1}],
            'payment_method': 'cash',
        }, headers=auth_headers(cashier_a))

        assert response.status_code == 403
        assert response.json['error'] == 'location_access_denied'
        event = db_session.query(SecurityEvent).filter_by(event_type="LOCATION_ACCESS_DENIED").one()
        assert event.location_id == location_a2.id
