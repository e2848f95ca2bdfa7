# Overview: Pytest coverage for the Flask CLI seeding and operator commands.

from retailcore.models import InventoryRecord, Location, Product, Tenant, User, UserLocation
from retailcore.services import payment_service
from retailcore.services.session_service import validate_session


def _invoke(app, *args):
    runner = app.test_cli_runner()
    return runner.invoke(args=list(args))


class TestSeedingCommands:

    def test_create_and_list_tenants(self, app, db_session):
        result = _invoke(app, 'tenants', 'create', '--name', 'Gamma', '--slug', 'gamma')
        assert result.exit_code == 0
        assert 'PASS Created tenant: Gamma' in result.output
        assert db_session.query(Tenant).filter_by(slug='gamma').count() == 1

        listing = _invoke(app, 'tenants', 'list')
        assert 'Gamma' in listing.output

    def test_duplicate_slug_refused(self, app, db_session, tenant_a):
        result = _invoke(app, 'tenants', 'create', '--name', 'Another Acme', '--slug', 'acme')
        assert 'FAIL' in result.output
        assert db_session.query(Tenant).filter_by(slug='acme').count() == 1

    def test_full_seed(self, app, db_session, tenant_a):
        tid = str(tenant_a.id)

        assert _invoke(app, 'locations', 'add', '--tenant-id', tid, '--name', 'Dock', '--code', 'D1',
                       '--multiplier', '1.10').exit_code == 0
        location = db_session.query(Location).filter_by(code='D1').one()

        assert _invoke(app, 'products', 'add', '--tenant-id', tid, '--sku', 'SKU-9', '--name', 'Bolt',
                       '--price-cents', '120').exit_code == 0
        product = db_session.query(Product).filter_by(sku='SKU-9').one()

        assert _invoke(app, 'users', 'create', '--tenant-id', tid, '--username', 'dock_cashier').exit_code == 0
        user = db_session.query(User).filter_by(username='dock_cashier').one()
        assert user.role == 'cashier'

        result = _invoke(app, 'users', 'assign-location', '--tenant-id', tid, '--user-id', str(user.id),
                         '--location-id', str(location.id))
        assert '(primary)' in result.output
        assert db_session.query(UserLocation).filter_by(user_id=user.id).count() == 1

        result = _invoke(app, 'inventory', 'set', '--tenant-id', tid, '--product-id', str(product.id),
                         '--location-id', str(location.id), '--quantity', '25', '--reorder-point', '5')
        assert result.exit_code == 0
        record = db_session.query(InventoryRecord).filter_by(product_id=product.id).one()
        assert record.quantity == 25

        result = _invoke(app, 'users', 'issue-token', '--user-id', str(user.id))
        assert result.exit_code == 0
        token = result.output.strip().splitlines()[-1]
        context = validate_session(token)
        assert context is not None
        assert context.user.id == user.id

    def test_unknown_tenant(self, app, db_session):
        result = _invoke(app, 'products', 'add', '--tenant-id', '99999', '--sku', 'X', '--name', 'X',
                         '--price-cents', '1')
        assert result.exit_code != 0
        assert 'Tenant ID 99999 not found' in result.output

    def test_inventory_set_foreign_location(self, app, db_session, tenant_a, product_a, location_b):
        result = _invoke(app, 'inventory', 'set', '--tenant-id', str(tenant_a.id), '--product-id', str(product_a.id),
                         '--location-id', str(location_b.id), '--quantity', '3')
        assert result.exit_code != 0
        assert 'Location not found' in result.output


class TestCaptureCommands:

    def test_list_and_resolve(self, app, db_session, scope_a, tenant_a):
        event = {
            "id": "evt_cli",
            "type": "payment_intent.succeeded",
            "data": {"object": {
                "id": "pi_cli",
                "amount": 700,
                "currency": "usd",
                "metadata": {"tenant_id": str(tenant_a.id)},
            }},
        }
        payment_service.reconcile_webhook(event)

        listing = _invoke(app, 'captures', 'list', '--tenant-id', str(tenant_a.id))
        assert 'pi_cli' in listing.output

        capture = payment_service.list_unreconciled(scope_a)[0]
        result = _invoke(app, 'captures', 'resolve', '--tenant-id', str(tenant_a.id),
                         '--capture-id', str(capture.id), '--note', 'refunded manually')
        assert result.exit_code == 0

        assert 'No unreconciled captures.' in _invoke(app, 'captures', 'list', '--tenant-id', str(tenant_a.id)).output
