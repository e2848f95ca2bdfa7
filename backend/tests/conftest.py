"""
Pytest fixtures for the checkout engine tests.

Provides the test app and database, two tenants with locations, products
and users, a recording payment gateway and webhook signing helpers.
"""

import hashlib
import hmac
import itertools
import json
import time

import pytest

from retailcore import create_app
from retailcore.errors import GatewayError
from retailcore.extensions import db
from retailcore.models import Customer, Location, Product, Tenant, User
from retailcore.services import access_service, checkout_service, inventory_service, payment_service
from retailcore.services.access_service import Actor
from retailcore.services.order_service import CartItem, CheckoutRequest
from retailcore.services.payment_gateway import GatewayIntent, GatewayRefund, StripeGateway
from retailcore.services.session_service import create_session
from retailcore.services.tenant_service import TenantScope


WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STRIPE_SECRET_KEY': '',
        'STRIPE_WEBHOOK_SECRET': WEBHOOK_SECRET,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# PAYMENT GATEWAY
# =============================================================================

class FakeGateway(StripeGateway):
    """
    In-memory stand-in for the Stripe API.

    Intents start in requires_payment_method; tests mark them paid with
    succeed(). Webhook verification is the real Stripe code.
    """

    def __init__(self, webhook_secret: str):
        super().__init__(api_key="", webhook_secret=webhook_secret)
        self._ids = itertools.count(1)
        self.intents = {}
        self.refunds = []
        self.refund_status = "succeeded"
        self.fail_next = False

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_test_{next(self._ids)}"

    def _check_failure(self, what: str) -> None:
        if self.fail_next:
            self.fail_next = False
            raise GatewayError(f"Failed to {what}: simulated outage")

    def create_intent(self, amount_cents, currency, *, metadata=None, idempotency_key=None):
        self._check_failure("create payment intent")
        intent = GatewayIntent(
            id=self._next_id("pi"),
            status="requires_payment_method",
            amount=amount_cents,
            currency=currency,
            client_secret=f"secret_{amount_cents}",
            metadata=dict(metadata or {}),
        )
        self.intents[intent.id] = intent
        return intent

    def retrieve_intent(self, intent_id):
        self._check_failure("retrieve payment intent")
        if intent_id not in self.intents:
            raise GatewayError(f"Failed to retrieve payment intent: No such payment_intent: {intent_id}")
        return self.intents[intent_id]

    def refund(self, charge_id, *, amount_cents=None, reason="requested_by_customer", metadata=None, idempotency_key=None):
        self._check_failure("process refund")
        refund = GatewayRefund(id=self._next_id("re"), status=self.refund_status, amount=amount_cents or 0)
        self.refunds.append({
            "charge_id": charge_id,
            "amount_cents": amount_cents,
            "reason": reason,
            "idempotency_key": idempotency_key,
            "refund": refund,
        })
        return refund

    def put_intent(self, intent_id, *, status, amount, tenant_id, currency="usd", charge_id=None):
        intent = GatewayIntent(
            id=intent_id,
            status=status,
            amount=amount,
            currency=currency,
            charge_id=charge_id,
            metadata={"tenant_id": str(tenant_id)} if tenant_id is not None else {},
        )
        self.intents[intent_id] = intent
        return intent

    def succeed(self, intent_id, charge_id=None):
        intent = self.intents[intent_id]
        self.intents[intent_id] = GatewayIntent(
            id=intent.id,
            status="succeeded",
            amount=intent.amount,
            currency=intent.currency,
            client_secret=intent.client_secret,
            charge_id=charge_id or f"ch_for_{intent.id}",
            metadata=intent.metadata,
        )
        return self.intents[intent_id]


@pytest.fixture(scope='function')
def gateway(app):
    """Install a FakeGateway for the duration of one test."""
    original = app.extensions["payment_gateway"]
    fake = FakeGateway(WEBHOOK_SECRET)
    app.extensions["payment_gateway"] = fake
    yield fake
    app.extensions["payment_gateway"] = original


def sign_webhook(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header value for payload."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def webhook_event(event_id: str, event_type: str, obj: dict) -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })


def post_webhook(client, payload: str, secret: str = WEBHOOK_SECRET):
    return client.post(
        '/api/webhooks/payments',
        data=payload,
        headers={'Stripe-Signature': sign_webhook(payload, secret), 'Content-Type': 'application/json'},
    )


# =============================================================================
# TENANTS AND CATALOG
# =============================================================================

@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A."""
    tenant = Tenant(name="Tenant A - Acme Corp", slug="acme", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B."""
    tenant = Tenant(name="Tenant B - Beta Inc", slug="beta", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def scope_a(tenant_a):
    return TenantScope(tenant_id=tenant_a.id)


@pytest.fixture(scope='function')
def scope_b(tenant_b):
    return TenantScope(tenant_id=tenant_b.id)


@pytest.fixture(scope='function')
def location_a(db_session, tenant_a):
    location = Location(tenant_id=tenant_a.id, name="Main Street", code="A1")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def location_a2(db_session, tenant_a):
    location = Location(tenant_id=tenant_a.id, name="Harbor", code="A2")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def location_b(db_session, tenant_b):
    location = Location(tenant_id=tenant_b.id, name="Beta Store", code="B1")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def product_a(db_session, tenant_a):
    """Widget at 5.00."""
    product = Product(tenant_id=tenant_a.id, sku="PROD-A-001", name="Widget", price_cents=500)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_a2(db_session, tenant_a):
    """Gadget at 2.50."""
    product = Product(tenant_id=tenant_a.id, sku="PROD-A-002", name="Gadget", price_cents=250)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session, tenant_b):
    product = Product(tenant_id=tenant_b.id, sku="PROD-B-001", name="Beta Widget", price_cents=2000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def customer_a(db_session, tenant_a):
    customer = Customer(tenant_id=tenant_a.id, name="Dana Customer", email="dana@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def stocked_a(scope_a, product_a, location_a):
    """10 Widgets at location A1."""
    return inventory_service.upsert_levels(scope_a, product_a.id, location_a.id, quantity=10, reorder_point=2)


# =============================================================================
# USERS
# =============================================================================

def _make_user(db_session, tenant, username, role):
    user = User(tenant_id=tenant.id, username=username, email=f"{username}@example.com", role=role)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_a(db_session, tenant_a):
    return _make_user(db_session, tenant_a, "admin_a", "admin")


@pytest.fixture(scope='function')
def manager_a(db_session, tenant_a, scope_a, location_a):
    user = _make_user(db_session, tenant_a, "manager_a", "manager")
    access_service.assign_location(scope_a, user.id, location_a.id, role_at_location="manager")
    return user


@pytest.fixture(scope='function')
def cashier_a(db_session, tenant_a, scope_a, location_a):
    user = _make_user(db_session, tenant_a, "cashier_a", "cashier")
    access_service.assign_location(scope_a, user.id, location_a.id)
    return user


@pytest.fixture(scope='function')
def cashier_b(db_session, tenant_b, scope_b, location_b):
    user = _make_user(db_session, tenant_b, "cashier_b", "cashier")
    access_service.assign_location(scope_b, user.id, location_b.id)
    return user


@pytest.fixture(scope='function')
def cashier_a2(db_session, tenant_a, scope_a, location_a2):
    """Cashier assigned to location A2 only."""
    user = _make_user(db_session, tenant_a, "cashier_a2", "cashier")
    access_service.assign_location(scope_a, user.id, location_a2.id)
    return user


def actor_for(user) -> Actor:
    return Actor.from_user(user)


def auth_headers(user, tenant=None) -> dict:
    """Bearer session for user plus the tenant header (defaults to the user's tenant)."""
    _, token = create_session(user.id)
    tenant_id = tenant.id if tenant is not None else user.tenant_id
    return {'Authorization': f'Bearer {token}', 'X-Tenant-ID': str(tenant_id)}


# =============================================================================
# CARD PAYMENTS
# =============================================================================

def card_request(location, *pairs, discount_cents=0) -> CheckoutRequest:
    return CheckoutRequest(
        location_id=location.id,
        items=tuple(CartItem(product_id=p, quantity=q) for p, q in pairs),
        payment_method="card",
        discount_cents=discount_cents,
    )


@pytest.fixture(scope='function')
def paid_intent(db_session, scope_a, gateway, cashier_a, product_a, location_a, stocked_a):
    """Card checkout for 2 Widgets, paid at the gateway."""
    result = checkout_service.checkout(scope_a, actor_for(cashier_a), card_request(location_a, (product_a.id, 2)))
    gateway.succeed(result.intent.id, charge_id="ch_paid")
    return result.intent.id


@pytest.fixture(scope='function')
def card_order(db_session, scope_a, cashier_a, location_a, product_a, paid_intent):
    """Committed card order for paid_intent."""
    order, created = payment_service.confirm_and_commit(
        scope_a, actor_for(cashier_a), paid_intent, card_request(location_a, (product_a.id, 2)),
    )
    assert created is True
    return order
