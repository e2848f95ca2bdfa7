# Overview: Flask CLI command groups for seeding tenants and operating the checkout engine.

# backend/retailcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# Tenants:
# - python -m flask tenants create --name "Acme" --slug acme
# - python -m flask tenants list
#
# Catalog seeding (the engine only reads these rows):
# - python -m flask locations add --tenant-id 1 --name "Main Street" --code MAIN [--multiplier 1.10]
# - python -m flask products add --tenant-id 1 --sku SKU-1 --name "Widget" --price-cents 500
#
# Users and sessions:
# - python -m flask users create --tenant-id 1 --username alice --role cashier
# - python -m flask users assign-location --tenant-id 1 --user-id 3 --location-id 1 [--primary]
# - python -m flask users issue-token --user-id 3
#   Prints an opaque Bearer token for the user (identity integration stand-in).
#
# Inventory:
# - python -m flask inventory set --tenant-id 1 --product-id 1 --location-id 1 --quantity 10 [--reorder-point 2]
#
# Unreconciled captures (funds captured without an order):
# - python -m flask captures list --tenant-id 1 [--all]
# - python -m flask captures resolve --tenant-id 1 --capture-id 4 --note "Refunded manually"

from decimal import Decimal, InvalidOperation

import click
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError

from .errors import DomainError
from .extensions import db
from .models import Location, Product, Tenant, User
from .permissions import Role
from .services import access_service, inventory_service, payment_service, session_service
from .services.tenant_service import TenantScope


def _require_tenant(tenant_id: int) -> TenantScope:
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        raise click.ClickException(f"Tenant ID {tenant_id} not found")
    return TenantScope(tenant_id=tenant.id)


# =============================================================================
# TENANTS
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--slug', default=None, help='Short code (unique)')
@with_appcontext
def create_tenant_cli(name, slug):
    """Create a new tenant."""
    if slug and db.session.query(Tenant).filter_by(slug=slug).first():
        click.echo(f"FAIL Tenant with slug '{slug}' already exists")
        return

    tenant = Tenant(name=name, slug=slug, is_active=True)
    db.session.add(tenant)
    db.session.commit()
    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id})")


@tenants_group.command('list')
@with_appcontext
def list_tenants_cli():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()
    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Slug':<15} {'Active':<8} {'Locations'}")
    click.echo("="*70)
    for tenant in tenants:
        location_count = db.session.query(Location).filter_by(tenant_id=tenant.id).count()
        active_str = "Yes" if tenant.is_active else "No"
        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.slug or '-':<15} {active_str:<8} {location_count}")
    click.echo("="*70 + "\n")


# =============================================================================
# CATALOG SEEDING
# =============================================================================

@click.group('locations')
def locations_group():
    """Location seeding commands."""


@locations_group.command('add')
@click.option('--tenant-id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--code', default=None, help='Location code (unique within tenant)')
@click.option('--multiplier', default='1.00', help='Pricing multiplier, e.g. 1.10')
@click.option('--currency', default='USD')
@with_appcontext
def add_location_cli(tenant_id, name, code, multiplier, currency):
    """Add a location to a tenant."""
    _require_tenant(tenant_id)
    try:
        pricing_multiplier = Decimal(multiplier)
    except InvalidOperation:
        raise click.ClickException("multiplier must be a decimal number")

    location = Location(
        tenant_id=tenant_id,
        name=name,
        code=code,
        pricing_multiplier=pricing_multiplier,
        currency=currency.upper(),
    )
    db.session.add(location)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        click.echo(f"FAIL Location code '{code}' already exists in tenant {tenant_id}")
        return
    click.echo(f"PASS Created location: {location.name} (ID: {location.id})")


@click.group('products')
def products_group():
    """Product seeding commands."""


@products_group.command('add')
@click.option('--tenant-id', type=int, required=True)
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True)
@with_appcontext
def add_product_cli(tenant_id, sku, name, price_cents):
    """Add a product to a tenant's catalog."""
    _require_tenant(tenant_id)
    if price_cents < 0:
        raise click.ClickException("price-cents must be >= 0")

    product = Product(tenant_id=tenant_id, sku=sku, name=name, price_cents=price_cents)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        click.echo(f"FAIL SKU '{sku}' already exists in tenant {tenant_id}")
        return
    click.echo(f"PASS Created product: {product.name} (ID: {product.id}, SKU: {product.sku})")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User and session commands."""


@users_group.command('create')
@click.option('--tenant-id', type=int, required=True)
@click.option('--username', required=True)
@click.option('--email', default=None)
@click.option('--role', type=click.Choice([r.value for r in Role]), default=Role.CASHIER.value)
@with_appcontext
def create_user_cli(tenant_id, username, email, role):
    """Create a user in a tenant."""
    _require_tenant(tenant_id)
    user = User(tenant_id=tenant_id, username=username, email=email, role=role)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        click.echo(f"FAIL Username '{username}' already exists in tenant {tenant_id}")
        return
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}, role: {user.role})")


@users_group.command('assign-location')
@click.option('--tenant-id', type=int, required=True)
@click.option('--user-id', type=int, required=True)
@click.option('--location-id', type=int, required=True)
@click.option('--role-at-location', default=Role.CASHIER.value)
@click.option('--primary', is_flag=True, help='Make this the primary location')
@with_appcontext
def assign_location_cli(tenant_id, user_id, location_id, role_at_location, primary):
    """Assign a user to a location."""
    scope = _require_tenant(tenant_id)
    try:
        assignment = access_service.assign_location(
            scope,
            user_id,
            location_id,
            role_at_location=role_at_location,
            is_primary=primary,
        )
    except DomainError as e:
        raise click.ClickException(e.message)
    flag = " (primary)" if assignment.is_primary else ""
    click.echo(f"PASS Assigned user {user_id} to location {location_id}{flag}")


@users_group.command('issue-token')
@click.option('--user-id', type=int, required=True)
@with_appcontext
def issue_token_cli(user_id):
    """Issue an opaque session token for a user."""
    try:
        session, token = session_service.create_session(user_id)
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Session {session.id} for tenant {session.tenant_id}, expires {session.expires_at}")
    click.echo(token)


# =============================================================================
# INVENTORY
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Inventory administration commands."""


@inventory_group.command('set')
@click.option('--tenant-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--location-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--min-stock', type=int, default=0)
@click.option('--reorder-point', type=int, default=0)
@with_appcontext
def set_inventory_cli(tenant_id, product_id, location_id, quantity, min_stock, reorder_point):
    """Set quantity and thresholds for a product at a location."""
    scope = _require_tenant(tenant_id)
    try:
        record = inventory_service.upsert_levels(
            scope,
            product_id,
            location_id,
            quantity=quantity,
            min_stock=min_stock,
            reorder_point=reorder_point,
        )
    except DomainError as e:
        raise click.ClickException(e.message)
    click.echo(
        f"PASS product {record.product_id} @ location {record.location_id}: "
        f"quantity={record.quantity} reorder_point={record.reorder_point}"
    )


# =============================================================================
# UNRECONCILED CAPTURES
# =============================================================================

@click.group('captures')
def captures_group():
    """Review queue for captured payments without an order."""


@captures_group.command('list')
@click.option('--tenant-id', type=int, required=True)
@click.option('--all', 'show_all', is_flag=True, help='Include resolved captures')
@with_appcontext
def list_captures_cli(tenant_id, show_all):
    scope = _require_tenant(tenant_id)
    captures = payment_service.list_unreconciled(scope, status=None if show_all else "open")
    if not captures:
        click.echo("No unreconciled captures.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Intent':<32} {'Amount':<10} {'Via':<9} {'Status':<9} {'Created'}")
    click.echo("="*90)
    for c in captures:
        amount = f"{c.amount_cents}" if c.amount_cents is not None else "-"
        click.echo(f"{c.id:<5} {c.payment_intent_id:<32} {amount:<10} {c.detected_via:<9} {c.status:<9} {c.created_at}")
    click.echo("="*90 + "\n")


@captures_group.command('resolve')
@click.option('--tenant-id', type=int, required=True)
@click.option('--capture-id', type=int, required=True)
@click.option('--note', default=None)
@with_appcontext
def resolve_capture_cli(tenant_id, capture_id, note):
    """Mark a capture as handled (refunded or order recreated manually)."""
    scope = _require_tenant(tenant_id)
    try:
        capture = payment_service.resolve_unreconciled(scope, capture_id, note)
    except DomainError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Capture {capture.id} resolved")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(tenants_group)
    app.cli.add_command(locations_group)
    app.cli.add_command(products_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(captures_group)
