# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/checkout_engine/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system init-permissions
#   Drop all role permission overrides so every role is back on its defaults.
#
# Permission inspection/repair:
# - python -m flask perms list [--role admin]
#   List effective permissions per role.
# - python -m flask perms grant customer orders.view
# - python -m flask perms revoke admin orders.delete
#
# Catalog:
# - python -m flask catalog seed-demo
#   Create a handful of demo products (skipped if products exist).
#
# Orders:
# - python -m flask orders list [--status pending] [--limit 20]
#
# Maintenance:
# - python -m flask maintenance purge-idempotency-keys
#   Delete expired checkout idempotency keys.

import click
from flask.cli import with_appcontext

from .errors import CheckoutError
from .extensions import db
from .models import Product
from .models.orders import ORDER_STATUSES
from .permissions import PERMISSION_DEFINITIONS, ROLES
from .services import maintenance_service, order_service, permission_service
from .services.order_service import OrderQuery


DEMO_PRODUCTS = [
    ("DEMO-TEE", "Cotton T-Shirt", 2500, 100),
    ("DEMO-MUG", "Ceramic Mug", 1299, 50),
    ("DEMO-CAP", "Baseball Cap", 1850, 25),
    ("DEMO-BAG", "Canvas Tote Bag", 3400, 10),
    ("DEMO-JKT", "Rain Jacket", 12900, 5),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed-demo' for sample data.")


@system_group.command('init-permissions')
@with_appcontext
def init_permissions():
    """Remove role permission overrides; roles fall back to built-in defaults."""
    deleted = permission_service.reset_role_permissions()
    click.echo(f"PASS Removed {deleted} overrides. Roles: {', '.join(ROLES)}")


@click.group('perms')
def perms_group():
    """Permission inspection and repair commands."""


@perms_group.command('list')
@click.option('--role', type=click.Choice(ROLES), help='Only this role')
@with_appcontext
def list_permissions_cli(role):
    """List effective permissions per role (defaults plus overrides)."""
    roles = [role] if role else list(ROLES)
    descriptions = dict(PERMISSION_DEFINITIONS)

    for role_name in roles:
        effective = permission_service.load_role_permissions(role_name)
        click.echo(f"\n{'='*60}")
        click.echo(f"Permissions for role: {role_name}")
        click.echo(f"{'='*60}")
        for code in sorted(effective):
            click.echo(f"  {code:<24} {descriptions.get(code, '')}")
        click.echo(f"\n Total: {len(effective)} permissions")


@perms_group.command('grant')
@click.argument('role_name')
@click.argument('permission_code')
@with_appcontext
def grant_permission_cli(role_name, permission_code):
    """Grant a permission to a role."""
    try:
        permission_service.set_role_permission(role_name, permission_code, True)
        click.echo(f"PASS Granted '{permission_code}' to role '{role_name}'")
    except CheckoutError as e:
        click.echo(f"FAIL Error: {e.message}")


@perms_group.command('revoke')
@click.argument('role_name')
@click.argument('permission_code')
@with_appcontext
def revoke_permission_cli(role_name, permission_code):
    """Revoke a permission from a role."""
    try:
        permission_service.set_role_permission(role_name, permission_code, False)
        click.echo(f"PASS Revoked '{permission_code}' from role '{role_name}'")
    except CheckoutError as e:
        click.echo(f"FAIL Error: {e.message}")


@click.group('catalog')
def catalog_group():
    """Catalog bootstrap commands."""


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo_cli():
    """Create demo products for local checkout testing."""
    if db.session.query(Product).count():
        click.echo("WARN  Products already exist, skipping...")
        return

    for sku, name, price_cents, stock in DEMO_PRODUCTS:
        db.session.add(Product(sku=sku, name=name, price_cents=price_cents, stock=stock))
    db.session.commit()

    for product in db.session.query(Product).order_by(Product.id).all():
        click.echo(f"PASS {product.id:>3} {product.sku:<10} {product.name:<20} {product.price_cents:>6}c stock={product.stock}")


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('list')
@click.option('--status', type=click.Choice(ORDER_STATUSES), help='Filter by order status')
@click.option('--limit', type=click.IntRange(1, order_service.MAX_PAGE_LIMIT), default=20, show_default=True)
@with_appcontext
def list_orders_cli(status, limit):
    """List recent orders."""
    result = order_service.list_orders(OrderQuery(status=status, limit=limit))

    click.echo(f"{'Order':<14} {'Status':<11} {'Payment':<9} {'Total':>10} {'Items':>5}  Email")
    click.echo("-"*80)
    for order in result.orders:
        header = order.header
        click.echo(
            f"{header['order_number']:<14} {header['status']:<11} {header['payment_status']:<9} "
            f"{header['total_cents']:>10} {len(order.items):>5}  {header['email']}"
        )
    click.echo(f"\n Showing {len(result.orders)} of {result.total} orders")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('purge-idempotency-keys')
@with_appcontext
def purge_idempotency_keys_cli():
    """Delete checkout idempotency keys past their expiry."""
    deleted = maintenance_service.purge_expired_idempotency_keys()
    click.echo(f"Deleted {deleted} expired idempotency keys.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(maintenance_group)
