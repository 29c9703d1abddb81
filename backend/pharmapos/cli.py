# Overview: Flask CLI command groups for bootstrap and licensing.

# backend/pharmapos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system seed-demo
#   Idempotent demo tenant: two stores, one user per role, products and lots.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenants / stores / users:
# - python -m flask tenants list
# - python -m flask tenants create --name "Farmacia Central" --code "CENTRAL"
# - python -m flask stores create --tenant-id 1 --name "Downtown" --code "DT" [--default]
# - python -m flask users create --tenant-id 1 --name "Ana" --email ana@pharmapos.local --password "Password123" --role PHARMACIST --store-id 1
#
# Licensing:
# - python -m flask license set-plan --tenant-id 1 --plan ESSENTIAL [--status ACTIVE]

from datetime import date, timedelta
from decimal import Decimal

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import Product, Store, Tenant, User
from .permissions import Actor, ROLE_ADMIN, VALID_ROLES
from .services import auth_service, inventory_service, licensing_service, store_service


DEMO_PASSWORD = "Password123"


def _fail(exc: DomainError):
    raise click.ClickException(exc.message)


@click.group('system')
def system_group():
    """System bootstrap commands."""


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
    db.drop_all()
    db.create_all()
    click.echo("PASS Database schema recreated")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Create (or complete) the DEMO tenant.

    Creates:
    - Tenant DEMO on the PROFESSIONAL plan
    - Stores "Matriz" (default) and "Filial"
    - Users admin/pharmacist/seller/cashier@demo.local (password: Password123)
    - Three products with two lots each at Matriz
    """
    tenant = db.session.query(Tenant).filter_by(code="DEMO").first()
    if not tenant:
        tenant = store_service.create_tenant("Demo Pharmacy", "DEMO")
        click.echo(f"PASS Created tenant {tenant.name} (ID: {tenant.id})")
    if not licensing_service.get_license(tenant.id):
        licensing_service.set_plan(tenant.id, "PROFESSIONAL")

    stores = {}
    for name, code, is_default in (("Matriz", "MAT", True), ("Filial", "FIL", False)):
        store = db.session.query(Store).filter_by(tenant_id=tenant.id, name=name).first()
        if not store:
            store = store_service.create_store(tenant.id, name, code, is_default=is_default)
            click.echo(f"PASS Created store {name} (ID: {store.id})")
        stores[code] = store

    users = {}
    for role in VALID_ROLES:
        email = f"{role.lower()}@demo.local"
        user = db.session.query(User).filter_by(tenant_id=tenant.id, email=email).first()
        if not user:
            user = auth_service.create_user(
                tenant.id, name=role.title(), email=email, password=DEMO_PASSWORD, role=role
            )
            click.echo(f"PASS Created user {email}")
        if role != ROLE_ADMIN:
            store_service.assign_user_to_store(user.id, stores["MAT"].id, is_default=True)
            store_service.assign_user_to_store(user.id, stores["FIL"].id)
        users[role] = user

    catalog = (
        ("Dipirona 500mg", "7890000000011", Decimal("12.90")),
        ("Paracetamol 750mg", "7890000000028", Decimal("9.50")),
        ("Amoxicilina 500mg", "7890000000035", Decimal("34.00")),
    )
    admin = users[ROLE_ADMIN]
    actor = Actor(id=admin.id, role=ROLE_ADMIN, tenant_id=tenant.id, store_id=stores["MAT"].id)
    today = date.today()
    for idx, (name, ean, price) in enumerate(catalog):
        product = db.session.query(Product).filter_by(tenant_id=tenant.id, ean=ean).first()
        if product:
            continue
        product = Product(tenant_id=tenant.id, name=name, ean=ean, price=price)
        db.session.add(product)
        db.session.commit()
        for n, (days, qty, cost) in enumerate(((90, 20, "4.10"), (240, 30, "4.35"))):
            inventory_service.receive_lot(
                actor,
                store_id=stores["MAT"].id,
                product_id=product.id,
                lot_number=f"L{idx + 1}{n + 1:02d}",
                expiration=today + timedelta(days=days),
                cost_unit=Decimal(cost),
                quantity=qty,
                reason="Demo seed",
            )
        click.echo(f"PASS Created product {name} with 2 lots")

    click.echo(f"DONE Demo tenant ready; users share password {DEMO_PASSWORD!r}")


@click.group('tenants')
def tenants_group():
    """Tenant management."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    for tenant in db.session.query(Tenant).order_by(Tenant.id).all():
        status = "active" if tenant.is_active else "inactive"
        click.echo(f"{tenant.id}\t{tenant.code or '-'}\t{tenant.name}\t{status}")


@tenants_group.command('create')
@click.option('--name', required=True)
@click.option('--code', default=None)
@click.option('--plan', default=None, help='License plan (defaults to DEFAULT_LICENSE_PLAN)')
@with_appcontext
def create_tenant(name, code, plan):
    try:
        tenant = store_service.create_tenant(name, code)
        if plan:
            licensing_service.set_plan(tenant.id, plan)
    except DomainError as exc:
        _fail(exc)
    click.echo(f"PASS Created tenant {tenant.name} (ID: {tenant.id})")


@click.group('stores')
def stores_group():
    """Store management."""


@stores_group.command('create')
@click.option('--tenant-id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--code', default=None)
@click.option('--default', 'is_default', is_flag=True, help='Mark as the tenant default store')
@with_appcontext
def create_store(tenant_id, name, code, is_default):
    try:
        store = store_service.create_store(tenant_id, name, code, is_default=is_default)
    except DomainError as exc:
        _fail(exc)
    click.echo(f"PASS Created store {store.name} (ID: {store.id})")


@click.group('users')
def users_group():
    """User management."""


@users_group.command('create')
@click.option('--tenant-id', type=int, required=True)
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(VALID_ROLES, case_sensitive=False), default="SELLER", show_default=True)
@click.option('--store-id', type=int, multiple=True, help='Store the user works in (repeatable; first is default)')
@with_appcontext
def create_user(tenant_id, name, email, password, role, store_id):
    try:
        user = auth_service.create_user(tenant_id, name=name, email=email, password=password, role=role)
        for idx, sid in enumerate(store_id):
            store_service.assign_user_to_store(user.id, sid, is_default=(idx == 0))
    except DomainError as exc:
        _fail(exc)
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@click.group('license')
def license_group():
    """Tenant licensing."""


@license_group.command('set-plan')
@click.option('--tenant-id', type=int, required=True)
@click.option('--plan', type=click.Choice(list(licensing_service.PLAN_CATALOG), case_sensitive=False), required=True)
@click.option('--status', type=click.Choice(licensing_service.LICENSE_STATUSES, case_sensitive=False), default="ACTIVE", show_default=True)
@with_appcontext
def set_plan(tenant_id, plan, status):
    try:
        lic = licensing_service.set_plan(tenant_id, plan, status=status)
    except DomainError as exc:
        _fail(exc)
    click.echo(f"PASS Tenant {tenant_id} now on {lic.plan_code} ({lic.status})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(users_group)
    app.cli.add_command(license_group)
