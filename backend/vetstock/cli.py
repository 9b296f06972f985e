# Overview: Flask CLI command groups for clinic bootstrap and stock maintenance.

# backend/vetstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Clinic management (MULTI-TENANT):
# - python -m flask clinics list
# - python -m flask clinics create --name "Northside Vets" --code "north"
#
# Catalog:
# - python -m flask products create --clinic-id 1 --sku AMOX-250 --name "Amoxicillin 250mg" --reorder-point 20
#
# Stock maintenance:
# - python -m flask stock audit --clinic-id 1
#   Compare total_stock with active batches and the movement ledger.
# - python -m flask stock audit --clinic-id 1 --repair --actor "night-audit"
#   Recompute drifted totals from batches and record adjustment movements.
# - python -m flask stock expiring --clinic-id 1 --days 30
#   List expired and soon-to-expire batches.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Clinic, Product
from .services.tenant_service import create_clinic, require_active_clinic, TenantAccessError
from .services.stock_audit_service import (
    audit_clinic_stock,
    get_expiry_alerts,
    repair_product_stock,
)


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

    click.echo("PASS Database reset complete.")


@click.group('clinics')
def clinics_group():
    """Clinic (tenant) management commands."""


@clinics_group.command('list')
@with_appcontext
def list_clinics():
    """List all clinics."""
    clinics = db.session.query(Clinic).order_by(Clinic.id.asc()).all()

    if not clinics:
        click.echo("No clinics found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Products'}")
    click.echo("="*70)

    for clinic in clinics:
        product_count = db.session.query(Product).filter_by(clinic_id=clinic.id).count()
        active_str = "Yes" if clinic.is_active else "No"
        click.echo(f"{clinic.id:<5} {clinic.name:<30} {clinic.code or '-':<15} {active_str:<8} {product_count}")

    click.echo("="*70 + "\n")


@clinics_group.command('create')
@click.option('--name', required=True, help='Clinic name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_clinic_cli(name, code):
    """Create a new clinic (tenant)."""
    try:
        clinic = create_clinic(name, code)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created clinic: {clinic.name} (ID: {clinic.id}, Code: {clinic.code})")


@click.group('products')
def products_group():
    """Product catalog commands."""


@products_group.command('create')
@click.option('--clinic-id', type=int, required=True, help='Clinic ID')
@click.option('--sku', required=True, help='SKU (unique within clinic)')
@click.option('--name', required=True, help='Product name')
@click.option('--category', default=None, help='Category')
@click.option('--price-cents', type=int, default=0, show_default=True, help='Unit price in cents')
@click.option('--reorder-point', type=int, default=0, show_default=True, help='Low-stock threshold')
@with_appcontext
def create_product_cli(clinic_id, sku, name, category, price_cents, reorder_point):
    """Create a product with zero stock; receive batches to add stock."""
    try:
        require_active_clinic(clinic_id)
    except TenantAccessError as e:
        click.echo(f"FAIL {e}")
        return

    existing = db.session.query(Product).filter_by(clinic_id=clinic_id, sku=sku).first()
    if existing:
        click.echo(f"FAIL Product with SKU '{sku}' already exists (ID: {existing.id})")
        return

    product = Product(
        clinic_id=clinic_id,
        sku=sku,
        name=name,
        category=category,
        price_cents=price_cents,
        reorder_point=reorder_point,
        total_stock=0,
    )
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product: {product.name} (ID: {product.id}, SKU: {product.sku})")


@click.group('stock')
def stock_group():
    """Stock audit and expiry commands."""


@stock_group.command('audit')
@click.option('--clinic-id', type=int, required=True, help='Clinic ID')
@click.option('--repair', is_flag=True, help='Recompute drifted totals from batches')
@click.option('--actor', default=None, help='Staff identifier recorded on adjustment movements')
@with_appcontext
def audit_stock(clinic_id, repair, actor):
    """Audit Product.total_stock against batches and the movement ledger."""
    try:
        require_active_clinic(clinic_id)
    except TenantAccessError as e:
        click.echo(f"FAIL {e}")
        return
    if repair and not actor:
        click.echo("FAIL --actor is required with --repair")
        return

    rows = audit_clinic_stock(clinic_id)
    if not rows:
        click.echo("No products found.")
        return

    drifted = 0
    click.echo(f"{'ID':<6} {'Product':<30} {'Total':>7} {'Batches':>8} {'Ledger':>7}  Status")
    for row in rows:
        batch_total = "-" if row["batch_total"] is None else row["batch_total"]
        ok = not row["batch_drift"] and not row["ledger_drift"]
        status = "OK" if ok else "DRIFT"
        if not ok:
            drifted += 1
        click.echo(
            f"{row['product_id']:<6} {row['product_name'][:30]:<30} {row['total_stock']:>7} "
            f"{batch_total:>8} {row['ledger_total']:>7}  {status}"
        )

        if repair and row["batch_drift"]:
            fixed = repair_product_stock(clinic_id, row["product_id"], actor=actor)
            click.echo(f"       REPAIRED total_stock {row['total_stock']} -> {fixed['total_stock']}")

    click.echo(f"\n{len(rows)} product(s) audited, {drifted} with drift.")


@stock_group.command('expiring')
@click.option('--clinic-id', type=int, required=True, help='Clinic ID')
@click.option('--days', type=int, default=None, help='Warning window in days (default from config)')
@with_appcontext
def expiring_stock(clinic_id, days):
    """List expired, critical and warning batches."""
    try:
        require_active_clinic(clinic_id)
    except TenantAccessError as e:
        click.echo(f"FAIL {e}")
        return

    alerts = get_expiry_alerts(clinic_id, warning_days=days)
    if not alerts:
        click.echo("No expiring batches.")
        return

    for alert in alerts:
        click.echo(
            f"{alert['level'].upper():<9} {alert['expiry_date']}  {alert['product_name'][:30]:<30} "
            f"lot {alert['lot_number']:<12} qty {alert['quantity_on_hand']}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(clinics_group)
    app.cli.add_command(products_group)
    app.cli.add_command(stock_group)
