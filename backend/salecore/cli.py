# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Bootstrap:
# - python -m flask salecore init-db [--reset --yes]
#   Create all tables (optionally drop them first; deletes all data).
# - python -m flask salecore seed-demo
#   Idempotently add demo products, lots, a customer and a promotion.
#
# Inventory:
# - python -m flask inventory reconcile [--fix]
#   Compare product stock counters with the sum of their lots.
#
# Shifts:
# - python -m flask shifts list [--status open] [--limit 20]
#   List recent cashier shifts.

import click
from datetime import date, timedelta
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Product, ProductBatch, Promotion, ShiftSession
from .models.promotions import PROMO_PERCENTAGE
from .services.inventory_service import reconcile_stock
from .services.repository import Repository
from .time_utils import to_utc_z, utcnow


@click.group('salecore')
def salecore_group():
    """Database bootstrap commands."""


@salecore_group.command('init-db')
@click.option('--reset', is_flag=True, help='Drop all tables first')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def init_db(reset, yes):
    """Create the schema (use migrations for existing databases)."""
    if reset:
        if not yes:
            click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)
        click.echo("DELETE  Dropping all tables...")
        db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("PASS Database ready.")


DEMO_PRODUCTS = [
    # sku, name, price_cents, cost_cents, tax_rate_bps, lots
    ("DEMO-COFFEE", "Ground Coffee 500g", 1000, 600, 1000, [5, 3]),
    ("DEMO-MILK", "Whole Milk 1L", 250, 150, 0, [12]),
    ("DEMO-BREAD", "Sourdough Loaf", 450, 200, 500, [8]),
]


@salecore_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Add demo catalog data; existing SKUs are left untouched."""
    created = 0
    now = utcnow()

    for sku, name, price, cost, tax_bps, lots in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first():
            continue

        product = Product(
            sku=sku,
            name=name,
            price_cents=price,
            cost_price_cents=cost,
            tax_rate_bps=tax_bps,
            stock_quantity=sum(lots),
            reorder_level=2,
        )
        db.session.add(product)
        db.session.flush()

        for index, qty in enumerate(lots):
            db.session.add(ProductBatch(
                product_id=product.id,
                batch_number=f"{sku}-L{index + 1}",
                quantity_initial=qty,
                quantity_remaining=qty,
                cost_price_cents=cost,
                expiry_date=date.today() + timedelta(days=30 * (index + 1)),
                created_at=now + timedelta(seconds=index),
            ))
        created += 1

    if not db.session.query(Customer).filter_by(phone="555-0100").first():
        db.session.add(Customer(name="Demo Customer", phone="555-0100", loyalty_points=50))

    if not db.session.query(Promotion).filter_by(code="WELCOME10").first():
        db.session.add(Promotion(
            code="WELCOME10",
            name="10% off first order",
            promo_type=PROMO_PERCENTAGE,
            value=1000,
            min_order_cents=500,
        ))

    db.session.commit()
    click.echo(f"PASS Seeded {created} demo products.")


@click.group('inventory')
def inventory_group():
    """Inventory inspection and repair."""


@inventory_group.command('reconcile')
@click.option('--fix', is_flag=True, help='Reset drifted stock counters to the lot total')
@with_appcontext
def reconcile(fix):
    """Report products whose stock counter disagrees with their lots."""
    drifted = reconcile_stock(Repository.for_app(), fix=fix)

    if not drifted:
        click.echo("PASS Stock counters match lot totals.")
        return

    click.echo("\n" + "=" * 70)
    click.echo(f"{'ID':<6} {'SKU':<20} {'Counter':<10} {'Lots':<10} {'Fixed'}")
    click.echo("=" * 70)
    for entry in drifted:
        fixed = "Yes" if entry["fixed"] else "No"
        click.echo(
            f"{entry['product_id']:<6} {entry['sku']:<20} {entry['stock_quantity']:<10} "
            f"{entry['batch_total']:<10} {fixed}"
        )
    click.echo("=" * 70 + "\n")


@click.group('shifts')
def shifts_group():
    """Cashier shift inspection."""


@shifts_group.command('list')
@click.option('--status', type=click.Choice(['open', 'closed']), help='Filter by status')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_shifts(status, limit):
    """List recent shifts, newest first."""
    q = db.session.query(ShiftSession)
    if status:
        q = q.filter_by(status=status)
    shifts = q.order_by(ShiftSession.start_time.desc()).limit(limit).all()

    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<6} {'User':<6} {'Status':<8} {'Started':<22} {'Expected':<10} {'Counted':<10} {'Diff'}")
    click.echo("=" * 90)
    for shift in shifts:
        counted = "-" if shift.ending_cash_cents is None else shift.ending_cash_cents
        diff = "-" if shift.difference_cents is None else shift.difference_cents
        click.echo(
            f"{shift.id:<6} {shift.user_id:<6} {shift.status:<8} {to_utc_z(shift.start_time):<22} "
            f"{shift.expected_cash_cents:<10} {counted:<10} {diff}"
        )
    click.echo("=" * 90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(salecore_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(shifts_group)
