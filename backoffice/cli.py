# Overview: Flask CLI command groups for bootstrap and ledger maintenance.

# backoffice/cli.py
# Commands Legend:
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to backoffice (PowerShell: $env:FLASK_APP="backoffice").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed
#   Create a demo supplier, customers and products, stocked through a purchase.
#
# Stock ledger:
# - python -m flask stock verify
#   Compare every product's current_stock with its ledger sum; exits 1 on drift.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Product, Supplier
from .services import catalog_service, purchase_service, stock_ledger_service


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' for demo data.")


DEMO_PRODUCTS = [
    # sku, name, cost, price, minimum, initial quantity
    ("DEMO-RICE-5KG", "Rice 5kg", 420, 650, 10, 40),
    ("DEMO-OIL-1L", "Sunflower Oil 1L", 180, 275, 12, 60),
    ("DEMO-TEA-100", "Black Tea 100 bags", 230, 399, 5, 25),
]


@system_group.command('seed')
@with_appcontext
def seed():
    """
    Idempotent demo data: skips anything that already exists.

    Stock is received through a regular purchase so the ledger stays
    consistent from the first row.
    """
    supplier = db.session.query(Supplier).filter_by(name="Demo Wholesale").first()
    if supplier is None:
        supplier = Supplier(name="Demo Wholesale", contact_name="Demo Contact", email="orders@demo.local")
        db.session.add(supplier)
        db.session.commit()
        click.echo(f"PASS Created supplier: {supplier.name} (ID: {supplier.id})")

    for first, last, email in (("Ada", "Walker", "ada@demo.local"), ("Sam", "Rivera", "sam@demo.local")):
        if db.session.query(Customer).filter_by(email=email).first() is None:
            db.session.add(Customer(first_name=first, last_name=last, email=email))
            click.echo(f"PASS Created customer: {first} {last}")
    db.session.commit()

    receive = []
    for sku, name, cost, price, minimum, quantity in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first() is not None:
            click.echo(f"SKIP Product {sku} already exists")
            continue
        product = catalog_service.create_product(patch={
            "sku": sku,
            "name": name,
            "cost_price_cents": cost,
            "selling_price_cents": price,
            "minimum_stock_level": minimum,
        })
        click.echo(f"PASS Created product: {sku} (ID: {product.id})")
        receive.append({"product_id": product.id, "quantity": quantity, "cost_price_cents": cost})

    if receive:
        purchase = purchase_service.create_purchase(
            supplier_id=supplier.id,
            items=receive,
            notes="Opening stock",
        )
        click.echo(f"PASS Received opening stock: {purchase.purchase_number}")

    click.echo("PASS Seed complete.")


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@stock_group.command('verify')
@with_appcontext
def verify_stock():
    """Reconcile every product against its ledger; non-zero exit on drift."""
    results = stock_ledger_service.reconcile_all()
    drift = [r for r in results if not r["consistent"]]

    for r in drift:
        click.echo(
            f"FAIL {r['sku']} (ID: {r['product_id']}): "
            f"current_stock={r['current_stock']} ledger={r['ledger_balance']}"
        )

    if drift:
        click.echo(f"FAIL {len(drift)} of {len(results)} product(s) out of balance")
        raise SystemExit(1)

    click.echo(f"PASS {len(results)} product(s) reconciled, no drift")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
