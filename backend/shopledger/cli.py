# Overview: Flask CLI command groups for bootstrap, catalog seeding, reports and stock repair.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to shopledger (PowerShell: $env:FLASK_APP="shopledger").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog seeding:
# - python -m flask catalog add-product --name "Kurta" --price 999 --offer-price 799 --item-code K-01 --stock 10
# - python -m flask catalog add-variant --product-id 1 --size M --color Blue --stock 5
# - python -m flask catalog list
#
# Invoices:
# - python -m flask invoices failed
#   List invoices stuck in a partial-failure state.
# - python -m flask invoices repair-stock --invoice-id 12
#   Deduct stock for lines that were never deducted (idempotent).
#
# Reports:
# - python -m flask reports sales --start 2026-03-01 --end 2026-03-31

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Invoice
from .services import catalog_service, invoice_service, reconciliation_service
from .services.invoice_service import CommitError
from .services.payment_service import InvoiceNotFound
from .services.reconciliation_service import ReportError
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create every table that does not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


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


@click.group('catalog')
def catalog_group():
    """Catalog seeding commands."""


@catalog_group.command('add-product')
@click.option('--name', required=True)
@click.option('--price', default=None)
@click.option('--offer-price', default=None)
@click.option('--item-code', default=None)
@click.option('--stock', type=int, default=0, show_default=True)
@with_appcontext
def add_product(name, price, offer_price, item_code, stock):
    payload = {"name": name, "stock_quantity": stock}
    if price is not None:
        payload["price"] = price
    if offer_price is not None:
        payload["offer_price"] = offer_price
    if item_code:
        payload["item_code"] = item_code
    try:
        product = catalog_service.create_product(payload)
    except (ValidationError, ConflictError) as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS Created product {product.id}: {product.name}")


@catalog_group.command('add-variant')
@click.option('--product-id', type=int, required=True)
@click.option('--size', default=None)
@click.option('--color', default=None)
@click.option('--price', default=None)
@click.option('--stock', type=int, default=0, show_default=True)
@with_appcontext
def add_variant(product_id, size, color, price, stock):
    payload = {"size": size, "color": color, "stock_quantity": stock}
    if price is not None:
        payload["price"] = price
    try:
        variant = catalog_service.create_variant(product_id, payload)
    except ValidationError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS Created variant {variant.id} for product {product_id}")


@catalog_group.command('list')
@with_appcontext
def list_catalog():
    products = catalog_service.list_products()
    if not products:
        click.echo("No products")
        return
    for product in products:
        click.echo(
            f"{product.id:>5}  {product.name:<30} price={product.price} "
            f"offer={product.offer_price} stock={product.stock_quantity}"
        )
        for variant in product.variants:
            click.echo(
                f"       - variant {variant.id}: {variant.color or ''} {variant.size or ''} "
                f"stock={variant.stock_quantity}"
            )


@click.group('invoices')
def invoices_group():
    """Invoice inspection and repair commands."""


@invoices_group.command('failed')
@with_appcontext
def list_failed():
    rows = (
        db.session.query(Invoice)
        .filter(Invoice.commit_state != invoice_service.STATE_COMMITTED)
        .order_by(Invoice.id.asc())
        .all()
    )
    if not rows:
        click.echo("PASS No invoices in a partial state")
        return
    for invoice in rows:
        click.echo(
            f"{invoice.id:>5}  {invoice.invoice_number}  {invoice.commit_state}  "
            f"{invoice.failure_reason or ''}"
        )


@invoices_group.command('repair-stock')
@click.option('--invoice-id', type=int, required=True)
@with_appcontext
def repair_stock(invoice_id):
    try:
        result = invoice_service.repair_invoice_stock(invoice_id)
    except InvoiceNotFound as exc:
        raise click.ClickException(str(exc))
    except CommitError as exc:
        raise click.ClickException(f"{exc} ({exc.error_kind})")
    click.echo(
        f"PASS {result['invoice_number']}: deducted lines {result['deducted'] or 'none'}, "
        f"already deducted {result['skipped'] or 'none'}"
    )


@click.group('reports')
def reports_group():
    """Reporting commands."""


@reports_group.command('sales')
@click.option('--start', required=True, help='YYYY-MM-DD (inclusive)')
@click.option('--end', required=True, help='YYYY-MM-DD (inclusive)')
@with_appcontext
def sales(start, end):
    try:
        report = reconciliation_service.sales_report(start, end)
    except ReportError as exc:
        raise click.ClickException(str(exc))
    report.pop("details", None)
    click.echo(json.dumps(report, indent=2, default=str))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(reports_group)
