# Overview: Flask CLI commands for bootstrapping a storefront database.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
#
# - flask storefront init-db [--drop --yes]
#   Create all tables (optionally dropping them first; deletes all data).
# - flask storefront create-admin --username admin --password "Password123!"
#   Create a back-office admin user (prompts if options are omitted).
# - flask storefront seed-demo
#   Online branch, a few products with stock, and an open cash session.
# - flask storefront open-session --branch-id 1 --opening-amount 0
#   Open a cash session so web checkouts can book sales.

from decimal import Decimal

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import StorefrontError
from .extensions import db
from .models import Branch, Product, ProductStock
from .models.auth import ROLE_ADMIN
from .services.auth_service import create_user
from .services.register_service import get_open_cash_session, open_cash_session


DEMO_PRODUCTS = (
    ("DEMO-001", "Ceramic mug", Decimal("100.00"), Decimal("10")),
    ("DEMO-002", "Cotton tote bag", Decimal("250.00"), Decimal("5")),
    ("DEMO-003", "Notebook A5", Decimal("80.50"), Decimal("25")),
)


@click.group('storefront')
def storefront_group():
    """Storefront bootstrap commands."""


@storefront_group.command('init-db')
@click.option('--drop', is_flag=True, help='Drop all tables first (deletes all data)')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def init_db(drop, yes):
    if drop:
        if not yes:
            click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)
        click.echo("DELETE  Dropping all tables...")
        db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("PASS Database ready.")


@storefront_group.command('create-admin')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_admin(username, password):
    try:
        user = create_user(username, password, role=ROLE_ADMIN)
    except StorefrontError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created admin {user.username} (ID: {user.id})")


@storefront_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Idempotent demo data for local development."""
    branch_id = current_app.config["ONLINE_BRANCH_ID"]

    branch = db.session.get(Branch, branch_id)
    if branch is None:
        branch = Branch(id=branch_id, name="Online store", is_active=True)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch {branch.name} (ID: {branch.id})")

    for code, name, price, quantity in DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(code=code).first()
        if product is None:
            product = Product(code=code, name=name, retail_price=price, is_active=True, is_deleted=False)
            db.session.add(product)
            db.session.flush()
            db.session.add(ProductStock(product_id=product.id, branch_id=branch.id, quantity=quantity))
            click.echo(f"PASS Created product {code} (ID: {product.id}) with stock {quantity}")
    db.session.commit()

    if get_open_cash_session(branch.id) is None:
        session = open_cash_session(branch.id, Decimal("0.00"))
        click.echo(f"PASS Opened cash session {session.id}")


@storefront_group.command('open-session')
@click.option('--branch-id', type=int, help='Branch ID (defaults to ONLINE_BRANCH_ID)')
@click.option('--opening-amount', type=str, default="0", help='Opening cash amount')
@with_appcontext
def open_session(branch_id, opening_amount):
    branch_id = branch_id or current_app.config["ONLINE_BRANCH_ID"]
    try:
        session = open_cash_session(branch_id, Decimal(opening_amount))
    except StorefrontError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Opened cash session {session.id} for branch {branch_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(storefront_group)
