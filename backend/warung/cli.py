# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/warung/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed
#   Load a sample warung catalog, customers and a few sales.
#
# User inspection/bootstrap:
# - python -m flask users list
# - python -m flask users create --username owner --email owner@warung.local --password "Password123!"
#
# Receivables:
# - python -m flask debts audit [--fix]
#   Compare debt aggregates with their payment rows; --fix recomputes them.

import click
from decimal import Decimal
from flask.cli import with_appcontext

from .extensions import db
from .models import Category, Customer, Product, User
from .services.auth_service import create_user, PasswordValidationError
from .services.debt_service import audit_debts
from .services.transaction_service import create_transaction
from .validation import ConflictError, NotFoundError, ValidationError


DEFAULT_PASSWORD = "Password123!"

SAMPLE_CATALOG = {
    "Mie Instan": [
        ("Indomie Goreng", 120, "2800", "3500"),
        ("Indomie Soto", 80, "2700", "3300"),
        ("Sarimi Isi 2", 40, "3600", "4500"),
    ],
    "Minuman": [
        ("Teh Botol Sosro 450ml", 48, "4200", "5000"),
        ("Aqua 600ml", 96, "2500", "3500"),
        ("Kopi Kapal Api Sachet", 200, "1300", "2000"),
    ],
    "Sembako": [
        ("Beras Ramos 5kg", 15, "62000", "70000"),
        ("Minyak Goreng Bimoli 1L", 24, "16500", "19000"),
        ("Gula Pasir 1kg", 30, "14500", "17000"),
        ("Telur Ayam 1kg", 20, "25000", "29000"),
    ],
    "Kebutuhan Rumah": [
        ("Sabun Lifebuoy", 36, "3200", "4000"),
        ("Rinso 770g", 18, "21000", "24500"),
    ],
}

SAMPLE_CUSTOMERS = [
    ("Bu Siti", "081234567890", "Jl. Melati No. 5"),
    ("Pak Budi", "082198765432", "Gg. Mawar RT 03"),
    ("Mas Joko", None, "Warung sebelah"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables (if missing) and the default admin user.

    Default credentials: admin / Password123! (CHANGE IN PRODUCTION!)
    """
    click.echo("START Initializing Warung Dashboard...")

    db.create_all()
    click.echo("PASS Tables ready")

    existing = db.session.query(User).filter_by(username="admin").first()
    if existing:
        click.echo("WARN  User 'admin' already exists, skipping...")
    else:
        try:
            create_user(username="admin", email="admin@warung.local", password=DEFAULT_PASSWORD)
            click.echo("PASS Created user: admin (admin@warung.local)")
        except (PasswordValidationError, ValueError) as e:
            click.echo(f"FAIL Failed to create user 'admin': {str(e)}")

    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo(f"   admin -> admin@warung.local / {DEFAULT_PASSWORD}")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@system_group.command('seed')
@with_appcontext
def seed_sample_data():
    """
    Load a sample catalog, customers and three sales (paid, partial, unpaid).

    Skips catalog rows that already exist by name.
    """
    created_products = 0
    for category_name, products in SAMPLE_CATALOG.items():
        category = db.session.query(Category).filter_by(name=category_name).first()
        if category is None:
            category = Category(name=category_name)
            db.session.add(category)
            db.session.flush()
        for name, stock, purchase_price, selling_price in products:
            if db.session.query(Product).filter_by(name=name).first():
                continue
            db.session.add(Product(
                name=name,
                category_id=category.id,
                stock=stock,
                purchase_price=Decimal(purchase_price),
                selling_price=Decimal(selling_price),
            ))
            created_products += 1

    created_customers = 0
    for name, phone, address in SAMPLE_CUSTOMERS:
        if db.session.query(Customer).filter_by(name=name).first():
            continue
        db.session.add(Customer(name=name, phone=phone, address=address))
        created_customers += 1

    db.session.commit()
    click.echo(f"PASS Seeded {created_products} products and {created_customers} customers")

    indomie = db.session.query(Product).filter_by(name="Indomie Goreng").first()
    beras = db.session.query(Product).filter_by(name="Beras Ramos 5kg").first()
    siti = db.session.query(Customer).filter_by(name="Bu Siti").first()
    budi = db.session.query(Customer).filter_by(name="Pak Budi").first()

    sample_sales = [
        {
            "total_amount": "35000", "paid_amount": "35000", "payment_status": "paid",
            "items": [{"product_id": indomie.id, "quantity": 10, "price": "3500"}],
        },
        {
            "customer_id": siti.id,
            "total_amount": "70000", "paid_amount": "30000", "payment_status": "partial",
            "items": [{"product_id": beras.id, "quantity": 1, "price": "70000"}],
        },
        {
            "customer_id": budi.id,
            "total_amount": "17500", "paid_amount": "0", "payment_status": "unpaid",
            "items": [{"product_id": indomie.id, "quantity": 5, "price": "3500"}],
            "notes": "Bayar akhir bulan",
        },
    ]
    for payload in sample_sales:
        try:
            txn = create_transaction(payload)
            click.echo(f"PASS Recorded {txn.invoice_number} ({txn.payment_status})")
        except (ValidationError, NotFoundError, ConflictError) as e:
            click.echo(f"FAIL Sample sale rejected: {str(e)}")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_user_cli(username, email, password):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(username=username, email=email, password=password)
        click.echo(f"PASS Created user: {user.username} ({user.email})")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<35} {'Active':<8}")
    click.echo("="*80)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<35} {active_str:<8}")

    click.echo("="*80 + "\n")


@click.group('debts')
def debts_group():
    """Receivable maintenance commands."""


@debts_group.command('audit')
@click.option('--fix', is_flag=True, help='Recompute drifted debts from their payment rows')
@with_appcontext
def audit_debts_cli(fix):
    """Report debts whose paid/remaining/status disagree with their payments."""
    drifts = audit_debts(fix=fix)

    if not drifts:
        click.echo("PASS All debts match their payment history")
        return

    for drift in drifts:
        click.echo(
            f"DRIFT debt {drift.debt_id} ({drift.invoice_number}): "
            f"paid {drift.stored_paid} vs payments {drift.payments_total}, "
            f"remaining {drift.stored_remaining} vs {drift.expected_remaining}, "
            f"status {drift.stored_status} vs {drift.expected_status}"
        )

    if fix:
        click.echo(f"PASS Recomputed {len(drifts)} debt(s)")
    else:
        click.echo(f"WARN  {len(drifts)} debt(s) drifted; rerun with --fix to recompute")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(debts_group)
