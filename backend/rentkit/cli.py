# Overview: Flask CLI command groups for bootstrap, catalog inspection and
# availability queries.

# backend/rentkit/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to rentkit (PowerShell: $env:FLASK_APP="rentkit").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog seed
#   Create demo items and customers (idempotent by item name).
# - python -m flask catalog items
#   List items with total quantity.
#
# Availability:
# - python -m flask availability day --date 2025-11-06
#   Per-item total / reserved / remaining for one day.
# - python -m flask availability check --item-id 1 --quantity 70 --start 2025-11-06 --end 2025-11-11
#   Single item check; prints the first violating day if any.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, Item
from .validation import ValidationError, NotFoundError, parse_date_range
from .time_utils import parse_calendar_date, to_ymd

DEMO_ITEMS = [
    {"name": "Chairs", "unit": "pcs", "total_quantity": 100, "price_cents": 150},
    {"name": "Tables", "unit": "pcs", "total_quantity": 10, "price_cents": 1200},
    {"name": "Plates", "unit": "pcs", "total_quantity": 1000, "price_cents": 25},
    {"name": "Tents", "unit": "units", "total_quantity": 4, "price_cents": 25000},
]

DEMO_CUSTOMERS = [
    {"first_name": "Ada", "last_name": "Okafor", "email": "ada@example.com"},
    {"first_name": "Ben", "last_name": "Mensah", "phone": "+233200000000"},
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

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed' for demo data.")


@click.group('catalog')
def catalog_group():
    """Item catalog commands."""


@catalog_group.command('seed')
@with_appcontext
def seed_catalog():
    """Create demo items and customers."""
    from .services.items_service import create_item, name_key
    from .services.customers_service import create_customer

    created = 0
    for data in DEMO_ITEMS:
        if db.session.query(Item).filter_by(name_key=name_key(data["name"])).first():
            continue
        create_item(patch=dict(data))
        created += 1

    if db.session.query(Customer).count() == 0:
        for data in DEMO_CUSTOMERS:
            create_customer(patch=dict(data))

    click.echo(f"PASS Seeded {created} item(s).")


@catalog_group.command('items')
@with_appcontext
def list_items():
    """List all items."""
    items = db.session.query(Item).order_by(Item.name.asc()).all()

    if not items:
        click.echo("No items found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<30} {'Unit':<8} {'Total'}")
    click.echo("="*60)

    for item in items:
        click.echo(f"{item.id:<5} {item.name:<30} {item.unit:<8} {item.total_quantity}")

    click.echo("="*60 + "\n")


@click.group('availability')
def availability_group():
    """Availability queries."""


@availability_group.command('day')
@click.option('--date', 'day_raw', required=True, help='Day as YYYY-MM-DD')
@with_appcontext
def day_command(day_raw):
    """Show total / reserved / remaining per item for one day."""
    from .services.availability_service import day_summary

    try:
        day = parse_calendar_date(day_raw)
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--date")

    click.echo(f"\nAvailability for {to_ymd(day)}")
    click.echo(f"{'Item':<30} {'Total':>7} {'Reserved':>9} {'Remaining':>10}")
    for row in day_summary(day):
        click.echo(f"{row['name']:<30} {row['total']:>7} {row['reserved']:>9} {row['remaining']:>10}")


@availability_group.command('check')
@click.option('--item-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--start', required=True, help='YYYY-MM-DD (inclusive)')
@click.option('--end', required=True, help='YYYY-MM-DD (inclusive)')
@click.option('--exclude-reservation-id', type=int, default=None)
@with_appcontext
def check_command(item_id, quantity, start, end, exclude_reservation_id):
    """Check whether an item can cover a quantity over a date range."""
    from .services.availability_service import check_availability

    try:
        start_d, end_d = parse_date_range(start, end)
        result = check_availability(item_id, quantity, start_d, end_d, exclude_reservation_id)
    except ValidationError as e:
        raise click.UsageError(str(e))
    except NotFoundError as e:
        raise click.ClickException(str(e))

    if result.ok:
        click.echo(f"PASS {quantity} available every day {to_ymd(start_d)}..{to_ymd(end_d)}")
        return

    v = result.violation
    click.echo(
        f"FAIL {v.item_name} on {to_ymd(v.day)}: requested {v.requested}, "
        f"available {v.available} (reserved {v.reserved} of {v.total})"
    )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(availability_group)
