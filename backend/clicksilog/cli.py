# Overview: Flask CLI command groups for bootstrap, discount setup, and scheduled maintenance.

# backend/clicksilog/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create tables and the default admin, cashier, and kitchen users (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username kitchen2 --role kitchen
#
# Discounts:
# - python -m flask discounts list
# - python -m flask discounts create --code SAVE10 --type percentage --value 10 --max-discount 100
#
# Payments:
# - python -m flask payments set-password
#   Set the cashier cash-confirmation password (prompts, never echoed).
#
# Maintenance (schedule with cron):
# - python -m flask maintenance cleanup-orders [--retention-days 30] [--limit 100]
#   Daily: delete completed orders older than the retention window.
# - python -m flask maintenance expire-payments [--limit 50]
#   Every 5 minutes: expire pending payments past their QR expiry.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Discount, User
from .models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_KITCHEN, VALID_ROLES
from .services import discount_service, maintenance_service, payment_security_service
from .services.discount_service import VALID_DISCOUNT_TYPES, DiscountError
from .services.payment_security_service import PaymentSecurityError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables and default staff users.

    Safe to run repeatedly: existing users are left alone.
    """
    db.create_all()

    created = 0
    for username, role in (("admin", ROLE_ADMIN), ("cashier", ROLE_CASHIER), ("kitchen", ROLE_KITCHEN)):
        if db.session.query(User).filter_by(username=username).first():
            continue
        db.session.add(User(username=username, display_name=username.title(), role=role))
        created += 1
    db.session.commit()

    click.echo(f"PASS Schema ready; created {created} default user(s).")
    for user in db.session.query(User).order_by(User.username):
        click.echo(f"   {user.username:<10} {user.role:<8} id={user.id}")


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


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users_cli():
    users = db.session.query(User).order_by(User.username).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id}  {user.username:<16} {user.role:<8} {status}")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--display-name', default=None, help='Display name')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, display_name, role):
    """Create a user; the printed id is what clients send as userId."""
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User {username} already exists")
        return
    user = User(username=username, display_name=display_name, role=role)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {username} with role '{role}' (id={user.id})")


@click.group('discounts')
def discounts_group():
    """Discount code commands."""


@discounts_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include inactive and expired codes')
@with_appcontext
def list_discounts_cli(show_all):
    if show_all:
        discounts = db.session.query(Discount).order_by(Discount.code).all()
    else:
        discounts = discount_service.list_active_discounts()
    if not discounts:
        click.echo("No discounts found.")
        return
    for d in discounts:
        flag = "active" if d.active else "inactive"
        click.echo(f"{d.code:<12} {d.type:<10} {d.value:>8} {flag}  {d.name or ''}")


@discounts_group.command('create')
@click.option('--code', required=True)
@click.option('--name', default=None)
@click.option('--type', 'discount_type', type=click.Choice(list(VALID_DISCOUNT_TYPES)), required=True)
@click.option('--value', type=str, required=True, help='Percent or pesos')
@click.option('--min-order', type=str, default=None)
@click.option('--max-discount', type=str, default=None)
@click.option('--valid-from', default=None, help='ISO-8601')
@click.option('--valid-until', default=None, help='ISO-8601')
@with_appcontext
def create_discount_cli(code, name, discount_type, value, min_order, max_discount, valid_from, valid_until):
    data = {"code": code, "name": name, "type": discount_type, "value": value, "active": True}
    for key, raw in (("minOrder", min_order), ("maxDiscount", max_discount),
                     ("validFrom", valid_from), ("validUntil", valid_until)):
        if raw is not None:
            data[key] = raw
    try:
        discount = discount_service.create_discount(data)
    except DiscountError as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created discount {discount.code}")


@click.group('payments')
def payments_group():
    """Payment configuration commands."""


@payments_group.command('set-password')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Confirmation password')
@with_appcontext
def set_payment_password_cli(password):
    """Set the cashier cash-confirmation password (stored as a bcrypt hash)."""
    try:
        payment_security_service.set_confirmation_password(password)
    except PaymentSecurityError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo("PASS Payment confirmation password updated")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-orders')
@click.option('--retention-days', type=int, default=None, help='Default: ORDER_RETENTION_DAYS (30)')
@click.option('--limit', type=int, default=None, help='Default: ORDER_CLEANUP_LIMIT (100)')
@with_appcontext
def cleanup_orders_cli(retention_days, limit):
    """Delete completed orders older than the retention window."""
    retention_days = retention_days or current_app.config["ORDER_RETENTION_DAYS"]
    limit = limit or current_app.config["ORDER_CLEANUP_LIMIT"]
    deleted = maintenance_service.cleanup_completed_orders(retention_days=retention_days, limit=limit)
    click.echo(f"Deleted {deleted} completed orders older than {retention_days} days.")


@maintenance_group.command('expire-payments')
@click.option('--limit', type=int, default=None, help='Default: PAYMENT_EXPIRY_BATCH_LIMIT (50)')
@with_appcontext
def expire_payments_cli(limit):
    """Expire pending payments whose QR code has lapsed."""
    limit = limit or current_app.config["PAYMENT_EXPIRY_BATCH_LIMIT"]
    expired = maintenance_service.expire_stale_payments(limit=limit)
    click.echo(f"Expired {expired} pending payments.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(discounts_group)
    app.cli.add_command(payments_group)
    app.cli.add_command(maintenance_group)
