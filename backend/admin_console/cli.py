# Overview: Flask CLI command group for organization inspection and seeding.

# backend/admin_console/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Organization management:
# - python -m flask orgs list
#   List all organizations with status and subscription health.
# - python -m flask orgs create --name "Acme Traders" --owner-name "Asha Rai" --owner-email asha@acme.test --phone 9800000000
#   Create an organization with its Owner and a 6-month subscription.
# - python -m flask orgs expiring [--within 7]
#   List organizations whose subscription expires within N days or has expired.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Membership, Organization
from .services.membership_service import email_key
from .services.status_service import days_remaining, duration_delta, subscription_health
from .time_utils import utcnow
from .validation import (
    collect_errors,
    format_phone,
    format_tax_id_create,
    validate_email,
    validate_org_name,
    validate_person_name,
    validate_phone,
    validate_tax_id_create,
)


CREATE_RULES = {
    "name": validate_org_name,
    "owner_name": validate_person_name,
    "owner_email": validate_email,
    "phone": validate_phone,
    "tax_id": validate_tax_id_create,
}


def _owner(org: Organization):
    for member in org.memberships:
        if member.role == "Owner":
            return member
    return None


@click.group('orgs')
def orgs_group():
    """Organization management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.name).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    now = utcnow()
    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<34} {'Name':<25} {'Owner':<20} {'Status':<9} {'Expires':<11} {'Health'}")
    click.echo("="*100)

    for org in orgs:
        owner = _owner(org)
        health = subscription_health(org.subscription_end_date, now)
        status_str = "Active" if org.is_active else "Inactive"
        click.echo(
            f"{org.id:<34} {org.name[:25]:<25} {(owner.name if owner else '-')[:20]:<20} "
            f"{status_str:<9} {org.subscription_end_date.isoformat():<11} "
            f"{health.bucket.value} ({health.days_remaining}d)"
        )

    click.echo("="*100 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--owner-name', required=True, help='Owner full name')
@click.option('--owner-email', required=True, help='Owner email')
@click.option('--phone', required=True, help='Organization phone (10 digits)')
@click.option('--address', default="", help='Organization address')
@click.option('--tax-id', default="", help='PAN/VAT number')
@with_appcontext
def create_org_cli(name, owner_name, owner_email, phone, address, tax_id):
    """Create a new organization with its Owner."""
    errors = collect_errors(
        {"name": name, "owner_name": owner_name, "owner_email": owner_email, "phone": phone, "tax_id": tax_id},
        CREATE_RULES,
    )
    if errors:
        for field_name, message in errors.items():
            click.echo(f"FAIL {field_name}: {message}")
        return

    today = utcnow().date()
    org = Organization(
        name=name.strip(),
        address=address.strip(),
        phone=format_phone(phone),
        tax_id=format_tax_id_create(tax_id),
        is_active=True,
        subscription_status="Active",
        subscription_end_date=today + duration_delta("6months"),
        subscription_type="6months",
    )
    db.session.add(org)
    db.session.flush()

    owner = Membership(
        org_id=org.id,
        name=owner_name.strip(),
        email=owner_email.strip(),
        email_key=email_key(owner_email),
        role="Owner",
        email_verified=False,
        is_active=True,
    )
    db.session.add(owner)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Owner: {owner.name})")


@orgs_group.command('expiring')
@click.option('--within', type=int, default=7, show_default=True, help='Days until expiry')
@with_appcontext
def expiring_orgs(within):
    """List organizations expiring within N days, or already expired."""
    now = utcnow()
    orgs = db.session.query(Organization).order_by(Organization.subscription_end_date).all()
    matching = [org for org in orgs if days_remaining(org.subscription_end_date, now) <= within]

    if not matching:
        click.echo(f"No subscriptions expire within {within} days.")
        return

    for org in matching:
        days = days_remaining(org.subscription_end_date, now)
        label = "EXPIRED" if days < 0 else f"{days}d left"
        click.echo(f"{org.name:<30} {org.subscription_end_date.isoformat():<11} {label}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(orgs_group)
