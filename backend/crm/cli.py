# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/crm/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to crm (PowerShell: $env:FLASK_APP="crm").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init --username ceo --email ceo@crm.local --name "대표" --password "Password123"
#   Idempotent: creates tables, seeds the default permission matrix, creates the first CEO account.
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --username kim --email kim@crm.local --name "김직원" --role EMPLOYEE
#   Create an account (prompts for missing options).
#
# Permission inspection:
# - python -m flask perms list [--role HEAD]
#   Show the permission table (optionally for one role).
# - python -m flask perms seed
#   Insert any missing default permission rows.

import click
from flask.cli import with_appcontext

from .errors import CrmError
from .extensions import db
from .models import Permission, User
from .permissions import Role
from .services import permission_service
from .services.auth_service import create_user

ROLE_CHOICES = [r.value for r in Role]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--username', default='ceo', show_default=True, help='First CEO username')
@click.option('--email', default='ceo@crm.local', show_default=True, help='First CEO email')
@click.option('--name', default='대표', show_default=True, help='First CEO display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='First CEO password')
@with_appcontext
def init_system(username, email, name, password):
    """
    Create tables, seed permissions and create the first CEO account.

    Safe to re-run: existing rows are left alone.
    """
    click.echo("START Initializing CRM...")

    db.create_all()
    click.echo("PASS Tables ready")

    created = permission_service.seed_default_permissions()
    click.echo(f"PASS Permission rows added: {created}")

    if db.session.query(User).filter_by(role=Role.CEO.value).first():
        click.echo("PASS CEO account already exists")
        return

    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            name=name,
            role=Role.CEO,
        )
        db.session.commit()
        click.echo(f"PASS Created CEO account: {user.username} (ID: {user.id})")
    except CrmError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLE_CHOICES), default=Role.EMPLOYEE.value, show_default=True)
@click.option('--department', default=None, help='Department (HEAD scope)')
@with_appcontext
def create_user_cli(username, email, name, password, role, department):
    """
    Create a staff account.

    Password must be at least 8 characters with a letter and a digit.
    """
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            name=name,
            role=role,
            department=department,
        )
        db.session.commit()
        click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")
    except CrmError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with role and active status."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<12} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<12} {active_str}")

    click.echo(f"\n Total: {len(users)} users\n")


@click.group('perms')
def perms_group():
    """Permission inspection and repair commands."""


@perms_group.command('list')
@click.option('--role', type=click.Choice(ROLE_CHOICES), help='Filter by role')
@with_appcontext
def list_permissions_cli(role):
    """List the permission table, optionally for one role."""
    query = db.session.query(Permission)
    if role:
        query = query.filter_by(role=role)
    rows = query.order_by(Permission.role, Permission.resource, Permission.action).all()

    if not rows:
        click.echo("No permission rows. Role fallback is in effect; run `flask perms seed`.")
        return

    click.echo(f"\n{'Role':<12} {'Resource':<12} {'Action':<10} {'Allowed'}")
    click.echo("-"*50)
    for row in rows:
        click.echo(f"{row.role:<12} {row.resource:<12} {row.action:<10} {'Yes' if row.is_allowed else 'No'}")
    click.echo(f"\n Total: {len(rows)} rows\n")


@perms_group.command('seed')
@with_appcontext
def seed_permissions_cli():
    """Insert any missing default permission rows."""
    created = permission_service.seed_default_permissions()
    click.echo(f"PASS Permission rows added: {created}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
