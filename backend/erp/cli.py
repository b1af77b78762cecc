# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/erp/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to the package (PowerShell: $env:FLASK_APP="erp").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, the admin user and the default chart of accounts.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users and permissions:
# - python -m flask users list
# - python -m flask users create --username kim --password "Password123!" --role staff
# - python -m flask users grant kim vouchers read write
#   Replace kim's grant on "vouchers" with exactly read+write.
# - python -m flask users activity kim --limit 20
#
# Accounting:
# - python -m flask accounts seed
#   Insert any missing default accounts.
#
# Inventory:
# - python -m flask inventory show ITEM-001 --limit 10
#   On-hand quantity and most recent history entries for one item.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import PERMISSION_ACTIONS, USER_ROLES
from .services import account_service, activity_service, catalog_service, inventory_service, permission_service
from .services.auth_service import create_user, PasswordValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-username', default='admin', show_default=True, help='Admin username')
@click.option('--admin-password', default='Password123!', show_default=True, help='Admin password')
@with_appcontext
def init_system(admin_username, admin_password):
    """
    Initialize the ERP database: tables, admin user, default accounts.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing ERP system...")

    db.create_all()
    click.echo("PASS Tables created")

    existing = db.session.query(User).filter_by(username=admin_username).first()
    if existing:
        click.echo(f"WARN  User '{admin_username}' already exists, skipping...")
    else:
        try:
            create_user(admin_username, admin_password, name="Administrator", role="admin")
            click.echo(f"PASS Created admin user: {admin_username}")
        except (PasswordValidationError, ValueError) as e:
            click.echo(f"FAIL Failed to create admin user '{admin_username}': {e}")

    added = account_service.seed_default_accounts()
    click.echo(f"PASS Default accounts added: {added}")

    click.echo("\nDONE ERP system initialized.")


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
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--name', help='Display name (defaults to username)')
@click.option('--email', help='Email address')
@click.option('--role', type=click.Choice(list(USER_ROLES)), default='staff', show_default=True, help='Role')
@with_appcontext
def create_user_command(username, password, name, email, role):
    """Create a user."""
    try:
        user = create_user(username, password, name=name, email=email, role=role)
    except (PasswordValidationError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their role and permission grants."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<10} {'Active':<8} {'Grants'}")
    click.echo("="*90)

    for user in users:
        grants = []
        for perm in permission_service.get_user_permissions(user.id):
            actions = "".join(a[0] for a in PERMISSION_ACTIONS if perm.allows(a))
            grants.append(f"{perm.resource}:{actions or '-'}")
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<10} {active_str:<8} {', '.join(grants) or 'none'}")

    click.echo("="*90 + "\n")


@users_group.command('grant')
@click.argument('username')
@click.argument('resource', type=click.Choice(list(permission_service.RESOURCES)))
@click.argument('actions', nargs=-1, type=click.Choice(list(PERMISSION_ACTIONS)))
@with_appcontext
def grant_permission(username, resource, actions):
    """Set USERNAME's grant on RESOURCE to exactly ACTIONS (none revokes)."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        raise click.ClickException(f"User '{username}' not found")

    row = permission_service.set_user_permission(user.id, resource, actions)
    granted = [a for a in PERMISSION_ACTIONS if row.allows(a)]
    click.echo(f"PASS {username} on {resource}: {', '.join(granted) or 'no access'}")


@users_group.command('activity')
@click.argument('username')
@click.option('--limit', type=int, default=20, show_default=True, help='Entries to show')
@with_appcontext
def show_activity(username, limit):
    """Show USERNAME's most recent activity log entries."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        raise click.ClickException(f"User '{username}' not found")

    activities = activity_service.list_user_activities(user_id=user.id, limit=limit)
    if not activities:
        click.echo("No activity.")
        return

    for a in activities:
        when = a.created_at.strftime("%Y-%m-%d %H:%M:%S") if a.created_at else ""
        click.echo(f"{when:<20} {a.action:<8} {a.target or '':<30} {a.description or ''}")


@click.group('accounts')
def accounts_group():
    """Chart of accounts commands."""


@accounts_group.command('seed')
@with_appcontext
def seed_accounts():
    """Insert any missing default accounts."""
    added = account_service.seed_default_accounts()
    click.echo(f"PASS Default accounts added: {added}")


@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('show')
@click.argument('item_code')
@click.option('--limit', type=int, default=10, show_default=True, help='History entries to show')
@with_appcontext
def show_inventory(item_code, limit):
    """Show on-hand quantity and recent history for ITEM_CODE."""
    item = catalog_service.get_item_by_code(item_code)
    if not item:
        raise click.ClickException(f"Item '{item_code}' not found")

    quantity = inventory_service.get_quantity(item.id)
    click.echo(f"{item.code} {item.name}: {quantity} {item.unit or ''}".rstrip())

    history = inventory_service.get_history(item.id, limit=limit)
    if not history:
        click.echo("No history.")
        return

    click.echo(f"{'When':<22} {'Type':<12} {'Before':>8} {'Change':>8} {'After':>8}  Notes")
    for h in history:
        when = h.created_at.strftime("%Y-%m-%d %H:%M:%S") if h.created_at else ""
        click.echo(
            f"{when:<22} {h.transaction_type:<12} {h.quantity_before:>8} {h.change:>+8} {h.quantity_after:>8}  {h.notes or ''}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(accounts_group)
    app.cli.add_command(inventory_group)
