# Overview: Flask CLI command groups for bootstrap, permission administration, and maintenance.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to cost_compass (PowerShell: $env:FLASK_APP="cost_compass").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--email admin@costcompass.local] [--password "Password123!"]
#   Idempotent bootstrap: permission catalog, default role matrix, default
#   compliance policies, first super admin.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system cleanup-sessions
#   Purge expired or revoked sessions older than 30 days.
#
# Permission inspection/administration:
# - python -m flask perms list [--role supervisor] [--category reporting]
#   List permissions (optionally the effective set of one role, or one category).
# - python -m flask perms check user@example.com reports.export
#   Check whether a user has a permission.
# - python -m flask perms grant supervisor reports.export [--actor admin@costcompass.local]
#   Assign a permission to a role (acts as the given super admin, default: first one found).
# - python -m flask perms revoke supervisor reports.export
#   Remove a permission from a role.
#
# Property access:
# - python -m flask access grant user@example.com 3 data_entry [--expires-at 2026-12-31T00:00Z]
# - python -m flask access revoke user@example.com 3
# - python -m flask access list [--user user@example.com] [--property 3]
# - python -m flask access cleanup-expired
#
# Maintenance:
# - python -m flask cache stats
# - python -m flask compliance scan
# - python -m flask delegations cleanup-expired

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Permission, PropertyAccess, User
from .permissions import PERMISSION_CATEGORIES, Role, is_valid_role
from .services import (
    auth_service,
    compliance_service,
    delegation_service,
    permission_service,
    property_access_service,
    role_permission_service,
    session_service,
)
from .services.auth_service import PasswordValidationError
from .services.cache_invalidation import get_cache_health
from .services.permission_service import PermissionDeniedError
from .validation import parse_optional_datetime


DEFAULT_ADMIN_EMAIL = "admin@costcompass.local"
DEFAULT_ADMIN_PASSWORD = "Password123!"


def _find_user(email: str) -> User | None:
    return db.session.query(User).filter(User.email == email.strip().lower()).first()


def _resolve_actor(email: str | None) -> User | None:
    """The named user, or the first active super admin when no email is given."""
    if email:
        return _find_user(email)
    return (
        db.session.query(User)
        .filter(User.role == Role.SUPER_ADMIN, User.is_active.is_(True))
        .order_by(User.id)
        .first()
    )


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--email', default=DEFAULT_ADMIN_EMAIL, show_default=True, help='First super admin email')
@click.option('--password', default=DEFAULT_ADMIN_PASSWORD, help='First super admin password')
@with_appcontext
def init_system(email, password):
    """
    Initialize the permission system.

    Creates:
    - Permission rows for the whole catalog
    - Default RolePermission rows for every role except super_admin
    - Default compliance policies
    - A super admin account (skipped if one already exists)

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing Cost Compass permission system...")

    perm_count = permission_service.initialize_permissions()
    assignment_count = permission_service.assign_default_role_permissions()
    click.echo(f"PASS Created {perm_count} permissions, {assignment_count} role assignments")

    policy_count = compliance_service.ensure_default_policies()
    click.echo(f"PASS Created {policy_count} default compliance policies")

    existing = _resolve_actor(None)
    if existing:
        click.echo(f"WARN  Super admin '{existing.email}' already exists, skipping...")
        return

    try:
        user = auth_service.create_user(
            email,
            password,
            name="Administrator",
            role=Role.SUPER_ADMIN,
            bcrypt_rounds=current_app.config.get("BCRYPT_ROUNDS", auth_service.BCRYPT_ROUNDS),
        )
        click.echo(f"PASS Created super admin: {user.email}")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        return
    except ValueError as e:
        click.echo(f"FAIL Failed to create super admin: {str(e)}")
        return

    click.echo("\nSECURITY WARNING: change the super admin password immediately in production!")


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


@system_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Purge expired or revoked bearer sessions older than 30 days."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} old sessions.")


# =============================================================================
# PERMISSIONS
# =============================================================================

@click.group('perms')
def perms_group():
    """Permission inspection and role matrix administration."""


@perms_group.command('list')
@click.option('--role', help='Show the effective set of one role')
@click.option('--category', help='Filter by category')
@with_appcontext
def list_permissions_cli(role, category):
    """List permissions, optionally for one role or one category."""
    if role and not is_valid_role(role):
        click.echo(f"FAIL Role '{role}' not found")
        return
    if category and category not in PERMISSION_CATEGORIES:
        click.echo(f"FAIL Category '{category}' not found")
        return

    query = db.session.query(Permission)
    if category:
        query = query.filter(Permission.category == category)
    perms = query.order_by(Permission.category, Permission.name).all()

    if role:
        role_set = permission_service.get_role_permission_set(role)
        perms = [perm for perm in perms if perm.name in role_set]
        title = f"Permissions for role: {role.upper()}"
    elif category:
        title = f"Permissions in category: {category}"
    else:
        title = "All Permissions"

    click.echo(f"\n{'='*80}")
    click.echo(title)
    click.echo(f"{'='*80}\n")

    current_category = None
    for perm in perms:
        if perm.category != current_category:
            if current_category:
                click.echo("")
            click.echo(f"CATEGORY {perm.category}")
            click.echo("-"*80)
            current_category = perm.category
        click.echo(f"  {perm.name:<34} {perm.display_name}")

    click.echo(f"\n Total: {len(perms)} permissions\n")


@perms_group.command('check')
@click.argument('email')
@click.argument('permission_name')
@with_appcontext
def check_permission_cli(email, permission_name):
    """Check if a user has a specific permission."""
    user = _find_user(email)
    if not user:
        click.echo(f"FAIL User '{email}' not found")
        return

    if permission_service.has_permission(user, permission_name):
        click.echo(f"PASS User '{email}' HAS permission '{permission_name}'")
    else:
        click.echo(f"FAIL User '{email}' DOES NOT HAVE permission '{permission_name}'")

    click.echo(f"\nUser role: {user.role}")
    click.echo(f"Total permissions: {len(permission_service.get_user_permissions(user))}")


@perms_group.command('grant')
@click.argument('role_name')
@click.argument('permission_name')
@click.option('--actor', 'actor_email', help='Super admin performing the change')
@with_appcontext
def grant_permission_cli(role_name, permission_name, actor_email):
    """Assign a permission to a role."""
    actor = _resolve_actor(actor_email)
    if not actor:
        click.echo("FAIL No super admin found. Run 'python -m flask system init' first.")
        return
    try:
        role_permission_service.assign_permission_to_role(
            actor_id=actor.id, role=role_name, permission=permission_name
        )
        click.echo(f"PASS Granted '{permission_name}' to role '{role_name}'")
    except (ValueError, PermissionDeniedError) as e:
        click.echo(f"FAIL Error: {str(e)}")


@perms_group.command('revoke')
@click.argument('role_name')
@click.argument('permission_name')
@click.option('--actor', 'actor_email', help='Super admin performing the change')
@with_appcontext
def revoke_permission_cli(role_name, permission_name, actor_email):
    """Remove a permission from a role."""
    actor = _resolve_actor(actor_email)
    if not actor:
        click.echo("FAIL No super admin found. Run 'python -m flask system init' first.")
        return
    try:
        role_permission_service.remove_permission_from_role(
            actor_id=actor.id, role=role_name, permission=permission_name
        )
        click.echo(f"PASS Revoked '{permission_name}' from role '{role_name}'")
    except (ValueError, PermissionDeniedError) as e:
        click.echo(f"FAIL Error: {str(e)}")


# =============================================================================
# PROPERTY ACCESS
# =============================================================================

@click.group('access')
def access_group():
    """Per-property access administration."""


@access_group.command('grant')
@click.argument('email')
@click.argument('property_id', type=int)
@click.argument('access_level')
@click.option('--expires-at', help='ISO-8601 expiry (UTC)')
@click.option('--actor', 'actor_email', help='User performing the grant')
@with_appcontext
def grant_access_cli(email, property_id, access_level, expires_at, actor_email):
    """Grant (or replace) a user's access level on a property."""
    user = _find_user(email)
    actor = _resolve_actor(actor_email)
    if not user:
        click.echo(f"FAIL User '{email}' not found")
        return
    if not actor:
        click.echo("FAIL No acting user found. Run 'python -m flask system init' first.")
        return
    try:
        property_access_service.grant_property_access(
            actor_id=actor.id,
            user_id=user.id,
            property_id=property_id,
            access_level=access_level,
            expires_at=parse_optional_datetime(expires_at, "expires_at"),
        )
        click.echo(f"PASS Granted '{access_level}' on property {property_id} to '{email}'")
    except (ValueError, PermissionDeniedError) as e:
        click.echo(f"FAIL Error: {str(e)}")


@access_group.command('revoke')
@click.argument('email')
@click.argument('property_id', type=int)
@click.option('--actor', 'actor_email', help='User performing the revoke')
@with_appcontext
def revoke_access_cli(email, property_id, actor_email):
    """Revoke a user's access to a property."""
    user = _find_user(email)
    actor = _resolve_actor(actor_email)
    if not user:
        click.echo(f"FAIL User '{email}' not found")
        return
    if not actor:
        click.echo("FAIL No acting user found. Run 'python -m flask system init' first.")
        return
    try:
        property_access_service.revoke_property_access(actor_id=actor.id, user_id=user.id, property_id=property_id)
        click.echo(f"PASS Revoked access to property {property_id} from '{email}'")
    except (ValueError, PermissionDeniedError) as e:
        click.echo(f"FAIL Error: {str(e)}")


@access_group.command('list')
@click.option('--user', 'email', help='Only this user')
@click.option('--property', 'property_id', type=int, help='Only this property')
@with_appcontext
def list_access_cli(email, property_id):
    """List active (unexpired) property access grants."""
    if email:
        user = _find_user(email)
        if not user:
            click.echo(f"FAIL User '{email}' not found")
            return
        rows = property_access_service.list_property_access_for_user(user.id)
        if property_id is not None:
            rows = [row for row in rows if row.property_id == property_id]
    elif property_id is not None:
        rows = property_access_service.list_property_access_for_property(property_id)
    else:
        rows = (
            db.session.query(PropertyAccess)
            .filter(property_access_service.active_access_filter())
            .order_by(PropertyAccess.property_id, PropertyAccess.user_id)
            .all()
        )

    click.echo(f"{'Property':<10} {'User':<36} {'Level':<14} {'Expires'}")
    click.echo("-"*80)
    for row in rows:
        expires = row.expires_at.isoformat() if row.expires_at else "-"
        click.echo(f"{row.property_id:<10} {row.user.email:<36} {row.access_level:<14} {expires}")
    click.echo(f"\n Total: {len(rows)} grants\n")


@access_group.command('cleanup-expired')
@with_appcontext
def cleanup_expired_access_cli():
    """Delete property access rows past expiry."""
    deleted = property_access_service.cleanup_expired_property_access()
    click.echo(f"Deleted {deleted} expired property access grants.")


# =============================================================================
# MAINTENANCE
# =============================================================================

@click.group('cache')
def cache_group():
    """Permission cache inspection (this process only)."""


@cache_group.command('stats')
@with_appcontext
def cache_stats_cli():
    health = get_cache_health()
    click.echo(f"Health: {health['health']}")
    for key, value in health["stats"].items():
        click.echo(f"  {key:<24} {value}")
    for recommendation in health["recommendations"]:
        click.echo(f"  - {recommendation}")


@click.group('compliance')
def compliance_group():
    """Compliance scanning."""


@compliance_group.command('scan')
@with_appcontext
def compliance_scan_cli():
    """Evaluate every active policy against every active user."""
    result = compliance_service.perform_compliance_scan()
    click.echo(f"Scanned users:    {result['scanned_users']}")
    click.echo(f"Violations found: {result['violations_found']}")
    click.echo(f"Critical issues:  {result['critical_issues']}")
    for recommendation in result["recommendations"]:
        click.echo(f"  - {recommendation}")


@click.group('delegations')
def delegations_group():
    """Permission delegation maintenance."""


@delegations_group.command('cleanup-expired')
@with_appcontext
def cleanup_expired_delegations_cli():
    """Deactivate delegations past expiry."""
    count = delegation_service.cleanup_expired_delegations()
    click.echo(f"Deactivated {count} expired delegations.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(access_group)
    app.cli.add_command(cache_group)
    app.cli.add_command(compliance_group)
    app.cli.add_command(delegations_group)
