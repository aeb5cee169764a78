# Overview: Flask CLI command groups for bootstrap, settings, and ledger verification.

# backend/posengine/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (dev/test; use `flask db upgrade` for real databases).
#
# Users:
# - python -m flask users create --username alice --name "Alice" --role cashier
#   Create a staff user and print its API token.
#
# Settings:
# - python -m flask settings set tax_rate 14
#   Store a tax/loyalty setting.
# - python -m flask settings show
#   Print raw values and the resolved settings used for calculations.
#
# Register sessions:
# - python -m flask registers list --status open
#   List recent register sessions.
# - python -m flask registers verify [--session-id 5]
#   Re-derive expected cash from movements; exits 1 on drift.
#
# Loyalty:
# - python -m flask loyalty verify [--customer-id 3]
#   Compare stored loyalty balances with the ledger; exits 1 on mismatch.

import secrets

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Customer, RegisterSession, User
from .models.auth import ROLE_ADMIN, ROLE_CASHIER
from .services import loyalty_service, register_service, settings_service
from .services.settings_service import SETTING_KEYS, SettingsError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@click.group('users')
def users_group():
    """Staff user bootstrap."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--name', prompt=True, help='Display name')
@click.option('--role', type=click.Choice([ROLE_ADMIN, ROLE_CASHIER]), default=ROLE_CASHIER, show_default=True)
@with_appcontext
def create_user_cli(username, name, role):
    """Create a user and print a freshly generated API token."""
    if db.session.query(User).filter_by(username=username).first():
        raise click.ClickException(f"User '{username}' already exists")

    token = secrets.token_urlsafe(32)
    user = User(username=username, name=name, role=role, api_token=token, is_active=True)
    db.session.add(user)
    db.session.commit()

    click.echo(f"PASS Created user {user.id} ({username}, {role})")
    click.echo(f"API token: {token}")


@click.group('settings')
def settings_group():
    """Tax and loyalty settings."""


@settings_group.command('set')
@click.argument('key', type=click.Choice(SETTING_KEYS))
@click.argument('value')
@with_appcontext
def set_setting_cli(key, value):
    """Store KEY=VALUE."""
    try:
        settings_service.set_setting(key, value)
    except SettingsError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS {key} = {value}")


@settings_group.command('show')
@with_appcontext
def show_settings_cli():
    """Show stored values and the resolved settings."""
    click.echo("Stored:")
    for key in SETTING_KEYS:
        value = settings_service.get_setting(key)
        click.echo(f"  {key:<22} {value if value is not None else '(default)'}")

    resolved = settings_service.load_settings()
    click.echo("Resolved:")
    click.echo(f"  tax_enabled            {resolved.tax_enabled}")
    click.echo(f"  tax_rate_bps           {resolved.tax_rate_bps}")
    click.echo(f"  tax_mode               {resolved.tax_mode}")
    click.echo(f"  loyalty_enabled        {resolved.loyalty_enabled}")
    click.echo(f"  loyalty_earn_rate      {resolved.loyalty_earn_rate}")
    click.echo(f"  loyalty_redeem_value   {resolved.loyalty_redeem_value_cents} cents / 100 points")


@click.group('registers')
def registers_group():
    """Register session inspection."""


@registers_group.command('list')
@click.option('--status', type=click.Choice(['open', 'closed']), help='Filter by status')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_sessions_cli(status, limit):
    """List recent register sessions."""
    result = register_service.list_sessions(status=status, per_page=limit)
    sessions = result["items"]

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Cashier':<20} {'Status':<8} {'Float':>10} {'Expected':>10} {'Counted':>10} {'Variance':>10}  Opened")
    click.echo("="*100)

    for s in sessions:
        counted = s["counted_cash_cents"] if s["counted_cash_cents"] is not None else "-"
        variance = s["variance_cents"] if s["variance_cents"] is not None else "-"
        click.echo(
            f"{s['id']:<6} {(s['cashier_name'] or '-'):<20} {s['status']:<8} "
            f"{s['opening_float_cents']:>10} {s['expected_cash_cents']:>10} {counted:>10} {variance:>10}  {s['opened_at']}"
        )

    click.echo("="*100 + "\n")


@registers_group.command('verify')
@click.option('--session-id', type=int, help='Verify a single session (default: all)')
@with_appcontext
def verify_sessions_cli(session_id):
    """Re-derive expected cash from movements and report drift."""
    if session_id is not None:
        session_ids = [session_id]
    else:
        session_ids = [sid for (sid,) in db.session.query(RegisterSession.id).order_by(RegisterSession.id).all()]

    drifted = 0
    for sid in session_ids:
        try:
            result = register_service.reconcile_session(sid)
        except register_service.SessionNotFound as e:
            raise click.ClickException(str(e))
        if result["ok"]:
            click.echo(f"PASS session {sid}: {result['stored_expected_cash_cents']}")
        else:
            drifted += 1
            click.echo(
                f"FAIL session {sid}: stored {result['stored_expected_cash_cents']} "
                f"derived {result['derived_expected_cash_cents']} drift {result['drift_cents']}"
            )

    click.echo(f"{len(session_ids)} session(s) checked, {drifted} with drift.")
    if drifted:
        raise SystemExit(1)


@click.group('loyalty')
def loyalty_group():
    """Loyalty ledger inspection."""


@loyalty_group.command('verify')
@click.option('--customer-id', type=int, help='Verify a single customer (default: all)')
@with_appcontext
def verify_loyalty_cli(customer_id):
    """Compare each customer's stored points with the ledger sum."""
    if customer_id is not None:
        customer_ids = [customer_id]
    else:
        customer_ids = [cid for (cid,) in db.session.query(Customer.id).order_by(Customer.id).all()]

    mismatched = 0
    for cid in customer_ids:
        result = loyalty_service.verify_customer_balance(cid)
        if result["stored_points"] is None:
            raise click.ClickException(f"Customer {cid} not found")
        if result["ok"]:
            click.echo(f"PASS customer {cid}: {result['stored_points']} points")
        else:
            mismatched += 1
            click.echo(
                f"FAIL customer {cid}: stored {result['stored_points']} ledger {result['ledger_points']}"
            )

    click.echo(f"{len(customer_ids)} customer(s) checked, {mismatched} mismatched.")
    if mismatched:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(settings_group)
    app.cli.add_command(registers_group)
    app.cli.add_command(loyalty_group)
