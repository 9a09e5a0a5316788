# Overview: Flask CLI command groups for bootstrap, user administration, and item code maintenance.

# backend/jewelbox/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-reference
#   Upsert the standard branches, categories and the fallback supplier.
# - python -m flask system seed-demo
#   Roles + demo admin (admin@example.com / admin123, legacy hash) + two items.
#
# Users:
# - python -m flask users list
# - python -m flask users create --email a@b.c --name "Ana" --password "secret1" --role Manager
# - python -m flask users set-password --email a@b.c --password "newsecret"
# - python -m flask users show --email a@b.c
#   Print account state and which hash format is stored.
#
# Items:
# - python -m flask items next-seq --branch HPI --category rng [--count 5]
# - python -m flask items backfill
#   Assign codes to items missing one (safe to re-run).

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import JewelboxError
from .extensions import db
from .models import Branch, Category, Item, Role, User
from .services import reference_service
from .services.auth_service import (
    create_default_roles,
    create_user,
    detect_hash_format,
    legacy_digest,
    set_password,
)
from .services.sequence_service import get_allocator


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@system_group.command('seed-reference')
@with_appcontext
def seed_reference():
    """Upsert standard branches, categories and the fallback supplier."""
    counts = reference_service.seed_reference_data()
    click.echo(
        f"PASS Reference data: {counts['branches']} branches, "
        f"{counts['categories']} categories, {counts['suppliers']} suppliers"
    )


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Demo data: roles, an admin whose password is stored in the legacy
    SHA-256 format (upgraded on first login), and two uncoded items.
    """
    roles = create_default_roles()
    click.echo(f"PASS Roles: {', '.join(r.name for r in roles)}")

    owner = db.session.query(Role).filter_by(name="Owner").first()
    if not db.session.query(User).filter_by(email="admin@example.com").first():
        db.session.add(User(
            email="admin@example.com",
            display_name="Admin",
            password_hash=legacy_digest("admin123"),
            role_id=owner.id,
        ))
        click.echo("PASS Created admin@example.com / admin123 (legacy hash)")
    else:
        click.echo("WARN  admin@example.com already exists, skipping...")

    reference_service.seed_reference_data()
    branch = db.session.query(Branch).filter_by(code="HPI").first()
    if not db.session.query(Item).count():
        db.session.add_all([
            Item(title="14K Gold Ring", metal="Au", karat="14K", weight_g=5.2,
                 condition="NEW", status="READY", branch_id=branch.id),
            Item(title="18K Necklace", metal="Au", karat="18K", weight_g=12.0,
                 condition="NEW", status="READY", branch_id=branch.id),
        ])
        click.echo("PASS Created 2 demo items without codes (run: BACKFILL_DEFAULT_CATEGORY_CODE=rng flask items backfill)")
    db.session.commit()


@click.group('users')
def users_group():
    """User administration."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    click.echo(f"{'ID':<5} {'Email':<32} {'Role':<10} {'Active':<8} {'Failed':<7} {'Hash'}")
    for u in users:
        fmt = type(detect_hash_format(u.password_hash)).__name__
        click.echo(
            f"{u.id:<5} {u.email:<32} {(u.role.name if u.role else '-'):<10} "
            f"{str(u.is_active):<8} {u.failed_logins:<7} {fmt}"
        )


@users_group.command('create')
@click.option('--email', prompt=True)
@click.option('--name', 'display_name', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', 'role_name', default='Manager', show_default=True)
@with_appcontext
def create_user_command(email, display_name, password, role_name):
    """Create a user with a bcrypt password hash."""
    try:
        user = create_user(email, display_name, password, role_name=role_name)
    except JewelboxError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created user {user.email} (ID: {user.id}) with role '{role_name}'")


@users_group.command('set-password')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def set_password_command(email, password):
    """Reset a password; clears failed logins and re-activates the account."""
    try:
        user = set_password(email, password)
    except JewelboxError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Password updated for {user.email}")


@users_group.command('show')
@click.option('--email', required=True)
@with_appcontext
def show_user(email):
    """Print account state, including which hash format is stored."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo("FAIL User not found")
        return
    data = user.to_dict()
    data["hash_format"] = type(detect_hash_format(user.password_hash)).__name__
    click.echo(json.dumps(data, indent=2))


@click.group('items')
def items_group():
    """Item code maintenance."""


@items_group.command('next-seq')
@click.option('--branch', 'branch_code', required=True, help='Branch code, e.g. HPI')
@click.option('--category', 'category_code', required=True, help='Category code, e.g. rng')
@click.option('--count', default=1, show_default=True, type=int)
@with_appcontext
def next_seq(branch_code, category_code, count):
    """Show the codes the next batch would receive (nothing is reserved)."""
    branch = db.session.query(Branch).filter_by(code=branch_code).first()
    category = db.session.query(Category).filter_by(code=category_code).first()
    if not branch or not category:
        click.echo("FAIL Unknown branch or category code")
        return
    try:
        preview = get_allocator().preview(branch.id, category.id, count)
    except JewelboxError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(", ".join(p.item_code for p in preview))


@items_group.command('backfill')
@with_appcontext
def backfill():
    """Assign codes to every item still missing one, oldest first."""
    try:
        report = get_allocator().backfill_all()
    except JewelboxError as e:
        current_app.logger.warning("Backfill stopped: %s", e)
        click.echo(f"FAIL {e}")
        return
    for item_id, allocation in report.assigned.items():
        click.echo(f"  item {item_id} -> {allocation.item_code}")
    click.echo(f"PASS Backfill complete: {len(report.assigned)} assigned")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(items_group)
