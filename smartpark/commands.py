import sys

import click
from flask import current_app

from app_factory import db


@click.command("init-data")
@click.option("--slots", default=50, show_default=True, help="Slots to create when none exist.")
def init_data_command(slots):
    """Create tables, the admin user and the initial parking slots."""
    from smartpark.models import ParkingSlot
    from smartpark.routes import seed_admin

    db.create_all()

    if seed_admin() is not None:
        click.echo(f"Admin user created (username: {current_app.config['ADMIN_USERNAME']})")
    else:
        click.echo("Admin user already exists")

    existing = ParkingSlot.query.count()
    if existing:
        click.echo(f"{existing} parking slots already exist")
        return

    half = (slots + 1) // 2
    for i in range(1, slots + 1):
        db.session.add(ParkingSlot(
            slot_number=f"A{i:02d}",
            location="Ground Floor" if i <= half else "First Floor",
        ))
    db.session.commit()
    click.echo(f"{slots} parking slots created")


@click.command("check-slots")
def check_slots_command():
    """Report slots whose status disagrees with their active parking records."""
    from smartpark.services import find_occupancy_mismatches
    from smartpark.store import EntityStore

    mismatches = find_occupancy_mismatches(EntityStore(db.session))
    if not mismatches:
        click.echo("All slots consistent")
        return

    for slot, active in mismatches:
        click.echo(f"Slot {slot.slot_number}: status={slot.status}, active records={active}")
    sys.exit(1)


def register_commands(app):
    app.cli.add_command(init_data_command)
    app.cli.add_command(check_slots_command)
