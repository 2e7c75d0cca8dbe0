# salesflow/pricing/cli.py
"""``flask pricing`` commands for maintaining the pricing_items table."""

import logging

import click
from flask.cli import AppGroup

from salesflow import db
from salesflow.models import PricingItem
from salesflow.pricing.catalog import DEFAULT_ITEMS, SpreadsheetCatalog, parse_sheet_rows

logger = logging.getLogger(__name__)

pricing_cli = AppGroup('pricing', help='Pricing catalog commands.')

FIELDS = ('category', 'description', 'low_price', 'high_price', 'unit')


def seed_defaults() -> int:
    """Copy the built-in price list into an empty table; returns rows added."""
    if PricingItem.query.count():
        return 0
    for item in DEFAULT_ITEMS:
        db.session.add(PricingItem(name=item['name'], **{f: item[f] for f in FIELDS}))
    db.session.commit()
    return len(DEFAULT_ITEMS)


def import_sheet(catalog=None):
    """Upsert spreadsheet rows by name; returns ``(created, updated)``."""
    rows = (catalog or SpreadsheetCatalog()).rows()
    if not rows:
        raise click.ClickException('Pricing spreadsheet is not configured or empty')

    existing = {p.name.lower(): p for p in PricingItem.query.all()}
    created = updated = 0
    for item in parse_sheet_rows(rows):
        row = existing.get(item['name'].lower())
        if row is None:
            row = PricingItem(name=item['name'])
            db.session.add(row)
            existing[item['name'].lower()] = row
            created += 1
        else:
            updated += 1
        for f in FIELDS:
            setattr(row, f, item[f])
    db.session.commit()
    logger.info("imported pricing sheet: %d created, %d updated", created, updated)
    return created, updated


@pricing_cli.command('seed-defaults')
def seed_defaults_command():
    added = seed_defaults()
    if added:
        click.echo(f"Seeded {added} default pricing items")
    else:
        click.echo('pricing_items already populated; nothing to do')


@pricing_cli.command('import-sheet')
def import_sheet_command():
    created, updated = import_sheet()
    click.echo(f"Imported pricing sheet: {created} created, {updated} updated")
