# salesflow/pricing/catalog.py
"""Pricing catalog resolution.

Providers are tried in order.  Each returns a list of items or ``None`` to
say "nothing here, ask the next one"; the first list wins.  The built-in
defaults always answer, so resolution works with zero configuration.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from salesflow.errors import UpstreamFailure
from salesflow.models import PricingItem

logger = logging.getLogger(__name__)

DEFAULT_ITEMS = [
    {'id': 'default-1', 'name': 'Lawn Installation (per sq ft)', 'category': 'lawn',
     'description': 'New sod or seed installation', 'low_price': 2.50, 'high_price': 4.00, 'unit': 'sq ft'},
    {'id': 'default-2', 'name': 'Flower Bed Design (per sq ft)', 'category': 'planting',
     'description': 'Designed flower bed with plants', 'low_price': 8.00, 'high_price': 15.00, 'unit': 'sq ft'},
    {'id': 'default-3', 'name': 'Tree Planting (small)', 'category': 'trees',
     'description': 'Small ornamental tree installation', 'low_price': 150.00, 'high_price': 300.00, 'unit': 'each'},
    {'id': 'default-4', 'name': 'Tree Planting (large)', 'category': 'trees',
     'description': 'Large shade tree installation', 'low_price': 400.00, 'high_price': 800.00, 'unit': 'each'},
    {'id': 'default-5', 'name': 'Mulch Installation', 'category': 'maintenance',
     'description': 'Premium mulch spread', 'low_price': 3.50, 'high_price': 5.00, 'unit': 'sq ft'},
    {'id': 'default-6', 'name': 'Irrigation System (basic)', 'category': 'irrigation',
     'description': 'Basic sprinkler system installation', 'low_price': 2500.00, 'high_price': 4000.00, 'unit': 'system'},
    {'id': 'default-7', 'name': 'Hardscaping (walkway)', 'category': 'hardscape',
     'description': 'Stone or concrete walkway', 'low_price': 12.00, 'high_price': 25.00, 'unit': 'sq ft'},
    {'id': 'default-8', 'name': 'Landscape Lighting', 'category': 'lighting',
     'description': 'LED landscape lighting installation', 'low_price': 200.00, 'high_price': 400.00, 'unit': 'fixture'},
]


def _matches(item: dict, category: Optional[str]) -> bool:
    return not category or (item.get('category') or '').lower() == category.lower()


def _price(raw) -> float:
    try:
        return float(str(raw).replace('$', '').replace(',', '').strip())
    except (TypeError, ValueError):
        return 0.0


def parse_sheet_rows(rows: Sequence[Sequence[str]]) -> List[dict]:
    """Rows of Name, Category, Description, Low, High, Unit; row 0 is a header."""
    items = []
    for index, row in enumerate(rows[1:]):
        row = list(row) + [''] * (6 - len(row))
        if not row[0]:
            continue
        items.append({
            'id': f"sheet-{index}",
            'name': row[0],
            'category': row[1] or 'general',
            'description': row[2] or '',
            'low_price': _price(row[3]),
            'high_price': _price(row[4]),
            'unit': row[5] or 'each',
        })
    return items


class DatabaseCatalog:
    source = 'database'

    def fetch(self, category: Optional[str] = None) -> Optional[List[dict]]:
        query = PricingItem.query
        if category:
            query = query.filter(func.lower(PricingItem.category) == category.lower())
        try:
            rows = query.order_by(PricingItem.name).all()
        except SQLAlchemyError as e:
            logger.warning("pricing_items lookup failed: %s", e)
            return None
        return [r.to_dict() for r in rows] or None


class SpreadsheetCatalog:
    source = 'sheets'

    def __init__(self, reader=None, sheet_id: Optional[str] = None, cell_range: Optional[str] = None):
        self.reader = reader
        self.sheet_id = sheet_id
        self.cell_range = cell_range

    def _resolve(self):
        from salesflow.integrations import collaborator
        reader = self.reader or collaborator('sheets')
        sheet_id = self.sheet_id or current_app.config.get('GOOGLE_SHEETS_SPREADSHEET_ID')
        cell_range = self.cell_range or current_app.config.get('PRICING_SHEET_RANGE', 'Pricing!A:F')
        return reader, sheet_id, cell_range

    def rows(self) -> Optional[List[List[str]]]:
        reader, sheet_id, cell_range = self._resolve()
        if not sheet_id or not getattr(reader, 'configured', True):
            return None
        return reader.read_range(sheet_id, cell_range)

    def fetch(self, category: Optional[str] = None) -> Optional[List[dict]]:
        try:
            rows = self.rows()
        except UpstreamFailure as e:
            logger.warning("pricing spreadsheet unavailable, falling back: %s", e)
            return None
        if not rows:
            return None
        items = [i for i in parse_sheet_rows(rows) if _matches(i, category)]
        return items or None


class DefaultCatalog:
    source = 'default'

    def fetch(self, category: Optional[str] = None) -> List[dict]:
        return [dict(i) for i in DEFAULT_ITEMS if _matches(i, category)]


class CatalogResolver:
    def __init__(self, providers=None):
        self.providers = providers if providers is not None else [
            DatabaseCatalog(),
            SpreadsheetCatalog(),
            DefaultCatalog(),
        ]

    def resolve(self, category: Optional[str] = None) -> Tuple[List[dict], str]:
        category = (category or '').strip() or None
        for provider in self.providers:
            items = provider.fetch(category)
            if items is not None:
                return items, provider.source
        return [], 'none'


def fetch_pricing(category: Optional[str] = None) -> Tuple[List[dict], str]:
    return CatalogResolver().resolve(category)
