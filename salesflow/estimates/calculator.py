# salesflow/estimates/calculator.py
"""Estimate arithmetic.

Totals are computed with :class:`~decimal.Decimal` in a fixed order: the
discount comes off the subtotal first and tax is charged on what is left.
Nothing here validates signs or ranges; callers do that before invoking it.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Tuple

ZERO = Decimal('0')
HUNDRED = Decimal('100')
CENT = Decimal('0.01')


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None or value == '':
        return ZERO
    # str() keeps 0.1 as 0.1 instead of its binary float expansion
    return Decimal(str(value))


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineItem:
    quantity: int
    selected_price: Decimal
    low_price: Decimal = ZERO
    high_price: Decimal = ZERO
    name: str = ''
    category: str = ''
    unit: str = ''

    @classmethod
    def from_dict(cls, data: dict) -> 'LineItem':
        """Build from stored JSON; camelCase keys from browser payloads work too."""
        def pick(*keys):
            for k in keys:
                if data.get(k) is not None:
                    return data[k]
            return None

        return cls(
            quantity=int(pick('quantity', 'qty') or 0),
            selected_price=to_decimal(pick('selected_price', 'selectedPrice')),
            low_price=to_decimal(pick('low_price', 'lowPrice')),
            high_price=to_decimal(pick('high_price', 'highPrice')),
            name=pick('name') or '',
            category=pick('category') or '',
            unit=pick('unit') or '',
        )

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.selected_price

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'category': self.category,
            'quantity': self.quantity,
            'selected_price': float(self.selected_price),
            'low_price': float(self.low_price),
            'high_price': float(self.high_price),
            'unit': self.unit,
        }


@dataclass(frozen=True)
class EstimateTotals:
    subtotal: Decimal
    discount_amount: Decimal
    after_discount: Decimal
    tax_amount: Decimal
    total: Decimal
    low_estimate: Decimal
    high_estimate: Decimal

    def rounded(self) -> 'EstimateTotals':
        return EstimateTotals(*(money(v) for v in (
            self.subtotal,
            self.discount_amount,
            self.after_discount,
            self.tax_amount,
            self.total,
            self.low_estimate,
            self.high_estimate,
        )))

    def to_dict(self) -> dict:
        r = self.rounded()
        return {
            'subtotal': float(r.subtotal),
            'discount_amount': float(r.discount_amount),
            'after_discount': float(r.after_discount),
            'tax_amount': float(r.tax_amount),
            'total': float(r.total),
            'low_estimate': float(r.low_estimate),
            'high_estimate': float(r.high_estimate),
        }


def compute_range(items: Iterable[LineItem]) -> Tuple[Decimal, Decimal]:
    """Low/high price range from the catalog bounds of each line."""
    items = list(items)
    low = sum((i.quantity * i.low_price for i in items), ZERO)
    high = sum((i.quantity * i.high_price for i in items), ZERO)
    return low, high


def compute_totals(items: Iterable[LineItem], discount_percent=0, tax_percent=0) -> EstimateTotals:
    items: List[LineItem] = list(items)
    subtotal = sum((i.line_total for i in items), ZERO)
    discount_amount = subtotal * (to_decimal(discount_percent) / HUNDRED)
    after_discount = subtotal - discount_amount
    tax_amount = after_discount * (to_decimal(tax_percent) / HUNDRED)
    total = after_discount + tax_amount
    low, high = compute_range(items)
    return EstimateTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        after_discount=after_discount,
        tax_amount=tax_amount,
        total=total,
        low_estimate=low,
        high_estimate=high,
    )
