"""Order pricing.

All arithmetic runs on integer minor units. Tax is the only step that
involves a fractional rate and is rounded half-up to a whole minor unit,
so ``total == subtotal + tax + delivery_charge - discount`` holds exactly.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple, Union

from errors import ValidationError

MINOR_UNITS_PER_UNIT = 100
_ONE = Decimal(1)
_CENT = Decimal("0.01")


def to_minor_units(amount: Union[Decimal, int, str]) -> int:
    """Convert a currency amount (e.g. ``Decimal("12.50")``) to minor units."""
    value = Decimal(str(amount)) * MINOR_UNITS_PER_UNIT
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int) -> Decimal:
    """Convert minor units back to a two-place currency amount."""
    return (Decimal(amount_minor) / MINOR_UNITS_PER_UNIT).quantize(_CENT)


@dataclass(frozen=True)
class SettingsSnapshot:
    """Pricing-relevant settings captured at order-creation time."""
    tax_rate: Decimal
    delivery_charge_minor: int
    low_stock_threshold: int


@dataclass(frozen=True)
class QuoteLine:
    """One requested line, resolved against the catalog."""
    product_id: int
    variant_id: int
    base_price_minor: int
    price_adjustment_minor: int
    quantity: int

    @property
    def unit_price_minor(self) -> int:
        return self.base_price_minor + self.price_adjustment_minor

    @property
    def line_total_minor(self) -> int:
        return self.unit_price_minor * self.quantity


@dataclass(frozen=True)
class PriceQuote:
    """Pricing breakdown for an order."""
    lines: Tuple[QuoteLine, ...]
    subtotal_minor: int
    tax_rate: Decimal
    tax_minor: int
    delivery_charge_minor: int
    discount_minor: int
    total_minor: int


def compute_tax(subtotal_minor: int, tax_rate: Decimal) -> int:
    """Tax on a subtotal at a percentage rate, rounded half-up."""
    tax = Decimal(subtotal_minor) * Decimal(tax_rate) / 100
    return int(tax.quantize(_ONE, rounding=ROUND_HALF_UP))


def quote_order(
    lines: Iterable[QuoteLine],
    settings: SettingsSnapshot,
    discount_minor: int = 0
) -> PriceQuote:
    """
    Price a list of resolved order lines.

    Args:
        lines: Resolved lines (catalog prices and requested quantities)
        settings: Settings snapshot to price against
        discount_minor: Discount in minor units

    Returns:
        Price quote

    Raises:
        ValidationError: If a line, the settings or the discount is invalid
    """
    lines = tuple(lines)
    if not lines:
        raise ValidationError("Order must contain at least one item")
    if settings.tax_rate < 0:
        raise ValidationError("Tax rate cannot be negative")
    if settings.delivery_charge_minor < 0:
        raise ValidationError("Delivery charge cannot be negative")
    if discount_minor < 0:
        raise ValidationError("Discount cannot be negative")

    subtotal_minor = 0
    for line in lines:
        if line.quantity < 1:
            raise ValidationError(f"Quantity for variant {line.variant_id} must be at least 1")
        if line.unit_price_minor < 0:
            raise ValidationError(f"Unit price for variant {line.variant_id} is negative")
        subtotal_minor += line.line_total_minor

    tax_minor = compute_tax(subtotal_minor, settings.tax_rate)
    gross_minor = subtotal_minor + tax_minor + settings.delivery_charge_minor
    if discount_minor > gross_minor:
        raise ValidationError("Discount exceeds order amount")

    return PriceQuote(
        lines=lines,
        subtotal_minor=subtotal_minor,
        tax_rate=Decimal(settings.tax_rate),
        tax_minor=tax_minor,
        delivery_charge_minor=settings.delivery_charge_minor,
        discount_minor=discount_minor,
        total_minor=gross_minor - discount_minor,
    )
