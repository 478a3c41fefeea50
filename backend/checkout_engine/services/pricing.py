"""
Pricing Calculator

Pure functions: no I/O, no session access, same output for the same input.

All money is integer cents. The tax rate is in basis points (800 = 8%).
Fractional cents only appear when tax is applied; they are rounded to the
nearest cent with ROUND_HALF_UP so results never depend on binary floats
or banker's rounding.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping

BPS_DENOMINATOR = Decimal(10000)


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate_bps: int = 800
    free_shipping_threshold_cents: int = 10000
    flat_shipping_cents: int = 999

    @classmethod
    def from_config(cls, config: Mapping) -> "PricingPolicy":
        return cls(
            tax_rate_bps=int(config.get("TAX_RATE_BPS", cls.tax_rate_bps)),
            free_shipping_threshold_cents=int(
                config.get("FREE_SHIPPING_THRESHOLD_CENTS", cls.free_shipping_threshold_cents)
            ),
            flat_shipping_cents=int(config.get("FLAT_SHIPPING_CENTS", cls.flat_shipping_cents)),
        )


@dataclass(frozen=True)
class PricedLine:
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal_cents: int
    tax_cents: int
    shipping_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
        }


def round_half_up(value: Decimal) -> int:
    """Round a Decimal amount of cents to a whole cent, halves away from zero."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def tax_for(subtotal_cents: int, tax_rate_bps: int) -> int:
    return round_half_up(Decimal(subtotal_cents) * Decimal(tax_rate_bps) / BPS_DENOMINATOR)


def shipping_for(subtotal_cents: int, policy: PricingPolicy) -> int:
    # Threshold is exclusive: exactly 100.00 still pays shipping
    if subtotal_cents > policy.free_shipping_threshold_cents:
        return 0
    return policy.flat_shipping_cents


def price_lines(lines: Iterable[PricedLine], policy: PricingPolicy | None = None) -> PriceBreakdown:
    """
    Compute subtotal, tax, shipping and grand total for a set of lines.

    subtotal = sum(quantity * unit_price)
    tax      = round_half_up(subtotal * rate)
    shipping = 0 if subtotal > threshold else flat fee
    total    = subtotal + tax + shipping
    """
    policy = policy or PricingPolicy()

    subtotal = 0
    for line in lines:
        if line.quantity <= 0:
            raise ValueError("quantity must be > 0")
        if line.unit_price_cents < 0:
            raise ValueError("unit_price_cents must be >= 0")
        subtotal += line.line_total_cents

    tax = tax_for(subtotal, policy.tax_rate_bps)
    shipping = shipping_for(subtotal, policy)

    return PriceBreakdown(
        subtotal_cents=subtotal,
        tax_cents=tax,
        shipping_cents=shipping,
        total_cents=subtotal + tax + shipping,
    )
