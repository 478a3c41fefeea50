"""Pricing calculator: totals, tax rounding and the free-shipping boundary."""

import pytest
from decimal import Decimal

from checkout_engine.services.pricing import (
    PricedLine,
    PricingPolicy,
    price_lines,
    round_half_up,
    shipping_for,
    tax_for,
)


class TestPriceLines:

    def test_small_order_pays_flat_shipping(self):
        breakdown = price_lines([
            PricedLine(quantity=2, unit_price_cents=1000),
            PricedLine(quantity=1, unit_price_cents=500),
        ])

        assert breakdown.subtotal_cents == 2500
        assert breakdown.tax_cents == 200
        assert breakdown.shipping_cents == 999
        assert breakdown.total_cents == 3699

    def test_just_over_threshold_ships_free(self):
        breakdown = price_lines([PricedLine(quantity=1, unit_price_cents=10001)])

        assert breakdown.subtotal_cents == 10001
        assert breakdown.tax_cents == 800
        assert breakdown.shipping_cents == 0
        assert breakdown.total_cents == 10801

    def test_exactly_threshold_still_pays_shipping(self):
        breakdown = price_lines([PricedLine(quantity=4, unit_price_cents=2500)])

        assert breakdown.subtotal_cents == 10000
        assert breakdown.shipping_cents == 999
        assert breakdown.total_cents == 10000 + 800 + 999

    def test_multiple_lines_sum_quantity_times_price(self):
        breakdown = price_lines([
            PricedLine(quantity=2, unit_price_cents=1299),
            PricedLine(quantity=3, unit_price_cents=450),
        ])

        assert breakdown.subtotal_cents == 2598 + 1350
        assert breakdown.total_cents == (
            breakdown.subtotal_cents + breakdown.tax_cents + breakdown.shipping_cents
        )

    def test_custom_policy(self):
        policy = PricingPolicy(tax_rate_bps=0, free_shipping_threshold_cents=0, flat_shipping_cents=500)
        breakdown = price_lines([PricedLine(quantity=1, unit_price_cents=1)], policy)

        assert breakdown.tax_cents == 0
        assert breakdown.shipping_cents == 0
        assert breakdown.total_cents == 1

    @pytest.mark.parametrize("quantity,price", [(0, 100), (-1, 100), (1, -5)])
    def test_rejects_invalid_lines(self, quantity, price):
        with pytest.raises(ValueError):
            price_lines([PricedLine(quantity=quantity, unit_price_cents=price)])


class TestRounding:

    def test_half_cent_rounds_up(self):
        # 10% of 1.25 = 12.5 cents, 10% of 1.35 = 13.5 cents
        assert tax_for(125, 1000) == 13
        assert tax_for(135, 1000) == 14
        assert tax_for(131, 800) == 10
        assert round_half_up(Decimal("0.5")) == 1
        assert round_half_up(Decimal("2.5")) == 3

    def test_below_half_rounds_down(self):
        assert round_half_up(Decimal("2.4999")) == 2
        assert tax_for(6, 800) == 0

    def test_shipping_boundary(self):
        policy = PricingPolicy()
        assert shipping_for(9999, policy) == 999
        assert shipping_for(10000, policy) == 999
        assert shipping_for(10001, policy) == 0


class TestPolicyFromConfig:

    def test_reads_config_keys(self):
        policy = PricingPolicy.from_config({
            "TAX_RATE_BPS": "1000",
            "FREE_SHIPPING_THRESHOLD_CENTS": 5000,
            "FLAT_SHIPPING_CENTS": 499,
        })
        assert policy == PricingPolicy(tax_rate_bps=1000, free_shipping_threshold_cents=5000, flat_shipping_cents=499)

    def test_missing_keys_fall_back_to_defaults(self):
        assert PricingPolicy.from_config({}) == PricingPolicy()
