import pytest

from foodorder.services.pricing import (
    PricingEngine,
    calculate_platform_fee,
    calculate_taxes,
    estimated_preparation_time,
)


def test_default_fees_round_half_up():
    assert calculate_taxes(15000) == 750
    assert calculate_platform_fee(15000) == 300
    # 5% of 10 is 0.5 -> 1, 2% of 25 is 0.5 -> 1
    assert calculate_taxes(10) == 1
    assert calculate_platform_fee(25) == 1


def test_line_total_includes_customizations_per_unit():
    customizations = [
        {"name": "Extra cheese", "selected_options": ["yes"], "additional_price": 500},
        {"name": "Spice", "selected_options": ["hot"], "additional_price": 0},
    ]
    assert PricingEngine.line_total(15000, customizations, 2) == 31000


def test_quote_uses_default_delivery_fee_when_restaurant_has_none():
    breakdown = PricingEngine(default_delivery_fee=2000).quote(15000, None)

    assert breakdown.delivery_fee == 2000
    assert breakdown.taxes == 750
    assert breakdown.platform_fee == 300
    assert breakdown.total_price == 18050


def test_quote_total_adds_up():
    breakdown = PricingEngine().quote(40000, 3500, discount_amount=1000)
    assert breakdown.total_price == (
        breakdown.subtotal + breakdown.delivery_fee + breakdown.taxes + breakdown.platform_fee - breakdown.discount_amount
    )


def test_fee_functions_are_pluggable():
    engine = PricingEngine(tax_fn=lambda s: 0, platform_fee_fn=lambda s: 99, default_delivery_fee=0)
    breakdown = engine.quote(1000, 500)
    assert (breakdown.taxes, breakdown.platform_fee, breakdown.total_price) == (0, 99, 1599)


@pytest.mark.parametrize("call", [
    lambda: PricingEngine.line_total(-1, [], 1),
    lambda: PricingEngine.line_total(100, [], 0),
    lambda: PricingEngine.line_total(100, [{"additional_price": -5}], 1),
    lambda: PricingEngine().quote(-100),
    lambda: calculate_taxes(-1),
])
def test_negative_inputs_are_rejected(call):
    with pytest.raises(ValueError):
        call()


def test_preparation_time_is_slowest_item_with_floor():
    assert estimated_preparation_time([20, 45, 10], 30) == 45
    assert estimated_preparation_time([10, 15], 30) == 30
    assert estimated_preparation_time([], 25) == 25
