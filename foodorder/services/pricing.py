"""
Order pricing. Pure functions over integer minor units; rates come from
configuration and are applied with half-up rounding to the minor unit.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable, Mapping, Optional, Sequence

from foodorder.core.config import DEFAULT_DELIVERY_FEE, PLATFORM_FEE_RATE, TAX_RATE

FeeFunction = Callable[[int], int]


def _percentage(amount: int, rate: Decimal) -> int:
    if amount < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")
    return int((Decimal(amount) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_taxes(subtotal: int) -> int:
    return _percentage(subtotal, Decimal(TAX_RATE))


def calculate_platform_fee(subtotal: int) -> int:
    return _percentage(subtotal, Decimal(PLATFORM_FEE_RATE))


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: int
    delivery_fee: int
    taxes: int
    platform_fee: int
    discount_amount: int
    total_price: int


class PricingEngine:
    def __init__(
        self,
        tax_fn: FeeFunction = calculate_taxes,
        platform_fee_fn: FeeFunction = calculate_platform_fee,
        default_delivery_fee: int = DEFAULT_DELIVERY_FEE,
    ):
        self.tax_fn = tax_fn
        self.platform_fee_fn = platform_fee_fn
        self.default_delivery_fee = default_delivery_fee

    @staticmethod
    def line_total(unit_price: int, customizations: Sequence[Mapping], quantity: int) -> int:
        """(unit price + sum of customization surcharges) x quantity."""
        if unit_price < 0:
            raise ValueError(f"Unit price must be non-negative, got {unit_price}")
        if quantity < 1:
            raise ValueError(f"Quantity must be at least 1, got {quantity}")
        extra = 0
        for customization in customizations:
            additional = int(customization.get("additional_price") or 0)
            if additional < 0:
                raise ValueError(f"Customization price must be non-negative, got {additional}")
            extra += additional
        return (unit_price + extra) * quantity

    @staticmethod
    def subtotal(line_totals: Iterable[int]) -> int:
        return sum(line_totals)

    def quote(self, subtotal: int, delivery_fee: Optional[int] = None, discount_amount: int = 0) -> PriceBreakdown:
        if subtotal < 0:
            raise ValueError(f"Subtotal must be non-negative, got {subtotal}")
        if discount_amount < 0:
            raise ValueError(f"Discount must be non-negative, got {discount_amount}")
        # A restaurant without a configured fee (None or 0) uses the platform default
        fee = delivery_fee or self.default_delivery_fee
        if fee < 0:
            raise ValueError(f"Delivery fee must be non-negative, got {fee}")
        taxes = self.tax_fn(subtotal)
        platform_fee = self.platform_fee_fn(subtotal)
        total = subtotal + fee + taxes + platform_fee - discount_amount
        if total < 0:
            raise ValueError("Discount exceeds order total")
        return PriceBreakdown(
            subtotal=subtotal,
            delivery_fee=fee,
            taxes=taxes,
            platform_fee=platform_fee,
            discount_amount=discount_amount,
            total_price=total,
        )


def estimated_preparation_time(item_times: Iterable[int], floor: int) -> int:
    """Slowest item decides, never below the restaurant's default."""
    return max([floor, *item_times])
