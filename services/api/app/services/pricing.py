from __future__ import annotations

from decimal import Decimal

from packages.shared.schemas.checkout_v1 import CartReconciliation
from services.api.app.models.checkout import PricingDetails

_CENTS = Decimal("0.01")

DISCOUNT_RATE = Decimal("0.10")
FREE_DELIVERY_OVER = Decimal("500")
DELIVERY_FEE = Decimal("50")
PROTECTION_FEE = Decimal("25")


EMPTY_PRICING = PricingDetails(
    subtotal=Decimal("0.00"),
    discount=Decimal("0.00"),
    delivery_fee=Decimal("0.00"),
    protection_fee=Decimal("0.00"),
    total=Decimal("0.00"),
    savings=Decimal("0.00"),
)


def compute_pricing(reconciliation: CartReconciliation | None) -> PricingDetails:
    """Derive order totals from the eligible lines of a reconciliation.

    Ineligible lines never contribute. With no eligible lines nothing is charged: the
    delivery fee only applies to a non-empty order.
    """

    if reconciliation is None:
        return EMPTY_PRICING.model_copy()

    subtotal = sum(
        (
            line.cart_details.item_total
            for line in reconciliation.lines
            if line.can_proceed_to_checkout
        ),
        Decimal("0"),
    )

    if subtotal <= 0:
        return EMPTY_PRICING.model_copy()

    # Each component is rounded before the total so the returned fields add up.
    subtotal = subtotal.quantize(_CENTS)
    discount = (subtotal * DISCOUNT_RATE).quantize(_CENTS)
    delivery_fee = (Decimal("0") if subtotal > FREE_DELIVERY_OVER else DELIVERY_FEE).quantize(_CENTS)
    protection_fee = PROTECTION_FEE.quantize(_CENTS)
    total = subtotal - discount + delivery_fee + protection_fee

    return PricingDetails(
        subtotal=subtotal,
        discount=discount,
        delivery_fee=delivery_fee,
        protection_fee=protection_fee,
        total=total,
        savings=discount,
    )
