from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal

import pytest
from packages.shared.schemas.checkout_v1 import (
    CartDetails,
    LineVerdict,
    ProductDetails,
    StatusCodeV1,
    StockInfo,
)
from services.api.app.services.cart_validation import (
    ELIGIBLE_CODES,
    action_for,
    line_status_for,
)

LineFactory = Callable[..., LineVerdict]


def build_line(
    product_id: str,
    code: StatusCodeV1,
    item_total: str | int = "0",
    *,
    quantity: int = 1,
    available_stock: int | None = None,
    variant: str = "M",
) -> LineVerdict:
    stock = None
    if available_stock is not None:
        stock = StockInfo(available_stock=available_stock, cart_quantity=quantity)
    return LineVerdict(
        product_id=product_id,
        status=line_status_for(code),
        status_code=code,
        message="",
        action=action_for(code),
        can_proceed_to_checkout=code in ELIGIBLE_CODES,
        stock_info=stock,
        product_details=ProductDetails(id=product_id, name=product_id),
        cart_details=CartDetails(
            cart_item_id=f"ci-{product_id}-{variant}",
            stock_name=variant,
            quantity=quantity,
            item_total=Decimal(str(item_total)),
        ),
    )


@pytest.fixture()
def make_line() -> LineFactory:
    return build_line
