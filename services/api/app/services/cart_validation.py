"""Cart reconciliation against live inventory.

The remote cart service is the source of truth for stock. Its verdicts are re-derived
here from each line's stock snapshot so that the eligibility rules (and the cart-level
invariant) hold no matter what the backend reports.
"""

from __future__ import annotations

import logging
import os
from decimal import Decimal
from typing import assert_never

from packages.shared.schemas.checkout_v1 import (
    CartRecommendations,
    CartReconciliation,
    CartSummary,
    CheckoutItem,
    LineActionV1,
    LineStatusV1,
    LineVerdict,
    OverallStatusV1,
    StatusCodeV1,
    StockInfo,
)
from services.api.app.services.commerce_base import CommerceBackend, EmptyCheckoutError

logger = logging.getLogger(__name__)

DEFAULT_LOW_STOCK_THRESHOLD = 5

ELIGIBLE_CODES = frozenset({StatusCodeV1.IN_STOCK, StatusCodeV1.LOW_STOCK})

# Codes the backend decides on its own; there is no stock snapshot to re-derive them from.
_LOOKUP_CODES = frozenset(
    {
        StatusCodeV1.PRODUCT_NOT_FOUND,
        StatusCodeV1.VARIANT_NOT_FOUND,
        StatusCodeV1.ITEM_NOT_IN_CART,
    }
)


def low_stock_threshold() -> int:
    return int(os.getenv("STOREFRONT_LOW_STOCK_THRESHOLD", str(DEFAULT_LOW_STOCK_THRESHOLD)))


def classify_stock(requested_quantity: int, available_stock: int, threshold: int) -> StatusCodeV1:
    if available_stock <= 0:
        return StatusCodeV1.OUT_OF_STOCK
    if requested_quantity > available_stock:
        return StatusCodeV1.QUANTITY_EXCEEDED
    if available_stock <= threshold:
        return StatusCodeV1.LOW_STOCK
    return StatusCodeV1.IN_STOCK


def action_for(code: StatusCodeV1) -> LineActionV1:
    match code:
        case StatusCodeV1.IN_STOCK:
            return LineActionV1.PROCEED
        case StatusCodeV1.LOW_STOCK:
            return LineActionV1.PROCEED_WITH_CAUTION
        case StatusCodeV1.QUANTITY_EXCEEDED:
            return LineActionV1.REDUCE_QUANTITY
        case (
            StatusCodeV1.OUT_OF_STOCK
            | StatusCodeV1.PRODUCT_NOT_FOUND
            | StatusCodeV1.VARIANT_NOT_FOUND
            | StatusCodeV1.ITEM_NOT_IN_CART
        ):
            return LineActionV1.REMOVE
        case _:
            assert_never(code)


def line_status_for(code: StatusCodeV1) -> LineStatusV1:
    match code:
        case StatusCodeV1.IN_STOCK:
            return LineStatusV1.AVAILABLE
        case StatusCodeV1.LOW_STOCK:
            return LineStatusV1.LOW_STOCK_WARNING
        case StatusCodeV1.OUT_OF_STOCK:
            return LineStatusV1.OUT_OF_STOCK
        case StatusCodeV1.QUANTITY_EXCEEDED:
            return LineStatusV1.QUANTITY_EXCEEDED
        case (
            StatusCodeV1.PRODUCT_NOT_FOUND
            | StatusCodeV1.VARIANT_NOT_FOUND
            | StatusCodeV1.ITEM_NOT_IN_CART
        ):
            return LineStatusV1.ERROR
        case _:
            assert_never(code)


def line_message(code: StatusCodeV1, requested_quantity: int, stock: StockInfo | None) -> str:
    available = stock.available_stock if stock is not None else 0
    match code:
        case StatusCodeV1.IN_STOCK:
            return "Product is available"
        case StatusCodeV1.LOW_STOCK:
            return f"Only {available} left in stock"
        case StatusCodeV1.OUT_OF_STOCK:
            return "Product is out of stock"
        case StatusCodeV1.QUANTITY_EXCEEDED:
            return f"Only {available} available, {requested_quantity} requested"
        case StatusCodeV1.PRODUCT_NOT_FOUND:
            return "Product is no longer available"
        case StatusCodeV1.VARIANT_NOT_FOUND:
            return "Selected variant is no longer available"
        case StatusCodeV1.ITEM_NOT_IN_CART:
            return "Item is no longer in your cart"
        case _:
            assert_never(code)


def stock_snapshot(available_stock: int, cart_quantity: int, threshold: int) -> StockInfo:
    return StockInfo(
        available_stock=available_stock,
        cart_quantity=cart_quantity,
        max_allowed=max(available_stock, 0),
        is_out_of_stock=available_stock <= 0,
        is_low_stock=0 < available_stock <= threshold,
    )


def reclassify_line(line: LineVerdict, requested_quantity: int, threshold: int) -> LineVerdict:
    """Apply the eligibility rules to one backend line."""

    code = line.status_code
    stock = line.stock_info
    if code not in _LOOKUP_CODES and stock is not None:
        code = classify_stock(requested_quantity, stock.available_stock, threshold)
        stock = stock_snapshot(stock.available_stock, requested_quantity, threshold)

    message = line.message
    if code != line.status_code or not message:
        message = line_message(code, requested_quantity, stock)

    return line.model_copy(
        update={
            "status": line_status_for(code),
            "status_code": code,
            "message": message,
            "action": action_for(code),
            "can_proceed_to_checkout": code in ELIGIBLE_CODES,
            "stock_info": stock,
        }
    )


def summarize(lines: list[LineVerdict], *, success: bool = True) -> CartReconciliation:
    """Build the aggregate reconciliation from classified lines."""

    eligible = [line for line in lines if line.can_proceed_to_checkout]
    out_of_stock = sum(1 for line in lines if line.status_code == StatusCodeV1.OUT_OF_STOCK)
    quantity_issues = sum(
        1 for line in lines if line.status_code == StatusCodeV1.QUANTITY_EXCEEDED
    )
    low_stock = sum(1 for line in lines if line.status_code == StatusCodeV1.LOW_STOCK)
    attention = len(lines) - len(eligible)

    can_proceed = bool(lines) and attention == 0

    if not can_proceed:
        overall = OverallStatusV1.REQUIRES_ACTION
    elif low_stock:
        overall = OverallStatusV1.LOW_STOCK_WARNING
    else:
        overall = OverallStatusV1.READY

    if not lines:
        message = "No items to check out"
    elif attention:
        message = f"{attention} item(s) need attention before checkout"
    elif low_stock:
        message = "Some items are running low on stock. Complete your order soon."
    else:
        message = "All items are available for checkout"

    return CartReconciliation(
        success=success,
        overall_status=overall,
        can_proceed_to_checkout=can_proceed,
        checkout_message=message,
        cart_summary=CartSummary(
            total_valid_items=len(eligible),
            total_price=sum((line.cart_details.item_total for line in eligible), Decimal("0")),
            items_requiring_attention=attention,
            has_out_of_stock_items=out_of_stock > 0,
            has_low_stock_warnings=low_stock > 0,
            has_quantity_issues=quantity_issues > 0,
        ),
        lines=lines,
        recommendations=CartRecommendations(
            out_of_stock_count=out_of_stock,
            quantity_issues_count=quantity_issues,
            low_stock_count=low_stock,
            action_required=attention > 0,
        ),
    )


def normalize_reconciliation(
    raw: CartReconciliation,
    items: list[CheckoutItem],
    threshold: int,
) -> CartReconciliation:
    requested: dict[tuple[str, str], int] = {}
    by_product: dict[str, int] = {}
    for item in items:
        requested[(item.product_id, item.product_variant)] = item.quantity
        by_product.setdefault(item.product_id, item.quantity)

    lines: list[LineVerdict] = []
    for line in raw.lines:
        key = (line.product_id, line.cart_details.stock_name)
        if key in requested:
            quantity = requested[key]
        elif line.product_id in by_product:
            quantity = by_product[line.product_id]
        elif line.stock_info is not None:
            quantity = line.stock_info.cart_quantity
        else:
            quantity = line.cart_details.quantity
        lines.append(reclassify_line(line, quantity, threshold))

    return summarize(lines, success=raw.success)


class CartValidationEngine:
    def __init__(self, backend: CommerceBackend, threshold: int | None = None) -> None:
        self._backend = backend
        self._threshold = low_stock_threshold() if threshold is None else threshold

    @property
    def threshold(self) -> int:
        return self._threshold

    async def reconcile(self, items: list[CheckoutItem]) -> CartReconciliation:
        if not items:
            raise EmptyCheckoutError()

        raw = await self._backend.check_products_in_cart(list(items))
        reconciliation = normalize_reconciliation(raw, items, self._threshold)

        logger.info(
            "Cart reconciled: status=%s eligible=%d attention=%d",
            reconciliation.overall_status.value,
            reconciliation.cart_summary.total_valid_items,
            reconciliation.cart_summary.items_requiring_attention,
        )
        if reconciliation.can_proceed_to_checkout != raw.can_proceed_to_checkout:
            logger.warning(
                "Backend eligibility disagreed with line verdicts: backend=%s derived=%s",
                raw.can_proceed_to_checkout,
                reconciliation.can_proceed_to_checkout,
            )
        return reconciliation
