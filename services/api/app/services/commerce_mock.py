from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import uuid4

from packages.shared.schemas.checkout_v1 import (
    Address,
    CartDetails,
    CartReconciliation,
    CheckoutItem,
    CreateOrderRequest,
    LineVerdict,
    OrderResponse,
    ProductDetails,
    StatusCodeV1,
)
from services.api.app.services.cart_validation import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    ELIGIBLE_CODES,
    action_for,
    classify_stock,
    line_message,
    line_status_for,
    stock_snapshot,
    summarize,
)
from services.api.app.services.commerce_base import CartValidationFailedError
from services.api.app.services.pricing import compute_pricing


@dataclass
class MockProduct:
    name: str
    price: Decimal
    original_price: Decimal
    # variant (stock name) -> units available
    stock: dict[str, int] = field(default_factory=dict)


def _default_catalog() -> dict[str, MockProduct]:
    return {
        "prod-tee": MockProduct(
            name="Cotton Crew Tee",
            price=Decimal("300"),
            original_price=Decimal("399"),
            stock={"M": 40, "L": 3},
        ),
        "prod-hoodie": MockProduct(
            name="Fleece Hoodie",
            price=Decimal("200"),
            original_price=Decimal("249"),
            stock={"M": 0, "XL": 8},
        ),
        "prod-cap": MockProduct(
            name="Canvas Cap",
            price=Decimal("150"),
            original_price=Decimal("150"),
            stock={"OS": 12},
        ),
    }


def _default_addresses() -> list[Address]:
    return [
        Address(
            id="addr-home",
            full_name="Asha Rao",
            phone="9800000001",
            line1="12 MG Road",
            city="Bengaluru",
            state="Karnataka",
            country="India",
            zip_code="560001",
            label="Home",
            is_default=True,
        ),
        Address(
            id="addr-work",
            full_name="Asha Rao",
            phone="9800000001",
            line1="4th Floor, Prestige Tower",
            city="Bengaluru",
            state="Karnataka",
            country="India",
            zip_code="560025",
            label="Work",
        ),
    ]


def cart_item_id(product_id: str, variant: str) -> str:
    return f"ci-{product_id}-{variant}"


class MockCommerceBackend:
    """Deterministic in-memory commerce backend for local dev and tests."""

    name = "MOCK"

    def __init__(
        self,
        catalog: dict[str, MockProduct] | None = None,
        addresses: list[Address] | None = None,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    ) -> None:
        self._catalog = _default_catalog() if catalog is None else catalog
        self._addresses = _default_addresses() if addresses is None else addresses
        self._threshold = low_stock_threshold
        self._removed: set[str] = set()
        self.orders: list[CreateOrderRequest] = []

    async def get_addresses(self) -> list[Address]:
        return list(self._addresses)

    async def check_products_in_cart(self, items: list[CheckoutItem]) -> CartReconciliation:
        return self._reconcile(items)

    async def remove_cart_item(self, cart_item_id: str) -> None:
        self._removed.add(cart_item_id)

    async def create_order(self, request: CreateOrderRequest) -> OrderResponse:
        reconciliation = self._reconcile(request.product_datas)
        if not reconciliation.can_proceed_to_checkout:
            raise CartValidationFailedError(
                reconciliation, "Some items in your cart are no longer available"
            )

        for item in request.product_datas:
            product = self._catalog[item.product_id]
            product.stock[item.product_variant] -= item.quantity

        self.orders.append(request)
        order_id = f"ord_{uuid4().hex[:10]}"
        payment_url = ""
        if request.payment_method == "upi-qr":
            payment_url = f"https://payments.example.test/upi/{order_id}"

        return OrderResponse(
            success=True,
            order_id=order_id,
            amount=str(compute_pricing(reconciliation).total),
            payment_url=payment_url,
        )

    def _reconcile(self, items: list[CheckoutItem]) -> CartReconciliation:
        return summarize([self._line(item) for item in items])

    def _line(self, item: CheckoutItem) -> LineVerdict:
        ci_id = cart_item_id(item.product_id, item.product_variant)
        product = self._catalog.get(item.product_id)

        stock = None
        price = Decimal("0")
        if product is None:
            code = StatusCodeV1.PRODUCT_NOT_FOUND
        elif ci_id in self._removed:
            code = StatusCodeV1.ITEM_NOT_IN_CART
        elif item.product_variant not in product.stock:
            code = StatusCodeV1.VARIANT_NOT_FOUND
        else:
            available = product.stock[item.product_variant]
            code = classify_stock(item.quantity, available, self._threshold)
            stock = stock_snapshot(available, item.quantity, self._threshold)
            price = product.price

        return LineVerdict(
            product_id=item.product_id,
            status=line_status_for(code),
            status_code=code,
            message=line_message(code, item.quantity, stock),
            action=action_for(code),
            can_proceed_to_checkout=code in ELIGIBLE_CODES,
            stock_info=stock,
            product_details=ProductDetails(
                id=item.product_id,
                name=product.name if product is not None else "",
                discounted_price=str(price),
                original_price=str(product.original_price if product is not None else price),
            ),
            cart_details=CartDetails(
                cart_item_id=ci_id,
                stock_name=item.product_variant,
                quantity=item.quantity,
                item_total=price * item.quantity,
            ),
        )
