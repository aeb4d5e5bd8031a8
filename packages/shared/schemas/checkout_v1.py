"""Shared checkout wire schema (v1).

These models mirror the JSON exchanged with the remote commerce API (camelCase on the
wire) and are reused by the checkout service's own HTTP surface. They should remain
stable and backwards compatible once shipped.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StatusCodeV1(str, Enum):
    IN_STOCK = "IN_STOCK"
    LOW_STOCK = "LOW_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    QUANTITY_EXCEEDED = "QUANTITY_EXCEEDED"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    VARIANT_NOT_FOUND = "VARIANT_NOT_FOUND"
    ITEM_NOT_IN_CART = "ITEM_NOT_IN_CART"


class LineStatusV1(str, Enum):
    AVAILABLE = "available"
    LOW_STOCK_WARNING = "low_stock_warning"
    OUT_OF_STOCK = "out_of_stock"
    QUANTITY_EXCEEDED = "quantity_exceeded"
    ERROR = "error"


class LineActionV1(str, Enum):
    PROCEED = "proceed"
    PROCEED_WITH_CAUTION = "proceed_with_caution"
    REMOVE = "remove"
    REDUCE_QUANTITY = "reduce_quantity"


class OverallStatusV1(str, Enum):
    READY = "ready"
    LOW_STOCK_WARNING = "low_stock_warning"
    REQUIRES_ACTION = "requires_action"


class PaymentMethodV1(str, Enum):
    CARD = "card"
    UPI = "upi"
    COD = "cod"


class CheckoutItem(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    product_id: str = Field(..., min_length=1)
    # The remote API spells this field "productVarient".
    product_variant: str = Field(
        ...,
        alias="productVarient",
        validation_alias=AliasChoices("productVarient", "productVariant", "variantId"),
    )
    quantity: int = Field(..., ge=1)


class ProductImage(WireModel):
    image_url: str
    alt_text: str = ""


class ProductDetails(WireModel):
    id: str
    name: str = ""
    discounted_price: str = "0"
    original_price: str = "0"
    main_image: ProductImage | None = None


class CartDetails(WireModel):
    cart_item_id: str = ""
    stock_name: str = ""
    quantity: int = 0
    item_total: Decimal = Decimal("0")


class StockInfo(WireModel):
    available_stock: int
    cart_quantity: int
    max_allowed: int | None = None
    is_out_of_stock: bool = False
    is_low_stock: bool = False


class LineVerdict(WireModel):
    product_id: str
    status: LineStatusV1
    status_code: StatusCodeV1
    message: str = ""
    action: LineActionV1
    can_proceed_to_checkout: bool
    stock_info: StockInfo | None = None
    product_details: ProductDetails
    cart_details: CartDetails


class CartSummary(WireModel):
    total_valid_items: int = 0
    total_price: Decimal = Decimal("0")
    items_requiring_attention: int = 0
    has_out_of_stock_items: bool = False
    has_low_stock_warnings: bool = False
    has_quantity_issues: bool = False


class CartRecommendations(WireModel):
    out_of_stock_count: int = 0
    quantity_issues_count: int = 0
    low_stock_count: int = 0
    action_required: bool = False


class CartReconciliation(WireModel):
    success: bool = True
    overall_status: OverallStatusV1
    can_proceed_to_checkout: bool
    checkout_message: str = ""
    cart_summary: CartSummary = Field(default_factory=CartSummary)
    lines: list[LineVerdict] = Field(
        default_factory=list,
        alias="products",
        validation_alias=AliasChoices("products", "lines"),
    )
    recommendations: CartRecommendations = Field(default_factory=CartRecommendations)


class Address(WireModel):
    id: str
    full_name: str
    phone: str
    alternate_phone: str | None = None
    line1: str
    line2: str | None = None
    landmark: str | None = None
    city: str
    state: str
    country: str = ""
    zip_code: str
    label: str | None = None
    is_default: bool = False


class ShippingAddress(WireModel):
    full_name: str
    phone: str
    email: str = ""
    line1: str
    line2: str | None = None
    city: str
    state: str
    zip_code: str
    country: str


class CreateOrderRequest(WireModel):
    product_datas: list[CheckoutItem] = Field(..., min_length=1)
    address: ShippingAddress
    payment_method: str
    coupon_code: str | None = None


class OrderResponse(WireModel):
    success: bool
    order_id: str = ""
    amount: str = ""
    payment_url: str = ""


class OrderErrorBody(WireModel):
    code: str | None = None
    message: str | None = None
    validation_data: CartReconciliation | None = None
