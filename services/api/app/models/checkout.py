from __future__ import annotations

from decimal import Decimal
from enum import Enum, IntEnum
from typing import Annotated, Any, Literal, Union

from packages.shared.schemas.checkout_v1 import (
    Address,
    CartReconciliation,
    CheckoutItem,
    PaymentMethodV1,
)
from pydantic import BaseModel, Field


class CheckoutStep(IntEnum):
    AUTH = 1
    ADDRESS = 2
    REVIEW = 3
    PAYMENT = 4


class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    # Waiting for the user to come back from the external sign-in flow.
    SUSPENDED = "SUSPENDED"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


class AuthContext(BaseModel):
    is_authenticated: bool = False
    user_id: str | None = None
    email: str = ""
    # Forwarded to the remote commerce API as a bearer token.
    access_token: str | None = None


class PricingDetails(BaseModel):
    subtotal: Decimal
    discount: Decimal
    delivery_fee: Decimal
    protection_fee: Decimal
    total: Decimal
    savings: Decimal


class Navigation(BaseModel):
    url: str
    # External navigations leave the storefront entirely (payment gateway).
    external: bool = False
    state: dict[str, Any] = Field(default_factory=dict)


class CheckoutSession(BaseModel):
    session_id: str
    user_id: str | None = None
    email: str = ""
    items: list[CheckoutItem]

    step: CheckoutStep = CheckoutStep.AUTH
    status: SessionStatus = SessionStatus.ACTIVE
    is_authenticated: bool = False

    addresses: list[Address] = Field(default_factory=list)
    selected_address_id: str | None = None

    reconciliation: CartReconciliation | None = None
    pricing: PricingDetails

    selected_payment_method: PaymentMethodV1 | None = None
    is_processing: bool = False
    is_validating_cart: bool = False
    is_address_loading: bool = False

    error: str | None = None
    redirect: Navigation | None = None
    show_validation_modal: bool = False

    def selected_address(self) -> Address | None:
        for address in self.addresses:
            if address.id == self.selected_address_id:
                return address
        return None


class NextStepAction(BaseModel):
    type: Literal["next_step"] = "next_step"


class PreviousStepAction(BaseModel):
    type: Literal["previous_step"] = "previous_step"


class SelectAddressAction(BaseModel):
    type: Literal["select_address"] = "select_address"
    address_id: str


class AddressesUpdatedAction(BaseModel):
    """Sent after the address form saved (or edited) an address."""

    type: Literal["addresses_updated"] = "addresses_updated"
    address_id: str | None = None


class SelectPaymentMethodAction(BaseModel):
    type: Literal["select_payment_method"] = "select_payment_method"
    method: PaymentMethodV1


class RefreshCartAction(BaseModel):
    type: Literal["refresh_cart"] = "refresh_cart"


class RemoveLineAction(BaseModel):
    type: Literal["remove_line"] = "remove_line"
    cart_item_id: str


class SubmitPaymentAction(BaseModel):
    type: Literal["submit_payment"] = "submit_payment"
    method: PaymentMethodV1 | None = None
    coupon_code: str | None = None


class SignInAction(BaseModel):
    type: Literal["sign_in"] = "sign_in"
    auth: AuthContext


class AbandonAction(BaseModel):
    type: Literal["abandon"] = "abandon"
    destination: Literal["cart", "catalog"] = "cart"


class DismissErrorAction(BaseModel):
    type: Literal["dismiss_error"] = "dismiss_error"


class CloseValidationModalAction(BaseModel):
    type: Literal["close_validation_modal"] = "close_validation_modal"


CheckoutAction = Annotated[
    Union[
        NextStepAction,
        PreviousStepAction,
        SelectAddressAction,
        AddressesUpdatedAction,
        SelectPaymentMethodAction,
        RefreshCartAction,
        RemoveLineAction,
        SubmitPaymentAction,
        SignInAction,
        AbandonAction,
        DismissErrorAction,
        CloseValidationModalAction,
    ],
    Field(discriminator="type"),
]


class CheckoutStartRequest(BaseModel):
    items: list[CheckoutItem] = Field(..., min_length=1)
    auth: AuthContext = Field(default_factory=AuthContext)


class CheckoutActionRequest(BaseModel):
    action: CheckoutAction


class CheckoutSessionView(BaseModel):
    session_id: str
    step: CheckoutStep
    status: SessionStatus
    is_authenticated: bool

    items: list[CheckoutItem]
    addresses: list[Address]
    selected_address_id: str | None = None

    reconciliation: CartReconciliation | None = None
    pricing: PricingDetails

    selected_payment_method: PaymentMethodV1 | None = None
    is_processing: bool
    is_validating_cart: bool
    is_address_loading: bool

    error: str | None = None
    redirect: Navigation | None = None
    show_validation_modal: bool

    total_items: int
    valid_items_count: int
    invalid_items_count: int
