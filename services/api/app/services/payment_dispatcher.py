from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import assert_never

from packages.shared.schemas.checkout_v1 import (
    Address,
    CartReconciliation,
    CreateOrderRequest,
    PaymentMethodV1,
    ShippingAddress,
)
from services.api.app.models.checkout import CheckoutSession
from services.api.app.services.commerce_base import (
    CartValidationFailedError,
    CommerceAuthRequiredError,
    CommerceBackend,
    CommerceBackendError,
    CommerceRequestError,
)

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY = "India"


class DispatchInProgressError(Exception):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"A payment is already being processed for session {session_id}")
        self.session_id = session_id


class FailureKind(str, Enum):
    AUTH_REQUIRED = "AUTH_REQUIRED"
    REJECTED = "REJECTED"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass(frozen=True, slots=True)
class Redirect:
    url: str
    order_id: str
    amount: str
    payment_method: PaymentMethodV1


@dataclass(frozen=True, slots=True)
class Completed:
    order_id: str
    amount: str
    payment_method: PaymentMethodV1


@dataclass(frozen=True, slots=True)
class ValidationFailed:
    # None when the backend rejected the cart without sending a fresh payload.
    reconciliation: CartReconciliation | None
    message: str


@dataclass(frozen=True, slots=True)
class Failed:
    reason: str
    kind: FailureKind
    retryable: bool = True


DispatchOutcome = Redirect | Completed | ValidationFailed | Failed


def wire_payment_method(method: PaymentMethodV1) -> str:
    match method:
        case PaymentMethodV1.CARD:
            return "card"
        case PaymentMethodV1.UPI:
            return "upi-qr"
        case PaymentMethodV1.COD:
            return "cod"
        case _:
            assert_never(method)


def to_shipping_address(address: Address, email: str) -> ShippingAddress:
    return ShippingAddress(
        full_name=address.full_name,
        phone=address.phone,
        email=email,
        line1=address.line1,
        line2=address.line2,
        city=address.city,
        state=address.state,
        zip_code=address.zip_code,
        country=address.country or DEFAULT_COUNTRY,
    )


class PaymentDispatcher:
    """Creates orders for a checkout session through the method-specific flow.

    The dispatcher never touches session state: it works on a snapshot and reports an
    outcome. At most one dispatch per session id is in flight at any time.
    """

    def __init__(self, backend: CommerceBackend) -> None:
        self._backend = backend
        self._in_flight: set[str] = set()

    def is_in_flight(self, session_id: str) -> bool:
        return session_id in self._in_flight

    async def dispatch(
        self,
        method: PaymentMethodV1,
        snapshot: CheckoutSession,
        *,
        coupon_code: str | None = None,
    ) -> DispatchOutcome:
        session_id = snapshot.session_id
        if session_id in self._in_flight:
            raise DispatchInProgressError(session_id)

        self._in_flight.add(session_id)
        try:
            return await self._dispatch(method, snapshot, coupon_code)
        finally:
            self._in_flight.discard(session_id)

    async def _dispatch(
        self,
        method: PaymentMethodV1,
        snapshot: CheckoutSession,
        coupon_code: str | None,
    ) -> DispatchOutcome:
        address = snapshot.selected_address()
        if address is None:
            return Failed(reason="Please select a delivery address", kind=FailureKind.REJECTED)

        request = CreateOrderRequest(
            product_datas=list(snapshot.items),
            address=to_shipping_address(address, snapshot.email),
            payment_method=wire_payment_method(method),
            coupon_code=coupon_code,
        )

        logger.info("Creating %s order for session %s", method.value, snapshot.session_id)
        try:
            response = await self._backend.create_order(request)
        except CartValidationFailedError as e:
            logger.info("Order rejected by cart validation for session %s", snapshot.session_id)
            message = (
                e.validation_data.checkout_message
                if e.validation_data is not None and e.validation_data.checkout_message
                else "Some items in your cart need attention"
            )
            return ValidationFailed(reconciliation=e.validation_data, message=message)
        except CommerceAuthRequiredError:
            return Failed(
                reason="Please sign in again to place your order",
                kind=FailureKind.AUTH_REQUIRED,
            )
        except CommerceRequestError as e:
            logger.warning("Order creation rejected (%s): %s", e.status_code, e)
            return Failed(reason=str(e) or "Invalid order data", kind=FailureKind.REJECTED)
        except CommerceBackendError as e:
            logger.warning("Order creation failed: %s", e)
            return Failed(
                reason="Failed to create order. Please try again.",
                kind=FailureKind.UNAVAILABLE,
            )

        if not response.success or not response.order_id:
            return Failed(reason="Failed to create order", kind=FailureKind.REJECTED)

        amount = response.amount or str(snapshot.pricing.total)

        match method:
            case PaymentMethodV1.UPI:
                if not response.payment_url:
                    return Failed(
                        reason="Payment gateway did not return a payment link",
                        kind=FailureKind.UNAVAILABLE,
                    )
                return Redirect(
                    url=response.payment_url,
                    order_id=response.order_id,
                    amount=amount,
                    payment_method=method,
                )
            case PaymentMethodV1.CARD | PaymentMethodV1.COD:
                return Completed(order_id=response.order_id, amount=amount, payment_method=method)
            case _:
                assert_never(method)
