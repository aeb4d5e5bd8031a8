from __future__ import annotations

from typing import Protocol

from packages.shared.schemas.checkout_v1 import (
    Address,
    CartReconciliation,
    CheckoutItem,
    CreateOrderRequest,
    OrderResponse,
)


class CommerceBackendError(Exception):
    """Base class for commerce backend errors."""


class CommerceUnavailableError(CommerceBackendError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CommerceAuthRequiredError(CommerceBackendError):
    def __init__(self) -> None:
        super().__init__("Authentication required")


class CommerceRequestError(CommerceBackendError):
    """The backend rejected the request (4xx other than auth)."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class CartValidationFailedError(CommerceRequestError):
    def __init__(self, validation_data: CartReconciliation | None, message: str | None = None) -> None:
        super().__init__(message or "CART_VALIDATION_FAILED", status_code=400)
        self.validation_data = validation_data


class EmptyCheckoutError(ValueError):
    def __init__(self) -> None:
        super().__init__("Checkout requires at least one item")


class CommerceBackend(Protocol):
    name: str

    async def get_addresses(self) -> list[Address]: ...

    async def check_products_in_cart(self, items: list[CheckoutItem]) -> CartReconciliation: ...

    async def remove_cart_item(self, cart_item_id: str) -> None: ...

    async def create_order(self, request: CreateOrderRequest) -> OrderResponse: ...
