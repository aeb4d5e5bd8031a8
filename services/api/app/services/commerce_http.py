from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx
from packages.shared.schemas.checkout_v1 import (
    Address,
    CartReconciliation,
    CheckoutItem,
    CreateOrderRequest,
    OrderErrorBody,
    OrderResponse,
)
from pydantic import ValidationError
from services.api.app.services.commerce_base import (
    CartValidationFailedError,
    CommerceAuthRequiredError,
    CommerceBackendError,
    CommerceRequestError,
    CommerceUnavailableError,
)

logger = logging.getLogger(__name__)

CART_VALIDATION_FAILED = "CART_VALIDATION_FAILED"

_ORDER_PATHS = {
    "card": "/api/user/create-order/card",
    "upi-qr": "/api/user/create-order/upi-qr",
    "cod": "/api/user/create-order/cod",
}


@dataclass(frozen=True, slots=True)
class _HttpConfig:
    base_url: str
    timeout_s: float
    access_token: str | None


class HttpCommerceBackend:
    """Commerce backend talking to the remote storefront API over HTTP.

    Env vars:
    - STOREFRONT_COMMERCE_BACKEND=http
    - STOREFRONT_COMMERCE_BASE_URL (default: http://localhost:5000)
    - STOREFRONT_COMMERCE_TIMEOUT_S (default: 10)
    - STOREFRONT_COMMERCE_TOKEN (fallback bearer token when the caller has none)
    """

    name = "HTTP"

    def __init__(
        self,
        cfg: _HttpConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg
        self._transport = transport

    @classmethod
    def from_env(cls, access_token: str | None = None) -> "HttpCommerceBackend":
        base_url = os.getenv("STOREFRONT_COMMERCE_BASE_URL", "http://localhost:5000").rstrip("/")
        timeout_s = float(os.getenv("STOREFRONT_COMMERCE_TIMEOUT_S", "10"))
        token = access_token or os.getenv("STOREFRONT_COMMERCE_TOKEN", "").strip() or None
        return cls(_HttpConfig(base_url=base_url, timeout_s=timeout_s, access_token=token))

    async def get_addresses(self) -> list[Address]:
        data = await self._request("GET", "/api/user/address")
        raw = data.get("addresses") if isinstance(data, dict) else None
        return [_parse(Address, a) for a in raw or []]

    async def check_products_in_cart(self, items: list[CheckoutItem]) -> CartReconciliation:
        payload = {"productIds": [i.model_dump(mode="json", by_alias=True) for i in items]}
        data = await self._request("POST", "/api/user/cart/check-products", json=payload)
        return _parse(CartReconciliation, data)

    async def remove_cart_item(self, cart_item_id: str) -> None:
        await self._request("DELETE", f"/api/user/cart/remove/{cart_item_id}")

    async def create_order(self, request: CreateOrderRequest) -> OrderResponse:
        path = _ORDER_PATHS.get(request.payment_method)
        if path is None:
            raise CommerceRequestError(
                f"Unsupported payment method: {request.payment_method}", status_code=400
            )

        payload = request.model_dump(mode="json", by_alias=True, exclude_none=True)
        data = await self._request("POST", path, json=payload)
        return _parse(OrderResponse, data)

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self._cfg.access_token:
            headers["Authorization"] = f"Bearer {self._cfg.access_token}"
        return httpx.AsyncClient(
            base_url=self._cfg.base_url,
            timeout=self._cfg.timeout_s,
            headers=headers,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json)
        except httpx.HTTPError as e:
            logger.warning("Commerce API %s %s failed: %s", method, path, e)
            raise CommerceUnavailableError(f"Commerce API unreachable: {e}") from e

        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise CommerceUnavailableError(
                    "Commerce API returned invalid JSON", response.status_code
                ) from e

        raise _error_from_response(response)


def _parse(model: Any, data: Any) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise CommerceUnavailableError(f"Unexpected commerce API payload: {e}") from e


def _error_body(response: httpx.Response) -> OrderErrorBody:
    try:
        data = response.json()
    except ValueError:
        return OrderErrorBody()
    if not isinstance(data, dict):
        return OrderErrorBody()
    try:
        return OrderErrorBody.model_validate(data)
    except ValidationError:
        # Keep the code and message even when the validation payload is malformed.
        return OrderErrorBody(code=data.get("code"), message=data.get("message"))


def _error_from_response(response: httpx.Response) -> CommerceBackendError:
    status = response.status_code
    body = _error_body(response)

    if status == 400:
        if body.code == CART_VALIDATION_FAILED:
            return CartValidationFailedError(body.validation_data, body.message)
        return CommerceRequestError(body.message or "Invalid order data", status)

    if status == 401:
        return CommerceAuthRequiredError()

    if status == 422:
        return CommerceRequestError("Validation failed", status)

    if 400 <= status < 500:
        return CommerceRequestError(body.message or "Failed to create order", status)

    return CommerceUnavailableError(body.message or f"Commerce API error ({status})", status)
