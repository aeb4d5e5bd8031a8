from __future__ import annotations

import json

import httpx
import pytest
from packages.shared.schemas.checkout_v1 import (
    CheckoutItem,
    CreateOrderRequest,
    ShippingAddress,
    StatusCodeV1,
)
from services.api.app.services.cart_validation import summarize
from services.api.app.services.commerce_base import (
    CartValidationFailedError,
    CommerceAuthRequiredError,
    CommerceRequestError,
    CommerceUnavailableError,
)
from services.api.app.services.commerce_http import HttpCommerceBackend, _HttpConfig


def _backend(handler) -> HttpCommerceBackend:
    cfg = _HttpConfig(base_url="http://commerce.test", timeout_s=5, access_token="tok-1")
    return HttpCommerceBackend(cfg, transport=httpx.MockTransport(handler))


def _order(payment_method: str = "card") -> CreateOrderRequest:
    return CreateOrderRequest(
        product_datas=[CheckoutItem(product_id="prod-tee", product_variant="M", quantity=2)],
        address=ShippingAddress(
            full_name="Asha Rao",
            phone="9800000001",
            email="asha@example.com",
            line1="12 MG Road",
            city="Bengaluru",
            state="Karnataka",
            zip_code="560001",
            country="India",
        ),
        payment_method=payment_method,
    )


@pytest.mark.asyncio
async def test_check_products_sends_remote_item_shape(make_line) -> None:
    seen: dict = {}
    body = summarize([make_line("prod-tee", StatusCodeV1.IN_STOCK, 600, quantity=2)]).model_dump(
        mode="json", by_alias=True
    )

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["json"] = json.loads(request.content)
        return httpx.Response(200, json=body)

    reconciliation = await _backend(handler).check_products_in_cart(
        [CheckoutItem(product_id="prod-tee", product_variant="M", quantity=2)]
    )

    assert seen["path"] == "/api/user/cart/check-products"
    assert seen["auth"] == "Bearer tok-1"
    assert seen["json"] == {
        "productIds": [{"productId": "prod-tee", "productVarient": "M", "quantity": 2}]
    }
    assert reconciliation.can_proceed_to_checkout is True
    assert reconciliation.lines[0].cart_details.stock_name == "M"


@pytest.mark.asyncio
async def test_get_addresses_parses_list() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        return httpx.Response(
            200,
            json={
                "addresses": [
                    {
                        "id": "a1",
                        "fullName": "Asha Rao",
                        "phone": "9800000001",
                        "line1": "12 MG Road",
                        "city": "Bengaluru",
                        "state": "Karnataka",
                        "zipCode": "560001",
                        "isDefault": True,
                    }
                ]
            },
        )

    addresses = await _backend(handler).get_addresses()

    assert [a.id for a in addresses] == ["a1"]
    assert addresses[0].is_default is True


@pytest.mark.asyncio
async def test_remove_cart_item_uses_delete() -> None:
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        return httpx.Response(200, json={"success": True})

    await _backend(handler).remove_cart_item("ci-9")

    assert seen == [("DELETE", "/api/user/cart/remove/ci-9")]


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("card", "/api/user/create-order/card"),
        ("upi-qr", "/api/user/create-order/upi-qr"),
        ("cod", "/api/user/create-order/cod"),
    ],
)
@pytest.mark.asyncio
async def test_create_order_routes_by_payment_method(method: str, path: str) -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["json"] = json.loads(request.content)
        return httpx.Response(
            200, json={"success": True, "orderId": "ord_1", "amount": "565.00"}
        )

    response = await _backend(handler).create_order(_order(method))

    assert seen["path"] == path
    assert seen["json"]["productDatas"][0]["productVarient"] == "M"
    assert seen["json"]["address"]["zipCode"] == "560001"
    assert response.order_id == "ord_1"


@pytest.mark.asyncio
async def test_cart_validation_failure_carries_payload(make_line) -> None:
    validation = summarize([make_line("prod-tee", StatusCodeV1.OUT_OF_STOCK, 600)]).model_dump(
        mode="json", by_alias=True
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={
                "code": "CART_VALIDATION_FAILED",
                "message": "Cart has unavailable items",
                "validationData": validation,
            },
        )

    with pytest.raises(CartValidationFailedError) as info:
        await _backend(handler).create_order(_order("upi-qr"))

    assert info.value.validation_data is not None
    assert info.value.validation_data.lines[0].status_code == StatusCodeV1.OUT_OF_STOCK


@pytest.mark.parametrize(
    ("status", "body", "exc"),
    [
        (400, {"message": "Coupon expired"}, CommerceRequestError),
        (401, {"message": "Token expired"}, CommerceAuthRequiredError),
        (422, {"errors": []}, CommerceRequestError),
        (404, {}, CommerceRequestError),
        (500, {}, CommerceUnavailableError),
        (503, {"message": "maintenance"}, CommerceUnavailableError),
    ],
)
@pytest.mark.asyncio
async def test_error_statuses_map_to_backend_errors(status: int, body: dict, exc: type) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=body)

    with pytest.raises(exc):
        await _backend(handler).create_order(_order())


@pytest.mark.asyncio
async def test_bad_request_without_validation_code_is_not_a_cart_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "Coupon expired"})

    with pytest.raises(CommerceRequestError) as info:
        await _backend(handler).create_order(_order())

    assert not isinstance(info.value, CartValidationFailedError)
    assert str(info.value) == "Coupon expired"


@pytest.mark.asyncio
async def test_transport_error_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CommerceUnavailableError):
        await _backend(handler).get_addresses()


@pytest.mark.asyncio
async def test_malformed_payload_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"products": "nope"})

    with pytest.raises(CommerceUnavailableError):
        await _backend(handler).check_products_in_cart(
            [CheckoutItem(product_id="prod-tee", product_variant="M", quantity=1)]
        )


def test_from_env_reads_base_url_and_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STOREFRONT_COMMERCE_BASE_URL", "https://shop.test/")
    monkeypatch.setenv("STOREFRONT_COMMERCE_TOKEN", "env-token")

    backend = HttpCommerceBackend.from_env()
    assert backend._cfg.base_url == "https://shop.test"
    assert backend._cfg.access_token == "env-token"

    backend = HttpCommerceBackend.from_env(access_token="user-token")
    assert backend._cfg.access_token == "user-token"
