from __future__ import annotations

import os

from services.api.app.services.commerce_base import CommerceBackend
from services.api.app.services.commerce_mock import MockCommerceBackend


def get_commerce_backend(access_token: str | None = None) -> CommerceBackend:
    """Select a commerce backend based on env vars.

    Defaults to the mock backend so tests and local dev are deterministic unless explicitly
    configured otherwise.
    """

    mode = os.getenv("STOREFRONT_COMMERCE_BACKEND", "mock").strip().lower()

    if mode == "mock":
        return MockCommerceBackend()

    if mode == "http":
        from services.api.app.services.commerce_http import HttpCommerceBackend

        return HttpCommerceBackend.from_env(access_token=access_token)

    raise ValueError(
        f"Unknown STOREFRONT_COMMERCE_BACKEND={mode!r}. Expected mock or http."
    )
