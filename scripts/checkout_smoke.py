from __future__ import annotations

import argparse
import asyncio
import logging
import os
from uuid import uuid4

from packages.shared.schemas.checkout_v1 import CheckoutItem, PaymentMethodV1
from services.api.app.models.checkout import (
    AuthContext,
    NextStepAction,
    SubmitPaymentAction,
)
from services.api.app.services.checkout_orchestrator import CheckoutOrchestrator, session_view
from services.api.app.services.commerce_factory import get_commerce_backend


def _parse_item(raw: str) -> CheckoutItem:
    # product:variant[:quantity]
    parts = raw.split(":")
    if len(parts) not in {2, 3}:
        raise argparse.ArgumentTypeError(f"Expected product:variant[:quantity], got {raw!r}")
    quantity = int(parts[2]) if len(parts) == 3 else 1
    return CheckoutItem(product_id=parts[0], product_variant=parts[1], quantity=quantity)


async def _run(args: argparse.Namespace) -> int:
    auth = AuthContext(
        is_authenticated=True,
        user_id=args.user_id,
        email=args.email,
        access_token=args.token,
    )
    orchestrator = CheckoutOrchestrator(
        session_id=uuid4().hex,
        items=args.item,
        auth=auth,
        backend=get_commerce_backend(access_token=args.token),
    )

    session = await orchestrator.start()
    print(f"step={int(session.step)} status={session.status.value} total={session.pricing.total}")
    if session.error:
        print(f"error: {session.error}")

    if args.place_order and not orchestrator.is_terminal:
        await orchestrator.dispatch(NextStepAction())
        await orchestrator.dispatch(SubmitPaymentAction(method=PaymentMethodV1(args.method)))

    print(session_view(orchestrator.session).model_dump_json(indent=2, by_alias=True))
    return 0 if orchestrator.session.error is None else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Walk a checkout against the configured backend")
    parser.add_argument(
        "--item",
        action="append",
        type=_parse_item,
        required=True,
        help="Item as product:variant[:quantity]; repeat for several items",
    )
    parser.add_argument("--user-id", default="u-1")
    parser.add_argument("--email", default="")
    parser.add_argument(
        "--token",
        default=os.getenv("STOREFRONT_COMMERCE_TOKEN"),
        help="Bearer token for the remote commerce API",
    )
    parser.add_argument(
        "--method",
        choices=[m.value for m in PaymentMethodV1],
        default=PaymentMethodV1.COD.value,
    )
    parser.add_argument(
        "--place-order",
        action="store_true",
        help="Continue to payment and create the order (default: reconcile only)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=os.getenv("STOREFRONT_LOG_LEVEL", "INFO").upper())
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
