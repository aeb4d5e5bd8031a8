"""Checkout step state machine.

The orchestrator is the only writer of ``CheckoutSession``. Every UI interaction reaches
it as one action of the ``CheckoutAction`` union through :meth:`CheckoutOrchestrator.dispatch`.
Between awaited backend calls the state changes synchronously, so a reader never sees
pricing computed from a reconciliation other than the current one.

Each reconciliation and address fetch carries a token from a per-query counter. A
response whose token is no longer the latest one is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import Any, assert_never

from packages.shared.schemas.checkout_v1 import (
    Address,
    CartReconciliation,
    CheckoutItem,
    PaymentMethodV1,
)
from packages.shared.schemas.events import EventTypeV1
from services.api.app.models.checkout import (
    AbandonAction,
    AddressesUpdatedAction,
    AuthContext,
    CheckoutAction,
    CheckoutSession,
    CheckoutSessionView,
    CheckoutStep,
    CloseValidationModalAction,
    DismissErrorAction,
    Navigation,
    NextStepAction,
    PreviousStepAction,
    RefreshCartAction,
    RemoveLineAction,
    SelectAddressAction,
    SelectPaymentMethodAction,
    SessionStatus,
    SignInAction,
    SubmitPaymentAction,
)
from services.api.app.services.cart_validation import (
    CartValidationEngine,
    normalize_reconciliation,
)
from services.api.app.services.commerce_base import CommerceBackend, CommerceBackendError
from services.api.app.services.payment_dispatcher import (
    Completed,
    DispatchInProgressError,
    DispatchOutcome,
    Failed,
    FailureKind,
    PaymentDispatcher,
    Redirect,
    ValidationFailed,
)
from services.api.app.services.pricing import compute_pricing

logger = logging.getLogger(__name__)

EventListener = Callable[[CheckoutSession, EventTypeV1, dict[str, Any]], None]
BackendFactory = Callable[[str | None], CommerceBackend]

ERR_LOAD_FAILED = "Failed to load checkout data. Please try again."
ERR_ADDRESSES_FAILED = "Failed to load addresses. Please try again."
ERR_SELECT_ADDRESS = "Please select a delivery address"
ERR_CART_BLOCKED = (
    "Fix cart issues before payment. Some items are out of stock or have quantity errors."
)
ERR_NO_VALID_ITEMS = "No valid items in cart for checkout"
ERR_SELECT_PAYMENT = "Please select a payment method"
ERR_VALIDATING = "Your cart is still being checked. Please wait a moment."
ERR_REMOVE_FAILED = "Failed to remove item. Please try again."
ERR_UNEXPECTED = "Something went wrong while placing your order. Please try again."
ERR_PROCESSING = "Your order is being placed. Please wait."

_ABANDON_URLS = {"cart": "/cart", "catalog": "/products"}

# Actions that could move the session away from the payment step mid-dispatch.
_BLOCKED_WHILE_PROCESSING = (
    PreviousStepAction,
    SelectAddressAction,
    AddressesUpdatedAction,
    SelectPaymentMethodAction,
    RefreshCartAction,
    RemoveLineAction,
)


def default_signin_url() -> str:
    return os.getenv("STOREFRONT_SIGNIN_URL", "/signin?redirect=/checkout")


def pick_address(addresses: list[Address], preferred_id: str | None) -> str | None:
    if preferred_id and any(a.id == preferred_id for a in addresses):
        return preferred_id
    for address in addresses:
        if address.is_default:
            return address.id
    return addresses[0].id if addresses else None


def has_eligible_line(reconciliation: CartReconciliation | None) -> bool:
    if reconciliation is None:
        return False
    return any(line.can_proceed_to_checkout for line in reconciliation.lines)


def can_enter_payment(reconciliation: CartReconciliation | None) -> bool:
    return (
        reconciliation is not None
        and reconciliation.can_proceed_to_checkout
        and has_eligible_line(reconciliation)
    )


def session_view(session: CheckoutSession) -> CheckoutSessionView:
    lines = session.reconciliation.lines if session.reconciliation is not None else []
    valid = sum(1 for line in lines if line.can_proceed_to_checkout)
    return CheckoutSessionView(
        session_id=session.session_id,
        step=session.step,
        status=session.status,
        is_authenticated=session.is_authenticated,
        items=session.items,
        addresses=session.addresses,
        selected_address_id=session.selected_address_id,
        reconciliation=session.reconciliation,
        pricing=session.pricing,
        selected_payment_method=session.selected_payment_method,
        is_processing=session.is_processing,
        is_validating_cart=session.is_validating_cart,
        is_address_loading=session.is_address_loading,
        error=session.error,
        redirect=session.redirect,
        show_validation_modal=session.show_validation_modal,
        total_items=sum(line.cart_details.quantity for line in lines),
        valid_items_count=valid,
        invalid_items_count=len(lines) - valid,
    )


class CheckoutOrchestrator:
    def __init__(
        self,
        *,
        session_id: str,
        items: list[CheckoutItem],
        auth: AuthContext,
        backend: CommerceBackend,
        backend_factory: BackendFactory | None = None,
        engine: CartValidationEngine | None = None,
        dispatcher: PaymentDispatcher | None = None,
        on_event: EventListener | None = None,
        signin_url: str | None = None,
    ) -> None:
        self._backend = backend
        self._backend_factory = backend_factory
        self._engine = engine or CartValidationEngine(backend)
        self._dispatcher = dispatcher or PaymentDispatcher(backend)
        self._on_event = on_event
        self._signin_url = signin_url or default_signin_url()

        self._reconcile_token = 0
        self._address_token = 0

        self.session = CheckoutSession(
            session_id=session_id,
            user_id=auth.user_id,
            email=auth.email,
            items=list(items),
            is_authenticated=auth.is_authenticated,
            pricing=compute_pricing(None),
        )

    @property
    def is_terminal(self) -> bool:
        return self.session.status in {SessionStatus.COMPLETED, SessionStatus.ABANDONED}

    async def start(self) -> CheckoutSession:
        session = self.session
        if not session.items:
            logger.warning("Checkout %s entered without items", session.session_id)
            self._abandon("cart", reason="empty_checkout")
            return session

        self._emit(
            EventTypeV1.SESSION_CREATED,
            {
                "items": [item.model_dump(mode="json", by_alias=True) for item in session.items],
                "is_authenticated": session.is_authenticated,
            },
        )

        if session.is_authenticated:
            self._set_step(CheckoutStep.ADDRESS)
            await self._load(initial=True)
        return session

    async def dispatch(self, action: CheckoutAction) -> CheckoutSession:
        session = self.session
        if self.is_terminal:
            logger.info("Ignoring %s on finished checkout %s", action.type, session.session_id)
            return session

        if session.status == SessionStatus.SUSPENDED and not isinstance(
            action, (SignInAction, AbandonAction)
        ):
            logger.info("Ignoring %s while checkout %s awaits sign-in", action.type, session.session_id)
            return session

        if session.is_processing and isinstance(action, _BLOCKED_WHILE_PROCESSING):
            logger.info("Ignoring %s while checkout %s places its order", action.type, session.session_id)
            session.error = ERR_PROCESSING
            return session

        match action:
            case NextStepAction():
                await self._next_step()
            case PreviousStepAction():
                if session.step > CheckoutStep.AUTH:
                    self._set_step(CheckoutStep(session.step - 1))
                    session.error = None
            case SelectAddressAction(address_id=address_id):
                if any(a.id == address_id for a in session.addresses):
                    session.selected_address_id = address_id
                    session.error = None
                else:
                    session.error = ERR_SELECT_ADDRESS
            case AddressesUpdatedAction(address_id=address_id):
                if await self._refresh_addresses(preferred_id=address_id):
                    if session.selected_address() is not None:
                        self._set_step(CheckoutStep.REVIEW)
            case SelectPaymentMethodAction(method=method):
                session.selected_payment_method = method
                session.error = None
            case RefreshCartAction():
                session.error = None
                await self._refresh_reconciliation()
            case RemoveLineAction(cart_item_id=cart_item_id):
                await self._remove_line(cart_item_id)
            case SubmitPaymentAction(method=method, coupon_code=coupon_code):
                chosen = method or session.selected_payment_method
                if chosen is None:
                    session.error = ERR_SELECT_PAYMENT
                elif session.step != CheckoutStep.PAYMENT:
                    session.error = "Review your order before choosing a payment method"
                else:
                    await self._submit(chosen, coupon_code)
            case SignInAction(auth=auth):
                await self._sign_in(auth)
            case AbandonAction(destination=destination):
                self._abandon(destination, reason="user")
            case DismissErrorAction():
                session.error = None
            case CloseValidationModalAction():
                session.show_validation_modal = False
            case _:
                assert_never(action)

        return session

    async def _next_step(self) -> None:
        session = self.session
        session.error = None

        match session.step:
            case CheckoutStep.AUTH:
                if session.is_authenticated:
                    self._set_step(CheckoutStep.ADDRESS)
                else:
                    self._require_sign_in()
            case CheckoutStep.ADDRESS:
                if session.addresses and session.selected_address() is not None:
                    self._set_step(CheckoutStep.REVIEW)
                else:
                    session.error = ERR_SELECT_ADDRESS
            case CheckoutStep.REVIEW:
                if session.is_validating_cart:
                    session.error = ERR_VALIDATING
                elif session.reconciliation is None or not session.reconciliation.can_proceed_to_checkout:
                    session.error = ERR_CART_BLOCKED
                elif not has_eligible_line(session.reconciliation):
                    session.error = ERR_NO_VALID_ITEMS
                else:
                    self._set_step(CheckoutStep.PAYMENT)
            case CheckoutStep.PAYMENT:
                if session.selected_payment_method is None:
                    session.error = ERR_SELECT_PAYMENT
                else:
                    await self._submit(session.selected_payment_method, None)
            case _:
                assert_never(session.step)

    async def _sign_in(self, auth: AuthContext) -> None:
        session = self.session
        if not auth.is_authenticated:
            self._require_sign_in()
            return

        if self._backend_factory is not None and auth.access_token:
            self._rebind(self._backend_factory(auth.access_token))

        session.is_authenticated = True
        session.user_id = auth.user_id or session.user_id
        session.email = auth.email or session.email
        session.status = SessionStatus.ACTIVE
        session.redirect = None
        session.error = None

        if session.step == CheckoutStep.AUTH:
            self._set_step(CheckoutStep.ADDRESS)
            await self._load(initial=True)

    def _rebind(self, backend: CommerceBackend) -> None:
        """Swap in a backend carrying the new credentials; nothing is in flight while suspended."""

        self._backend = backend
        self._engine = CartValidationEngine(backend, self._engine.threshold)
        self._dispatcher = PaymentDispatcher(backend)

    async def _load(self, *, initial: bool) -> None:
        session = self.session
        session.error = None

        addresses_ok, reconciled = await asyncio.gather(
            self._refresh_addresses(),
            self._refresh_reconciliation(),
        )

        if self.is_terminal:
            return
        if (
            initial
            and addresses_ok
            and reconciled
            and session.is_authenticated
            and session.addresses
            and session.step == CheckoutStep.ADDRESS
        ):
            self._set_step(CheckoutStep.REVIEW)

    async def _refresh_addresses(self, preferred_id: str | None = None) -> bool:
        session = self.session
        self._address_token += 1
        token = self._address_token
        session.is_address_loading = True

        try:
            addresses = await self._backend.get_addresses()
        except CommerceBackendError as e:
            logger.warning("Address fetch failed for checkout %s: %s", session.session_id, e)
            if token == self._address_token and not self.is_terminal:
                session.is_address_loading = False
                session.error = ERR_ADDRESSES_FAILED
            return False

        if token != self._address_token or self.is_terminal:
            logger.info("Discarding stale address response for checkout %s", session.session_id)
            return False

        session.addresses = addresses
        session.selected_address_id = pick_address(
            addresses, preferred_id or session.selected_address_id
        )
        session.is_address_loading = False
        return True

    async def _refresh_reconciliation(self) -> bool:
        session = self.session
        self._reconcile_token += 1
        token = self._reconcile_token
        session.is_validating_cart = True

        try:
            reconciliation = await self._engine.reconcile(list(session.items))
        except CommerceBackendError as e:
            logger.warning("Cart reconciliation failed for checkout %s: %s", session.session_id, e)
            if token == self._reconcile_token and not self.is_terminal:
                session.is_validating_cart = False
                session.error = ERR_LOAD_FAILED
            return False

        if token != self._reconcile_token or self.is_terminal:
            logger.info("Discarding stale reconciliation for checkout %s", session.session_id)
            return False

        self._apply_reconciliation(reconciliation)
        session.is_validating_cart = False

        if session.step == CheckoutStep.PAYMENT and not can_enter_payment(reconciliation):
            self._set_step(CheckoutStep.REVIEW)
            session.error = ERR_CART_BLOCKED
        return True

    def _apply_reconciliation(self, reconciliation: CartReconciliation) -> None:
        session = self.session
        session.reconciliation = reconciliation
        session.pricing = compute_pricing(reconciliation)
        self._emit(
            EventTypeV1.CART_RECONCILED,
            {
                "overall_status": reconciliation.overall_status.value,
                "can_proceed_to_checkout": reconciliation.can_proceed_to_checkout,
                "total": str(session.pricing.total),
            },
        )

    async def _remove_line(self, cart_item_id: str) -> None:
        session = self.session
        lines = session.reconciliation.lines if session.reconciliation is not None else []
        line = next(
            (candidate for candidate in lines if candidate.cart_details.cart_item_id == cart_item_id),
            None,
        )
        if line is None:
            session.error = "Item is not part of this checkout"
            return
        if line.can_proceed_to_checkout:
            session.error = "Only items that cannot be checked out can be removed here"
            return

        try:
            await self._backend.remove_cart_item(cart_item_id)
        except CommerceBackendError as e:
            logger.warning("Removing cart item %s failed: %s", cart_item_id, e)
            session.error = ERR_REMOVE_FAILED
            return

        if self.is_terminal:
            return

        stock_name = line.cart_details.stock_name
        session.items = [
            item
            for item in session.items
            if not (
                item.product_id == line.product_id
                and (not stock_name or item.product_variant == stock_name)
            )
        ]
        session.error = None
        self._emit(
            EventTypeV1.LINE_REMOVED,
            {"cart_item_id": cart_item_id, "status_code": line.status_code.value},
        )

        if not session.items:
            self._abandon("cart", reason="cart_emptied")
            return

        await self._refresh_reconciliation()

    async def _submit(self, method: PaymentMethodV1, coupon_code: str | None) -> None:
        session = self.session
        if session.is_processing or self._dispatcher.is_in_flight(session.session_id):
            logger.info("Ignoring duplicate payment submission for checkout %s", session.session_id)
            return
        if session.is_validating_cart:
            session.error = ERR_VALIDATING
            return
        if not can_enter_payment(session.reconciliation):
            self._set_step(CheckoutStep.REVIEW)
            session.error = ERR_CART_BLOCKED
            return

        session.selected_payment_method = method
        session.is_processing = True
        session.error = None
        self._emit(
            EventTypeV1.DISPATCH_STARTED,
            {"payment_method": method.value, "total": str(session.pricing.total)},
        )

        snapshot = session.model_copy(deep=True)
        try:
            outcome = await self._dispatcher.dispatch(method, snapshot, coupon_code=coupon_code)
        except DispatchInProgressError:
            logger.info("Payment already in flight for checkout %s", session.session_id)
            session.is_processing = False
            return
        except Exception:
            logger.exception("Unexpected dispatch failure for checkout %s", session.session_id)
            session.is_processing = False
            session.error = ERR_UNEXPECTED
            return

        if self.is_terminal:
            logger.warning(
                "Checkout %s finished while its order was being created; outcome %s dropped",
                session.session_id,
                type(outcome).__name__,
            )
            return

        await self._apply_outcome(outcome)

    async def _apply_outcome(self, outcome: DispatchOutcome) -> None:
        session = self.session
        session.is_processing = False

        match outcome:
            case Redirect(url=url, order_id=order_id, amount=amount, payment_method=method):
                session.status = SessionStatus.COMPLETED
                session.redirect = Navigation(url=url, external=True)
                self._emit(
                    EventTypeV1.PAYMENT_REDIRECTED,
                    {
                        "order_id": order_id,
                        "amount": amount,
                        "payment_method": method.value,
                        "payment_url": url,
                    },
                )
            case Completed(order_id=order_id, amount=amount, payment_method=method):
                session.status = SessionStatus.COMPLETED
                session.redirect = Navigation(
                    url=f"/order-success/{order_id}",
                    state={"paymentMethod": method.value, "amount": amount, "orderId": order_id},
                )
                self._emit(
                    EventTypeV1.ORDER_CREATED,
                    {"order_id": order_id, "amount": amount, "payment_method": method.value},
                )
            case ValidationFailed(reconciliation=reconciliation, message=message):
                self._set_step(CheckoutStep.REVIEW)
                session.show_validation_modal = True
                self._emit(EventTypeV1.VALIDATION_FAILED, {"message": message})
                session.error = message
                # A failed refresh replaces the message with its own error.
                if reconciliation is None:
                    await self._refresh_reconciliation()
                else:
                    # Supersedes any reconciliation still in flight.
                    self._reconcile_token += 1
                    session.is_validating_cart = False
                    self._apply_reconciliation(
                        normalize_reconciliation(
                            reconciliation, session.items, self._engine.threshold
                        )
                    )
            case Failed(reason=reason, kind=kind):
                session.error = reason
                self._emit(EventTypeV1.DISPATCH_FAILED, {"reason": reason, "kind": kind.value})
                if kind == FailureKind.AUTH_REQUIRED:
                    session.is_authenticated = False
                    self._require_sign_in()
            case _:
                assert_never(outcome)

    def _require_sign_in(self) -> None:
        session = self.session
        session.status = SessionStatus.SUSPENDED
        session.redirect = Navigation(url=self._signin_url)

    def _abandon(self, destination: str, *, reason: str) -> None:
        session = self.session
        session.status = SessionStatus.ABANDONED
        session.redirect = Navigation(url=_ABANDON_URLS.get(destination, "/cart"))
        session.is_processing = False
        self._emit(EventTypeV1.SESSION_ABANDONED, {"destination": destination, "reason": reason})

    def _set_step(self, step: CheckoutStep) -> None:
        session = self.session
        if session.step == step:
            return
        previous = session.step
        session.step = step
        self._emit(EventTypeV1.STEP_CHANGED, {"from": int(previous), "to": int(step)})

    def _emit(self, event_type: EventTypeV1, payload: dict[str, Any]) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(self.session, event_type, payload)
        except Exception:
            logger.exception("Checkout event listener failed for %s", event_type.value)
