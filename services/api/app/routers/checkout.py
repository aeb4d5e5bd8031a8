from __future__ import annotations

from uuid import uuid4

from fastapi import APIRouter, HTTPException
from services.api.app.models.checkout import (
    CheckoutActionRequest,
    CheckoutSessionView,
    CheckoutStartRequest,
)
from services.api.app.services.audit_log import AuditTrail
from services.api.app.services.checkout_orchestrator import CheckoutOrchestrator, session_view
from services.api.app.services.commerce_factory import get_commerce_backend
from services.api.app.services.store import LiveCheckout, store

router = APIRouter()


def _get_session_or_404(session_id: str) -> LiveCheckout:
    live = store.get(session_id)
    if live is None:
        raise HTTPException(status_code=404, detail="Checkout session not found")
    return live


async def _respond(live: LiveCheckout) -> CheckoutSessionView:
    await live.audit.flush()
    orchestrator = live.orchestrator
    view = session_view(orchestrator.session)
    if orchestrator.is_terminal:
        store.drop(orchestrator.session.session_id)
    return view


@router.post("/v1/checkout/sessions", response_model=CheckoutSessionView)
async def create_checkout_session(payload: CheckoutStartRequest) -> CheckoutSessionView:
    try:
        backend = get_commerce_backend(access_token=payload.auth.access_token)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    audit = AuditTrail()
    orchestrator = CheckoutOrchestrator(
        session_id=uuid4().hex,
        items=payload.items,
        auth=payload.auth,
        backend=backend,
        backend_factory=get_commerce_backend,
        on_event=audit,
    )
    live = LiveCheckout(orchestrator=orchestrator, audit=audit)
    store.save(live)

    await orchestrator.start()
    return await _respond(live)


@router.get("/v1/checkout/sessions/{session_id}", response_model=CheckoutSessionView)
def get_checkout_session(session_id: str) -> CheckoutSessionView:
    return session_view(_get_session_or_404(session_id).orchestrator.session)


@router.post("/v1/checkout/sessions/{session_id}/actions", response_model=CheckoutSessionView)
async def apply_checkout_action(
    session_id: str,
    payload: CheckoutActionRequest,
) -> CheckoutSessionView:
    live = _get_session_or_404(session_id)
    await live.orchestrator.dispatch(payload.action)
    return await _respond(live)
