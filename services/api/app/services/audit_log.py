from __future__ import annotations

import asyncio
import logging
from typing import Any

from packages.shared.schemas.events import EventTypeV1
from services.api.app.db.database import db_session
from services.api.app.db.models import EventLog, OrderRecord
from services.api.app.models.checkout import CheckoutSession

logger = logging.getLogger(__name__)

_ORDER_STATUS = {
    EventTypeV1.ORDER_CREATED: "PLACED",
    EventTypeV1.PAYMENT_REDIRECTED: "PENDING_PAYMENT",
}

PendingEvent = tuple[str, str | None, EventTypeV1, dict[str, Any]]


def record_events(events: list[PendingEvent]) -> None:
    """Append checkout events in one transaction; order-producing events also record the order."""

    db = db_session()
    try:
        for session_id, user_id, event_type, payload in events:
            db.add(
                EventLog(
                    session_id=session_id,
                    user_id=user_id,
                    event_type=event_type.value,
                    event_payload_json=payload,
                )
            )

            status = _ORDER_STATUS.get(event_type)
            if status is not None:
                db.add(
                    OrderRecord(
                        id=str(payload["order_id"]),
                        session_id=session_id,
                        user_id=user_id,
                        payment_method=str(payload["payment_method"]),
                        amount=str(payload["amount"]),
                        status=status,
                        payment_url=payload.get("payment_url"),
                    )
                )

        db.commit()
    finally:
        db.close()


class AuditTrail:
    """Checkout event listener that buffers events until the request flushes them.

    The orchestrator emits synchronously from inside the event loop; the database
    write happens in a worker thread on :meth:`flush`.
    """

    def __init__(self) -> None:
        self._pending: list[PendingEvent] = []

    def __call__(
        self,
        session: CheckoutSession,
        event_type: EventTypeV1,
        payload: dict[str, Any],
    ) -> None:
        self._pending.append((session.session_id, session.user_id, event_type, dict(payload)))

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def flush(self) -> None:
        if not self._pending:
            return
        batch, self._pending = self._pending, []
        try:
            await asyncio.to_thread(record_events, batch)
        except Exception:
            # Audit writes never fail a checkout request.
            logger.exception("Writing %d checkout events failed", len(batch))
