from __future__ import annotations

from fastapi import APIRouter, Depends
from packages.shared.schemas.events import EventTypeV1, EventV1
from services.api.app.db.deps import get_db
from services.api.app.db.models import EventLog, OrderRecord
from services.api.app.models.audit import OrderRecordOut
from sqlalchemy.orm import Session

router = APIRouter()


@router.get("/v1/checkout/sessions/{session_id}/events", response_model=list[EventV1])
def list_session_events(session_id: str, db: Session = Depends(get_db)) -> list[EventV1]:
    rows = (
        db.query(EventLog)
        .filter(EventLog.session_id == session_id)
        .order_by(EventLog.id.asc())
        .limit(500)
        .all()
    )

    return [
        EventV1(
            id=str(row.id),
            session_id=row.session_id,
            user_id=row.user_id,
            event_type=EventTypeV1(row.event_type),
            payload=row.event_payload_json,
            created_at=row.created_at.isoformat(),
        )
        for row in rows
    ]


@router.get("/v1/orders", response_model=list[OrderRecordOut])
def list_orders(user_id: str, db: Session = Depends(get_db)) -> list[OrderRecordOut]:
    rows = (
        db.query(OrderRecord)
        .filter(OrderRecord.user_id == user_id)
        .order_by(OrderRecord.created_at.desc())
        .limit(200)
        .all()
    )

    return [
        OrderRecordOut(
            order_id=row.id,
            session_id=row.session_id,
            user_id=row.user_id,
            payment_method=row.payment_method,
            amount=row.amount,
            status=row.status,
            payment_url=row.payment_url,
            created_at=row.created_at.isoformat(),
        )
        for row in rows
    ]
