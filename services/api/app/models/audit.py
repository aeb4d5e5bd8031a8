from __future__ import annotations

from pydantic import BaseModel


class OrderRecordOut(BaseModel):
    order_id: str
    session_id: str
    user_id: str | None = None
    payment_method: str
    amount: str
    status: str
    payment_url: str | None = None
    created_at: str
