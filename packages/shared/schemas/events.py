"""Shared checkout event schema (v1).

The checkout service stores an append-only event log per checkout session. Clients can
consume these events to render an audit trail of a checkout attempt.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventTypeV1(str, Enum):
    SESSION_CREATED = "SESSION_CREATED"
    CART_RECONCILED = "CART_RECONCILED"
    STEP_CHANGED = "STEP_CHANGED"
    LINE_REMOVED = "LINE_REMOVED"
    DISPATCH_STARTED = "DISPATCH_STARTED"
    ORDER_CREATED = "ORDER_CREATED"
    PAYMENT_REDIRECTED = "PAYMENT_REDIRECTED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    DISPATCH_FAILED = "DISPATCH_FAILED"
    SESSION_ABANDONED = "SESSION_ABANDONED"


class EventV1(BaseModel):
    id: str
    session_id: str
    user_id: str | None = None

    event_type: EventTypeV1
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
