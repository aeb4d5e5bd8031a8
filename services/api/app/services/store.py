from __future__ import annotations

from dataclasses import dataclass, field

from services.api.app.services.audit_log import AuditTrail
from services.api.app.services.checkout_orchestrator import CheckoutOrchestrator


@dataclass(slots=True)
class LiveCheckout:
    orchestrator: CheckoutOrchestrator
    audit: AuditTrail = field(default_factory=AuditTrail)


class InMemorySessionStore:
    """Live checkout sessions, keyed by session id. Nothing survives a restart."""

    def __init__(self) -> None:
        self._sessions: dict[str, LiveCheckout] = {}

    def save(self, live: LiveCheckout) -> None:
        self._sessions[live.orchestrator.session.session_id] = live

    def get(self, session_id: str) -> LiveCheckout | None:
        return self._sessions.get(session_id)

    def drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


store = InMemorySessionStore()
