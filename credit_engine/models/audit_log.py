from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from credit_engine.core.types import utcnow


class AuditLog(Document):
    """Append-only trail of money movements and operator actions."""

    actor_id: str | None = None  # account, operator, or None for the worker
    event_type: str  # e.g. credits_topped_up, resource_unlocked, order_reconciled
    entity_type: str
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            IndexModel([("actor_id", ASCENDING), ("created_at", DESCENDING)], name="ix_audit_actor"),
            IndexModel([("entity_type", ASCENDING), ("entity_id", ASCENDING)], name="ix_audit_entity"),
            IndexModel([("event_type", ASCENDING), ("created_at", DESCENDING)], name="ix_audit_event"),
        ]
