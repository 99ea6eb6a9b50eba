from datetime import datetime

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, IndexModel

from credit_engine.core.types import ResourceKind, UnlockRecordView, utcnow


class UnlockRecord(Document):
    """Permanent grant of one resource to one account. Never deleted."""
    account_id: str
    resource_kind: ResourceKind
    resource_id: str
    price: int
    unlocked_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "unlock_records"
        indexes = [
            IndexModel(
                [("account_id", ASCENDING), ("resource_kind", ASCENDING), ("resource_id", ASCENDING)],
                unique=True,
                name="uq_unlock_resource",
            ),
        ]

    def to_view(self) -> UnlockRecordView:
        return UnlockRecordView(
            account_id=self.account_id,
            resource_kind=self.resource_kind,
            resource_id=self.resource_id,
            price=self.price,
            unlocked_at=self.unlocked_at,
        )
