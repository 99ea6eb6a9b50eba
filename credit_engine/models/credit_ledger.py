from datetime import datetime

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from credit_engine.core.types import LedgerEntryRecord, LedgerReason, ResourceKind, utcnow


class CreditLedgerEntry(Document):
    account_id: str
    delta: int  # positive = topup, negative = unlock spend
    balance_after: int
    reason: LedgerReason
    resource_kind: ResourceKind | None = None
    resource_id: str | None = None
    payment_order_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "credit_ledger"
        indexes = [
            IndexModel([("account_id", ASCENDING), ("created_at", DESCENDING)], name="ix_ledger_account_created"),
            # One TOPUP per gateway order: replayed callbacks hit this
            IndexModel(
                [("payment_order_id", ASCENDING)],
                unique=True,
                name="uq_ledger_topup_order",
                partialFilterExpression={"reason": LedgerReason.TOPUP.value},
            ),
            IndexModel(
                [("account_id", ASCENDING), ("resource_kind", ASCENDING), ("resource_id", ASCENDING)],
                name="ix_ledger_resource",
            ),
        ]

    def to_record(self) -> LedgerEntryRecord:
        return LedgerEntryRecord(
            entry_id=str(self.id),
            account_id=self.account_id,
            delta=self.delta,
            reason=self.reason,
            resource_kind=self.resource_kind,
            resource_id=self.resource_id,
            payment_order_id=self.payment_order_id,
            balance_after=self.balance_after,
            created_at=self.created_at,
        )
