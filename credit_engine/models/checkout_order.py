from datetime import datetime

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, IndexModel

from credit_engine.core.types import CheckoutOrderRecord, OrderStatus, utcnow


class CheckoutOrder(Document):
    """Razorpay order_id -> account, amount and credit status."""
    order_id: str
    account_id: str
    currency: str = "INR"
    requested_credits: int
    amount_minor_units: int
    status: OrderStatus = OrderStatus.PENDING
    plan_id: str = "custom"
    payment_id: str | None = None
    credited_balance: int | None = None
    credit_error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "checkout_orders"
        indexes = [
            IndexModel([("order_id", ASCENDING)], unique=True, name="uq_checkout_order"),
            IndexModel([("status", ASCENDING), ("updated_at", ASCENDING)], name="ix_checkout_status"),
        ]

    @classmethod
    def from_record(cls, record: CheckoutOrderRecord) -> "CheckoutOrder":
        return cls(**record.model_dump())

    def to_record(self) -> CheckoutOrderRecord:
        return CheckoutOrderRecord.model_validate(self.model_dump(exclude={"id", "revision_id"}))
