"""Enums and result types shared by stores, services and routers."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResourceKind(str, Enum):
    INVESTOR_PROFILE = "INVESTOR_PROFILE"
    INTRODUCTION = "INTRODUCTION"
    PIPELINE_CHAT = "PIPELINE_CHAT"


class LedgerReason(str, Enum):
    TOPUP = "TOPUP"
    UNLOCK_SPEND = "UNLOCK_SPEND"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    CREDITED = "CREDITED"
    FAILED = "FAILED"


class UnlockStatus(str, Enum):
    ALREADY_UNLOCKED = "ALREADY_UNLOCKED"
    UNLOCKED = "UNLOCKED"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"


class LedgerEntryRecord(BaseModel):
    entry_id: str
    account_id: str
    delta: int
    reason: LedgerReason
    resource_kind: ResourceKind | None = None
    resource_id: str | None = None
    payment_order_id: str | None = None
    balance_after: int
    created_at: datetime = Field(default_factory=utcnow)


class UnlockRecordView(BaseModel):
    account_id: str
    resource_kind: ResourceKind
    resource_id: str
    price: int
    unlocked_at: datetime = Field(default_factory=utcnow)


class CheckoutOrderRecord(BaseModel):
    order_id: str
    account_id: str
    currency: str
    requested_credits: int
    amount_minor_units: int
    status: OrderStatus = OrderStatus.PENDING
    plan_id: str = "custom"
    payment_id: str | None = None
    credited_balance: int | None = None
    credit_error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DebitResult(BaseModel):
    charged: bool
    new_balance: int


class UnlockResult(BaseModel):
    status: UnlockStatus
    # Balance after the call when the store observed it; None on the read-only fast path
    balance: int | None = None


class GatewayOrder(BaseModel):
    order_id: str
    amount_minor_units: int
    currency: str


class CheckoutSession(BaseModel):
    """What the browser needs to open the gateway's checkout widget."""

    order_id: str
    amount_minor_units: int
    currency: str
    requested_credits: int
    key_id: str


class CheckoutResult(BaseModel):
    order_id: str
    status: OrderStatus
    new_balance: int | None = None
    # Payment captured but the ledger write did not land; needs an operator
    reconciliation_required: bool = False
