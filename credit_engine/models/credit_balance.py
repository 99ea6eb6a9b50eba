from datetime import datetime

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, IndexModel

from credit_engine.core.types import utcnow


class CreditBalance(Document):
    """Current balance per account; changed only together with a ledger entry."""
    account_id: str
    credits: int = 0
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "credit_balances"
        indexes = [IndexModel([("account_id", ASCENDING)], unique=True, name="uq_balance_account")]
