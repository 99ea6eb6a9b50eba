from credit_engine.models.audit_log import AuditLog
from credit_engine.models.checkout_order import CheckoutOrder
from credit_engine.models.credit_balance import CreditBalance
from credit_engine.models.credit_ledger import CreditLedgerEntry
from credit_engine.models.unlock_record import UnlockRecord

__all__ = [
    "AuditLog",
    "CheckoutOrder",
    "CreditBalance",
    "CreditLedgerEntry",
    "UnlockRecord",
]
