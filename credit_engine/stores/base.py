"""Store interfaces for the credit economy and the backend factory.

Every balance-changing operation is atomic at the store boundary, never via
in-process state shared between request handlers: handlers may run in
separate processes. The in-memory backend is the one exception and is meant
for tests and single-process development.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from credit_engine.core.config import get_settings
from credit_engine.core.exceptions import BadRequestError, InvalidAmount
from credit_engine.core.types import (
    CheckoutOrderRecord,
    DebitResult,
    LedgerEntryRecord,
    OrderStatus,
    ResourceKind,
    UnlockRecordView,
    UnlockResult,
)


def require_positive(amount: int, what: str = "amount") -> int:
    """Reject bools, non-ints and values <= 0 before touching a store."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"{what} must be a positive integer", details={what: amount})
    return amount


def require_resource(resource_kind: ResourceKind | str, resource_id: str) -> ResourceKind:
    try:
        kind = ResourceKind(resource_kind)
    except ValueError:
        raise BadRequestError(f"Unknown resource kind: {resource_kind}") from None
    if not isinstance(resource_id, str) or not resource_id.strip():
        raise BadRequestError("resource_id is required")
    return kind


class LedgerStore(ABC):
    @abstractmethod
    async def get_balance(self, account_id: str) -> int:
        """Current credits; 0 for an account that never had a topup."""
        ...

    @abstractmethod
    async def credit(self, account_id: str, amount: int, payment_order_id: str) -> int:
        """
        Add credits for a paid gateway order and append a TOPUP entry atomically.
        Returns the new balance. Raises DuplicateTopup if the order was already credited.
        """
        ...

    @abstractmethod
    async def debit_if_sufficient(
        self,
        account_id: str,
        amount: int,
        resource_kind: ResourceKind,
        resource_id: str,
    ) -> DebitResult:
        """Decrement and append an UNLOCK_SPEND entry only if balance >= amount."""
        ...

    @abstractmethod
    async def list_entries(self, account_id: str, limit: int = 50, offset: int = 0) -> list[LedgerEntryRecord]:
        """Ledger entries for an account, newest first."""
        ...

    @abstractmethod
    async def find_topup(self, payment_order_id: str) -> LedgerEntryRecord | None:
        ...


class UnlockRegistry(ABC):
    def __init__(self, ledger: LedgerStore) -> None:
        self.ledger = ledger

    @abstractmethod
    async def is_unlocked(self, account_id: str, resource_kind: ResourceKind, resource_id: str) -> bool:
        ...

    @abstractmethod
    async def unlock(
        self,
        account_id: str,
        resource_kind: ResourceKind,
        resource_id: str,
        price: int,
    ) -> UnlockResult:
        """
        Charge `price` and record the unlock as one unit. A record that already
        exists (including one committed by a concurrent caller) yields
        ALREADY_UNLOCKED without charging.
        """
        ...

    @abstractmethod
    async def list_unlocked(
        self,
        account_id: str,
        resource_kind: ResourceKind | None = None,
    ) -> list[UnlockRecordView]:
        ...


class CheckoutOrderStore(ABC):
    @abstractmethod
    async def create(self, order: CheckoutOrderRecord) -> None:
        ...

    @abstractmethod
    async def get(self, order_id: str) -> CheckoutOrderRecord | None:
        ...

    @abstractmethod
    async def transition(
        self,
        order_id: str,
        expected: set[OrderStatus],
        new_status: OrderStatus,
        **fields: Any,
    ) -> CheckoutOrderRecord | None:
        """
        Compare-and-set: move the order to `new_status` (and set `fields`) only
        if its current status is in `expected`. Returns the updated order, or
        None if the status had already moved on.
        """
        ...

    @abstractmethod
    async def list_by_status(
        self,
        status: OrderStatus,
        limit: int = 100,
        with_credit_error: bool = False,
    ) -> list[CheckoutOrderRecord]:
        ...


class AuditTrail(ABC):
    @abstractmethod
    async def log_event(
        self,
        actor_id: str | None,
        event_type: str,
        entity_type: str,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        ...


@dataclass
class Stores:
    ledger: LedgerStore
    unlocks: UnlockRegistry
    orders: CheckoutOrderStore
    audit: AuditTrail


@lru_cache
def get_stores() -> Stores:
    settings = get_settings()
    if settings.store_backend == "memory":
        from credit_engine.stores.memory import build_memory_stores
        return build_memory_stores()
    from credit_engine.stores.mongo import build_mongo_stores
    return build_mongo_stores()
