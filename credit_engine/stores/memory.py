"""Single-process backend: dicts guarded by one asyncio.Lock shared by ledger and registry."""

import asyncio
from typing import Any
from uuid import uuid4

from credit_engine.core.exceptions import ConflictError, DuplicateTopup
from credit_engine.core.logging import get_logger
from credit_engine.core.types import (
    CheckoutOrderRecord,
    DebitResult,
    LedgerEntryRecord,
    LedgerReason,
    OrderStatus,
    ResourceKind,
    UnlockRecordView,
    UnlockResult,
    UnlockStatus,
    utcnow,
)
from credit_engine.stores.base import (
    AuditTrail,
    CheckoutOrderStore,
    LedgerStore,
    Stores,
    UnlockRegistry,
    require_positive,
)

log = get_logger(__name__)


class MemoryLedgerStore(LedgerStore):
    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.balances: dict[str, int] = {}
        self.entries: list[LedgerEntryRecord] = []
        self._topups: dict[str, LedgerEntryRecord] = {}

    async def get_balance(self, account_id: str) -> int:
        return self.balances.get(account_id, 0)

    async def credit(self, account_id: str, amount: int, payment_order_id: str) -> int:
        require_positive(amount)
        async with self.lock:
            if payment_order_id in self._topups:
                raise DuplicateTopup(payment_order_id)
            balance_after = self.balances.get(account_id, 0) + amount
            entry = self._append(
                account_id,
                amount,
                balance_after,
                LedgerReason.TOPUP,
                payment_order_id=payment_order_id,
            )
            self._topups[payment_order_id] = entry
            self.balances[account_id] = balance_after
            return balance_after

    async def debit_if_sufficient(
        self,
        account_id: str,
        amount: int,
        resource_kind: ResourceKind,
        resource_id: str,
    ) -> DebitResult:
        require_positive(amount)
        async with self.lock:
            return self.debit_locked(account_id, amount, resource_kind, resource_id)

    def debit_locked(
        self,
        account_id: str,
        amount: int,
        resource_kind: ResourceKind,
        resource_id: str,
    ) -> DebitResult:
        """Caller must hold self.lock."""
        current = self.balances.get(account_id, 0)
        if current < amount:
            return DebitResult(charged=False, new_balance=current)
        balance_after = current - amount
        self._append(
            account_id,
            -amount,
            balance_after,
            LedgerReason.UNLOCK_SPEND,
            resource_kind=resource_kind,
            resource_id=resource_id,
        )
        self.balances[account_id] = balance_after
        return DebitResult(charged=True, new_balance=balance_after)

    def _append(self, account_id: str, delta: int, balance_after: int, reason: LedgerReason, **refs: Any) -> LedgerEntryRecord:
        entry = LedgerEntryRecord(
            entry_id=str(uuid4()),
            account_id=account_id,
            delta=delta,
            reason=reason,
            balance_after=balance_after,
            **refs,
        )
        self.entries.append(entry)
        return entry

    async def list_entries(self, account_id: str, limit: int = 50, offset: int = 0) -> list[LedgerEntryRecord]:
        mine = [e for e in reversed(self.entries) if e.account_id == account_id]
        return mine[offset:offset + limit]

    async def find_topup(self, payment_order_id: str) -> LedgerEntryRecord | None:
        return self._topups.get(payment_order_id)


class MemoryUnlockRegistry(UnlockRegistry):
    ledger: MemoryLedgerStore

    def __init__(self, ledger: MemoryLedgerStore) -> None:
        super().__init__(ledger)
        self.records: dict[tuple[str, ResourceKind, str], UnlockRecordView] = {}

    async def is_unlocked(self, account_id: str, resource_kind: ResourceKind, resource_id: str) -> bool:
        return (account_id, ResourceKind(resource_kind), resource_id) in self.records

    async def unlock(
        self,
        account_id: str,
        resource_kind: ResourceKind,
        resource_id: str,
        price: int,
    ) -> UnlockResult:
        require_positive(price, "price")
        kind = ResourceKind(resource_kind)
        key = (account_id, kind, resource_id)
        async with self.ledger.lock:
            if key in self.records:
                return UnlockResult(status=UnlockStatus.ALREADY_UNLOCKED)
            debit = self.ledger.debit_locked(account_id, price, kind, resource_id)
            if not debit.charged:
                return UnlockResult(status=UnlockStatus.INSUFFICIENT_CREDITS, balance=debit.new_balance)
            self.records[key] = UnlockRecordView(
                account_id=account_id,
                resource_kind=kind,
                resource_id=resource_id,
                price=price,
            )
            return UnlockResult(status=UnlockStatus.UNLOCKED, balance=debit.new_balance)

    async def list_unlocked(
        self,
        account_id: str,
        resource_kind: ResourceKind | None = None,
    ) -> list[UnlockRecordView]:
        mine = [
            r for (acc, kind, _), r in reversed(self.records.items())
            if acc == account_id and (resource_kind is None or kind == resource_kind)
        ]
        # Newest first, like the Mongo backend; ties keep reverse insertion order
        return sorted(mine, key=lambda r: r.unlocked_at, reverse=True)


class MemoryCheckoutOrderStore(CheckoutOrderStore):
    def __init__(self) -> None:
        self.orders: dict[str, CheckoutOrderRecord] = {}

    async def create(self, order: CheckoutOrderRecord) -> None:
        if order.order_id in self.orders:
            raise ConflictError("Checkout order already exists", details={"order_id": order.order_id})
        self.orders[order.order_id] = order.model_copy()

    async def get(self, order_id: str) -> CheckoutOrderRecord | None:
        order = self.orders.get(order_id)
        return order.model_copy() if order else None

    async def transition(
        self,
        order_id: str,
        expected: set[OrderStatus],
        new_status: OrderStatus,
        **fields: Any,
    ) -> CheckoutOrderRecord | None:
        # No await between the check and the write, so this is atomic on one event loop
        order = self.orders.get(order_id)
        if order is None or order.status not in expected:
            return None
        updated = order.model_copy(update={**fields, "status": new_status, "updated_at": utcnow()})
        self.orders[order_id] = updated
        return updated.model_copy()

    async def list_by_status(
        self,
        status: OrderStatus,
        limit: int = 100,
        with_credit_error: bool = False,
    ) -> list[CheckoutOrderRecord]:
        out = [
            o for o in self.orders.values()
            if o.status == status and (not with_credit_error or o.credit_error)
        ]
        out.sort(key=lambda o: o.updated_at)
        return [o.model_copy() for o in out[:limit]]


class MemoryAuditTrail(AuditTrail):
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def log_event(
        self,
        actor_id: str | None,
        event_type: str,
        entity_type: str,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.events.append(
            {
                "actor_id": actor_id,
                "event_type": event_type,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "metadata": metadata or {},
                "created_at": utcnow(),
            }
        )
        log.debug("audit_event", event_type=event_type, entity_type=entity_type, entity_id=entity_id)


def build_memory_stores() -> Stores:
    ledger = MemoryLedgerStore()
    return Stores(
        ledger=ledger,
        unlocks=MemoryUnlockRegistry(ledger),
        orders=MemoryCheckoutOrderStore(),
        audit=MemoryAuditTrail(),
    )
