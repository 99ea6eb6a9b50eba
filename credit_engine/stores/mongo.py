"""
MongoDB backend (Beanie documents on Motor).

Balance-changing units run inside multi-document transactions
(`ClientSession.with_transaction`, which retries transient write conflicts),
so the deployment must be a replica set. The balance check-and-decrement is a
conditional `find_one_and_update`; unlock and topup idempotency come from
unique indexes; order status moves are compare-and-set updates.
"""

from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, TypeVar

from beanie.operators import NE
from pymongo import ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from credit_engine.core.exceptions import ConflictError, DuplicateTopup, StoreUnavailable
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
from credit_engine.models.audit_log import AuditLog
from credit_engine.models.checkout_order import CheckoutOrder
from credit_engine.models.credit_balance import CreditBalance
from credit_engine.models.credit_ledger import CreditLedgerEntry
from credit_engine.models.unlock_record import UnlockRecord
from credit_engine.stores.base import (
    AuditTrail,
    CheckoutOrderStore,
    LedgerStore,
    Stores,
    UnlockRegistry,
    require_positive,
)

log = get_logger(__name__)

T = TypeVar("T")

TOPUP_INDEX = "uq_ledger_topup_order"
UNLOCK_INDEX = "uq_unlock_resource"


def _is_transient(exc: PyMongoError) -> bool:
    return isinstance(exc, ConnectionFailure) or exc.has_error_label("TransientTransactionError")


def _violated_index(exc: DuplicateKeyError) -> str:
    return (exc.details or {}).get("errmsg", "") or str(exc)


@contextmanager
def _store_errors(op: str) -> Iterator[None]:
    """Map connectivity failures to the single retryable StoreUnavailable kind."""
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as exc:
        if not _is_transient(exc):
            raise
        log.warning("store_unavailable", op=op, error=str(exc))
        raise StoreUnavailable(details={"op": op}) from exc


async def _in_transaction(op: str, callback: Callable[[Any], Awaitable[T]]) -> T:
    client = CreditBalance.get_motor_collection().database.client
    with _store_errors(op):
        async with await client.start_session() as session:
            return await session.with_transaction(callback)


class MongoLedgerStore(LedgerStore):
    async def get_balance(self, account_id: str) -> int:
        with _store_errors("get_balance"):
            doc = await CreditBalance.find_one(CreditBalance.account_id == account_id)
        return doc.credits if doc else 0

    async def credit(self, account_id: str, amount: int, payment_order_id: str) -> int:
        require_positive(amount)

        async def txn(session) -> int:
            now = utcnow()
            raw = await CreditBalance.get_motor_collection().find_one_and_update(
                {"account_id": account_id},
                {"$inc": {"credits": amount}, "$set": {"updated_at": now}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            await CreditLedgerEntry(
                account_id=account_id,
                delta=amount,
                balance_after=raw["credits"],
                reason=LedgerReason.TOPUP,
                payment_order_id=payment_order_id,
                created_at=now,
            ).insert(session=session)
            return raw["credits"]

        try:
            return await _in_transaction("credit", txn)
        except DuplicateKeyError as exc:
            if TOPUP_INDEX in _violated_index(exc):
                raise DuplicateTopup(payment_order_id) from None
            log.warning("credit_duplicate_key", account_id=account_id, error=str(exc))
            raise StoreUnavailable(details={"op": "credit"}) from exc

    async def debit_if_sufficient(
        self,
        account_id: str,
        amount: int,
        resource_kind: ResourceKind,
        resource_id: str,
    ) -> DebitResult:
        require_positive(amount)

        async def txn(session) -> DebitResult:
            return await self.debit_in_session(session, account_id, amount, ResourceKind(resource_kind), resource_id)

        return await _in_transaction("debit_if_sufficient", txn)

    async def debit_in_session(
        self,
        session,
        account_id: str,
        amount: int,
        resource_kind: ResourceKind,
        resource_id: str,
    ) -> DebitResult:
        """Conditional decrement plus UNLOCK_SPEND entry inside the caller's transaction."""
        now = utcnow()
        raw = await CreditBalance.get_motor_collection().find_one_and_update(
            {"account_id": account_id, "credits": {"$gte": amount}},
            {"$inc": {"credits": -amount}, "$set": {"updated_at": now}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if raw is None:
            current = await CreditBalance.find_one(CreditBalance.account_id == account_id, session=session)
            return DebitResult(charged=False, new_balance=current.credits if current else 0)
        await CreditLedgerEntry(
            account_id=account_id,
            delta=-amount,
            balance_after=raw["credits"],
            reason=LedgerReason.UNLOCK_SPEND,
            resource_kind=resource_kind,
            resource_id=resource_id,
            created_at=now,
        ).insert(session=session)
        return DebitResult(charged=True, new_balance=raw["credits"])

    async def list_entries(self, account_id: str, limit: int = 50, offset: int = 0) -> list[LedgerEntryRecord]:
        with _store_errors("list_entries"):
            entries = (
                await CreditLedgerEntry.find(CreditLedgerEntry.account_id == account_id)
                .sort(-CreditLedgerEntry.created_at)
                .skip(offset)
                .limit(limit)
                .to_list()
            )
        return [e.to_record() for e in entries]

    async def find_topup(self, payment_order_id: str) -> LedgerEntryRecord | None:
        with _store_errors("find_topup"):
            entry = await CreditLedgerEntry.find_one(
                CreditLedgerEntry.payment_order_id == payment_order_id,
                CreditLedgerEntry.reason == LedgerReason.TOPUP,
            )
        return entry.to_record() if entry else None


class MongoUnlockRegistry(UnlockRegistry):
    ledger: MongoLedgerStore

    def __init__(self, ledger: MongoLedgerStore) -> None:
        super().__init__(ledger)

    async def is_unlocked(self, account_id: str, resource_kind: ResourceKind, resource_id: str) -> bool:
        with _store_errors("is_unlocked"):
            record = await UnlockRecord.find_one(
                UnlockRecord.account_id == account_id,
                UnlockRecord.resource_kind == ResourceKind(resource_kind),
                UnlockRecord.resource_id == resource_id,
            )
        return record is not None

    async def unlock(
        self,
        account_id: str,
        resource_kind: ResourceKind,
        resource_id: str,
        price: int,
    ) -> UnlockResult:
        require_positive(price, "price")
        kind = ResourceKind(resource_kind)

        async def txn(session) -> UnlockResult:
            existing = await UnlockRecord.find_one(
                UnlockRecord.account_id == account_id,
                UnlockRecord.resource_kind == kind,
                UnlockRecord.resource_id == resource_id,
                session=session,
            )
            if existing:
                return UnlockResult(status=UnlockStatus.ALREADY_UNLOCKED)
            debit = await self.ledger.debit_in_session(session, account_id, price, kind, resource_id)
            if not debit.charged:
                return UnlockResult(status=UnlockStatus.INSUFFICIENT_CREDITS, balance=debit.new_balance)
            await UnlockRecord(
                account_id=account_id,
                resource_kind=kind,
                resource_id=resource_id,
                price=price,
            ).insert(session=session)
            return UnlockResult(status=UnlockStatus.UNLOCKED, balance=debit.new_balance)

        try:
            return await _in_transaction("unlock", txn)
        except DuplicateKeyError as exc:
            if UNLOCK_INDEX not in _violated_index(exc):
                raise StoreUnavailable(details={"op": "unlock"}) from exc
            # A concurrent unlock committed first; our transaction (and its debit) was aborted
            log.info("unlock_race_lost", account_id=account_id, resource_kind=kind.value, resource_id=resource_id)
            return UnlockResult(status=UnlockStatus.ALREADY_UNLOCKED)

    async def list_unlocked(
        self,
        account_id: str,
        resource_kind: ResourceKind | None = None,
    ) -> list[UnlockRecordView]:
        query = [UnlockRecord.account_id == account_id]
        if resource_kind is not None:
            query.append(UnlockRecord.resource_kind == ResourceKind(resource_kind))
        with _store_errors("list_unlocked"):
            records = await UnlockRecord.find(*query).sort(-UnlockRecord.unlocked_at).to_list()
        return [r.to_view() for r in records]


class MongoCheckoutOrderStore(CheckoutOrderStore):
    async def create(self, order: CheckoutOrderRecord) -> None:
        try:
            with _store_errors("create_order"):
                await CheckoutOrder.from_record(order).insert()
        except DuplicateKeyError:
            raise ConflictError("Checkout order already exists", details={"order_id": order.order_id}) from None

    async def get(self, order_id: str) -> CheckoutOrderRecord | None:
        with _store_errors("get_order"):
            doc = await CheckoutOrder.find_one(CheckoutOrder.order_id == order_id)
        return doc.to_record() if doc else None

    async def transition(
        self,
        order_id: str,
        expected: set[OrderStatus],
        new_status: OrderStatus,
        **fields: Any,
    ) -> CheckoutOrderRecord | None:
        update = {**fields, "status": new_status.value, "updated_at": utcnow()}
        with _store_errors("transition_order"):
            raw = await CheckoutOrder.get_motor_collection().find_one_and_update(
                {"order_id": order_id, "status": {"$in": [s.value for s in expected]}},
                {"$set": update},
                return_document=ReturnDocument.AFTER,
            )
        return CheckoutOrderRecord.model_validate(raw) if raw else None

    async def list_by_status(
        self,
        status: OrderStatus,
        limit: int = 100,
        with_credit_error: bool = False,
    ) -> list[CheckoutOrderRecord]:
        query = [CheckoutOrder.status == status]
        if with_credit_error:
            query.append(NE(CheckoutOrder.credit_error, None))
        with _store_errors("list_orders"):
            docs = await CheckoutOrder.find(*query).sort(+CheckoutOrder.updated_at).limit(limit).to_list()
        return [d.to_record() for d in docs]


class MongoAuditTrail(AuditTrail):
    async def log_event(
        self,
        actor_id: str | None,
        event_type: str,
        entity_type: str,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append to audit_logs. A failed audit write never undoes the audited action."""
        try:
            await AuditLog(
                actor_id=actor_id,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata or {},
            ).insert()
        except PyMongoError as exc:
            log.warning("audit_write_failed", event_type=event_type, entity_id=entity_id, error=str(exc))


def build_mongo_stores() -> Stores:
    ledger = MongoLedgerStore()
    return Stores(
        ledger=ledger,
        unlocks=MongoUnlockRegistry(ledger),
        orders=MongoCheckoutOrderStore(),
        audit=MongoAuditTrail(),
    )
