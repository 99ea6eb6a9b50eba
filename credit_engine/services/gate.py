"""Resource gate: is a resource unlocked for an account, and unlock it for a fixed price."""

from credit_engine.core.exceptions import BadRequestError
from credit_engine.core.logging import get_logger
from credit_engine.core.types import ResourceKind, UnlockRecordView, UnlockResult, UnlockStatus
from credit_engine.stores.base import (
    AuditTrail,
    LedgerStore,
    UnlockRegistry,
    require_positive,
    require_resource,
)

log = get_logger(__name__)


class ResourceGate:
    def __init__(self, ledger: LedgerStore, unlocks: UnlockRegistry, audit: AuditTrail) -> None:
        self.ledger = ledger
        self.unlocks = unlocks
        self.audit = audit

    async def check_unlocked(self, account_id: str, resource_kind: ResourceKind | str, resource_id: str) -> bool:
        kind = require_resource(resource_kind, resource_id)
        return await self.unlocks.is_unlocked(account_id, kind, resource_id)

    async def unlock(
        self,
        account_id: str,
        resource_kind: ResourceKind | str,
        resource_id: str,
        price: int,
    ) -> UnlockResult:
        """
        Unlock a resource permanently, charging `price` credits exactly once.

        Returns ALREADY_UNLOCKED (no charge) when a record exists, INSUFFICIENT_CREDITS
        (no side effects) when the balance is short, UNLOCKED otherwise.
        """
        kind = require_resource(resource_kind, resource_id)
        require_positive(price, "price")

        # Double clicks and page reloads end here without opening a transaction
        if await self.unlocks.is_unlocked(account_id, kind, resource_id):
            return UnlockResult(status=UnlockStatus.ALREADY_UNLOCKED)

        result = await self.unlocks.unlock(account_id, kind, resource_id, price)
        if result.status == UnlockStatus.UNLOCKED:
            log.info(
                "resource_unlocked",
                account_id=account_id,
                resource_kind=kind.value,
                resource_id=resource_id,
                price=price,
                balance=result.balance,
            )
            await self.audit.log_event(
                account_id,
                "resource_unlocked",
                kind.value.lower(),
                resource_id,
                {"price": price, "balance_after": result.balance},
            )
        elif result.status == UnlockStatus.INSUFFICIENT_CREDITS:
            log.info(
                "unlock_insufficient_credits",
                account_id=account_id,
                resource_kind=kind.value,
                resource_id=resource_id,
                price=price,
                balance=result.balance,
            )
        return result

    async def list_unlocked(
        self,
        account_id: str,
        resource_kind: ResourceKind | str | None = None,
    ) -> list[UnlockRecordView]:
        kind = None
        if resource_kind is not None:
            try:
                kind = ResourceKind(resource_kind)
            except ValueError:
                raise BadRequestError(f"Unknown resource kind: {resource_kind}") from None
        return await self.unlocks.list_unlocked(account_id, kind)

    async def balance(self, account_id: str) -> int:
        return await self.ledger.get_balance(account_id)
