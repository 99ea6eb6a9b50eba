"""Report checkout orders whose payment was verified but whose credits never landed."""

from credit_engine.core.logging import get_logger
from credit_engine.core.types import CheckoutOrderRecord, OrderStatus
from credit_engine.stores.base import Stores

log = get_logger(__name__)


async def find_unreconciled(stores: Stores, limit: int = 100) -> list[CheckoutOrderRecord]:
    return await stores.orders.list_by_status(OrderStatus.VERIFIED, limit=limit, with_credit_error=True)


async def report_unreconciled(stores: Stores, limit: int = 100) -> int:
    """
    Log and audit every stuck order. Reports only: crediting is an operator
    decision (POST /v1/admin/reconciliation/{order_id}).
    """
    orders = await find_unreconciled(stores, limit=limit)
    for order in orders:
        log.error(
            "order_awaiting_reconciliation",
            order_id=order.order_id,
            account_id=order.account_id,
            credits=order.requested_credits,
            amount=order.amount_minor_units,
            currency=order.currency,
            payment_id=order.payment_id,
            credit_error=order.credit_error,
            verified_at=order.updated_at.isoformat(),
        )
        await stores.audit.log_event(
            None,
            "order_awaiting_reconciliation",
            "checkout_order",
            order.order_id,
            {"account_id": order.account_id, "payment_id": order.payment_id},
        )
    if orders:
        log.warning("reconciliation_report", count=len(orders))
    return len(orders)
