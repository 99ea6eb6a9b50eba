from fastapi import APIRouter, Depends, Query

from credit_engine.core.config import get_settings
from credit_engine.core.types import CheckoutOrderRecord, CheckoutResult
from credit_engine.deps import get_checkout, provide_stores, require_admin
from credit_engine.services import reconciliation
from credit_engine.services.checkout import CheckoutOrchestrator
from credit_engine.stores.base import Stores

router = APIRouter()


@router.get("/reconciliation", response_model=list[CheckoutOrderRecord])
async def admin_unreconciled_orders(
    operator_id: str = Depends(require_admin),
    stores: Stores = Depends(provide_stores),
    limit: int | None = Query(None, ge=1, le=500),
):
    """Admin: orders paid and verified whose credits did not land."""
    return await reconciliation.find_unreconciled(stores, limit or get_settings().reconciliation_report_limit)


@router.post("/reconciliation/{order_id}", response_model=CheckoutResult)
async def admin_reconcile_order(
    order_id: str,
    operator_id: str = Depends(require_admin),
    checkout: CheckoutOrchestrator = Depends(get_checkout),
):
    """Admin: retry the topup for a stuck order after checking the gateway dashboard."""
    return await checkout.reconcile(order_id, operator_id=operator_id)
