from fastapi import APIRouter, Depends, Query

from credit_engine.core.pagination import DEFAULT_LIMIT, MAX_LIMIT, Page, paginate
from credit_engine.core.types import LedgerEntryRecord
from credit_engine.deps import get_current_account, provide_stores
from credit_engine.services import pricing
from credit_engine.stores.base import Stores

router = APIRouter()


@router.get("/balance")
async def credits_balance(
    account_id: str = Depends(get_current_account),
    stores: Stores = Depends(provide_stores),
):
    """Return current credit balance."""
    balance = await stores.ledger.get_balance(account_id)
    return {"balance": balance}


@router.get("/ledger", response_model=Page[LedgerEntryRecord])
async def credits_ledger(
    account_id: str = Depends(get_current_account),
    stores: Stores = Depends(provide_stores),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    offset: int = Query(0, ge=0),
):
    """Return ledger entries for current account (newest first)."""
    limit, offset = paginate(limit, offset)
    entries = await stores.ledger.list_entries(account_id, limit=limit, offset=offset)
    return Page[LedgerEntryRecord](items=entries, limit=limit, offset=offset, has_more=len(entries) == limit)


@router.get("/pricing")
async def credits_pricing():
    """Price per credit by currency, pack limits, plans and unlock prices."""
    return pricing.get_pricing()
