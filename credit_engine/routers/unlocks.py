from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from credit_engine.core.types import ResourceKind, UnlockRecordView, UnlockResult
from credit_engine.deps import get_current_account, get_resource_gate
from credit_engine.services.gate import ResourceGate
from credit_engine.services.pricing import unlock_price

router = APIRouter()


class UnlockRequest(BaseModel):
    resource_kind: ResourceKind
    resource_id: str = Field(..., min_length=1, max_length=128)


@router.get("", response_model=list[UnlockRecordView])
async def list_unlocks(
    resource_kind: ResourceKind | None = Query(None),
    account_id: str = Depends(get_current_account),
    gate: ResourceGate = Depends(get_resource_gate),
):
    """Everything this account has unlocked, optionally one kind (e.g. all pipeline chats for the board)."""
    return await gate.list_unlocked(account_id, resource_kind)


@router.get("/{resource_kind}/{resource_id}")
async def check_unlock(
    resource_kind: ResourceKind,
    resource_id: str,
    account_id: str = Depends(get_current_account),
    gate: ResourceGate = Depends(get_resource_gate),
):
    unlocked = await gate.check_unlocked(account_id, resource_kind, resource_id)
    return {"resource_kind": resource_kind, "resource_id": resource_id, "unlocked": unlocked}


@router.post("", response_model=UnlockResult)
async def unlock_resource(
    body: UnlockRequest,
    account_id: str = Depends(get_current_account),
    gate: ResourceGate = Depends(get_resource_gate),
):
    """Unlock at the configured price. INSUFFICIENT_CREDITS is a normal 200 result, not an error."""
    return await gate.unlock(account_id, body.resource_kind, body.resource_id, unlock_price(body.resource_kind))
