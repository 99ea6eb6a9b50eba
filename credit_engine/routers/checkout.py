from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field

from credit_engine.core.types import CheckoutResult, CheckoutSession
from credit_engine.deps import get_checkout, get_current_account
from credit_engine.services.checkout import CheckoutOrchestrator

router = APIRouter()


class StartCheckoutRequest(BaseModel):
    credits: int  # e.g. 3000 for the Pro pack
    currency: str = "INR"
    plan_id: str = "custom"


class CompleteCheckoutRequest(BaseModel):
    # Field names as Razorpay Checkout hands them to the success handler
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


@router.post("/orders", response_model=CheckoutSession)
async def start_checkout(
    body: StartCheckoutRequest,
    account_id: str = Depends(get_current_account),
    checkout: CheckoutOrchestrator = Depends(get_checkout),
):
    """Create a Razorpay order for a credit pack; the browser opens Checkout with it."""
    return await checkout.start_checkout(account_id, body.credits, body.currency, body.plan_id)


@router.post("/orders/{order_id}/complete", response_model=CheckoutResult)
async def complete_checkout(
    order_id: str,
    body: CompleteCheckoutRequest,
    account_id: str = Depends(get_current_account),
    checkout: CheckoutOrchestrator = Depends(get_checkout),
):
    """Verify the payment signature and credit the account (idempotent)."""
    return await checkout.complete_checkout(
        order_id,
        body.razorpay_payment_id,
        body.razorpay_signature,
        account_id=account_id,
    )


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str = Header(..., alias="X-Razorpay-Signature"),
    checkout: CheckoutOrchestrator = Depends(get_checkout),
):
    """Razorpay webhook: payment.captured / order.paid -> credit (idempotent)."""
    body = await request.body()
    result = await checkout.handle_webhook(body, x_razorpay_signature)
    return {"status": "ok", "order_status": result.status if result else None}
