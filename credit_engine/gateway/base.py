from abc import ABC, abstractmethod
from typing import Any

from credit_engine.core.config import get_settings
from credit_engine.core.exceptions import BadRequestError
from credit_engine.core.types import GatewayOrder


class PaymentGateway(ABC):
    """External payment gateway. Never touches the ledger."""

    public_key: str = ""

    @abstractmethod
    async def create_order(
        self,
        account_id: str,
        amount_minor_units: int,
        currency: str,
        notes: dict[str, Any] | None = None,
    ) -> GatewayOrder:
        """
        Create a gateway order for `amount_minor_units` (paise, cents).
        Raises InvalidAmount for non-positive amounts and GatewayUnavailable on
        network failure, timeout or a gateway-side error.
        """
        ...

    @abstractmethod
    async def verify_payment(self, order_id: str, payment_id: str, signature: str) -> bool:
        """False on signature mismatch; that is an expected outcome, not an error."""
        ...

    @abstractmethod
    async def verify_webhook(self, payload: bytes, signature: str) -> bool:
        ...


def get_gateway() -> PaymentGateway:
    settings = get_settings()
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        raise BadRequestError("Payments not configured", code="PAYMENTS_NOT_CONFIGURED")
    from credit_engine.gateway.razorpay import RazorpayGateway
    return RazorpayGateway(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        webhook_secret=settings.razorpay_webhook_secret,
        timeout_seconds=settings.gateway_timeout_seconds,
    )
