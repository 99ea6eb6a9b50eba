"""Razorpay adapter: orders API via the official SDK, signatures checked locally."""

import asyncio
from typing import Any

import razorpay
from razorpay.errors import BadRequestError as RazorpayBadRequestError, GatewayError, ServerError
import requests

from credit_engine.core.exceptions import BadRequestError, GatewayUnavailable, InvalidAmount
from credit_engine.core.logging import get_logger
from credit_engine.core.security import verify_razorpay_payment, verify_razorpay_webhook
from credit_engine.core.types import GatewayOrder, utcnow
from credit_engine.gateway.base import PaymentGateway

log = get_logger(__name__)


class RazorpayGateway(PaymentGateway):
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str = "",
        timeout_seconds: float = 10.0,
        client: razorpay.Client | None = None,
    ) -> None:
        self.public_key = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._timeout = timeout_seconds
        self._client = client or razorpay.Client(auth=(key_id, key_secret))

    async def create_order(
        self,
        account_id: str,
        amount_minor_units: int,
        currency: str,
        notes: dict[str, Any] | None = None,
    ) -> GatewayOrder:
        if isinstance(amount_minor_units, bool) or not isinstance(amount_minor_units, int) or amount_minor_units <= 0:
            raise InvalidAmount("Order amount must be a positive number of minor units", details={"amount": amount_minor_units})
        payload = {
            "amount": amount_minor_units,
            "currency": currency,
            "receipt": f"credits_{int(utcnow().timestamp() * 1000)}",
            # Razorpay note values must be strings
            "notes": {"account_id": account_id, **{k: str(v) for k, v in (notes or {}).items()}},
        }
        try:
            # The SDK is blocking (requests); keep it off the event loop
            order = await asyncio.to_thread(self._client.order.create, data=payload, timeout=self._timeout)
        except RazorpayBadRequestError as exc:
            log.warning("gateway_order_rejected", account_id=account_id, error=str(exc))
            raise BadRequestError("Payment gateway rejected the order", code="GATEWAY_REJECTED") from exc
        except (ServerError, GatewayError, requests.RequestException) as exc:
            log.warning("gateway_unavailable", account_id=account_id, error=str(exc))
            raise GatewayUnavailable(details={"gateway": "razorpay"}) from exc
        log.info("gateway_order_created", account_id=account_id, order_id=order["id"], amount=order["amount"])
        return GatewayOrder(
            order_id=order["id"],
            amount_minor_units=int(order["amount"]),
            currency=order["currency"],
        )

    async def verify_payment(self, order_id: str, payment_id: str, signature: str) -> bool:
        return verify_razorpay_payment(order_id, payment_id, signature, self._key_secret)

    async def verify_webhook(self, payload: bytes, signature: str) -> bool:
        if not self._webhook_secret:
            raise BadRequestError("Webhook secret not configured", code="PAYMENTS_NOT_CONFIGURED")
        return verify_razorpay_webhook(payload, signature, self._webhook_secret)
