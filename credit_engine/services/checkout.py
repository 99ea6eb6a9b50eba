"""
Checkout orchestration: gateway order -> signature check -> ledger topup.

Order states move one way: PENDING -> VERIFIED -> CREDITED, or PENDING -> FAILED.
CREDITED and FAILED are terminal. Every move is a compare-and-set on the order
row, and the topup itself is keyed by order_id in the ledger, so client
retries, webhook replays and concurrent completions credit at most once.
Gateway calls never run inside a store transaction.
"""

import json

from credit_engine.core.exceptions import BadRequestError, ConflictError, DuplicateTopup, NotFoundError
from credit_engine.core.logging import get_logger
from credit_engine.core.types import (
    CheckoutOrderRecord,
    CheckoutResult,
    CheckoutSession,
    OrderStatus,
)
from credit_engine.gateway.base import PaymentGateway
from credit_engine.services.pricing import PriceTable, get_price_table, resolve_plan
from credit_engine.stores.base import AuditTrail, CheckoutOrderStore, LedgerStore

log = get_logger(__name__)

CAPTURE_EVENTS = ("payment.captured", "order.paid")


class CheckoutOrchestrator:
    def __init__(
        self,
        ledger: LedgerStore,
        orders: CheckoutOrderStore,
        gateway: PaymentGateway,
        audit: AuditTrail,
        prices: PriceTable | None = None,
    ) -> None:
        self.ledger = ledger
        self.orders = orders
        self.gateway = gateway
        self.audit = audit
        self.prices = prices or get_price_table()

    async def start_checkout(
        self,
        account_id: str,
        requested_credits: int,
        currency: str,
        plan_id: str = "custom",
    ) -> CheckoutSession:
        """Price the pack, open a gateway order and store it as PENDING."""
        currency = (currency or "").strip().upper()
        amount = self.prices.quote(requested_credits, currency)
        resolve_plan(plan_id, requested_credits)

        gateway_order = await self.gateway.create_order(
            account_id,
            amount,
            currency,
            notes={"credits": requested_credits, "plan_id": plan_id},
        )
        await self.orders.create(
            CheckoutOrderRecord(
                order_id=gateway_order.order_id,
                account_id=account_id,
                currency=gateway_order.currency,
                requested_credits=requested_credits,
                amount_minor_units=gateway_order.amount_minor_units,
                plan_id=plan_id,
            )
        )
        log.info(
            "checkout_started",
            account_id=account_id,
            order_id=gateway_order.order_id,
            credits=requested_credits,
            amount=gateway_order.amount_minor_units,
            currency=gateway_order.currency,
        )
        return CheckoutSession(
            order_id=gateway_order.order_id,
            amount_minor_units=gateway_order.amount_minor_units,
            currency=gateway_order.currency,
            requested_credits=requested_credits,
            key_id=self.gateway.public_key,
        )

    async def complete_checkout(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
        account_id: str | None = None,
    ) -> CheckoutResult:
        """
        Confirm a payment the browser reports and credit the account once.

        Replays of a CREDITED order return the cached result without touching
        the ledger. A bad signature fails a PENDING order. If the payment is
        genuine but the ledger write fails, the order stays VERIFIED and is
        reported for reconciliation instead of being retried here.
        """
        order = await self._load(order_id, account_id)
        settled = self._settled_result(order)
        if settled is not None:
            return settled

        if not await self.gateway.verify_payment(order_id, payment_id, signature):
            return await self._fail(order, payment_id)
        return await self._credit_verified(order, payment_id)

    async def handle_webhook(self, payload: bytes, signature: str) -> CheckoutResult | None:
        """Razorpay webhook: payment.captured / order.paid credit the order if the browser never completed it."""
        if not await self.gateway.verify_webhook(payload, signature):
            raise BadRequestError("Invalid webhook signature", code="INVALID_SIGNATURE")
        try:
            data = json.loads(payload.decode("utf-8"))
        except ValueError:
            raise BadRequestError("Malformed webhook payload") from None

        event = data.get("event")
        if event not in CAPTURE_EVENTS:
            log.debug("webhook_ignored", gateway_event=event)
            return None
        payment = data.get("payload", {}).get("payment", {}).get("entity", {})
        order_id = payment.get("order_id")
        payment_id = payment.get("id")
        if not order_id or not payment_id:
            log.warning("webhook_missing_ids", gateway_event=event)
            return None

        order = await self.orders.get(order_id)
        if order is None:
            log.warning("webhook_unknown_order", order_id=order_id, payment_id=payment_id)
            return None
        amount = payment.get("amount")
        if amount is not None:
            try:
                amount = int(amount)
            except (TypeError, ValueError):
                raise BadRequestError("Malformed webhook payload", details={"amount": str(amount)[:64]}) from None
        if amount is not None and amount != order.amount_minor_units:
            log.error(
                "webhook_amount_mismatch",
                order_id=order_id,
                payment_id=payment_id,
                paid=amount,
                expected=order.amount_minor_units,
            )
            await self.audit.log_event(
                order.account_id,
                "payment_amount_mismatch",
                "checkout_order",
                order_id,
                {"payment_id": payment_id, "paid": amount, "expected": order.amount_minor_units},
            )
            return None
        if order.status == OrderStatus.FAILED:
            # Terminal: a captured payment on a failed order goes to an operator
            log.error("payment_captured_on_failed_order", order_id=order_id, payment_id=payment_id)
            await self.audit.log_event(
                order.account_id,
                "payment_captured_on_failed_order",
                "checkout_order",
                order_id,
                {"payment_id": payment_id},
            )
            return CheckoutResult(order_id=order_id, status=OrderStatus.FAILED, reconciliation_required=True)

        settled = self._settled_result(order)
        if settled is not None:
            return settled
        return await self._credit_verified(order, payment_id)

    async def reconcile(self, order_id: str, operator_id: str | None = None) -> CheckoutResult:
        """Operator action: retry the topup for a VERIFIED order. Exactly-once via the ledger's order key."""
        order = await self._load(order_id)
        if order.status != OrderStatus.VERIFIED:
            settled = self._settled_result(order)
            if settled is not None:
                return settled
            raise ConflictError("Order has not been paid", details={"order_id": order_id, "status": order.status.value})

        result = await self._credit_verified(order, order.payment_id)
        log.info("order_reconciled", order_id=order_id, operator_id=operator_id, status=result.status.value)
        await self.audit.log_event(
            operator_id,
            "order_reconciled",
            "checkout_order",
            order_id,
            {"account_id": order.account_id, "status": result.status.value},
        )
        return result

    async def _load(self, order_id: str, account_id: str | None = None) -> CheckoutOrderRecord:
        order = await self.orders.get(order_id)
        if order is None or (account_id is not None and order.account_id != account_id):
            raise NotFoundError("Checkout order not found")
        return order

    @staticmethod
    def _settled_result(order: CheckoutOrderRecord) -> CheckoutResult | None:
        """Result for an order this call must not act on, or None if it can proceed."""
        if order.status == OrderStatus.CREDITED:
            return CheckoutResult(order_id=order.order_id, status=OrderStatus.CREDITED, new_balance=order.credited_balance)
        if order.status == OrderStatus.FAILED:
            return CheckoutResult(order_id=order.order_id, status=OrderStatus.FAILED)
        if order.status == OrderStatus.VERIFIED and order.credit_error:
            return CheckoutResult(order_id=order.order_id, status=OrderStatus.VERIFIED, reconciliation_required=True)
        return None

    async def _fail(self, order: CheckoutOrderRecord, payment_id: str) -> CheckoutResult:
        failed = await self.orders.transition(
            order.order_id,
            {OrderStatus.PENDING},
            OrderStatus.FAILED,
            payment_id=payment_id,
        )
        if failed is None:
            # A concurrent completion moved the order on; report its state
            current = await self._load(order.order_id)
            return self._settled_result(current) or CheckoutResult(order_id=current.order_id, status=current.status)
        log.warning("payment_verification_failed", order_id=order.order_id, account_id=order.account_id, payment_id=payment_id)
        await self.audit.log_event(
            order.account_id,
            "payment_verification_failed",
            "checkout_order",
            order.order_id,
            {"payment_id": payment_id},
        )
        return CheckoutResult(order_id=order.order_id, status=OrderStatus.FAILED)

    async def _credit_verified(self, order: CheckoutOrderRecord, payment_id: str | None) -> CheckoutResult:
        if order.status == OrderStatus.PENDING:
            moved = await self.orders.transition(
                order.order_id,
                {OrderStatus.PENDING},
                OrderStatus.VERIFIED,
                payment_id=payment_id,
            )
            if moved is None:
                current = await self._load(order.order_id)
                settled = self._settled_result(current)
                if settled is not None:
                    return settled
                # Verified by a concurrent call; the ledger key still makes our credit a no-op if theirs lands

        try:
            new_balance = await self.ledger.credit(order.account_id, order.requested_credits, order.order_id)
        except DuplicateTopup:
            entry = await self.ledger.find_topup(order.order_id)
            new_balance = entry.balance_after if entry else await self.ledger.get_balance(order.account_id)
            log.info("topup_already_applied", order_id=order.order_id, account_id=order.account_id)
        except Exception as exc:
            return await self._report_credit_failure(order, payment_id, exc)

        credited = await self.orders.transition(
            order.order_id,
            {OrderStatus.VERIFIED},
            OrderStatus.CREDITED,
            payment_id=payment_id,
            credited_balance=new_balance,
            credit_error=None,
        )
        if credited is None:
            current = await self._load(order.order_id)
            return CheckoutResult(
                order_id=order.order_id,
                status=OrderStatus.CREDITED,
                new_balance=current.credited_balance if current.credited_balance is not None else new_balance,
            )

        log.info(
            "credits_topped_up",
            account_id=order.account_id,
            order_id=order.order_id,
            payment_id=payment_id,
            credits=order.requested_credits,
            balance=new_balance,
        )
        await self.audit.log_event(
            order.account_id,
            "credits_topped_up",
            "checkout_order",
            order.order_id,
            {
                "payment_id": payment_id,
                "credits": order.requested_credits,
                "amount": order.amount_minor_units,
                "currency": order.currency,
                "balance_after": new_balance,
            },
        )
        return CheckoutResult(order_id=order.order_id, status=OrderStatus.CREDITED, new_balance=new_balance)

    async def _report_credit_failure(
        self,
        order: CheckoutOrderRecord,
        payment_id: str | None,
        exc: Exception,
    ) -> CheckoutResult:
        # Funds captured, credits not reflected. The write may have landed, so no blind retry.
        try:
            marked = await self.orders.transition(
                order.order_id,
                {OrderStatus.VERIFIED},
                OrderStatus.VERIFIED,
                credit_error=f"{type(exc).__name__}: {exc}"[:500],
            )
        except Exception as mark_exc:
            log.error("credit_error_not_recorded", order_id=order.order_id, error=str(mark_exc))
            marked = order
        if marked is None:
            # A concurrent completion credited the order while our write failed
            current = await self._load(order.order_id)
            settled = self._settled_result(current)
            if settled is not None:
                log.warning("credit_failure_superseded", order_id=order.order_id, status=current.status.value, error=str(exc))
                return settled

        log.exception(
            "credit_failed_reconciliation_required",
            order_id=order.order_id,
            account_id=order.account_id,
            payment_id=payment_id,
            credits=order.requested_credits,
            exc_info=exc,
        )
        await self.audit.log_event(
            order.account_id,
            "credit_failed_reconciliation_required",
            "checkout_order",
            order.order_id,
            {"payment_id": payment_id, "credits": order.requested_credits, "error": str(exc)[:500]},
        )
        return CheckoutResult(order_id=order.order_id, status=OrderStatus.VERIFIED, reconciliation_required=True)
