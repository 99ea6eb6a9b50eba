"""Shared FastAPI dependencies. Tests swap stores and gateway via app.dependency_overrides."""

from fastapi import Depends, Request

from credit_engine.core.exceptions import ForbiddenError, UnauthorizedError
from credit_engine.core.logging import bind_account
from credit_engine.core.security import load_session_cookie
from credit_engine.gateway.base import PaymentGateway, get_gateway
from credit_engine.services.checkout import CheckoutOrchestrator
from credit_engine.services.gate import ResourceGate
from credit_engine.stores.base import Stores, get_stores

SESSION_COOKIE_NAME = "matchmaking_session"


def _session_payload(request: Request) -> dict:
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    if not payload.get("account_id"):
        raise UnauthorizedError("Invalid session")
    return payload


async def get_current_account(request: Request) -> str:
    """Dependency: account id from the signed session cookie issued by the auth service."""
    account_id = str(_session_payload(request)["account_id"])
    request.state.account_id = account_id
    bind_account(account_id)
    return account_id


async def require_admin(request: Request) -> str:
    """Dependency: require the session role to be admin; returns the operator's account id."""
    payload = _session_payload(request)
    if payload.get("role") != "admin":
        raise ForbiddenError("Admin only")
    return str(payload["account_id"])


def provide_stores() -> Stores:
    return get_stores()


def provide_gateway() -> PaymentGateway:
    return get_gateway()


def get_resource_gate(stores: Stores = Depends(provide_stores)) -> ResourceGate:
    return ResourceGate(stores.ledger, stores.unlocks, stores.audit)


def get_checkout(
    stores: Stores = Depends(provide_stores),
    gateway: PaymentGateway = Depends(provide_gateway),
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(stores.ledger, stores.orders, gateway, stores.audit)
