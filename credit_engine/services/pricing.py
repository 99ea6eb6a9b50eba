"""Credit pack pricing and unlock prices. Policy lives here, not in the stores."""

from dataclasses import dataclass

from credit_engine.core.config import get_settings
from credit_engine.core.exceptions import BadRequestError, InvalidAmount
from credit_engine.core.types import ResourceKind

# plan_id -> fixed credit count (None = any amount in range)
PLANS: dict[str, int | None] = {
    "custom": None,
    "pro": 3000,
    "premium": 7200,
}


@dataclass(frozen=True)
class PriceTable:
    minor_units_per_credit: dict[str, int]
    min_credits: int
    max_credits: int

    @property
    def currencies(self) -> list[str]:
        return sorted(self.minor_units_per_credit)

    def quote(self, credits: int, currency: str) -> int:
        """Amount in minor units (paise, cents) for `credits` in `currency`."""
        rate = self.minor_units_per_credit.get(currency)
        if rate is None:
            raise BadRequestError(f"Unsupported currency: {currency}", code="UNSUPPORTED_CURRENCY")
        if isinstance(credits, bool) or not isinstance(credits, int):
            raise InvalidAmount("credits must be an integer", details={"credits": credits})
        if credits < self.min_credits or credits > self.max_credits:
            raise InvalidAmount(
                f"credits must be between {self.min_credits} and {self.max_credits}",
                details={"credits": credits},
            )
        return credits * rate


def get_price_table() -> PriceTable:
    s = get_settings()
    return PriceTable(
        minor_units_per_credit={
            "INR": s.price_per_credit_minor_inr,
            "USD": s.price_per_credit_minor_usd,
        },
        min_credits=s.min_checkout_credits,
        max_credits=s.max_checkout_credits,
    )


def resolve_plan(plan_id: str, credits: int) -> str:
    if plan_id not in PLANS:
        raise BadRequestError(f"Unknown plan: {plan_id}", code="UNKNOWN_PLAN")
    fixed = PLANS[plan_id]
    if fixed is not None and credits != fixed:
        raise InvalidAmount(f"Plan {plan_id} is {fixed} credits", details={"credits": credits, "plan_id": plan_id})
    return plan_id


def unlock_price(resource_kind: ResourceKind) -> int:
    """Flat price for every kind today; kept per kind so callers never hardcode it."""
    return get_settings().unlock_price_credits


def get_pricing() -> dict:
    table = get_price_table()
    return {
        "currencies": {c: {"minor_units_per_credit": table.minor_units_per_credit[c]} for c in table.currencies},
        "min_credits": table.min_credits,
        "max_credits": table.max_credits,
        "plans": [{"id": pid, "credits": credits} for pid, credits in PLANS.items()],
        "unlock_price": {kind.value: unlock_price(kind) for kind in ResourceKind},
    }
