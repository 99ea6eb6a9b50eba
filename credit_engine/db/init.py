import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from credit_engine.core.config import get_settings
from credit_engine.models.audit_log import AuditLog
from credit_engine.models.checkout_order import CheckoutOrder
from credit_engine.models.credit_balance import CreditBalance
from credit_engine.models.credit_ledger import CreditLedgerEntry
from credit_engine.models.unlock_record import UnlockRecord

DOCUMENT_MODELS = [
    CreditBalance,
    CreditLedgerEntry,
    UnlockRecord,
    CheckoutOrder,
    AuditLog,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(uri: str | None = None, db_name: str | None = None) -> None:
    settings = get_settings()
    uri = uri or settings.mongodb_uri
    kwargs = {}
    if _use_tls(uri):
        kwargs["tlsCAFile"] = certifi.where()
    client = AsyncIOMotorClient(uri, tz_aware=True, **kwargs)
    database = client[db_name or settings.mongodb_db_name]
    # Creates the unique indexes the ledger and unlock registry rely on
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
