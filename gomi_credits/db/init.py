import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from gomi_credits.core.config import get_settings
from gomi_credits.models.audit_log import AuditLog
from gomi_credits.models.credit_ledger import CreditTransaction
from gomi_credits.models.device_record import DeviceRecord
from gomi_credits.models.ip_record import IPRecord
from gomi_credits.models.user import User

DOCUMENT_MODELS = [
    User,
    CreditTransaction,
    DeviceRecord,
    IPRecord,
    AuditLog,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(client=None) -> None:
    """Bind Beanie documents. `client` overrides the configured Motor client (tests pass an in-memory one)."""
    settings = get_settings()
    if client is None:
        # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
