import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from runtokens.core.config import get_settings
from runtokens.models.account import RunTokenAccount
from runtokens.models.redeem_code import RedeemCode

DOCUMENT_MODELS = [
    RunTokenAccount,
    RedeemCode,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def create_client(uri: str, **kwargs) -> AsyncIOMotorClient:
    if _use_tls(uri):
        kwargs.setdefault("tlsCAFile", certifi.where())
        kwargs.setdefault("tlsDisableOCSPEndpointCheck", True)
    return AsyncIOMotorClient(uri, **kwargs)


async def init_db(uri: str | None = None, db_name: str | None = None) -> AsyncIOMotorClient:
    """Connect motor, register documents with beanie and build their indexes."""
    settings = get_settings()
    client = create_client(uri or settings.mongodb_uri)
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    return client
