"""Shared FastAPI dependencies."""

from runtokens.core.config import is_store_configured
from runtokens.core.exceptions import StoreUnavailableError
from runtokens.services.ledger import LedgerService, get_ledger_service


async def get_ledger() -> LedgerService:
    """Dependency: the ledger, or 503 when no store is configured."""
    if not is_store_configured():
        raise StoreUnavailableError("Run token store is not configured")
    return get_ledger_service()
