import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory store for everything except the Mongo store tests
os.environ.setdefault("RUN_TOKENS_BACKEND", "memory")
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "runtokens_test")


@pytest.fixture
def accounts():
    from runtokens.stores.memory import MemoryAccountStore
    return MemoryAccountStore()


@pytest.fixture
def codes():
    from runtokens.stores.memory import MemoryRedemptionStore
    return MemoryRedemptionStore()


@pytest.fixture
def ledger(accounts, codes):
    from runtokens.services.ledger import LedgerService
    return LedgerService(accounts, codes)


@pytest_asyncio.fixture
async def client(ledger) -> AsyncGenerator[AsyncClient, None]:
    from runtokens.deps import get_ledger
    from runtokens.main import app

    async def _ledger():
        return ledger

    app.dependency_overrides[get_ledger] = _ledger
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.pop(get_ledger, None)
