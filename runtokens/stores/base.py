"""Store interfaces for run token accounts and redeem codes.

Every mutation goes through a single conditional primitive of the backend
(conditional update, upsert, or compare-and-set). Nothing here reads a
balance and writes it back unconditionally.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from functools import lru_cache

from pydantic import BaseModel

from runtokens.core.config import get_settings


class CodeRecord(BaseModel):
    code: str
    amount: int
    used: bool = False
    used_by: str | None = None
    used_at: datetime | None = None


class AccountStore(ABC):
    @abstractmethod
    async def ensure_account(self, user_id: str, initial_balance: int) -> int:
        """Create the account with ``initial_balance`` if absent; return its balance."""
        ...

    @abstractmethod
    async def get_balance(self, user_id: str, initial_balance: int) -> int:
        """Return the balance, materializing a missing account first."""
        ...

    @abstractmethod
    async def adjust_balance(self, user_id: str, delta: int, floor: bool = False) -> int:
        """Atomically add ``delta``; return the new balance.

        With ``floor`` the update only applies while the result stays >= 0,
        otherwise InsufficientFundsError is raised and nothing changes.
        """
        ...


class RedemptionStore(ABC):
    @abstractmethod
    async def claim_code(self, code: str, claimant_id: str) -> int:
        """Flip an unused code to used for ``claimant_id``; return its amount.

        Raises CodeInvalidError when the code is unknown or already used.
        """
        ...

    @abstractmethod
    async def add_code(self, code: str, amount: int) -> CodeRecord:
        """Provision a new unused code."""
        ...

    @abstractmethod
    async def get_code(self, code: str) -> CodeRecord | None:
        ...


@lru_cache
def get_stores() -> tuple[AccountStore, RedemptionStore]:
    """Return the process-wide store pair for the configured backend."""
    settings = get_settings()
    if settings.backend == "memory":
        from runtokens.stores.memory import MemoryAccountStore, MemoryRedemptionStore
        return MemoryAccountStore(), MemoryRedemptionStore()
    from runtokens.stores.mongo import MongoAccountStore, MongoRedemptionStore
    return MongoAccountStore(), MongoRedemptionStore()
