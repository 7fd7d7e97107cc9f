"""In-process stores for local development and tests.

Each primitive yields to the event loop once (standing in for store I/O) and
then checks and writes without awaiting, so it is atomic on a single loop.
Not shared across processes.
"""

import asyncio
from datetime import datetime

from runtokens.core.exceptions import (
    CodeInvalidError,
    ConflictError,
    InsufficientFundsError,
    InvalidRequestError,
    NotFoundError,
)
from runtokens.stores.base import AccountStore, CodeRecord, RedemptionStore


class MemoryAccountStore(AccountStore):
    def __init__(self) -> None:
        self._rows: dict[str, dict] = {}

    async def ensure_account(self, user_id: str, initial_balance: int) -> int:
        await asyncio.sleep(0)
        row = self._rows.get(user_id)
        if row is None:
            now = datetime.utcnow()
            row = {"balance": initial_balance, "created_at": now, "updated_at": now}
            self._rows[user_id] = row
        return row["balance"]

    async def get_balance(self, user_id: str, initial_balance: int) -> int:
        await asyncio.sleep(0)
        row = self._rows.get(user_id)
        if row is None:
            return await self.ensure_account(user_id, initial_balance)
        return row["balance"]

    async def adjust_balance(self, user_id: str, delta: int, floor: bool = False) -> int:
        await asyncio.sleep(0)
        row = self._rows.get(user_id)
        if row is None:
            raise NotFoundError(f"No run token account for {user_id}")
        if floor and row["balance"] + delta < 0:
            raise InsufficientFundsError(details={"balance": row["balance"]})
        row["balance"] += delta
        row["updated_at"] = datetime.utcnow()
        return row["balance"]


class MemoryRedemptionStore(RedemptionStore):
    def __init__(self) -> None:
        self._codes: dict[str, CodeRecord] = {}

    async def claim_code(self, code: str, claimant_id: str) -> int:
        await asyncio.sleep(0)
        record = self._codes.get(code)
        if record is None or record.used:
            raise CodeInvalidError()
        record.used = True
        record.used_by = claimant_id
        record.used_at = datetime.utcnow()
        return record.amount

    async def add_code(self, code: str, amount: int) -> CodeRecord:
        if amount < 1:
            raise InvalidRequestError("Code amount must be at least 1")
        await asyncio.sleep(0)
        if code in self._codes:
            raise ConflictError(f"Redeem code {code} already exists")
        record = CodeRecord(code=code, amount=amount)
        self._codes[code] = record
        return record.model_copy()

    async def get_code(self, code: str) -> CodeRecord | None:
        await asyncio.sleep(0)
        record = self._codes.get(code)
        return record.model_copy() if record else None
