"""MongoDB stores.

Collections are registered through beanie (see ``runtokens.db.init``); the
atomic primitives are issued as single ``find_one_and_update`` commands on the
underlying motor collections so that the filter and the write are evaluated by
the server as one step.
"""

from contextlib import contextmanager
from datetime import datetime

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from runtokens.core.exceptions import (
    CodeInvalidError,
    ConflictError,
    InsufficientFundsError,
    InvalidRequestError,
    NotFoundError,
    StoreUnavailableError,
)
from runtokens.core.logging import get_logger
from runtokens.models.account import RunTokenAccount
from runtokens.models.redeem_code import RedeemCode
from runtokens.stores.base import AccountStore, CodeRecord, RedemptionStore

log = get_logger(__name__)


@contextmanager
def _store_errors(op: str):
    """Translate driver failures into StoreUnavailableError."""
    try:
        yield
    except PyMongoError as e:
        log.warning("store_error", op=op, error=str(e))
        raise StoreUnavailableError(str(e)) from e


class MongoAccountStore(AccountStore):
    @property
    def _collection(self):
        return RunTokenAccount.get_motor_collection()

    async def ensure_account(self, user_id: str, initial_balance: int) -> int:
        now = datetime.utcnow()
        with _store_errors("ensure_account"):
            try:
                doc = await self._collection.find_one_and_update(
                    {"user_id": user_id},
                    {"$setOnInsert": {"balance": initial_balance, "created_at": now, "updated_at": now}},
                    projection={"balance": 1},
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except DuplicateKeyError:
                # Lost the insert race to a concurrent upsert; the winner's row stands.
                doc = await self._collection.find_one({"user_id": user_id}, {"balance": 1})
        if doc is None:
            raise StoreUnavailableError(f"Account upsert for {user_id} returned nothing")
        return doc["balance"]

    async def get_balance(self, user_id: str, initial_balance: int) -> int:
        with _store_errors("get_balance"):
            doc = await self._collection.find_one({"user_id": user_id}, {"balance": 1})
        if doc is None:
            return await self.ensure_account(user_id, initial_balance)
        return doc["balance"]

    async def adjust_balance(self, user_id: str, delta: int, floor: bool = False) -> int:
        query: dict = {"user_id": user_id}
        if floor:
            query["balance"] = {"$gte": -delta}
        with _store_errors("adjust_balance"):
            doc = await self._collection.find_one_and_update(
                query,
                {"$inc": {"balance": delta}, "$set": {"updated_at": datetime.utcnow()}},
                projection={"balance": 1},
                return_document=ReturnDocument.AFTER,
            )
            if doc is not None:
                return doc["balance"]
            # Nothing matched: tell a missing row apart from a failed floor check.
            current = await self._collection.find_one({"user_id": user_id}, {"balance": 1})
        if current is None:
            raise NotFoundError(f"No run token account for {user_id}")
        raise InsufficientFundsError(details={"balance": current["balance"]})


class MongoRedemptionStore(RedemptionStore):
    @property
    def _collection(self):
        return RedeemCode.get_motor_collection()

    async def claim_code(self, code: str, claimant_id: str) -> int:
        with _store_errors("claim_code"):
            doc = await self._collection.find_one_and_update(
                {"code": code, "used": False},
                {"$set": {"used": True, "used_by": claimant_id, "used_at": datetime.utcnow()}},
                projection={"amount": 1},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise CodeInvalidError()
        return doc["amount"]

    async def add_code(self, code: str, amount: int) -> CodeRecord:
        if amount < 1:
            raise InvalidRequestError("Code amount must be at least 1")
        doc = RedeemCode(code=code, amount=amount)
        with _store_errors("add_code"):
            try:
                await doc.insert()
            except DuplicateKeyError as e:
                raise ConflictError(f"Redeem code {code} already exists") from e
        return CodeRecord(code=doc.code, amount=doc.amount)

    async def get_code(self, code: str) -> CodeRecord | None:
        with _store_errors("get_code"):
            doc = await RedeemCode.find_one(RedeemCode.code == code)
        if doc is None:
            return None
        return CodeRecord(
            code=doc.code,
            amount=doc.amount,
            used=doc.used,
            used_by=doc.used_by,
            used_at=doc.used_at,
        )
