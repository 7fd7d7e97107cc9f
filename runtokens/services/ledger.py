"""Run token ledger: get, consume, refund and redeem on top of the stores.

Every operation returns a LedgerResult; ledger and store errors are converted at
this boundary instead of propagating to the caller.
"""

from functools import lru_cache
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field, PrivateAttr

from runtokens.core.config import get_settings
from runtokens.core.exceptions import (
    AppError,
    CreditFailedAfterClaimError,
    InvalidRequestError,
    StoreUnavailableError,
)
from runtokens.core.logging import get_logger
from runtokens.stores.base import AccountStore, RedemptionStore, get_stores

log = get_logger(__name__)

INITIAL_BONUS = 1


class LedgerResult(BaseModel):
    success: bool
    balance: int | None = None
    granted_amount: int | None = None
    message: str | None = None
    error_code: str | None = None
    status_code: int = 200
    retriable: bool = False
    details: dict[str, Any] = Field(default_factory=dict)

    _error: AppError | None = PrivateAttr(default=None)

    @classmethod
    def ok(cls, balance: int, **kwargs: Any) -> "LedgerResult":
        return cls(success=True, balance=balance, **kwargs)

    @classmethod
    def from_error(cls, exc: AppError) -> "LedgerResult":
        result = cls(
            success=False,
            message=exc.message,
            error_code=exc.code,
            status_code=exc.status_code,
            retriable=exc.retriable,
            details=exc.details,
        )
        result._error = exc
        return result

    def to_error(self) -> AppError:
        """Return the AppError behind a failed result (raise it at an HTTP or guard boundary).

        Results built from an exception hand back that same exception, subclass included.
        """
        if self.success:
            raise ValueError("LedgerResult is a success")
        if self._error is not None:
            return self._error
        err = AppError(
            self.message or "Run token operation failed",
            code=self.error_code or "ERROR",
            status_code=self.status_code,
            details=self.details,
        )
        err.retriable = self.retriable
        return err


def _require(value: str | None, message: str) -> str:
    """Reject missing or blank values; the value itself is an opaque key and is kept as given."""
    if value is None or not value.strip():
        raise InvalidRequestError(message)
    return value


class LedgerService:
    def __init__(
        self,
        accounts: AccountStore,
        codes: RedemptionStore,
        initial_bonus: int = INITIAL_BONUS,
    ) -> None:
        self.accounts = accounts
        self.codes = codes
        self.initial_bonus = initial_bonus

    async def _run(self, op: str, fn: Callable[[], Awaitable[LedgerResult]]) -> LedgerResult:
        try:
            return await fn()
        except AppError as e:
            level = log.warning if e.retriable else log.info
            level("ledger_rejected", op=op, code=e.code, message=e.message)
            return LedgerResult.from_error(e)
        except Exception as e:
            log.exception("ledger_store_failure", op=op, error=str(e))
            return LedgerResult.from_error(StoreUnavailableError(str(e) or type(e).__name__))

    async def _ensure(self, user_id: str) -> int:
        return await self.accounts.ensure_account(user_id, self.initial_bonus)

    async def get(self, user_id: str | None) -> LedgerResult:
        async def _get() -> LedgerResult:
            uid = _require(user_id, "Missing userId")
            balance = await self.accounts.get_balance(uid, self.initial_bonus)
            return LedgerResult.ok(balance)

        return await self._run("get", _get)

    async def consume(self, user_id: str | None) -> LedgerResult:
        """Spend one run token. Insufficient balance means "not permitted", not a transient error."""
        async def _consume() -> LedgerResult:
            uid = _require(user_id, "Missing userId")
            await self._ensure(uid)
            balance = await self.accounts.adjust_balance(uid, -1, floor=True)
            log.info("run_token_consumed", user_id=uid, balance=balance)
            return LedgerResult.ok(balance)

        return await self._run("consume", _consume)

    async def refund(self, user_id: str | None) -> LedgerResult:
        async def _refund() -> LedgerResult:
            uid = _require(user_id, "Missing userId")
            await self._ensure(uid)
            balance = await self.accounts.adjust_balance(uid, 1)
            log.info("run_token_refunded", user_id=uid, balance=balance)
            return LedgerResult.ok(balance)

        return await self._run("refund", _refund)

    async def redeem(self, user_id: str | None, code: str | None) -> LedgerResult:
        """Claim ``code`` for the user, then credit its amount.

        The claim is committed before the credit. If the credit fails the code
        stays spent and CREDIT_FAILED_AFTER_CLAIM is returned for reconciliation.
        """
        async def _redeem() -> LedgerResult:
            uid = _require(user_id, "Missing userId")
            claimed = _require(code, "Missing redeem code")
            amount = await self.codes.claim_code(claimed, uid)
            log.info("redeem_code_claimed", user_id=uid, code=claimed, amount=amount)
            try:
                await self._ensure(uid)
                balance = await self.accounts.adjust_balance(uid, amount)
            except Exception as e:
                reason = e.message if isinstance(e, AppError) else (str(e) or type(e).__name__)
                log.error(
                    "redeem_credit_failed_after_claim",
                    user_id=uid,
                    code=claimed,
                    amount=amount,
                    reason=reason,
                    exc_info=not isinstance(e, AppError),
                )
                raise CreditFailedAfterClaimError(claimed, amount, uid, reason=reason) from e
            log.info("redeem_credited", user_id=uid, code=claimed, amount=amount, balance=balance)
            unit = "run" if amount == 1 else "runs"
            return LedgerResult.ok(balance, granted_amount=amount, message=f"Redeemed {amount} {unit}")

        return await self._run("redeem", _redeem)


@lru_cache
def get_ledger_service() -> LedgerService:
    """Process-wide ledger over the configured stores."""
    accounts, codes = get_stores()
    return LedgerService(accounts, codes, initial_bonus=get_settings().initial_bonus)
