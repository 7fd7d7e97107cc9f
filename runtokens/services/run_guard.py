"""Consume-then-refund bracket for metered runs."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from runtokens.core.logging import get_logger
from runtokens.services.ledger import LedgerResult, LedgerService

log = get_logger(__name__)


@asynccontextmanager
async def metered_run(ledger: LedgerService, user_id: str) -> AsyncIterator[LedgerResult]:
    """Spend one run token for the enclosed block.

    Raises the ledger's AppError when the token cannot be spent (the run is not
    permitted). If the block raises or is cancelled, the token is refunded and
    the original exception propagates.

        async with metered_run(ledger, user_id) as spent:
            await submit_run(...)
    """
    spent = await ledger.consume(user_id)
    if not spent.success:
        raise spent.to_error()
    try:
        yield spent
    except GeneratorExit:
        raise
    except BaseException as e:
        # BaseException so a cancelled run (CancelledError) is refunded too
        refund = await ledger.refund(user_id)
        if refund.success:
            log.info("run_refunded", user_id=user_id, balance=refund.balance, reason=type(e).__name__)
        else:
            log.error(
                "run_refund_failed",
                user_id=user_id,
                code=refund.error_code,
                message=refund.message,
                reason=type(e).__name__,
            )
        raise
