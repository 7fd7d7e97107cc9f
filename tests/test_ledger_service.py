"""Ledger service tests on the in-memory stores."""

import asyncio

import pytest

from runtokens.core.exceptions import InsufficientFundsError, StoreUnavailableError
from runtokens.services.ledger import INITIAL_BONUS, LedgerService
from runtokens.stores.memory import MemoryAccountStore, MemoryRedemptionStore

pytestmark = pytest.mark.asyncio


class FlakyAccountStore(MemoryAccountStore):
    """Fails every adjust_balance call as if the store went away."""

    async def adjust_balance(self, user_id, delta, floor=False):
        raise StoreUnavailableError("connection reset")


class DroppedConnectionAccountStore(MemoryAccountStore):
    """Raises a raw socket error instead of a store error."""

    async def adjust_balance(self, user_id, delta, floor=False):
        raise ConnectionResetError("socket closed")


class UntouchableRedemptionStore(MemoryRedemptionStore):
    async def claim_code(self, code, claimant_id):
        raise AssertionError("redemption store must not be called")


async def test_get_initializes_new_user_once(ledger):
    first = await ledger.get("u-new")
    second = await ledger.get("u-new")
    assert first.success and first.balance == INITIAL_BONUS
    assert second.success and second.balance == INITIAL_BONUS


@pytest.mark.parametrize("user_id", [None, "", "   "])
async def test_missing_user_id_is_invalid_request(ledger, user_id):
    for result in (
        await ledger.get(user_id),
        await ledger.consume(user_id),
        await ledger.refund(user_id),
        await ledger.redeem(user_id, "C1"),
    ):
        assert not result.success
        assert result.error_code == "INVALID_REQUEST"
        assert result.status_code == 400
        assert not result.retriable


async def test_consume_on_empty_balance_is_rejected_without_mutation(ledger):
    assert (await ledger.consume("u1")).balance == 0
    result = await ledger.consume("u1")
    assert not result.success
    assert result.error_code == "INSUFFICIENT_FUNDS"
    assert not result.retriable
    assert (await ledger.get("u1")).balance == 0


async def test_consume_then_refund_restores_balance(ledger):
    await ledger.refund("u2")  # 2
    before = (await ledger.get("u2")).balance
    assert (await ledger.consume("u2")).balance == before - 1
    assert (await ledger.refund("u2")).balance == before


async def test_refund_on_new_user_starts_from_bonus(ledger):
    result = await ledger.refund("fresh")
    assert result.success
    assert result.balance == INITIAL_BONUS + 1


@pytest.mark.parametrize("starting,callers", [(3, 10), (5, 5), (4, 2), (1, 20)])
async def test_concurrent_consumes_never_overdraw(ledger, starting, callers):
    for _ in range(starting - INITIAL_BONUS):
        await ledger.refund("race")
    assert (await ledger.get("race")).balance == starting

    results = await asyncio.gather(*(ledger.consume("race") for _ in range(callers)))

    won = [r for r in results if r.success]
    lost = [r for r in results if not r.success]
    assert len(won) == min(callers, starting)
    assert all(r.error_code == "INSUFFICIENT_FUNDS" for r in lost)
    assert sorted(r.balance for r in won) == list(range(starting - len(won), starting))
    assert (await ledger.get("race")).balance == starting - min(callers, starting)


async def test_concurrent_refunds_do_not_lose_updates(ledger):
    await asyncio.gather(*(ledger.refund("inc") for _ in range(25)))
    assert (await ledger.get("inc")).balance == INITIAL_BONUS + 25


async def test_concurrent_redeem_has_single_winner(ledger, codes):
    await codes.add_code("C-RACE", 7)
    users = [f"user-{i}" for i in range(8)]

    results = await asyncio.gather(*(ledger.redeem(u, "C-RACE") for u in users))

    winners = [(u, r) for u, r in zip(users, results) if r.success]
    assert len(winners) == 1
    winner, result = winners[0]
    assert result.granted_amount == 7
    assert result.balance == INITIAL_BONUS + 7
    assert all(r.error_code == "CODE_INVALID" for r in results if not r.success)

    record = await codes.get_code("C-RACE")
    assert record.used and record.used_by == winner and record.used_at is not None


async def test_redeem_used_code_leaves_balances_alone(ledger, codes):
    await codes.add_code("ONCE", 3)
    assert (await ledger.redeem("a", "ONCE")).balance == 4
    b_before = (await ledger.get("b")).balance

    for user in ("a", "b"):
        result = await ledger.redeem(user, "ONCE")
        assert not result.success
        assert result.error_code == "CODE_INVALID"

    assert (await ledger.get("a")).balance == 4
    assert (await ledger.get("b")).balance == b_before
    assert (await codes.get_code("ONCE")).used_by == "a"


async def test_redeem_unknown_code(ledger):
    result = await ledger.redeem("u", "NOPE")
    assert result.error_code == "CODE_INVALID"
    assert result.status_code == 409


@pytest.mark.parametrize("code", [None, "", "  "])
async def test_redeem_without_code_skips_redemption_store(accounts, code):
    ledger = LedgerService(accounts, UntouchableRedemptionStore())
    result = await ledger.redeem("u", code)
    assert not result.success
    assert result.error_code == "INVALID_REQUEST"


async def test_credit_failure_after_claim_is_reported(codes):
    ledger = LedgerService(FlakyAccountStore(), codes)
    await codes.add_code("LOST", 4)

    result = await ledger.redeem("u", "LOST")

    assert not result.success
    assert result.error_code == "CREDIT_FAILED_AFTER_CLAIM"
    assert result.details["code"] == "LOST"
    assert result.details["amount"] == 4
    assert result.details["user_id"] == "u"
    assert not result.retriable
    # The claim is not rolled back
    assert (await codes.get_code("LOST")).used
    assert (await ledger.redeem("u", "LOST")).error_code == "CODE_INVALID"


async def test_store_failure_is_retriable(codes):
    ledger = LedgerService(FlakyAccountStore(), codes)
    result = await ledger.consume("u")
    assert not result.success
    assert result.error_code == "STORE_UNAVAILABLE"
    assert result.status_code == 503
    assert result.retriable
    assert result.message == "connection reset"


async def test_initial_bonus_is_configurable(accounts, codes):
    ledger = LedgerService(accounts, codes, initial_bonus=3)
    assert (await ledger.get("u")).balance == 3


async def test_walkthrough(ledger, codes):
    await codes.add_code("C100", 5)

    assert (await ledger.get("u1")).balance == 1
    assert (await ledger.consume("u1")).balance == 0

    denied = await ledger.consume("u1")
    assert denied.error_code == "INSUFFICIENT_FUNDS"
    assert (await ledger.get("u1")).balance == 0

    assert (await ledger.refund("u1")).balance == 1

    redeemed = await ledger.redeem("u1", "C100")
    assert redeemed.success
    assert redeemed.balance == 6
    assert redeemed.granted_amount == 5
    assert redeemed.message == "Redeemed 5 runs"

    again = await ledger.redeem("u1", "C100")
    assert again.error_code == "CODE_INVALID"
    assert (await ledger.get("u1")).balance == 6


async def test_raw_driver_error_becomes_store_unavailable(codes):
    ledger = LedgerService(DroppedConnectionAccountStore(), codes)
    for result in (await ledger.consume("u"), await ledger.refund("u")):
        assert not result.success
        assert result.error_code == "STORE_UNAVAILABLE"
        assert result.retriable
        assert result.message == "socket closed"


async def test_raw_driver_error_after_claim_is_credit_failed(codes):
    ledger = LedgerService(DroppedConnectionAccountStore(), codes)
    await codes.add_code("K", 2)

    result = await ledger.redeem("u", "K")

    assert result.error_code == "CREDIT_FAILED_AFTER_CLAIM"
    assert result.details == {"code": "K", "amount": 2, "user_id": "u", "reason": "socket closed"}
    assert (await codes.get_code("K")).used


async def test_user_ids_are_opaque_keys(ledger):
    await ledger.consume("u1")
    assert (await ledger.get("u1")).balance == 0
    assert (await ledger.get(" u1")).balance == INITIAL_BONUS
    assert (await ledger.get("u1 ")).balance == INITIAL_BONUS


async def test_codes_are_matched_exactly(ledger, codes):
    await codes.add_code("C7", 1)
    assert (await ledger.redeem("u", " C7")).error_code == "CODE_INVALID"
    assert (await ledger.redeem("u", "C7")).success


async def test_failed_result_keeps_its_exception_type(ledger):
    await ledger.consume("u")
    result = await ledger.consume("u")
    assert isinstance(result.to_error(), InsufficientFundsError)
