"""Tests for credit pricing and the reserve/charge/refund ledger."""

import threading

import pytest

from bvg.billing import (
    CreditLedger,
    FileCreditStore,
    TransactionType,
    VideoJobStatus,
    credits_for_minutes,
    credits_to_usd,
    estimate_job_minutes,
)
from bvg.errors import InsufficientCreditsError, ValidationError


class TestPricing:
    def test_one_initial_segment_costs_one_credit(self):
        assert credits_for_minutes(8 / 60) == 1

    def test_rounds_up(self):
        assert credits_for_minutes(estimate_job_minutes(3)) == 3  # 20 s -> 2.5 credits
        assert credits_for_minutes(estimate_job_minutes(2)) == 2  # 14 s -> 1.75 credits

    def test_estimate_minutes(self):
        assert estimate_job_minutes(1) == pytest.approx(8 / 60)
        assert estimate_job_minutes(4) == pytest.approx(26 / 60)

    def test_zero_minutes_free(self):
        assert credits_for_minutes(0) == 0

    def test_usd(self):
        assert credits_to_usd(10) == 33.4


class TestReserve:
    def test_check_credits_reports_shortfall(self, ledger, fund):
        fund("u", 1)
        check = ledger.check_credits("u", estimate_job_minutes(3))
        assert not check.has_enough
        assert check.required == 3
        assert check.shortfall == 2

    def test_reserve_holds_without_touching_balance(self, ledger, fund):
        fund("u", 10)
        vj = ledger.reserve("u", "gen_1", "fake", estimate_job_minutes(3))
        assert vj.status == VideoJobStatus.PENDING
        assert vj.credits_reserved == 3
        bal = ledger.get_balance("u")
        assert bal.balance == 10
        assert bal.reserved == 3
        assert bal.available == 7

    def test_insufficient_credits_holds_nothing(self, ledger, fund):
        fund("u", 2)
        with pytest.raises(InsufficientCreditsError) as exc:
            ledger.reserve("u", "gen_1", "fake", estimate_job_minutes(3))
        assert exc.value.required == 3
        assert exc.value.balance == 2
        assert exc.value.shortfall == 1
        assert ledger.get_balance("u").reserved == 0
        assert ledger.pending_reservation("gen_1") is None

    def test_holds_count_against_later_reservations(self, ledger, fund):
        fund("u", 4)
        ledger.reserve("u", "gen_1", "fake", estimate_job_minutes(3))
        with pytest.raises(InsufficientCreditsError):
            ledger.reserve("u", "gen_2", "fake", estimate_job_minutes(2))


class TestChargeAndRefund:
    def test_charge_without_usage_charges_estimate(self, ledger, fund):
        fund("u", 10)
        vj = ledger.reserve("u", "gen_1", "fake", estimate_job_minutes(3))
        charged = ledger.charge(vj.video_job_id)
        assert charged.status == VideoJobStatus.COMPLETED
        assert charged.credits_charged == 3
        bal = ledger.get_balance("u")
        assert bal.balance == 7
        assert bal.reserved == 0
        debit = ledger.list_transactions("u")[0]
        assert debit.type == TransactionType.DEBIT
        assert debit.amount == -3
        assert debit.balance_after == 7

    def test_charge_with_actual_usage(self, ledger, fund):
        fund("u", 10)
        vj = ledger.reserve("u", "gen_1", "fake", estimate_job_minutes(3))
        charged = ledger.charge(vj.video_job_id, actual_units=8 / 60)
        assert charged.credits_charged == 1
        assert ledger.get_balance("u").available == 9

    def test_refund_restores_available_exactly(self, ledger, fund):
        fund("u", 10)
        before = ledger.get_balance("u").available
        vj = ledger.reserve("u", "gen_1", "fake", estimate_job_minutes(3))
        refunded = ledger.refund(vj.video_job_id, reason="provider failed")
        assert refunded.status == VideoJobStatus.FAILED
        assert ledger.get_balance("u").available == before
        tx = ledger.list_transactions("u")[0]
        assert tx.type == TransactionType.REFUND
        assert tx.amount == 3
        assert tx.balance_after == before

    def test_refund_twice_is_noop(self, ledger, fund):
        fund("u", 10)
        vj = ledger.reserve("u", "gen_1", "fake", estimate_job_minutes(1))
        ledger.refund(vj.video_job_id)
        ledger.refund(vj.video_job_id)
        refunds = [t for t in ledger.list_transactions("u") if t.type == TransactionType.REFUND]
        assert len(refunds) == 1
        assert ledger.get_balance("u").available == 10

    def test_charge_after_refund_is_skipped(self, ledger, fund):
        fund("u", 10)
        vj = ledger.reserve("u", "gen_1", "fake", estimate_job_minutes(1))
        ledger.refund(vj.video_job_id)
        result = ledger.charge(vj.video_job_id)
        assert result.status == VideoJobStatus.FAILED
        assert ledger.get_balance("u").balance == 10


class TestGrant:
    def test_grant_is_idempotent(self, ledger):
        first = ledger.grant("u", 25, idempotency_key="evt_1", type=TransactionType.PURCHASE)
        second = ledger.grant("u", 25, idempotency_key="evt_1", type=TransactionType.PURCHASE)
        assert first is not None
        assert first.balance_after == 25
        assert second is None
        assert ledger.get_balance("u").balance == 25

    def test_grant_requires_positive_amount_and_key(self, ledger):
        with pytest.raises(ValidationError):
            ledger.grant("u", 0, idempotency_key="k")
        with pytest.raises(ValidationError):
            ledger.grant("u", 5, idempotency_key="")


class TestConcurrency:
    def test_parallel_reservations_never_overdraw(self, tmp_path):
        ledger = CreditLedger(FileCreditStore(tmp_path))
        ledger.grant("u", 5, idempotency_key="seed")
        outcomes = []

        def attempt(i):
            try:
                ledger.reserve("u", f"gen_{i}", "fake", estimate_job_minutes(1))
                outcomes.append("ok")
            except InsufficientCreditsError:
                outcomes.append("short")

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 5
        assert outcomes.count("short") == 7
        bal = ledger.get_balance("u")
        assert bal.reserved == 5
        assert bal.available == 0

    def test_two_store_instances_share_the_lock(self, tmp_path):
        a = CreditLedger(FileCreditStore(tmp_path))
        b = CreditLedger(FileCreditStore(tmp_path))
        a.grant("u", 2, idempotency_key="seed")
        a.reserve("u", "gen_1", "fake", estimate_job_minutes(1))
        b.reserve("u", "gen_2", "fake", estimate_job_minutes(1))
        with pytest.raises(InsufficientCreditsError):
            a.reserve("u", "gen_3", "fake", estimate_job_minutes(1))
