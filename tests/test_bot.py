"""
Tests for the reconciliation loop.

Each cycle is driven directly through run_cycle() against the scripted
gateway; the scheduler thread gets its own start/stop tests.
"""
import threading
from decimal import Decimal

import pytest

from liquid_bot.bot import LoopState
from liquid_bot.errors import ReadError, TransactionError
from liquid_bot.gateway import Venue
from liquid_bot.phase import Phase
from liquid_bot.store import StateStore
from liquid_bot.units import to_lamports

from conftest import POOL, curve, messages


def graduate(gateway):
    gateway.curve = curve(complete=True)
    gateway.pool_exists = True


class TestBondingCurvePhase:

    def test_harvest_buys_half_and_holds_half(self, gateway, bus, make_bot):
        gateway.fee_balance = to_lamports("0.02")
        bot = make_bot()
        bot.run_cycle()

        assert gateway.called("claim")
        assert gateway.called("buy") == [("buy", Venue.BONDING_CURVE, to_lamports("0.01"), 5)]
        assert not gateway.called("deposit")
        assert bot.ledger.total_fees_collected == to_lamports("0.02")
        assert bot.ledger.total_buyback_spent == to_lamports("0.01")
        assert bot.ledger.held_reserve == to_lamports("0.01")
        assert bot.ledger.balanced()
        status = bot.get_status()
        assert status.current_phase == "bonding_curve"
        assert status.total_sol_held == to_lamports("0.01")

    def test_below_threshold_is_a_logged_no_op(self, gateway, bus, make_bot):
        gateway.fee_balance = to_lamports("0.01")
        bot = make_bot()
        bot.run_cycle()

        assert not gateway.called("claim")
        assert not gateway.called("buy")
        assert bot.ledger.total_fees_collected == 0
        assert any("below threshold" in m for m in messages(bus, "info"))
        assert not messages(bus, "error")

    def test_claim_failure_leaves_ledger_untouched(self, gateway, bus, make_bot):
        gateway.fee_balance = to_lamports("0.05")
        gateway.claim_error = TransactionError("blockhash expired")
        bot = make_bot()
        bot.run_cycle()

        assert bot.ledger.total_fees_collected == 0
        assert bot.ledger.held_reserve == 0
        assert not gateway.called("buy")
        assert "Cycle error: blockhash expired" in messages(bus, "error")
        assert bot.get_status().last_check is not None

    def test_claim_failure_then_success_counts_once(self, gateway, bus, make_bot):
        gateway.fee_balance = to_lamports("0.05")
        gateway.claim_error = TransactionError("dropped")
        bot = make_bot()
        bot.run_cycle()
        gateway.claim_error = None
        bot.run_cycle()
        assert bot.ledger.total_fees_collected == to_lamports("0.05")

    def test_empty_claim_books_nothing(self, gateway, bus, make_bot):
        gateway.fee_balance = to_lamports("0.03")
        gateway.claim_amount = 0
        bot = make_bot()
        bot.run_cycle()

        assert gateway.called("claim")
        assert not gateway.called("buy")
        assert bot.ledger.total_fees_collected == 0
        assert bot.ledger.unspent_buyback == 0
        assert "Nothing was claimed, skipping harvest" in messages(bus, "warning")

    def test_books_the_claimed_amount_not_the_earlier_read(self, gateway, bus, make_bot):
        gateway.fee_balance = to_lamports("0.02")
        gateway.claim_amount = to_lamports("0.024")
        bot = make_bot()
        bot.run_cycle()

        assert bot.ledger.total_fees_collected == to_lamports("0.024")
        assert gateway.called("buy") == [("buy", Venue.BONDING_CURVE, to_lamports("0.012"), 5)]
        assert bot.ledger.balanced()

    def test_failed_curve_buy_is_not_booked(self, gateway, bus, make_bot):
        gateway.fee_balance = to_lamports("0.02")
        gateway.buy_error = TransactionError("slippage exceeded")
        bot = make_bot()
        bot.run_cycle()

        assert bot.ledger.total_fees_collected == to_lamports("0.02")
        assert bot.ledger.total_buyback_spent == 0
        assert bot.ledger.unspent_buyback == to_lamports("0.01")
        assert bot.ledger.balanced()
        assert any(m.startswith("Cycle error") for m in messages(bus, "error"))

    def test_fee_read_failure_skips_harvest(self, gateway, bus, make_bot):
        gateway.fee_error = ReadError("429 too many requests")
        gateway.token_balance = Decimal("42.5")
        bot = make_bot(min_fee_threshold=0)
        bot.run_cycle()

        assert not gateway.called("claim")
        assert any("creator fee balance" in m for m in messages(bus, "warning"))
        # remaining steps still ran
        assert bot.get_status().tokens_held == "42.5"

    def test_zero_buyback_percentage_skips_buy(self, gateway, bus, make_bot):
        gateway.fee_balance = to_lamports("0.02")
        bot = make_bot(buyback_percentage=0)
        bot.run_cycle()
        assert not gateway.called("buy")
        assert bot.ledger.held_reserve == to_lamports("0.02")


class TestLiquidityPhase:

    def test_deposit_clears_whole_reserve(self, gateway, bus, make_bot):
        graduate(gateway)
        bot = make_bot()
        bot.ledger.record_harvest(to_lamports("0.10"), 50)    # reserve 0.05 from earlier cycles
        bot.ledger.record_spend("buyback", to_lamports("0.05"))
        gateway.fee_balance = to_lamports("0.02")
        bot.run_cycle()

        assert gateway.called("buy") == [("buy", Venue.POOL, to_lamports("0.01"), 5)]
        assert gateway.called("deposit") == [("deposit", POOL, to_lamports("0.06"), 5)]
        assert bot.ledger.held_reserve == 0
        assert bot.ledger.total_deposited == to_lamports("0.06")
        assert bot.ledger.total_buyback_spent == to_lamports("0.06")
        assert bot.ledger.balanced()
        assert bot.get_status().pool == POOL

    def test_failed_deposit_keeps_reserve(self, gateway, bus, make_bot):
        graduate(gateway)
        gateway.fee_balance = to_lamports("0.02")
        gateway.deposit_error = TransactionError("insufficient token balance")
        bot = make_bot()
        bot.run_cycle()

        assert bot.ledger.held_reserve == to_lamports("0.01")
        assert bot.ledger.total_deposited == 0
        assert any(m.startswith("Add liquidity failed") for m in messages(bus, "error"))
        assert not any(m.startswith("Cycle error") for m in messages(bus, "error"))

    def test_pool_buy_failure_still_deposits(self, gateway, bus, make_bot):
        graduate(gateway)
        gateway.fee_balance = to_lamports("0.02")
        gateway.buy_error = TransactionError("route not found")
        bot = make_bot()
        bot.run_cycle()

        assert bot.ledger.total_buyback_spent == 0
        assert gateway.called("deposit")
        assert bot.ledger.held_reserve == 0
        assert bot.ledger.balanced()

    def test_phase_stays_liquidity(self, gateway, bus, make_bot):
        graduate(gateway)
        bot = make_bot()
        bot.run_cycle()
        gateway.curve = curve(complete=False)
        gateway.curve_error = ReadError("stale")
        for _ in range(3):
            bot.run_cycle()
            assert bot.get_status().current_phase == "liquidity"


class TestUnknownPhase:

    def test_claims_but_takes_no_monetary_action(self, gateway, bus, make_bot):
        gateway.curve_error = ReadError("rpc down")
        gateway.fee_balance = to_lamports("0.04")
        bot = make_bot()
        bot.run_cycle()

        assert bot.phase.phase is Phase.UNKNOWN
        assert gateway.called("claim")
        assert not gateway.called("buy")
        assert not gateway.called("deposit")
        assert bot.ledger.held_reserve == to_lamports("0.02")
        assert bot.ledger.balanced()

    def test_reserve_deployed_once_phase_resolves(self, gateway, bus, make_bot):
        gateway.curve_error = ReadError("rpc down")
        gateway.fee_balance = to_lamports("0.04")
        bot = make_bot()
        bot.run_cycle()

        gateway.curve_error = None
        graduate(gateway)
        gateway.fee_balance = to_lamports("0.02")
        bot.run_cycle()
        assert gateway.called("deposit") == [("deposit", POOL, to_lamports("0.03"), 5)]
        assert bot.ledger.held_reserve == 0


class TestTotalsAndBalances:

    def test_fees_collected_is_monotonic(self, gateway, bus, make_bot):
        bot = make_bot()
        seen = []
        script = [("0.02", None), ("0.001", None), ("0.03", TransactionError("x")), ("0.03", None)]
        for sol, claim_error in script:
            gateway.fee_balance = to_lamports(sol)
            gateway.claim_error = claim_error
            before = bot.ledger.total_fees_collected
            bot.run_cycle()
            delta = bot.ledger.total_fees_collected - before
            claimed = to_lamports(sol) >= to_lamports("0.015") and claim_error is None
            assert delta == (to_lamports(sol) if claimed else 0)
            seen.append(bot.ledger.total_fees_collected)
        assert seen == sorted(seen)

    def test_missing_token_account_reads_zero(self, gateway, bus, make_bot):
        bot = make_bot()
        bot.run_cycle()
        assert bot.get_status().tokens_held == "0"

    def test_token_read_error_keeps_previous_balance(self, gateway, bus, make_bot):
        gateway.token_balance = Decimal("10")
        bot = make_bot()
        bot.run_cycle()
        gateway.token_error = ReadError("timeout")
        bot.run_cycle()
        assert bot.get_status().tokens_held == "10"

    def test_unexpected_error_is_caught_at_cycle_boundary(self, gateway, bus, make_bot):
        gateway.fee_balance = to_lamports("0.02")
        gateway.claim_error = KeyError("signature")
        bot = make_bot()
        assert bot.run_cycle() is True
        errors = [e for e in bus.logs() if e.level == "error"]
        assert errors and errors[-1].data["kind"] == "unexpected"

    def test_status_published_every_cycle(self, gateway, bus, make_bot):
        bot = make_bot()
        with bus.subscribe() as sub:
            bot.run_cycle()
            kinds = []
            while True:
                event = sub.get(timeout=0)
                if event is None:
                    break
                kinds.append(event.kind)
        assert kinds.count("status") >= 2     # on attach + end of cycle
        assert kinds[-1] == "status"


class TestControl:

    def test_double_start_is_a_no_op(self, gateway, bus, make_bot):
        bot = make_bot(check_interval=3600)
        try:
            assert bot.start() is True
            warnings = len(messages(bus, "warning"))
            assert bot.start() is False
            assert bot.state is LoopState.RUNNING
            assert messages(bus, "warning")[warnings:] == ["Bot is already running"]
        finally:
            bot.stop()
            bot.join(5)

    def test_double_stop_is_a_no_op(self, gateway, bus, make_bot):
        bot = make_bot()
        assert bot.stop() is False
        assert bot.state is LoopState.STOPPED
        assert messages(bus, "warning") == ["Bot is not running"]

    def test_start_runs_a_cycle_immediately_and_stop_ends_thread(self, gateway, bus, make_bot):
        ran = threading.Event()
        original = gateway.read_fee_balance

        def read(wallet):
            ran.set()
            return original(wallet)
        gateway.read_fee_balance = read

        bot = make_bot(check_interval=3600)
        bot.start()
        assert ran.wait(5)
        assert bot.get_status().is_running
        bot.stop()
        bot.join(5)
        assert not bot._thread.is_alive()
        assert not bot.get_status().is_running

    def test_overlapping_cycle_is_skipped(self, gateway, bus, make_bot):
        bot = make_bot()
        bot._cycle_lock.acquire()
        try:
            assert bot.run_cycle() is False
        finally:
            bot._cycle_lock.release()
        assert "Previous cycle still in flight, skipping tick" in messages(bus, "warning")
        assert not gateway.called("fees")

    def test_restart_during_in_flight_cycle_still_runs_first_cycle(self, gateway, bus, make_bot):
        ran = threading.Event()
        original = gateway.read_fee_balance

        def read(wallet):
            ran.set()
            return original(wallet)
        gateway.read_fee_balance = read

        bot = make_bot(check_interval=3600)
        bot._cycle_lock.acquire()      # the previous thread's last cycle
        try:
            bot.start()
            assert not ran.wait(0.1)
        finally:
            bot._cycle_lock.release()
        try:
            assert ran.wait(5)
            assert "Previous cycle still in flight, skipping tick" not in messages(bus, "warning")
        finally:
            bot.stop()
            bot.join(5)

    def test_scheduler_skips_ticks_a_long_cycle_overran(self, gateway, bus, make_bot):
        now = [0.0]

        class FakeStop:
            flag = False
            waits = []

            def is_set(self):
                return self.flag

            def wait(self, timeout):
                self.waits.append(timeout)
                now[0] += timeout
                return self.flag

        bot = make_bot(check_interval=10)
        bot.clock = lambda: now[0]
        stop = FakeStop()
        cycles = []

        def slow_cycle(wait=False):
            cycles.append(now[0])
            now[0] += 25          # spans two and a half intervals
            if len(cycles) == 2:
                stop.flag = True
            return True
        bot.run_cycle = slow_cycle
        bot._schedule(stop)

        # ticks at 10 and 20 fall inside the first cycle; the next one fires on the grid at 30
        assert cycles == [0.0, 30.0]
        assert stop.waits == [5.0, 5.0]
        assert "Cycle overran the interval, skipped 2 tick(s)" in messages(bus, "warning")


def test_state_survives_restart(tmp_path, gateway, bus, make_bot):
    store = StateStore(str(tmp_path / "state.sqlite"))
    graduate(gateway)
    gateway.fee_balance = to_lamports("0.02")
    gateway.deposit_error = TransactionError("later")
    first = make_bot(store=store)
    first.run_cycle()

    second = make_bot(store=store)
    assert second.ledger == first.ledger
    assert second.detector.pool == POOL
    assert second.get_status().current_phase == "liquidity"
