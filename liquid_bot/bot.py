"""Reconciliation loop: phase detection, fee harvest, allocation, execution.

One cycle runs at a time. Ledger mutations only follow confirmed
transactions; anything that fails is observed again from the chain on the
next cycle.
"""
import sqlite3, threading, time
from dataclasses import replace
from decimal import Decimal
from enum import Enum
from typing import Optional

from . import metrics
from .config import BotConfig
from .errors import AccountNotFound, BotError, describe
from .events import BotStatus, EventBus, utcnow
from .gateway import Venue, VenueGateway
from .ledger import SpendKind, TreasuryLedger
from .phase import Phase, PhaseDetector, PhaseState, UNKNOWN
from .store import StateStore
from .units import fmt_sol


class LoopState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class LiquidBot:

    def __init__(self, config: BotConfig, gateway: VenueGateway, wallet: str,
                 bus: Optional[EventBus] = None, store: Optional[StateStore] = None,
                 clock=time.monotonic):
        self.config = config
        self.gateway = gateway
        self.wallet = wallet
        self.bus = bus if bus is not None else EventBus()
        self.store = store
        self.clock = clock

        self.ledger = TreasuryLedger()
        pool = self._load_state()
        self.detector = PhaseDetector(gateway, config.token_mint, self.bus, pool=pool)
        self.phase: PhaseState = PhaseState.liquidity(pool) if pool else UNKNOWN
        self.tokens_held = Decimal(0)
        self.last_check = None

        self.state = LoopState.STOPPED
        self._control = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._status = self._build_status()
        self.bus.publish_status(self._status)

        self.bus.log("info", f"Bot initialized for token: {config.token_mint}")
        self.bus.log("info", f"Wallet: {wallet}")
        self.bus.log("info", f"Min fee threshold: {fmt_sol(config.min_fee_threshold)} SOL")
        self.bus.log("info", f"Buyback percentage: {config.buyback_percentage}%")

    def _load_state(self) -> Optional[str]:
        if self.store is None:
            return None
        try:
            loaded = self.store.load(self.config.token_mint)
        except sqlite3.Error as e:
            self.bus.log("warning", f"Could not load saved treasury state: {e}")
            return None
        if loaded is None:
            return None
        self.ledger, pool = loaded
        self.bus.log("info", "Restored treasury state", self.ledger.snapshot())
        return pool

    # ── status ─────────────────────────────────────────────────────────────
    def _build_status(self) -> BotStatus:
        return BotStatus(
            is_running=self.state is LoopState.RUNNING,
            token_mint=self.config.token_mint,
            wallet=self.wallet,
            current_phase=self.phase.phase.value,
            total_fees_collected=self.ledger.total_fees_collected,
            total_buybacks=self.ledger.total_buyback_spent,
            total_sol_held=self.ledger.held_reserve,
            total_deposited=self.ledger.total_deposited,
            unspent_buyback=self.ledger.unspent_buyback,
            tokens_held=str(self.tokens_held),
            last_check=self.last_check,
            pool=self.phase.pool or self.detector.pool,
        )

    def get_status(self) -> BotStatus:
        return self._status

    def get_wallet_address(self) -> str:
        return self.wallet

    @property
    def is_running(self) -> bool:
        return self.state is LoopState.RUNNING

    def _republish(self):
        self._status = replace(self._status, is_running=self.is_running)
        self.bus.publish_status(self._status)
        metrics.G_RUNNING.set(1 if self.is_running else 0)

    # ── control ────────────────────────────────────────────────────────────
    def start(self) -> bool:
        with self._control:
            if self.state is LoopState.RUNNING:
                self.bus.log("warning", "Bot is already running")
                return False
            self.state = LoopState.RUNNING
            self._stop_event = threading.Event()
            self._thread = threading.Thread(target=self._schedule, args=(self._stop_event,),
                                            name="reconcile", daemon=True)
            self._republish()
            self.bus.log("success", "🚀 Bot started!")
            self._thread.start()
        return True

    def stop(self) -> bool:
        with self._control:
            if self.state is LoopState.STOPPED:
                self.bus.log("warning", "Bot is not running")
                return False
            self.state = LoopState.STOPPED
            self._stop_event.set()
            self._republish()
            self.bus.log("info", "🛑 Bot stopped")
        return True

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    def _schedule(self, stop_event: threading.Event):
        interval = self.config.check_interval
        next_tick = self.clock()
        first = True
        while not stop_event.is_set():
            # a restart may overlap the old thread's last cycle; queue behind it once
            self.run_cycle(wait=first)
            first = False
            next_tick += interval
            now = self.clock()
            if now >= next_tick:
                missed = int((now - next_tick) // interval) + 1
                next_tick += missed * interval
                self.bus.log("warning", f"Cycle overran the interval, skipped {missed} tick(s)")
            if stop_event.wait(max(0.0, next_tick - self.clock())):
                break

    # ── cycle ──────────────────────────────────────────────────────────────
    def run_cycle(self, wait: bool = False) -> bool:
        """Run one cycle unless another is in flight; returns whether it ran.

        With ``wait`` the call blocks until the in-flight cycle finishes.
        """
        if not self._cycle_lock.acquire(blocking=wait):
            self.bus.log("warning", "Previous cycle still in flight, skipping tick")
            return False
        try:
            self._cycle()
        finally:
            self._cycle_lock.release()
        return True

    def _cycle(self):
        metrics.C_CYCLES.inc()
        try:
            self.bus.log("info", "⏱️ Running cycle...")
            self.last_check = utcnow()

            self.phase = self.detector.detect()
            self.bus.log("info", f"Token phase: {self.phase.phase.value}")

            balance = self._read_fee_balance()
            threshold = self.config.min_fee_threshold
            if balance is not None:
                if balance > 0 and balance >= threshold:
                    self._harvest(balance)
                else:
                    self.bus.log("info", f"Fees ({fmt_sol(balance)} SOL) below threshold "
                                         f"({fmt_sol(threshold)} SOL), skipping...")

            self._refresh_token_balance()
        except Exception as e:
            metrics.C_CYCLE_ERRORS.inc()
            msg = e.message if isinstance(e, BotError) else (str(e) or type(e).__name__)
            self.bus.log("error", f"Cycle error: {msg}", describe(e))
        finally:
            self._publish()

    def _read_fee_balance(self) -> Optional[int]:
        try:
            balance = self.gateway.read_fee_balance(self.wallet)
        except BotError as e:
            self.bus.log("warning", "Failed to get creator fee balance, skipping harvest", e.as_dict())
            return None
        self.bus.log("info", f"Creator fee balance: {fmt_sol(balance)} SOL")
        return balance

    def _harvest(self, balance: int):
        pct = self.config.buyback_percentage
        self.bus.log("success", f"💰 Fees above threshold ({fmt_sol(self.config.min_fee_threshold)} SOL), claiming...")
        tx = self.gateway.claim_fees(self.wallet)
        claimed = balance if tx.amount is None else tx.amount
        if not tx.signatures or claimed <= 0:
            self.bus.log("warning", "Nothing was claimed, skipping harvest")
            return
        metrics.C_CLAIMS.inc()
        self.bus.log("success", f"✅ Fees claimed! {fmt_sol(claimed)} SOL. Tx: {tx.signature}",
                     {"signatures": tx.signatures})

        buyback, hold = self.ledger.record_harvest(claimed, pct)
        self.bus.log("info", f"Buyback amount: {fmt_sol(buyback)} SOL ({pct}%)")
        self.bus.log("info", f"Hold amount: {fmt_sol(hold)} SOL ({100 - pct}%)")

        if self.phase.phase is Phase.BONDING_CURVE:
            self._buy(Venue.BONDING_CURVE, buyback)
        elif self.phase.phase is Phase.LIQUIDITY:
            try:
                self._buy(Venue.POOL, buyback)
            except Exception as e:
                self.bus.log("error", f"Pool buyback failed: {getattr(e, 'message', e)}", describe(e))
            self._deposit_reserve(self.phase.pool)
        else:
            self.bus.log("warning", f"Token phase unknown, holding {fmt_sol(self.ledger.held_reserve)} SOL "
                                    "in reserve until it resolves")

    def _buy(self, venue: Venue, amount: int):
        if amount <= 0:
            self.bus.log("info", "Buyback amount is zero, nothing to buy")
            return
        tx = self.gateway.buy(venue, amount, self.config.slippage_pct)
        self.ledger.record_spend(SpendKind.BUYBACK, amount)
        metrics.C_BUYS.labels(venue=venue.value).inc()
        self.bus.log("success", f"🔄 Buyback completed on {venue.value}! {fmt_sol(amount)} SOL -> tokens. "
                                f"Tx: {tx.signature}", {"signatures": tx.signatures})

    def _deposit_reserve(self, pool: str):
        reserve = self.ledger.held_reserve
        if reserve <= 0:
            self.bus.log("info", "No held reserve to deposit")
            return
        self.bus.log("info", f"📊 Liquidity phase. Total SOL available for LP: {fmt_sol(reserve)}")
        try:
            tx = self.gateway.deposit_liquidity(pool, reserve, self.config.slippage_pct)
        except Exception as e:
            self.bus.log("error", f"Add liquidity failed: {getattr(e, 'message', e)}; "
                                  "reserve kept for next cycle", describe(e))
            return
        self.ledger.record_spend(SpendKind.LIQUIDITY_DEPOSIT, reserve)
        metrics.C_DEPOSITS.inc()
        self.bus.log("success", f"💧 Liquidity added! {fmt_sol(reserve)} SOL. Tx: {tx.signature}",
                     {"signatures": tx.signatures, "pool": pool})

    def _refresh_token_balance(self):
        try:
            self.tokens_held = self.gateway.read_token_balance(self.wallet, self.config.token_mint)
        except AccountNotFound:
            self.tokens_held = Decimal(0)
        except BotError as e:
            self.bus.log("warning", "Could not refresh token balance", e.as_dict())

    def _publish(self):
        self._status = self._build_status()
        self.bus.publish_status(self._status)
        metrics.observe_status(self._status)
        if self.store is None:
            return
        try:
            self.store.save(self.config.token_mint, self.ledger, self.detector.pool)
        except sqlite3.Error as e:
            self.bus.log("warning", f"Could not save treasury state: {e}")
