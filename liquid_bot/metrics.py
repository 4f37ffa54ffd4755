from prometheus_client import Counter, Gauge

from .events import BotStatus
from .units import to_sol

G_FEES_COLLECTED = Gauge("treasury_fees_collected_sol", "Cumulative creator fees claimed (SOL)")
G_BUYBACK_SPENT  = Gauge("treasury_buyback_spent_sol", "Cumulative confirmed buy-pressure spend (SOL)")
G_HELD_RESERVE   = Gauge("treasury_held_reserve_sol", "SOL held for liquidity, not yet deposited")
G_DEPOSITED      = Gauge("treasury_deposited_sol", "Cumulative SOL deposited into the pool")
G_TOKENS_HELD    = Gauge("treasury_tokens_held", "Token balance of the bot wallet")
G_PHASE          = Gauge("treasury_phase", "1 for the current market phase", ["phase"])
G_RUNNING        = Gauge("treasury_running", "1 while the reconciliation loop is running")
C_CYCLES         = Counter("treasury_cycles", "Reconciliation cycles run")
C_CYCLE_ERRORS   = Counter("treasury_cycle_errors", "Cycles that ended with an error")
C_CLAIMS         = Counter("treasury_claims", "Confirmed fee claims")
C_BUYS           = Counter("treasury_buys", "Confirmed buy-pressure transactions", ["venue"])
C_DEPOSITS       = Counter("treasury_deposits", "Confirmed liquidity deposits")

PHASES = ("bonding_curve", "liquidity", "unknown")


def observe_status(status: BotStatus):
    G_FEES_COLLECTED.set(float(to_sol(status.total_fees_collected)))
    G_BUYBACK_SPENT.set(float(to_sol(status.total_buybacks)))
    G_HELD_RESERVE.set(float(to_sol(status.total_sol_held)))
    G_DEPOSITED.set(float(to_sol(status.total_deposited)))
    G_TOKENS_HELD.set(float(status.tokens_held))
    G_RUNNING.set(1 if status.is_running else 0)
    for p in PHASES:
        G_PHASE.labels(phase=p).set(1 if p == status.current_phase else 0)
