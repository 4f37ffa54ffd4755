"""Treasury accounting in lamports.

Every mutation here corresponds to an on-chain action that has already been
confirmed; callers never record speculatively. The identity

    total_fees_collected == total_buyback_spent + unspent_buyback
                            + held_reserve + total_deposited

holds after every operation.
"""
from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import Tuple


class SpendKind(str, Enum):
    BUYBACK = "buyback"
    LIQUIDITY_DEPOSIT = "liquidity_deposit"


@dataclass
class TreasuryLedger:
    total_fees_collected: int = 0
    total_buyback_spent: int = 0
    held_reserve: int = 0
    total_deposited: int = 0
    # buy-pressure allocations whose buy never confirmed
    unspent_buyback: int = 0

    def record_harvest(self, amount: int, buyback_pct: int) -> Tuple[int, int]:
        """Split a confirmed claim into (buyback, hold).

        The buyback share is floored to whole lamports; the remainder, rounding
        dust included, goes to the hold share so the two always sum to ``amount``.
        """
        if amount < 0:
            raise ValueError(f"harvest amount must not be negative: {amount}")
        if not 0 <= buyback_pct <= 100:
            raise ValueError(f"buyback percentage out of range: {buyback_pct}")
        buyback = amount * buyback_pct // 100
        hold = amount - buyback
        self.total_fees_collected += amount
        self.held_reserve += hold
        self.unspent_buyback += buyback
        return buyback, hold

    def record_spend(self, kind: SpendKind, amount: int) -> int:
        """Book a confirmed spend; returns the amount actually booked."""
        if amount < 0:
            raise ValueError(f"spend amount must not be negative: {amount}")
        kind = SpendKind(kind)
        if kind is SpendKind.BUYBACK:
            self.total_buyback_spent += amount
            self.unspent_buyback = max(0, self.unspent_buyback - amount)
            return amount
        taken = min(amount, self.held_reserve)
        self.held_reserve -= taken
        self.total_deposited += taken
        return taken

    def balanced(self) -> bool:
        return self.total_fees_collected == (self.total_buyback_spent + self.unspent_buyback
                                             + self.held_reserve + self.total_deposited)

    def snapshot(self) -> dict:
        return asdict(self)

    @classmethod
    def restore(cls, data: dict) -> "TreasuryLedger":
        names = {f.name for f in fields(cls)}
        return cls(**{k: int(v) for k, v in data.items() if k in names and v is not None})
