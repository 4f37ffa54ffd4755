"""Operations the reconciliation loop needs from the chain.

Reads raise ``ReadError`` (or ``AccountNotFound``); writes raise
``TransactionError`` and only return once the transaction is confirmed.
Nothing here retries; a failed write is attempted again on a later cycle.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class Venue(str, Enum):
    BONDING_CURVE = "bonding_curve"
    POOL = "pool"


@dataclass(frozen=True)
class CurveState:
    virtual_token_reserves: int
    virtual_sol_reserves: int
    real_token_reserves: int
    real_sol_reserves: int
    token_total_supply: int
    complete: bool
    creator: Optional[str] = None


@dataclass(frozen=True)
class TxResult:
    signatures: List[str] = field(default_factory=list)
    amount: Optional[int] = None           # lamports moved, for fee claims

    @property
    def signature(self) -> str:
        return self.signatures[-1] if self.signatures else ""


class VenueGateway(ABC):

    @abstractmethod
    def probe_bonding_curve(self, mint: str) -> Optional[CurveState]:
        """Curve state, or None when the token has no curve account."""

    @abstractmethod
    def derive_pool_address(self, mint: str) -> str:
        """Canonical AMM pool address for ``mint``; pure, no I/O."""

    @abstractmethod
    def account_exists(self, address: str) -> bool: ...

    @abstractmethod
    def read_fee_balance(self, wallet: str) -> int:
        """Unclaimed creator fees in lamports."""

    @abstractmethod
    def claim_fees(self, wallet: str) -> TxResult:
        """Claim all unclaimed creator fees; ``amount`` is the lamports claimed.

        Returns an empty result with ``amount == 0`` when there was nothing
        to claim. A raised error means nothing was claimed.
        """

    @abstractmethod
    def buy(self, venue: Venue, amount_in: int, slippage_pct: int) -> TxResult:
        """Spend ``amount_in`` lamports on the token at ``venue``."""

    @abstractmethod
    def deposit_liquidity(self, pool: str, quote_amount: int, slippage_pct: int) -> TxResult:
        """Deposit ``quote_amount`` lamports plus the matching token side."""

    @abstractmethod
    def read_token_balance(self, wallet: str, mint: str) -> Decimal:
        """UI token amount; raises AccountNotFound when the account is absent."""
