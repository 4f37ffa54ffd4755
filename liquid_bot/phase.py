from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import describe
from .gateway import VenueGateway


class Phase(str, Enum):
    BONDING_CURVE = "bonding_curve"
    LIQUIDITY = "liquidity"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PhaseState:
    phase: Phase
    pool: Optional[str] = None

    @classmethod
    def liquidity(cls, pool: str) -> "PhaseState":
        return cls(Phase.LIQUIDITY, pool)


BONDING_CURVE = PhaseState(Phase.BONDING_CURVE)
UNKNOWN = PhaseState(Phase.UNKNOWN)


class PhaseDetector:
    """Works out which venue the token trades on.

    Once a pool has been confirmed on chain the answer is pinned to
    ``LIQUIDITY`` for the life of this object: graduation is one-way, so a later
    stale or failing curve read never moves the token back.
    """

    def __init__(self, gateway: VenueGateway, mint: str, bus=None, pool: Optional[str] = None):
        self.gateway = gateway
        self.mint = mint
        self.bus = bus
        self.pool = pool

    def _emit(self, level, message, data=None):
        if self.bus is not None:
            self.bus.log(level, message, data)

    def detect(self) -> PhaseState:
        if self.pool:
            return PhaseState.liquidity(self.pool)
        try:
            curve = self.gateway.probe_bonding_curve(self.mint)
        except Exception as e:
            self._emit("warning", "Could not determine token phase, checking pool...", describe(e))
            curve = None
        else:
            if curve is not None and not curve.complete:
                return BONDING_CURVE
            if curve is None:
                self._emit("warning", "Bonding curve account not found, checking pool...")

        pool = self._lookup_pool()
        return PhaseState.liquidity(pool) if pool else UNKNOWN

    def _lookup_pool(self) -> Optional[str]:
        try:
            address = self.gateway.derive_pool_address(self.mint)
            found = self.gateway.account_exists(address)
        except Exception as e:
            self._emit("warning", "Could not detect pool", describe(e))
            return None
        if not found:
            return None
        self.pool = address
        self._emit("success", f"🏊 Detected pool: {address}", {"pool": address})
        return address
