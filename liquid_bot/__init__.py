"""Creator-fee treasury bot for pump.fun tokens: buy pressure on the bonding
curve, liquidity on the PumpSwap pool after graduation."""

__version__ = "1.0.0"
