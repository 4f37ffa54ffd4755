from decimal import Decimal, ROUND_DOWN

SOL_DECIMALS = 9
LAMPORTS_PER_SOL = 10 ** SOL_DECIMALS


def to_base(amount: Decimal, decimals: int) -> int:
    return int((Decimal(amount) * (10 ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN))

def from_base(ui: int, decimals: int) -> Decimal:
    return Decimal(ui) / Decimal(10 ** decimals)

def to_lamports(sol) -> int:
    return to_base(Decimal(str(sol)), SOL_DECIMALS)

def to_sol(lamports: int) -> Decimal:
    return from_base(lamports, SOL_DECIMALS)

def fmt_sol(lamports: int) -> str:
    return f"{to_sol(lamports):.6f}"
