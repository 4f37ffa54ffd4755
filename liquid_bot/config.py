"""Environment-driven configuration.

Values come from the process environment, with a ``.env`` file in the working
directory loaded first. Required: ``HELIUS_RPC_URL`` (or ``RPC_URL``),
``PRIVATE_KEY`` and ``TOKEN_MINT``.
"""
import ast, os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

from base58 import b58decode
from dotenv import load_dotenv
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .errors import ConfigError
from .units import to_lamports, to_sol

DEFAULT_PUMPPORTAL_URL = "https://pumpportal.fun/api/trade-local"


@dataclass(frozen=True)
class BotConfig:
    rpc_url: str
    private_key: str
    token_mint: str
    min_fee_threshold: int = to_lamports("0.015")    # lamports
    buyback_percentage: int = 50
    check_interval: float = 60.0                     # seconds
    port: int = 3000
    slippage_pct: int = 5
    priority_fee_sol: Decimal = Decimal("0.00005")
    pumpportal_url: str = DEFAULT_PUMPPORTAL_URL
    metrics_port: int = 9108
    state_db: Optional[str] = "liquid_state.sqlite"
    telegram_token: Optional[str] = None
    telegram_chat: Optional[str] = None

    def __post_init__(self):
        if not 0 <= self.buyback_percentage <= 100:
            raise ConfigError(f"BUYBACK_PERCENTAGE must be within 0-100, got {self.buyback_percentage}")
        if self.check_interval <= 0:
            raise ConfigError(f"CHECK_INTERVAL must be positive, got {self.check_interval}")
        if self.min_fee_threshold < 0:
            raise ConfigError("MIN_FEE_THRESHOLD must not be negative")
        if not 0 <= self.slippage_pct <= 100:
            raise ConfigError(f"SLIPPAGE_PCT must be within 0-100, got {self.slippage_pct}")
        try:
            Pubkey.from_string(self.token_mint)
        except (ValueError, TypeError) as e:
            raise ConfigError(f"TOKEN_MINT is not a valid address: {self.token_mint}") from e

    def public_view(self) -> dict:
        """Subset safe to hand to dashboards (no key material)."""
        return {
            "minFeeThreshold": float(to_sol(self.min_fee_threshold)),
            "buybackPercentage": self.buyback_percentage,
            "checkInterval": int(self.check_interval * 1000),
        }


def _int(env, name, default) -> int:
    raw = env.get(name) or default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e

def _decimal(env, name, default) -> Decimal:
    raw = env.get(name) or default
    try:
        return Decimal(raw)
    except InvalidOperation as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def load_config(env: Optional[Mapping[str, str]] = None) -> BotConfig:
    if env is None:
        load_dotenv()
        env = os.environ

    rpc_url = env.get("HELIUS_RPC_URL") or env.get("RPC_URL")
    missing = [name for name, v in (("HELIUS_RPC_URL", rpc_url),
                                    ("PRIVATE_KEY", env.get("PRIVATE_KEY")),
                                    ("TOKEN_MINT", env.get("TOKEN_MINT"))) if not v]
    if missing:
        raise ConfigError(f"{', '.join(missing)} required in .env file")

    state_db = env.get("STATE_DB", "liquid_state.sqlite")
    return BotConfig(
        rpc_url=rpc_url,
        private_key=env["PRIVATE_KEY"],
        token_mint=env["TOKEN_MINT"].strip(),
        min_fee_threshold=to_lamports(_decimal(env, "MIN_FEE_THRESHOLD", "0.015")),
        buyback_percentage=_int(env, "BUYBACK_PERCENTAGE", "50"),
        check_interval=_int(env, "CHECK_INTERVAL", "60000") / 1000.0,
        port=_int(env, "PORT", "3000"),
        slippage_pct=_int(env, "SLIPPAGE_PCT", "5"),
        priority_fee_sol=_decimal(env, "PRIORITY_FEE_SOL", "0.00005"),
        pumpportal_url=env.get("PUMPPORTAL_URL") or DEFAULT_PUMPPORTAL_URL,
        metrics_port=_int(env, "METRICS_PORT", "9108"),
        state_db=state_db or None,
        telegram_token=env.get("TELEGRAM_BOT_TOKEN") or None,
        telegram_chat=env.get("TELEGRAM_CHAT_ID") or None,
    )


def load_keypair(raw: str) -> Keypair:
    raw = raw.strip()
    try:
        if raw.startswith("["):
            arr = ast.literal_eval(raw); return Keypair.from_bytes(bytes(arr))
        return Keypair.from_bytes(b58decode(raw))
    except Exception as e:
        raise ConfigError("PRIVATE_KEY is not a valid secret key") from e
