"""
Shared fixtures: a scripted in-memory venue gateway and bot factories.
"""

import pytest
from solders.keypair import Keypair

from liquid_bot.bot import LiquidBot
from liquid_bot.config import BotConfig
from liquid_bot.errors import AccountNotFound
from liquid_bot.events import EventBus
from liquid_bot.gateway import CurveState, TxResult, VenueGateway
from liquid_bot.units import to_lamports

MINT = str(Keypair().pubkey())
WALLET = str(Keypair().pubkey())
POOL = str(Keypair().pubkey())


def curve(complete=False):
    return CurveState(1_073_000_000_000_000, 30_000_000_000, 793_100_000_000_000, 0,
                      1_000_000_000_000_000, complete, WALLET)


class FakeGateway(VenueGateway):
    """Answers from attributes; set an ``*_error`` to make that call fail."""

    def __init__(self):
        self.curve = curve()
        self.curve_error = None
        self.pool_exists = False
        self.exists_error = None
        self.fee_balance = 0
        self.fee_error = None
        self.claim_error = None
        self.claim_amount = None           # None -> claims the whole fee balance
        self.buy_error = None
        self.deposit_error = None
        self.token_balance = None          # None -> no token account
        self.token_error = None
        self.calls = []

    def probe_bonding_curve(self, mint):
        self.calls.append(("probe", mint))
        if self.curve_error:
            raise self.curve_error
        return self.curve

    def derive_pool_address(self, mint):
        return POOL

    def account_exists(self, address):
        self.calls.append(("exists", address))
        if self.exists_error:
            raise self.exists_error
        return self.pool_exists

    def read_fee_balance(self, wallet):
        self.calls.append(("fees", wallet))
        if self.fee_error:
            raise self.fee_error
        return self.fee_balance

    def claim_fees(self, wallet):
        self.calls.append(("claim", wallet))
        if self.claim_error:
            raise self.claim_error
        amount = self.fee_balance if self.claim_amount is None else self.claim_amount
        self.fee_balance = 0
        if amount == 0:
            return TxResult([], amount=0)
        return TxResult(["sig-claim"], amount=amount)

    def buy(self, venue, amount_in, slippage_pct):
        self.calls.append(("buy", venue, amount_in, slippage_pct))
        if self.buy_error:
            raise self.buy_error
        return TxResult(["sig-buy"])

    def deposit_liquidity(self, pool, quote_amount, slippage_pct):
        self.calls.append(("deposit", pool, quote_amount, slippage_pct))
        if self.deposit_error:
            raise self.deposit_error
        return TxResult(["sig-deposit"])

    def read_token_balance(self, wallet, mint):
        if self.token_error:
            raise self.token_error
        if self.token_balance is None:
            raise AccountNotFound("token account missing")
        return self.token_balance

    def called(self, name):
        return [c for c in self.calls if c[0] == name]


def make_config(**overrides):
    params = dict(
        rpc_url="http://localhost:8899",
        private_key="unused",
        token_mint=MINT,
        min_fee_threshold=to_lamports("0.015"),
        buyback_percentage=50,
        check_interval=60.0,
        state_db=None,
    )
    params.update(overrides)
    return BotConfig(**params)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def make_bot(gateway, bus):
    def _make(store=None, **overrides):
        return LiquidBot(make_config(**overrides), gateway, WALLET, bus=bus, store=store)
    return _make


def messages(bus, level=None):
    return [e.message for e in bus.logs() if level is None or e.level == level]

