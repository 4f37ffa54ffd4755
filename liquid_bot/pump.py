"""Solana gateway for pump.fun bonding curves and PumpSwap pools.

Reads go straight to the RPC node. Buys are built by the PumpPortal
local-transaction API, then signed here. Fee claims (both vaults in one
transaction) and liquidity deposits are assembled from raw instructions.
"""
import hashlib, struct
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

import requests
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM, TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction

from . import log
from .errors import AccountNotFound, ReadError, TransactionError
from .gateway import CurveState, TxResult, Venue, VenueGateway
from .units import to_sol

# ────────────────────────────────────────────────────────────────────────────
# Program ids & PDAs
# ────────────────────────────────────────────────────────────────────────────
PUMP_PROGRAM        = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uDFwF6P")
PUMP_AMM_PROGRAM    = Pubkey.from_string("pAMMBay6oceH9fJKBRHGP5D4bD4sWpmSwMn52FMfXEA")
TOKEN_PROGRAM       = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
TOKEN_2022_PROGRAM  = Pubkey.from_string("TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb")
ASSOCIATED_TOKEN_PROGRAM = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
WSOL_MINT           = Pubkey.from_string("So11111111111111111111111111111111111111112")

CANONICAL_POOL_INDEX = 0


def _pda(seeds, program: Pubkey) -> Pubkey:
    return Pubkey.find_program_address(seeds, program)[0]

def bonding_curve_pda(mint: Pubkey) -> Pubkey:
    return _pda([b"bonding-curve", bytes(mint)], PUMP_PROGRAM)

def creator_vault_pda(creator: Pubkey) -> Pubkey:
    return _pda([b"creator-vault", bytes(creator)], PUMP_PROGRAM)

def amm_creator_vault_authority(creator: Pubkey) -> Pubkey:
    return _pda([b"creator_vault", bytes(creator)], PUMP_AMM_PROGRAM)

def pool_authority_pda(mint: Pubkey) -> Pubkey:
    return _pda([b"pool-authority", bytes(mint)], PUMP_PROGRAM)

def canonical_pool_pda(mint: Pubkey) -> Pubkey:
    return _pda([b"pool", struct.pack("<H", CANONICAL_POOL_INDEX),
                 bytes(pool_authority_pda(mint)), bytes(mint), bytes(WSOL_MINT)], PUMP_AMM_PROGRAM)

def amm_global_config() -> Pubkey:
    return _pda([b"global_config"], PUMP_AMM_PROGRAM)

def amm_event_authority() -> Pubkey:
    return _pda([b"__event_authority"], PUMP_AMM_PROGRAM)

def pump_event_authority() -> Pubkey:
    return _pda([b"__event_authority"], PUMP_PROGRAM)

def associated_token_address(owner: Pubkey, mint: Pubkey, token_program: Pubkey = TOKEN_PROGRAM) -> Pubkey:
    return _pda([bytes(owner), bytes(token_program), bytes(mint)], ASSOCIATED_TOKEN_PROGRAM)

def anchor_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]

# ────────────────────────────────────────────────────────────────────────────
# Account layouts
# ────────────────────────────────────────────────────────────────────────────
_CURVE = struct.Struct("<QQQQQ?")

def decode_bonding_curve(data: bytes) -> CurveState:
    if len(data) < 8 + _CURVE.size:
        raise ValueError(f"bonding curve account too short: {len(data)} bytes")
    vtr, vsr, rtr, rsr, supply, complete = _CURVE.unpack_from(data, 8)
    off = 8 + _CURVE.size
    creator = str(Pubkey.from_bytes(data[off:off + 32])) if len(data) >= off + 32 else None
    return CurveState(vtr, vsr, rtr, rsr, supply, complete, creator)


@dataclass(frozen=True)
class PoolAccount:
    index: int
    creator: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    lp_mint: Pubkey
    pool_base_token_account: Pubkey
    pool_quote_token_account: Pubkey
    lp_supply: int


def decode_pool(data: bytes) -> PoolAccount:
    if len(data) < 211:
        raise ValueError(f"pool account too short: {len(data)} bytes")
    index, = struct.unpack_from("<H", data, 9)
    keys = [Pubkey.from_bytes(data[o:o + 32]) for o in range(11, 203, 32)]
    lp_supply, = struct.unpack_from("<Q", data, 203)
    return PoolAccount(index, *keys, lp_supply)


@dataclass(frozen=True)
class DepositQuote:
    lp_out: int
    base_in: int
    max_base_in: int
    max_quote_in: int


def quote_deposit(quote_in: int, base_reserve: int, quote_reserve: int, lp_supply: int,
                  slippage_pct: int) -> DepositQuote:
    """Size a deposit from its quote side, at the pool's current ratio."""
    if quote_reserve <= 0 or lp_supply <= 0:
        raise ValueError("pool has no liquidity to price a deposit against")
    lp_out = quote_in * lp_supply // quote_reserve
    base_in = -(-quote_in * base_reserve // quote_reserve)
    max_base = -(-base_in * (100 + slippage_pct) // 100)
    max_quote = -(-quote_in * (100 + slippage_pct) // 100)
    return DepositQuote(lp_out, base_in, max_base, max_quote)

# ────────────────────────────────────────────────────────────────────────────
# Raw instructions
# ────────────────────────────────────────────────────────────────────────────
def _meta(key, signer=False, writable=False):
    return AccountMeta(pubkey=key, is_signer=signer, is_writable=writable)

def create_ata_idempotent_ix(payer: Pubkey, owner: Pubkey, mint: Pubkey, token_program: Pubkey) -> Instruction:
    ata = associated_token_address(owner, mint, token_program)
    return Instruction(ASSOCIATED_TOKEN_PROGRAM, bytes([1]), [
        _meta(payer, True, True), _meta(ata, writable=True), _meta(owner), _meta(mint),
        _meta(SYSTEM_PROGRAM), _meta(token_program),
    ])

def sync_native_ix(account: Pubkey) -> Instruction:
    return Instruction(TOKEN_PROGRAM, bytes([17]), [_meta(account, writable=True)])

def close_account_ix(account: Pubkey, dest: Pubkey, owner: Pubkey) -> Instruction:
    return Instruction(TOKEN_PROGRAM, bytes([9]), [
        _meta(account, writable=True), _meta(dest, writable=True), _meta(owner, signer=True),
    ])

def amm_deposit_ix(pool_key: Pubkey, pool: PoolAccount, user: Pubkey, base_token_program: Pubkey,
                   q: DepositQuote) -> Instruction:
    data = anchor_discriminator("deposit") + struct.pack("<QQQ", q.lp_out, q.max_base_in, q.max_quote_in)
    return Instruction(PUMP_AMM_PROGRAM, data, [
        _meta(pool_key, writable=True),
        _meta(amm_global_config()),
        _meta(user, True, True),
        _meta(pool.base_mint),
        _meta(pool.quote_mint),
        _meta(pool.lp_mint, writable=True),
        _meta(associated_token_address(user, pool.base_mint, base_token_program), writable=True),
        _meta(associated_token_address(user, pool.quote_mint), writable=True),
        _meta(associated_token_address(user, pool.lp_mint, TOKEN_2022_PROGRAM), writable=True),
        _meta(pool.pool_base_token_account, writable=True),
        _meta(pool.pool_quote_token_account, writable=True),
        _meta(TOKEN_PROGRAM),
        _meta(TOKEN_2022_PROGRAM),
        _meta(amm_event_authority()),
        _meta(PUMP_AMM_PROGRAM),
    ])

def curve_collect_creator_fee_ix(creator: Pubkey) -> Instruction:
    return Instruction(PUMP_PROGRAM, anchor_discriminator("collect_creator_fee"), [
        _meta(creator, True, True),
        _meta(creator_vault_pda(creator), writable=True),
        _meta(SYSTEM_PROGRAM),
        _meta(pump_event_authority()),
        _meta(PUMP_PROGRAM),
    ])

def amm_collect_creator_fee_ix(creator: Pubkey) -> Instruction:
    authority = amm_creator_vault_authority(creator)
    return Instruction(PUMP_AMM_PROGRAM, anchor_discriminator("collect_coin_creator_fee"), [
        _meta(WSOL_MINT),
        _meta(TOKEN_PROGRAM),
        _meta(creator, True, True),
        _meta(authority),
        _meta(associated_token_address(authority, WSOL_MINT), writable=True),
        _meta(associated_token_address(creator, WSOL_MINT), writable=True),
        _meta(amm_event_authority()),
        _meta(PUMP_AMM_PROGRAM),
    ])

# ────────────────────────────────────────────────────────────────────────────
# Gateway
# ────────────────────────────────────────────────────────────────────────────
PORTAL_POOL = {Venue.BONDING_CURVE: "pump", Venue.POOL: "pump-amm"}


class SolanaGateway(VenueGateway):

    def __init__(self, client: Client, keypair: Keypair, mint: str, trade_url: str,
                 priority_fee_sol: Decimal, session: Optional[requests.Session] = None):
        self.client = client
        self.keypair = keypair
        self.owner = keypair.pubkey()
        self.mint = Pubkey.from_string(mint)
        self.trade_url = trade_url
        self.priority_fee_sol = priority_fee_sol
        self.session = session or requests.Session()
        self._token_programs = {}

    # reads ----------------------------------------------------------------
    def _read(self, what, fn, *args):
        try:
            return fn(*args)
        except Exception as e:
            raise ReadError(f"{what} failed: {e}", e) from e

    def _account(self, key: Pubkey):
        return self._read(f"getAccountInfo({key})", self.client.get_account_info, key).value

    def probe_bonding_curve(self, mint: str) -> Optional[CurveState]:
        acc = self._account(bonding_curve_pda(Pubkey.from_string(mint)))
        if acc is None:
            return None
        try:
            return decode_bonding_curve(bytes(acc.data))
        except ValueError as e:
            raise ReadError(str(e), e) from e

    def derive_pool_address(self, mint: str) -> str:
        return str(canonical_pool_pda(Pubkey.from_string(mint)))

    def account_exists(self, address: str) -> bool:
        return self._account(Pubkey.from_string(address)) is not None

    def _pump_vault_balance(self, creator: Pubkey) -> int:
        acc = self._account(creator_vault_pda(creator))
        if acc is None:
            return 0
        rent = self._read("getMinimumBalanceForRentExemption",
                          self.client.get_minimum_balance_for_rent_exemption, 0).value
        return max(0, acc.lamports - rent)

    def _raw_token_amount(self, account: Pubkey) -> int:
        if self._account(account) is None:
            return 0
        res = self._read(f"getTokenAccountBalance({account})", self.client.get_token_account_balance, account)
        return int(res.value.amount)

    def _amm_vault_balance(self, creator: Pubkey) -> int:
        vault = associated_token_address(amm_creator_vault_authority(creator), WSOL_MINT)
        return self._raw_token_amount(vault)

    def read_fee_balance(self, wallet: str) -> int:
        creator = Pubkey.from_string(wallet)
        return self._pump_vault_balance(creator) + self._amm_vault_balance(creator)

    def _token_program(self, mint: Pubkey) -> Pubkey:
        if mint not in self._token_programs:
            acc = self._account(mint)
            if acc is None:
                raise AccountNotFound(f"mint {mint} not found")
            self._token_programs[mint] = acc.owner
        return self._token_programs[mint]

    def read_token_balance(self, wallet: str, mint: str) -> Decimal:
        mint_key = Pubkey.from_string(mint)
        ata = associated_token_address(Pubkey.from_string(wallet), mint_key, self._token_program(mint_key))
        if self._account(ata) is None:
            raise AccountNotFound(f"token account {ata} not found")
        res = self._read(f"getTokenAccountBalance({ata})", self.client.get_token_account_balance, ata)
        return Decimal(res.value.ui_amount_string or "0")

    # writes ---------------------------------------------------------------
    def _submit(self, raw: bytes) -> str:
        sig = self.client.send_raw_transaction(
            raw, opts=TxOpts(skip_confirmation=False, preflight_commitment=Confirmed)).value
        status = self.client.get_signature_statuses([sig]).value[0]
        if status is None:
            raise TransactionError(f"transaction {sig} not confirmed")
        if status.err is not None:
            raise TransactionError(f"transaction {sig} failed: {status.err}")
        return str(sig)

    def _send_portal(self, what: str, payload: dict) -> str:
        payload = {"publicKey": str(self.owner), "priorityFee": float(self.priority_fee_sol), **payload}
        try:
            r = self.session.post(self.trade_url, data=payload, timeout=20)
            r.raise_for_status()
            vtx = VersionedTransaction.from_bytes(r.content)
            signed = VersionedTransaction(vtx.message, [self.keypair])
            sig = self._submit(bytes(signed))
        except TransactionError:
            raise
        except Exception as e:
            raise TransactionError(f"{what} failed: {e}", e) from e
        log.dbg("portal_tx", action=payload.get("action"), sig=sig)
        return sig

    def _send_instructions(self, what: str, ixs: List[Instruction]) -> str:
        try:
            blockhash = self.client.get_latest_blockhash().value.blockhash
            msg = Message.new_with_blockhash(ixs, self.owner, blockhash)
            tx = Transaction([self.keypair], msg, blockhash)
            return self._submit(bytes(tx))
        except TransactionError:
            raise
        except Exception as e:
            raise TransactionError(f"{what} failed: {e}", e) from e

    def claim_fees(self, wallet: str) -> TxResult:
        """Drain both creator vaults in one transaction.

        ``amount`` is what the vaults held right before sending; the claim is
        atomic, so it is either all confirmed or nothing moved.
        """
        creator = Pubkey.from_string(wallet)
        curve_fees = self._pump_vault_balance(creator)
        pool_fees = self._amm_vault_balance(creator)
        ixs = []
        if curve_fees > 0:
            ixs.append(curve_collect_creator_fee_ix(creator))
        if pool_fees > 0:
            wsol_ata = associated_token_address(creator, WSOL_MINT)
            ixs += [
                create_ata_idempotent_ix(self.owner, creator, WSOL_MINT, TOKEN_PROGRAM),
                amm_collect_creator_fee_ix(creator),
                close_account_ix(wsol_ata, creator, creator),
            ]
        if not ixs:
            log.warn("claim_nothing_to_collect", wallet=wallet)
            return TxResult([], amount=0)
        sig = self._send_instructions("claim fees", ixs)
        log.info("claim_confirmed", sig=sig, curve=curve_fees, pool=pool_fees)
        return TxResult([sig], amount=curve_fees + pool_fees)

    def buy(self, venue: Venue, amount_in: int, slippage_pct: int) -> TxResult:
        sig = self._send_portal(f"buy on {venue.value}", {
            "action": "buy",
            "mint": str(self.mint),
            "amount": float(to_sol(amount_in)),
            "denominatedInSol": "true",
            "slippage": slippage_pct,
            "pool": PORTAL_POOL[Venue(venue)],
        })
        return TxResult([sig])

    def deposit_liquidity(self, pool: str, quote_amount: int, slippage_pct: int) -> TxResult:
        pool_key = Pubkey.from_string(pool)
        try:
            acc = self._account(pool_key)
            if acc is None:
                raise AccountNotFound(f"pool {pool} not found")
            state = decode_pool(bytes(acc.data))
            base_reserve = self._raw_token_amount(state.pool_base_token_account)
            quote_reserve = self._raw_token_amount(state.pool_quote_token_account)
            q = quote_deposit(quote_amount, base_reserve, quote_reserve, state.lp_supply, slippage_pct)
            base_program = self._token_program(state.base_mint)
        except (ReadError, AccountNotFound, ValueError) as e:
            raise TransactionError(f"deposit quote failed: {e}", e) from e

        log.info("deposit_quote", pool=pool, quote_in=quote_amount, lp_out=q.lp_out,
                 base_in=q.base_in, max_base=q.max_base_in, max_quote=q.max_quote_in)
        wsol_ata = associated_token_address(self.owner, WSOL_MINT)
        sig = self._send_instructions("deposit liquidity", [
            create_ata_idempotent_ix(self.owner, self.owner, WSOL_MINT, TOKEN_PROGRAM),
            transfer(TransferParams(from_pubkey=self.owner, to_pubkey=wsol_ata, lamports=q.max_quote_in)),
            sync_native_ix(wsol_ata),
            create_ata_idempotent_ix(self.owner, self.owner, state.lp_mint, TOKEN_2022_PROGRAM),
            amm_deposit_ix(pool_key, state, self.owner, base_program, q),
            close_account_ix(wsol_ata, self.owner, self.owner),
        ])
        return TxResult([sig])
