"""sqlite snapshot of the ledger and pool cache, one row per token."""
import sqlite3, time
from typing import Optional, Tuple

from .ledger import TreasuryLedger

_COLUMNS = ("total_fees_collected", "total_buyback_spent", "held_reserve",
            "total_deposited", "unspent_buyback")


class StateStore:

    def __init__(self, path: str):
        self.path = path
        con = self._db(); con.close()

    def _db(self):
        con = sqlite3.connect(self.path)
        con.execute("""CREATE TABLE IF NOT EXISTS treasury_state (
            token_mint TEXT PRIMARY KEY,
            total_fees_collected INTEGER NOT NULL DEFAULT 0,
            total_buyback_spent  INTEGER NOT NULL DEFAULT 0,
            held_reserve         INTEGER NOT NULL DEFAULT 0,
            total_deposited      INTEGER NOT NULL DEFAULT 0,
            unspent_buyback      INTEGER NOT NULL DEFAULT 0,
            pool TEXT,
            updated_at REAL
        )""")
        return con

    def load(self, token_mint: str) -> Optional[Tuple[TreasuryLedger, Optional[str]]]:
        con = self._db()
        try:
            row = con.execute(
                f"SELECT {', '.join(_COLUMNS)}, pool FROM treasury_state WHERE token_mint=?",
                (token_mint,)).fetchone()
        finally:
            con.close()
        if not row:
            return None
        return TreasuryLedger.restore(dict(zip(_COLUMNS, row[:-1]))), row[-1]

    def save(self, token_mint: str, ledger: TreasuryLedger, pool: Optional[str]):
        snap = ledger.snapshot()
        con = self._db()
        try:
            con.execute(
                f"INSERT OR REPLACE INTO treasury_state(token_mint, {', '.join(_COLUMNS)}, pool, updated_at) "
                f"VALUES (?{', ?' * len(_COLUMNS)}, ?, ?)",
                (token_mint, *(snap[c] for c in _COLUMNS), pool, time.time()))
            con.commit()
        finally:
            con.close()
