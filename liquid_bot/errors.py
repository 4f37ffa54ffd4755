"""Failure taxonomy shared by the gateway and the reconciliation loop."""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSIENT_READ = "transient_read"
    WRITE_TRANSACTION = "write_transaction"
    ACCOUNT_NOT_FOUND = "account_not_found"


class ConfigError(ValueError):
    """Raised at startup when the environment does not describe a usable bot."""


class BotError(Exception):
    kind: ErrorKind

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def as_dict(self) -> dict:
        d = {"kind": self.kind.value, "message": self.message}
        if self.cause is not None:
            d["detail"] = f"{type(self.cause).__name__}: {self.cause}"
        return d


class ReadError(BotError):
    kind = ErrorKind.TRANSIENT_READ


class TransactionError(BotError):
    kind = ErrorKind.WRITE_TRANSACTION


class AccountNotFound(BotError):
    kind = ErrorKind.ACCOUNT_NOT_FOUND


def describe(exc: BaseException) -> dict:
    """Structured payload for a log event, whatever the exception type."""
    if isinstance(exc, BotError):
        return exc.as_dict()
    return {"kind": "unexpected", "message": str(exc), "detail": f"{type(exc).__name__}: {exc}"}
