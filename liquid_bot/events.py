"""Event sink: log entries and status snapshots fanned out to subscribers.

The loop only ever appends; subscribers drain their own bounded queue, so a
slow consumer loses events rather than stalling a cycle.
"""
import queue, threading
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, List, Optional

from . import log
from .units import to_sol

LEVELS = ("info", "success", "warning", "error")
MAX_LOGS = 500

_MIRROR = {"info": log.info, "success": log.info, "warning": log.warn, "error": log.err}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: str
    message: str
    data: Optional[dict] = None

    def to_dict(self) -> dict:
        d = {"timestamp": self.timestamp.isoformat(), "level": self.level, "message": self.message}
        if self.data is not None:
            d["data"] = self.data
        return d


@dataclass(frozen=True)
class BotStatus:
    is_running: bool
    token_mint: str
    wallet: str
    current_phase: str
    total_fees_collected: int       # lamports
    total_buybacks: int
    total_sol_held: int
    total_deposited: int
    unspent_buyback: int
    tokens_held: str                # UI amount, decimal string
    last_check: Optional[datetime]
    pool: Optional[str]

    def to_dict(self) -> dict:
        d = asdict(self)
        for k in ("total_fees_collected", "total_buybacks", "total_sol_held",
                  "total_deposited", "unspent_buyback"):
            d[k] = str(to_sol(d[k]))
        d["last_check"] = self.last_check.isoformat() if self.last_check else None
        return d


@dataclass(frozen=True)
class Event:
    kind: str           # "log" | "logs" | "status"
    payload: Any


class Subscription:
    def __init__(self, bus: "EventBus", maxsize: int):
        self.bus = bus
        self.queue = queue.Queue(maxsize=maxsize)

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        self.bus.unsubscribe(self)

    def __enter__(self): return self
    def __exit__(self, *exc): self.close()


class EventBus:

    def __init__(self, max_logs: int = MAX_LOGS, queue_size: int = 1000):
        self._lock = threading.Lock()
        self._logs = deque(maxlen=max_logs)
        self._subs: List[Subscription] = []
        self._status: Optional[BotStatus] = None
        self.queue_size = queue_size

    def log(self, level: str, message: str, data: Optional[dict] = None) -> LogEntry:
        if level not in LEVELS:
            raise ValueError(f"unknown log level: {level}")
        entry = LogEntry(utcnow(), level, message, data)
        _MIRROR[level](message, **({"data": data} if data else {}))
        with self._lock:
            self._logs.append(entry)
            self._fan_out(Event("log", entry))
        return entry

    def publish_status(self, status: BotStatus):
        with self._lock:
            self._status = status
            self._fan_out(Event("status", status))

    def _fan_out(self, event: Event):
        for sub in self._subs:
            try:
                sub.queue.put_nowait(event)
            except queue.Full:
                log.dbg("subscriber_queue_full", kind=event.kind)

    def logs(self) -> List[LogEntry]:
        with self._lock:
            return list(self._logs)

    @property
    def status(self) -> Optional[BotStatus]:
        return self._status

    def subscribe(self) -> Subscription:
        """Attach a consumer; its queue starts with the log buffer and current status."""
        sub = Subscription(self, self.queue_size)
        with self._lock:
            sub.queue.put_nowait(Event("logs", list(self._logs)))
            if self._status is not None:
                sub.queue.put_nowait(Event("status", self._status))
            self._subs.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)
