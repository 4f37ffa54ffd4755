import threading

import requests

from . import log
from .events import EventBus

NOTIFY_LEVELS = ("success", "error")


def tg_send(token: str, chat: str, text: str):
    if not (token and chat): return
    try:
        requests.post(
            f"https://api.telegram.org/bot{token}/sendMessage",
            json={"chat_id": chat, "text": text},
            timeout=5
        )
    except requests.RequestException as e:
        log.warn("telegram_send_failed", error=str(e))


class TelegramNotifier:
    """Pushes success/error events to a Telegram chat from its own thread."""

    def __init__(self, bus: EventBus, token: str, chat: str, prefix: str = "[LiquidBot]"):
        self.bus = bus
        self.token = token
        self.chat = chat
        self.prefix = prefix
        self._stop = threading.Event()
        self._thread = None

    def format(self, entry) -> str:
        return f"{self.prefix} {entry.level.upper()}: {entry.message}"

    def start(self):
        sub = self.bus.subscribe()
        self._thread = threading.Thread(target=self._run, args=(sub,), name="telegram", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()

    def _run(self, sub):
        with sub:
            while not self._stop.is_set():
                event = sub.get(timeout=1.0)
                if event is None or event.kind != "log":
                    continue
                if event.payload.level in NOTIFY_LEVELS:
                    tg_send(self.token, self.chat, self.format(event.payload))
