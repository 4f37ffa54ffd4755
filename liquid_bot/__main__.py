#!/usr/bin/env python3
"""Run the status server and, when the environment is complete, the bot."""
import os

from prometheus_client import start_http_server
from dotenv import load_dotenv
from solana.rpc.api import Client

from . import log
from .bot import LiquidBot
from .config import load_config, load_keypair
from .errors import ConfigError
from .events import EventBus
from .notify import TelegramNotifier
from .pump import SolanaGateway
from .server import create_app, run_server
from .store import StateStore
from .units import fmt_sol

BANNER = """
  💧 LIQUID - Fee Claimer & Buyback Bot 💧
  Server running at: http://localhost:{port}
"""

SETUP_HINT = """Bot not initialized. Please configure your .env file:

   HELIUS_RPC_URL=https://mainnet.helius-rpc.com/?api-key=YOUR_KEY
   PRIVATE_KEY=your_base58_private_key
   TOKEN_MINT=your_token_mint_address

   Then restart the server."""


def build_bot(config, bus: EventBus) -> LiquidBot:
    keypair = load_keypair(config.private_key)
    gateway = SolanaGateway(Client(config.rpc_url), keypair, config.token_mint,
                            config.pumpportal_url, config.priority_fee_sol)
    store = StateStore(config.state_db) if config.state_db else None
    return LiquidBot(config, gateway, str(keypair.pubkey()), bus=bus, store=store)


def main():
    load_dotenv()
    log.setup_logging()
    bus = EventBus()
    bot, port = None, int(os.getenv("PORT") or 3000)
    try:
        config = load_config()
        port = config.port
        bot = build_bot(config, bus)
    except ConfigError as e:
        log.err("bot_not_initialized", error=str(e))
        print(SETUP_HINT)
    else:
        if config.metrics_port:
            start_http_server(config.metrics_port)
        if config.telegram_token and config.telegram_chat:
            TelegramNotifier(bus, config.telegram_token, config.telegram_chat).start()
        log.info("startup", token=config.token_mint, wallet=bot.get_wallet_address(),
                 min_fee_sol=fmt_sol(config.min_fee_threshold), buyback_pct=config.buyback_percentage,
                 interval_ms=int(config.check_interval * 1000))

    print(BANNER.format(port=port))
    run_server(create_app(bot, bus), port=port)


if __name__ == "__main__":
    main()
