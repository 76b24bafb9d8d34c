"""
Connector Entrypoint.
Runs the chat transports, the wallet API and the command core in one process.
"""

import asyncio
import logging
import sys

from .api_server import WalletApiServer
from .config import load_config
from .export_guard import ChallengeStore, ExportGuard
from .ledger_client import LedgerClient
from .orchestrator import TransactionOrchestrator
from .platforms.discord_gateway import DiscordGateway
from .platforms.telegram_polling import TelegramPolling
from .platforms.twitter_mentions import TwitterMentions
from .redaction import RedactionScheduler
from .router import CommandRouter
from .state import TransportState

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(name)s %(levelname)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("tipbot")


def _print_config_warnings(config):
    if not config.ledger_api_key:
        logger.warning("⚠️  No ledger API key configured (TIPBOT_LEDGER_API_KEY).")
    if not (config.telegram_bot_username or config.twitter_bot_username or config.discord_bot_id):
        logger.warning("⚠️  No bot identities configured; mentions will not be stripped from commands.")


async def main():
    logger.info("Initializing SolTip connector...")

    try:
        config = load_config()
    except Exception as e:
        logger.critical(f"Config load failed: {e}")
        return

    if config.debug:
        logging.getLogger("tipbot").setLevel(logging.DEBUG)
        logger.debug("Debug mode enabled: %r", config)

    _print_config_warnings(config)

    client = LedgerClient(config)
    await client.start()

    orchestrator = TransactionOrchestrator(client)
    store = ChallengeStore(ttl_sec=config.export_code_ttl_sec)
    export_guard = ExportGuard(client, orchestrator, store)
    router = CommandRouter(config, client, orchestrator, export_guard)
    redactor = RedactionScheduler()
    state = TransportState(path=config.state_path)

    tasks = []
    if config.telegram_bot_token:
        tg = TelegramPolling(config, router, redactor, state)
        tasks.append(asyncio.create_task(tg.start()))
    else:
        logger.info("Telegram not configured (TIPBOT_TELEGRAM_TOKEN missing)")

    if config.discord_bot_token:
        dc = DiscordGateway(config, router, redactor)
        tasks.append(asyncio.create_task(dc.start()))
    else:
        logger.info("Discord not configured (TIPBOT_DISCORD_TOKEN missing)")

    if config.twitter_access_token and config.twitter_user_id:
        tw = TwitterMentions(config, router, state)
        tasks.append(asyncio.create_task(tw.start()))
    else:
        logger.info("Twitter not configured (TIPBOT_TWITTER_ACCESS_TOKEN / TIPBOT_TWITTER_USER_ID missing)")

    api_server = None
    if config.api_enabled:
        api_server = WalletApiServer(config, orchestrator)
        await api_server.start()
        if not tasks:
            # Keep the loop alive when only the API is serving.
            tasks.append(asyncio.create_task(asyncio.Event().wait()))

    if not tasks:
        logger.error("No transports configured and API disabled. Nothing to run.")
        await client.close()
        return

    logger.info(f"Connecting to wallet service at {config.ledger_url}...")
    if await client.check_health():
        logger.info("✅ Wallet service connection verified.")
    else:
        logger.warning("⚠️ Could not reach wallet service on startup.")

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Connector stopping...")
    finally:
        for task in tasks:
            task.cancel()
        await redactor.stop()
        store.clear()
        if api_server:
            await api_server.stop()
        await client.close()
        logger.info("Connector stopped.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
