"""
Connector Configuration.
Loads environment variables for the ledger service, transports and export flow.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class TipBotConfig:
    # Ledger service
    ledger_url: str = "http://localhost:3000"
    ledger_api_key: Optional[str] = None
    ledger_api_key_header: str = "x-api-key"
    ledger_timeout_sec: int = 10
    # Read-only calls only; transfers and exports are never retried.
    ledger_read_retries: int = 2

    # Links shown in replies
    explorer_url: str = "https://solscan.io/tx"
    app_url: str = ""

    # Bot identities (used to strip mentions from command text)
    twitter_bot_username: Optional[str] = None
    telegram_bot_username: Optional[str] = None
    discord_bot_id: Optional[str] = None

    # Telegram
    telegram_bot_token: Optional[str] = None

    # Discord
    discord_bot_token: Optional[str] = None

    # Twitter (OAuth 2.0 user-context token)
    twitter_access_token: Optional[str] = None
    twitter_user_id: Optional[str] = None
    twitter_poll_interval_sec: int = 60

    # Wallet-linking HTTP API
    api_enabled: bool = True
    api_bind_host: str = "127.0.0.1"
    api_port: int = 3001

    # Private key export
    export_code_ttl_sec: int = 300
    export_auto_delete_sec: int = 60

    # Global
    max_command_length: int = 4096
    debug: bool = False
    state_path: Optional[str] = None

    def __repr__(self):
        """Redact secret/token/key fields in logs and debug output."""
        d = self.__dict__.copy()
        for k in d:
            if "token" in k or "secret" in k or "key" in k:
                if d[k]:
                    d[k] = "***REDACTED***"
        fields = ", ".join(f"{k}={v!r}" for k, v in d.items())
        return f"{self.__class__.__name__}({fields})"


def _env_int(name: str, default: int) -> int:
    if raw := os.environ.get(name):
        raw = raw.strip()
        if raw.isdigit():
            return int(raw)
    return default


def load_config() -> TipBotConfig:
    """Load configuration from environment variables."""
    cfg = TipBotConfig()

    cfg.ledger_url = os.environ.get("TIPBOT_LEDGER_URL", cfg.ledger_url).rstrip("/")
    cfg.ledger_api_key = os.environ.get("TIPBOT_LEDGER_API_KEY")
    cfg.ledger_api_key_header = os.environ.get(
        "TIPBOT_LEDGER_API_KEY_HEADER", cfg.ledger_api_key_header
    )
    cfg.ledger_timeout_sec = _env_int("TIPBOT_LEDGER_TIMEOUT_SEC", cfg.ledger_timeout_sec)
    cfg.ledger_read_retries = _env_int(
        "TIPBOT_LEDGER_READ_RETRIES", cfg.ledger_read_retries
    )

    cfg.explorer_url = os.environ.get("TIPBOT_EXPLORER_URL", cfg.explorer_url).rstrip("/")
    cfg.app_url = os.environ.get("TIPBOT_APP_URL", "")

    cfg.twitter_bot_username = os.environ.get("TIPBOT_TWITTER_BOT_USERNAME")
    cfg.telegram_bot_username = os.environ.get("TIPBOT_TELEGRAM_BOT_USERNAME")
    cfg.discord_bot_id = os.environ.get("TIPBOT_DISCORD_BOT_ID")

    cfg.telegram_bot_token = os.environ.get("TIPBOT_TELEGRAM_TOKEN")
    cfg.discord_bot_token = os.environ.get("TIPBOT_DISCORD_TOKEN")

    cfg.twitter_access_token = os.environ.get("TIPBOT_TWITTER_ACCESS_TOKEN")
    cfg.twitter_user_id = os.environ.get("TIPBOT_TWITTER_USER_ID")
    cfg.twitter_poll_interval_sec = _env_int(
        "TIPBOT_TWITTER_POLL_INTERVAL_SEC", cfg.twitter_poll_interval_sec
    )

    if os.environ.get("TIPBOT_API_ENABLED", "").lower() == "false":
        cfg.api_enabled = False
    cfg.api_bind_host = os.environ.get("TIPBOT_API_BIND", cfg.api_bind_host)
    cfg.api_port = _env_int("TIPBOT_API_PORT", cfg.api_port)

    cfg.export_code_ttl_sec = _env_int("TIPBOT_EXPORT_CODE_TTL_SEC", cfg.export_code_ttl_sec)
    cfg.export_auto_delete_sec = _env_int(
        "TIPBOT_EXPORT_AUTO_DELETE_SEC", cfg.export_auto_delete_sec
    )

    cfg.max_command_length = _env_int("TIPBOT_MAX_COMMAND_LENGTH", cfg.max_command_length)
    cfg.debug = os.environ.get("TIPBOT_DEBUG", "0") == "1"
    cfg.state_path = os.environ.get("TIPBOT_STATE_PATH")

    return cfg
