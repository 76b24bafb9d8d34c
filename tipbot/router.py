"""
Command Router.
Dispatches normalized commands to wallet handlers and formats the reply text.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional, Sequence

from .config import TipBotConfig
from .contract import ChatPlatform, CommandReply, InboundEvent
from .errors import (
    InsufficientFunds,
    TipBotError,
    UnsupportedToken,
    ValidationError,
    VerificationFailure,
    WalletNotFound,
)
from .export_guard import ExportGuard
from .ledger_client import LAMPORTS_PER_SOL, LedgerClient
from .normalizer import MentionFilter, normalize
from .orchestrator import TransactionOrchestrator, validate_wallet_address
from .tokens import NATIVE_SYMBOL, TOKEN_REGISTRY, supported_tokens

logger = logging.getLogger(__name__)

Handler = Callable[[InboundEvent, Sequence[str]], Awaitable[CommandReply]]

APOLOGY = "Sorry, something went wrong processing your request. Please try again later."
TOKENS_INFO_LIMIT = 5
HISTORY_LIMIT = 5
PROFILE_TX_LIMIT = 3


def format_amount(amount: Decimal) -> str:
    """Plain decimal notation without trailing zeros."""
    return format(amount.normalize(), "f")


def format_timestamp(ts: Optional[int]) -> str:
    if not ts:
        return "Pending"
    try:
        moment = datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning(f"Unparseable block time from ledger: {ts!r}")
        return "Pending"
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")


class CommandRouter:
    def __init__(
        self,
        config: TipBotConfig,
        client: LedgerClient,
        orchestrator: TransactionOrchestrator,
        export_guard: ExportGuard,
        mentions: Optional[MentionFilter] = None,
    ):
        self.config = config
        self.client = client
        self.orchestrator = orchestrator
        self.export_guard = export_guard
        self.mentions = mentions or MentionFilter.from_config(config)

        # Dispatch Table
        handlers = {
            ("send", "tip"): self._handle_send,
            ("balance",): self._handle_balance,
            ("tokens",): self._handle_tokens,
            ("address",): self._handle_address,
            ("register",): self._handle_register,
            ("connect",): self._handle_connect,
            ("tokens-info",): self._handle_tokens_info,
            ("price",): self._handle_price,
            ("history",): self._handle_history,
            ("profile",): self._handle_profile,
            ("export-privatekey",): self._handle_export,
            ("export-privatekey-confirm",): self._handle_export_confirm,
            ("transaction",): self._handle_transaction,
            ("account",): self._handle_account,
            ("network",): self._handle_network,
            ("help", "start"): self._handle_help,
        }
        self._handlers: Dict[str, Handler] = {
            alias: func for aliases, func in handlers.items() for alias in aliases
        }

    async def handle(self, event: InboundEvent) -> CommandReply:
        """Main dispatch loop. Always returns a reply."""
        text = (event.raw_text or "").strip()
        # Debug-only raw message logging. May include sensitive user content.
        # Export commands carry challenge codes and are never logged.
        if self.config.debug:
            logger.info(
                "DEBUG raw message: platform=%s user=%s private=%s text=%r",
                event.platform.value,
                event.sender_handle,
                event.is_private_channel,
                "<export command>" if "export-privatekey" in text.lower() else text,
            )

        if len(text) > self.config.max_command_length:
            return CommandReply(
                text=f"[Error] Command too long ({len(text)} chars). Max: {self.config.max_command_length}."
            )

        keyword = ""
        try:
            parsed = normalize(text, event.platform, self.mentions)
            if parsed.is_empty:
                return CommandReply(text='Please type "help" to see available commands.')

            keyword = parsed.keyword
            handler = self._handlers.get(keyword)
            if handler is None:
                return CommandReply(text='Unknown command. Type "help" to see available commands.')

            return await handler(event, parsed.args)
        except TipBotError as e:
            logger.warning(f"Command {keyword!r} failed ({type(e).__name__}): {e.message}")
            return CommandReply(text=f"❌ {e.message}")
        except Exception as e:
            logger.exception(f"Command execution error {keyword!r}: {e}")
            return CommandReply(text=APOLOGY)

    # --- Helpers ---

    def _need_wallet(self) -> CommandReply:
        msg = 'You need to connect your wallet first. Use "connect YOUR_WALLET_ADDRESS" or "register" to create one.'
        if self.config.app_url:
            msg += f" You can also visit {self.config.app_url} to get started."
        return CommandReply(text=msg)

    def _tx_link(self, signature: str) -> str:
        return f"{self.config.explorer_url}/{signature}"

    def _export_blocked(self, event: InboundEvent) -> Optional[CommandReply]:
        """Export is only allowed in one-to-one Telegram chats, whatever the arguments."""
        if event.platform is not ChatPlatform.TELEGRAM:
            return CommandReply(
                text="🚫 Private key export is only available in a private Telegram chat with the bot."
            )
        if not event.is_private_channel:
            return CommandReply(
                text="🚫 For security, private key export is disabled in group chats. Message me privately."
            )
        return None

    # --- Handlers ---

    async def _handle_send(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        if len(args) < 2:
            return CommandReply(text="Invalid format. Use: send @recipient amount [token]")

        recipient_tag, raw_amount = args[0], args[1]
        token_symbol = args[2].upper() if len(args) > 2 else NATIVE_SYMBOL

        try:
            request = await self.orchestrator.prepare_transfer(
                event.sender, recipient_tag, raw_amount, token_symbol
            )
        except ValidationError as e:
            return CommandReply(text=f"❌ {e.message}\nUse: send @recipient amount [token]")
        except UnsupportedToken as e:
            return CommandReply(text=f"❌ {e.message}")
        except WalletNotFound:
            return self._need_wallet()

        amount_text = format_amount(request.amount)
        symbol = request.token.symbol
        recipient = request.recipient.handle
        try:
            result = await self.orchestrator.transfer(request)
        except (InsufficientFunds, WalletNotFound) as e:
            return CommandReply(text=f"❌ {e.message}")
        except TipBotError as e:
            return CommandReply(text=f"❌ Failed to send {amount_text} {symbol}. {e.message}")

        message = f"Successfully sent {amount_text} {symbol} to @{recipient}!"
        if result.wallet_was_created:
            message += f" A new wallet was automatically created for @{recipient}."
        if result.signature:
            message += f" Transaction: {self._tx_link(result.signature)}"
        return CommandReply(text=message)

    async def _handle_balance(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        wallet = await self.orchestrator.resolve_wallet(event.sender)
        if not wallet:
            return self._need_wallet()
        try:
            balance = await self.client.get_balance(wallet)
        except TipBotError as e:
            return CommandReply(text=f"Failed to get balance. Error: {e.message}")
        return CommandReply(text=f"Your {NATIVE_SYMBOL} balance is {format_amount(balance)} {NATIVE_SYMBOL}")

    async def _handle_tokens(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        wallet = await self.orchestrator.resolve_wallet(event.sender)
        if not wallet:
            return self._need_wallet()
        try:
            balances = await self.client.get_token_balances(wallet)
        except TipBotError as e:
            return CommandReply(text=f"Failed to get token balances. Error: {e.message}")
        if not balances:
            return CommandReply(
                text=f"You don't have any token balances yet.\nSupported tokens: {', '.join(supported_tokens())}"
            )
        lines = "\n".join(f"{b.symbol}: {format_amount(b.amount)}" for b in balances)
        return CommandReply(text=f"Your token balances:\n{lines}")

    async def _handle_address(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        wallet = await self.orchestrator.resolve_wallet(event.sender)
        if not wallet:
            return self._need_wallet()
        return CommandReply(text=f"Your wallet address is: {wallet}")

    async def _handle_register(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        try:
            wallet, created = await self.orchestrator.ensure_wallet(event.sender)
        except TipBotError as e:
            return CommandReply(text=f"Failed to register: {e.message}. Please try again later.")
        if not created:
            return CommandReply(
                text=f'You already have a wallet with address: {wallet}. Use "balance" to check your balance.'
            )
        return CommandReply(
            text=f"Welcome to SolTip! ✨ A new custodial wallet has been created for you: {wallet}\n\n"
            'Use "balance" to check your balance or "help" to see all available commands.'
        )

    async def _handle_connect(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        if not args:
            return CommandReply(text="Invalid format. Use: connect YOUR_WALLET_ADDRESS")
        try:
            address = validate_wallet_address(args[0])
        except ValidationError as e:
            return CommandReply(text=e.message)

        existing = await self.orchestrator.resolve_wallet(event.sender)
        if existing:
            return CommandReply(
                text=f"You already have a connected wallet with address: {existing}.\n"
                "To use a different wallet, please contact support."
            )

        if await self.orchestrator.link_wallet(event.sender, address):
            return CommandReply(
                text=f"Successfully connected wallet {address} to your {event.platform.value} account."
            )
        return CommandReply(text="Failed to connect wallet. Please try again later or contact support.")

    async def _handle_tokens_info(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        symbols = supported_tokens()
        if not symbols:
            return CommandReply(text="No supported tokens found.")

        lines = ["Supported tokens:"]
        for symbol in symbols[:TOKENS_INFO_LIMIT]:
            info = TOKEN_REGISTRY[symbol]
            mint = info.mint_address
            lines.append(f"{symbol}: Mint address {mint[:8]}...{mint[-8:]}, Decimals: {info.decimals}")

        if len(symbols) > TOKENS_INFO_LIMIT:
            remaining = len(symbols) - TOKENS_INFO_LIMIT
            lines.append(f'\n...and {remaining} more tokens. Use "help" for the full list.')
        return CommandReply(text="\n".join(lines))

    async def _handle_price(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        symbol = args[0].upper() if args else NATIVE_SYMBOL
        if symbol not in TOKEN_REGISTRY:
            return CommandReply(
                text=f"Token {symbol} is not supported. Available tokens: {', '.join(supported_tokens())}"
            )
        try:
            quote = await self.client.get_price(symbol)
        except TipBotError as e:
            return CommandReply(text=f"Failed to get price for {symbol}. Error: {e.message}")
        if quote is None:
            return CommandReply(text=f"Price information for {symbol} is not available.")

        # At least 2 and at most 8 decimals, with thousands separators.
        price = f"{quote.usd:,.8f}".rstrip("0")
        whole, _, frac = price.partition(".")
        price = f"{whole}.{frac.ljust(2, '0')}"
        return CommandReply(text=f"Current price of {symbol}: ${price} USD")

    async def _handle_history(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        wallet = await self.orchestrator.resolve_wallet(event.sender)
        if not wallet:
            return self._need_wallet()
        try:
            entries = await self.client.get_wallet_transactions(wallet, HISTORY_LIMIT)
        except TipBotError as e:
            return CommandReply(text=f"Failed to fetch transaction history: {e.message}")
        if not entries:
            return CommandReply(text="No transaction history found for your wallet.")

        lines = ["Recent transactions for your wallet:"]
        for index, tx in enumerate(entries, start=1):
            status = "✅" if tx.status == "success" else "❌"
            amount = (
                f"{format_amount(tx.amount)} {tx.token_symbol or NATIVE_SYMBOL}"
                if tx.amount is not None
                else "N/A"
            )
            lines.append(f"{index}. {status} {amount} [{format_timestamp(tx.block_time)}]")
            lines.append(f"   {self._tx_link(tx.signature)}")
        return CommandReply(text="\n".join(lines))

    async def _handle_profile(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        try:
            profile = await self.client.get_user_profile(event.platform, event.sender_handle)
        except TipBotError as e:
            return CommandReply(text=f"Failed to fetch user profile: {e.message}")
        if profile is None:
            return CommandReply(text='No profile found. Use "register" to create a wallet first.')

        lines = ["📊 Your SolTip Profile:"]
        if profile.wallets:
            wallet = profile.wallets[0]
            lines.append(f"💼 Wallet: {wallet.get('public_key', 'unknown')}")
            lines.append(f"🏷️ Label: {wallet.get('label') or 'No label'}")

        if profile.social_accounts:
            lines.append("\n🔗 Linked accounts:")
            for account in profile.social_accounts:
                lines.append(f"- {account.get('platform')}: {account.get('platform_id')}")

        if profile.transactions:
            lines.append("\n📝 Recent transactions:")
            for index, tx in enumerate(profile.transactions[:PROFILE_TX_LIMIT], start=1):
                status = {"confirmed": "✅", "failed": "❌"}.get(tx.get("status"), "⏳")
                lines.append(
                    f"{index}. {status} {tx.get('amount')} {tx.get('token_symbol') or NATIVE_SYMBOL} "
                    f"[{format_timestamp(tx.get('block_time'))}]"
                )
            lines.append('\nUse "history" to see more transactions.')
        else:
            lines.append("\nNo recent transactions found.")
        return CommandReply(text="\n".join(lines))

    async def _handle_export(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        if blocked := self._export_blocked(event):
            return blocked
        if args:
            return await self._verify_export(event, args)

        try:
            code = await self.export_guard.request_challenge(event.sender)
        except WalletNotFound as e:
            return CommandReply(text=f"❌ {e.message}")
        minutes = self.export_guard.ttl_minutes
        return CommandReply(
            text=f"🔐 Your verification code is: {code}\n"
            f"It expires in {minutes} minutes and can be used once.\n"
            f"To confirm the export, send: export-privatekey {code}"
        )

    async def _handle_export_confirm(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        if blocked := self._export_blocked(event):
            return blocked
        if not args:
            return CommandReply(text="Invalid format. Use: export-privatekey-confirm CODE")
        return await self._verify_export(event, args)

    async def _verify_export(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        if len(args) != 1:
            return CommandReply(text="❌ Send only the 6-digit verification code.")
        try:
            secret = await self.export_guard.verify_and_export(event.sender, args[0])
        except (ValidationError, VerificationFailure) as e:
            return CommandReply(text=f"❌ {e.message}")
        except TipBotError as e:
            return CommandReply(
                text=f"❌ Failed to export private key: {e.message}\n"
                'The code has been used. Send "export-privatekey" to start again.'
            )

        delay = self.config.export_auto_delete_sec
        return CommandReply(
            text=f"🔑 Your private key:\n{secret}\n\n"
            f"⚠️ Never share it with anyone. This message will be deleted in {delay} seconds.",
            auto_delete_after_sec=delay,
        )

    async def _handle_transaction(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        if not args:
            return CommandReply(text="Invalid format. Use: transaction TX_SIGNATURE")
        signature = args[0]
        try:
            tx = await self.client.get_transaction(signature)
        except TipBotError as e:
            return CommandReply(text=f"Failed to get transaction details. Error: {e.message}")

        lines = [f"Transaction {signature}:", f"Status: {tx.status}", f"Fee: {tx.fee_units} lamports"]
        if tx.block_time:
            lines.append(f"Block Time: {format_timestamp(tx.block_time)}")
        return CommandReply(text="\n".join(lines))

    async def _handle_account(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        if not args:
            return CommandReply(text="Invalid format. Use: account ACCOUNT_ADDRESS")
        try:
            address = validate_wallet_address(args[0])
        except ValidationError as e:
            return CommandReply(text=e.message)
        try:
            account = await self.client.get_account(address)
        except TipBotError as e:
            return CommandReply(text=f"Failed to get account information. Error: {e.message}")

        sol = format_amount(Decimal(account.balance_units) / LAMPORTS_PER_SOL)
        return CommandReply(
            text=f"Account Information for {address}:\n"
            f"Balance: {sol} {NATIVE_SYMBOL}\n"
            f"Owner: {account.owner}\n"
            f"Executable: {str(account.executable).lower()}"
        )

    async def _handle_network(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        try:
            status = await self.client.get_network_status()
        except TipBotError as e:
            return CommandReply(text=f"Failed to get network status. Error: {e.message}")
        return CommandReply(
            text="Solana Network Status:\n"
            f"Health: {status.health}\n"
            f"Current Epoch: {status.epoch}\n"
            f"Block Height: {status.block_height}\n"
            f"Current Slot: {status.slot}"
        )

    async def _handle_help(self, event: InboundEvent, args: Sequence[str]) -> CommandReply:
        tokens = ", ".join(supported_tokens())
        lines = [
            "Available commands:",
            "- register - Create a new custodial wallet",
            "- send @user amount [token] - Send tokens to another user (alias: tip)",
            f"  (Supported tokens: {tokens})",
            "- balance - Check your SOL balance",
            "- tokens - List your token balances",
            "- tokens-info - Show supported token details",
            "- price [token] - Check current token price",
            "- address - Show your wallet address",
            "- history - View your recent transactions",
            "- profile - View your complete profile",
            "- connect ADDRESS - Connect your external wallet",
            "- transaction SIGNATURE - Get transaction details",
            "- account ADDRESS - Get account information",
            "- network - Check Solana network status",
        ]
        if event.platform is ChatPlatform.TELEGRAM and event.is_private_channel:
            lines.append("- export-privatekey - Export your private key (private chat only)")
        lines.append("- help - Show this help message")
        return CommandReply(text="\n".join(lines))
