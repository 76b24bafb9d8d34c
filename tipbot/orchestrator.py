"""
Transaction Orchestrator.
Wallet resolution, transfer pre-flight checks and ledger error translation.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from .contract import UserIdentity
from .errors import (
    InsufficientFunds,
    RemoteRejection,
    TipBotError,
    ValidationError,
    WalletNotFound,
    translate_remote_error,
)
from .ledger_client import LedgerClient
from .tokens import NATIVE_SYMBOL, TokenInfo, get_token_info

logger = logging.getLogger(__name__)

# Reserved on top of the amount for native transfers so the network fee is covered.
NATIVE_FEE_BUFFER = Decimal("0.000005")

# Solana base58 public key: no 0, I, O or l.
WALLET_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def parse_amount(raw: str) -> Decimal:
    """Parse a user-supplied amount. Must be a finite number > 0."""
    try:
        amount = Decimal((raw or "").strip())
    except InvalidOperation:
        raise ValidationError(f"Invalid amount '{raw}'. Amount must be a positive number.")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"Invalid amount '{raw}'. Amount must be a positive number.")
    return amount


def validate_wallet_address(address: str) -> str:
    address = (address or "").strip()
    if not WALLET_ADDRESS_RE.match(address):
        raise ValidationError(
            "Invalid wallet address format. Please provide a valid Solana wallet address."
        )
    return address


@dataclass(frozen=True)
class TransferRequest:
    """Only built by TransactionOrchestrator.prepare_transfer."""

    sender: UserIdentity
    sender_wallet: str
    recipient: UserIdentity
    amount: Decimal
    token: TokenInfo


@dataclass(frozen=True)
class TransferResult:
    signature: Optional[str]
    wallet_was_created: bool


class TransactionOrchestrator:
    def __init__(self, client: LedgerClient):
        self.client = client

    async def resolve_wallet(self, identity: UserIdentity) -> Optional[str]:
        return await self.client.get_wallet(identity.platform, identity.handle)

    async def ensure_wallet(self, identity: UserIdentity) -> Tuple[str, bool]:
        """Return (wallet, created). Exactly one creation call when none exists."""
        existing = await self.resolve_wallet(identity)
        if existing:
            return existing, False
        created = await self.client.get_or_create_wallet(identity.platform, identity.handle)
        logger.info(f"Created custodial wallet for {identity.platform.value} user")
        return created, True

    async def resolve_or_create_wallet(self, identity: UserIdentity) -> str:
        wallet, _ = await self.ensure_wallet(identity)
        return wallet

    async def link_wallet(self, identity: UserIdentity, address: str) -> bool:
        """
        Link an external wallet. The address is validated before any remote call.
        A remote refusal is reported as False; an unreachable service raises.
        """
        address = validate_wallet_address(address)
        try:
            return await self.client.link_wallet(identity.platform, identity.handle, address)
        except RemoteRejection as e:
            logger.warning(f"Wallet link refused: {e.message}")
            return False

    async def prepare_transfer(
        self,
        sender: UserIdentity,
        recipient_tag: str,
        raw_amount: str,
        token_symbol: Optional[str] = None,
    ) -> TransferRequest:
        """
        Validate a transfer and build the request.

        Local checks (recipient, amount, token) run before the sender wallet
        lookup so malformed input never costs a ledger call.
        """
        recipient_handle = (recipient_tag or "").strip().lstrip("@")
        if not recipient_handle:
            raise ValidationError("Recipient is required. Use: send @recipient amount token")
        amount = parse_amount(raw_amount)
        token = get_token_info(token_symbol or NATIVE_SYMBOL)

        sender_wallet = await self.resolve_wallet(sender)
        if not sender_wallet:
            raise WalletNotFound(
                f"No wallet found for sender {sender.handle}. Please register or connect a wallet first."
            )

        return TransferRequest(
            sender=sender,
            sender_wallet=sender_wallet,
            recipient=UserIdentity(sender.platform, recipient_handle),
            amount=amount,
            token=token,
        )

    async def transfer(self, request: TransferRequest) -> TransferResult:
        """
        Execute a prepared transfer.

        Native transfers are checked against the sender balance plus the fee
        buffer first. Token transfers go straight to the ledger, which is the
        authority on token balances.
        """
        try:
            if request.token.is_native:
                balance = await self.client.get_balance(request.sender_wallet)
                required = request.amount + NATIVE_FEE_BUFFER
                if balance < required:
                    raise InsufficientFunds(
                        f"Insufficient funds. You have {balance:.6f} {NATIVE_SYMBOL} but need "
                        f"at least {required:.6f} {NATIVE_SYMBOL} (including fees)."
                    )
                receipt = await self.client.transfer_native(
                    request.sender.platform,
                    request.sender.handle,
                    request.recipient.platform,
                    request.recipient.handle,
                    request.amount,
                )
            else:
                receipt = await self.client.transfer_token(
                    request.sender.platform,
                    request.sender.handle,
                    request.recipient.platform,
                    request.recipient.handle,
                    request.token.mint_address,
                    request.amount,
                    request.token.decimals,
                )
        except TipBotError as e:
            translated = translate_remote_error(e)
            logger.warning(
                f"Transfer of {request.token.symbol} failed ({type(translated).__name__}): {translated.message}"
            )
            if translated is e:
                raise
            raise translated from e

        return TransferResult(
            signature=receipt.signature, wallet_was_created=receipt.wallet_was_created
        )
