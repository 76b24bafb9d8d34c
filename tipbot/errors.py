"""
Error taxonomy for wallet commands.

Every failure a command can hit maps onto one of these classes so the
router can render a consistent reply. `message` is always safe to show
to the user.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


class TipBotError(RuntimeError):
    """Base class. `message` is user-facing."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(TipBotError):
    """Malformed command, argument or address. Never reaches the ledger."""


class WalletNotFound(TipBotError):
    pass


class UnsupportedToken(TipBotError):
    def __init__(self, symbol: str, supported: Sequence[str]):
        self.symbol = symbol
        self.supported = list(supported)
        super().__init__(
            f"Token '{symbol}' is not supported. Available tokens: {', '.join(self.supported)}"
        )


class InsufficientFunds(TipBotError):
    pass


class TransportError(TipBotError):
    """The ledger service could not be reached (connection failure, timeout)."""


class RemoteRejection(TipBotError):
    """The ledger service answered but declined the request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class VerificationFailure(TipBotError):
    """Export challenge code missing, expired or mismatched."""


INSUFFICIENT_FUNDS_MESSAGE = "Insufficient funds in sender wallet to complete the transaction"
_PRIOR_CREDIT = "Attempt to debit an account but found no record of a prior credit"
_SIMULATION_FAILED_RE = re.compile(r"Transaction simulation failed: (.+?)\.")


def translate_remote_error(exc: Exception) -> TipBotError:
    """
    Map a ledger failure onto the taxonomy.

    Local taxonomy errors pass through unchanged. Remote prose is pattern
    matched so insolvency always reads the same regardless of where it was
    detected.
    """
    if isinstance(exc, (ValidationError, UnsupportedToken, InsufficientFunds, WalletNotFound)):
        return exc

    if isinstance(exc, TransportError):
        return TransportError(f"Transaction failed: {exc.message}")

    detail = exc.message if isinstance(exc, TipBotError) else str(exc)
    lowered = detail.lower()

    if _PRIOR_CREDIT in detail:
        return InsufficientFunds("Insufficient SOL in wallet to complete the transaction")
    if "insufficient funds" in lowered or "insufficient lamports" in lowered:
        logger.info(f"Ledger reported insolvency: {detail}")
        return InsufficientFunds(INSUFFICIENT_FUNDS_MESSAGE)
    if "no wallet found" in lowered:
        return WalletNotFound(detail)

    status = exc.status_code if isinstance(exc, RemoteRejection) else None
    if "Transaction simulation failed" in detail:
        if "would exceed maximum allowed stake delegation" in detail:
            return RemoteRejection(
                "Transaction would exceed maximum allowed stake delegation", status
            )
        match = _SIMULATION_FAILED_RE.search(detail)
        if match:
            return RemoteRejection(f"Transaction failed: {match.group(1)}", status)

    return RemoteRejection(f"Transaction failed: {detail}", status)
