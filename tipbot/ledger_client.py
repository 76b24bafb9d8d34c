"""
Ledger API Client.
Handles communication with the remote custodial wallet service.

The service exposes two families of endpoints:
- `/api/user/...` wallet bookkeeping, which answers structured JSON.
- `/api/mcp/tools/...` chain tools, which answer MCP tool results whose payload is
  human-readable text in `data.result.content[i].text`.

All parsing of that text stays in this module; callers only ever see the typed
results defined below.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from .config import TipBotConfig
from .contract import ChatPlatform
from .errors import RemoteRejection, TransportError
from .retry import retry_reads

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

_BALANCE_RE = re.compile(r"([0-9.]+) SOL")
_SIGNATURE_RE = re.compile(r"signature: ([a-zA-Z0-9]+)")
_WALLET_CREATED_MARKER = "A new wallet was created"
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


@dataclass
class TokenBalance:
    symbol: str
    amount: Decimal


@dataclass
class TransferReceipt:
    signature: Optional[str]
    wallet_was_created: bool


@dataclass
class TransactionInfo:
    signature: str
    status: str  # "success" | "error"
    fee_units: int
    block_time: Optional[int] = None


@dataclass
class AccountInfo:
    address: str
    balance_units: int
    owner: str
    executable: bool


@dataclass
class NetworkStatus:
    health: str
    epoch: str
    block_height: str
    slot: str


@dataclass
class ExportResult:
    success: bool
    secret: Optional[str] = None
    error: Optional[str] = None

    def __repr__(self):
        # Never let the secret reach a log line.
        secret = "***REDACTED***" if self.secret else None
        return f"ExportResult(success={self.success!r}, secret={secret!r}, error={self.error!r})"


@dataclass
class PriceQuote:
    symbol: str
    usd: Decimal


@dataclass
class HistoryEntry:
    signature: str
    status: str
    amount: Optional[Decimal] = None
    token_symbol: Optional[str] = None
    block_time: Optional[int] = None


@dataclass
class UserProfile:
    wallets: List[Dict[str, Any]] = field(default_factory=list)
    social_accounts: List[Dict[str, Any]] = field(default_factory=list)
    transactions: List[Dict[str, Any]] = field(default_factory=list)


def _to_decimal(value: Any) -> Optional[Decimal]:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return result if result.is_finite() else None


def _tool_text(body: dict, index: int = 0) -> str:
    """Extract `data.result.content[index].text` from an MCP tool response."""
    try:
        return body["data"]["result"]["content"][index]["text"]
    except (KeyError, IndexError, TypeError):
        logger.error("Invalid MCP tool response format: %s", str(body)[:200])
        raise RemoteRejection("Invalid response format from server")


def _tool_content_len(body: dict) -> int:
    try:
        return len(body["data"]["result"]["content"])
    except (KeyError, TypeError):
        return 0


def parse_transfer_text(text: str) -> TransferReceipt:
    match = _SIGNATURE_RE.search(text)
    return TransferReceipt(
        signature=match.group(1) if match else None,
        wallet_was_created=_WALLET_CREATED_MARKER in text,
    )


def parse_token_table(table_text: str) -> List[TokenBalance]:
    """Parse the markdown table returned by getTokenBalances (header + separator first)."""
    tokens: List[TokenBalance] = []
    for line in table_text.split("\n")[2:]:
        parts = [p.strip() for p in line.strip().split("|") if p.strip()]
        if len(parts) < 2:
            continue
        amount = _to_decimal(parts[1])
        if amount is None:
            continue
        tokens.append(TokenBalance(symbol=parts[0], amount=amount))
    return tokens


class LedgerClient:
    def __init__(self, config: TipBotConfig):
        self.base_url = config.ledger_url
        self.headers = {
            "User-Agent": "SolTip-Connector/1.0.0",
            "Content-Type": "application/json",
        }
        if config.ledger_api_key:
            self.headers[config.ledger_api_key_header] = config.ledger_api_key
        self.timeout = config.ledger_timeout_sec
        self.read_retries = config.ledger_read_retries

        self.session = None

    async def start(self):
        """Initialize shared session."""
        if not self.session:
            self.session = aiohttp.ClientSession()

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[dict] = None,
        params: Optional[dict] = None,
        allow_404: bool = False,
    ) -> Optional[dict]:
        url = f"{self.base_url}{path}"
        session = self.session

        # Fallback if start() wasn't called (e.g. tests)
        local_session = False
        if not session:
            session = aiohttp.ClientSession()
            local_session = True

        try:
            async with session.request(
                method,
                url,
                headers=self.headers,
                json=json_data,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                try:
                    data = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, ValueError):
                    data = {}
                if not isinstance(data, dict):
                    data = {"data": data}

                if resp.status == 404 and allow_404:
                    return None
                if resp.status not in (200, 201, 202):
                    message = data.get("message") or data.get("error") or f"HTTP {resp.status}"
                    logger.warning(f"Ledger {method} {path} returned {resp.status}: {message}")
                    raise RemoteRejection(str(message), resp.status)
                return data
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Request failed {method} {path}: {type(e).__name__}: {e}")
            detail = str(e) or type(e).__name__
            raise TransportError(f"Could not reach wallet service: {detail}") from e
        finally:
            if local_session:
                await session.close()

    async def _read(self, method: str, path: str, **kwargs) -> Optional[dict]:
        return await retry_reads(
            lambda: self._request(method, path, **kwargs), max_retries=self.read_retries
        )

    async def _tool(self, name: str, payload: dict, read: bool = True) -> dict:
        path = f"/api/mcp/tools/{name}"
        if read:
            return await self._read("POST", path, json_data=payload)
        return await self._request("POST", path, json_data=payload)

    # --- Wallet bookkeeping ---

    async def get_wallet(self, platform: ChatPlatform, handle: str) -> Optional[str]:
        data = await self._read(
            "GET",
            "/api/user/wallet/social",
            params={"platform": platform.value, "platformId": handle},
            allow_404=True,
        )
        if data and data.get("status") == "success" and data.get("wallet"):
            return data["wallet"].get("publicKey")
        return None

    async def get_or_create_wallet(self, platform: ChatPlatform, handle: str) -> str:
        data = await self._request(
            "POST",
            "/api/user/wallet/get-or-create",
            {
                "platform": platform.value,
                "platformId": handle,
                "label": f"{platform.value}-{handle}",
            },
        )
        wallet = (data or {}).get("wallet") or {}
        if data.get("status") == "success" and wallet.get("publicKey"):
            return wallet["publicKey"]
        raise RemoteRejection("Failed to create wallet: Invalid response from API")

    async def link_wallet(
        self, platform: ChatPlatform, handle: str, wallet_address: str
    ) -> bool:
        data = await self._request(
            "POST",
            "/api/user/wallet/link",
            {
                "platform": platform.value,
                "platformId": handle,
                "walletPublicKey": wallet_address,
            },
        )
        return bool(data) and data.get("status") == "success"

    async def export_private_key(self, platform: ChatPlatform, handle: str) -> ExportResult:
        data = await self._request(
            "POST",
            "/api/user/wallet/export-private-key",
            {"platform": platform.value, "platformId": handle},
        )
        secret = data.get("privateKey")
        if data.get("status") == "success" and secret:
            return ExportResult(success=True, secret=secret)
        return ExportResult(
            success=False,
            error=data.get("message") or data.get("error") or "Export failed",
        )

    async def get_user_profile(
        self, platform: ChatPlatform, handle: str
    ) -> Optional[UserProfile]:
        data = await self._read(
            "GET",
            "/api/user/profile",
            params={"platform": platform.value, "platformId": handle},
            allow_404=True,
        )
        if not data or data.get("status") != "success" or not data.get("profile"):
            return None
        profile = data["profile"]
        return UserProfile(
            wallets=profile.get("wallets") or [],
            social_accounts=profile.get("socialAccounts") or [],
            transactions=profile.get("transactions") or [],
        )

    # --- Chain tools ---

    async def get_balance(self, wallet_address: str) -> Decimal:
        body = await self._tool("getBalance", {"walletAddress": wallet_address})
        text = _tool_text(body)
        match = _BALANCE_RE.search(text)
        balance = _to_decimal(match.group(1)) if match else None
        if balance is None:
            raise RemoteRejection("Could not parse balance from response")
        return balance

    async def get_token_balances(self, wallet_address: str) -> List[TokenBalance]:
        body = await self._tool("getTokenBalances", {"walletAddress": wallet_address})
        # content[0] is a summary sentence, content[1] the table (absent when empty).
        if _tool_content_len(body) < 2:
            return []
        return parse_token_table(_tool_text(body, 1))

    async def transfer_native(
        self,
        sender_platform: ChatPlatform,
        sender_handle: str,
        recipient_platform: ChatPlatform,
        recipient_handle: str,
        amount: Decimal,
    ) -> TransferReceipt:
        body = await self._tool(
            "sendSolToUser",
            {
                "senderPlatform": sender_platform.value,
                "senderPlatformId": sender_handle,
                "recipientPlatform": recipient_platform.value,
                "recipientPlatformId": recipient_handle,
                "amount": float(amount),
            },
            read=False,
        )
        receipt = parse_transfer_text(_tool_text(body))
        logger.info(
            f"SOL transfer completed: {receipt.signature}, wallet created: {receipt.wallet_was_created}"
        )
        return receipt

    async def transfer_token(
        self,
        sender_platform: ChatPlatform,
        sender_handle: str,
        recipient_platform: ChatPlatform,
        recipient_handle: str,
        mint: str,
        amount: Decimal,
        decimals: int,
    ) -> TransferReceipt:
        body = await self._tool(
            "sendTokenToUser",
            {
                "senderPlatform": sender_platform.value,
                "senderPlatformId": sender_handle,
                "recipientPlatform": recipient_platform.value,
                "recipientPlatformId": recipient_handle,
                "tokenMint": mint,
                "amount": float(amount),
                "decimals": decimals,
            },
            read=False,
        )
        receipt = parse_transfer_text(_tool_text(body))
        logger.info(
            f"Token transfer completed: {receipt.signature}, wallet created: {receipt.wallet_was_created}"
        )
        return receipt

    async def get_transaction(self, signature: str) -> TransactionInfo:
        body = await self._tool("getTransaction", {"signature": signature})
        text = _tool_text(body)
        fee = re.search(r"Fee: (\d+) lamports", text)
        block_time = re.search(r"Block time: (\d+)", text)
        return TransactionInfo(
            signature=signature,
            status="success" if "Status: success" in text else "error",
            fee_units=int(fee.group(1)) if fee else 0,
            block_time=int(block_time.group(1)) if block_time else None,
        )

    async def get_account(self, address: str) -> AccountInfo:
        body = await self._tool("getAccountInfo", {"address": address})
        text = _tool_text(body)

        json_match = _JSON_OBJECT_RE.search(text)
        if json_match:
            try:
                account = json.loads(json_match.group(0))
                sol = _to_decimal(str(account.get("balance", "0")).split(" ")[0]) or Decimal(0)
                return AccountInfo(
                    address=address,
                    balance_units=int(sol * LAMPORTS_PER_SOL),
                    owner=str(account.get("owner", "Unknown")),
                    executable=bool(account.get("executable", False)),
                )
            except (ValueError, AttributeError) as e:
                logger.warning(f"Failed to parse account info JSON: {e}")

        balance = re.search(r"Balance: ([0-9.]+) SOL", text)
        owner = re.search(r"Owner: ([A-Za-z0-9]+)", text)
        executable = re.search(r"Executable: (true|false)", text)
        sol = (_to_decimal(balance.group(1)) if balance else None) or Decimal(0)
        return AccountInfo(
            address=address,
            balance_units=int(sol * LAMPORTS_PER_SOL),
            owner=owner.group(1) if owner else "Unknown",
            executable=bool(executable) and executable.group(1) == "true",
        )

    async def get_network_status(self) -> NetworkStatus:
        body = await self._tool("networkStatus", {})
        text = _tool_text(body)
        try:
            status = json.loads(text)
            return NetworkStatus(
                health=str(status.get("health") or "unknown"),
                epoch=str(status.get("currentEpoch") or "0"),
                block_height=str(status.get("blockHeight") or "0"),
                slot=str(status.get("currentSlot") or "0"),
            )
        except (ValueError, AttributeError):
            logger.warning("Network status was not JSON, falling back to pattern parsing")

        def _field(name: str) -> str:
            match = re.search(rf'"{name}": "([^"]+)"', text)
            return match.group(1) if match else "0"

        return NetworkStatus(
            health="okay" if 'health": "okay' in text else "unknown",
            epoch=_field("currentEpoch"),
            block_height=_field("blockHeight"),
            slot=_field("currentSlot"),
        )

    async def get_wallet_transactions(
        self, wallet_address: str, limit: int = 5
    ) -> List[HistoryEntry]:
        body = await self._tool(
            "getWalletTransactions", {"walletAddress": wallet_address, "limit": limit}
        )
        match = _JSON_ARRAY_RE.search(_tool_text(body))
        if not match:
            return []
        try:
            items = json.loads(match.group(0))
        except ValueError:
            logger.warning("Could not parse wallet transactions payload")
            return []

        entries = []
        for item in items[:limit]:
            if not isinstance(item, dict) or not item.get("signature"):
                continue
            entries.append(
                HistoryEntry(
                    signature=str(item["signature"]),
                    status=str(item.get("status", "unknown")),
                    amount=_to_decimal(item["amount"]) if item.get("amount") is not None else None,
                    token_symbol=item.get("tokenSymbol"),
                    block_time=item.get("blockTime"),
                )
            )
        return entries

    # --- Market / service ---

    async def get_price(self, symbol: str) -> Optional[PriceQuote]:
        data = await self._read("GET", f"/api/price/{symbol.upper()}", allow_404=True)
        if not data:
            return None
        usd = _to_decimal(data.get("usd"))
        if usd is None:
            return None
        return PriceQuote(symbol=symbol.upper(), usd=usd)

    async def check_health(self) -> bool:
        try:
            data = await self._request("GET", "/api/health")
        except (TransportError, RemoteRejection) as e:
            logger.warning(f"Ledger health check failed: {e.message}")
            return False
        return bool(data) and data.get("status") == "ok"
