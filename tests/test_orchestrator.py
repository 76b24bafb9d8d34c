"""
Unit Tests for the Transaction Orchestrator.
Pre-flight validation must never cost a ledger call.
"""
import asyncio
import unittest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from tipbot.contract import ChatPlatform, UserIdentity
from tipbot.errors import (
    InsufficientFunds,
    RemoteRejection,
    TransportError,
    UnsupportedToken,
    ValidationError,
    WalletNotFound,
)
from tipbot.ledger_client import TransferReceipt
from tipbot.orchestrator import (
    NATIVE_FEE_BUFFER,
    TransactionOrchestrator,
    parse_amount,
    validate_wallet_address,
)

WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


class TestParsing(unittest.TestCase):
    def test_parse_amount(self):
        self.assertEqual(parse_amount("2"), Decimal("2"))
        self.assertEqual(parse_amount("0.000001"), Decimal("0.000001"))
        for raw in ("0", "-1", "abc", "", "NaN", "Infinity", "1e"):
            with self.assertRaises(ValidationError, msg=raw):
                parse_amount(raw)

    def test_validate_wallet_address(self):
        self.assertEqual(validate_wallet_address(f" {WALLET} "), WALLET)
        for bad in ("short", "0" * 44, WALLET + "X" * 5, "O" + WALLET[1:]):
            with self.assertRaises(ValidationError, msg=bad):
                validate_wallet_address(bad)


class TestTransactionOrchestrator(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.client.get_wallet = AsyncMock(return_value=WALLET)
        self.client.get_or_create_wallet = AsyncMock(return_value=WALLET)
        self.client.link_wallet = AsyncMock(return_value=True)
        self.client.get_balance = AsyncMock(return_value=Decimal("1"))
        self.client.transfer_native = AsyncMock(
            return_value=TransferReceipt(signature="sig123", wallet_was_created=False)
        )
        self.client.transfer_token = AsyncMock(
            return_value=TransferReceipt(signature="sig456", wallet_was_created=True)
        )
        self.orchestrator = TransactionOrchestrator(self.client)
        self.sender = UserIdentity(ChatPlatform.TELEGRAM, "bob")

    def _send(self, recipient="@alice", amount="2", token=None):
        async def run():
            request = await self.orchestrator.prepare_transfer(
                self.sender, recipient, amount, token
            )
            return await self.orchestrator.transfer(request)

        return asyncio.run(run())

    def test_invalid_amount_makes_no_ledger_calls(self):
        with self.assertRaises(ValidationError):
            self._send(amount="-1")
        self.client.get_wallet.assert_not_called()
        self.client.get_balance.assert_not_called()
        self.client.transfer_native.assert_not_called()

    def test_unsupported_token_makes_no_ledger_calls(self):
        with self.assertRaises(UnsupportedToken):
            self._send(token="DOGE")
        self.client.get_wallet.assert_not_called()

    def test_missing_sender_wallet(self):
        self.client.get_wallet.return_value = None
        with self.assertRaises(WalletNotFound):
            self._send()
        self.client.transfer_native.assert_not_called()

    def test_native_transfer(self):
        result = self._send(recipient="@alice", amount="0.5")
        self.assertEqual(result.signature, "sig123")
        self.client.transfer_native.assert_called_once_with(
            ChatPlatform.TELEGRAM, "bob", ChatPlatform.TELEGRAM, "alice", Decimal("0.5")
        )

    def test_fee_buffer_is_checked_locally(self):
        self.client.get_balance.return_value = Decimal("0.000004")
        with self.assertRaises(InsufficientFunds) as ctx:
            self._send(amount="0.000001")
        self.assertIn("0.000004 SOL", ctx.exception.message)
        self.assertIn("0.000006 SOL", ctx.exception.message)
        self.client.transfer_native.assert_not_called()

    def test_exact_balance_with_buffer_passes(self):
        self.client.get_balance.return_value = Decimal("1") + NATIVE_FEE_BUFFER
        self._send(amount="1")
        self.client.transfer_native.assert_called_once()

    def test_token_transfer_skips_native_balance_check(self):
        result = self._send(amount="10", token="usdc")
        self.assertTrue(result.wallet_was_created)
        self.client.get_balance.assert_not_called()
        args = self.client.transfer_token.call_args[0]
        self.assertEqual(args[4], "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")
        self.assertEqual(args[5], Decimal("10"))
        self.assertEqual(args[6], 6)

    def test_remote_insolvency_is_translated(self):
        self.client.transfer_native.side_effect = RemoteRejection(
            "Attempt to debit an account but found no record of a prior credit."
        )
        with self.assertRaises(InsufficientFunds):
            self._send()

    def test_transport_failure_surfaces_as_transport_error(self):
        self.client.transfer_native.side_effect = TransportError("Could not reach wallet service: boom")
        with self.assertRaises(TransportError):
            self._send()
        # Never retried.
        self.client.transfer_native.assert_called_once()

    def test_ensure_wallet_is_idempotent(self):
        self.client.get_wallet.side_effect = [None, WALLET]
        first = asyncio.run(self.orchestrator.ensure_wallet(self.sender))
        second = asyncio.run(self.orchestrator.ensure_wallet(self.sender))
        self.assertEqual(first, (WALLET, True))
        self.assertEqual(second, (WALLET, False))
        self.client.get_or_create_wallet.assert_called_once_with(ChatPlatform.TELEGRAM, "bob")

    def test_link_wallet_validates_first(self):
        with self.assertRaises(ValidationError):
            asyncio.run(self.orchestrator.link_wallet(self.sender, "not-an-address"))
        self.client.link_wallet.assert_not_called()

    def test_link_wallet_remote_refusal(self):
        self.client.link_wallet.side_effect = RemoteRejection("already linked", 409)
        self.assertFalse(asyncio.run(self.orchestrator.link_wallet(self.sender, WALLET)))


if __name__ == "__main__":
    unittest.main()
