"""
Unit Tests for the wallet-linking HTTP API.
"""
import unittest
from unittest.mock import AsyncMock, MagicMock

from aiohttp.test_utils import AioHTTPTestCase

from tipbot.api_server import WalletApiServer
from tipbot.config import TipBotConfig
from tipbot.contract import ChatPlatform
from tipbot.errors import TransportError
from tipbot.orchestrator import TransactionOrchestrator

WALLET = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"


class TestWalletApiServer(AioHTTPTestCase):
    async def get_application(self):
        self.ledger = MagicMock()
        self.ledger.get_wallet = AsyncMock(return_value=None)
        self.ledger.get_or_create_wallet = AsyncMock(return_value=WALLET)
        self.ledger.link_wallet = AsyncMock(return_value=True)
        self.server = WalletApiServer(TipBotConfig(), TransactionOrchestrator(self.ledger))
        return self.server.app

    async def test_health(self):
        resp = await self.client.get("/api/health")
        self.assertEqual(resp.status, 200)
        self.assertEqual(await resp.json(), {"status": "ok"})

    async def test_get_user_without_wallet(self):
        resp = await self.client.get("/api/user/telegram/bob")
        self.assertEqual(resp.status, 404)
        self.assertFalse((await resp.json())["hasWallet"])

    async def test_get_user_with_wallet(self):
        self.ledger.get_wallet.return_value = WALLET
        resp = await self.client.get("/api/user/Discord/bob")
        self.assertEqual(resp.status, 200)
        body = await resp.json()
        self.assertEqual(body["walletAddress"], WALLET)
        self.ledger.get_wallet.assert_awaited_with(ChatPlatform.DISCORD, "bob")

    async def test_get_user_unknown_platform(self):
        resp = await self.client.get("/api/user/myspace/bob")
        self.assertEqual(resp.status, 400)

    async def test_get_user_ledger_down(self):
        self.ledger.get_wallet.side_effect = TransportError("Could not reach wallet service: down")
        resp = await self.client.get("/api/user/telegram/bob")
        self.assertEqual(resp.status, 500)

    async def test_connect_wallet(self):
        resp = await self.client.post(
            "/api/connect-wallet",
            json={"userId": "bob", "platform": "telegram", "walletAddress": WALLET},
        )
        self.assertEqual(resp.status, 201)
        body = await resp.json()
        self.assertEqual(body["walletAddress"], WALLET)
        self.ledger.link_wallet.assert_awaited_once_with(ChatPlatform.TELEGRAM, "bob", WALLET)

    async def test_connect_wallet_missing_fields(self):
        resp = await self.client.post("/api/connect-wallet", json={"userId": "bob"})
        self.assertEqual(resp.status, 400)
        self.ledger.get_wallet.assert_not_called()

    async def test_connect_wallet_bad_address(self):
        resp = await self.client.post(
            "/api/connect-wallet",
            json={"userId": "bob", "platform": "telegram", "walletAddress": "nope"},
        )
        self.assertEqual(resp.status, 400)
        self.ledger.link_wallet.assert_not_called()

    async def test_connect_wallet_bad_json(self):
        resp = await self.client.post("/api/connect-wallet", data="{broken")
        self.assertEqual(resp.status, 400)

    async def test_connect_wallet_conflict(self):
        self.ledger.get_wallet.return_value = WALLET
        resp = await self.client.post(
            "/api/connect-wallet",
            json={"userId": "bob", "platform": "telegram", "walletAddress": WALLET},
        )
        self.assertEqual(resp.status, 409)
        self.ledger.link_wallet.assert_not_called()

    async def test_connect_wallet_link_refused(self):
        self.ledger.link_wallet.return_value = False
        resp = await self.client.post(
            "/api/connect-wallet",
            json={"userId": "bob", "platform": "telegram", "walletAddress": WALLET},
        )
        self.assertEqual(resp.status, 500)

    async def test_create_wallet(self):
        resp = await self.client.post(
            "/api/create-wallet", json={"userId": "alice", "platform": "twitter"}
        )
        self.assertEqual(resp.status, 201)
        self.assertEqual((await resp.json())["walletAddress"], WALLET)
        self.ledger.get_or_create_wallet.assert_awaited_once_with(ChatPlatform.TWITTER, "alice")

    async def test_create_wallet_conflict(self):
        self.ledger.get_wallet.return_value = WALLET
        resp = await self.client.post(
            "/api/create-wallet", json={"userId": "alice", "platform": "twitter"}
        )
        self.assertEqual(resp.status, 409)
        self.ledger.get_or_create_wallet.assert_not_called()


if __name__ == "__main__":
    unittest.main()
