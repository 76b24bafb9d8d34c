"""
Wallet-linking HTTP API.
Small aiohttp application used by the web frontend to look up, link and create wallets.
"""

import logging

from aiohttp import web

from .config import TipBotConfig
from .contract import ChatPlatform, UserIdentity
from .errors import TipBotError, ValidationError
from .orchestrator import TransactionOrchestrator, validate_wallet_address

logger = logging.getLogger(__name__)


def _identity(platform: str, user_id: str) -> UserIdentity:
    try:
        return UserIdentity(ChatPlatform.parse(platform), user_id)
    except ValueError:
        raise ValidationError(
            f"Unknown platform '{platform}'. Use one of: "
            + ", ".join(p.value for p in ChatPlatform)
        )


async def _read_json(request: web.Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Bad JSON")
    if not isinstance(body, dict):
        raise ValidationError("Bad JSON")
    return body


class WalletApiServer:
    def __init__(self, config: TipBotConfig, orchestrator: TransactionOrchestrator):
        self.config = config
        self.orchestrator = orchestrator
        self.app = web.Application()
        self.app.router.add_get("/api/health", self.handle_health)
        self.app.router.add_get("/api/user/{platform}/{username}", self.handle_user)
        self.app.router.add_post("/api/connect-wallet", self.handle_connect_wallet)
        self.app.router.add_post("/api/create-wallet", self.handle_create_wallet)
        self.runner = None
        self.site = None

    async def start(self):
        logger.info(f"Starting wallet API on {self.config.api_bind_host}:{self.config.api_port}")
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.config.api_bind_host, self.config.api_port)
        await self.site.start()

    async def stop(self):
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def handle_user(self, request: web.Request) -> web.Response:
        platform = request.match_info["platform"]
        username = request.match_info["username"]
        try:
            identity = _identity(platform, username)
            wallet = await self.orchestrator.resolve_wallet(identity)
        except ValidationError as e:
            return web.json_response({"error": e.message}, status=400)
        except TipBotError as e:
            logger.error(f"Error fetching user info: {e.message}")
            return web.json_response({"error": "Failed to fetch user information"}, status=500)

        if not wallet:
            return web.json_response(
                {
                    "platform": platform,
                    "username": username,
                    "message": "No wallet found for this user",
                    "hasWallet": False,
                },
                status=404,
            )
        return web.json_response(
            {"platform": platform, "username": username, "walletAddress": wallet, "hasWallet": True}
        )

    async def handle_connect_wallet(self, request: web.Request) -> web.Response:
        try:
            body = await _read_json(request)
            user_id = body.get("userId")
            address = body.get("walletAddress")
            if not user_id or not address:
                return web.json_response({"error": "Missing userId or walletAddress"}, status=400)
            identity = _identity(body.get("platform") or "", str(user_id))
            address = validate_wallet_address(str(address))
        except ValidationError as e:
            return web.json_response({"error": e.message}, status=400)

        try:
            existing = await self.orchestrator.resolve_wallet(identity)
            if existing:
                return web.json_response(
                    {"error": "User already has a connected wallet", "walletAddress": existing},
                    status=409,
                )
            linked = await self.orchestrator.link_wallet(identity, address)
        except TipBotError as e:
            logger.error(f"Error connecting wallet: {e.message}")
            return web.json_response({"error": "Failed to connect wallet"}, status=500)

        if not linked:
            return web.json_response({"error": "Failed to connect wallet"}, status=500)
        return web.json_response(
            {
                "userId": identity.handle,
                "platform": identity.platform.value,
                "walletAddress": address,
                "message": "Successfully connected wallet",
            },
            status=201,
        )

    async def handle_create_wallet(self, request: web.Request) -> web.Response:
        try:
            body = await _read_json(request)
            user_id = body.get("userId")
            if not user_id:
                return web.json_response({"error": "Missing userId"}, status=400)
            identity = _identity(body.get("platform") or "", str(user_id))
        except ValidationError as e:
            return web.json_response({"error": e.message}, status=400)

        try:
            wallet, created = await self.orchestrator.ensure_wallet(identity)
        except TipBotError as e:
            logger.error(f"Error creating wallet: {e.message}")
            return web.json_response({"error": "Failed to create wallet"}, status=500)

        if not created:
            return web.json_response(
                {"error": "User already has a wallet", "walletAddress": wallet}, status=409
            )
        return web.json_response(
            {
                "userId": identity.handle,
                "platform": identity.platform.value,
                "walletAddress": wallet,
                "message": "Successfully created new wallet",
            },
            status=201,
        )
