"""
Discord Gateway Transport.
WebSocket connection to the Discord Gateway (simplified) with REST replies.

Guild messages are handled only when they mention the bot; DMs are always
handled. Discord never qualifies for private key export.
"""

import asyncio
import json
import logging
from typing import Optional

import aiohttp

from ..config import TipBotConfig
from ..contract import ChatPlatform, CommandReply, InboundEvent, Transport
from ..redaction import RedactionScheduler
from ..router import CommandRouter

logger = logging.getLogger(__name__)

API_BASE = "https://discord.com/api/v10"
MAX_MESSAGE_LENGTH = 1900


class DiscordGateway(Transport):
    platform = ChatPlatform.DISCORD

    GATEWAY_URL = "wss://gateway.discord.gg/?v=10&encoding=json"
    # DMs need DIRECT_MESSAGES; without it READY arrives but DM MESSAGE_CREATE never does.
    _INTENT_GUILD_MESSAGES = 1 << 9
    _INTENT_DIRECT_MESSAGES = 1 << 12
    _INTENT_MESSAGE_CONTENT = 1 << 15
    _INTENTS_DEFAULT = (
        _INTENT_GUILD_MESSAGES | _INTENT_DIRECT_MESSAGES | _INTENT_MESSAGE_CONTENT
    )

    def __init__(
        self, config: TipBotConfig, router: CommandRouter, redactor: RedactionScheduler
    ):
        self.config = config
        self.router = router
        self.redactor = redactor
        self.token = config.discord_bot_token
        self.session = None
        self.ws = None
        self.heartbeat_interval = 41.25
        self._seq = None
        self._user_id = config.discord_bot_id

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bot {self.token}", "Content-Type": "application/json"}

    async def start(self):
        if not self.token:
            logger.warning("Discord token not configured. Skipping.")
            return

        logger.info("Starting Discord Gateway...")
        async with aiohttp.ClientSession() as self.session:
            while True:
                try:
                    await self._connect()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error(f"Discord gateway error: {e}")
                    await asyncio.sleep(5)

    async def _connect(self):
        async with self.session.ws_connect(self.GATEWAY_URL) as ws:
            self.ws = ws
            heartbeat_task = asyncio.create_task(self._heartbeat_loop())

            try:
                await self._send_identify()

                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        data = json.loads(msg.data)
                        if data.get("s") is not None:
                            self._seq = data["s"]
                        op = data.get("op")
                        t = data.get("t")

                        if op == 10:  # Hello
                            self.heartbeat_interval = data["d"]["heartbeat_interval"] / 1000
                        elif op == 0:  # Dispatch
                            if t == "READY":
                                self._learn_user_id(data["d"]["user"]["id"])
                                logger.info(f"Discord Connected as {data['d']['user']['username']}")
                            elif t == "MESSAGE_CREATE":
                                await self._process_message(data["d"])

                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        break
            finally:
                heartbeat_task.cancel()

    async def _heartbeat_loop(self):
        try:
            while True:
                await asyncio.sleep(self.heartbeat_interval)
                if self.ws and not self.ws.closed:
                    await self.ws.send_json({"op": 1, "d": self._seq})
        except asyncio.CancelledError:
            pass

    async def _send_identify(self):
        payload = {
            "op": 2,
            "d": {
                "token": self.token,
                # Requires "Message Content Intent" enabled in the Developer Portal.
                "intents": self._INTENTS_DEFAULT,
                "properties": {
                    "os": "linux",
                    "browser": "soltip-connector",
                    "device": "soltip-connector",
                },
            },
        }
        await self.ws.send_json(payload)

    def _learn_user_id(self, user_id: str):
        self._user_id = user_id
        # Mentions of the bot must be stripped before the command is parsed.
        self.router.mentions.add_discord_id(user_id)

    def _mentions_bot(self, message: dict) -> bool:
        if not self._user_id:
            return False
        return any(m.get("id") == self._user_id for m in message.get("mentions", []))

    async def _process_message(self, message: dict):
        author = message.get("author", {})
        if author.get("bot"):
            return

        is_dm = not message.get("guild_id")
        if not is_dm and not self._mentions_bot(message):
            return
        if self._user_id:
            self.router.mentions.add_discord_id(self._user_id)

        content = message.get("content", "")
        if not content:
            if self.config.debug:
                logger.info("Discord message ignored (empty content). Is Message Content Intent enabled?")
            return

        channel_id = str(message.get("channel_id"))
        event = InboundEvent(
            raw_text=content,
            platform=ChatPlatform.DISCORD,
            sender_handle=author.get("username", "unknown"),
            is_private_channel=is_dm,
        )

        try:
            reply = await self.router.handle(event)
        except Exception as e:
            logger.exception(f"Error handling discord command: {e}")
            reply = CommandReply(text="Sorry, something went wrong processing your request.")
        await self.deliver(channel_id, reply, reply_to=message.get("id"))

    async def deliver(self, channel_id: str, reply: CommandReply, reply_to: Optional[str] = None):
        message_id = await self.send_message(channel_id, reply.text, reply_to=reply_to)
        if reply.auto_delete_after_sec and message_id:
            self.redactor.schedule(self, channel_id, message_id, reply.auto_delete_after_sec)

    async def send_message(
        self, channel_id: str, text: str, reply_to: Optional[str] = None
    ) -> Optional[str]:
        if not self.session:
            return None

        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[:MAX_MESSAGE_LENGTH] + "\n...(truncated)"
        payload = {"content": text}
        if reply_to:
            payload["message_reference"] = {"message_id": reply_to}

        url = f"{API_BASE}/channels/{channel_id}/messages"
        retries = 3
        while retries > 0:
            async with self.session.post(url, headers=self._headers, json=payload) as r:
                if r.status == 429:  # Too Many Requests
                    try:
                        retry_after = float((await r.json()).get("retry_after", 1))
                    except (aiohttp.ContentTypeError, ValueError):
                        retry_after = 1.0
                    logger.warning(f"Discord 429 Rate Limit. Sleeping {retry_after}s")
                    await asyncio.sleep(retry_after)
                    retries -= 1
                    continue

                if r.status not in (200, 201):
                    logger.error(f"Failed to send Discord msg: {r.status} {await r.text()}")
                    return None
                data = await r.json()
                return str(data["id"]) if "id" in data else None
        return None

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        if not self.session:
            return False
        url = f"{API_BASE}/channels/{channel_id}/messages/{message_id}"
        async with self.session.delete(url, headers=self._headers) as r:
            if r.status not in (200, 204):
                logger.error(f"Discord delete failed: {r.status} {await r.text()}")
                return False
            return True
