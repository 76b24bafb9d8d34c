"""
Telegram Polling Transport.
Long-polling implementation for the Telegram Bot API.

The only transport on which private key export is enabled, and only in
one-to-one chats (chat type `private`).
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from ..config import TipBotConfig
from ..contract import ChatPlatform, CommandReply, InboundEvent, Transport
from ..redaction import RedactionScheduler
from ..router import CommandRouter
from ..state import TransportState

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


class TelegramPolling(Transport):
    platform = ChatPlatform.TELEGRAM

    def __init__(
        self,
        config: TipBotConfig,
        router: CommandRouter,
        redactor: RedactionScheduler,
        state: Optional[TransportState] = None,
    ):
        self.config = config
        self.router = router
        self.redactor = redactor
        self.state_store = state or TransportState(path=config.state_path)
        self.token = config.telegram_bot_token
        self.base_url = f"https://api.telegram.org/bot{self.token}"

        self.offset = self.state_store.get_cursor("telegram", 0)
        self.session = None

    async def start(self):
        if not self.token:
            logger.warning("Telegram token not configured. Skipping.")
            return

        logger.info(f"Starting Telegram Polling (offset={self.offset})...")
        async with aiohttp.ClientSession() as self.session:
            while True:
                try:
                    await self._poll_once()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error(f"Telegram poll error: {e}")
                    await asyncio.sleep(5)

    async def _poll_once(self):
        url = f"{self.base_url}/getUpdates"
        params = {"offset": self.offset, "timeout": 30}

        async with self.session.get(url, params=params) as resp:
            if resp.status != 200:
                # Telegram puts actionable details in the body (409 conflict, webhook active).
                try:
                    body = await resp.text()
                except Exception:
                    body = ""
                logger.error(f"Telegram API Error {resp.status}: {body}")
                await asyncio.sleep(5)
                return

            data = await resp.json()
            if not data.get("ok"):
                desc = data.get("description") or data.get("error_code") or "unknown_error"
                logger.warning(f"Telegram API returned ok=false: {desc}")
                return

            for update in data.get("result", []):
                next_offset = update["update_id"] + 1
                if next_offset > self.offset:
                    self.offset = next_offset
                    self.state_store.set_cursor("telegram", self.offset)

                await self._process_update(update)

    async def _process_update(self, update: dict):
        message = update.get("message") or update.get("edited_message")
        if not message or "text" not in message:
            return

        chat = message.get("chat") or {}
        chat_id = chat.get("id")
        from_obj = message.get("from") or {}
        if from_obj.get("is_bot"):
            return
        # Username when set, numeric id otherwise.
        handle = from_obj.get("username") or str(from_obj.get("id", "unknown"))

        event = InboundEvent(
            raw_text=message["text"],
            platform=ChatPlatform.TELEGRAM,
            sender_handle=handle,
            is_private_channel=chat.get("type") == "private",
        )

        try:
            reply = await self.router.handle(event)
        except Exception as e:
            logger.exception(f"Error handling command: {e}")
            reply = CommandReply(text="Sorry, something went wrong processing your request.")
        await self.deliver(str(chat_id), reply, reply_to=message.get("message_id"))

    async def deliver(self, chat_id: str, reply: CommandReply, reply_to: Optional[int] = None):
        message_id = await self.send_message(chat_id, reply.text, reply_to=reply_to)
        if reply.auto_delete_after_sec and message_id:
            self.redactor.schedule(self, chat_id, message_id, reply.auto_delete_after_sec)
        elif reply.auto_delete_after_sec:
            logger.error("Secret reply sent without a message id; it cannot be auto-deleted")

    async def send_message(
        self, channel_id: str, text: str, reply_to: Optional[int] = None
    ) -> Optional[str]:
        if not self.session:
            return None

        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 3] + "..."
        # Plain text only, no parse_mode.
        payload = {"chat_id": channel_id, "text": text}
        if reply_to:
            payload["reply_to_message_id"] = reply_to

        try:
            async with self.session.post(f"{self.base_url}/sendMessage", json=payload) as r:
                if r.status != 200:
                    logger.error(f"Telegram send_message failed: {r.status} {await r.text()}")
                    return None
                data = await r.json()
                result = data.get("result") or {}
                return str(result["message_id"]) if "message_id" in result else None
        except aiohttp.ClientError as e:
            logger.error(f"Telegram send_message error: {e}")
            return None

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        if not self.session:
            return False
        payload = {"chat_id": channel_id, "message_id": int(message_id)}
        async with self.session.post(f"{self.base_url}/deleteMessage", json=payload) as r:
            if r.status != 200:
                logger.error(f"Telegram deleteMessage failed: {r.status} {await r.text()}")
                return False
            data = await r.json()
            return bool(data.get("ok"))
