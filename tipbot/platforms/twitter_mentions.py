"""
Twitter Mentions Transport.
Polls the API v2 mentions timeline and replies in-thread.

Everything on Twitter is public, so events are never private.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from ..config import TipBotConfig
from ..contract import ChatPlatform, CommandReply, InboundEvent, Transport
from ..router import CommandRouter
from ..state import TransportState

logger = logging.getLogger(__name__)

API_BASE = "https://api.twitter.com/2"
MAX_TWEET_LENGTH = 280


class TwitterMentions(Transport):
    platform = ChatPlatform.TWITTER

    def __init__(
        self,
        config: TipBotConfig,
        router: CommandRouter,
        state: Optional[TransportState] = None,
    ):
        self.config = config
        self.router = router
        self.state_store = state or TransportState(path=config.state_path)
        self.token = config.twitter_access_token
        self.user_id = config.twitter_user_id
        self.since_id: Optional[str] = self.state_store.get_cursor("twitter", None)
        self.session = None

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}

    async def start(self):
        if not self.token or not self.user_id:
            logger.warning("Twitter access token or user id not configured. Skipping.")
            return

        logger.info(f"Starting Twitter mentions polling (since_id={self.since_id})...")
        async with aiohttp.ClientSession() as self.session:
            while True:
                try:
                    await self._poll_once()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error(f"Twitter poll error: {e}")
                await asyncio.sleep(self.config.twitter_poll_interval_sec)

    async def _poll_once(self):
        params = {
            "expansions": "author_id",
            "user.fields": "username",
            "max_results": 20,
        }
        if self.since_id:
            params["since_id"] = self.since_id

        url = f"{API_BASE}/users/{self.user_id}/mentions"
        async with self.session.get(url, headers=self._headers, params=params) as resp:
            if resp.status == 429:
                logger.warning("Twitter rate limit hit; waiting for next poll")
                return
            if resp.status != 200:
                logger.error(f"Twitter API Error {resp.status}: {await resp.text()}")
                return
            data = await resp.json()

        users = {u["id"]: u.get("username") for u in data.get("includes", {}).get("users", [])}
        # Oldest first so replies follow conversation order.
        for tweet in reversed(data.get("data", [])):
            await self._process_tweet(tweet, users)
            self.since_id = tweet["id"]
            self.state_store.set_cursor("twitter", self.since_id)

    async def _process_tweet(self, tweet: dict, users: dict):
        author_id = tweet.get("author_id")
        if author_id == self.user_id:
            return
        username = users.get(author_id) or str(author_id)

        event = InboundEvent(
            raw_text=tweet.get("text", ""),
            platform=ChatPlatform.TWITTER,
            sender_handle=username,
            is_private_channel=False,
        )
        try:
            reply = await self.router.handle(event)
        except Exception as e:
            logger.exception(f"Error processing Twitter command: {e}")
            reply = CommandReply(text="Sorry, something went wrong processing your request.")
        await self.send_message(tweet["id"], f"@{username} {reply.text}")

    async def send_message(self, channel_id: str, text: str) -> Optional[str]:
        """Reply to the tweet `channel_id`."""
        if not self.session:
            return None
        if len(text) > MAX_TWEET_LENGTH:
            text = text[: MAX_TWEET_LENGTH - 3] + "..."
        payload = {"text": text, "reply": {"in_reply_to_tweet_id": channel_id}}
        try:
            async with self.session.post(
                f"{API_BASE}/tweets", headers=self._headers, json=payload
            ) as r:
                if r.status not in (200, 201):
                    logger.error(f"Twitter reply failed: {r.status} {await r.text()}")
                    return None
                data = await r.json()
                return (data.get("data") or {}).get("id")
        except aiohttp.ClientError as e:
            logger.error(f"Twitter reply error: {e}")
            return None
