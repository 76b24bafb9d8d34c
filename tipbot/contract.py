"""
Connector Contract.
Shared data models passed between transports and the command core.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ChatPlatform(str, Enum):
    TWITTER = "twitter"
    TELEGRAM = "telegram"
    DISCORD = "discord"

    @classmethod
    def parse(cls, value: str) -> "ChatPlatform":
        """Case-insensitive lookup. Raises ValueError for unknown platforms."""
        return cls((value or "").strip().lower())


@dataclass(frozen=True)
class UserIdentity:
    platform: ChatPlatform
    handle: str

    @property
    def key(self):
        return (self.platform.value, self.handle)


@dataclass
class InboundEvent:
    """Transport-neutral inbound message."""

    raw_text: str
    platform: ChatPlatform
    sender_handle: str
    is_private_channel: bool = False

    @property
    def sender(self) -> UserIdentity:
        return UserIdentity(self.platform, self.sender_handle)


@dataclass
class CommandReply:
    text: str
    # Set only for replies carrying secrets; the transport deletes the message after this delay.
    auto_delete_after_sec: Optional[int] = None


class Transport:
    """Base class for chat transports."""

    platform: ChatPlatform

    async def start(self):
        """Start the platform connection/polling."""
        pass

    async def stop(self):
        pass

    async def send_message(self, channel_id: str, text: str) -> Optional[str]:
        """Send a text message. Returns the platform message id when known."""
        return None

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        """Delete a message previously sent by the bot."""
        return False
