"""
Command Normalizer.
Turns raw chat text into a keyword plus positional arguments.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .config import TipBotConfig
from .contract import ChatPlatform


@dataclass(frozen=True)
class ParsedCommand:
    keyword: str
    args: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.keyword


NO_COMMAND = ParsedCommand(keyword="")


class MentionFilter:
    """
    Bot mention forms for every platform.

    Mentions of any platform are stripped regardless of where the message
    arrived, so a copy-pasted Discord mention in a Telegram message never ends
    up as an argument.
    """

    def __init__(
        self,
        twitter_username: Optional[str] = None,
        telegram_username: Optional[str] = None,
        discord_bot_id: Optional[str] = None,
    ):
        forms: List[str] = []
        for username in (twitter_username, telegram_username):
            username = (username or "").strip().lstrip("@")
            if username:
                forms.append(f"@{username}".lower())
        discord_bot_id = (discord_bot_id or "").strip()
        if discord_bot_id:
            # Plain and nickname mention syntax.
            forms.append(f"<@{discord_bot_id}>")
            forms.append(f"<@!{discord_bot_id}>")
        self.forms = tuple(forms)

    @classmethod
    def from_config(cls, config: TipBotConfig) -> "MentionFilter":
        return cls(
            twitter_username=config.twitter_bot_username,
            telegram_username=config.telegram_bot_username,
            discord_bot_id=config.discord_bot_id,
        )

    def add_discord_id(self, bot_id: Optional[str]) -> None:
        """Register a bot id learned at runtime (gateway READY). Idempotent."""
        bot_id = (bot_id or "").strip()
        if not bot_id:
            return
        new_forms = [f for f in (f"<@{bot_id}>", f"<@!{bot_id}>") if f not in self.forms]
        if new_forms:
            self.forms = self.forms + tuple(new_forms)

    def is_mention(self, token: str) -> bool:
        lowered = token.lower()
        return any(form in lowered for form in self.forms)

    def strip_command_suffix(self, token: str) -> str:
        """`/balance@MyBot` -> `/balance` when the suffix is one of our mentions."""
        if not token.startswith("/") or "@" not in token:
            return token
        command, _, suffix = token.partition("@")
        if command and self.is_mention(f"@{suffix}"):
            return command
        return token


def normalize(
    raw_text: str, platform: ChatPlatform, mentions: MentionFilter
) -> ParsedCommand:
    """
    Tokenize on whitespace, drop bot mentions, extract the keyword.

    Returns NO_COMMAND when nothing is left after filtering. `platform` is
    accepted for symmetry with the transports; filtering covers every platform.
    """
    tokens: Iterable[str] = (raw_text or "").split()
    words = []
    for token in tokens:
        token = mentions.strip_command_suffix(token)
        if mentions.is_mention(token):
            continue
        token = token.strip()
        if token:
            words.append(token)

    if not words:
        return NO_COMMAND

    keyword = words[0]
    if keyword.startswith("/"):
        keyword = keyword[1:]
    keyword = keyword.lower()
    if not keyword:
        return NO_COMMAND

    return ParsedCommand(keyword=keyword, args=tuple(words[1:]))
