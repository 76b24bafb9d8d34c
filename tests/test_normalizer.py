"""
Unit Tests for the Command Normalizer.
"""
import unittest

from tipbot.config import TipBotConfig
from tipbot.contract import ChatPlatform
from tipbot.normalizer import NO_COMMAND, MentionFilter, ParsedCommand, normalize


class TestMentionFilter(unittest.TestCase):
    def setUp(self):
        self.mentions = MentionFilter(
            twitter_username="SolTipBot",
            telegram_username="@soltip_bot",
            discord_bot_id="123456",
        )

    def test_forms(self):
        self.assertIn("@soltipbot", self.mentions.forms)
        self.assertIn("@soltip_bot", self.mentions.forms)
        self.assertIn("<@123456>", self.mentions.forms)
        self.assertIn("<@!123456>", self.mentions.forms)

    def test_unconfigured_identities_produce_no_forms(self):
        empty = MentionFilter()
        self.assertEqual(empty.forms, ())
        self.assertFalse(empty.is_mention("@anyone"))

    def test_is_mention_case_insensitive(self):
        self.assertTrue(self.mentions.is_mention("@SOLTIPBOT"))
        self.assertTrue(self.mentions.is_mention("<@!123456>"))
        self.assertFalse(self.mentions.is_mention("@alice"))

    def test_strip_command_suffix(self):
        self.assertEqual(self.mentions.strip_command_suffix("/balance@soltip_bot"), "/balance")
        # Someone else's bot is left alone.
        self.assertEqual(
            self.mentions.strip_command_suffix("/balance@other_bot"), "/balance@other_bot"
        )
        self.assertEqual(self.mentions.strip_command_suffix("send"), "send")

    def test_add_discord_id_at_runtime(self):
        mentions = MentionFilter()
        mentions.add_discord_id("999")
        mentions.add_discord_id("999")
        mentions.add_discord_id(None)
        self.assertEqual(mentions.forms, ("<@999>", "<@!999>"))
        parsed = normalize("<@999> balance", ChatPlatform.DISCORD, mentions)
        self.assertEqual(parsed, ParsedCommand(keyword="balance"))

    def test_from_config(self):
        config = TipBotConfig()
        config.telegram_bot_username = "tg_bot"
        mentions = MentionFilter.from_config(config)
        self.assertEqual(mentions.forms, ("@tg_bot",))


class TestNormalize(unittest.TestCase):
    def setUp(self):
        self.mentions = MentionFilter(
            twitter_username="BotMention", discord_bot_id="42"
        )

    def test_mention_before_command(self):
        parsed = normalize("@BotMention send @alice 2 SOL", ChatPlatform.TWITTER, self.mentions)
        self.assertEqual(parsed, ParsedCommand(keyword="send", args=("@alice", "2", "SOL")))

    def test_output_never_contains_bot_mentions(self):
        parsed = normalize(
            "<@42> tip <@!42> @bob 1 @botmention", ChatPlatform.DISCORD, self.mentions
        )
        self.assertEqual(parsed.keyword, "tip")
        self.assertEqual(parsed.args, ("@bob", "1"))
        for arg in parsed.args:
            self.assertFalse(self.mentions.is_mention(arg))

    def test_recipient_mentions_are_kept(self):
        parsed = normalize("send @alice 1", ChatPlatform.TELEGRAM, self.mentions)
        self.assertEqual(parsed.args[0], "@alice")

    def test_leading_slash_and_case(self):
        parsed = normalize("/BALANCE", ChatPlatform.TELEGRAM, self.mentions)
        self.assertEqual(parsed.keyword, "balance")
        self.assertEqual(parsed.args, ())

    def test_telegram_command_suffix(self):
        mentions = MentionFilter(telegram_username="soltip_bot")
        parsed = normalize("/help@soltip_bot", ChatPlatform.TELEGRAM, mentions)
        self.assertEqual(parsed.keyword, "help")

    def test_arguments_keep_their_case(self):
        parsed = normalize(
            "connect 7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU",
            ChatPlatform.TELEGRAM,
            self.mentions,
        )
        self.assertEqual(parsed.args, ("7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU",))

    def test_whitespace_collapsed(self):
        parsed = normalize("  send\t@alice \n 3  ", ChatPlatform.TELEGRAM, self.mentions)
        self.assertEqual(parsed, ParsedCommand(keyword="send", args=("@alice", "3")))

    def test_empty_inputs(self):
        self.assertIs(normalize("", ChatPlatform.TELEGRAM, self.mentions), NO_COMMAND)
        self.assertIs(normalize("   ", ChatPlatform.TELEGRAM, self.mentions), NO_COMMAND)
        self.assertIs(normalize("@BotMention", ChatPlatform.TWITTER, self.mentions), NO_COMMAND)
        self.assertIs(normalize("/", ChatPlatform.TELEGRAM, self.mentions), NO_COMMAND)
        self.assertTrue(NO_COMMAND.is_empty)


if __name__ == "__main__":
    unittest.main()
