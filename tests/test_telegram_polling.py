"""
Unit Tests for the Telegram polling transport.
"""
import unittest
from unittest.mock import AsyncMock, MagicMock

from tipbot.config import TipBotConfig
from tipbot.contract import ChatPlatform, CommandReply
from tipbot.platforms.telegram_polling import TelegramPolling


def make_response(status=200, payload=None):
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload or {})
    resp.text = AsyncMock(return_value="")
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=resp)
    ctx.__aexit__ = AsyncMock(return_value=None)
    return ctx


class TestTelegramPolling(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.config = TipBotConfig()
        self.config.telegram_bot_token = "tg-token"
        self.router = MagicMock()
        self.router.handle = AsyncMock(return_value=CommandReply(text="pong"))
        self.redactor = MagicMock()
        self.state = MagicMock()
        self.state.get_cursor.return_value = 10
        self.transport = TelegramPolling(self.config, self.router, self.redactor, self.state)
        self.transport.session = MagicMock()
        self.transport.session.post.return_value = make_response(
            payload={"ok": True, "result": {"message_id": 77}}
        )

    def _update(self, text="balance", chat_type="private", is_bot=False, username="bob"):
        return {
            "update_id": 10,
            "message": {
                "message_id": 5,
                "text": text,
                "chat": {"id": 1001, "type": chat_type},
                "from": {"id": 555, "is_bot": is_bot, "username": username},
            },
        }

    async def test_private_chat_event(self):
        await self.transport._process_update(self._update())

        event = self.router.handle.call_args[0][0]
        self.assertEqual(event.platform, ChatPlatform.TELEGRAM)
        self.assertEqual(event.sender_handle, "bob")
        self.assertTrue(event.is_private_channel)

        url = self.transport.session.post.call_args[0][0]
        self.assertTrue(url.endswith("/sendMessage"))
        payload = self.transport.session.post.call_args[1]["json"]
        self.assertEqual(payload, {"chat_id": "1001", "text": "pong", "reply_to_message_id": 5})
        self.redactor.schedule.assert_not_called()

    async def test_group_chat_is_not_private(self):
        await self.transport._process_update(self._update(chat_type="supergroup"))
        event = self.router.handle.call_args[0][0]
        self.assertFalse(event.is_private_channel)

    async def test_numeric_id_without_username(self):
        await self.transport._process_update(self._update(username=None))
        self.assertEqual(self.router.handle.call_args[0][0].sender_handle, "555")

    async def test_bots_are_ignored(self):
        await self.transport._process_update(self._update(is_bot=True))
        self.router.handle.assert_not_called()

    async def test_secret_reply_is_scheduled_for_deletion(self):
        self.router.handle.return_value = CommandReply(text="secret", auto_delete_after_sec=60)
        await self.transport._process_update(self._update())
        self.redactor.schedule.assert_called_once_with(self.transport, "1001", "77", 60)

    async def test_poll_once_advances_offset(self):
        self.transport.session.get.return_value = make_response(
            payload={"ok": True, "result": [self._update()]}
        )
        await self.transport._poll_once()
        self.assertEqual(self.transport.offset, 11)
        self.state.set_cursor.assert_called_with("telegram", 11)
        self.router.handle.assert_awaited_once()

    async def test_delete_message(self):
        self.transport.session.post.return_value = make_response(payload={"ok": True})
        self.assertTrue(await self.transport.delete_message("1001", "77"))
        url = self.transport.session.post.call_args[0][0]
        self.assertTrue(url.endswith("/deleteMessage"))
        self.assertEqual(
            self.transport.session.post.call_args[1]["json"], {"chat_id": "1001", "message_id": 77}
        )

    async def test_long_messages_are_truncated(self):
        await self.transport.send_message("1001", "x" * 5000)
        text = self.transport.session.post.call_args[1]["json"]["text"]
        self.assertEqual(len(text), 4096)


if __name__ == "__main__":
    unittest.main()
