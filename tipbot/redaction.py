"""
Redaction Scheduler.
Deletes messages that carried a secret after a delay, then leaves a notice.
"""

import asyncio
import logging
from typing import Dict

from .contract import Transport

logger = logging.getLogger(__name__)

REDACTED_NOTICE = "🔒 The message containing your private key was deleted for security."


class RedactionScheduler:
    """
    Best effort: a failed delete is logged and not retried, since the secret
    has already been delivered by then.
    """

    def __init__(self, notice: str = REDACTED_NOTICE):
        self.notice = notice
        self.active: Dict[str, asyncio.Task] = {}

    def schedule(
        self, transport: Transport, channel_id: str, message_id: str, delay_sec: float
    ) -> asyncio.Task:
        key = f"{transport.platform.value}:{channel_id}:{message_id}"
        task = asyncio.create_task(
            self._redact_later(transport, channel_id, message_id, delay_sec)
        )
        self.active[key] = task
        task.add_done_callback(lambda t, k=key: self.active.pop(k, None))
        return task

    async def _redact_later(
        self, transport: Transport, channel_id: str, message_id: str, delay_sec: float
    ):
        await asyncio.sleep(delay_sec)
        try:
            deleted = await transport.delete_message(channel_id, message_id)
        except Exception as e:
            logger.error(
                f"Failed to delete secret message {message_id} on {transport.platform.value}: {e}"
            )
            return
        if not deleted:
            logger.error(
                f"Transport refused to delete secret message {message_id} on {transport.platform.value}"
            )
            return

        try:
            await transport.send_message(channel_id, self.notice)
        except Exception as e:
            logger.warning(f"Redaction notice failed on {transport.platform.value}: {e}")

    async def stop(self):
        tasks = list(self.active.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
