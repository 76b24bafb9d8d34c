"""
Transport State.
JSON persistence for per-platform polling cursors (Telegram offset, Twitter since_id).
"""

import json
import logging
import os
from typing import Dict, Optional

logger = logging.getLogger(__name__)

STATE_FILE = "tipbot_state.json"


class TransportState:
    def __init__(self, path: Optional[str] = None):
        self.path = path or STATE_FILE
        self.data: Dict = {}
        self._load()

    def _load(self):
        if os.path.exists(self.path):
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    self.data = json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load state from {self.path}: {e}")
                self.data = {}

    def save(self):
        try:
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self.data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save state to {self.path}: {e}")

    def get_cursor(self, platform: str, default=0):
        return self.data.get(f"{platform}_cursor", default)

    def set_cursor(self, platform: str, cursor):
        self.data[f"{platform}_cursor"] = cursor
        self.save()
