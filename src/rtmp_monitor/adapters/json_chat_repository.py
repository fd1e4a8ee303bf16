"""JSON-file backed chat roster."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from rtmp_monitor.services.subscriptions import ChatRepository

_logger = logging.getLogger(__name__)


@dataclass
class JsonChatRepository(ChatRepository):
    """Keeps subscribed chat ids in a small JSON array on disk."""

    path: Path
    _chat_ids: set[int] | None = field(default=None, init=False)

    def list_chat_ids(self) -> list[int]:
        return sorted(self._load())

    def add_chat(self, chat_id: int) -> bool:
        chat_ids = self._load()
        if chat_id in chat_ids:
            return False
        chat_ids.add(chat_id)
        self._save(chat_ids)
        return True

    def remove_chat(self, chat_id: int) -> bool:
        chat_ids = self._load()
        if chat_id not in chat_ids:
            return False
        chat_ids.discard(chat_id)
        self._save(chat_ids)
        return True

    def _load(self) -> set[int]:
        if self._chat_ids is not None:
            return self._chat_ids
        self._chat_ids = set()
        if self.path.exists():
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                self._chat_ids = {int(value) for value in raw}
            except (OSError, TypeError, ValueError):
                _logger.exception("Error loading chat ids from %s", self.path)
        return self._chat_ids

    def _save(self, chat_ids: set[int]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(sorted(chat_ids)), encoding="utf-8")
        except OSError:
            _logger.exception("Error saving chat ids to %s", self.path)
