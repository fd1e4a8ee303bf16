"""Roster of Telegram chats that receive stream notifications."""

from dataclasses import dataclass
from typing import Protocol


class ChatRepository(Protocol):
    """Persistence interface for subscribed chats."""

    def list_chat_ids(self) -> list[int]:
        """Return every subscribed chat id."""

    def add_chat(self, chat_id: int) -> bool:
        """Subscribe a chat; return False when it was already subscribed."""

    def remove_chat(self, chat_id: int) -> bool:
        """Unsubscribe a chat; return False when it was not subscribed."""


@dataclass
class SubscriptionService:
    """Application service for notification subscriptions."""

    repository: ChatRepository

    def subscribe(self, chat_id: int) -> bool:
        """Add a chat to the roster."""
        return self.repository.add_chat(chat_id)

    def unsubscribe(self, chat_id: int) -> bool:
        """Remove a chat from the roster."""
        return self.repository.remove_chat(chat_id)

    def chat_ids(self) -> list[int]:
        """Return the chats to notify."""
        return self.repository.list_chat_ids()
