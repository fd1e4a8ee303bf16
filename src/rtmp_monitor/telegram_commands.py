"""Telegram bot command configuration."""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class TelegramCommand:
    """Declarative bot command definition."""

    command: str
    description: str


class BotCommand(Enum):
    """Enum of bot commands (single source of truth)."""

    START = TelegramCommand("start", "Receive stream notifications")
    STOP = TelegramCommand("stop", "Stop receiving stream notifications")
    STREAMS = TelegramCommand("streams", "List live streams")

    @classmethod
    def from_text(cls, text: str) -> "BotCommand | None":
        """Match ``/command`` or ``/command@botname`` at the start of a message."""
        if not text.startswith("/"):
            return None
        word = text[1:].split(maxsplit=1)[0] if len(text) > 1 else ""
        name = word.split("@", maxsplit=1)[0].lower()
        for entry in cls:
            if entry.value.command == name:
                return entry
        return None


def telegram_commands() -> list[dict[str, str]]:
    """Return commands formatted for Telegram API."""
    return [
        {"command": entry.value.command, "description": entry.value.description}
        for entry in BotCommand
    ]


CHAT_MENU_BUTTON: dict[str, object] = {"type": "commands"}
