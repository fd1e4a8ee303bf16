"""Command handlers for Telegram updates."""

from dataclasses import dataclass

from rtmp_monitor.adapters.telegram_client import TelegramClient
from rtmp_monitor.services.notifications import format_bitrate, format_duration
from rtmp_monitor.services.orchestrator import StreamOrchestrator
from rtmp_monitor.services.session_table import utc_now
from rtmp_monitor.services.subscriptions import SubscriptionService
from rtmp_monitor.telegram_commands import BotCommand


@dataclass
class BotCommandHandler:
    """Handle the /start, /stop and /streams Telegram commands."""

    subscription_service: SubscriptionService
    orchestrator: StreamOrchestrator
    telegram_client: TelegramClient

    async def handle(self, command: BotCommand, chat_id: int) -> None:
        """Run a bot command on behalf of a chat and reply to it."""
        if command is BotCommand.START:
            self.subscription_service.subscribe(chat_id)
            text = "Welcome! You will now receive RTMP stream notifications."
        elif command is BotCommand.STOP:
            if self.subscription_service.unsubscribe(chat_id):
                text = "You will no longer receive stream notifications."
            else:
                text = "This chat is not subscribed."
        else:
            text = await self._live_streams()
        await self.telegram_client.send_message(chat_id=chat_id, text=text)

    async def _live_streams(self) -> str:
        sessions = await self.orchestrator.sessions()
        if not sessions:
            return "No live streams."
        now = utc_now()
        lines = ["Live streams:"]
        for session in sorted(sessions, key=lambda item: item.started_at):
            uptime = format_duration((now - session.started_at).total_seconds())
            line = f"• {session.stream_key} (up {uptime}"
            if session.latest_metric is not None:
                bitrate = format_bitrate(session.latest_metric.video_bitrate)
                line += f", video {bitrate}"
            if session.forward_targets:
                line += f", {len(session.forward_targets)} forwarding"
            lines.append(line + ")")
        return "\n".join(lines)
