"""Stream lifecycle notifications delivered through Telegram."""

import html
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from rtmp_monitor.adapters.telegram_client import TelegramClient
from rtmp_monitor.domain.metrics import MetricSample, StreamInfo
from rtmp_monitor.services.subscriptions import SubscriptionService

_logger = logging.getLogger(__name__)

_FORBIDDEN = 403


class Notifier(Protocol):
    """Receiver of structured lifecycle and alert events."""

    async def stream_started(self, stream_key: str, info: StreamInfo) -> None:
        """A stream went live."""

    async def stream_ended(
        self, stream_key: str, duration: float, final_sample: MetricSample | None
    ) -> None:
        """A stream stopped publishing."""

    async def low_bitrate_alert(self, stream_key: str, bitrate: int) -> None:
        """A sample reported a video bitrate below the threshold."""

    async def forwarding_started(
        self, destination_id: int, destination_url: str, destination_key: str
    ) -> None:
        """A relay subprocess started."""

    async def forwarding_stopped(
        self, destination_id: int, destination_url: str, destination_key: str
    ) -> None:
        """A relay was stopped on request."""

    async def forwarding_ended(
        self, destination_id: int, destination_url: str, destination_key: str
    ) -> None:
        """A relay ended on its own or with its session."""

    async def forwarding_error(
        self,
        destination_id: int,
        destination_url: str,
        destination_key: str,
        error: str,
    ) -> None:
        """A relay subprocess failed."""


@dataclass
class TelegramNotifier(Notifier):
    """Formats events as HTML messages and sends them to every subscribed chat."""

    telegram_client: TelegramClient
    subscriptions: SubscriptionService
    low_bitrate_threshold: int

    async def stream_started(self, stream_key: str, info: StreamInfo) -> None:
        await self._broadcast(
            "🎥 <b>Stream Started</b>\n\n"
            f"Stream key: <code>{_e(stream_key)}</code>\n\n"
            "<b>Stream Information:</b>\n"
            f"• Resolution: <code>{_e(info.resolution)}</code>\n"
            f"• Video Codec: <code>{_e(info.video_codec)}</code>\n"
            f"• Audio Codec: <code>{_e(info.audio_codec)}</code>\n"
            f"• Video Bitrate: <code>{format_bitrate(info.video_bitrate)}</code>\n"
            f"• Audio Bitrate: <code>{format_bitrate(info.audio_bitrate)}</code>\n"
            f"• Total Bitrate: <code>{format_bitrate(info.total_bitrate)}</code>"
        )

    async def stream_ended(
        self, stream_key: str, duration: float, final_sample: MetricSample | None
    ) -> None:
        text = (
            "🛑 <b>Stream Ended</b>\n\n"
            f"Stream key: <code>{_e(stream_key)}</code>\n"
            f"Duration: {format_duration(duration)}"
        )
        if final_sample is not None:
            text += (
                "\n\n<b>Final Stream Metrics:</b>\n"
                f"• Resolution: <code>{_e(final_sample.resolution)}</code>\n"
                f"• Video Codec: <code>{_e(final_sample.video_codec)}</code>\n"
                f"• Audio Codec: <code>{_e(final_sample.audio_codec)}</code>\n"
                "• Video Bitrate: "
                f"<code>{format_bitrate(final_sample.video_bitrate)}</code>\n"
                "• Audio Bitrate: "
                f"<code>{format_bitrate(final_sample.audio_bitrate)}</code>\n"
                "• Total Bitrate: "
                f"<code>{format_bitrate(final_sample.total_bitrate)}</code>"
            )
        await self._broadcast(text)

    async def low_bitrate_alert(self, stream_key: str, bitrate: int) -> None:
        await self._broadcast(
            "⚠️ <b>Low Bitrate Alert</b>\n\n"
            f"Stream key: <code>{_e(stream_key)}</code>\n"
            f"Current bitrate: <code>{format_bitrate(bitrate)}</code>\n"
            f"Threshold: <code>{format_bitrate(self.low_bitrate_threshold)}</code>"
        )

    async def forwarding_started(
        self, destination_id: int, destination_url: str, destination_key: str
    ) -> None:
        await self._broadcast(
            _destination_message(
                "▶️ <b>Forwarding Started</b>",
                destination_id,
                destination_url,
                destination_key,
            )
        )

    async def forwarding_stopped(
        self, destination_id: int, destination_url: str, destination_key: str
    ) -> None:
        await self._broadcast(
            _destination_message(
                "⏹️ <b>Forwarding Stopped</b>",
                destination_id,
                destination_url,
                destination_key,
            )
        )

    async def forwarding_ended(
        self, destination_id: int, destination_url: str, destination_key: str
    ) -> None:
        await self._broadcast(
            _destination_message(
                "⏹️ <b>Forwarding Ended</b>",
                destination_id,
                destination_url,
                destination_key,
            )
        )

    async def forwarding_error(
        self,
        destination_id: int,
        destination_url: str,
        destination_key: str,
        error: str,
    ) -> None:
        text = _destination_message(
            "❌ <b>Forwarding Error</b>",
            destination_id,
            destination_url,
            destination_key,
        )
        await self._broadcast(f"{text}\n<b>Error:</b> <code>{_e(error)}</code>")

    async def _broadcast(self, text: str) -> None:
        for chat_id in self.subscriptions.chat_ids():
            try:
                await self.telegram_client.send_message(
                    chat_id=chat_id, text=text, parse_mode="HTML"
                )
            except httpx.HTTPStatusError as exc:
                _logger.warning(
                    "Error sending message to chat %s: %s",
                    chat_id,
                    exc.response.status_code,
                )
                if exc.response.status_code == _FORBIDDEN:
                    self.subscriptions.unsubscribe(chat_id)
            except httpx.HTTPError:
                _logger.exception("Error sending message to chat %s", chat_id)


def format_bitrate(bitrate: int) -> str:
    """Render bits per second as megabits, or N/A when unknown."""
    if not bitrate:
        return "N/A"
    return f"{bitrate / 1_000_000:.2f} Mbps"


def format_duration(seconds: float) -> str:
    """Render a duration as HH:MM:SS."""
    total = max(int(seconds), 0)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def _destination_message(
    title: str, destination_id: int, destination_url: str, destination_key: str
) -> str:
    return (
        f"{title}\n\n"
        f"<b>Destination:</b> {destination_id + 1}\n"
        f"<b>RTMP URL:</b> <code>{_e(destination_url)}</code>\n"
        f"<b>RTMP Key:</b> <code>{_e(destination_key)}</code>"
    )


def _e(value: str) -> str:
    return html.escape(value, quote=False)
