"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from supabase import create_client

from rtmp_monitor.adapters.ffmpeg import FfmpegMediaTool
from rtmp_monitor.adapters.json_chat_repository import JsonChatRepository
from rtmp_monitor.adapters.supabase_chat_repository import SupabaseChatRepository
from rtmp_monitor.adapters.telegram_client import (
    HttpxTelegramClient,
    TelegramClient,
)
from rtmp_monitor.config import Settings
from rtmp_monitor.services.commands import BotCommandHandler
from rtmp_monitor.services.fanout import EventFanout, SubscriberHub
from rtmp_monitor.services.forwarding import ForwardingSupervisor
from rtmp_monitor.services.metrics import MetricsSampler
from rtmp_monitor.services.notifications import TelegramNotifier
from rtmp_monitor.services.orchestrator import StreamOrchestrator
from rtmp_monitor.services.recording import RecordingCatalog, RecordingSupervisor
from rtmp_monitor.services.session_table import SessionTable
from rtmp_monitor.services.subscriptions import ChatRepository, SubscriptionService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    telegram_client: TelegramClient
    subscription_service: SubscriptionService
    subscriber_hub: SubscriberHub
    fanout: EventFanout
    orchestrator: StreamOrchestrator
    recording_catalog: RecordingCatalog
    command_handler: BotCommandHandler
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    recordings_dir = Path(resolved_settings.recordings_dir)
    recordings_dir.mkdir(parents=True, exist_ok=True)

    subscription_service = SubscriptionService(_chat_repository(resolved_settings))
    telegram_client = HttpxTelegramClient.create(resolved_settings.telegram_bot_token)
    notifier = TelegramNotifier(
        telegram_client=telegram_client,
        subscriptions=subscription_service,
        low_bitrate_threshold=resolved_settings.low_bitrate_threshold,
    )
    subscriber_hub = SubscriberHub(queue_size=resolved_settings.subscriber_queue_size)
    fanout = EventFanout(hub=subscriber_hub, notifier=notifier)
    media_tool = FfmpegMediaTool(
        ffmpeg_path=resolved_settings.ffmpeg_path,
        ffprobe_path=resolved_settings.ffprobe_path,
        probe_timeout=resolved_settings.probe_timeout_seconds,
    )
    table = SessionTable(recordings_dir=recordings_dir)
    orchestrator = StreamOrchestrator(
        table=table,
        recording=RecordingSupervisor(
            media_tool=media_tool,
            fanout=fanout,
            pull_base=resolved_settings.rtmp_pull_base,
            stop_timeout=resolved_settings.process_stop_timeout_seconds,
            stop_grace=resolved_settings.recording_stop_grace_seconds,
        ),
        forwarding=ForwardingSupervisor(
            media_tool=media_tool,
            fanout=fanout,
            pull_base=resolved_settings.rtmp_pull_base,
            threads=resolved_settings.forward_threads,
            stop_timeout=resolved_settings.process_stop_timeout_seconds,
        ),
        sampler=MetricsSampler(
            media_tool=media_tool,
            table=table,
            fanout=fanout,
            pull_base=resolved_settings.rtmp_pull_base,
            interval=resolved_settings.metrics_interval_seconds,
            low_bitrate_threshold=resolved_settings.low_bitrate_threshold,
        ),
        fanout=fanout,
    )
    command_handler = BotCommandHandler(
        subscription_service=subscription_service,
        orchestrator=orchestrator,
        telegram_client=telegram_client,
    )

    async def close_resources() -> None:
        await telegram_client.close()

    return AppContainer(
        settings=resolved_settings,
        telegram_client=telegram_client,
        subscription_service=subscription_service,
        subscriber_hub=subscriber_hub,
        fanout=fanout,
        orchestrator=orchestrator,
        recording_catalog=RecordingCatalog(recordings_dir),
        command_handler=command_handler,
        close_resources=close_resources,
    )


def _chat_repository(settings: Settings) -> ChatRepository:
    """Use Supabase when it is configured, a local JSON file otherwise."""
    if settings.supabase_url and settings.supabase_service_key:
        client = create_client(settings.supabase_url, settings.supabase_service_key)
        return SupabaseChatRepository(client)
    return JsonChatRepository(Path(settings.chat_ids_file))
