"""Shared test fixtures."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from rtmp_monitor.adapters.telegram_client import TelegramClient
from rtmp_monitor.config import Settings
from rtmp_monitor.containers import AppContainer
from rtmp_monitor.domain.errors import ProbeFailed
from rtmp_monitor.domain.metrics import MetricSample, ProbeResult, StreamInfo
from rtmp_monitor.services.commands import BotCommandHandler
from rtmp_monitor.services.fanout import EventFanout, SubscriberHub
from rtmp_monitor.services.forwarding import ForwardingSupervisor
from rtmp_monitor.services.metrics import MetricsSampler
from rtmp_monitor.services.notifications import Notifier, TelegramNotifier
from rtmp_monitor.services.orchestrator import StreamOrchestrator
from rtmp_monitor.services.recording import RecordingCatalog, RecordingSupervisor
from rtmp_monitor.services.session_table import SessionTable
from rtmp_monitor.services.subscriptions import ChatRepository, SubscriptionService


def probe_result(  # noqa: PLR0913
    width: int = 1280,
    height: int = 720,
    video_bitrate: str | None = "2500000",
    audio_bitrate: str | None = "128000",
    total_bitrate: str | None = "2700000",
    frame_rate: str = "30/1",
) -> ProbeResult:
    """Build an ffprobe result for an h264/aac stream."""
    return ProbeResult.model_validate(
        {
            "streams": [
                {
                    "codec_type": "video",
                    "codec_name": "h264",
                    "width": width,
                    "height": height,
                    "bit_rate": video_bitrate,
                    "r_frame_rate": frame_rate,
                },
                {
                    "codec_type": "audio",
                    "codec_name": "aac",
                    "bit_rate": audio_bitrate,
                },
            ],
            "format": {"bit_rate": total_bitrate},
        }
    )


@dataclass
class FakeClock:
    """Deterministic clock that moves forward by ``step`` on every read."""

    now: datetime = field(
        default_factory=lambda: datetime(2026, 10, 19, 8, 12, 0, 123000, tzinfo=UTC)
    )
    step: float = 0.0

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=self.step)
        return current

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass(eq=False)
class FakeProcess:
    """Process handle whose exit is controlled by the test."""

    label: str
    args: list[str]
    returncode: int | None = None
    stderr: str = ""
    exit_on_terminate: bool = True
    wait_error: Exception | None = None
    terminated: bool = False
    killed: bool = False
    _exited: asyncio.Event = field(default_factory=asyncio.Event, init=False)

    async def wait(self) -> int:
        if self.wait_error is not None:
            raise self.wait_error
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def exit(self, returncode: int, stderr: str = "") -> None:
        if self.returncode is not None:
            return
        self.returncode = returncode
        self.stderr = stderr or self.stderr
        self._exited.set()

    def terminate(self) -> None:
        self.terminated = True
        if self.exit_on_terminate:
            self.exit(255)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)

    def stderr_tail(self) -> str:
        return self.stderr


@dataclass
class FakeMediaTool:
    """Media tool that hands out queued probe results and fake processes.

    Once ``probe_results`` is used up, ``default_probe`` is returned; without
    one the probe blocks until cancelled.
    """

    probe_results: list[ProbeResult | Exception] = field(default_factory=list)
    default_probe: ProbeResult | None = None
    spawn_error: Exception | None = None
    probes: list[str] = field(default_factory=list)
    spawned: list[FakeProcess] = field(default_factory=list)

    async def probe(self, source_url: str) -> ProbeResult:
        self.probes.append(source_url)
        if self.probe_results:
            result = self.probe_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        if self.default_probe is not None:
            return self.default_probe
        await asyncio.Event().wait()
        raise ProbeFailed("unreachable")

    async def spawn(self, args: list[str], label: str) -> FakeProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        process = FakeProcess(label=label, args=args)
        self.spawned.append(process)
        return process


@dataclass
class RecordingNotifier(Notifier):
    """Notifier that records every event it receives."""

    calls: list[tuple[str, tuple[object, ...]]] = field(default_factory=list)

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def stream_started(self, stream_key: str, info: StreamInfo) -> None:
        self.calls.append(("stream_started", (stream_key, info)))

    async def stream_ended(
        self, stream_key: str, duration: float, final_sample: MetricSample | None
    ) -> None:
        self.calls.append(("stream_ended", (stream_key, duration, final_sample)))

    async def low_bitrate_alert(self, stream_key: str, bitrate: int) -> None:
        self.calls.append(("low_bitrate_alert", (stream_key, bitrate)))

    async def forwarding_started(
        self, destination_id: int, destination_url: str, destination_key: str
    ) -> None:
        self.calls.append(
            ("forwarding_started", (destination_id, destination_url, destination_key))
        )

    async def forwarding_stopped(
        self, destination_id: int, destination_url: str, destination_key: str
    ) -> None:
        self.calls.append(
            ("forwarding_stopped", (destination_id, destination_url, destination_key))
        )

    async def forwarding_ended(
        self, destination_id: int, destination_url: str, destination_key: str
    ) -> None:
        self.calls.append(
            ("forwarding_ended", (destination_id, destination_url, destination_key))
        )

    async def forwarding_error(
        self,
        destination_id: int,
        destination_url: str,
        destination_key: str,
        error: str,
    ) -> None:
        self.calls.append(
            (
                "forwarding_error",
                (destination_id, destination_url, destination_key, error),
            )
        )


@dataclass
class FakeTelegramClient(TelegramClient):
    """Fake Telegram client that records messages."""

    messages: list[tuple[int, str]] = field(default_factory=list)
    parse_modes: list[str | None] = field(default_factory=list)
    commands: list[dict[str, str]] | None = None
    menu_button: dict[str, object] | None = None
    closed: bool = False

    async def send_message(
        self, chat_id: int, text: str, parse_mode: str | None = None
    ) -> None:
        self.messages.append((chat_id, text))
        self.parse_modes.append(parse_mode)

    async def set_my_commands(self, commands: list[dict[str, str]]) -> None:
        self.commands = commands

    async def set_chat_menu_button(
        self, menu_button: dict[str, object] | None = None
    ) -> None:
        self.menu_button = menu_button

    async def close(self) -> None:
        self.closed = True


@dataclass
class InMemoryChatRepository(ChatRepository):
    """In-memory chat roster for tests."""

    chat_ids: set[int] = field(default_factory=set)

    def list_chat_ids(self) -> list[int]:
        return sorted(self.chat_ids)

    def add_chat(self, chat_id: int) -> bool:
        if chat_id in self.chat_ids:
            return False
        self.chat_ids.add(chat_id)
        return True

    def remove_chat(self, chat_id: int) -> bool:
        if chat_id not in self.chat_ids:
            return False
        self.chat_ids.discard(chat_id)
        return True


@dataclass
class Harness:
    """Orchestrator stack wired to fakes."""

    orchestrator: StreamOrchestrator
    table: SessionTable
    sampler: MetricsSampler
    forwarding: ForwardingSupervisor
    recording: RecordingSupervisor
    fanout: EventFanout
    hub: SubscriberHub
    media_tool: FakeMediaTool
    notifier: RecordingNotifier
    clock: FakeClock


def build_harness(
    recordings_dir: Path,
    media_tool: FakeMediaTool | None = None,
    interval: float = 3600.0,
    clock: FakeClock | None = None,
) -> Harness:
    """Wire an orchestrator around fake media tooling and a recording notifier."""
    media_tool = media_tool or FakeMediaTool()
    clock = clock or FakeClock()
    notifier = RecordingNotifier()
    hub = SubscriberHub(queue_size=100)
    fanout = EventFanout(hub=hub, notifier=notifier)
    table = SessionTable(recordings_dir=recordings_dir, clock=clock)
    recording = RecordingSupervisor(
        media_tool=media_tool,
        fanout=fanout,
        pull_base="rtmp://127.0.0.1:1935",
        stop_timeout=0.05,
        stop_grace=0.01,
    )
    forwarding = ForwardingSupervisor(
        media_tool=media_tool,
        fanout=fanout,
        pull_base="rtmp://127.0.0.1:1935",
        threads=2,
        stop_timeout=0.05,
    )
    sampler = MetricsSampler(
        media_tool=media_tool,
        table=table,
        fanout=fanout,
        pull_base="rtmp://127.0.0.1:1935",
        interval=interval,
        low_bitrate_threshold=2_000_000,
        clock=clock,
    )
    orchestrator = StreamOrchestrator(
        table=table,
        recording=recording,
        forwarding=forwarding,
        sampler=sampler,
        fanout=fanout,
    )
    return Harness(
        orchestrator=orchestrator,
        table=table,
        sampler=sampler,
        forwarding=forwarding,
        recording=recording,
        fanout=fanout,
        hub=hub,
        media_tool=media_tool,
        notifier=notifier,
        clock=clock,
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


def drain_queue(queue: asyncio.Queue[dict[str, object]]) -> list[dict[str, object]]:
    messages = []
    while not queue.empty():
        messages.append(queue.get_nowait())
    return messages


def make_container(
    settings: Settings,
    media_tool: FakeMediaTool,
    telegram_client: FakeTelegramClient,
    chat_repository: InMemoryChatRepository,
) -> AppContainer:
    """Build an application container around fakes."""
    recordings_dir = Path(settings.recordings_dir)
    recordings_dir.mkdir(parents=True, exist_ok=True)
    subscription_service = SubscriptionService(chat_repository)
    hub = SubscriberHub(queue_size=settings.subscriber_queue_size)
    fanout = EventFanout(
        hub=hub,
        notifier=TelegramNotifier(
            telegram_client=telegram_client,
            subscriptions=subscription_service,
            low_bitrate_threshold=settings.low_bitrate_threshold,
        ),
    )
    table = SessionTable(recordings_dir=recordings_dir)
    orchestrator = StreamOrchestrator(
        table=table,
        recording=RecordingSupervisor(
            media_tool=media_tool,
            fanout=fanout,
            pull_base=settings.rtmp_pull_base,
            stop_timeout=settings.process_stop_timeout_seconds,
            stop_grace=settings.recording_stop_grace_seconds,
        ),
        forwarding=ForwardingSupervisor(
            media_tool=media_tool,
            fanout=fanout,
            pull_base=settings.rtmp_pull_base,
            threads=settings.forward_threads,
            stop_timeout=settings.process_stop_timeout_seconds,
        ),
        sampler=MetricsSampler(
            media_tool=media_tool,
            table=table,
            fanout=fanout,
            pull_base=settings.rtmp_pull_base,
            interval=settings.metrics_interval_seconds,
            low_bitrate_threshold=settings.low_bitrate_threshold,
        ),
        fanout=fanout,
    )

    async def close_resources() -> None:
        await telegram_client.close()

    return AppContainer(
        settings=settings,
        telegram_client=telegram_client,
        subscription_service=subscription_service,
        subscriber_hub=hub,
        fanout=fanout,
        orchestrator=orchestrator,
        recording_catalog=RecordingCatalog(recordings_dir),
        command_handler=BotCommandHandler(
            subscription_service=subscription_service,
            orchestrator=orchestrator,
            telegram_client=telegram_client,
        ),
        close_resources=close_resources,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        telegram_bot_token="test-token",
        admin_token="admin-token",
        recordings_dir=str(tmp_path / "recordings"),
        chat_ids_file=str(tmp_path / "chatids.json"),
        metrics_interval_seconds=3600.0,
        process_stop_timeout_seconds=0.05,
        recording_stop_grace_seconds=0.01,
        forward_threads=2,
    )


@pytest.fixture
def media_tool() -> FakeMediaTool:
    return FakeMediaTool()


@pytest.fixture
def telegram_client() -> FakeTelegramClient:
    return FakeTelegramClient()


@pytest.fixture
def chat_repository() -> InMemoryChatRepository:
    return InMemoryChatRepository()


@pytest.fixture
def container(
    settings: Settings,
    media_tool: FakeMediaTool,
    telegram_client: FakeTelegramClient,
    chat_repository: InMemoryChatRepository,
) -> AppContainer:
    return make_container(settings, media_tool, telegram_client, chat_repository)
