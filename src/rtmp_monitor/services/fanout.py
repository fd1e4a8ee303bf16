"""Best-effort delivery of session events to viewers and the notifier."""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from rtmp_monitor.domain.metrics import MetricSample, StreamInfo, epoch_millis
from rtmp_monitor.services.notifications import Notifier

_logger = logging.getLogger(__name__)


@dataclass
class SubscriberHub:
    """Bounded per-subscriber queues for real-time viewers."""

    queue_size: int = 100
    _subscribers: set[asyncio.Queue[dict[str, object]]] = field(
        default_factory=set, init=False
    )

    def subscribe(self) -> asyncio.Queue[dict[str, object]]:
        """Register a viewer and return the queue it should drain."""
        queue: asyncio.Queue[dict[str, object]] = asyncio.Queue(
            maxsize=self.queue_size
        )
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, object]]) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, message: dict[str, object]) -> None:
        """Queue a message for every viewer; slow viewers miss it."""
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                _logger.debug("Dropping message for a slow subscriber")


def sample_message(sample: MetricSample) -> dict[str, object]:
    """Viewer message for a fresh sample."""
    return {**sample.to_payload(), "isActive": True}


def stream_end_message(stream_key: str, now: datetime) -> dict[str, object]:
    """Viewer message for a stream that stopped publishing."""
    return {
        "streamKey": stream_key,
        "isActive": False,
        "videoBitrate": 0,
        "audioBitrate": 0,
        "frameRate": 0,
        "resolution": "",
        "videoCodec": "",
        "audioCodec": "",
        "duration": 0,
        "timestamp": epoch_millis(now),
    }


@dataclass
class EventFanout:
    """Pushes live state to viewers and lifecycle events to the notifier."""

    hub: SubscriberHub
    notifier: Notifier
    _pending: set[asyncio.Task[None]] = field(default_factory=set, init=False)

    def broadcast_sample(self, sample: MetricSample) -> None:
        self.hub.publish(sample_message(sample))

    def broadcast_stream_end(self, stream_key: str) -> None:
        self.hub.publish(stream_end_message(stream_key, datetime.now(tz=UTC)))

    def stream_started(self, stream_key: str, info: StreamInfo) -> None:
        self._dispatch(
            self.notifier.stream_started(stream_key, info), "stream started"
        )

    def stream_ended(
        self, stream_key: str, duration: float, final_sample: MetricSample | None
    ) -> None:
        self._dispatch(
            self.notifier.stream_ended(stream_key, duration, final_sample),
            "stream ended",
        )

    def low_bitrate_alert(self, stream_key: str, bitrate: int) -> None:
        self._dispatch(
            self.notifier.low_bitrate_alert(stream_key, bitrate), "low bitrate"
        )

    def forwarding_started(self, destination_id: int, url: str, key: str) -> None:
        self._dispatch(
            self.notifier.forwarding_started(destination_id, url, key),
            "forwarding started",
        )

    def forwarding_stopped(self, destination_id: int, url: str, key: str) -> None:
        self._dispatch(
            self.notifier.forwarding_stopped(destination_id, url, key),
            "forwarding stopped",
        )

    def forwarding_ended(self, destination_id: int, url: str, key: str) -> None:
        self._dispatch(
            self.notifier.forwarding_ended(destination_id, url, key),
            "forwarding ended",
        )

    def forwarding_error(
        self, destination_id: int, url: str, key: str, error: str
    ) -> None:
        self._dispatch(
            self.notifier.forwarding_error(destination_id, url, key, error),
            "forwarding error",
        )

    async def drain(self) -> None:
        """Wait for every notification already dispatched."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def _dispatch(self, delivery: Awaitable[None], label: str) -> None:
        task = asyncio.create_task(self._deliver(delivery, label))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, delivery: Awaitable[None], label: str) -> None:
        try:
            await delivery
        except Exception:
            _logger.exception("Failed to deliver %s notification", label)
