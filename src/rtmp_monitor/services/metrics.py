"""Periodic quality sampling of live streams."""

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from rtmp_monitor.adapters.ffmpeg import MediaTool, pull_url
from rtmp_monitor.domain.errors import FlushFailed, ProbeFailed
from rtmp_monitor.domain.events import ProbeCompleted, SessionEvent
from rtmp_monitor.domain.metrics import MetricSample, build_sample
from rtmp_monitor.domain.sessions import StreamSession
from rtmp_monitor.services.fanout import EventFanout
from rtmp_monitor.services.session_table import SessionTable, utc_now

_logger = logging.getLogger(__name__)


@dataclass
class MetricsSampler:
    """Probes each live session on a fixed period and records the results."""

    media_tool: MediaTool
    table: SessionTable
    fanout: EventFanout
    pull_base: str
    interval: float = 2.0
    low_bitrate_threshold: int = 2_000_000
    clock: Callable[[], datetime] = utc_now

    async def run(
        self, session: StreamSession, post: Callable[[SessionEvent], None]
    ) -> None:
        """Sample until the session leaves the table or the task is cancelled."""
        while True:
            await asyncio.sleep(self.interval)
            try:
                if not await self.sample_once(session, post):
                    return
            except Exception:
                _logger.exception(
                    "Error processing metrics for %s", session.stream_path
                )

    async def sample_once(
        self, session: StreamSession, post: Callable[[SessionEvent], None]
    ) -> bool:
        """Run one probe cycle; return False once the session is gone."""
        if await self.table.get(session.stream_path) is not session:
            _logger.info("Stopping sampler for ended stream %s", session.stream_path)
            return False
        try:
            probe = await self.media_tool.probe(
                pull_url(self.pull_base, session.stream_path)
            )
        except ProbeFailed as exc:
            _logger.warning("FFprobe error for %s: %s", session.stream_path, exc)
            return True
        sample = build_sample(
            probe, session.stream_key, session.started_at, self.clock()
        )
        post(ProbeCompleted(stream_path=session.stream_path, sample=sample))
        return True

    def record(self, session: StreamSession, sample: MetricSample) -> None:
        """Store a sample, push it to viewers and alert on low bitrate."""
        session.metric_log.append(sample)
        session.latest_metric = sample
        self.fanout.broadcast_sample(sample)
        if self.is_low_bitrate(sample.video_bitrate):
            self.fanout.low_bitrate_alert(sample.stream_key, sample.video_bitrate)

    def is_low_bitrate(self, video_bitrate: int) -> bool:
        """Zero means unknown, not low."""
        return 0 < video_bitrate < self.low_bitrate_threshold

    async def flush(self, session: StreamSession) -> None:
        """Persist the session's metric log; failures are logged only."""
        if not session.metric_log:
            return
        payload = [sample.to_payload() for sample in session.metric_log]
        try:
            await asyncio.to_thread(
                write_metric_log, session.metrics_log_target, payload
            )
        except FlushFailed:
            _logger.exception(
                "Error saving metrics to %s", session.metrics_log_target
            )
            return
        _logger.info("Metrics saved to: %s", session.metrics_log_target)


def write_metric_log(path: Path, payload: list[dict[str, object]]) -> None:
    """Write the metric log as indented JSON."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    except OSError as exc:
        raise FlushFailed(f"Could not write {path}: {exc}") from exc
