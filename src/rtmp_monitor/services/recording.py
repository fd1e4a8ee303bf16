"""Recording of live streams to disk."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from rtmp_monitor.adapters.ffmpeg import (
    MediaTool,
    pull_url,
    recording_args,
    stop_process,
)
from rtmp_monitor.domain.errors import ProbeFailed, SubprocessSpawnFailed
from rtmp_monitor.domain.events import SubprocessExited
from rtmp_monitor.domain.metrics import StreamInfo
from rtmp_monitor.domain.sessions import ProcessHandle, StreamSession
from rtmp_monitor.services.fanout import EventFanout

_logger = logging.getLogger(__name__)


@dataclass
class RecordingSupervisor:
    """Owns the single recording subprocess of each session."""

    media_tool: MediaTool
    fanout: EventFanout
    pull_base: str
    stop_timeout: float = 5.0
    stop_grace: float = 3.0

    async def start(self, session: StreamSession) -> ProcessHandle | None:
        """Start copying the live source into the session's recording file."""
        source = pull_url(self.pull_base, session.stream_path)
        target = session.recording_target
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            process = await self.media_tool.spawn(
                recording_args(source, str(target)),
                label=f"record:{session.stream_key}",
            )
        except (OSError, SubprocessSpawnFailed):
            _logger.exception("Failed to start recording %s", session.stream_path)
            return None
        _logger.info("Recording %s to %s", session.stream_path, target)
        return process

    async def announce(self, session: StreamSession) -> None:
        """Probe the new stream once and send the stream-started notification."""
        source = pull_url(self.pull_base, session.stream_path)
        try:
            probe = await self.media_tool.probe(source)
        except ProbeFailed as exc:
            _logger.warning("Initial probe failed for %s: %s", session.stream_path, exc)
            return
        self.fanout.stream_started(session.stream_key, StreamInfo.from_probe(probe))

    def handle_exit(self, session: StreamSession, event: SubprocessExited) -> None:
        """Log how the recorder finished; the session itself is unaffected."""
        if event.returncode == 0:
            _logger.info("Recording finished: %s", session.recording_target)
            return
        _logger.error(
            "Recording error for %s (exit code %s): %s",
            session.stream_path,
            event.returncode,
            event.process.stderr_tail(),
        )

    async def stop(self, process: ProcessHandle | None) -> None:
        """Give the recorder a moment to finish on its own, then stop it."""
        if process is None or process.returncode is not None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(process.wait()), self.stop_grace)
        except TimeoutError:
            await stop_process(process, self.stop_timeout)


@dataclass
class RecordingCatalog:
    """Read access to persisted recordings and metric logs."""

    recordings_dir: Path

    def list_files(self) -> list[str]:
        """Return the names of every stored artifact."""
        return sorted(
            entry.name for entry in self.recordings_dir.iterdir() if entry.is_file()
        )

    def resolve(self, filename: str) -> Path | None:
        """Return the path of a stored artifact, or None if it does not exist."""
        root = self.recordings_dir.resolve()
        candidate = (root / filename).resolve()
        if candidate.parent != root or not candidate.is_file():
            return None
        return candidate
