"""Domain models for live stream sessions."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol

from rtmp_monitor.domain.metrics import MetricSample


class ProcessHandle(Protocol):
    """Running media subprocess owned by a supervisor."""

    returncode: int | None

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""

    def terminate(self) -> None:
        """Ask the process to stop."""

    def kill(self) -> None:
        """Force the process to stop."""

    def stderr_tail(self) -> str:
        """Return the last diagnostic lines the process wrote."""


class ForwardState(Enum):
    """Lifecycle of a destination slot while it is present in a session."""

    STARTING = "starting"
    ACTIVE = "active"


@dataclass
class ForwardTarget:
    """One relay destination and the ffmpeg process feeding it."""

    destination_id: int
    destination_url: str
    destination_key: str
    state: ForwardState = ForwardState.STARTING
    process: ProcessHandle | None = None

    @property
    def output_url(self) -> str:
        return f"{self.destination_url.rstrip('/')}/{self.destination_key}"


@dataclass
class StreamSession:
    """Live period of one ingested stream."""

    stream_path: str
    stream_key: str
    started_at: datetime
    recording_target: Path
    metrics_log_target: Path
    forward_targets: dict[int, ForwardTarget] = field(default_factory=dict)
    metric_log: list[MetricSample] = field(default_factory=list)
    latest_metric: MetricSample | None = None

    @classmethod
    def open(
        cls, stream_path: str, recordings_dir: Path, started_at: datetime
    ) -> "StreamSession":
        """Create a session with artifact paths derived from key and start time."""
        stream_key = stream_key_from_path(stream_path)
        stem = f"{stream_key}_{artifact_stamp(started_at)}"
        return cls(
            stream_path=stream_path,
            stream_key=stream_key,
            started_at=started_at,
            recording_target=recordings_dir / f"{stem}.ts",
            metrics_log_target=recordings_dir / f"{stem}_metrics.json",
        )


def stream_key_from_path(stream_path: str) -> str:
    """Return the stream key of a mount point such as ``/live/cam1``."""
    parts = [part for part in stream_path.split("/") if part]
    if not parts:
        raise ValueError(f"Invalid stream path: {stream_path!r}")
    return parts[1] if len(parts) > 1 else parts[0]


def stream_path_for(app: str, stream_key: str) -> str:
    """Build the mount point for an application namespace and stream key."""
    return f"/{app.strip('/')}/{stream_key.strip('/')}"


def artifact_stamp(started_at: datetime) -> str:
    """Millisecond timestamp safe for file names, e.g. 2026-10-19T08-12-00-123Z."""
    millis = started_at.microsecond // 1000
    return f"{started_at.strftime('%Y-%m-%dT%H-%M-%S')}-{millis:03d}Z"
