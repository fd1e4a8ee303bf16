"""Tagged events processed by the orchestrator and session workers."""

import asyncio
from dataclasses import dataclass
from enum import Enum

from rtmp_monitor.domain.errors import InvalidAction
from rtmp_monitor.domain.metrics import MetricSample
from rtmp_monitor.domain.sessions import ProcessHandle


class ForwardAction(Enum):
    """Control-plane actions on a destination slot."""

    START = "start"
    STOP = "stop"

    @classmethod
    def parse(cls, raw: str) -> "ForwardAction":
        try:
            return cls(raw)
        except ValueError as exc:
            raise InvalidAction() from exc


class ProcessKind(Enum):
    """Role of a supervised subprocess."""

    RECORDING = "recording"
    FORWARD = "forward"


@dataclass(frozen=True)
class PublishBegan:
    stream_path: str


@dataclass(frozen=True)
class PublishEnded:
    stream_path: str


@dataclass(frozen=True, eq=False)
class ForwardRequested:
    """Control request; the handler resolves ``reply`` with the outcome."""

    stream_path: str
    action: ForwardAction
    destination_id: int
    destination_url: str | None
    destination_key: str | None
    reply: asyncio.Future[None]


@dataclass(frozen=True)
class ProbeCompleted:
    stream_path: str
    sample: MetricSample


@dataclass(frozen=True, eq=False)
class SubprocessExited:
    stream_path: str
    kind: ProcessKind
    process: ProcessHandle
    returncode: int | None
    destination_id: int | None = None


SessionEvent = (
    PublishBegan | PublishEnded | ForwardRequested | ProbeCompleted | SubprocessExited
)
