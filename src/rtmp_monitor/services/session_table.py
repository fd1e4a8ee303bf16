"""In-memory table of live stream sessions."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from rtmp_monitor.domain.errors import SessionAlreadyLive
from rtmp_monitor.domain.sessions import StreamSession


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class SessionTable:
    """Single source of truth for which streams are live.

    The lock only covers dictionary access, so slow work on one session never
    holds up lookups for another.
    """

    recordings_dir: Path
    clock: Callable[[], datetime] = utc_now
    _sessions: dict[str, StreamSession] = field(default_factory=dict, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    async def create(self, stream_path: str) -> StreamSession:
        """Open a session for a stream that just went live."""
        async with self._lock:
            if stream_path in self._sessions:
                raise SessionAlreadyLive(stream_path)
            session = StreamSession.open(stream_path, self.recordings_dir, self.clock())
            self._sessions[stream_path] = session
            return session

    async def get(self, stream_path: str) -> StreamSession | None:
        async with self._lock:
            return self._sessions.get(stream_path)

    async def destroy(self, stream_path: str) -> StreamSession | None:
        """Remove a session; a second call for the same path returns None."""
        async with self._lock:
            return self._sessions.pop(stream_path, None)

    async def list(self) -> list[StreamSession]:
        async with self._lock:
            return list(self._sessions.values())
