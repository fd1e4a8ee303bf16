"""Relaying live streams to external RTMP destinations."""

import asyncio
import logging
from dataclasses import dataclass

from rtmp_monitor.adapters.ffmpeg import (
    MediaTool,
    forward_args,
    pull_url,
    stop_process,
)
from rtmp_monitor.domain.errors import (
    AlreadyForwarding,
    NotForwarding,
    SubprocessRuntimeError,
)
from rtmp_monitor.domain.events import SubprocessExited
from rtmp_monitor.domain.sessions import ForwardState, ForwardTarget, StreamSession
from rtmp_monitor.services.fanout import EventFanout

_logger = logging.getLogger(__name__)


@dataclass
class ForwardingSupervisor:
    """Starts and stops relay subprocesses keyed by destination id.

    Every method runs inside the owning session's worker, so the slot map is
    only ever touched by one coroutine at a time.
    """

    media_tool: MediaTool
    fanout: EventFanout
    pull_base: str
    threads: int = 2
    stop_timeout: float = 5.0

    async def start_forward(
        self,
        session: StreamSession,
        destination_id: int,
        destination_url: str,
        destination_key: str,
    ) -> ForwardTarget:
        """Spawn a relay for an empty destination slot."""
        if destination_id in session.forward_targets:
            raise AlreadyForwarding()
        target = ForwardTarget(
            destination_id=destination_id,
            destination_url=destination_url,
            destination_key=destination_key,
        )
        session.forward_targets[destination_id] = target
        try:
            target.process = await self.media_tool.spawn(
                forward_args(
                    pull_url(self.pull_base, session.stream_path),
                    target.output_url,
                    self.threads,
                ),
                label=f"forward:{session.stream_key}:{destination_id}",
            )
        except BaseException:
            session.forward_targets.pop(destination_id, None)
            raise
        target.state = ForwardState.ACTIVE
        _logger.info(
            "Started forwarding %s to destination %s",
            session.stream_path,
            destination_id,
        )
        self.fanout.forwarding_started(destination_id, destination_url, destination_key)
        return target

    async def stop_forward(self, session: StreamSession, destination_id: int) -> None:
        """Stop the relay in a slot on request."""
        target = session.forward_targets.pop(destination_id, None)
        if target is None:
            raise NotForwarding()
        if target.process is not None:
            await stop_process(target.process, self.stop_timeout)
        _logger.info(
            "Stopped forwarding %s to destination %s",
            session.stream_path,
            destination_id,
        )
        self.fanout.forwarding_stopped(
            destination_id, target.destination_url, target.destination_key
        )

    def handle_exit(self, session: StreamSession, event: SubprocessExited) -> None:
        """Clear a slot whose relay exited; stale exits are ignored."""
        if event.destination_id is None:
            return
        target = session.forward_targets.get(event.destination_id)
        if target is None or target.process is not event.process:
            return
        del session.forward_targets[event.destination_id]
        if event.returncode == 0:
            _logger.info("Forwarding ended for destination %s", event.destination_id)
            self.fanout.forwarding_ended(
                target.destination_id, target.destination_url, target.destination_key
            )
            return
        error = SubprocessRuntimeError(
            "ffmpeg", event.returncode, event.process.stderr_tail()
        )
        _logger.error(
            "Forwarding error for destination %s: %s", event.destination_id, error
        )
        self.fanout.forwarding_error(
            target.destination_id,
            target.destination_url,
            target.destination_key,
            str(error),
        )

    async def stop_all(self, session: StreamSession) -> None:
        """Terminate every relay of a session that is going away."""
        targets = list(session.forward_targets.values())
        session.forward_targets.clear()
        results = await asyncio.gather(
            *(self._stop(target) for target in targets), return_exceptions=True
        )
        for target, result in zip(targets, results, strict=True):
            if isinstance(result, Exception):
                _logger.error(
                    "Failed to stop forwarding to destination %s: %s",
                    target.destination_id,
                    result,
                )
            self.fanout.forwarding_ended(
                target.destination_id, target.destination_url, target.destination_key
            )

    async def _stop(self, target: ForwardTarget) -> None:
        if target.process is not None:
            await stop_process(target.process, self.stop_timeout)
