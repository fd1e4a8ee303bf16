"""Lifecycle orchestration of live stream sessions.

Each live session gets a :class:`SessionWorker` that owns an ordered event
queue. Subprocess watchers, the metrics sampler and control requests only post
events; the worker's handler task is the one place that mutates the session's
forwarding slots and metric log. Once ``PublishEnded`` is handled the worker
stops, so nothing attributable to the session is emitted after its terminal
broadcast.
"""

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any

from rtmp_monitor.domain.errors import (
    InvalidAction,
    SessionAlreadyLive,
    SessionNotFound,
)
from rtmp_monitor.domain.events import (
    ForwardAction,
    ForwardRequested,
    ProbeCompleted,
    ProcessKind,
    PublishBegan,
    PublishEnded,
    SessionEvent,
    SubprocessExited,
)
from rtmp_monitor.domain.metrics import MetricSample
from rtmp_monitor.domain.sessions import ProcessHandle, StreamSession
from rtmp_monitor.services.fanout import EventFanout
from rtmp_monitor.services.forwarding import ForwardingSupervisor
from rtmp_monitor.services.metrics import MetricsSampler
from rtmp_monitor.services.recording import RecordingSupervisor
from rtmp_monitor.services.session_table import SessionTable

_logger = logging.getLogger(__name__)


@dataclass
class SessionWorker:
    """Serializes everything that happens to one live session."""

    session: StreamSession
    recording: RecordingSupervisor
    forwarding: ForwardingSupervisor
    sampler: MetricsSampler
    fanout: EventFanout
    _queue: asyncio.Queue[SessionEvent] = field(
        default_factory=asyncio.Queue, init=False
    )
    _tasks: set[asyncio.Task[Any]] = field(default_factory=set, init=False)
    _runner: asyncio.Task[None] | None = field(default=None, init=False)
    _sampler_task: asyncio.Task[None] | None = field(default=None, init=False)
    _recorder: ProcessHandle | None = field(default=None, init=False)
    _ready: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _closed: bool = field(default=False, init=False)

    @property
    def stream_path(self) -> str:
        return self.session.stream_path

    async def start(self) -> None:
        """Start the handler, the recorder, the initial probe and the sampler."""
        self._runner = asyncio.create_task(
            self._run(), name=f"session:{self.stream_path}"
        )
        try:
            self._recorder = await self.recording.start(self.session)
            if self._recorder is not None:
                self._watch(self._recorder, ProcessKind.RECORDING)
            self._spawn(self.recording.announce(self.session))
            self._sampler_task = asyncio.create_task(
                self.sampler.run(self.session, self.post),
                name=f"sampler:{self.stream_path}",
            )
        finally:
            self._ready.set()

    def post(self, event: SessionEvent) -> None:
        """Queue an event for the handler; late events are dropped."""
        if self._closed:
            if isinstance(event, ForwardRequested) and not event.reply.done():
                event.reply.set_exception(SessionNotFound())
            return
        self._queue.put_nowait(event)

    async def request_forward(
        self,
        action: ForwardAction,
        destination_id: int,
        destination_url: str | None,
        destination_key: str | None,
    ) -> None:
        """Submit a control request and wait for the handler's verdict."""
        reply: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self.post(
            ForwardRequested(
                stream_path=self.stream_path,
                action=action,
                destination_id=destination_id,
                destination_url=destination_url,
                destination_key=destination_key,
                reply=reply,
            )
        )
        await reply

    async def end(self) -> None:
        """Tear the session down and wait until teardown has finished."""
        await self._ready.wait()
        self.post(PublishEnded(stream_path=self.stream_path))
        if self._runner is not None:
            await self._runner

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if isinstance(event, PublishEnded):
                    await self._teardown()
                else:
                    await self._handle(event)
            except Exception:
                _logger.exception(
                    "Failed to handle %s for %s",
                    type(event).__name__,
                    self.stream_path,
                )
            finally:
                self._queue.task_done()
            if isinstance(event, PublishEnded):
                return

    async def _handle(self, event: SessionEvent) -> None:
        if isinstance(event, ForwardRequested):
            await self._handle_forward(event)
        elif isinstance(event, ProbeCompleted):
            self.sampler.record(self.session, event.sample)
        elif isinstance(event, SubprocessExited):
            if event.kind is ProcessKind.RECORDING:
                self.recording.handle_exit(self.session, event)
            else:
                self.forwarding.handle_exit(self.session, event)
        else:
            _logger.warning("Ignoring unexpected event %r", event)

    async def _handle_forward(self, event: ForwardRequested) -> None:
        try:
            if event.action is ForwardAction.START:
                if not event.destination_url or not event.destination_key:
                    raise InvalidAction(
                        "destinationUrl and destinationKey are required"
                    )
                target = await self.forwarding.start_forward(
                    self.session,
                    event.destination_id,
                    event.destination_url,
                    event.destination_key,
                )
                if target.process is not None:
                    self._watch(
                        target.process, ProcessKind.FORWARD, event.destination_id
                    )
            else:
                await self.forwarding.stop_forward(self.session, event.destination_id)
        except Exception as exc:
            if not event.reply.done():
                event.reply.set_exception(exc)
            return
        if not event.reply.done():
            event.reply.set_result(None)

    async def _teardown(self) -> None:
        self._closed = True
        try:
            if self._sampler_task is not None:
                self._sampler_task.cancel()
                await asyncio.gather(self._sampler_task, return_exceptions=True)
            await self._step(self.forwarding.stop_all(self.session), "stop forwarding")
            if not await self._step(
                self.recording.stop(self._recorder), "stop recording"
            ):
                self._kill_recorder()
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            await self._step(self.sampler.flush(self.session), "flush metrics")
        finally:
            self._reject_pending()
            duration = (
                self.sampler.clock() - self.session.started_at
            ).total_seconds()
            self.fanout.broadcast_stream_end(self.session.stream_key)
            self.fanout.stream_ended(
                self.session.stream_key, duration, self.session.latest_metric
            )
            _logger.info(
                "Session %s ended after %.1fs with %s samples",
                self.stream_path,
                duration,
                len(self.session.metric_log),
            )

    async def _step(self, work: Coroutine[Any, Any, None], label: str) -> bool:
        """Run one teardown step; a failure is logged and teardown goes on."""
        try:
            await work
        except Exception:
            _logger.exception("Failed to %s for %s", label, self.stream_path)
            return False
        return True

    def _kill_recorder(self) -> None:
        if self._recorder is not None and self._recorder.returncode is None:
            self._recorder.kill()

    def _reject_pending(self) -> None:
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if isinstance(event, ForwardRequested) and not event.reply.done():
                event.reply.set_exception(SessionNotFound())
            self._queue.task_done()

    def _watch(
        self,
        process: ProcessHandle,
        kind: ProcessKind,
        destination_id: int | None = None,
    ) -> None:
        self._spawn(self._watch_exit(process, kind, destination_id))

    async def _watch_exit(
        self,
        process: ProcessHandle,
        kind: ProcessKind,
        destination_id: int | None,
    ) -> None:
        returncode = await process.wait()
        self.post(
            SubprocessExited(
                stream_path=self.stream_path,
                kind=kind,
                process=process,
                returncode=returncode,
                destination_id=destination_id,
            )
        )

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            _logger.error(
                "Background task for %s failed",
                self.stream_path,
                exc_info=task.exception(),
            )


@dataclass
class StreamOrchestrator:
    """Reacts to ingest lifecycle hooks and forwarding control requests."""

    table: SessionTable
    recording: RecordingSupervisor
    forwarding: ForwardingSupervisor
    sampler: MetricsSampler
    fanout: EventFanout
    _workers: dict[str, SessionWorker] = field(default_factory=dict, init=False)

    async def handle(self, event: PublishBegan | PublishEnded) -> None:
        """Dispatch an ingest lifecycle event."""
        if isinstance(event, PublishBegan):
            await self.publish_began(event.stream_path)
        else:
            await self.publish_ended(event.stream_path)

    async def publish_began(self, stream_path: str) -> StreamSession | None:
        """Open a session and start recording and sampling it."""
        try:
            session = await self.table.create(stream_path)
        except SessionAlreadyLive:
            _logger.warning("Ignoring duplicate publish for %s", stream_path)
            return None
        worker = SessionWorker(
            session=session,
            recording=self.recording,
            forwarding=self.forwarding,
            sampler=self.sampler,
            fanout=self.fanout,
        )
        self._workers[stream_path] = worker
        _logger.info("Stream started: %s", stream_path)
        await worker.start()
        return session

    async def publish_ended(self, stream_path: str) -> StreamSession | None:
        """Close a session; repeated calls are no-ops."""
        session = await self.table.destroy(stream_path)
        if session is None:
            _logger.info("No live session for %s", stream_path)
            return None
        worker = self._workers.pop(stream_path)
        await worker.end()
        return session

    async def forward(  # noqa: PLR0913
        self,
        stream_path: str,
        action: str,
        destination_id: int,
        destination_url: str | None = None,
        destination_key: str | None = None,
    ) -> None:
        """Start or stop relaying a live stream to a destination slot."""
        if await self.table.get(stream_path) is None:
            raise SessionNotFound()
        parsed = ForwardAction.parse(action)
        worker = self._workers.get(stream_path)
        if worker is None:
            raise SessionNotFound()
        await worker.request_forward(
            parsed, destination_id, destination_url, destination_key
        )

    async def sessions(self) -> list[StreamSession]:
        return await self.table.list()

    async def latest_metrics(self) -> list[tuple[str, MetricSample]]:
        """Return the most recent sample of every live session that has one."""
        return [
            (session.stream_path, session.latest_metric)
            for session in await self.table.list()
            if session.latest_metric is not None
        ]

    async def join(self) -> None:
        """Wait until every live session has handled its queued events."""
        await asyncio.gather(*(worker.join() for worker in self._workers.values()))

    async def shutdown(self) -> None:
        """End every live session, as if each had stopped publishing."""
        for session in await self.table.list():
            await self.publish_ended(session.stream_path)
