"""FastAPI application factory."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import FileResponse, JSONResponse

from rtmp_monitor.api.admin import router as admin_router
from rtmp_monitor.api.models import ForwardRequest, PublishHook
from rtmp_monitor.api.telegram_models import TelegramUpdate
from rtmp_monitor.app_logging import configure_logging
from rtmp_monitor.config import parse_allowed_user_ids
from rtmp_monitor.containers import AppContainer
from rtmp_monitor.domain.errors import StreamError, SubprocessSpawnFailed
from rtmp_monitor.domain.sessions import stream_path_for
from rtmp_monitor.telegram_commands import (
    CHAT_MENU_BUTTON,
    BotCommand,
    telegram_commands,
)


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)
    allowed_user_ids = parse_allowed_user_ids(
        container.settings.telegram_allowed_user_ids
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        try:
            await state_container.telegram_client.set_my_commands(telegram_commands())
            await state_container.telegram_client.set_chat_menu_button(
                CHAT_MENU_BUTTON
            )
        except Exception:
            logger.exception("Failed to sync Telegram bot commands")
        yield
        await state_container.orchestrator.shutdown()
        await state_container.fanout.drain()
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.exception_handler(StreamError)
    async def stream_error_handler(_: Request, exc: StreamError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/hooks/on_publish")
    async def on_publish(hook: PublishHook, request: Request) -> dict[str, int]:
        """Ingest callback: a publisher started streaming."""
        state_container: AppContainer = request.app.state.container
        logger.info("[on_publish] stream_path=%s", hook.stream_path)
        await state_container.orchestrator.publish_began(hook.stream_path)
        return {"code": 0}

    @app.post("/hooks/on_publish_done")
    async def on_publish_done(hook: PublishHook, request: Request) -> dict[str, int]:
        """Ingest callback: a publisher stopped streaming."""
        state_container: AppContainer = request.app.state.container
        logger.info("[on_publish_done] stream_path=%s", hook.stream_path)
        await state_container.orchestrator.publish_ended(hook.stream_path)
        return {"code": 0}

    @app.post("/api/forward")
    async def forward(body: ForwardRequest, request: Request) -> dict[str, bool]:
        """Start or stop relaying a live stream to a destination."""
        state_container: AppContainer = request.app.state.container
        try:
            await state_container.orchestrator.forward(
                stream_path_for("live", body.source_key),
                body.action,
                body.destination_id,
                body.destination_url,
                body.destination_key,
            )
        except SubprocessSpawnFailed as exc:
            logger.exception("Failed to start forwarding")
            raise StreamError("Failed to start forwarding") from exc
        return {"success": True}

    @app.get("/api/recordings", response_model=None)
    async def list_recordings(request: Request) -> list[str] | JSONResponse:
        """List stored recordings and metric logs."""
        state_container: AppContainer = request.app.state.container
        try:
            return await asyncio.to_thread(state_container.recording_catalog.list_files)
        except OSError:
            logger.exception("Failed to read recordings directory")
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to read recordings directory"},
            )

    @app.get("/api/recordings/{filename}", response_model=None)
    async def download_recording(
        filename: str, request: Request
    ) -> FileResponse | JSONResponse:
        """Download a stored recording or metric log."""
        state_container: AppContainer = request.app.state.container
        path = state_container.recording_catalog.resolve(filename)
        if path is None:
            return JSONResponse(
                status_code=404, content={"error": "Recording not found"}
            )
        return FileResponse(
            path, filename=path.name, media_type="application/octet-stream"
        )

    @app.get("/api/metrics")
    async def list_metrics(request: Request) -> list[dict[str, object]]:
        """Return the latest sample of every live stream."""
        state_container: AppContainer = request.app.state.container
        latest = await state_container.orchestrator.latest_metrics()
        return [
            {"streamPath": stream_path, **sample.to_payload()}
            for stream_path, sample in latest
        ]

    @app.websocket("/ws")
    async def metrics_socket(websocket: WebSocket) -> None:
        """Push live samples and stream-end messages to a viewer."""
        state_container: AppContainer = websocket.app.state.container
        hub = state_container.subscriber_hub
        await websocket.accept()
        queue: asyncio.Queue[dict[str, object]] | None = None
        sender: asyncio.Task[None] | None = None
        try:
            queue = hub.subscribe()
            sender = asyncio.create_task(_pump(websocket, queue))
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            if queue is not None:
                hub.unsubscribe(queue)
            if sender is not None:
                sender.cancel()
                await asyncio.gather(sender, return_exceptions=True)

    @app.post("/telegram/webhook")
    async def telegram_webhook(
        update: TelegramUpdate, request: Request
    ) -> dict[str, str]:
        """Handle Telegram webhook updates."""
        state_container: AppContainer = request.app.state.container
        message = update.message
        if message is None or not message.text:
            return {"status": "ok"}
        command = BotCommand.from_text(message.text)
        if command is None:
            return {"status": "ok"}
        user_id = message.from_user.id if message.from_user else None
        if user_id is None or not _is_user_allowed(user_id, allowed_user_ids):
            await state_container.telegram_client.send_message(
                chat_id=message.chat.id, text="This bot is private."
            )
            return {"status": "ok"}
        await state_container.command_handler.handle(command, message.chat.id)
        return {"status": "ok"}

    return app


async def _pump(websocket: WebSocket, queue: asyncio.Queue[dict[str, object]]) -> None:
    """Forward queued messages to a viewer until the socket goes away."""
    logger = logging.getLogger(__name__)
    while True:
        message = await queue.get()
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("Viewer went away while sending")
            return


def _is_user_allowed(user_id: int, allowed: set[int] | None) -> bool:
    """Return true when the user is allowed to interact with the bot."""
    return allowed is None or user_id in allowed
