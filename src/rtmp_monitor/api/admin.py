"""Admin API endpoints with simple token auth."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

if TYPE_CHECKING:
    from rtmp_monitor.containers import AppContainer
    from rtmp_monitor.domain.sessions import StreamSession

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/health", dependencies=[Depends(require_admin)])
async def admin_health() -> dict[str, str]:
    """Admin health check endpoint."""
    return {"status": "ok"}


@router.get("/sessions", dependencies=[Depends(require_admin)])
async def list_sessions(request: Request) -> dict[str, object]:
    """Return live sessions with their relay slots."""
    container: AppContainer = request.app.state.container
    sessions = await container.orchestrator.sessions()
    return {
        "sessions": [_session_summary(session) for session in sessions],
        "subscribers": container.subscriber_hub.subscriber_count,
    }


def _session_summary(session: StreamSession) -> dict[str, object]:
    return {
        "stream_path": session.stream_path,
        "stream_key": session.stream_key,
        "started_at": session.started_at.isoformat(),
        "recording": session.recording_target.name,
        "samples": len(session.metric_log),
        "forward_targets": [
            {
                "destination_id": target.destination_id,
                "destination_url": target.destination_url,
                "state": target.state.value,
            }
            for target in sorted(
                session.forward_targets.values(),
                key=lambda item: item.destination_id,
            )
        ],
    }
