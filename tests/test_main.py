"""Tests for main module."""

import importlib.util

from rtmp_monitor import main as main_module


def test_main_runs_uvicorn_with_settings(monkeypatch) -> None:
    calls: list[tuple[str, dict[str, object]]] = []

    def fake_run(app: str, **kwargs: object) -> None:
        calls.append((app, kwargs))

    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "test-token")
    monkeypatch.setenv("ADMIN_TOKEN", "admin-token")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setattr(main_module.uvicorn, "run", fake_run)

    main_module.main()

    assert calls == [("rtmp_monitor.api.asgi:app", {"host": "0.0.0.0", "port": 8080})]


def test_server_has_a_websocket_implementation() -> None:
    assert (
        importlib.util.find_spec("websockets") is not None
        or importlib.util.find_spec("wsproto") is not None
    )
