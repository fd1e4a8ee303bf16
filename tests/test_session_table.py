"""Tests for the session table and session paths."""

import asyncio
from datetime import UTC, datetime

import pytest

from rtmp_monitor.domain.errors import SessionAlreadyLive
from rtmp_monitor.domain.sessions import (
    artifact_stamp,
    stream_key_from_path,
    stream_path_for,
)
from rtmp_monitor.services.session_table import SessionTable
from tests.conftest import FakeClock


def test_stream_key_from_path() -> None:
    assert stream_key_from_path("/live/cam1") == "cam1"
    assert stream_key_from_path("cam1") == "cam1"
    with pytest.raises(ValueError):
        stream_key_from_path("/")


def test_stream_path_for_normalises_slashes() -> None:
    assert stream_path_for("live", "cam1") == "/live/cam1"
    assert stream_path_for("/live/", "/cam1") == "/live/cam1"


def test_artifact_stamp_is_file_name_safe() -> None:
    moment = datetime(2026, 10, 19, 8, 12, 0, 123456, tzinfo=UTC)

    assert artifact_stamp(moment) == "2026-10-19T08-12-00-123Z"


def test_create_derives_artifact_paths(tmp_path) -> None:
    table = SessionTable(recordings_dir=tmp_path, clock=FakeClock())

    session = asyncio.run(table.create("/live/cam1"))

    assert session.recording_target == tmp_path / "cam1_2026-10-19T08-12-00-123Z.ts"
    assert session.metrics_log_target.name == (
        "cam1_2026-10-19T08-12-00-123Z_metrics.json"
    )
    assert session.forward_targets == {}
    assert session.latest_metric is None


def test_create_rejects_live_stream(tmp_path) -> None:
    table = SessionTable(recordings_dir=tmp_path)

    async def scenario() -> None:
        await table.create("/live/cam1")
        with pytest.raises(SessionAlreadyLive) as excinfo:
            await table.create("/live/cam1")
        assert excinfo.value.status_code == 409

    asyncio.run(scenario())


def test_destroy_removes_exactly_once(tmp_path) -> None:
    table = SessionTable(recordings_dir=tmp_path)

    async def scenario() -> None:
        session = await table.create("/live/cam1")
        results = await asyncio.gather(
            table.destroy("/live/cam1"), table.destroy("/live/cam1")
        )

        assert results.count(session) == 1
        assert results.count(None) == 1
        assert await table.get("/live/cam1") is None
        assert await table.list() == []

    asyncio.run(scenario())
