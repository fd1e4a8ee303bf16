"""Tests for probe parsing and metric samples."""

from datetime import UTC, datetime, timedelta

from rtmp_monitor.domain.metrics import (
    NOT_APPLICABLE,
    ProbeResult,
    StreamInfo,
    build_sample,
    parse_bitrate,
    parse_frame_rate,
)
from tests.conftest import probe_result


def test_parse_frame_rate_handles_rationals() -> None:
    assert parse_frame_rate("30/1") == 30.0
    assert parse_frame_rate("30000/1001") == 29.97
    assert parse_frame_rate("25") == 25.0
    assert parse_frame_rate("0/0") == 0.0
    assert parse_frame_rate("abc") == 0.0
    assert parse_frame_rate(None) == 0.0


def test_parse_bitrate_falls_back_to_zero() -> None:
    assert parse_bitrate("2500000") == 2_500_000
    assert parse_bitrate(128000) == 128000
    assert parse_bitrate("N/A") == 0
    assert parse_bitrate(None) == 0


def test_build_sample_from_probe() -> None:
    started = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)
    now = started + timedelta(seconds=12.5)

    sample = build_sample(probe_result(), "cam1", started, now)

    assert sample.resolution == "1280x720"
    assert sample.video_codec == "h264"
    assert sample.audio_codec == "aac"
    assert sample.video_bitrate == 2_500_000
    assert sample.total_bitrate == 2_700_000
    assert sample.duration == 12.5
    payload = sample.to_payload()
    assert payload["streamKey"] == "cam1"
    assert payload["timestamp"] == int(now.timestamp() * 1000)
    assert payload["frameRate"] == 30.0


def test_build_sample_without_streams() -> None:
    started = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)

    sample = build_sample(ProbeResult(), "cam1", started, started)

    assert sample.resolution == NOT_APPLICABLE
    assert sample.video_codec == NOT_APPLICABLE
    assert sample.audio_codec == NOT_APPLICABLE
    assert sample.video_bitrate == 0
    assert sample.frame_rate == 0.0


def test_stream_info_from_probe() -> None:
    info = StreamInfo.from_probe(probe_result(video_bitrate=None))

    assert info.resolution == "1280x720"
    assert info.video_bitrate == 0
    assert info.audio_bitrate == 128000
