"""Probe payloads and quality metric snapshots."""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

NOT_APPLICABLE = "N/A"


class ProbeStream(BaseModel):
    """Single elementary stream reported by ffprobe."""

    codec_type: str | None = None
    codec_name: str | None = None
    bit_rate: str | int | None = None
    width: int | None = None
    height: int | None = None
    r_frame_rate: str | None = None


class ProbeFormat(BaseModel):
    """Container-level section reported by ffprobe."""

    bit_rate: str | int | None = None


class ProbeResult(BaseModel):
    """Structured output of `ffprobe -show_streams -show_format`."""

    streams: list[ProbeStream] = Field(default_factory=list)
    format: ProbeFormat = Field(default_factory=ProbeFormat)

    def first_stream(self, codec_type: str) -> ProbeStream | None:
        """Return the first stream of the given media type, if any."""
        for stream in self.streams:
            if stream.codec_type == codec_type:
                return stream
        return None


@dataclass(frozen=True)
class StreamInfo:
    """Initial stream description sent with the stream-started notification."""

    resolution: str
    video_codec: str
    audio_codec: str
    video_bitrate: int
    audio_bitrate: int
    total_bitrate: int

    @classmethod
    def from_probe(cls, probe: ProbeResult) -> "StreamInfo":
        video = probe.first_stream("video")
        audio = probe.first_stream("audio")
        return cls(
            resolution=_resolution(video),
            video_codec=_codec(video),
            audio_codec=_codec(audio),
            video_bitrate=parse_bitrate(video.bit_rate if video else None),
            audio_bitrate=parse_bitrate(audio.bit_rate if audio else None),
            total_bitrate=parse_bitrate(probe.format.bit_rate),
        )


@dataclass(frozen=True)
class MetricSample:
    """Timestamped snapshot of stream quality metrics."""

    timestamp: datetime
    stream_key: str
    video_codec: str
    audio_codec: str
    resolution: str
    frame_rate: float
    video_bitrate: int
    audio_bitrate: int
    total_bitrate: int
    duration: float

    def to_payload(self) -> dict[str, object]:
        """Return the camelCase wire form used by subscribers and log files."""
        return {
            "timestamp": epoch_millis(self.timestamp),
            "streamKey": self.stream_key,
            "videoCodec": self.video_codec,
            "audioCodec": self.audio_codec,
            "resolution": self.resolution,
            "frameRate": self.frame_rate,
            "videoBitrate": self.video_bitrate,
            "audioBitrate": self.audio_bitrate,
            "duration": self.duration,
            "totalBitrate": self.total_bitrate,
        }


def build_sample(
    probe: ProbeResult, stream_key: str, started_at: datetime, now: datetime
) -> MetricSample:
    """Turn a probe result into a metric sample for a running session."""
    video = probe.first_stream("video")
    audio = probe.first_stream("audio")
    return MetricSample(
        timestamp=now,
        stream_key=stream_key,
        video_codec=_codec(video),
        audio_codec=_codec(audio),
        resolution=_resolution(video),
        frame_rate=parse_frame_rate(video.r_frame_rate if video else None),
        video_bitrate=parse_bitrate(video.bit_rate if video else None),
        audio_bitrate=parse_bitrate(audio.bit_rate if audio else None),
        total_bitrate=parse_bitrate(probe.format.bit_rate),
        duration=(now - started_at).total_seconds(),
    )


def parse_bitrate(value: str | int | None) -> int:
    """Parse a bitrate in bits per second, falling back to 0."""
    if value is None:
        return 0
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def parse_frame_rate(value: str | None) -> float:
    """Parse an ffprobe rational such as ``30000/1001`` into frames per second."""
    if not value:
        return 0.0
    numerator, _, denominator = value.partition("/")
    try:
        num = float(numerator)
        den = float(denominator) if denominator else 1.0
    except ValueError:
        return 0.0
    if den == 0:
        return 0.0
    return round(num / den, 3)


def epoch_millis(moment: datetime) -> int:
    """Return milliseconds since the Unix epoch."""
    return int(moment.timestamp() * 1000)


def _codec(stream: ProbeStream | None) -> str:
    if stream is None or not stream.codec_name:
        return NOT_APPLICABLE
    return stream.codec_name


def _resolution(video: ProbeStream | None) -> str:
    if video is None or not video.width or not video.height:
        return NOT_APPLICABLE
    return f"{video.width}x{video.height}"
