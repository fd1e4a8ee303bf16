"""Pydantic models for ingest hooks and the control API."""

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rtmp_monitor.domain.sessions import stream_path_for


class PublishHook(BaseModel):
    """Publish callback sent by the RTMP server (SRS or nginx-rtmp style)."""

    app: str = "live"
    stream: str | None = None
    name: str | None = None

    @model_validator(mode="after")
    def _require_stream(self) -> "PublishHook":
        if not (self.stream or self.name):
            raise ValueError("stream or name is required")
        return self

    @property
    def stream_path(self) -> str:
        return stream_path_for(self.app, self.stream or self.name or "")


class ForwardRequest(BaseModel):
    """Start or stop relaying a live stream to a destination slot."""

    model_config = ConfigDict(populate_by_name=True)

    action: str
    source_key: str = Field(alias="sourceKey")
    destination_id: int = Field(alias="destinationId")
    destination_url: str | None = Field(default=None, alias="destinationUrl")
    destination_key: str | None = Field(default=None, alias="destinationKey")
