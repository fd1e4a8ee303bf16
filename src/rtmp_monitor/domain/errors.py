"""Error types raised by the stream orchestrator."""


class StreamError(Exception):
    """Base error with an HTTP-style status code for the control plane."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SessionNotFound(StreamError):
    """The requested stream is not live."""

    status_code = 404

    def __init__(self, message: str = "Stream not found") -> None:
        super().__init__(message)


class SessionAlreadyLive(StreamError):
    """A publish-begins arrived for a stream that is already live."""

    status_code = 409

    def __init__(self, stream_path: str) -> None:
        super().__init__(f"Stream {stream_path} is already live")


class AlreadyForwarding(StreamError):
    """The destination slot is already in use."""

    status_code = 400

    def __init__(
        self,
        message: str = "Stream is already being forwarded to this destination",
    ) -> None:
        super().__init__(message)


class NotForwarding(StreamError):
    """No relay exists for the destination slot."""

    status_code = 404

    def __init__(self, message: str = "Forwarding process not found") -> None:
        super().__init__(message)


class InvalidAction(StreamError):
    """The control request is malformed."""

    status_code = 400

    def __init__(self, message: str = "Invalid action") -> None:
        super().__init__(message)


class ProbeFailed(StreamError):
    """ffprobe could not describe the source."""


class SubprocessSpawnFailed(StreamError):
    """An ffmpeg process could not be started."""


class SubprocessRuntimeError(StreamError):
    """An ffmpeg process exited with a non-zero status."""

    def __init__(self, label: str, returncode: int | None, detail: str = "") -> None:
        message = detail or f"{label} exited with code {returncode}"
        super().__init__(message)
        self.label = label
        self.returncode = returncode


class FlushFailed(StreamError):
    """The metric log could not be written."""
