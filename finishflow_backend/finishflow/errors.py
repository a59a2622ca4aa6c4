"""Typed failures raised by pipeline steps and reported to callers."""
from typing import Any, Optional

from .models import ErrorInfo


class PipelineError(Exception):
    code = "pipeline_error"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_info(self) -> ErrorInfo:
        return ErrorInfo(code=self.code, message=self.message, details=self.details)


class InvalidInput(PipelineError):
    code = "invalid_input"
    status_code = 400


class Busy(PipelineError):
    code = "busy"
    status_code = 429


class UpstreamScriptFailure(PipelineError):
    code = "upstream_script_failure"
    status_code = 502


class UpstreamSpeechFailure(PipelineError):
    code = "upstream_speech_failure"
    status_code = 502


class UpstreamMusicFailure(PipelineError):
    """Music engine failure. Caught inside the pipeline, never surfaced."""

    code = "upstream_music_failure"
    status_code = 502


class RenderFailure(PipelineError):
    code = "render_failure"


class OutputInvalid(PipelineError):
    code = "output_invalid"


class OutputTooSmall(OutputInvalid):
    code = "output_too_small"


class NoVideoStream(OutputInvalid):
    code = "no_video_stream"


class DurationTooShort(OutputInvalid):
    code = "duration_too_short"


STATUS_BY_CODE = {
    cls.code: cls.status_code
    for cls in (
        InvalidInput, Busy, UpstreamScriptFailure, UpstreamSpeechFailure, UpstreamMusicFailure,
        RenderFailure, OutputInvalid, OutputTooSmall, NoVideoStream, DurationTooShort,
    )
}
