from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

LONG_FORM_TARGET_S = 900
SHORT_FORM_TARGET_S = 90


class Tone(str, Enum):
    CALM = "CALM"
    INFO = "INFO"
    DOCUMENTARY = "DOCUMENTARY"
    UPBEAT = "UPBEAT"
    HEALTH = "HEALTH"


class VideoKind(str, Enum):
    DEFAULT = "default"
    SHORTS = "shorts"
    DOCUMENTARY = "documentary"


class GenerationRequest(BaseModel):
    # topic emptiness is checked by the pipeline so it surfaces as InvalidInput
    topic: str = ""
    tone: Tone = Tone.CALM
    kind: VideoKind = VideoKind.DEFAULT
    target_duration_seconds: Optional[float] = Field(default=None, gt=0)

    @field_validator("topic", mode="before")
    @classmethod
    def _coerce_topic(cls, v):
        return "" if v is None else v

    @field_validator("tone", mode="before")
    @classmethod
    def _coerce_tone(cls, v):
        if isinstance(v, Tone):
            return v
        name = str(v or "").strip().upper()
        return Tone(name) if name in Tone.__members__ else Tone.CALM

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, v):
        if isinstance(v, VideoKind):
            return v
        value = str(v or "").strip().lower()
        if value in ("short", "shorts"):
            return VideoKind.SHORTS
        if value == "documentary":
            return VideoKind.DOCUMENTARY
        return VideoKind.DEFAULT

    def effective_target_seconds(self) -> float:
        if self.target_duration_seconds:
            return float(self.target_duration_seconds)
        if self.kind == VideoKind.SHORTS:
            return float(SHORT_FORM_TARGET_S)
        return float(LONG_FORM_TARGET_S)


class ScriptArtifact(BaseModel):
    title: str
    body: str


class NarrationArtifact(BaseModel):
    path: str
    size_bytes: int
    measured_duration_seconds: float = 0.0
    used_fallback: bool = False
    tts_input: str = ""


class MusicArtifact(BaseModel):
    preset: str
    path: str
    download_url: str = ""


class MediaArtifact(BaseModel):
    path: str
    duration_seconds: float
    size_bytes: int
    has_video_stream: bool


class ValidationResult(BaseModel):
    ok: bool
    reason: Optional[str] = None
    measured_duration_seconds: float = 0.0
    size_bytes: int = 0
    video_codec: str = ""


class ErrorInfo(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None


class SubmitResult(BaseModel):
    ok: bool
    token: Optional[str] = None
    download_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    used_fallback: bool = False
    warnings: List[str] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[ErrorInfo] = None


class PipelineState(BaseModel):
    run_id: str
    tmp_dir: str
    video_path: str
    request: GenerationRequest
    script: Optional[ScriptArtifact] = None
    quality: Dict[str, bool] = Field(default_factory=dict)
    narration: Optional[NarrationArtifact] = None
    duration_seconds: float = 0.0
    preset: Optional[str] = None
    music: Optional[MusicArtifact] = None
    media: Optional[MediaArtifact] = None
    warnings: List[str] = Field(default_factory=list)
