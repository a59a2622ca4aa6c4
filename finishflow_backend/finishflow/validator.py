"""Structural checks on rendered videos.

An encoder that exits zero can still leave behind an empty or audio-only
file, so every render is probed again before it is handed out.
"""
import os
import logging

from .media import CommandError
from .models import ValidationResult
from .settings import MEDIA_MIN_BYTES, MEDIA_MIN_DURATION_S

logger = logging.getLogger(__name__)


class MediaValidator:
    def __init__(self, prober, *, min_duration_seconds: float = MEDIA_MIN_DURATION_S, min_bytes: int = MEDIA_MIN_BYTES):
        # prober: anything with async probe_video_codec(path) and probe_duration(path)
        self.prober = prober
        self.min_duration_seconds = min_duration_seconds
        self.min_bytes = min_bytes

    async def validate(self, path: str) -> ValidationResult:
        if not path or not os.path.isfile(path):
            return ValidationResult(ok=False, reason="missing")
        size = os.path.getsize(path)
        if size == 0:
            return ValidationResult(ok=False, reason="empty")

        try:
            codec = await self.prober.probe_video_codec(path)
        except CommandError as e:
            logger.error(f"Video probe failed for {path}: {e}")
            return ValidationResult(ok=False, reason="probe_failed", size_bytes=size)
        if not codec:
            return ValidationResult(ok=False, reason="no_video_stream", size_bytes=size)

        try:
            duration = await self.prober.probe_duration(path)
        except CommandError as e:
            logger.error(f"Duration probe failed for {path}: {e}")
            return ValidationResult(ok=False, reason="duration_too_short", size_bytes=size, video_codec=codec)
        if duration < self.min_duration_seconds:
            return ValidationResult(
                ok=False, reason="duration_too_short", measured_duration_seconds=duration, size_bytes=size, video_codec=codec
            )

        if size < self.min_bytes:
            return ValidationResult(
                ok=False, reason="too_small", measured_duration_seconds=duration, size_bytes=size, video_codec=codec
            )

        logger.info(f"Validated {path}: codec={codec}, duration={duration:.2f}s, size={size}B")
        return ValidationResult(ok=True, measured_duration_seconds=duration, size_bytes=size, video_codec=codec)
