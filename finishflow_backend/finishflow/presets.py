"""Background-music preset selection.

The rules are evaluated in order and the first match wins. Shorts are checked
first; a new preset must keep that precedence or existing content gets
reclassified.
"""
import math
from enum import Enum
from typing import Any, Optional


class MusicPreset(str, Enum):
    CALM_LOOP = "CALM_LOOP"
    DOCUMENTARY = "DOCUMENTARY"
    UPBEAT_SHORTS = "UPBEAT_SHORTS"


SHORT_FORM_MAX_S = 60
_SHORT_MARKERS = ("SHORT", "SHORTS")
_DOCUMENTARY_TONES = ("INFO", "DOCUMENTARY")


def _label(value: Any) -> str:
    # accepts plain strings as well as str-valued enums
    return str(getattr(value, "value", value) or "").strip().upper()


def select_preset(kind_or_type: Any = None, tone: Any = None, duration_seconds: Optional[float] = None) -> MusicPreset:
    """Pick a preset for the given content type, tone and duration. Never fails."""
    try:
        dur = float(duration_seconds or 0)
    except (TypeError, ValueError):
        dur = 0.0

    # Rule 1) Shorts first (<= 60s or explicit short-form marker)
    if _label(kind_or_type) in _SHORT_MARKERS or (math.isfinite(dur) and 0 < dur <= SHORT_FORM_MAX_S):
        return MusicPreset.UPBEAT_SHORTS

    # Rule 2) Information/explainer tone => documentary
    if _label(tone) in _DOCUMENTARY_TONES:
        return MusicPreset.DOCUMENTARY

    # Rule 3) Default: calm (esp. senior/health)
    return MusicPreset.CALM_LOOP


def preset_for_kind(kind: Any = "default") -> MusicPreset:
    label = _label(kind)
    if label in _SHORT_MARKERS:
        return MusicPreset.UPBEAT_SHORTS
    if label == "DOCUMENTARY":
        return MusicPreset.DOCUMENTARY
    return MusicPreset.CALM_LOOP


def preset_for_request(kind: Any = None, tone: Any = None, duration_seconds: Optional[float] = None) -> MusicPreset:
    """Like select_preset, but an explicit documentary kind outranks a calm default."""
    preset = select_preset(kind, tone, duration_seconds)
    if preset == MusicPreset.CALM_LOOP:
        return preset_for_kind(kind)
    return preset
