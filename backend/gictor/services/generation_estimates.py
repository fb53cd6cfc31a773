"""Rough generation time estimates shown while a request is in flight."""

import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

# Kinds that share an estimate with another kind
_ESTIMATE_ALIASES = {
    "audio": "speech",
    "pipeline_voice": "speech",
    "pipeline_first_frame": "first_frame",
    "pipeline_first_frame_b_roll": "first_frame",
    "pipeline_script": "script",
    "talking_head": "lip_sync",
}

_FIXED_SECONDS = {
    "first_frame": 30,
    "script": 20,
    "b_roll": 120,
}

DEFAULT_SECONDS = 60


def estimate_duration_seconds(kind: str, params: Mapping[str, Any]) -> int:
    kind = _ESTIMATE_ALIASES.get(kind, kind)

    if kind == "speech":
        # 5 seconds per 20 characters, minimum 10 seconds
        text = params.get("script") or params.get("script_text") or ""
        if not text:
            return 30
        return max(10, math.ceil(len(text) / 20 * 5))

    if kind == "lip_sync":
        # 4 minutes per 8 seconds of audio, minimum 2 minutes
        duration = params.get("audio_duration")
        if not duration:
            return 240
        return max(120, math.ceil(duration / 8 * 240))

    return _FIXED_SECONDS.get(kind, DEFAULT_SECONDS)


def time_remaining(
    started_at: datetime | None,
    estimated_seconds: int | None,
    now: datetime | None = None,
) -> str | None:
    """Human-readable remaining time, or None when nothing was estimated."""
    if started_at is None or estimated_seconds is None:
        return None
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    elapsed = (now - started_at).total_seconds()
    remaining = max(0.0, estimated_seconds - elapsed)

    if remaining <= 0:
        return "Almost done..."
    if remaining < 60:
        return f"~{math.ceil(remaining)}s remaining"
    return f"~{math.ceil(remaining / 60)}m remaining"
