"""Data types for the render hand-off."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from spotmix.services.composer.types import EntryType, VolumeKeyframe


@dataclass(frozen=True)
class MixTrack:
    """A clip placed on the render timeline (voice or SFX)."""
    type: EntryType
    file_path: str
    start_time: float
    duration: float
    volume: float = 1.0
    label: str = ""


@dataclass(frozen=True)
class VolumeCurveSegment:
    """Music gain over ``[start_time, end_time)`` on the music clock."""
    start_time: float
    end_time: float
    volume: float


@dataclass(frozen=True)
class MixSpecification:
    """Everything a rendering engine needs to mix one ad.

    Attributes:
        music_file: Backing track path, or ``None`` for a voice-only mix.
        tracks: Voice and SFX clips.
        volume_curve: Gap-free music gain from 0 to the music length.
        keyframes: Ramped form of ``volume_curve`` for linear interpolation.
        voice_delay: Seconds into the music at which the voice starts.
        music_cutoff_time: Where the music stops.
        total_duration: Length of the rendered ad.
        last_voice_end_time: End of the last voice clip on the mix clock.
        fade_in: Anti-click fade at the start of the mix.
        fade_out_start: Where the closing fade begins; never before
            ``last_voice_end_time``.
        fade_out: Length of the closing fade, 0 when there is no tail to fade.
    """
    music_file: Optional[str]
    tracks: Tuple[MixTrack, ...]
    volume_curve: Tuple[VolumeCurveSegment, ...]
    keyframes: Tuple[VolumeKeyframe, ...] = field(default_factory=tuple)
    voice_delay: float = 0.0
    music_cutoff_time: float = 0.0
    total_duration: float = 0.0
    last_voice_end_time: float = 0.0
    fade_in: float = 0.0
    fade_out_start: float = 0.0
    fade_out: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict; enums become their values."""
        return asdict(self, dict_factory=_json_dict)


def _json_dict(items) -> Dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in items}
