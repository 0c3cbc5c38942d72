"""Render envelope: piecewise-constant volume segments → ramped keyframes.

The renderer interpolates linearly between keyframes.  Each level change
ramps in at the start of the new piece; the ramp is one beat when the
track's tempo is known, otherwise a fixed half second, and never more than
half of the incoming piece.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from spotmix.services.composer.types import MusicVolumeSegment, VolumeKeyframe
from spotmix.services.grid.musical_grid import TimeSignatureLike, beat_duration_for
from spotmix.services.shared.settings import EnvelopeSettings

logger = logging.getLogger("spotmix.composer.envelope")


def ramp_duration(
    bpm: Optional[float] = None,
    time_signature: TimeSignatureLike = None,
    settings: Optional[EnvelopeSettings] = None,
) -> float:
    """One beat (clamped to the configured range) or the default ramp."""
    settings = settings or EnvelopeSettings()
    if not bpm or bpm <= 0:
        return settings.default_ramp_sec
    beat = beat_duration_for(bpm, time_signature)
    return max(settings.min_ramp_sec, min(settings.max_ramp_sec, beat))


def build_volume_keyframes(
    volume_segments: Sequence[MusicVolumeSegment],
    total_duration: float,
    bpm: Optional[float] = None,
    time_signature: TimeSignatureLike = None,
    settings: Optional[EnvelopeSettings] = None,
) -> Tuple[VolumeKeyframe, ...]:
    """Keyframes from 0 to ``total_duration`` with ramps at level changes."""
    if not volume_segments:
        return (VolumeKeyframe(0.0, 1.0), VolumeKeyframe(max(0.0, total_duration), 1.0))

    ramp = ramp_duration(bpm, time_signature, settings)
    frames: List[VolumeKeyframe] = [VolumeKeyframe(0.0, volume_segments[0].volume)]
    prev = volume_segments[0]
    for piece in volume_segments[1:]:
        if piece.duration <= 0:
            continue
        if abs(piece.volume - prev.volume) > 1e-9:
            ramp_end = piece.start_time + min(ramp, piece.duration * 0.5)
            frames.append(VolumeKeyframe(piece.start_time, prev.volume))
            frames.append(VolumeKeyframe(ramp_end, piece.volume))
        prev = piece
    frames.append(VolumeKeyframe(total_duration, prev.volume))

    logger.debug("Envelope: %d pieces → %d keyframes (ramp %.3fs)",
                 len(volume_segments), len(frames), ramp)
    return tuple(frames)


def volume_at(keyframes: Sequence[VolumeKeyframe], t: float) -> float:
    """Linear interpolation of the envelope at time ``t``."""
    if not keyframes:
        return 1.0
    times = np.asarray([k.time for k in keyframes], dtype=float)
    values = np.asarray([k.volume for k in keyframes], dtype=float)
    return float(np.interp(t, times, values))
