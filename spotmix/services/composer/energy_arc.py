"""Narrative energy arc: subtle volume modulation that follows the story.

Each creative segment gets an energy 0–10 (see
:func:`~spotmix.services.composer.behaviors.infer_segment_energy`).  Energies
are normalised across the ad and turned into a multiplier per envelope piece,
weighted by how much of each realised segment span the piece overlaps.
Pieces under voice (ducked, resolving) move in a narrow band so the bed never
audibly fights the voice; music-forward pieces get a wider band.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from spotmix.services.composer.behaviors import ensure_exhaustive, infer_segment_energy
from spotmix.services.composer.plan import AdCreativeSegment
from spotmix.services.composer.types import MusicBehavior, MusicVolumeSegment, SegmentSpan

logger = logging.getLogger("spotmix.composer.energy_arc")

_NARROW_BAND = (0.97, 1.03)
_WIDE_BAND = (0.80, 1.15)

# None: the piece is left untouched
_ARC_BANDS: Dict[MusicBehavior, Optional[Tuple[float, float]]] = {
    MusicBehavior.DUCKED: _NARROW_BAND,
    MusicBehavior.RESOLVING: _NARROW_BAND,
    MusicBehavior.FULL: _WIDE_BAND,
    MusicBehavior.BUILDING: _WIDE_BAND,
    MusicBehavior.ACCENT: _WIDE_BAND,
    MusicBehavior.NONE: None,
}

ensure_exhaustive(_ARC_BANDS, MusicBehavior, "energy arc bands")


def arc_multiplier(behavior: MusicBehavior, normalized_energy: float) -> float:
    """Volume multiplier for a piece at ``normalized_energy`` (0.0-1.0)."""
    band = _ARC_BANDS[MusicBehavior(behavior)]
    if band is None:
        return 1.0
    low, high = band
    return low + normalized_energy * (high - low)


def segment_energies(
    segments: Sequence[AdCreativeSegment],
    spans: Sequence[SegmentSpan],
) -> List[Tuple[float, float, int]]:
    """``(start, end, energy)`` for every realised segment span."""
    by_index = {seg.segment_index: seg for seg in segments}
    result: List[Tuple[float, float, int]] = []
    for span in spans:
        seg = by_index.get(span.segment_index)
        if seg is None:
            continue
        energy = infer_segment_energy(seg.behavior, seg.type, seg.label)
        result.append((span.start_time, span.end_time, energy))
    return result


def apply_energy_arc(
    segments: Sequence[AdCreativeSegment],
    volume_segments: Sequence[MusicVolumeSegment],
    spans: Sequence[SegmentSpan],
) -> Tuple[MusicVolumeSegment, ...]:
    """Return a modulated copy of ``volume_segments``.

    Needs at least two creative segments; otherwise the envelope comes back
    unchanged.  Timing is never touched, only volumes.
    """
    if len(segments) < 2 or not volume_segments:
        return tuple(volume_segments)

    energies = segment_energies(segments, spans)
    if not energies:
        return tuple(volume_segments)

    values = [e for _, _, e in energies]
    low, high = min(values), max(values)
    spread = (high - low) or 1

    out: List[MusicVolumeSegment] = []
    for piece in volume_segments:
        weight = 0.0
        weighted = 0.0
        for start, end, energy in energies:
            overlap = min(piece.end_time, end) - max(piece.start_time, start)
            if overlap > 0:
                weighted += energy * overlap
                weight += overlap
        if weight <= 0 or _ARC_BANDS[piece.behavior] is None:
            out.append(piece)
            continue
        normalized = (weighted / weight - low) / spread
        out.append(replace(piece, volume=piece.volume * arc_multiplier(piece.behavior, normalized)))

    logger.info("Energy arc applied: %d segments, energy range %d–%d", len(energies), low, high)
    return tuple(out)
