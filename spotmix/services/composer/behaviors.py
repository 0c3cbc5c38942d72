"""Closed dispatch tables keyed by music behavior and segment type.

Every table covers every member of its enum; :func:`ensure_exhaustive` runs at
import so a new behavior cannot silently fall through to a default.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Pattern, Tuple, Type

from spotmix.services.composer.types import MusicBehavior, SegmentType


def ensure_exhaustive(table: Mapping, enum_cls: Type[Enum], name: str) -> None:
    """Raise TypeError if ``table`` misses any member of ``enum_cls``."""
    missing = [m.value for m in enum_cls if m not in table]
    if missing:
        raise TypeError(f"{name} has no entry for {enum_cls.__name__} {missing}")


# ── music volume resolution ──────────────────────────────────────────────────

_FULL_FLOOR = 0.30
_FULL_DEFAULT = 0.50
# Sidechain ducking at render time sits on top of this level, so it is a
# fixed floor whatever the plan asks for.
_DUCKED_LEVEL = 0.40
_BUILDING_FACTOR = 2.0
_RESOLVING_FACTOR = 1.1
_ACCENT_DEFAULT = 0.6

VolumeRule = Callable[[Optional[float], float], float]

_VOLUME_RULES: Dict[MusicBehavior, VolumeRule] = {
    MusicBehavior.FULL: lambda explicit, base: (
        max(explicit, _FULL_FLOOR) if explicit is not None else _FULL_DEFAULT
    ),
    MusicBehavior.DUCKED: lambda explicit, base: _DUCKED_LEVEL,
    MusicBehavior.BUILDING: lambda explicit, base: (
        explicit if explicit is not None else base * _BUILDING_FACTOR
    ),
    MusicBehavior.RESOLVING: lambda explicit, base: (
        explicit if explicit is not None else base * _RESOLVING_FACTOR
    ),
    MusicBehavior.ACCENT: lambda explicit, base: (
        explicit if explicit is not None else _ACCENT_DEFAULT
    ),
    MusicBehavior.NONE: lambda explicit, base: 0.0,
}


def resolve_music_volume(
    behavior: MusicBehavior,
    explicit_volume: Optional[float],
    base_volume: float,
) -> float:
    """Music bed level for a segment.

    ``ducked`` is pinned at 0.40 and ``full`` never drops below 0.30, whatever
    the plan says; the other behaviors honour an explicit level.
    """
    return float(_VOLUME_RULES[MusicBehavior(behavior)](explicit_volume, base_volume))


# ── narrative energy (0–10) ──────────────────────────────────────────────────

# None: the behavior says nothing about energy, look at type and label
_BEHAVIOR_ENERGY: Dict[MusicBehavior, Optional[int]] = {
    MusicBehavior.FULL: 8,
    MusicBehavior.ACCENT: 7,
    MusicBehavior.BUILDING: 6,
    MusicBehavior.NONE: 0,
    MusicBehavior.DUCKED: None,
    MusicBehavior.RESOLVING: None,
}

_TYPE_ENERGY: Dict[SegmentType, Optional[int]] = {
    SegmentType.MUSIC_SOLO: 7,
    SegmentType.SFX_HIT: 5,
    SegmentType.SILENCE: 1,
    SegmentType.VOICEOVER_WITH_MUSIC: None,
    SegmentType.VOICEOVER_ONLY: None,
}

_LABEL_ENERGY: List[Tuple[Pattern, int]] = [
    (re.compile(r"intro|hook|opening", re.I), 4),
    (re.compile(r"feature|benefit|product", re.I), 6),
    (re.compile(r"peak|climax|highlight", re.I), 8),
    (re.compile(r"cta|call.to.action|act.now|order|buy", re.I), 7),
    (re.compile(r"deal|offer|discount|sale|price", re.I), 6),
    (re.compile(r"close|outro|ending|resolve", re.I), 4),
]

DEFAULT_ENERGY = 5


def infer_segment_energy(
    behavior: Optional[MusicBehavior],
    segment_type: SegmentType,
    label: str = "",
) -> int:
    """Energy 0–10 from explicit behavior, else segment type, else label.

    Args:
        behavior: The segment's music behavior, or None when it has no
            music block at all.
        segment_type: Kind of segment.
        label: Free-text segment label.
    """
    if behavior is not None:
        energy = _BEHAVIOR_ENERGY[MusicBehavior(behavior)]
        if energy is not None:
            return energy
    energy = _TYPE_ENERGY[SegmentType(segment_type)]
    if energy is not None:
        return energy
    for pattern, value in _LABEL_ENERGY:
        if pattern.search(label or ""):
            return value
    return DEFAULT_ENERGY


ensure_exhaustive(_VOLUME_RULES, MusicBehavior, "music volume rules")
ensure_exhaustive(_BEHAVIOR_ENERGY, MusicBehavior, "behavior energy table")
ensure_exhaustive(_TYPE_ENERGY, SegmentType, "segment type energy table")
