"""Data types for the SpotMix timeline composer."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from spotmix.services.grid.types import TimeSignature
from spotmix.services.music.types import SentenceTiming


class ComposerError(Exception):
    """Base composer exception."""


class InvalidPlanError(ComposerError):
    """The creative segment plan cannot be composed (empty, duplicate indices)."""


class SegmentType(str, Enum):
    """What kind of audio activity a creative segment holds."""
    MUSIC_SOLO = "music_solo"
    VOICEOVER_WITH_MUSIC = "voiceover_with_music"
    VOICEOVER_ONLY = "voiceover_only"
    SFX_HIT = "sfx_hit"
    SILENCE = "silence"


class MusicBehavior(str, Enum):
    """How the music bed behaves inside a segment."""
    FULL = "full"
    DUCKED = "ducked"
    BUILDING = "building"
    RESOLVING = "resolving"
    ACCENT = "accent"
    NONE = "none"


class SegmentTransition(str, Enum):
    """How one segment hands over to the next."""
    CROSSFADE = "crossfade"
    HARD_CUT = "hard_cut"
    DUCK_TRANSITION = "duck_transition"
    NATURAL = "natural"


class EntryType(str, Enum):
    VOICE = "voice"
    MUSIC = "music"
    SFX = "sfx"


# ── resolved assets (collaborator outputs) ───────────────────────────────────


@dataclass(frozen=True)
class VoiceAsset:
    """Synthesised voice for one segment."""
    segment_index: int
    file_path: str
    duration: float
    sentence_timings: Tuple[SentenceTiming, ...] = ()


@dataclass(frozen=True)
class SfxAsset:
    """Generated sound effect for one segment."""
    segment_index: int
    file_path: str
    duration: float


@dataclass(frozen=True)
class MusicAsset:
    """The single backing track under a segment-based ad."""
    file_path: str
    duration: float
    bpm: Optional[float] = None
    time_signature: TimeSignature = TimeSignature.FOUR_FOUR


# ── composer output ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TimelineEntry:
    """One placed asset.  Music is carried by the volume envelope instead."""
    type: EntryType
    file_path: str
    start_time: float
    volume: float
    duration: float
    segment_index: int
    label: str

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


@dataclass(frozen=True)
class MusicVolumeSegment:
    """Music bed level over ``[start_time, end_time)``."""
    start_time: float
    end_time: float
    volume: float
    behavior: MusicBehavior

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class SegmentSpan:
    """Where a creative segment actually landed on the timeline."""
    segment_index: int
    label: str
    start_time: float
    end_time: float


@dataclass(frozen=True)
class TimelineResult:
    """Full composed timeline.

    Attributes:
        entries: Voice and SFX placements in walk order.
        volume_segments: Gap-free music envelope over ``[0, total_duration)``.
        spans: Realised span of each creative segment.
        total_duration: Timeline length including the music tail.
        last_voice_end_time: End of the latest voice entry (or the walk end
            when there is no voice).
    """
    entries: Tuple[TimelineEntry, ...]
    volume_segments: Tuple[MusicVolumeSegment, ...]
    spans: Tuple[SegmentSpan, ...]
    total_duration: float
    last_voice_end_time: float

    @property
    def voice_entries(self) -> Tuple[TimelineEntry, ...]:
        return tuple(e for e in self.entries if e.type == EntryType.VOICE)

    @property
    def sfx_entries(self) -> Tuple[TimelineEntry, ...]:
        return tuple(e for e in self.entries if e.type == EntryType.SFX)


@dataclass(frozen=True)
class VolumeKeyframe:
    """Point of the piecewise-linear render envelope."""
    time: float
    volume: float


@dataclass(frozen=True)
class WalkState:
    """Immutable accumulator of the segment walk.

    ``cursor`` is where the next segment starts; the envelope may run past
    it while a crossfade overlap is pending.
    """
    cursor: float = 0.0
    entries: Tuple[TimelineEntry, ...] = field(default_factory=tuple)
    volume_segments: Tuple[MusicVolumeSegment, ...] = field(default_factory=tuple)
    spans: Tuple[SegmentSpan, ...] = field(default_factory=tuple)

    @property
    def envelope_end(self) -> float:
        return self.volume_segments[-1].end_time if self.volume_segments else 0.0
