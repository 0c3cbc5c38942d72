"""Data types for music analysis and voice alignment."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple

from spotmix.services.grid.types import TimeSignature


class SectionLabel(str, Enum):
    """Coarse energy label of an interpreted music section."""
    LOW = "low"
    BUILDING = "building"
    PEAK = "peak"
    RESOLVING = "resolving"


@dataclass(frozen=True)
class EnergySample:
    """One loudness reading: ``energy`` is normalised to 0.0-1.0."""
    time: float
    energy: float


@dataclass(frozen=True)
class EnergyCurve:
    """Output of the extraction chain.

    Attributes:
        samples: Time-ordered energy samples (may be a flat fallback).
        total_duration: Known duration of the audio in seconds.
        strategy: Name of the strategy that produced ``samples``.
        notes: Reasons recorded by strategies that produced nothing.
    """
    samples: Tuple[EnergySample, ...]
    total_duration: float
    strategy: str
    notes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MusicalSection:
    """Contiguous stretch of similar energy."""
    start_time: float
    end_time: float
    avg_energy: float
    label: SectionLabel

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class MusicAnalysis:
    """Phase-aligned beat grid plus energy sections for one music track."""
    detected_bpm: float
    time_signature: TimeSignature
    beat_positions: Tuple[float, ...]
    downbeat_positions: Tuple[float, ...]
    energy_curve: Tuple[EnergySample, ...]
    total_duration: float
    phase_offset: float
    sections: Tuple[MusicalSection, ...]

    @property
    def beat_duration(self) -> float:
        """Measured beat spacing, or the nominal one for a sparse grid."""
        if len(self.beat_positions) > 1:
            return self.beat_positions[1] - self.beat_positions[0]
        return (60.0 / self.detected_bpm) * self.time_signature.beat_unit

    @property
    def bar_duration(self) -> float:
        return self.beat_duration * self.time_signature.beats_per_bar


@dataclass(frozen=True)
class SentenceTiming:
    """Sentence boundaries relative to the start of its voice asset."""
    text: str
    start_seconds: float
    end_seconds: float


@dataclass(frozen=True)
class DuckingSegment:
    """Window where the music bed sits under the voice.

    ``duck_level`` is the music gain inside the window: 0 = silent,
    1 = untouched.
    """
    start_time: float
    end_time: float
    duck_level: float
    ramp_in: float
    ramp_out: float


@dataclass(frozen=True)
class AlignmentResult:
    """Where the voice sits on the music grid and how the bed ducks.

    Attributes:
        voice_delay: Seconds into the music at which voice time 0 plays.
        voice_entry_bar: 1-based bar the voice enters on.
        music_cutoff_time: Bar-aligned time where the music stops.
        button_start_time: Downbeat where the button ending starts.
        button_ending_bar: 1-based bar of the button ending.
        ducking_segments: Merged, time-ordered ducking windows.
        alignment_score: 0.0-1.0 quality of entry and cutoff placement.
    """
    voice_delay: float
    voice_entry_bar: int
    music_cutoff_time: float
    button_start_time: float
    button_ending_bar: int
    ducking_segments: Tuple[DuckingSegment, ...] = field(default_factory=tuple)
    alignment_score: float = 0.0
