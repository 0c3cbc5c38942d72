"""Data types for the SpotMix musical grid."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TimeSignature(str, Enum):
    """Supported meters.  Compound meters count in eighth notes."""
    FOUR_FOUR = "4/4"
    THREE_FOUR = "3/4"
    SIX_EIGHT = "6/8"
    SEVEN_EIGHT = "7/8"
    TWELVE_EIGHT = "12/8"

    @property
    def beats_per_bar(self) -> int:
        return int(self.value.split("/")[0])

    @property
    def beat_unit(self) -> float:
        """Beat length relative to a quarter note (1.0 for x/4, 0.5 for x/8)."""
        return 0.5 if self.value.endswith("/8") else 1.0

    @classmethod
    def parse(cls, value) -> "TimeSignature":
        """Accept a TimeSignature, a "n/d" string or None (→ 4/4)."""
        if value is None:
            return cls.FOUR_FOUR
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            raise ValueError(
                f"Unsupported time signature: {value!r}. "
                f"Valid: {[ts.value for ts in cls]}"
            ) from None

    @classmethod
    def from_beats_per_bar(cls, beats_per_bar: int) -> "TimeSignature":
        """Simple-meter signature for a beat count (3 → 3/4, 6 → 6/8, ...)."""
        for ts in cls:
            if ts.beats_per_bar == beats_per_bar:
                return ts
        raise ValueError(f"No supported time signature has {beats_per_bar} beats per bar")


@dataclass(frozen=True)
class BarGrid:
    """Bar grid for a tempo, meter and requested duration.

    ``total_duration`` is bar-aligned: ``total_bars * bar_duration``, which is
    always >= the requested duration and less than one bar longer.
    """
    bpm: float
    time_signature: TimeSignature
    beats_per_bar: int
    beat_duration: float
    bar_duration: float
    total_bars: int
    total_duration: float


@dataclass(frozen=True)
class BarAlignedDuration:
    """A duration rounded to whole bars."""
    duration: float
    bars: int
    bpm: float
    bar_duration: float


@dataclass(frozen=True)
class BpmOptimization:
    """Result of a BPM search against a target duration."""
    bpm: float
    bars: int
    exact_duration: float
    error: float               # |exact_duration - target| in seconds


@dataclass(frozen=True)
class PrePostRoll:
    """Music-only bars before voice entry and after voice end."""
    pre_roll_bars: int
    pre_roll_duration: float
    post_roll_bars: int
    post_roll_duration: float
    total_music_duration: float


@dataclass(frozen=True)
class LoopPlan:
    """How to cover a long duration by looping a bar-aligned seed."""
    seed_duration: float
    seed_bars: int
    full_loops: int
    trim_duration: float
    total_bars: int
    bpm: float
    bar_duration: float


@dataclass(frozen=True)
class MusicDurationPlan:
    """What to request from a music generator for a voice track."""
    pre_post_roll: PrePostRoll
    loop_plan: LoopPlan
    request_duration: float
    needs_loop: bool


@dataclass(frozen=True)
class MusicFitPlan:
    """Decision for fitting a generated track to the voice.

    Attributes:
        action: ``"trim"`` | ``"loop"`` | ``"use_as_is"``.
        target_duration: Bar-aligned music length to end up with.
        loop_count: Number of copies needed when ``action == "loop"``.
    """
    action: str
    target_duration: float
    target_bars: int
    bar_duration: float
    loop_count: int
    pre_roll_duration: float
    pre_roll_bars: int


@dataclass(frozen=True)
class DownbeatRef:
    """Nearest downbeat to a timestamp.

    Attributes:
        time: Downbeat time in seconds.
        bar: Zero-based bar index of the downbeat.
        offset: Signed distance ``timestamp - time``.
    """
    time: float
    bar: int
    offset: float


@dataclass(frozen=True)
class BeatRef:
    """Nearest beat to a timestamp (zero-based beat index)."""
    time: float
    beat: int
    offset: float
