"""Data types for the musical blueprint generator."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from spotmix.services.grid.types import TimeSignature
from spotmix.services.music.types import SentenceTiming


class MusicalFunction(str, Enum):
    """Explicit narrative role of a sentence, when the script writer gives one."""
    HOOK = "hook"
    BUILD = "build"
    PEAK = "peak"
    RESOLVE = "resolve"
    TRANSITION = "transition"
    PAUSE = "pause"


class DynamicDirection(str, Enum):
    BUILDING = "building"
    SUSTAINING = "sustaining"
    RESOLVING = "resolving"
    PEAK = "peak"


class SyncPointType(str, Enum):
    BRAND_MENTION = "brand_mention"
    KEY_BENEFIT = "key_benefit"
    EMOTIONAL_PEAK = "emotional_peak"
    CTA_START = "cta_start"
    FINAL_WORD = "final_word"
    SENTENCE_START = "sentence_start"


# ── inputs ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SentenceCue:
    """Per-sentence music direction from the script writer.

    Attributes:
        index: Zero-based sentence index the cue belongs to.
        music_cue: Free-text cue label ("hook", "warm resolve", ...).
        music_volume_multiplier: Above 1 asks for more music under the line.
        music_direction: Free-text action for a sync point on this line.
        musical_function: Explicit role; wins over the cue label.
    """
    index: int
    music_cue: Optional[str] = None
    music_volume_multiplier: Optional[float] = None
    music_direction: Optional[str] = None
    musical_function: Optional[MusicalFunction] = None


@dataclass(frozen=True)
class Instrumentation:
    drums: str
    bass: str
    mids: str
    effects: str


@dataclass(frozen=True)
class ArcSegment:
    """Writer-supplied narrative arc span (times relative to the voice)."""
    start_seconds: float
    end_seconds: float
    label: str
    music_prompt: str = ""
    target_bpm: Optional[float] = None
    energy_level: Optional[int] = None


@dataclass(frozen=True)
class ButtonEnding:
    type: str
    timing: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class MusicalStructure:
    """Explicit musical form; overrides the pre/post-roll heuristic."""
    intro_type: str
    intro_bars: int
    body_feel: str
    peak_moment: str
    ending_type: str
    outro_bars: int
    key_signature: Optional[str] = None
    phrase_length: Optional[int] = None


@dataclass(frozen=True)
class BlueprintInput:
    """Everything the generator needs about the script and the music intent."""
    sentence_timings: Tuple[SentenceTiming, ...]
    target_bpm: float
    genre: str
    mood: str
    total_voice_duration: float
    script: str = ""
    sentence_cues: Tuple[SentenceCue, ...] = ()
    composer_direction: Optional[str] = None
    instrumentation: Optional[Instrumentation] = None
    arc: Tuple[ArcSegment, ...] = ()
    button_ending: Optional[ButtonEnding] = None
    musical_structure: Optional[MusicalStructure] = None
    time_signature: TimeSignature = TimeSignature.FOUR_FOUR

    def cue_by_index(self) -> Dict[int, SentenceCue]:
        return {cue.index: cue for cue in self.sentence_cues}

    def volume_multipliers(self) -> Dict[int, float]:
        """Per-sentence music multipliers, ready for the voice aligner."""
        return {
            cue.index: cue.music_volume_multiplier
            for cue in self.sentence_cues
            if cue.music_volume_multiplier is not None
        }


# ── outputs ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SentenceClassification:
    energy: int
    direction: DynamicDirection
    label: str


@dataclass(frozen=True)
class BlueprintSection:
    """Bar range of the planned track with its dynamic intent (1-based bars)."""
    name: str
    start_bar: int
    end_bar: int
    start_time: float
    end_time: float
    energy_level: int
    dynamic_direction: DynamicDirection
    instrumentation_notes: str
    voice_sentences: Tuple[int, ...] = ()


@dataclass(frozen=True)
class SyncPoint:
    """A voice landmark pinned to its nearest downbeat."""
    type: SyncPointType
    voice_timestamp: float
    nearest_downbeat: float
    bar: int                   # 1-based
    beat: int                  # 1-based beat within the bar
    offset: float              # voice_timestamp - nearest_downbeat
    music_action: str


@dataclass(frozen=True)
class DuckingPoint:
    start_time: float
    end_time: float


@dataclass(frozen=True)
class MixingPlan:
    voice_delay_seconds: float
    music_trim_duration: float
    suggested_ducking_points: Tuple[DuckingPoint, ...] = ()


@dataclass(frozen=True)
class MusicalBlueprint:
    """Bar-level plan for one ad's backing track."""
    final_bpm: float
    time_signature: TimeSignature
    bar_duration: float
    total_bars: int
    total_duration: float
    pre_roll_bars: int
    pre_roll_duration: float
    post_roll_bars: int
    post_roll_duration: float
    voice_entry_point: float
    sections: Tuple[BlueprintSection, ...]
    sync_points: Tuple[SyncPoint, ...]
    composition_prompt: str
    mixing_plan: MixingPlan
