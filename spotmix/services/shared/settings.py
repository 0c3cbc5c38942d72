"""Tunable constants for every SpotMix engine, grouped per component.

Each dataclass carries the defaults the engines use when no configuration is
given.  ``from_config`` overlays the matching ``settings.yaml`` section:

    cfg = get_config("spotmix/config/settings.yaml")
    composer = ComposerSettings.from_config(cfg)
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type, TypeVar

logger = logging.getLogger("spotmix.shared.settings")

T = TypeVar("T")


def _from_section(cls: Type[T], config: Any, section: str) -> T:
    """Build ``cls`` from the keys of ``config[section]`` that match its fields.

    Unknown keys are ignored with a debug note; missing keys keep defaults.
    """
    if config is None:
        return cls()
    values = config.get_section(section)
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(values) - names)
    if unknown:
        logger.debug("Ignoring unknown %s settings: %s", section, unknown)
    kwargs: Dict[str, Any] = {k: v for k, v in values.items() if k in names}
    return cls(**kwargs)


@dataclass(frozen=True)
class MeterSettings:
    """Energy extraction (external loudness meter)."""
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    timeout_sec: float = 120.0
    sample_interval_sec: float = 0.1
    flat_energy: float = 0.5

    @classmethod
    def from_config(cls, config: Any) -> "MeterSettings":
        return _from_section(cls, config, "meter")


@dataclass(frozen=True)
class InterpreterSettings:
    """Energy curve → section interpretation.

    Attributes:
        onset_threshold: First sample at or above this energy marks the onset.
        building_threshold: Smoothed energy below this is "low".
        peak_threshold: Smoothed energy at or above this is "peak".
        fallback_sample_interval_sec: Sample spacing assumed for smoothing
            when the curve is too short to measure it.
    """
    onset_threshold: float = 0.15
    building_threshold: float = 0.3
    peak_threshold: float = 0.55
    fallback_sample_interval_sec: float = 0.1

    @classmethod
    def from_config(cls, config: Any) -> "InterpreterSettings":
        return _from_section(cls, config, "interpreter")


@dataclass(frozen=True)
class AlignmentSettings:
    """Voice–music alignment.

    Attributes:
        default_duck_level: Music gain under voice when none is given.
        min_duck_level: Lower clamp for per-sentence duck levels.
        max_duck_level: Upper clamp for per-sentence duck levels.
        fallback_ramp_sec: Ramp used when there is no usable beat grid.
        no_voice_tail_sec: Assumed speech length when no sentences exist.
        tight_beat_fraction: Offset (in beats) that scores 1.0.
        loose_beat_fraction: Offset (in beats) that scores ``loose_score``.
    """
    default_duck_level: float = 0.25
    min_duck_level: float = 0.1
    max_duck_level: float = 0.8
    fallback_ramp_sec: float = 0.1
    no_voice_tail_sec: float = 10.0
    tight_beat_fraction: float = 0.25
    loose_beat_fraction: float = 0.5
    loose_score: float = 0.7

    @classmethod
    def from_config(cls, config: Any) -> "AlignmentSettings":
        return _from_section(cls, config, "alignment")


def _default_transition_durations() -> Dict[str, float]:
    return {"crossfade": 0.3, "duck_transition": 0.25, "natural": 0.0, "hard_cut": 0.0}


@dataclass(frozen=True)
class ComposerSettings:
    """Segment-based timeline composition.

    Attributes:
        breath_gap_sec: Pause added after a voice that finishes early.
        music_tail_sec: Music kept after the last word for the fade.
        base_music_volume: Reference bed level for building/resolving.
        min_transition_sec: Transitions shorter than this are ignored.
        crossfade_share: Max share of a segment a crossfade may eat.
        duck_transition_max_sec: Longest extra dip at a duck transition.
        duck_transition_ratio: Dip level relative to the current volume.
        sfx_offset_sec: Delay of an SFX layered under voice.
        sfx_overlay_volume: Default level of a layered SFX.
        sfx_overlay_max_volume: Cap for a layered SFX.
        sfx_hit_volume: Default level of a standalone SFX hit.
        transition_defaults: Duration per transition type when unspecified.
    """
    breath_gap_sec: float = 0.3
    music_tail_sec: float = 5.0
    base_music_volume: float = 0.15
    min_transition_sec: float = 0.05
    crossfade_share: float = 0.5
    duck_transition_max_sec: float = 0.5
    duck_transition_ratio: float = 0.9
    sfx_offset_sec: float = 0.1
    sfx_overlay_volume: float = 0.4
    sfx_overlay_max_volume: float = 0.45
    sfx_hit_volume: float = 0.7
    transition_defaults: Dict[str, float] = field(default_factory=_default_transition_durations)

    def transition_default(self, transition: str) -> float:
        return float(self.transition_defaults.get(transition, 0.0))

    @classmethod
    def from_config(cls, config: Any) -> "ComposerSettings":
        return _from_section(cls, config, "composer")


@dataclass(frozen=True)
class EnvelopeSettings:
    """Volume keyframe ramps for the render envelope."""
    default_ramp_sec: float = 0.5
    min_ramp_sec: float = 0.08
    max_ramp_sec: float = 0.5

    @classmethod
    def from_config(cls, config: Any) -> "EnvelopeSettings":
        return _from_section(cls, config, "envelope")


@dataclass(frozen=True)
class BlueprintSettings:
    """Musical blueprint generation."""
    bpm_search_range: float = 5
    default_phrase_bars: int = 2
    pause_threshold_sec: float = 0.4
    prompt_max_chars: int = 1000
    intro_energy: int = 3
    outro_energy: int = 4

    @classmethod
    def from_config(cls, config: Any) -> "BlueprintSettings":
        return _from_section(cls, config, "blueprint")


@dataclass(frozen=True)
class MixSettings:
    """Output fades written into the mix specification.

    Attributes:
        fade_in_sec: Anti-click fade at the very start of the mix.
        min_fade_in_sec: Lower clamp for ``fade_in_sec``.
        max_fade_in_sec: Upper clamp for ``fade_in_sec``.
        min_tail_fade_sec: Music after the last voice must be longer than
            this to be faded at all.
        max_fade_out_sec: Longest fade-out; longer tails play at level first.
    """
    fade_in_sec: float = 0.08
    min_fade_in_sec: float = 0.02
    max_fade_in_sec: float = 0.12
    min_tail_fade_sec: float = 0.3
    max_fade_out_sec: float = 5.0

    @classmethod
    def from_config(cls, config: Any) -> "MixSettings":
        return _from_section(cls, config, "mix")


def load_all(config: Optional[Any]) -> Dict[str, Any]:
    """Every settings group keyed by its YAML section name."""
    return {
        "meter": MeterSettings.from_config(config),
        "interpreter": InterpreterSettings.from_config(config),
        "alignment": AlignmentSettings.from_config(config),
        "composer": ComposerSettings.from_config(config),
        "envelope": EnvelopeSettings.from_config(config),
        "blueprint": BlueprintSettings.from_config(config),
        "mix": MixSettings.from_config(config),
    }
