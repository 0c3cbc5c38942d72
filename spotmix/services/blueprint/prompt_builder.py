"""CompositionBriefBuilder: bar-based text brief for a music generator.

Assembly order:
    header (tempo, meter, key, mood, length) → genre → instrumentation →
    one directive per section → composer notes → ending → closing instruction
"""
from __future__ import annotations

import re
from typing import List, Optional, Sequence

from spotmix.services.blueprint.types import (
    BlueprintSection,
    ButtonEnding,
    DynamicDirection,
    Instrumentation,
    MusicalStructure,
)
from spotmix.services.grid.types import TimeSignature

_CLOSING = (
    "IMPORTANT: Continuous flowing music. Smooth transitions between sections. "
    "Professional ad background that supports voice."
)
_VOICE_POCKET = "Leave 1-4kHz frequency range clear for voice-over."
_DEFAULT_ENDING = "Clean button ending, definitive close, no fade-out."

_DIRECTION_WORDS = {
    DynamicDirection.BUILDING: "building",
    DynamicDirection.PEAK: "fullest arrangement",
    DynamicDirection.RESOLVING: "resolving",
    DynamicDirection.SUSTAINING: "sustaining",
}

_WS_RE = re.compile(r"\s+")


def energy_tier(level: int) -> str:
    """Word for an energy level 0–10."""
    if level <= 3:
        return "low energy"
    if level <= 5:
        return "medium energy"
    if level <= 7:
        return "high energy"
    return "peak energy"


class CompositionBriefBuilder:
    """Builds the plain-text brief sent with a music generation request.

    The brief is whitespace-normalised and capped at ``max_chars`` because
    generation providers reject longer style prompts.

    Usage::

        brief = CompositionBriefBuilder(max_chars=1000).build(
            bpm=118, time_signature=TimeSignature.FOUR_FOUR, total_bars=16,
            total_duration=32.5, genre="corporate pop", mood="uplifting",
            sections=blueprint_sections,
        )
    """

    def __init__(self, max_chars: int = 1000):
        self.max_chars = max_chars

    def build(
        self,
        bpm: float,
        time_signature: TimeSignature,
        total_bars: int,
        total_duration: float,
        genre: str,
        mood: str,
        sections: Sequence[BlueprintSection],
        composer_direction: Optional[str] = None,
        instrumentation: Optional[Instrumentation] = None,
        button_ending: Optional[ButtonEnding] = None,
        structure: Optional[MusicalStructure] = None,
    ) -> str:
        parts: List[str] = []

        key = f", {structure.key_signature}" if structure and structure.key_signature else ""
        feel = f", {structure.body_feel} feel" if structure and structure.body_feel else ""
        parts.append(
            f"{_format_bpm(bpm)} BPM, {TimeSignature.parse(time_signature).value} time{key}, "
            f"{mood}{feel}, {total_bars} bars total (~{round(total_duration)}s)."
        )
        parts.append(f"Genre: {genre}. Instrumental only, no vocals.")

        if instrumentation:
            parts.append(
                f"Instrumentation: drums: {instrumentation.drums}. bass: {instrumentation.bass}. "
                f"mids: {instrumentation.mids}. fx: {instrumentation.effects}. "
                "Leave 1-4kHz clear for voice."
            )
        else:
            parts.append(_VOICE_POCKET)

        for section in sections:
            parts.append(self._section_directive(section))

        if composer_direction and composer_direction.strip():
            parts.append(f"Composer notes: {composer_direction.strip()}")

        if button_ending:
            parts.append(f"Ending: {button_ending.type}. CLEAN ENDING, NO FADE-OUT.")
        else:
            parts.append(_DEFAULT_ENDING)

        parts.append(_CLOSING)

        brief = _WS_RE.sub(" ", " ".join(parts)).strip()
        return brief[: self.max_chars]

    # ── internal ──────────────────────────────────────────────────────────────

    def _section_directive(self, section: BlueprintSection) -> str:
        if section.start_bar == section.end_bar:
            bars = f"Bar {section.start_bar}"
        else:
            bars = f"Bars {section.start_bar}-{section.end_bar}"
        text = (
            f"{bars}: {section.name}. {energy_tier(section.energy_level)}, "
            f"{_DIRECTION_WORDS[section.dynamic_direction]}."
        )
        if section.instrumentation_notes:
            text += f" {section.instrumentation_notes}"
        return text


def _format_bpm(bpm: float) -> str:
    return str(int(bpm)) if float(bpm).is_integer() else f"{bpm:g}"
