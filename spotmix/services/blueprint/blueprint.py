"""Musical blueprint: a bar-level plan for a backing track, built before any
music exists.

Pipeline:
    pre/post roll → tempo tuning → bar grid → sentence bars and classes →
    sections (intro, voice groups, outro) → sync points → brief → mixing plan
"""
from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

from spotmix.services.blueprint.classifier import (
    classify_sentence,
    detect_landmarks,
    find_pauses,
)
from spotmix.services.blueprint.prompt_builder import CompositionBriefBuilder
from spotmix.services.blueprint.types import (
    ArcSegment,
    BlueprintInput,
    BlueprintSection,
    DuckingPoint,
    DynamicDirection,
    MixingPlan,
    MusicalBlueprint,
    SentenceClassification,
    SyncPoint,
    SyncPointType,
)
from spotmix.services.grid.musical_grid import (
    build_bar_grid,
    calculate_pre_post_roll,
    nearest_downbeat,
    optimize_bpm_for_duration,
    snap_to_phrase,
)
from spotmix.services.grid.types import TimeSignature
from spotmix.services.shared.settings import BlueprintSettings

logger = logging.getLogger("spotmix.blueprint.blueprint")

_DEFAULT_INTRO_NOTES = "Soft intro, building anticipation."
_INTRO_NOTES: Dict[str, str] = {
    "ambient_build": "Ambient build, soft pads and textures, no rhythm.",
    "rhythmic_hook": "Rhythmic hook, beat-driven opening, establishes groove.",
    "melodic_theme": "Main melody theme intro, memorable hook.",
    "silence_to_entry": "Near-silence, then music enters with voice.",
}

_DEFAULT_OUTRO_NOTES = "Clean button ending, sustained chord, definitive close."
_OUTRO_NOTES: Dict[str, str] = {
    "button": "Clean button ending, definitive chord cutoff.",
    "sustain": "Sustained chord, natural ring-out.",
    "stinger": "Short punchy stinger hit.",
    "decay": "Natural instrument decay, organic ending.",
}
_UNKNOWN_OUTRO_NOTES = "Clean button ending."

_DEFAULT_ACTIONS: Dict[SyncPointType, str] = {
    SyncPointType.BRAND_MENTION: "subtle melodic accent",
    SyncPointType.KEY_BENEFIT: "energy lift",
    SyncPointType.EMOTIONAL_PEAK: "full arrangement peak",
    SyncPointType.CTA_START: "confident resolve",
    SyncPointType.FINAL_WORD: "begin button ending",
}
_FALLBACK_ACTION = "musical accent"

_MIN_PHRASE_BARS = 2
_MAX_PHRASE_BARS = 4


# ── public ────────────────────────────────────────────────────────────────────


def generate_musical_blueprint(
    inp: BlueprintInput,
    settings: Optional[BlueprintSettings] = None,
) -> MusicalBlueprint:
    """Plan the backing track for a voice-over.

    Args:
        inp: Sentence timings, tempo/genre intent and optional writer direction.
        settings: Tunables; defaults when omitted.

    Returns:
        A :class:`MusicalBlueprint` whose bar grid covers pre-roll, voice and
        post-roll.

    Raises:
        ValueError: If ``target_bpm`` or ``total_voice_duration`` is not positive.
    """
    settings = settings or BlueprintSettings()
    if inp.target_bpm is None or inp.target_bpm <= 0:
        raise ValueError(f"target_bpm must be > 0, got {inp.target_bpm!r}")
    if inp.total_voice_duration is None or inp.total_voice_duration <= 0:
        raise ValueError(f"total_voice_duration must be > 0, got {inp.total_voice_duration!r}")

    ts = TimeSignature.parse(inp.time_signature)
    voice = inp.total_voice_duration

    roll = calculate_pre_post_roll(voice, inp.target_bpm, genre=inp.genre, time_signature=ts)
    tuned = optimize_bpm_for_duration(
        inp.target_bpm, roll.total_music_duration,
        bpm_range=settings.bpm_search_range, time_signature=ts,
    )
    final_bpm = tuned.bpm
    roll = calculate_pre_post_roll(voice, final_bpm, genre=inp.genre, time_signature=ts)
    bar = build_bar_grid(final_bpm, roll.total_music_duration, ts).bar_duration

    structure = inp.musical_structure
    pre_bars = structure.intro_bars if structure else roll.pre_roll_bars
    post_bars = structure.outro_bars if structure else roll.post_roll_bars
    pre = pre_bars * bar
    post = post_bars * bar

    grid = build_bar_grid(final_bpm, pre + voice + post, ts)
    total_bars = grid.total_bars

    logger.info(
        "Blueprint grid: %s BPM (target %s), %s, %d bars, pre %d / post %d",
        final_bpm, inp.target_bpm, ts.value, total_bars, pre_bars, post_bars,
    )

    timings = inp.sentence_timings
    cues = inp.cue_by_index()
    classes = [classify_sentence(cues.get(i), i, len(timings)) for i in range(len(timings))]
    sentence_bars = [_sentence_bars(pre + t.start_seconds, pre + t.end_seconds, bar) for t in timings]

    phrase = settings.default_phrase_bars
    if structure and structure.phrase_length:
        phrase = structure.phrase_length
    phrase = max(_MIN_PHRASE_BARS, min(_MAX_PHRASE_BARS, phrase))

    sections: List[BlueprintSection] = []
    if pre_bars > 0:
        sections.append(_intro_section(inp, pre_bars, pre, settings))

    groups = _group_sentences(classes, find_pauses(timings, settings.pause_threshold_sec))
    voice_first, voice_last = pre_bars + 1, max(pre_bars + 1, total_bars - post_bars)
    for group in groups:
        start_bar = max(voice_first, snap_to_phrase(sentence_bars[group[0]][0], phrase))
        end_bar = min(voice_last, max(start_bar + 1, snap_to_phrase(sentence_bars[group[-1]][1], phrase)))
        start_bar = min(start_bar, voice_last)
        end_bar = max(end_bar, start_bar)

        midpoint = (timings[group[0]].start_seconds + timings[group[-1]].end_seconds) / 2
        arc = _arc_at(inp.arc, midpoint)
        lead = classes[group[0]]
        sections.append(BlueprintSection(
            name=arc.label if arc else lead.label,
            start_bar=start_bar,
            end_bar=end_bar,
            start_time=(start_bar - 1) * bar,
            end_time=end_bar * bar,
            energy_level=arc.energy_level if arc and arc.energy_level is not None else lead.energy,
            dynamic_direction=lead.direction,
            instrumentation_notes=_group_notes(inp, arc),
            voice_sentences=tuple(group),
        ))

    if post_bars > 0:
        sections.append(BlueprintSection(
            name="outro",
            start_bar=total_bars - post_bars + 1,
            end_bar=total_bars,
            start_time=(total_bars - post_bars) * bar,
            end_time=total_bars * bar,
            energy_level=settings.outro_energy,
            dynamic_direction=DynamicDirection.RESOLVING,
            instrumentation_notes=_outro_notes(inp),
        ))

    sync_points = tuple(
        _sync_point(kind, pre + timings[i].start_seconds, final_bpm, ts, cues.get(i))
        for i, kind in detect_landmarks(timings)
    )

    prompt = CompositionBriefBuilder(settings.prompt_max_chars).build(
        bpm=final_bpm,
        time_signature=ts,
        total_bars=total_bars,
        total_duration=grid.total_duration,
        genre=inp.genre,
        mood=inp.mood,
        sections=sections,
        composer_direction=inp.composer_direction,
        instrumentation=inp.instrumentation,
        button_ending=inp.button_ending,
        structure=structure,
    )

    mixing = MixingPlan(
        voice_delay_seconds=pre,
        music_trim_duration=grid.total_duration,
        suggested_ducking_points=tuple(
            DuckingPoint(pre + t.start_seconds, pre + t.end_seconds) for t in timings
        ),
    )

    logger.info("Blueprint: %d sections, %d sync points, brief %d chars",
                len(sections), len(sync_points), len(prompt))

    return MusicalBlueprint(
        final_bpm=final_bpm,
        time_signature=ts,
        bar_duration=bar,
        total_bars=total_bars,
        total_duration=grid.total_duration,
        pre_roll_bars=pre_bars,
        pre_roll_duration=pre,
        post_roll_bars=post_bars,
        post_roll_duration=post,
        voice_entry_point=pre,
        sections=tuple(sections),
        sync_points=sync_points,
        composition_prompt=prompt,
        mixing_plan=mixing,
    )


# ── internal ──────────────────────────────────────────────────────────────────


def _sentence_bars(abs_start: float, abs_end: float, bar: float) -> Tuple[int, int]:
    """1-based (start_bar, end_bar) covering a sentence on the music clock."""
    start = max(1, math.floor(abs_start / bar) + 1)
    return start, max(start, math.ceil(abs_end / bar))


def _group_sentences(
    classes: Sequence[SentenceClassification],
    pauses: Sequence[int],
) -> List[List[int]]:
    """Runs of consecutive sentences, broken at pauses and label changes."""
    pause_set = set(pauses)
    groups: List[List[int]] = []
    current: List[int] = []
    for i, cls in enumerate(classes):
        current.append(i)
        is_last = i == len(classes) - 1
        if is_last or i in pause_set or classes[i + 1].label != cls.label:
            groups.append(current)
            current = []
    return groups


def _arc_at(arc: Sequence[ArcSegment], t: float) -> Optional[ArcSegment]:
    for seg in arc:
        if seg.start_seconds <= t <= seg.end_seconds:
            return seg
    return None


def _intro_section(
    inp: BlueprintInput,
    pre_bars: int,
    pre: float,
    settings: BlueprintSettings,
) -> BlueprintSection:
    first_arc = inp.arc[0] if inp.arc else None
    energy = settings.intro_energy
    if first_arc and first_arc.energy_level is not None:
        energy = first_arc.energy_level

    if inp.musical_structure:
        notes = _INTRO_NOTES.get(inp.musical_structure.intro_type, _DEFAULT_INTRO_NOTES)
    elif inp.instrumentation:
        notes = f"{inp.instrumentation.mids}, {inp.instrumentation.effects}. No drums yet."
    else:
        notes = _DEFAULT_INTRO_NOTES

    return BlueprintSection(
        name="intro",
        start_bar=1,
        end_bar=pre_bars,
        start_time=0.0,
        end_time=pre,
        energy_level=energy,
        dynamic_direction=DynamicDirection.BUILDING,
        instrumentation_notes=notes,
    )


def _group_notes(inp: BlueprintInput, arc: Optional[ArcSegment]) -> str:
    if arc and arc.music_prompt:
        return arc.music_prompt
    if inp.instrumentation:
        return "drums, bass, mids"
    return ""


def _outro_notes(inp: BlueprintInput) -> str:
    ending = inp.button_ending
    if ending:
        return f"{ending.type}. {ending.description}" if ending.description else ending.type
    if inp.musical_structure:
        return _OUTRO_NOTES.get(inp.musical_structure.ending_type, _UNKNOWN_OUTRO_NOTES)
    return _DEFAULT_OUTRO_NOTES


def _sync_point(kind, timestamp, bpm, ts, cue) -> SyncPoint:
    db = nearest_downbeat(timestamp, bpm, ts)
    action = (cue.music_direction if cue else None) or _DEFAULT_ACTIONS.get(kind, _FALLBACK_ACTION)
    return SyncPoint(
        type=kind,
        voice_timestamp=timestamp,
        nearest_downbeat=db.time,
        bar=db.bar + 1,
        beat=1,
        offset=db.offset,
        music_action=action,
    )
