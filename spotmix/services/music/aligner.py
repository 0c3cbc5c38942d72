"""Voice–music alignment: place a voice track on a music track's bar grid.

Three decisions, all made on the grid rather than in raw seconds:
  1. Voice entry on the downbeat closest to the planned pre-roll.
  2. Ducking windows that open and close on beats, one beat of ramp.
  3. A button ending that cuts the music on a bar line after the last word.
"""
from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from spotmix.services.grid.musical_grid import nearest_downbeat
from spotmix.services.music.types import (
    AlignmentResult,
    DuckingSegment,
    MusicAnalysis,
    SentenceTiming,
)
from spotmix.services.shared.settings import AlignmentSettings

logger = logging.getLogger("spotmix.music.aligner")


# ── public ────────────────────────────────────────────────────────────────────


def align_voice_to_music(
    analysis: MusicAnalysis,
    sentence_timings: Sequence[SentenceTiming],
    pre_roll_duration: float,
    bar_duration: float,
    post_roll_bars: int = 1,
    duck_level: Optional[float] = None,
    volume_multipliers: Optional[Dict[int, float]] = None,
    settings: Optional[AlignmentSettings] = None,
) -> AlignmentResult:
    """Compute where the voice sits on the music and how the bed ducks.

    Args:
        analysis: Beat grid of the music track.
        sentence_timings: Sentences relative to the voice asset start.
        pre_roll_duration: Planned music-only lead-in in seconds.
        bar_duration: Bar length in seconds.
        post_roll_bars: Bars of music after the button ending downbeat.
        duck_level: Base music gain under voice (default from settings).
        volume_multipliers: Per-sentence "how much music" factors keyed by
            sentence index; above 1 means more music (shallower duck).
        settings: Thresholds; defaults to :class:`AlignmentSettings`.

    Returns:
        Frozen :class:`AlignmentResult`.

    Raises:
        ValueError: If ``bar_duration`` is not positive, ``pre_roll_duration``
            or ``post_roll_bars`` is negative, or a multiplier is not positive.
    """
    settings = settings or AlignmentSettings()
    if bar_duration is None or bar_duration <= 0:
        raise ValueError(f"bar_duration must be > 0, got {bar_duration!r}")
    if pre_roll_duration < 0:
        raise ValueError(f"pre_roll_duration must be >= 0, got {pre_roll_duration!r}")
    if post_roll_bars < 0:
        raise ValueError(f"post_roll_bars must be >= 0, got {post_roll_bars!r}")
    for idx, mult in (volume_multipliers or {}).items():
        if mult is None or mult <= 0:
            raise ValueError(f"volume multiplier for sentence {idx} must be > 0, got {mult!r}")

    voice_delay, entry_bar = find_voice_entry(analysis.downbeat_positions, pre_roll_duration)

    base_level = settings.default_duck_level if duck_level is None else duck_level
    windows = build_ducking_windows(
        sentence_timings,
        analysis.beat_positions,
        voice_delay,
        base_level,
        volume_multipliers or {},
        settings,
    )
    ducking = merge_ducking_windows(windows)

    if sentence_timings:
        last_word_end = sentence_timings[-1].end_seconds + voice_delay
    else:
        last_word_end = voice_delay + settings.no_voice_tail_sec

    button_start, cutoff, button_bar = find_button_ending(
        last_word_end, analysis.downbeat_positions, bar_duration, post_roll_bars,
    )
    score = alignment_score(voice_delay, cutoff, analysis, settings)

    logger.info(
        "Voice alignment: delay %.2fs (bar %d), cutoff %.2fs (bar %d), "
        "%d ducking windows, score %.2f",
        voice_delay, entry_bar, cutoff, button_bar, len(ducking), score,
    )
    return AlignmentResult(
        voice_delay=voice_delay,
        voice_entry_bar=entry_bar,
        music_cutoff_time=cutoff,
        button_start_time=button_start,
        button_ending_bar=button_bar,
        ducking_segments=tuple(ducking),
        alignment_score=score,
    )


def find_voice_entry(downbeats: Sequence[float], pre_roll_duration: float) -> Tuple[float, int]:
    """Downbeat closest to the pre-roll, scanning no further than twice it.

    Returns:
        ``(voice_delay, entry_bar)`` with a 1-based bar.
    """
    if not downbeats:
        return pre_roll_duration, 1

    best_idx = 0
    best_diff = math.inf
    for i, db in enumerate(downbeats):
        diff = abs(db - pre_roll_duration)
        if diff < best_diff:
            best_diff = diff
            best_idx = i
        if db > pre_roll_duration * 2:
            break
    return downbeats[best_idx], best_idx + 1


def sentence_duck_level(
    base_level: float,
    multiplier: float,
    settings: Optional[AlignmentSettings] = None,
) -> float:
    """Duck level for one sentence; a multiplier above 1 ducks deeper."""
    settings = settings or AlignmentSettings()
    level = base_level / multiplier
    return max(settings.min_duck_level, min(settings.max_duck_level, level))


def build_ducking_windows(
    sentence_timings: Sequence[SentenceTiming],
    beats: Sequence[float],
    voice_delay: float,
    base_level: float,
    multipliers: Dict[int, float],
    settings: Optional[AlignmentSettings] = None,
) -> List[DuckingSegment]:
    """One ducking window per sentence, snapped outward to beats."""
    settings = settings or AlignmentSettings()
    snap = len(beats) >= 2
    grid = np.asarray(beats, dtype=float)
    ramp = (beats[1] - beats[0]) if snap else settings.fallback_ramp_sec
    if not snap and sentence_timings:
        logger.debug("Beat grid too sparse for snapping; using raw sentence bounds")

    windows: List[DuckingSegment] = []
    for i, sentence in enumerate(sentence_timings):
        abs_start = sentence.start_seconds + voice_delay
        abs_end = sentence.end_seconds + voice_delay
        start, end = abs_start, abs_end
        if snap:
            # last beat at or before the start, first beat at or after the end
            before = int(np.searchsorted(grid, abs_start, side="right")) - 1
            after = int(np.searchsorted(grid, abs_end, side="left"))
            if before >= 0:
                start = float(grid[before])
            if after < len(grid):
                end = float(grid[after])
        windows.append(DuckingSegment(
            start_time=start,
            end_time=end,
            duck_level=sentence_duck_level(base_level, multipliers.get(i, 1.0), settings),
            ramp_in=ramp,
            ramp_out=ramp,
        ))
    return windows


def merge_ducking_windows(windows: Sequence[DuckingSegment]) -> List[DuckingSegment]:
    """Merge windows that touch within half a ramp; the deeper duck wins."""
    ordered = sorted(windows, key=lambda w: w.start_time)
    merged: List[DuckingSegment] = []
    for curr in ordered:
        if merged and curr.start_time <= merged[-1].end_time + merged[-1].ramp_out * 0.5:
            prev = merged[-1]
            merged[-1] = DuckingSegment(
                start_time=prev.start_time,
                end_time=max(prev.end_time, curr.end_time),
                duck_level=min(prev.duck_level, curr.duck_level),
                ramp_in=prev.ramp_in,
                ramp_out=prev.ramp_out,
            )
        else:
            merged.append(curr)
    return merged


def find_button_ending(
    last_word_end: float,
    downbeats: Sequence[float],
    bar_duration: float,
    post_roll_bars: int = 1,
) -> Tuple[float, float, int]:
    """Button ending after the last word.

    Returns:
        ``(button_start, cutoff_time, button_bar)``.  When no downbeat
        follows the last word the bar is estimated from ``bar_duration``.
    """
    for i, db in enumerate(downbeats):
        if db >= last_word_end:
            return db, db + post_roll_bars * bar_duration, i + 1

    bar = math.ceil(last_word_end / bar_duration)
    return bar * bar_duration, (bar + post_roll_bars) * bar_duration, bar


def alignment_score(
    voice_delay: float,
    cutoff_time: float,
    analysis: MusicAnalysis,
    settings: Optional[AlignmentSettings] = None,
) -> float:
    """Mean of the entry and cutoff scores, each judged against the nearest downbeat."""
    settings = settings or AlignmentSettings()
    if not analysis.downbeat_positions:
        return 0.0
    entry = _downbeat_score(voice_delay, analysis, settings)
    ending = _downbeat_score(cutoff_time, analysis, settings)
    return (entry + ending) / 2.0


# ── private ───────────────────────────────────────────────────────────────────


def _downbeat_score(t: float, analysis: MusicAnalysis, settings: AlignmentSettings) -> float:
    ref = nearest_downbeat(
        t,
        analysis.detected_bpm,
        analysis.time_signature,
        phase_offset=analysis.downbeat_positions[0],
    )
    offset = abs(ref.offset)
    beat = analysis.beat_duration
    if offset < beat * settings.tight_beat_fraction:
        return 1.0
    if offset < beat * settings.loose_beat_fraction:
        return settings.loose_score
    return 0.0
