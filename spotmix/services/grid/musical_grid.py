"""Musical grid math: bars, beats, downbeats and bar-aligned durations.

Composers think in bars and phrases, not seconds.  Everything here is pure
arithmetic on (tempo, meter, duration) and is shared by the interpreter, the
voice aligner, the timeline envelope and the blueprint generator.
"""
from __future__ import annotations

import logging
import math
from typing import List, Optional, Union

from spotmix.services.grid.types import (
    BarAlignedDuration,
    BarGrid,
    BeatRef,
    BpmOptimization,
    DownbeatRef,
    LoopPlan,
    MusicDurationPlan,
    MusicFitPlan,
    PrePostRoll,
    TimeSignature,
)

logger = logging.getLogger("spotmix.grid.musical_grid")

_MIN_BPM = 40.0
_MAX_BPM = 200.0
_MAX_PRE_ROLL_BARS = 4

# Ad-length breakpoints for the pre/post-roll heuristic
_SHORT_AD_SEC = 15.0
_STANDARD_AD_SEC = 30.0
_SHORT_BAR_SEC = 1.5

_SLOW_INTRO_GENRES = ("cinematic", "ambient")
_FAST_INTRO_GENRES = (
    "edm", "dance", "hip hop", "hip-hop", "trap", "rock", "punk",
    "drum and bass", "reggaeton",
)

_EPS = 1e-9

TimeSignatureLike = Union[TimeSignature, str, None]


# ── basic conversions ─────────────────────────────────────────────────────────


def _check_bpm(bpm: float) -> None:
    if bpm is None or bpm <= 0:
        raise ValueError(f"bpm must be > 0, got {bpm!r}")


def beat_duration_for(bpm: float, time_signature: TimeSignatureLike = None) -> float:
    """Seconds per beat, in the meter's beat unit."""
    _check_bpm(bpm)
    ts = TimeSignature.parse(time_signature)
    return (60.0 / bpm) * ts.beat_unit


def bar_duration_for(bpm: float, time_signature: TimeSignatureLike = None) -> float:
    """Seconds per bar."""
    ts = TimeSignature.parse(time_signature)
    return beat_duration_for(bpm, ts) * ts.beats_per_bar


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up."""
    return int(math.floor(value + 0.5))


def build_bar_grid(
    bpm: float,
    total_duration: float,
    time_signature: TimeSignatureLike = None,
) -> BarGrid:
    """Build the bar grid covering ``total_duration`` at ``bpm``.

    Raises:
        ValueError: If ``bpm`` or ``total_duration`` is not positive.
    """
    _check_bpm(bpm)
    if total_duration is None or total_duration <= 0:
        raise ValueError(f"total_duration must be > 0, got {total_duration!r}")

    ts = TimeSignature.parse(time_signature)
    beat = beat_duration_for(bpm, ts)
    bar = beat * ts.beats_per_bar
    total_bars = max(1, math.ceil(total_duration / bar - _EPS))
    return BarGrid(
        bpm=bpm,
        time_signature=ts,
        beats_per_bar=ts.beats_per_bar,
        beat_duration=beat,
        bar_duration=bar,
        total_bars=total_bars,
        total_duration=total_bars * bar,
    )


def ceil_to_bar(seconds: float, bpm: float, time_signature: TimeSignatureLike = None) -> BarAlignedDuration:
    """Round a duration up to a whole number of bars."""
    bar = bar_duration_for(bpm, time_signature)
    bars = math.ceil(seconds / bar - _EPS)
    return BarAlignedDuration(duration=bars * bar, bars=bars, bpm=bpm, bar_duration=bar)


def floor_to_bar(seconds: float, bpm: float, time_signature: TimeSignatureLike = None) -> BarAlignedDuration:
    """Round a duration down to whole bars (never less than one bar)."""
    bar = bar_duration_for(bpm, time_signature)
    bars = max(1, math.floor(seconds / bar + _EPS))
    return BarAlignedDuration(duration=bars * bar, bars=bars, bpm=bpm, bar_duration=bar)


def round_to_bar(seconds: float, bpm: float, time_signature: TimeSignatureLike = None) -> BarAlignedDuration:
    """Round a duration to the nearest whole bar (never less than one bar)."""
    bar = bar_duration_for(bpm, time_signature)
    bars = max(1, round_half_up(seconds / bar))
    return BarAlignedDuration(duration=bars * bar, bars=bars, bpm=bpm, bar_duration=bar)


# ── tempo fitting ─────────────────────────────────────────────────────────────


def _evaluate_bpm(bpm: float, target: float, ts: TimeSignature) -> Optional[BpmOptimization]:
    bar = bar_duration_for(bpm, ts)
    bars = round_half_up(target / bar)
    if bars < 1:
        return None
    exact = bars * bar
    return BpmOptimization(bpm=bpm, bars=bars, exact_duration=exact, error=abs(exact - target))


def optimize_bpm_for_duration(
    suggested_bpm: float,
    total_duration: float,
    bpm_range: float = 5,
    time_signature: TimeSignatureLike = None,
    step: float = 1.0,
) -> BpmOptimization:
    """Find the BPM near ``suggested_bpm`` whose bars best tile ``total_duration``.

    Candidates are ``suggested_bpm ± k*step`` for ``k*step <= bpm_range``,
    restricted to 40–200 BPM.  The winner minimises the tail remainder
    ``|round(total / bar) * bar - total|`` so a hard cut at the end never
    lands mid-bar.  Candidates are visited closest-first, so among equal
    errors the BPM nearest the suggestion wins.

    Raises:
        ValueError: If ``suggested_bpm``, ``total_duration`` or ``step`` is
            not positive, or ``bpm_range`` is negative.
    """
    _check_bpm(suggested_bpm)
    if total_duration is None or total_duration <= 0:
        raise ValueError(f"total_duration must be > 0, got {total_duration!r}")
    if step <= 0:
        raise ValueError(f"step must be > 0, got {step!r}")
    if bpm_range < 0:
        raise ValueError(f"bpm_range must be >= 0, got {bpm_range!r}")

    ts = TimeSignature.parse(time_signature)
    n_steps = int(math.floor(bpm_range / step + _EPS))

    best: Optional[BpmOptimization] = None
    for k in range(n_steps + 1):
        offsets = (0.0,) if k == 0 else (-k * step, k * step)
        for offset in offsets:
            bpm = suggested_bpm + offset
            if bpm < _MIN_BPM - _EPS or bpm > _MAX_BPM + _EPS:
                continue
            candidate = _evaluate_bpm(bpm, total_duration, ts)
            if candidate is None:
                continue
            if best is None or candidate.error < best.error - _EPS:
                best = candidate

    if best is None:
        # Nothing in the allowed window; keep the suggestion as-is.
        logger.debug(
            "No BPM within ±%s of %.1f is inside %.0f–%.0f; keeping suggestion",
            bpm_range, suggested_bpm, _MIN_BPM, _MAX_BPM,
        )
        bar = bar_duration_for(suggested_bpm, ts)
        bars = max(1, round_half_up(total_duration / bar))
        best = BpmOptimization(
            bpm=suggested_bpm,
            bars=bars,
            exact_duration=bars * bar,
            error=abs(bars * bar - total_duration),
        )

    logger.debug(
        "BPM %.1f → %.1f for %.2fs (%d bars, error %.3fs)",
        suggested_bpm, best.bpm, total_duration, best.bars, best.error,
    )
    return best


# ── pre/post roll and music length planning ──────────────────────────────────


def calculate_pre_post_roll(
    voice_duration: float,
    bpm: float,
    genre: Optional[str] = None,
    ad_duration: Optional[float] = None,
    time_signature: TimeSignatureLike = None,
) -> PrePostRoll:
    """Whole-bar pre-roll and post-roll around a voice track.

    Short ads get one bar either side; 15–30 s ads get two bars when bars are
    short (fast tempo) and one otherwise; longer ads get two.  Cinematic and
    ambient genres add a pre-roll bar (max 4), high-energy genres drop one
    (min 1).

    Args:
        voice_duration: Voice length in seconds.
        bpm: Tempo.
        genre: Free-text genre, matched by substring.
        ad_duration: Overall ad length hint; defaults to ``voice_duration``.
        time_signature: Meter, default 4/4.
    """
    bar = bar_duration_for(bpm, time_signature)
    hint = ad_duration or voice_duration

    if hint <= _SHORT_AD_SEC:
        pre_bars, post_bars = 1, 1
    elif hint <= _STANDARD_AD_SEC:
        pre_bars = post_bars = 2 if bar <= _SHORT_BAR_SEC else 1
    else:
        pre_bars, post_bars = 2, 2

    g = (genre or "").lower()
    if any(name in g for name in _SLOW_INTRO_GENRES):
        pre_bars = min(pre_bars + 1, _MAX_PRE_ROLL_BARS)
    elif any(name in g for name in _FAST_INTRO_GENRES):
        pre_bars = max(1, pre_bars - 1)

    pre = pre_bars * bar
    post = post_bars * bar
    return PrePostRoll(
        pre_roll_bars=pre_bars,
        pre_roll_duration=pre,
        post_roll_bars=post_bars,
        post_roll_duration=post,
        total_music_duration=pre + voice_duration + post,
    )


def create_loop_plan(
    total_needed: float,
    bpm: float,
    max_gen_duration: float = 22.0,
    time_signature: TimeSignatureLike = None,
) -> LoopPlan:
    """Plan a bar-aligned seed and how many times it must loop.

    The seed is the largest whole number of bars that fits in
    ``max_gen_duration`` (at least a 4-bar phrase), so every loop point
    lands on a downbeat.
    """
    bar = bar_duration_for(bpm, time_signature)
    seed_bars = max(4, math.floor(max_gen_duration / bar + _EPS))
    total_bars = math.ceil(total_needed / bar - _EPS)
    return LoopPlan(
        seed_duration=min(seed_bars * bar, max_gen_duration),
        seed_bars=seed_bars,
        full_loops=math.ceil(total_bars / seed_bars),
        trim_duration=total_bars * bar,
        total_bars=total_bars,
        bpm=bpm,
        bar_duration=bar,
    )


def plan_music_duration(
    voice_duration: float,
    bpm: float,
    genre: Optional[str] = None,
    max_gen_duration: float = 480.0,
    time_signature: TimeSignatureLike = None,
) -> MusicDurationPlan:
    """Decide what length of music to request for a voice track."""
    roll = calculate_pre_post_roll(
        voice_duration, bpm, genre=genre, ad_duration=voice_duration,
        time_signature=time_signature,
    )
    plan = create_loop_plan(roll.total_music_duration, bpm, max_gen_duration, time_signature)
    return MusicDurationPlan(
        pre_post_roll=roll,
        loop_plan=plan,
        request_duration=min(plan.seed_duration, max_gen_duration),
        needs_loop=plan.full_loops > 1,
    )


def align_music_to_voice(
    music_duration: float,
    voice_duration: float,
    bpm: float,
    genre: Optional[str] = None,
    time_signature: TimeSignatureLike = None,
) -> MusicFitPlan:
    """Decide whether a generated track should be trimmed, looped or used as-is.

    Within half a bar of the bar-aligned target counts as a fit.
    """
    roll = calculate_pre_post_roll(
        voice_duration, bpm, genre=genre, ad_duration=voice_duration,
        time_signature=time_signature,
    )
    bar = bar_duration_for(bpm, time_signature)
    target_bars = math.ceil(roll.total_music_duration / bar - _EPS)
    target = target_bars * bar

    loop_count = 1
    if abs(music_duration - target) <= bar * 0.5:
        action = "use_as_is"
    elif music_duration > target:
        action = "trim"
    else:
        action = "loop"
        loop_count = math.ceil(target / music_duration) if music_duration > 0 else 1

    logger.debug(
        "Music %.2fs vs target %.2fs (%d bars) → %s",
        music_duration, target, target_bars, action,
    )
    return MusicFitPlan(
        action=action,
        target_duration=target,
        target_bars=target_bars,
        bar_duration=bar,
        loop_count=loop_count,
        pre_roll_duration=roll.pre_roll_duration,
        pre_roll_bars=roll.pre_roll_bars,
    )


# ── beat / downbeat sequences ─────────────────────────────────────────────────


def _arithmetic_until(start: float, step: float, end: float) -> List[float]:
    if step <= 0:
        raise ValueError(f"step must be > 0, got {step!r}")
    values: List[float] = []
    k = 0
    while True:
        t = start + k * step
        values.append(t)
        if t >= end - _EPS:
            break
        k += 1
    return values


def generate_downbeats(phase_offset: float, bar_duration: float, total_duration: float) -> List[float]:
    """Downbeat times ``phase + k*bar``, ending with the first one >= total.

    Raises:
        ValueError: If ``bar_duration`` is not positive.
    """
    return _arithmetic_until(phase_offset, bar_duration, total_duration)


def generate_beats(phase_offset: float, beat_duration: float, total_duration: float) -> List[float]:
    """Beat times ``phase + k*beat``, ending with the first one >= total."""
    return _arithmetic_until(phase_offset, beat_duration, total_duration)


def nearest_downbeat(
    t: float,
    bpm: float,
    time_signature: TimeSignatureLike = None,
    phase_offset: float = 0.0,
) -> DownbeatRef:
    """Nearest downbeat of the grid ``phase + k*bar`` (k >= 0) to ``t``.

    Halfway points resolve to the later downbeat.  This is the one downbeat
    search used by both the voice aligner and the blueprint generator.
    """
    bar = bar_duration_for(bpm, time_signature)
    index = max(0, round_half_up((t - phase_offset) / bar))
    time = phase_offset + index * bar
    return DownbeatRef(time=time, bar=index, offset=t - time)


def nearest_beat(t: float, bpm: float, time_signature: TimeSignatureLike = None) -> BeatRef:
    """Nearest beat of a zero-phase grid to ``t``."""
    beat = beat_duration_for(bpm, time_signature)
    index = max(0, round_half_up(t / beat))
    time = index * beat
    return BeatRef(time=time, beat=index, offset=t - time)


def snap_to_phrase(bar: int, phrase_length: int = 4) -> int:
    """Snap a 1-based bar number to the nearest multiple of ``phrase_length``."""
    if phrase_length <= 0:
        raise ValueError(f"phrase_length must be > 0, got {phrase_length!r}")
    return max(1, round_half_up(bar / phrase_length) * phrase_length)
