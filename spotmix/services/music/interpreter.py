"""Energy curve interpretation: phase-aligned beat grid and energy sections.

The tempo of a generated track is known (it was requested), so the grid is
never re-estimated from audio.  The loudness curve only supplies the phase
(first onset) and a coarse low/building/peak/resolving section map.
"""
from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from spotmix.services.grid.musical_grid import (
    TimeSignatureLike,
    beat_duration_for,
    generate_downbeats,
    round_half_up,
)
from spotmix.services.grid.types import TimeSignature
from spotmix.services.music.types import (
    EnergySample,
    MusicAnalysis,
    MusicalSection,
    SectionLabel,
)
from spotmix.services.shared.settings import InterpreterSettings

logger = logging.getLogger("spotmix.music.interpreter")


# ── public ────────────────────────────────────────────────────────────────────


def interpret_energy(
    samples: Sequence[EnergySample],
    expected_bpm: float,
    total_duration: float,
    time_signature: TimeSignatureLike = None,
    beats_per_bar: Optional[int] = None,
    settings: Optional[InterpreterSettings] = None,
) -> MusicAnalysis:
    """Turn a loudness curve plus a known tempo into a :class:`MusicAnalysis`.

    Args:
        samples: Energy readings, regular or irregular, normalised 0.0-1.0.
        expected_bpm: Tempo the track was generated at.
        total_duration: Known track duration in seconds.
        time_signature: Meter of the track (default 4/4).
        beats_per_bar: Shortcut for a simple meter when no signature is
            given (3 → 3/4, 6 → 6/8 ...).
        settings: Thresholds; defaults to :class:`InterpreterSettings`.

    Returns:
        Analysis with beat/downbeat grids and merged, relabelled sections.
        An empty curve yields one ``low`` section over the whole duration.

    Raises:
        ValueError: If ``expected_bpm`` is not positive or ``total_duration``
            is negative.
    """
    settings = settings or InterpreterSettings()
    if expected_bpm is None or expected_bpm <= 0:
        raise ValueError(f"expected_bpm must be > 0, got {expected_bpm!r}")
    if total_duration is None or total_duration < 0:
        raise ValueError(f"total_duration must be >= 0, got {total_duration!r}")

    if time_signature is None and beats_per_bar is not None:
        ts = TimeSignature.from_beats_per_bar(beats_per_bar)
    else:
        ts = TimeSignature.parse(time_signature)

    curve = _normalise(samples)
    if curve:
        total_duration = max(total_duration, curve[-1].time)

    phase = find_phase_offset(curve, expected_bpm, settings.onset_threshold)
    beat = beat_duration_for(expected_bpm, ts)
    bar = beat * ts.beats_per_bar
    beats, downbeats = _build_grid(phase, beat, ts.beats_per_bar, total_duration)

    if curve:
        sections = detect_sections(curve, bar, settings)
    else:
        logger.warning("Empty energy curve; treating the whole track as one low section")
        sections = [
            MusicalSection(start_time=0.0, end_time=total_duration, avg_energy=0.0,
                           label=SectionLabel.LOW)
        ]

    logger.info(
        "Interpreted %.1fs @ %.1f BPM: %d beats, %d bars, %d sections, phase %.3fs",
        total_duration, expected_bpm, len(beats), len(downbeats), len(sections), phase,
    )
    return MusicAnalysis(
        detected_bpm=expected_bpm,
        time_signature=ts,
        beat_positions=tuple(beats),
        downbeat_positions=tuple(downbeats),
        energy_curve=tuple(curve),
        total_duration=total_duration,
        phase_offset=phase,
        sections=tuple(sections),
    )


def find_phase_offset(
    samples: Sequence[EnergySample],
    bpm: float,
    onset_threshold: float = 0.15,
) -> float:
    """Time of the first onset snapped to the nearest sixteenth note, else 0."""
    sixteenth = 60.0 / bpm / 4.0
    for sample in samples:
        if sample.energy >= onset_threshold:
            return round_half_up(sample.time / sixteenth) * sixteenth
    return 0.0


def smooth_energy(
    samples: Sequence[EnergySample],
    window_sec: float,
    fallback_interval: float = 0.1,
) -> np.ndarray:
    """Centred moving average spanning ``window_sec`` worth of samples."""
    energies = np.asarray([s.energy for s in samples], dtype=float)
    n = len(energies)
    if n == 0:
        return energies

    interval = _sample_interval([s.time for s in samples], fallback_interval)
    window = max(1, round_half_up(window_sec / interval))

    idx = np.arange(n)
    lo = np.maximum(0, idx - window // 2)
    hi = np.minimum(n, idx + int(math.ceil(window / 2)))
    # A window of 1 still has to cover the sample itself
    hi = np.maximum(hi, idx + 1)
    csum = np.concatenate(([0.0], np.cumsum(energies)))
    return (csum[hi] - csum[lo]) / (hi - lo)


def classify_energy(energy: float, settings: InterpreterSettings) -> SectionLabel:
    """Quantise a smoothed energy value (peak covers both upper bands)."""
    if energy < settings.building_threshold:
        return SectionLabel.LOW
    if energy < settings.peak_threshold:
        return SectionLabel.BUILDING
    return SectionLabel.PEAK


def detect_sections(
    samples: Sequence[EnergySample],
    bar_duration: float,
    settings: Optional[InterpreterSettings] = None,
) -> List[MusicalSection]:
    """Segment a curve into energy sections, merge short ones, relabel."""
    settings = settings or InterpreterSettings()
    if not samples:
        return []

    times = [s.time for s in samples]
    smoothed = smooth_energy(samples, bar_duration, settings.fallback_sample_interval_sec)
    labels = [classify_energy(float(e), settings) for e in smoothed]

    raw: List[MusicalSection] = []
    start_idx = 0
    for i in range(1, len(labels) + 1):
        if i < len(labels) and labels[i] == labels[start_idx]:
            continue
        end_time = times[i] if i < len(labels) else times[-1]
        raw.append(MusicalSection(
            start_time=times[start_idx],
            end_time=end_time,
            avg_energy=float(np.mean(smoothed[start_idx:i])),
            label=labels[start_idx],
        ))
        start_idx = i

    merged = _merge_short_sections(raw, bar_duration)
    sections = _relabel_transitions(merged)
    logger.debug("Sections: %d raw → %d merged", len(raw), len(sections))
    return sections


# ── private ───────────────────────────────────────────────────────────────────


def _normalise(samples: Sequence[EnergySample]) -> List[EnergySample]:
    ordered = sorted(samples, key=lambda s: s.time)
    return [
        EnergySample(time=float(s.time), energy=min(1.0, max(0.0, float(s.energy))))
        for s in ordered
    ]


def _sample_interval(times: Sequence[float], fallback: float) -> float:
    if len(times) < 2:
        return fallback
    diffs = np.diff(np.asarray(times, dtype=float))
    diffs = diffs[diffs > 0]
    if diffs.size == 0:
        return fallback
    return float(np.median(diffs))


def _build_grid(
    phase: float,
    beat: float,
    beats_per_bar: int,
    total_duration: float,
) -> Tuple[List[float], List[float]]:
    """Beats run through the first downbeat at or past the end."""
    downbeat_count = len(generate_downbeats(phase, beat * beats_per_bar, total_duration))
    beat_count = (downbeat_count - 1) * beats_per_bar + 1
    beats = [phase + i * beat for i in range(beat_count)]
    return beats, beats[::beats_per_bar]


def _merge_short_sections(sections: List[MusicalSection], bar_duration: float) -> List[MusicalSection]:
    """Fold sections shorter than a bar into their predecessor.

    The predecessor keeps its own label and average energy.
    """
    merged: List[MusicalSection] = []
    for section in sections:
        if merged and section.duration < bar_duration:
            prev = merged[-1]
            merged[-1] = MusicalSection(
                start_time=prev.start_time,
                end_time=section.end_time,
                avg_energy=prev.avg_energy,
                label=prev.label,
            )
        else:
            merged.append(section)
    return merged


def _relabel_transitions(sections: List[MusicalSection]) -> List[MusicalSection]:
    result: List[MusicalSection] = list(sections[:1])
    for curr in sections[1:]:
        prev = result[-1]
        label = curr.label
        if curr.avg_energy > prev.avg_energy and curr.label != SectionLabel.PEAK:
            label = SectionLabel.BUILDING
        elif curr.avg_energy < prev.avg_energy and prev.label == SectionLabel.PEAK:
            label = SectionLabel.RESOLVING
        result.append(MusicalSection(
            start_time=curr.start_time,
            end_time=curr.end_time,
            avg_energy=curr.avg_energy,
            label=label,
        ))
    return result
