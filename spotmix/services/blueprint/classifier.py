"""Narrative classification of script sentences.

Decides what each sentence does in the story (opening, body, peak, CTA ...)
and which sentences are landmarks worth pinning to a downbeat.
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence, Tuple

from spotmix.services.blueprint.types import (
    DynamicDirection,
    MusicalFunction,
    SentenceClassification,
    SentenceCue,
    SyncPointType,
)
from spotmix.services.music.types import SentenceTiming

_D = DynamicDirection

_FUNCTION_CLASSES: Dict[MusicalFunction, SentenceClassification] = {
    MusicalFunction.HOOK: SentenceClassification(4, _D.BUILDING, "hook"),
    MusicalFunction.BUILD: SentenceClassification(6, _D.BUILDING, "build"),
    MusicalFunction.PEAK: SentenceClassification(8, _D.PEAK, "peak"),
    MusicalFunction.RESOLVE: SentenceClassification(5, _D.RESOLVING, "resolution"),
    MusicalFunction.TRANSITION: SentenceClassification(5, _D.SUSTAINING, "transition"),
    MusicalFunction.PAUSE: SentenceClassification(3, _D.SUSTAINING, "pause"),
}

# Checked in order; first keyword group found in the cue label wins
_CUE_CLASSES: List[Tuple[Tuple[str, ...], SentenceClassification]] = [
    (("hook", "intro"), SentenceClassification(4, _D.BUILDING, "hook")),
    (("peak", "climax"), SentenceClassification(8, _D.PEAK, "peak")),
    (("cta", "call"), SentenceClassification(6, _D.RESOLVING, "cta")),
    (("warm", "resolve"), SentenceClassification(5, _D.RESOLVING, "resolution")),
    (("build", "swell"), SentenceClassification(6, _D.BUILDING, "build")),
]

# (upper bound of normalised position, classification)
_POSITION_CLASSES: List[Tuple[float, SentenceClassification]] = [
    (0.15, SentenceClassification(4, _D.BUILDING, "opening")),
    (0.5, SentenceClassification(6, _D.BUILDING, "body")),
    (0.75, SentenceClassification(7, _D.PEAK, "peak")),
    (0.9, SentenceClassification(5, _D.RESOLVING, "resolution")),
]
_CLOSING_CLASS = SentenceClassification(5, _D.RESOLVING, "cta")

_CTA_RE = re.compile(
    r"\b(try|get|start|order|call|visit|download|sign up|subscribe|buy|shop|join|"
    r"click|act now|don't miss|hurry)\b",
    re.I,
)
_BRAND_RE = re.compile(r"\b(welcome to|introducing|meet|discover|from)\b", re.I)

_OPENING_SHARE = 0.4
_CLOSING_SHARE = 0.6


def classify_sentence(cue: Optional[SentenceCue], index: int, total: int) -> SentenceClassification:
    """Classify one sentence.

    Precedence: explicit musical function, then cue label keywords, then the
    sentence's normalised position in the script.
    """
    if cue is not None and cue.musical_function is not None:
        return _FUNCTION_CLASSES[MusicalFunction(cue.musical_function)]

    cue_name = ((cue.music_cue if cue else None) or "").lower()
    for keywords, classification in _CUE_CLASSES:
        if any(k in cue_name for k in keywords):
            return classification

    position = index / (total - 1) if total > 1 else 0.5
    for bound, classification in _POSITION_CLASSES:
        if position < bound:
            return classification
    return _CLOSING_CLASS


def find_pauses(timings: Sequence[SentenceTiming], threshold_sec: float = 0.4) -> List[int]:
    """Indices of sentences followed by a gap of at least ``threshold_sec``."""
    return [
        i for i in range(len(timings) - 1)
        if timings[i + 1].start_seconds - timings[i].end_seconds >= threshold_sec
    ]


def detect_landmarks(timings: Sequence[SentenceTiming]) -> List[Tuple[int, SyncPointType]]:
    """Brand intros early, calls to action late, and the final sentence."""
    n = len(timings)
    landmarks: List[Tuple[int, SyncPointType]] = []
    for i, timing in enumerate(timings):
        if i < n * _OPENING_SHARE and _BRAND_RE.search(timing.text):
            landmarks.append((i, SyncPointType.BRAND_MENTION))
        if i >= n * _CLOSING_SHARE and _CTA_RE.search(timing.text):
            landmarks.append((i, SyncPointType.CTA_START))
    if n:
        landmarks.append((n - 1, SyncPointType.FINAL_WORD))
    return landmarks
