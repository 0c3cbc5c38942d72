"""Timeline composer: segment plan + rendered assets → absolute timeline.

The walk over the creative segments is a fold.  Each step takes an immutable
:class:`WalkState` and returns a new one, so the envelope invariant (pieces
contiguous from 0, no overlaps) can be checked after every step with
:func:`iter_timeline_states` and :func:`check_envelope`.

Timeline for a typical hook ad::

    Music:  [ full    |  ducked      | full |  ducked     | building | tail ]
    Voice:  [         | intro VO     |      | features VO | CTA      |      ]
    SFX:    [         | whoosh       |      |             | ding     |      ]
"""
from __future__ import annotations

import functools
import itertools
import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from spotmix.services.composer.behaviors import resolve_music_volume
from spotmix.services.composer.energy_arc import apply_energy_arc
from spotmix.services.composer.plan import AdCreativePlan, AdCreativeSegment
from spotmix.services.composer.types import (
    ComposerError,
    EntryType,
    InvalidPlanError,
    MusicBehavior,
    MusicVolumeSegment,
    SegmentSpan,
    SegmentTransition,
    SegmentType,
    SfxAsset,
    TimelineEntry,
    TimelineResult,
    VoiceAsset,
    WalkState,
)
from spotmix.services.shared.settings import ComposerSettings

logger = logging.getLogger("spotmix.composer.timeline")

_EPS = 1e-6

SegmentsLike = Union[AdCreativePlan, Sequence[Union[AdCreativeSegment, dict]]]
AssetsLike = Union[Mapping[int, object], Iterable[object], None]


@dataclass(frozen=True)
class _WalkContext:
    voices: Dict[int, VoiceAsset]
    sfx: Dict[int, SfxAsset]
    base_volume: float
    settings: ComposerSettings


# ── public ────────────────────────────────────────────────────────────────────


def compose_timeline(
    segments: SegmentsLike,
    voices: AssetsLike = None,
    sfx: AssetsLike = None,
    base_music_volume: Optional[float] = None,
    energy_arc: bool = True,
    settings: Optional[ComposerSettings] = None,
) -> TimelineResult:
    """Place every asset of a segment-based ad and build the music envelope.

    Args:
        segments: An :class:`AdCreativePlan`, or its ordered segments as
            models or camelCase/snake_case dicts.
        voices: Rendered voices, as a list or keyed by segment index.
            Segments without one (failed synthesis) simply have no voice.
        sfx: Rendered SFX, same shape as ``voices``.
        base_music_volume: Reference bed level; defaults to the plan's value,
            then to ``settings.base_music_volume``.
        energy_arc: Apply the narrative energy modulation pass.
        settings: Composer constants.

    Returns:
        :class:`TimelineResult` with a gap-free envelope over
        ``[0, total_duration)``.

    Raises:
        InvalidPlanError: If there are no segments or indices repeat.
        pydantic.ValidationError: If a dict segment is malformed.
    """
    settings = settings or ComposerSettings()
    plan_segments, plan_volume = _coerce_segments(segments)
    if base_music_volume is None:
        base_music_volume = plan_volume if plan_volume is not None else settings.base_music_volume

    ctx = _WalkContext(
        voices=_index_assets(voices),
        sfx=_index_assets(sfx),
        base_volume=base_music_volume,
        settings=settings,
    )
    logger.info(
        "Composing timeline: %d segments, %d voices, %d sfx, base volume %.2f",
        len(plan_segments), len(ctx.voices), len(ctx.sfx), base_music_volume,
    )

    walked = functools.reduce(
        functools.partial(_step, ctx), _with_next(plan_segments), WalkState()
    )
    result = _reconcile_tail(walked, settings)

    if energy_arc:
        result = replace(
            result,
            volume_segments=apply_energy_arc(plan_segments, result.volume_segments, result.spans),
        )

    check_envelope(result.volume_segments, result.total_duration)
    logger.info(
        "Timeline: %d entries, %d volume segments, %.1fs total, last voice end %.1fs",
        len(result.entries), len(result.volume_segments),
        result.total_duration, result.last_voice_end_time,
    )
    for i, vs in enumerate(result.volume_segments):
        logger.debug(
            "  music[%d] %.2f→%.2fs vol=%.3f %s",
            i, vs.start_time, vs.end_time, vs.volume, vs.behavior.value,
        )
    return result


def iter_timeline_states(
    segments: SegmentsLike,
    voices: AssetsLike = None,
    sfx: AssetsLike = None,
    base_music_volume: Optional[float] = None,
    settings: Optional[ComposerSettings] = None,
) -> Iterator[WalkState]:
    """Yield the walk state before the first segment and after each one."""
    settings = settings or ComposerSettings()
    plan_segments, plan_volume = _coerce_segments(segments)
    if base_music_volume is None:
        base_music_volume = plan_volume if plan_volume is not None else settings.base_music_volume
    ctx = _WalkContext(
        voices=_index_assets(voices),
        sfx=_index_assets(sfx),
        base_volume=base_music_volume,
        settings=settings,
    )
    return itertools.accumulate(
        _with_next(plan_segments), functools.partial(_step, ctx), initial=WalkState()
    )


def check_envelope(volume_segments: Sequence[MusicVolumeSegment], end_time: float) -> None:
    """Verify the envelope is ordered, contiguous from 0 and ends at ``end_time``.

    Raises:
        ComposerError: On a gap, an overlap, an inverted piece or a wrong end.
    """
    cursor = 0.0
    for i, vs in enumerate(volume_segments):
        if abs(vs.start_time - cursor) > _EPS:
            kind = "gap" if vs.start_time > cursor else "overlap"
            raise ComposerError(
                f"Envelope {kind} at piece {i}: starts {vs.start_time:.4f}, expected {cursor:.4f}"
            )
        if vs.end_time < vs.start_time - _EPS:
            raise ComposerError(f"Envelope piece {i} ends before it starts")
        cursor = vs.end_time
    if abs(cursor - end_time) > _EPS:
        raise ComposerError(f"Envelope ends at {cursor:.4f}, expected {end_time:.4f}")


# ── the walk ──────────────────────────────────────────────────────────────────


def _step(
    ctx: _WalkContext,
    state: WalkState,
    pair: Tuple[AdCreativeSegment, Optional[AdCreativeSegment]],
) -> WalkState:
    seg, next_seg = pair
    settings = ctx.settings
    seg_start = state.cursor

    voice = ctx.voices.get(seg.segment_index)
    has_voice = voice is not None and bool(voice.file_path) and voice.duration > 0
    if has_voice and voice.duration < seg.duration:
        effective = voice.duration + settings.breath_gap_sec
    else:
        effective = seg.duration
    seg_end = seg_start + effective

    entries = list(state.entries)
    if has_voice:
        entries.append(TimelineEntry(
            type=EntryType.VOICE,
            file_path=voice.file_path,
            start_time=seg_start,
            volume=1.0,
            duration=voice.duration,
            segment_index=seg.segment_index,
            label=seg.label,
        ))
    sfx_entry = _place_sfx(ctx, seg, seg_start)
    if sfx_entry is not None:
        entries.append(sfx_entry)

    behavior = seg.behavior
    volume = resolve_music_volume(
        behavior, seg.music.volume if seg.music else None, ctx.base_volume,
    )

    # Pieces start where the envelope ends, which is past seg_start while a
    # crossfade overlap from the previous segment is still playing.
    pieces = list(state.volume_segments)
    own_start = state.envelope_end
    own: Optional[MusicVolumeSegment] = None
    if seg_end > own_start + _EPS:
        own = MusicVolumeSegment(own_start, seg_end, volume, behavior)
    else:
        logger.debug("Segment %d swallowed by previous crossfade", seg.segment_index)

    cursor = seg_end
    tail: List[MusicVolumeSegment] = []
    if next_seg is not None and own is not None:
        transition = seg.transition
        duration = seg.transition_duration
        if duration is None:
            duration = settings.transition_default(transition.value)

        if transition == SegmentTransition.CROSSFADE:
            overlap = min(duration, seg.duration * settings.crossfade_share, own.duration)
            if overlap > settings.min_transition_sec:
                cursor = seg_end - overlap
                next_volume = resolve_music_volume(
                    next_seg.behavior,
                    next_seg.music.volume if next_seg.music else None,
                    ctx.base_volume,
                )
                own = replace(own, end_time=seg_end - overlap)
                tail.append(MusicVolumeSegment(
                    seg_end - overlap, seg_end, (volume + next_volume) / 2.0,
                    MusicBehavior.RESOLVING,
                ))
                logger.debug(
                    "Crossfade %.2fs: '%s' → '%s'", overlap, seg.label, next_seg.label,
                )
        elif transition == SegmentTransition.DUCK_TRANSITION:
            dip = min(duration, settings.duck_transition_max_sec)
            if dip > settings.min_transition_sec:
                dip_start = max(own.start_time, seg_end - dip)
                own = replace(own, end_time=dip_start)
                tail.append(MusicVolumeSegment(
                    dip_start, seg_end, volume * settings.duck_transition_ratio,
                    MusicBehavior.DUCKED,
                ))
                logger.debug("Duck transition %.2fs at end of '%s'", seg_end - dip_start, seg.label)
        # natural and hard_cut leave the timeline alone

    if own is not None and own.duration > _EPS:
        pieces.append(own)
    pieces.extend(tail)

    return WalkState(
        cursor=cursor,
        entries=tuple(entries),
        volume_segments=tuple(pieces),
        spans=state.spans + (SegmentSpan(seg.segment_index, seg.label, seg_start, seg_end),),
    )


def _place_sfx(ctx: _WalkContext, seg: AdCreativeSegment, seg_start: float) -> Optional[TimelineEntry]:
    asset = ctx.sfx.get(seg.segment_index)
    if asset is None or not asset.file_path:
        return None
    settings = ctx.settings
    explicit = seg.sfx.volume if seg.sfx else None
    if seg.type == SegmentType.SFX_HIT:
        volume = explicit if explicit is not None else settings.sfx_hit_volume
        offset = 0.0
    else:
        # Layered under voice: stays subtle and lands just after the voice
        base = explicit if explicit is not None else settings.sfx_overlay_volume
        volume = min(base, settings.sfx_overlay_max_volume)
        offset = settings.sfx_offset_sec
    return TimelineEntry(
        type=EntryType.SFX,
        file_path=asset.file_path,
        start_time=seg_start + offset,
        volume=volume,
        duration=asset.duration,
        segment_index=seg.segment_index,
        label=seg.label,
    )


def _reconcile_tail(state: WalkState, settings: ComposerSettings) -> TimelineResult:
    """Close the envelope, never cut voice, then fit the music tail."""
    pieces = list(state.volume_segments)
    end = max(state.cursor, state.envelope_end)
    if pieces and pieces[-1].end_time < end:
        pieces[-1] = replace(pieces[-1], end_time=end)

    voice_ends = [e.end_time for e in state.entries if e.type == EntryType.VOICE]
    # Without voice the tail hangs off the end of the walk
    last_voice_end = max(voice_ends) if voice_ends else end
    if last_voice_end > end:
        logger.info("Voice runs past the segments: extending %.1fs → %.1fs", end, last_voice_end)
        pieces[-1] = replace(pieces[-1], end_time=last_voice_end)
        end = last_voice_end

    desired = last_voice_end + settings.music_tail_sec
    if end > desired:
        pieces = [
            replace(p, end_time=min(p.end_time, desired))
            for p in pieces
            if p.start_time < desired - _EPS
        ]
        logger.info("Trimmed trailing music: %.1fs → %.1fs", end, desired)
    elif end < desired:
        pieces[-1] = replace(pieces[-1], end_time=desired)
        logger.info(
            "Music tail: voice ends %.1fs, music runs to %.1fs", last_voice_end, desired,
        )

    return TimelineResult(
        entries=state.entries,
        volume_segments=tuple(pieces),
        spans=state.spans,
        total_duration=desired,
        last_voice_end_time=last_voice_end,
    )


# ── input coercion ───────────────────────────────────────────────────────────


def _coerce_segments(segments: SegmentsLike) -> Tuple[List[AdCreativeSegment], Optional[float]]:
    if isinstance(segments, AdCreativePlan):
        return list(segments.segments), segments.base_music_volume
    if segments is None:
        raise InvalidPlanError("Segment plan is required")
    result = [
        s if isinstance(s, AdCreativeSegment) else AdCreativeSegment.model_validate(s)
        for s in segments
    ]
    if not result:
        raise InvalidPlanError("Segment plan has no segments")
    indices = [s.segment_index for s in result]
    if len(set(indices)) != len(indices):
        raise InvalidPlanError(f"Segment plan repeats segment indices: {indices}")
    return result, None


def _index_assets(assets: AssetsLike) -> dict:
    if not assets:
        return {}
    if isinstance(assets, Mapping):
        return {int(k): v for k, v in assets.items() if v is not None}
    return {a.segment_index: a for a in assets if a is not None}


def _with_next(
    segments: List[AdCreativeSegment],
) -> List[Tuple[AdCreativeSegment, Optional[AdCreativeSegment]]]:
    return list(zip(segments, segments[1:] + [None]))
