"""Build the mix specification handed to the rendering engine.

Two shapes of ad are supported:

* segment-based ads from :func:`~spotmix.services.composer.timeline.compose_timeline`
* single-track ads where one voice sits on a generated bed, aligned by
  :func:`~spotmix.services.music.aligner.align_voice_to_music`

Both produce a gap-free music gain curve clipped to the music length, and
output fades that never touch the voice: the closing fade starts at or after
the end of the last voice clip.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from spotmix.services.composer.envelope import build_volume_keyframes
from spotmix.services.composer.types import (
    EntryType,
    MusicAsset,
    TimelineResult,
    VoiceAsset,
    VolumeKeyframe,
)
from spotmix.services.mix.types import MixSpecification, MixTrack, VolumeCurveSegment
from spotmix.services.music.types import AlignmentResult, DuckingSegment
from spotmix.services.shared.settings import EnvelopeSettings, MixSettings

logger = logging.getLogger("spotmix.mix.spec")

_FULL_VOLUME = 1.0


def build_volume_curve(
    windows: Iterable[Tuple[float, float, float]],
    duration: float,
) -> Tuple[VolumeCurveSegment, ...]:
    """Gap-free gain curve over ``[0, duration)``.

    Args:
        windows: ``(start, end, volume)`` spans; may be unsorted or overlap.
            Overlaps keep the earlier window.
        duration: Music length; windows are clipped to it.

    Returns:
        Contiguous segments, gaps filled at full volume.  Empty when
        ``duration`` is not positive.
    """
    if duration <= 0:
        return ()
    curve: List[VolumeCurveSegment] = []
    cursor = 0.0
    for start, end, volume in sorted(windows, key=lambda w: w[0]):
        start = max(start, cursor, 0.0)
        end = min(end, duration)
        if end <= start:
            continue
        if start > cursor:
            curve.append(VolumeCurveSegment(cursor, start, _FULL_VOLUME))
        curve.append(VolumeCurveSegment(start, end, volume))
        cursor = end
    if cursor < duration:
        curve.append(VolumeCurveSegment(cursor, duration, _FULL_VOLUME))
    return tuple(curve)


def duck_keyframes(
    windows: Sequence[DuckingSegment],
    duration: float,
) -> Tuple[VolumeKeyframe, ...]:
    """Render envelope for ducking windows, using each window's own ramps.

    The bed ramps down over ``ramp_in`` from the window start and back up
    over ``ramp_out`` from the window end.  A ramp never takes more than
    half of the window it enters, nor more than half of the gap it crosses.
    """
    if duration <= 0:
        return ()
    ordered = [w for w in sorted(windows, key=lambda w: w.start_time)
               if w.start_time < duration and w.end_time > 0]
    frames: List[VolumeKeyframe] = []
    level = _FULL_VOLUME
    prev_end = 0.0
    for i, w in enumerate(ordered):
        start = max(w.start_time, prev_end)
        end = min(w.end_time, duration)
        if end <= start:
            continue
        if start <= 0:
            frames.append(VolumeKeyframe(0.0, w.duck_level))
        else:
            if not frames:
                frames.append(VolumeKeyframe(0.0, level))
            frames.append(VolumeKeyframe(start, level))
            frames.append(VolumeKeyframe(start + min(w.ramp_in, (end - start) * 0.5), w.duck_level))
        frames.append(VolumeKeyframe(end, w.duck_level))

        next_start = ordered[i + 1].start_time if i + 1 < len(ordered) else duration
        gap = min(next_start, duration) - end
        if gap > 0:
            frames.append(VolumeKeyframe(end + min(w.ramp_out, gap * 0.5), _FULL_VOLUME))
            level = _FULL_VOLUME
        else:
            level = w.duck_level
        prev_end = end

    if not frames:
        frames.append(VolumeKeyframe(0.0, level))
    if frames[-1].time < duration:
        frames.append(VolumeKeyframe(duration, level))
    return tuple(frames)


def output_fades(
    total_duration: float,
    last_voice_end: float,
    settings: Optional[MixSettings] = None,
) -> Tuple[float, float, float]:
    """``(fade_in, fade_out_start, fade_out)`` for the rendered mix.

    Only the music after the last voice is faded.  A tail no longer than
    ``min_tail_fade_sec`` is not faded; a long one plays at level until the
    final ``max_fade_out_sec``.
    """
    settings = settings or MixSettings()
    fade_in = max(settings.min_fade_in_sec, min(settings.max_fade_in_sec, settings.fade_in_sec))
    trailing = total_duration - last_voice_end
    if trailing <= settings.min_tail_fade_sec:
        return fade_in, total_duration, 0.0
    fade_out = min(trailing, settings.max_fade_out_sec)
    return fade_in, max(last_voice_end, total_duration - fade_out), fade_out


def build_segment_mix(
    result: TimelineResult,
    music: Optional[MusicAsset],
    keyframes: Optional[Sequence[VolumeKeyframe]] = None,
    settings: Optional[EnvelopeSettings] = None,
    mix_settings: Optional[MixSettings] = None,
) -> MixSpecification:
    """Mix specification for a composed segment timeline.

    Args:
        result: Output of the timeline composer.
        music: Backing track; ``None`` renders voice and SFX only.
        keyframes: Precomputed render envelope; built from the timeline's
            volume segments when omitted.
        settings: Envelope tunables used when keyframes are built here.
        mix_settings: Output fade tunables.
    """
    tracks = tuple(
        MixTrack(
            type=entry.type,
            file_path=entry.file_path,
            start_time=entry.start_time,
            duration=entry.duration,
            volume=entry.volume,
            label=entry.label,
        )
        for entry in result.entries
    )
    fade_in, fade_out_start, fade_out = output_fades(
        result.total_duration, result.last_voice_end_time, mix_settings,
    )

    if music is None:
        logger.info("Segment mix without music: %d tracks, %.2fs", len(tracks), result.total_duration)
        return MixSpecification(
            music_file=None,
            tracks=tracks,
            volume_curve=(),
            total_duration=result.total_duration,
            last_voice_end_time=result.last_voice_end_time,
            fade_in=fade_in,
            fade_out_start=fade_out_start,
            fade_out=fade_out,
        )

    music_end = min(music.duration, result.total_duration)
    curve = build_volume_curve(
        ((p.start_time, p.end_time, p.volume) for p in result.volume_segments),
        music_end,
    )
    if keyframes is None:
        keyframes = build_volume_keyframes(
            result.volume_segments, result.total_duration,
            bpm=music.bpm, time_signature=music.time_signature, settings=settings,
        )

    logger.info(
        "Segment mix: %d tracks, %d curve pieces, music %.2fs of %.2fs, fade out %.2fs from %.2fs",
        len(tracks), len(curve), music_end, result.total_duration, fade_out, fade_out_start,
    )
    return MixSpecification(
        music_file=music.file_path,
        tracks=tracks,
        volume_curve=curve,
        keyframes=tuple(keyframes),
        voice_delay=0.0,
        music_cutoff_time=music_end,
        total_duration=result.total_duration,
        last_voice_end_time=result.last_voice_end_time,
        fade_in=fade_in,
        fade_out_start=fade_out_start,
        fade_out=fade_out,
    )


def build_single_track_mix(
    alignment: AlignmentResult,
    voice: VoiceAsset,
    music: MusicAsset,
    mix_settings: Optional[MixSettings] = None,
) -> MixSpecification:
    """Mix specification for one voice aligned on one backing track.

    The music plays from 0 to the bar-aligned cutoff (or its own end, if
    shorter); the voice starts at the alignment's voice delay.  Duck ramps
    are the alignment's one-beat ramps, whatever the tempo.
    """
    music_end = min(alignment.music_cutoff_time, music.duration)
    curve = build_volume_curve(
        ((d.start_time, d.end_time, d.duck_level) for d in alignment.ducking_segments),
        music_end,
    )
    keyframes = duck_keyframes(alignment.ducking_segments, music_end)

    track = MixTrack(
        type=EntryType.VOICE,
        file_path=voice.file_path,
        start_time=alignment.voice_delay,
        duration=voice.duration,
        label="voiceover",
    )
    voice_end = alignment.voice_delay + voice.duration
    total = max(music_end, voice_end)
    if voice_end > music_end:
        logger.warning("Voice ends at %.2fs, after the music stops at %.2fs", voice_end, music_end)
    fade_in, fade_out_start, fade_out = output_fades(total, voice_end, mix_settings)

    logger.info(
        "Single-track mix: voice at %.2fs, %d ducking windows, cutoff %.2fs",
        alignment.voice_delay, len(alignment.ducking_segments), music_end,
    )
    return MixSpecification(
        music_file=music.file_path,
        tracks=(track,),
        volume_curve=curve,
        keyframes=keyframes,
        voice_delay=alignment.voice_delay,
        music_cutoff_time=music_end,
        total_duration=total,
        last_voice_end_time=voice_end,
        fade_in=fade_in,
        fade_out_start=fade_out_start,
        fade_out=fade_out,
    )
