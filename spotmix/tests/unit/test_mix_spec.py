"""Tests for the render hand-off."""
import json

import pytest

from spotmix.services.composer.plan import AdCreativePlan
from spotmix.services.composer.timeline import compose_timeline
from spotmix.services.composer.types import EntryType, MusicAsset, VoiceAsset, VolumeKeyframe
from spotmix.services.mix.spec import (
    build_segment_mix,
    build_single_track_mix,
    build_volume_curve,
    duck_keyframes,
    output_fades,
)
from spotmix.services.music.aligner import align_voice_to_music
from spotmix.services.music.types import AlignmentResult, DuckingSegment
from spotmix.services.shared.settings import ComposerSettings, MixSettings


def _bounds(curve):
    return [(c.start_time, c.end_time, c.volume) for c in curve]


class TestVolumeCurve:
    def test_gaps_filled_at_full_volume(self):
        curve = build_volume_curve([(2.0, 4.0, 0.3), (1.0, 1.5, 0.5)], 5.0)
        assert _bounds(curve) == [
            (0.0, 1.0, 1.0), (1.0, 1.5, 0.5), (1.5, 2.0, 1.0), (2.0, 4.0, 0.3), (4.0, 5.0, 1.0),
        ]

    def test_clipped_to_music_length(self):
        assert _bounds(build_volume_curve([(4.0, 8.0, 0.3)], 6.0)) == [(0.0, 4.0, 1.0), (4.0, 6.0, 0.3)]

    def test_overlap_keeps_earlier_window(self):
        curve = build_volume_curve([(0.0, 3.0, 0.3), (2.0, 5.0, 0.5)], 5.0)
        assert _bounds(curve) == [(0.0, 3.0, 0.3), (3.0, 5.0, 0.5)]

    def test_window_past_end_dropped(self):
        assert _bounds(build_volume_curve([(7.0, 8.0, 0.3)], 6.0)) == [(0.0, 6.0, 1.0)]

    def test_no_music_no_curve(self):
        assert build_volume_curve([(0.0, 1.0, 0.3)], 0.0) == ()


class TestSegmentMix:
    @pytest.fixture
    def timeline(self, hook_plan_dict):
        voices = [
            VoiceAsset(segment_index=1, file_path="/renders/vo_1.mp3", duration=6.0),
            VoiceAsset(segment_index=2, file_path="/renders/vo_2.mp3", duration=5.5),
        ]
        return compose_timeline(AdCreativePlan.model_validate(hook_plan_dict), voices)

    def test_tracks_follow_entries(self, timeline):
        spec = build_segment_mix(timeline, MusicAsset("/renders/bed.mp3", 30.0, bpm=120))
        assert [t.type for t in spec.tracks] == [EntryType.VOICE, EntryType.VOICE]
        assert [t.start_time for t in spec.tracks] == pytest.approx([2.5, 8.8])
        assert spec.music_file == "/renders/bed.mp3"
        assert spec.voice_delay == 0.0

    def test_curve_matches_envelope(self, timeline):
        spec = build_segment_mix(timeline, MusicAsset("/renders/bed.mp3", 30.0, bpm=120))
        assert _bounds(spec.volume_curve) == [
            (vs.start_time, vs.end_time, vs.volume) for vs in timeline.volume_segments
        ]
        assert spec.music_cutoff_time == pytest.approx(timeline.total_duration)
        assert spec.keyframes[0].time == 0.0
        assert spec.keyframes[-1].time == pytest.approx(timeline.total_duration)

    def test_short_music_clips_curve(self, timeline):
        spec = build_segment_mix(timeline, MusicAsset("/renders/bed.mp3", 10.0))
        assert spec.volume_curve[-1].end_time == 10.0
        assert spec.music_cutoff_time == 10.0
        assert spec.total_duration == pytest.approx(timeline.total_duration)

    def test_precomputed_keyframes_kept(self, timeline):
        frames = (VolumeKeyframe(0.0, 0.2), VolumeKeyframe(timeline.total_duration, 0.2))
        spec = build_segment_mix(timeline, MusicAsset("/renders/bed.mp3", 30.0), keyframes=frames)
        assert spec.keyframes == frames

    def test_without_music(self, timeline):
        spec = build_segment_mix(timeline, None)
        assert spec.music_file is None
        assert spec.volume_curve == ()
        assert len(spec.tracks) == 2

    def test_to_dict_is_json_ready(self, timeline):
        data = build_segment_mix(timeline, MusicAsset("/renders/bed.mp3", 30.0)).to_dict()
        assert data["tracks"][0]["type"] == "voice"
        assert data["volume_curve"][0]["start_time"] == 0.0
        assert json.loads(json.dumps(data))["music_file"] == "/renders/bed.mp3"


class TestSingleTrackMix:
    @pytest.fixture
    def alignment(self, grid_analysis, two_sentences):
        return align_voice_to_music(grid_analysis, two_sentences, pre_roll_duration=0.0, bar_duration=2.0)

    def test_curve_from_ducking(self, alignment):
        spec = build_single_track_mix(
            alignment, VoiceAsset(0, "/renders/vo.mp3", 8.0), MusicAsset("/renders/bed.mp3", 12.0, bpm=120),
        )
        assert _bounds(spec.volume_curve) == [
            (0.0, 3.0, 0.25), (3.0, 4.0, 1.0), (4.0, 8.0, 0.25), (8.0, 10.0, 1.0),
        ]
        assert spec.music_cutoff_time == 10.0
        assert spec.total_duration == 10.0

    def test_keyframes_ramp_on_beats(self, alignment):
        spec = build_single_track_mix(
            alignment, VoiceAsset(0, "/renders/vo.mp3", 8.0), MusicAsset("/renders/bed.mp3", 12.0, bpm=120),
        )
        assert [(k.time, k.volume) for k in spec.keyframes] == [
            (0.0, 0.25), (3.0, 0.25), (3.5, 1.0), (4.0, 1.0),
            (4.5, 0.25), (8.0, 0.25), (8.5, 1.0), (10.0, 1.0),
        ]

    def test_voice_placed_at_delay(self, alignment):
        spec = build_single_track_mix(
            alignment, VoiceAsset(0, "/renders/vo.mp3", 8.0), MusicAsset("/renders/bed.mp3", 12.0),
        )
        assert len(spec.tracks) == 1
        assert spec.tracks[0].start_time == alignment.voice_delay
        assert spec.voice_delay == alignment.voice_delay

    def test_music_shorter_than_cutoff(self, alignment):
        spec = build_single_track_mix(
            alignment, VoiceAsset(0, "/renders/vo.mp3", 8.0), MusicAsset("/renders/bed.mp3", 9.0),
        )
        assert spec.music_cutoff_time == 9.0
        assert spec.volume_curve[-1].end_time == 9.0

    def test_slow_tempo_keeps_full_beat_ramps(self):
        beat = 60.0 / 90.0
        alignment = AlignmentResult(
            voice_delay=1.0,
            voice_entry_bar=1,
            music_cutoff_time=10.0,
            button_start_time=8.0,
            button_ending_bar=4,
            ducking_segments=(DuckingSegment(2.0, 6.0, 0.25, beat, beat),),
        )
        spec = build_single_track_mix(
            alignment, VoiceAsset(0, "/renders/vo.mp3", 6.0), MusicAsset("/renders/bed.mp3", 12.0, bpm=90),
        )
        times = [k.time for k in spec.keyframes]
        assert times == pytest.approx([0.0, 2.0, 2.0 + beat, 6.0, 6.0 + beat, 10.0])
        assert [k.volume for k in spec.keyframes] == [1.0, 1.0, 0.25, 0.25, 1.0, 1.0]

    def test_fade_starts_after_voice(self, alignment):
        spec = build_single_track_mix(
            alignment, VoiceAsset(0, "/renders/vo.mp3", 8.0), MusicAsset("/renders/bed.mp3", 12.0),
        )
        assert spec.last_voice_end_time == 8.0
        assert (spec.fade_out_start, spec.fade_out) == (8.0, 2.0)
        assert spec.fade_in == pytest.approx(0.08)


class TestDuckKeyframes:
    def test_no_windows_is_flat(self):
        assert duck_keyframes([], 5.0) == (VolumeKeyframe(0.0, 1.0), VolumeKeyframe(5.0, 1.0))

    def test_ramp_limited_by_gap(self):
        windows = [DuckingSegment(1.0, 3.0, 0.2, 0.5, 0.5), DuckingSegment(3.4, 6.0, 0.2, 0.5, 0.5)]
        frames = duck_keyframes(windows, 6.0)
        assert (frames[4].time, frames[4].volume) == (pytest.approx(3.2), 1.0)
        assert frames[-1] == VolumeKeyframe(6.0, 0.2)

    def test_adjacent_windows_stay_ducked(self):
        windows = [DuckingSegment(0.0, 2.0, 0.2, 0.4, 0.4), DuckingSegment(2.0, 4.0, 0.4, 0.4, 0.4)]
        frames = duck_keyframes(windows, 5.0)
        assert [k.time for k in frames] == pytest.approx([0.0, 2.0, 2.0, 2.4, 4.0, 4.4, 5.0])
        assert [k.volume for k in frames] == [0.2, 0.2, 0.2, 0.4, 0.4, 1.0, 1.0]


class TestOutputFades:
    def test_tail_faded_up_to_cap(self):
        assert output_fades(20.0, 10.0) == (0.08, 15.0, 5.0)

    def test_short_tail_not_faded(self):
        assert output_fades(10.0, 9.8) == (0.08, 10.0, 0.0)

    def test_fade_in_clamped(self):
        assert output_fades(10.0, 5.0, MixSettings(fade_in_sec=1.0))[0] == pytest.approx(0.12)
        assert output_fades(10.0, 5.0, MixSettings(fade_in_sec=0.0))[0] == pytest.approx(0.02)

    def test_segment_mix_fades_only_the_tail(self, hook_plan_dict):
        voices = [
            VoiceAsset(segment_index=1, file_path="/renders/vo_1.mp3", duration=6.0),
            VoiceAsset(segment_index=2, file_path="/renders/vo_2.mp3", duration=5.5),
        ]
        timeline = compose_timeline(AdCreativePlan.model_validate(hook_plan_dict), voices)
        spec = build_segment_mix(timeline, MusicAsset("/renders/bed.mp3", 30.0, bpm=120))
        assert spec.last_voice_end_time == pytest.approx(14.3)
        assert spec.fade_out == pytest.approx(5.0)
        assert spec.fade_out_start >= spec.last_voice_end_time - 1e-9
        assert spec.to_dict()["fade_out"] == pytest.approx(5.0)

    def test_segment_mix_without_tail_skips_fade(self, hook_plan_dict):
        voices = [
            VoiceAsset(segment_index=1, file_path="/renders/vo_1.mp3", duration=6.0),
            VoiceAsset(segment_index=2, file_path="/renders/vo_2.mp3", duration=5.5),
        ]
        timeline = compose_timeline(
            AdCreativePlan.model_validate(hook_plan_dict), voices,
            settings=ComposerSettings(music_tail_sec=0.2),
        )
        spec = build_segment_mix(timeline, None)
        assert spec.fade_out == 0.0
        assert spec.fade_out_start == pytest.approx(timeline.total_duration)
