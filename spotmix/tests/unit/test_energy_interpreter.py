"""Tests for energy extraction and interpretation."""
import subprocess
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from spotmix.services.grid.types import TimeSignature
from spotmix.services.music.energy import (
    FfmpegMeter,
    LoudnessMeterStrategy,
    MeterError,
    RmsResetStrategy,
    analyze_music,
    extract_energy_curve,
    flat_curve,
    parse_loudness_log,
    parse_rms_log,
)
from spotmix.services.music.interpreter import (
    classify_energy,
    detect_sections,
    find_phase_offset,
    interpret_energy,
    smooth_energy,
)
from spotmix.services.music.types import EnergySample, SectionLabel
from spotmix.services.shared.settings import InterpreterSettings, MeterSettings

EBUR128_LOG = """\
[Parsed_ebur128_0 @ 0x5581] Summary follows after the frame log
[Parsed_ebur128_0 @ 0x5581] t: 0.1      TARGET:-23 LUFS    M: -70.0 S:-120.7     I: -70.0 LUFS       LRA:   0.0 LU
[Parsed_ebur128_0 @ 0x5581] t: 0.2      TARGET:-23 LUFS    M: -35.0 S:-120.7     I: -35.0 LUFS       LRA:   0.0 LU
[Parsed_ebur128_0 @ 0x5581] t: 0.3      TARGET:-23 LUFS    M:  -7.0 S:-120.7     I: -20.0 LUFS       LRA:   0.0 LU
  Integrated loudness:
    I:         -20.0 LUFS
    Threshold: -30.0 LUFS
"""

ASTATS_LOG = """\
[Parsed_astats_0 @ 0x7f] RMS level dB: -30.000000
[Parsed_astats_0 @ 0x7f] RMS level dB: -inf
[Parsed_astats_0 @ 0x7f] RMS level dB: 0.000000
"""


class TestLogParsers:
    def test_loudness_maps_lufs_to_unit_range(self):
        samples = parse_loudness_log(EBUR128_LOG)
        assert [s.time for s in samples] == pytest.approx([0.1, 0.2, 0.3])
        assert [s.energy for s in samples] == pytest.approx([0.0, 0.5, 0.9])

    def test_loudness_ignores_summary(self):
        assert parse_loudness_log("Threshold: -30.0 LUFS\nI: -20.0 LUFS") == []

    def test_rms_maps_db_and_silence(self):
        samples = parse_rms_log(ASTATS_LOG, 0.1)
        assert [s.time for s in samples] == pytest.approx([0.0, 0.1, 0.2])
        assert [s.energy for s in samples] == pytest.approx([0.5, 0.0, 1.0])

    def test_flat_curve_covers_duration(self):
        samples = flat_curve(2.0, 0.5, energy=0.4)
        assert [s.time for s in samples] == pytest.approx([0.0, 0.5, 1.0, 1.5])
        assert all(s.energy == 0.4 for s in samples)

    def test_flat_curve_zero_duration(self):
        assert flat_curve(0.0, 0.1) == []


class TestFfmpegMeter:
    def test_missing_binary_raises_meter_error(self):
        meter = FfmpegMeter(MeterSettings(ffmpeg_binary="ffmpeg-not-installed"))
        with patch("spotmix.services.music.energy.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(MeterError):
                meter.run_filter("bed.mp3", "ebur128=framelog=verbose")

    def test_timeout_raises_meter_error(self):
        meter = FfmpegMeter()
        with patch("spotmix.services.music.energy.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(cmd="ffmpeg", timeout=1)):
            with pytest.raises(MeterError):
                meter.run_filter("bed.mp3", "ebur128")

    def test_nonzero_exit_raises_meter_error(self):
        meter = FfmpegMeter()
        proc = MagicMock(returncode=1, stdout="", stderr="bed.mp3: No such file or directory")
        with patch("spotmix.services.music.energy.subprocess.run", return_value=proc):
            with pytest.raises(MeterError, match="No such file"):
                meter.run_filter("bed.mp3", "ebur128")

    def test_run_filter_returns_combined_log(self):
        meter = FfmpegMeter()
        proc = MagicMock(returncode=0, stdout="", stderr=EBUR128_LOG)
        with patch("spotmix.services.music.energy.subprocess.run", return_value=proc) as run:
            log = meter.run_filter("bed.mp3", "ebur128=framelog=verbose")
        assert "TARGET" in log
        args = run.call_args[0][0]
        assert args[0] == "ffmpeg"
        assert "ebur128=framelog=verbose" in args

    def test_probe_duration(self):
        meter = FfmpegMeter()
        with patch.object(meter, "_run_ffmpeg", return_value="12.480000\n"):
            assert meter.probe_duration("bed.mp3") == pytest.approx(12.48)

    def test_probe_duration_unparseable(self):
        meter = FfmpegMeter()
        with patch.object(meter, "_run_ffmpeg", return_value="N/A\n"):
            with pytest.raises(MeterError):
                meter.probe_duration("bed.mp3")

    def test_env_overrides_binary(self):
        config = MagicMock()
        config.get_env.side_effect = lambda name, default=None: (
            "/opt/bin/ffmpeg" if name == "SPOTMIX_FFMPEG" else default
        )
        meter = FfmpegMeter(config=config)
        assert meter.ffmpeg_binary == "/opt/bin/ffmpeg"
        assert meter.ffprobe_binary == "ffprobe"


class TestExtractionChain:
    def test_first_strategy_wins(self):
        meter = MagicMock()
        meter.run_filter.return_value = EBUR128_LOG
        curve = extract_energy_curve("bed.mp3", total_duration=10.0, meter=meter)
        assert curve.strategy == "loudness"
        assert len(curve.samples) == 3
        assert curve.total_duration == 10.0
        meter.run_filter.assert_called_once()

    def test_falls_back_to_rms(self):
        meter = MagicMock()
        meter.run_filter.side_effect = [MeterError("ebur128 unavailable"), ASTATS_LOG]
        curve = extract_energy_curve("bed.mp3", total_duration=10.0, meter=meter)
        assert curve.strategy == "rms"
        assert curve.notes == ("loudness: ebur128 unavailable",)

    def test_empty_logs_fall_through(self):
        meter = MagicMock()
        meter.run_filter.return_value = "nothing useful"
        curve = extract_energy_curve("bed.mp3", total_duration=1.0, meter=meter)
        assert curve.strategy == "flat"
        assert len(curve.notes) == 2

    def test_all_failures_give_flat_curve(self):
        meter = MagicMock()
        meter.run_filter.side_effect = MeterError("ffmpeg missing")
        curve = extract_energy_curve("bed.mp3", total_duration=12.0, meter=meter)
        assert curve.strategy == "flat"
        assert len(curve.samples) == 120
        assert all(s.energy == 0.5 for s in curve.samples)

    def test_probe_failure_never_raises(self):
        meter = MagicMock()
        meter.probe_duration.side_effect = MeterError("ffprobe missing")
        meter.run_filter.side_effect = MeterError("ffmpeg missing")
        curve = extract_energy_curve("bed.mp3", meter=meter)
        assert curve.strategy == "flat"
        assert curve.samples == ()
        assert curve.total_duration == 0.0

    def test_duration_probed_when_unknown(self):
        meter = MagicMock()
        meter.probe_duration.return_value = 30.0
        meter.run_filter.return_value = EBUR128_LOG
        curve = extract_energy_curve("bed.mp3", meter=meter)
        assert curve.total_duration == 30.0

    def test_custom_strategy_order(self):
        meter = MagicMock()
        meter.run_filter.return_value = ASTATS_LOG
        curve = extract_energy_curve(
            "bed.mp3", total_duration=5.0, meter=meter,
            strategies=[RmsResetStrategy(0.25), LoudnessMeterStrategy()],
        )
        assert curve.strategy == "rms"
        assert [s.time for s in curve.samples] == pytest.approx([0.0, 0.25, 0.5])
        assert "reset=12000" in meter.run_filter.call_args[0][1]

    def test_analyze_music_end_to_end(self):
        meter = MagicMock()
        meter.run_filter.return_value = EBUR128_LOG
        analysis = analyze_music("bed.mp3", 120, total_duration=8.0, meter=meter)
        assert analysis.detected_bpm == 120
        assert analysis.total_duration == 8.0
        assert analysis.downbeat_positions[-1] >= 8.0


class TestInterpretEnergy:
    def test_empty_curve_single_low_section(self):
        analysis = interpret_energy([], 120, 30.0)
        assert len(analysis.sections) == 1
        section = analysis.sections[0]
        assert section.label == SectionLabel.LOW
        assert (section.start_time, section.end_time) == (0.0, 30.0)

    def test_phase_from_first_onset(self, rising_curve):
        analysis = interpret_energy(rising_curve, 120, 12.0)
        assert analysis.phase_offset == pytest.approx(4.0)
        assert analysis.downbeat_positions[0] == pytest.approx(4.0)
        assert analysis.downbeat_positions[-1] >= 12.0

    def test_beats_evenly_spaced_and_downbeats_every_bar(self, rising_curve):
        analysis = interpret_energy(rising_curve, 120, 12.0)
        assert np.allclose(np.diff(analysis.beat_positions), 0.5)
        assert np.allclose(np.diff(analysis.downbeat_positions), 2.0)
        assert analysis.beat_positions[::4] == analysis.downbeat_positions

    def test_sections_low_peak_resolving(self, rising_curve):
        analysis = interpret_energy(rising_curve, 120, 12.0)
        labels = [s.label for s in analysis.sections]
        assert labels == [SectionLabel.LOW, SectionLabel.PEAK, SectionLabel.RESOLVING]
        peak = analysis.sections[1]
        assert peak.start_time < 6.0 < peak.end_time

    def test_beats_per_bar_shortcut(self):
        analysis = interpret_energy([], 90, 10.0, beats_per_bar=3)
        assert analysis.time_signature == TimeSignature.THREE_FOUR
        assert analysis.bar_duration == pytest.approx(2.0)

    def test_total_extends_to_last_sample(self):
        samples = [EnergySample(0.0, 0.2), EnergySample(15.0, 0.2)]
        assert interpret_energy(samples, 120, 10.0).total_duration == 15.0

    def test_unsorted_and_out_of_range_samples(self):
        samples = [EnergySample(1.0, 1.7), EnergySample(0.0, -0.3)]
        analysis = interpret_energy(samples, 120, 2.0)
        assert [s.time for s in analysis.energy_curve] == [0.0, 1.0]
        assert [s.energy for s in analysis.energy_curve] == [0.0, 1.0]

    def test_invalid_bpm_raises(self):
        with pytest.raises(ValueError):
            interpret_energy([], 0, 10.0)

    def test_negative_duration_raises(self):
        with pytest.raises(ValueError):
            interpret_energy([], 120, -1.0)


class TestInterpreterPieces:
    def test_phase_snaps_to_sixteenth(self):
        samples = [EnergySample(0.0, 0.0), EnergySample(0.31, 0.5)]
        # sixteenth at 120 BPM = 0.125 s; 0.31 → 0.25
        assert find_phase_offset(samples, 120) == pytest.approx(0.25)

    def test_no_onset_gives_zero_phase(self):
        assert find_phase_offset([EnergySample(0.0, 0.01)], 120) == 0.0

    def test_smooth_constant_curve_unchanged(self):
        samples = [EnergySample(i * 0.1, 0.4) for i in range(50)]
        assert np.allclose(smooth_energy(samples, 2.0), 0.4)

    def test_smooth_empty(self):
        assert smooth_energy([], 2.0).size == 0

    def test_classify_thresholds(self):
        settings = InterpreterSettings()
        assert classify_energy(0.29, settings) == SectionLabel.LOW
        assert classify_energy(0.3, settings) == SectionLabel.BUILDING
        assert classify_energy(0.55, settings) == SectionLabel.PEAK

    def test_short_blip_absorbed(self):
        samples = [EnergySample(i * 0.1, 0.9 if 20 <= i < 23 else 0.05) for i in range(60)]
        sections = detect_sections(samples, bar_duration=2.0)
        assert len(sections) == 1
        assert sections[0].label == SectionLabel.LOW
        assert sections[0].end_time == pytest.approx(5.9)

    def test_sub_bar_sections_fold_into_predecessor(self):
        # 1 s loud burst with a 1 s bar: the building/peak/building runs are
        # each shorter than a bar and end up inside the opening low section
        samples = [EnergySample(i * 0.1, 0.9 if 20 <= i < 30 else 0.05) for i in range(60)]
        sections = detect_sections(samples, bar_duration=1.0)
        assert [s.label for s in sections] == [SectionLabel.LOW, SectionLabel.LOW]
        assert sections[0].start_time == 0.0
        assert sections[0].end_time == pytest.approx(3.3)

    def test_detect_sections_empty(self):
        assert detect_sections([], 2.0) == []
