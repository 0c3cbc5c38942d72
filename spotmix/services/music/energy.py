"""Energy curve extraction from a rendered music file.

Extraction is an ordered list of strategies.  Each strategy asks the external
meter for a log, parses it, and returns an :class:`ExtractionOutcome` that
carries either samples or the reason it produced none.  The first strategy
with samples wins; if every strategy comes back empty the chain synthesises a
flat curve over the known duration.  Nothing in the chain raises.

The meter itself is FFmpeg.  All subprocess work sits in
``FfmpegMeter._run_ffmpeg()`` so tests can mock it.
"""
from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from spotmix.services.grid.musical_grid import TimeSignatureLike
from spotmix.services.music.interpreter import interpret_energy
from spotmix.services.music.types import EnergyCurve, EnergySample, MusicAnalysis
from spotmix.services.shared.settings import InterpreterSettings, MeterSettings

logger = logging.getLogger("spotmix.music.energy")

# ebur128 framelog line: "t: 0.1     TARGET:-23 LUFS    M: -23.4 S: ..."
_MOMENTARY_RE = re.compile(r"t:\s*([\d.]+)\s+(?:.*?\s)?M:\s*(-?[\d.]+)")
_RMS_RE = re.compile(r"RMS level dB:\s*(-?[\d.]+|-?inf)")

_LUFS_FLOOR = -70.0
_RMS_FLOOR_DB = -60.0
_SILENT_DB = -100.0
_RESET_SAMPLE_RATE = 48000


class MeterError(Exception):
    """The external loudness meter could not produce output."""


# ── meter ─────────────────────────────────────────────────────────────────────


class FfmpegMeter:
    """Runs FFmpeg analysis filters and returns their log text.

    Usage::

        meter = FfmpegMeter()
        log = meter.run_filter("/tmp/bed.mp3", "ebur128=framelog=verbose")
        duration = meter.probe_duration("/tmp/bed.mp3")
    """

    def __init__(self, settings: Optional[MeterSettings] = None, config=None):
        self.settings = settings or MeterSettings()
        self.ffmpeg_binary = self.settings.ffmpeg_binary
        self.ffprobe_binary = self.settings.ffprobe_binary
        if config is not None:
            self.ffmpeg_binary = config.get_env("SPOTMIX_FFMPEG", self.ffmpeg_binary)
            self.ffprobe_binary = config.get_env("SPOTMIX_FFPROBE", self.ffprobe_binary)

    def run_filter(self, path: str, audio_filter: str) -> str:
        """Run ``audio_filter`` over ``path`` and return the combined log.

        Raises:
            MeterError: If FFmpeg is missing, times out or exits non-zero.
        """
        args = [
            self.ffmpeg_binary, "-hide_banner", "-nostats",
            "-i", path, "-af", audio_filter, "-f", "null", "-",
        ]
        return self._run_ffmpeg(args)

    def probe_duration(self, path: str) -> float:
        """Container duration in seconds.

        Raises:
            MeterError: If ffprobe fails or prints something unparseable.
        """
        args = [
            self.ffprobe_binary, "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1", path,
        ]
        output = self._run_ffmpeg(args).strip()
        try:
            return float(output.splitlines()[0])
        except (IndexError, ValueError):
            raise MeterError(f"Unparseable duration from ffprobe: {output!r}") from None

    # ── Internal: mockable for unit tests ─────────────────────────────────────

    def _run_ffmpeg(self, args: List[str]) -> str:
        logger.debug("Running: %s", " ".join(args))
        try:
            proc = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.settings.timeout_sec,
            )
        except FileNotFoundError as exc:
            raise MeterError(f"Binary not found: {args[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            raise MeterError(f"{args[0]} timed out after {self.settings.timeout_sec}s") from exc
        if proc.returncode != 0:
            tail = (proc.stderr or "").strip().splitlines()[-1:]
            raise MeterError(f"{args[0]} exited {proc.returncode}: {' '.join(tail)}")
        return (proc.stdout or "") + (proc.stderr or "")


# ── log parsers ───────────────────────────────────────────────────────────────


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def parse_loudness_log(text: str) -> List[EnergySample]:
    """Momentary loudness lines → samples, mapping -70..0 LUFS onto 0..1."""
    samples: List[EnergySample] = []
    for line in text.splitlines():
        match = _MOMENTARY_RE.search(line)
        if match:
            lufs = float(match.group(2))
            samples.append(EnergySample(
                time=float(match.group(1)),
                energy=_clamp01((lufs - _LUFS_FLOOR) / -_LUFS_FLOOR),
            ))
    return samples


def parse_rms_log(text: str, interval_sec: float) -> List[EnergySample]:
    """Periodic RMS lines → samples, mapping -60..0 dB onto 0..1.

    Readings are assumed to arrive every ``interval_sec``; ``inf`` means
    digital silence.
    """
    samples: List[EnergySample] = []
    for idx, match in enumerate(_RMS_RE.finditer(text)):
        raw = match.group(1)
        db = _SILENT_DB if raw.endswith("inf") else float(raw)
        samples.append(EnergySample(
            time=idx * interval_sec,
            energy=_clamp01((db - _RMS_FLOOR_DB) / -_RMS_FLOOR_DB),
        ))
    return samples


def flat_curve(total_duration: float, interval_sec: float, energy: float = 0.5) -> List[EnergySample]:
    """Constant-energy samples every ``interval_sec`` over ``[0, total)``."""
    count = int(round(total_duration / interval_sec)) if total_duration > 0 else 0
    times = [i * interval_sec for i in range(count)]
    return [EnergySample(time=t, energy=energy) for t in times if t < total_duration]


# ── strategies ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ExtractionOutcome:
    """Samples from one strategy, or the reason there are none."""
    strategy: str
    samples: Tuple[EnergySample, ...] = ()
    reason: str = ""

    @property
    def ok(self) -> bool:
        return len(self.samples) > 0


class EnergyStrategy:
    """Base class: one way of turning a file into energy samples."""

    name = "base"

    def extract(self, path: str, meter: FfmpegMeter) -> ExtractionOutcome:
        raise NotImplementedError


class LoudnessMeterStrategy(EnergyStrategy):
    """EBU R128 momentary loudness (native 100 ms resolution)."""

    name = "loudness"

    def extract(self, path: str, meter: FfmpegMeter) -> ExtractionOutcome:
        try:
            log = meter.run_filter(path, "ebur128=framelog=verbose")
        except MeterError as exc:
            return ExtractionOutcome(strategy=self.name, reason=str(exc))
        samples = parse_loudness_log(log)
        if not samples:
            return ExtractionOutcome(strategy=self.name, reason="no momentary loudness lines")
        return ExtractionOutcome(strategy=self.name, samples=tuple(samples))


class RmsResetStrategy(EnergyStrategy):
    """Per-window RMS from ``astats`` with a periodic reset."""

    name = "rms"

    def __init__(self, interval_sec: float = 0.1):
        self.interval_sec = interval_sec

    def extract(self, path: str, meter: FfmpegMeter) -> ExtractionOutcome:
        reset = max(1, int(round(_RESET_SAMPLE_RATE * self.interval_sec)))
        try:
            log = meter.run_filter(path, f"astats=metadata=1:reset={reset}")
        except MeterError as exc:
            return ExtractionOutcome(strategy=self.name, reason=str(exc))
        samples = parse_rms_log(log, self.interval_sec)
        if not samples:
            return ExtractionOutcome(strategy=self.name, reason="no RMS level lines")
        return ExtractionOutcome(strategy=self.name, samples=tuple(samples))


def default_strategies(settings: Optional[MeterSettings] = None) -> List[EnergyStrategy]:
    settings = settings or MeterSettings()
    return [LoudnessMeterStrategy(), RmsResetStrategy(settings.sample_interval_sec)]


# ── public ────────────────────────────────────────────────────────────────────


def extract_energy_curve(
    path: str,
    total_duration: Optional[float] = None,
    meter: Optional[FfmpegMeter] = None,
    strategies: Optional[Sequence[EnergyStrategy]] = None,
    settings: Optional[MeterSettings] = None,
) -> EnergyCurve:
    """Run the extraction chain for ``path``.

    Args:
        path: Audio file to meter.
        total_duration: Known duration; probed via the meter when omitted.
        meter: Meter to use (default :class:`FfmpegMeter`).
        strategies: Ordered strategies (default loudness, then RMS).
        settings: Meter settings for the default meter and flat fallback.

    Returns:
        :class:`EnergyCurve`.  ``strategy == "flat"`` marks the fallback.
    """
    settings = settings or MeterSettings()
    meter = meter or FfmpegMeter(settings)
    chain = list(strategies) if strategies is not None else default_strategies(settings)

    if total_duration is None:
        try:
            total_duration = meter.probe_duration(path)
        except MeterError as exc:
            logger.warning("Could not probe duration of %s: %s", path, exc)
            total_duration = 0.0

    notes: List[str] = []
    for strategy in chain:
        outcome = strategy.extract(path, meter)
        if outcome.ok:
            logger.info(
                "Energy curve for %s: %d samples via %s",
                path, len(outcome.samples), outcome.strategy,
            )
            duration = max(total_duration, outcome.samples[-1].time)
            return EnergyCurve(
                samples=outcome.samples,
                total_duration=duration,
                strategy=outcome.strategy,
                notes=tuple(notes),
            )
        logger.debug("Energy strategy %s produced nothing: %s", outcome.strategy, outcome.reason)
        notes.append(f"{outcome.strategy}: {outcome.reason}")

    logger.warning(
        "Could not extract energy curve for %s (%s); using flat estimate",
        path, "; ".join(notes) or "no strategies",
    )
    samples = flat_curve(total_duration, settings.sample_interval_sec, settings.flat_energy)
    return EnergyCurve(
        samples=tuple(samples),
        total_duration=total_duration,
        strategy="flat",
        notes=tuple(notes),
    )


def analyze_music(
    path: str,
    expected_bpm: float,
    total_duration: Optional[float] = None,
    time_signature: TimeSignatureLike = None,
    meter: Optional[FfmpegMeter] = None,
    meter_settings: Optional[MeterSettings] = None,
    interpreter_settings: Optional[InterpreterSettings] = None,
) -> MusicAnalysis:
    """Extract the energy curve of ``path`` and interpret it at ``expected_bpm``."""
    logger.info("Analysing music: %s, expected %.1f BPM", path, expected_bpm)
    curve = extract_energy_curve(
        path, total_duration=total_duration, meter=meter, settings=meter_settings,
    )
    return interpret_energy(
        curve.samples,
        expected_bpm,
        curve.total_duration,
        time_signature=time_signature,
        settings=interpreter_settings,
    )
