"""Shared test fixtures for SpotMix."""
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
import yaml

from spotmix.services.music.types import EnergySample, MusicAnalysis, SentenceTiming
from spotmix.services.grid.types import TimeSignature


@pytest.fixture(scope="session")
def project_root() -> Path:
    return Path(__file__).parent.parent.parent


@pytest.fixture
def tmp_dir() -> Generator[Path, None, None]:
    d = Path(tempfile.mkdtemp())
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def sample_settings(tmp_dir: Path) -> Path:
    """Write a minimal settings.yaml to a temp dir and return its path."""
    settings = {
        "paths": {"renders": str(tmp_dir / "renders")},
        "logging": {"level": "DEBUG", "file": str(tmp_dir / "test.log")},
        "meter": {"ffmpeg_binary": "/opt/ffmpeg/bin/ffmpeg", "timeout_sec": 30},
        "interpreter": {"onset_threshold": 0.2, "peak_threshold": 0.6},
        "alignment": {"default_duck_level": 0.3, "max_duck_level": 0.7},
        "composer": {
            "breath_gap_sec": 0.25,
            "music_tail_sec": 4.0,
            "transition_defaults": {"crossfade": 0.4},
        },
        "envelope": {"default_ramp_sec": 0.4},
        "blueprint": {"default_phrase_bars": 4, "unknown_key": 1},
    }
    cfg_path = tmp_dir / "settings.yaml"
    cfg_path.write_text(yaml.dump(settings))
    return cfg_path


# ─────────────────────────────────────────────────────────────────────────────
# Music fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def two_sentences():
    return [
        SentenceTiming(text="Meet the new Aurora blender.", start_seconds=0.0, end_seconds=3.0),
        SentenceTiming(text="Order yours today.", start_seconds=4.0, end_seconds=8.0),
    ]


@pytest.fixture
def grid_analysis() -> MusicAnalysis:
    """120 BPM, 4/4, 10 s: beats every 0.5 s, downbeats every 2 s from 0."""
    beats = tuple(i * 0.5 for i in range(21))
    return MusicAnalysis(
        detected_bpm=120.0,
        time_signature=TimeSignature.FOUR_FOUR,
        beat_positions=beats,
        downbeat_positions=beats[::4],
        energy_curve=(),
        total_duration=10.0,
        phase_offset=0.0,
        sections=(),
    )


@pytest.fixture
def rising_curve():
    """Quiet for 4 s, loud for 4 s, quiet for 4 s, sampled every 0.1 s."""
    samples = []
    for i in range(120):
        t = round(i * 0.1, 3)
        energy = 0.9 if 4.0 <= t < 8.0 else 0.05
        samples.append(EnergySample(time=t, energy=energy))
    return samples


# ─────────────────────────────────────────────────────────────────────────────
# Creative plan fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def hook_plan_dict() -> dict:
    """A camelCase content plan as it arrives from the planning service."""
    return {
        "templateId": "hook_features_cta",
        "templateName": "Hook, features, CTA",
        "baseMusicVolume": 0.15,
        "segments": [
            {
                "segmentIndex": 0, "type": "music_solo", "label": "Hook",
                "duration": 3.0, "music": {"behavior": "full"},
                "transition": "crossfade", "transitionDuration": 0.5,
            },
            {
                "segmentIndex": 1, "type": "voiceover_with_music", "label": "Features",
                "duration": 8.0, "voiceover": {"text": "Meet Aurora."},
                "music": {"behavior": "ducked", "volume": 0.1},
                "sfx": {"description": "whoosh"},
                "transition": "duck_transition",
            },
            {
                "segmentIndex": 2, "type": "voiceover_with_music", "label": "CTA",
                "duration": 5.0, "voiceover": {"text": "Order today."},
                "music": {"behavior": "building"},
            },
        ],
    }
