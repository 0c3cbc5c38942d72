"""Tests for the per-component settings dataclasses."""
import dataclasses

import pytest

from spotmix.services.shared.config import Config
from spotmix.services.shared.settings import (
    AlignmentSettings,
    BlueprintSettings,
    ComposerSettings,
    EnvelopeSettings,
    InterpreterSettings,
    MeterSettings,
    MixSettings,
    load_all,
)


class TestDefaults:
    def test_none_config_gives_defaults(self):
        assert AlignmentSettings.from_config(None) == AlignmentSettings()

    def test_documented_thresholds(self):
        s = InterpreterSettings()
        assert (s.onset_threshold, s.building_threshold, s.peak_threshold) == (0.15, 0.3, 0.55)

    def test_settings_are_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            ComposerSettings().breath_gap_sec = 1.0

    def test_transition_default_lookup(self):
        s = ComposerSettings()
        assert s.transition_default("crossfade") == 0.3
        assert s.transition_default("unknown") == 0.0


class TestFromConfig:
    def test_overlays_yaml_section(self, sample_settings):
        cfg = Config(str(sample_settings))
        s = AlignmentSettings.from_config(cfg)
        assert s.default_duck_level == 0.3
        assert s.max_duck_level == 0.7
        assert s.min_duck_level == 0.1

    def test_nested_mapping_field(self, sample_settings):
        s = ComposerSettings.from_config(Config(str(sample_settings)))
        assert s.transition_default("crossfade") == 0.4

    def test_unknown_keys_ignored(self, sample_settings):
        s = BlueprintSettings.from_config(Config(str(sample_settings)))
        assert s.default_phrase_bars == 4

    def test_load_all_has_every_section(self, sample_settings):
        groups = load_all(Config(str(sample_settings)))
        assert set(groups) == {"meter", "interpreter", "alignment", "composer", "envelope", "blueprint", "mix"}
        assert groups["mix"] == MixSettings()
        assert isinstance(groups["meter"], MeterSettings)
        assert groups["meter"].timeout_sec == 30
        assert isinstance(groups["envelope"], EnvelopeSettings)
        assert groups["envelope"].default_ramp_sec == 0.4
