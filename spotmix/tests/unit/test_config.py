"""Tests for the configuration manager."""
from pathlib import Path

import pytest

from spotmix.services.shared.config import (
    DEFAULT_SETTINGS_PATH,
    Config,
    get_config,
    load_default_config,
    reset_config,
)


@pytest.fixture(autouse=True)
def reset_singleton():
    reset_config()
    yield
    reset_config()


class TestConfigDotNotation:
    def test_get_top_level_key(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get("composer") is not None

    def test_get_nested_key(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get("composer.breath_gap_sec") == 0.25

    def test_get_deeply_nested(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get("composer.transition_defaults.crossfade") == 0.4

    def test_get_missing_key_returns_default(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get("nonexistent.key") is None
        assert cfg.get("nonexistent.key", "fallback") == "fallback"

    def test_get_partial_missing_returns_default(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get("alignment.nonexistent", 99) == 99


class TestConfigSections:
    def test_get_section_returns_dict(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get_section("alignment") == {"default_duck_level": 0.3, "max_duck_level": 0.7}

    def test_get_section_missing_is_empty(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get_section("nonexistent") == {}

    def test_get_section_of_scalar_is_empty(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get_section("composer.breath_gap_sec") == {}


class TestConfigPaths:
    def test_get_path_returns_path_object(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert isinstance(cfg.get_path("paths.renders"), Path)

    def test_get_path_string_value(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert "renders" in str(cfg.get_path("paths.renders"))

    def test_get_path_missing_key_raises(self, sample_settings):
        cfg = Config(str(sample_settings))
        with pytest.raises(KeyError):
            cfg.get_path("paths.nonexistent_path_key_xyz")


class TestConfigEnvOverride:
    def test_env_var_visible(self, sample_settings, monkeypatch):
        monkeypatch.setenv("SPOTMIX_FFMPEG", "/usr/local/bin/ffmpeg")
        cfg = Config(str(sample_settings))
        assert cfg.get_env("SPOTMIX_FFMPEG") == "/usr/local/bin/ffmpeg"

    def test_get_env_missing_returns_none(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get_env("NONEXISTENT_ENV_VAR_XYZ") is None

    def test_get_env_with_default(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get_env("NONEXISTENT_ENV_VAR_XYZ", "default") == "default"

    def test_dotted_key_overridden_by_env(self, sample_settings, monkeypatch):
        monkeypatch.setenv("SPOTMIX_ALIGNMENT__DEFAULT_DUCK_LEVEL", "0.45")
        cfg = Config(str(sample_settings))
        assert cfg.get("alignment.default_duck_level") == 0.45

    def test_override_for_absent_key(self, sample_settings, monkeypatch):
        monkeypatch.setenv("SPOTMIX_COMPOSER__TAIL_SEC", "6")
        cfg = Config(str(sample_settings))
        assert cfg.get("composer.tail_sec") == 6

    def test_section_picks_up_overrides(self, sample_settings, monkeypatch):
        monkeypatch.setenv("SPOTMIX_ALIGNMENT__MAX_DUCK_LEVEL", "0.6")
        monkeypatch.setenv("SPOTMIX_ALIGNMENT__NESTED__KEY", "1")
        cfg = Config(str(sample_settings))
        assert cfg.get_section("alignment") == {"default_duck_level": 0.3, "max_duck_level": 0.6}

    def test_override_feeds_settings(self, sample_settings, monkeypatch):
        from spotmix.services.shared.settings import AlignmentSettings

        monkeypatch.setenv("SPOTMIX_ALIGNMENT__MIN_DUCK_LEVEL", "0.05")
        settings = AlignmentSettings.from_config(Config(str(sample_settings)))
        assert settings.min_duck_level == 0.05
        assert settings.default_duck_level == 0.3


class TestConfigSingleton:
    def test_get_config_returns_same_instance(self, sample_settings):
        cfg1 = get_config(str(sample_settings))
        cfg2 = get_config()
        assert cfg1 is cfg2

    def test_reset_clears_singleton(self, sample_settings):
        cfg1 = get_config(str(sample_settings))
        reset_config()
        cfg2 = get_config(str(sample_settings))
        assert cfg1 is not cfg2

    def test_get_config_without_path_raises_if_not_initialized(self):
        with pytest.raises(RuntimeError):
            get_config()

    def test_load_default_config_reads_packaged_file(self):
        assert DEFAULT_SETTINGS_PATH.exists()
        cfg = load_default_config()
        assert cfg.get("alignment.default_duck_level") == 0.25
        assert get_config() is cfg


class TestConfigValidation:
    def test_missing_file_raises(self, tmp_dir):
        with pytest.raises(FileNotFoundError):
            Config(str(tmp_dir / "nonexistent.yaml"))

    def test_invalid_yaml_raises(self, tmp_dir):
        bad = tmp_dir / "bad.yaml"
        bad.write_text("key: [unclosed bracket\n")
        with pytest.raises(Exception):
            Config(str(bad))

    def test_non_mapping_raises(self, tmp_dir):
        bad = tmp_dir / "list.yaml"
        bad.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            Config(str(bad))
