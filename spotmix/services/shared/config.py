"""SpotMix configuration: one YAML tree plus environment overrides.

Lookup order for ``config.get("alignment.default_duck_level")``:
  1. ``SPOTMIX_ALIGNMENT__DEFAULT_DUCK_LEVEL`` in the environment
  2. the ``alignment.default_duck_level`` key of ``settings.yaml``
  3. the caller's default

``.env`` files are loaded into the environment first (global
``~/.spotmix/.env``, then a local ``.env`` that wins over it), so a machine
can pin its ffmpeg binary or retune the mix without editing the YAML.
Override values are parsed as YAML scalars: ``"0.3"`` reads back as a float.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

ENV_PREFIX = "SPOTMIX_"
DEFAULT_SETTINGS_PATH = Path(__file__).parent.parent.parent / "config" / "settings.yaml"

_GLOBAL_ENV = Path.home() / ".spotmix" / ".env"
_LOCAL_ENV = Path(__file__).parent.parent.parent.parent / ".env"
_MISSING = object()

_config_instance: Optional["Config"] = None


def _read_settings(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} must hold a YAML mapping, got {type(data).__name__}")
    return data


def _env_name(key: str) -> str:
    return ENV_PREFIX + key.upper().replace(".", "__")


class Config:
    """Dot-notation view over ``settings.yaml`` with ``SPOTMIX_*`` overrides.

    Usage::

        cfg = Config("spotmix/config/settings.yaml")
        cfg.get("composer.breath_gap_sec")           # 0.3
        cfg.get_section("alignment")                 # {"default_duck_level": 0.25, ...}
        cfg.get_env("SPOTMIX_FFMPEG", "ffmpeg")
    """

    def __init__(self, config_path: str):
        self.path = Path(config_path)
        self._data = _read_settings(self.path)
        self._load_env_files()

    # ── private ──────────────────────────────────────────────────────────────

    @staticmethod
    def _load_env_files() -> None:
        if _GLOBAL_ENV.exists():
            load_dotenv(_GLOBAL_ENV, override=False)
        if _LOCAL_ENV.exists():
            load_dotenv(_LOCAL_ENV, override=True)

    def _lookup(self, key: str) -> Any:
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return _MISSING
            node = node[part]
        return node

    @staticmethod
    def _override(key: str) -> Any:
        raw = os.environ.get(_env_name(key))
        if raw is None:
            return _MISSING
        return yaml.safe_load(raw)

    # ── public ───────────────────────────────────────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        """Value at dotted ``key``; an environment override beats the file."""
        value = self._override(key)
        if value is _MISSING:
            value = self._lookup(key)
        return default if value is _MISSING else value

    def get_section(self, key: str) -> Dict[str, Any]:
        """Copy of a mapping section with per-key overrides applied.

        Missing keys and scalar values give an empty dict.
        """
        node = self._lookup(key)
        if not isinstance(node, dict):
            return {}
        section = dict(node)
        prefix = _env_name(key) + "__"
        for name, raw in os.environ.items():
            field_name = name[len(prefix):]
            if name.startswith(prefix) and field_name and "__" not in field_name:
                section[field_name.lower()] = yaml.safe_load(raw)
        return section

    def get_path(self, key: str) -> Path:
        """Value at ``key`` as a Path.

        Raises:
            KeyError: If the key is absent.
        """
        value = self.get(key)
        if value is None:
            raise KeyError(f"Config key not found: {key}")
        return Path(str(value))

    def get_env(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return os.environ.get(name, default)


# ── module-level singleton ────────────────────────────────────────────────────


def get_config(config_path: Optional[str] = None) -> Config:
    """Shared Config; the first call must name the settings file.

    Raises:
        RuntimeError: If called without a path before initialisation.
    """
    global _config_instance
    if _config_instance is None:
        if config_path is None:
            raise RuntimeError("Config not initialised; call get_config(config_path) first.")
        _config_instance = Config(config_path)
    return _config_instance


def load_default_config() -> Config:
    """Initialise the shared Config from the packaged ``settings.yaml``."""
    return get_config(str(DEFAULT_SETTINGS_PATH))


def reset_config() -> None:
    global _config_instance
    _config_instance = None
