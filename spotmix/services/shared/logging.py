"""Logging for SpotMix.

Every engine logs under ``spotmix.<area>.<module>``; one call here sets the
level and handlers for all of them.  ``SPOTMIX_LOG_LEVEL`` in the environment
overrides the configured level.
"""
from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import List, Optional

_NAMESPACE = "spotmix"
_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_LINE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_DEFAULT_MAX_BYTES = 20 * 1024 * 1024
_DEFAULT_BACKUPS = 5


def _resolve_level(level: str) -> int:
    name = str(level).upper()
    if name not in _LEVELS:
        raise ValueError(f"Invalid log level {level!r}; expected one of {', '.join(_LEVELS)}")
    return getattr(logging, name)


def _build_handlers(
    log_file: Optional[str],
    max_bytes: int,
    backup_count: int,
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8",
        ))
    return handlers


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = _DEFAULT_MAX_BYTES,
    backup_count: int = _DEFAULT_BACKUPS,
) -> logging.Logger:
    """Configure the ``spotmix`` logger; calling again replaces the handlers.

    Args:
        level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL (any case).
        log_file: Optional rotating log file; parent directories are created.
        max_bytes: Rotation size.
        backup_count: Rotated files kept.

    Returns:
        The configured namespace logger.

    Raises:
        ValueError: On an unknown level name.
    """
    numeric = _resolve_level(level)
    formatter = logging.Formatter(_LINE_FORMAT, datefmt=_DATE_FORMAT)

    root = logging.getLogger(_NAMESPACE)
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()

    root.setLevel(numeric)
    for handler in _build_handlers(log_file, max_bytes, backup_count):
        handler.setLevel(numeric)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.propagate = False
    return root


def setup_logging_from_config(config) -> logging.Logger:
    """Apply the ``logging`` section of a :class:`Config`."""
    section = config.get_section("logging")
    level = config.get_env("SPOTMIX_LOG_LEVEL") or section.get("level", "INFO")
    return setup_logging(
        level=level,
        log_file=section.get("file"),
        max_bytes=int(section.get("max_bytes", _DEFAULT_MAX_BYTES)),
        backup_count=int(section.get("backup_count", _DEFAULT_BACKUPS)),
    )


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``spotmix`` namespace ("music.aligner" → "spotmix.music.aligner")."""
    if name == _NAMESPACE or name.startswith(_NAMESPACE + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_NAMESPACE}.{name}")
