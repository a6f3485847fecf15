from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Final, Optional

_HANDLERS_ATTACHED: bool = False
_FORMAT: Final[str] = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
_DATEFMT: Final[str] = "%Y-%m-%d %H:%M:%S"
_LOG_DIR: Optional[Path] = None


def _resolve_level() -> int:
    level_name = os.getenv("RUNNER_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _resolve_log_dir() -> Path:
    return Path(os.getenv("RUNNER_LOG_DIR", "logs")).expanduser()


def log_file_for(day: Optional[datetime] = None, log_dir: Optional[Path] = None) -> Path:
    """Return the daily log file path, e.g. ``logs/runner-2024-05-01.log``."""
    stamp = (day or datetime.now()).strftime("%Y-%m-%d")
    return (log_dir or _LOG_DIR or _resolve_log_dir()) / f"runner-{stamp}.log"


def get_logger(name: str) -> logging.Logger:
    """Return a module logger writing to stderr and to today's log file."""
    global _HANDLERS_ATTACHED, _LOG_DIR

    level = _resolve_level()

    if not _HANDLERS_ATTACHED:
        formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)
        root = logging.getLogger()

        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        root.addHandler(stream)

        _LOG_DIR = _resolve_log_dir()
        try:
            _LOG_DIR.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file_for(log_dir=_LOG_DIR), encoding="utf-8")
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError as exc:
            root.warning("File logging disabled (%s): %s", _LOG_DIR, exc)

        root.setLevel(level)
        _HANDLERS_ATTACHED = True
    else:
        logging.getLogger().setLevel(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger


def read_todays_log() -> str:
    path = log_file_for()
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8", errors="replace")
