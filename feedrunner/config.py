"""Runner configuration.

Settings come from the environment (a ``.env`` file is loaded by the entry
point through python-dotenv). Per-run automation settings arrive in the
``start-automation`` payload and are merged over these defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from feedrunner.logger import get_logger
from feedrunner.models import AutomationConfig, TimingConfig, TimingRange

logger = get_logger(__name__)

DEFAULT_FEED_URL = "https://www.linkedin.com/feed/"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3001
DEFAULT_MAX_ACTIONS = 10
DEFAULT_STOP_TIMEOUT_S = 240.0

# Accepted payload names per timing range; the second and later names are the
# ones the browser extension has always sent.
TIMING_KEYS: Dict[str, tuple[str, ...]] = {
    "tab_delay": ("tabDelay", "waitAction"),
    "editor_delay": ("editorDelay", "waitAfterComment"),
    "cool_down": ("coolDown", "waitBetweenComments"),
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    logger.warning("Unrecognized %s value '%s', using %s", name, raw, default)
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s: '%s', using %s", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number for %s: '%s', using %s", name, raw, default)
        return default


def _env_str(name: str) -> Optional[str]:
    value = (os.environ.get(name) or "").strip()
    return value or None


@dataclass
class Settings:
    runner_token: Optional[str] = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    headless: bool = False
    feed_url: str = DEFAULT_FEED_URL
    runs_dir: Path = field(default_factory=lambda: Path("runs"))
    user_data_dir: Path = field(default_factory=lambda: Path("user-data"))
    max_actions: int = DEFAULT_MAX_ACTIONS
    decision_endpoint: Optional[str] = None
    generation_endpoint: Optional[str] = None
    generation_token: Optional[str] = None
    stop_timeout_s: float = DEFAULT_STOP_TIMEOUT_S
    timing: TimingConfig = field(default_factory=TimingConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            runner_token=_env_str("RUNNER_TOKEN"),
            host=_env_str("RUNNER_HOST") or DEFAULT_HOST,
            port=_env_int("RUNNER_PORT", DEFAULT_PORT),
            headless=_env_flag("RUNNER_HEADLESS", False),
            feed_url=_env_str("RUNNER_FEED_URL") or DEFAULT_FEED_URL,
            runs_dir=Path(_env_str("RUNNER_RUNS_DIR") or "runs").expanduser(),
            user_data_dir=Path(_env_str("RUNNER_USER_DATA_DIR") or "user-data").expanduser(),
            max_actions=max(1, _env_int("RUNNER_MAX_ACTIONS", DEFAULT_MAX_ACTIONS)),
            decision_endpoint=_env_str("RUNNER_DECISION_ENDPOINT"),
            generation_endpoint=_env_str("RUNNER_GENERATION_ENDPOINT"),
            generation_token=_env_str("RUNNER_GENERATION_TOKEN"),
            stop_timeout_s=_env_float("RUNNER_STOP_TIMEOUT", DEFAULT_STOP_TIMEOUT_S),
        )

    def default_automation(self) -> AutomationConfig:
        return AutomationConfig(
            timing=replace(self.timing),
            decision_endpoint=self.decision_endpoint,
            generation_endpoint=self.generation_endpoint,
            generation_token=self.generation_token,
            max_actions=self.max_actions,
        )


def _parse_range(raw: Any, fallback: TimingRange) -> TimingRange:
    """Accept ``[min, max]`` or ``{"min": .., "max": ..}``; keep the fallback otherwise."""
    low: Any = None
    high: Any = None
    if isinstance(raw, Mapping):
        low, high = raw.get("min"), raw.get("max")
    elif isinstance(raw, (list, tuple)) and len(raw) == 2:
        low, high = raw
    else:
        return fallback
    try:
        low_ms = fallback.min_ms if low is None else int(low)
        high_ms = fallback.max_ms if high is None else int(high)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed timing range %r", raw)
        return fallback
    return TimingRange(low_ms, high_ms)


def timing_from_payload(raw: Optional[Mapping[str, Any]], defaults: TimingConfig) -> TimingConfig:
    if not raw:
        return replace(defaults)
    values: Dict[str, TimingRange] = {}
    for attr, names in TIMING_KEYS.items():
        current: TimingRange = getattr(defaults, attr)
        for name in names:
            if name in raw:
                current = _parse_range(raw[name], current)
                break
        values[attr] = current
    return TimingConfig(**values)


def automation_from_payload(payload: Mapping[str, Any], settings: Settings) -> AutomationConfig:
    """Merge a start-automation payload over the environment defaults."""
    config = settings.default_automation()
    config.timing = timing_from_payload(payload.get("timing"), settings.timing)
    for attr, key in (
        ("decision_endpoint", "decisionEndpoint"),
        ("generation_endpoint", "generationEndpoint"),
        ("generation_token", "generationToken"),
    ):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            setattr(config, attr, value.strip())
    config.optimize_mode = bool(payload.get("optimizeMode") or False)

    max_actions = payload.get("maxActions")
    if max_actions is not None:
        try:
            config.max_actions = max(1, int(max_actions))
        except (TypeError, ValueError):
            logger.warning("Invalid maxActions %r, keeping %s", max_actions, config.max_actions)
    return config
