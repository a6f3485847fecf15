from __future__ import annotations

import random
import secrets
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Set


class SessionStatus(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"
    STOPPED = "stopped"
    BROWSER_CLOSED = "browser-closed"


LIVE_STATUSES = {
    SessionStatus.STARTING,
    SessionStatus.RUNNING,
    SessionStatus.PAUSED,
    SessionStatus.STOPPING,
}


@dataclass
class TimingRange:
    """Inclusive millisecond range; each delay is drawn uniformly from it."""

    min_ms: int
    max_ms: int

    def bounds(self) -> tuple[int, int]:
        low, high = max(0, int(self.min_ms)), max(0, int(self.max_ms))
        if low > high:
            low, high = high, low
        return low, high

    def draw(self, rng: Optional[random.Random] = None) -> int:
        low, high = self.bounds()
        if low == high:
            return low
        return (rng or random).randint(low, high)

    def as_dict(self) -> Dict[str, int]:
        low, high = self.bounds()
        return {"min": low, "max": high}


@dataclass
class TimingConfig:
    tab_delay: TimingRange = field(default_factory=lambda: TimingRange(1000, 2000))
    editor_delay: TimingRange = field(default_factory=lambda: TimingRange(1000, 2000))
    cool_down: TimingRange = field(default_factory=lambda: TimingRange(5000, 10000))

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            "tabDelay": self.tab_delay.as_dict(),
            "editorDelay": self.editor_delay.as_dict(),
            "coolDown": self.cool_down.as_dict(),
        }


@dataclass
class AutomationConfig:
    timing: TimingConfig = field(default_factory=TimingConfig)
    decision_endpoint: Optional[str] = None
    generation_endpoint: Optional[str] = None
    generation_token: Optional[str] = None
    optimize_mode: bool = False
    # Reporting threshold only; the loop never stops on it.
    max_actions: int = 10

    @property
    def mode(self) -> str:
        return "optimized" if self.optimize_mode else "default"


def pseudo_item_id() -> str:
    return f"item_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@dataclass
class Item:
    item_id: str
    content: str = ""
    author_label: str = ""
    raw_markup: str = ""


@dataclass
class Decision:
    act: bool
    item_id: Optional[str] = None
    fail_open: bool = False


@dataclass
class NavigationAttempt:
    attempt: int
    outcome: str
    detail: str = ""
    screenshot_path: Optional[str] = None
    trace_path: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt,
            "outcome": self.outcome,
            "detail": self.detail,
            "screenshot": self.screenshot_path,
            "trace": self.trace_path,
        }


@dataclass
class SessionStats:
    items_acted_on: int = 0
    items_processed: int = 0
    items_skipped: int = 0
    errors: int = 0
    start_time: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "itemsActedOn": self.items_acted_on,
            "itemsProcessed": self.items_processed,
            "itemsSkipped": self.items_skipped,
            "errors": self.errors,
            "startTime": self.start_time.isoformat() if self.start_time else None,
        }


@dataclass
class Session:
    """The single live automation session owned by the lifecycle controller."""

    session_id: str
    run_dir: Path
    status: SessionStatus = SessionStatus.STARTING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    stats: SessionStats = field(default_factory=SessionStats)
    seen_items: Set[str] = field(default_factory=set)
    automation: AutomationConfig = field(default_factory=AutomationConfig)
    loop_active: bool = False

    @classmethod
    def create(cls, runs_root: Path) -> "Session":
        session_id = f"session-{int(time.time() * 1000)}"
        return cls(session_id=session_id, run_dir=runs_root / session_id)

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    def mark_seen(self, item_id: str) -> bool:
        """Add ``item_id`` to the seen set; False when it was already there."""
        if item_id in self.seen_items:
            return False
        self.seen_items.add(item_id)
        return True
