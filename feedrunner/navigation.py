"""Bring a freshly launched page to a ready feed, retrying with backoff.

Each attempt: load the document, dismiss a consent overlay, wait out a login
gate, then wait for any readiness landmark. A failed attempt leaves a
screenshot and an attempt-scoped trace in the run directory.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from feedrunner.logger import get_logger
from feedrunner.models import NavigationAttempt
from feedrunner.page import AuthenticationTimeout, NavigationPage, SessionClosedError

logger = get_logger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_DELAYS_MS = (2_000, 4_000, 6_000)
LOGIN_TIMEOUT_MS = 5 * 60 * 1000
READY_TIMEOUT_MS = 30_000

OUTCOME_READINESS_TIMEOUT = "readiness-timeout"
OUTCOME_AUTHENTICATION_TIMEOUT = "authentication-timeout"
OUTCOME_NAVIGATION_ERROR = "navigation-error"

FAILURE_HINT = (
    "The feed didn't load after {attempts} attempts. Check login/connectivity and try again."
)


@dataclass
class NavigationResult:
    success: bool
    selector: Optional[str] = None
    attempts: List[NavigationAttempt] = field(default_factory=list)
    hint: Optional[str] = None

    def artifacts(self) -> List[dict]:
        return [attempt.as_dict() for attempt in self.attempts]


class NavigationRetry:
    def __init__(
        self,
        page: NavigationPage,
        run_dir: Path,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_ms: Sequence[int] = BACKOFF_DELAYS_MS,
        login_timeout_ms: int = LOGIN_TIMEOUT_MS,
        ready_timeout_ms: int = READY_TIMEOUT_MS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.page = page
        self.run_dir = run_dir
        self.max_attempts = max_attempts
        self.backoff_ms = tuple(backoff_ms)
        self.login_timeout_ms = login_timeout_ms
        self.ready_timeout_ms = ready_timeout_ms
        self.sleep = sleep

    def navigate(self, url: str) -> NavigationResult:
        records: List[NavigationAttempt] = []

        for attempt in range(1, self.max_attempts + 1):
            logger.info("🌐 Navigation attempt %s/%s -> %s", attempt, self.max_attempts, url)
            try:
                selector = self._attempt(url)
            except SessionClosedError:
                raise
            except AuthenticationTimeout as exc:
                outcome, detail = OUTCOME_AUTHENTICATION_TIMEOUT, str(exc)
            except Exception as exc:
                outcome, detail = OUTCOME_NAVIGATION_ERROR, f"{type(exc).__name__}: {exc}"
            else:
                if selector:
                    logger.info("✅ Page ready on attempt %s (landmark %s)", attempt, selector)
                    return NavigationResult(success=True, selector=selector, attempts=records)
                outcome = OUTCOME_READINESS_TIMEOUT
                detail = f"No readiness landmark within {self.ready_timeout_ms}ms"

            logger.error("Navigation attempt %s failed: %s (%s)", attempt, outcome, detail)
            records.append(self._capture(attempt, outcome, detail))

            if attempt < self.max_attempts:
                delay_ms = self._backoff(attempt)
                logger.info("Waiting %sms before retry...", delay_ms)
                self.sleep(delay_ms / 1000.0)

        logger.error("All %s navigation attempts failed", self.max_attempts)
        return NavigationResult(
            success=False,
            attempts=records,
            hint=FAILURE_HINT.format(attempts=self.max_attempts),
        )

    def _attempt(self, url: str) -> Optional[str]:
        self.page.goto(url)
        self.page.dismiss_consent()
        if self.page.login_required():
            logger.info("🔐 Login required, waiting up to %s minutes for the user", self.login_timeout_ms // 60_000)
            self.page.wait_for_login(self.login_timeout_ms)
            logger.info("Login completed")
        return self.page.wait_for_ready(self.ready_timeout_ms)

    def _backoff(self, attempt: int) -> int:
        index = min(attempt - 1, len(self.backoff_ms) - 1)
        return self.backoff_ms[index]

    def _capture(self, attempt: int, outcome: str, detail: str) -> NavigationAttempt:
        record = NavigationAttempt(attempt=attempt, outcome=outcome, detail=detail)
        try:
            record.screenshot_path = self.page.screenshot(self.run_dir / f"attempt-{attempt}-failure.png")
            logger.info("📸 Screenshot saved: %s", record.screenshot_path)
        except Exception as exc:
            logger.warning("Screenshot capture failed on attempt %s: %s", attempt, exc)
        try:
            record.trace_path = self.page.save_trace(self.run_dir / f"attempt-{attempt}-trace.zip")
            logger.info("🧵 Attempt trace saved: %s", record.trace_path)
        except Exception as exc:
            logger.warning("Trace capture failed on attempt %s: %s", attempt, exc)
        return record
