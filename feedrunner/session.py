"""Session lifecycle: start, start-automation, pause, resume, stop, status.

Sync Playwright objects may only be used from the thread that created them,
so every browser call for a session runs on that session's single worker
thread (a one-thread executor). Control calls coming from the API only flip
flags on :class:`SessionControl` or submit work to the worker and wait for the
result.

All lifecycle results are plain dict envelopes with ``success`` and, on
failure, ``error`` and ``hint``; nothing here raises across the API boundary.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from feedrunner._profile_launch import BrowserSession, launch_persistent
from feedrunner.act import ActAndVerify
from feedrunner.config import Settings, automation_from_payload
from feedrunner.control import SessionControl
from feedrunner.decision import DecisionClient
from feedrunner.generation import ContentGenerationClient
from feedrunner.logger import get_logger
from feedrunner.loop import AutomationLoop
from feedrunner.models import Session, SessionStatus, SessionStats
from feedrunner.navigation import NavigationResult, NavigationRetry
from feedrunner.outbound import OutboundClient

logger = get_logger(__name__)

CODE_NAV_TIMEOUT = "NAV_TIMEOUT"
CODE_START_ERROR = "START_ERROR"
CODE_START_CANCELLED = "START_CANCELLED"

Launcher = Callable[..., BrowserSession]
NavigatorFactory = Callable[..., NavigationRetry]


def _rejected(error: str, hint: str, **extra: Any) -> Dict[str, Any]:
    return {"success": False, "error": error, "hint": hint, **extra}


class SessionController:
    """Owns the single live :class:`Session` and all of its mutable state."""

    def __init__(
        self,
        settings: Settings,
        *,
        launcher: Launcher = launch_persistent,
        navigator_factory: NavigatorFactory = NavigationRetry,
        outbound: Optional[OutboundClient] = None,
        control_factory: Callable[[], SessionControl] = SessionControl,
    ) -> None:
        self.settings = settings
        self.launcher = launcher
        self.navigator_factory = navigator_factory
        self.outbound = outbound or OutboundClient()
        self.control_factory = control_factory

        self.session: Optional[Session] = None
        self.control: Optional[SessionControl] = None
        self.browser: Optional[BrowserSession] = None
        self._worker: Optional[ThreadPoolExecutor] = None
        self._loop_future: Optional[Future] = None

    # lifecycle

    def start(self) -> Dict[str, Any]:
        if self.session is not None and self.session.is_live:
            return _rejected(
                "Runner already active",
                "Stop the current session before starting a new one.",
                status=self.get_status(),
            )
        if self.session is not None:
            logger.info("Clearing %s session %s", self.session.status.value, self.session.session_id)
            self._teardown()

        session = Session.create(self.settings.runs_dir)
        session.automation = self.settings.default_automation()
        self.session = session
        control = self.control_factory()
        self.control = control
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"runner-{session.session_id}")
        logger.info("🚀 Starting session %s (runs dir %s)", session.session_id, session.run_dir)

        try:
            result: Optional[NavigationResult] = self._worker.submit(self._open_browser, session).result()
        except Exception as exc:
            logger.exception("Session start failed: %s", exc)
            if self.session is session:
                self._teardown()
            return {
                "success": False,
                "code": CODE_START_ERROR,
                "error": f"Failed to start runner: {exc}",
                "hint": "Check that Chromium is installed (playwright install chromium) and the profile is not locked.",
                "sessionId": session.session_id,
            }

        if result is None or self.session is not session or control.stop_requested:
            logger.warning("Session %s was stopped before it became ready", session.session_id)
            return {
                "success": False,
                "code": CODE_START_CANCELLED,
                "error": "Start cancelled",
                "hint": "The session was stopped while the feed was loading.",
                "sessionId": session.session_id,
            }

        if not result.success:
            self._teardown()
            return {
                "success": False,
                "code": CODE_NAV_TIMEOUT,
                "error": "Navigation failed",
                "hint": result.hint,
                "sessionId": session.session_id,
                "artifacts": result.artifacts(),
            }

        session.status = SessionStatus.RUNNING
        session.stats.start_time = datetime.now(UTC)
        logger.info("✅ Session %s ready", session.session_id)
        return {
            "success": True,
            "message": "Runner started and ready",
            "sessionId": session.session_id,
            "runsDir": str(session.run_dir.resolve()),
            "stats": session.stats.as_dict(),
        }

    def start_automation(self, payload: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        session = self.session
        if session is None or session.status not in (SessionStatus.RUNNING, SessionStatus.PAUSED):
            return _rejected("Runner not active", "Start the runner first with POST /runner/start.")
        if session.loop_active:
            return _rejected("Automation already running", "Stop or pause the current automation first.")

        config = automation_from_payload(payload or {}, self.settings)
        session.automation = config
        self.control.resume()

        page = self.browser.driver()
        generation = ContentGenerationClient(
            config.generation_endpoint,
            token=config.generation_token,
            outbound=self.outbound,
        )
        loop = AutomationLoop(
            session,
            page,
            self.control,
            DecisionClient(config.decision_endpoint, outbound=self.outbound),
            ActAndVerify(page, self.control, generation, config.timing),
        )
        # Marked here so a second request is rejected before the worker picks the loop up.
        session.loop_active = True
        self._loop_future = self._worker.submit(loop.run)
        self._loop_future.add_done_callback(self._on_loop_finished)

        logger.info("⌨️  Automation requested (mode=%s, maxActions=%s)", config.mode, config.max_actions)
        return {
            "success": True,
            "message": "Automation started",
            "mode": config.mode,
            "thresholds": {"maxActions": config.max_actions},
            "timing": config.timing.as_dict(),
            "stats": session.stats.as_dict(),
        }

    def pause(self) -> Dict[str, Any]:
        session = self.session
        if session is None or not session.loop_active:
            return _rejected("No active automation to pause", "Start automation before pausing.")
        if self.control.paused:
            return _rejected("Automation already paused", "Use POST /runner/resume to continue.")
        self.control.pause()
        session.status = SessionStatus.PAUSED
        logger.info("⏸️  Automation paused")
        return {"success": True, "message": "Automation paused", "status": self.get_status()}

    def resume(self) -> Dict[str, Any]:
        session = self.session
        if session is None or not session.loop_active:
            return _rejected("No active automation to resume", "Start automation first.")
        if not self.control.paused:
            return _rejected("Automation is not paused", "Resume is only valid after a pause.")
        self.control.resume()
        session.status = SessionStatus.RUNNING
        logger.info("▶️  Automation resumed")
        return {"success": True, "message": "Automation resumed", "status": self.get_status()}

    def stop(self) -> Dict[str, Any]:
        session = self.session
        if session is None or not (session.is_live or session.status == SessionStatus.BROWSER_CLOSED):
            return _rejected("Runner not active", "There is no session to stop.")

        logger.info("🛑 Stopping session %s", session.session_id)
        session.status = SessionStatus.STOPPING
        self.control.request_stop()

        if self._loop_future is not None:
            try:
                self._loop_future.result(timeout=self.settings.stop_timeout_s)
            except FutureTimeout:
                logger.warning("Loop did not reach a checkpoint within %ss", self.settings.stop_timeout_s)
            except Exception as exc:
                logger.error("Automation loop ended with an error: %s", exc)

        artifacts: Dict[str, Optional[str]] = {"traceFile": None, "videoFile": None, "sessionDir": None}
        if self.browser is not None:
            try:
                artifacts = self._worker.submit(self.browser.finalize).result(timeout=self.settings.stop_timeout_s)
            except Exception as exc:
                logger.error("Artifact finalization failed: %s", exc)
                artifacts["sessionDir"] = str(session.run_dir.resolve())
            self.browser = None

        stats = session.stats.as_dict()
        session.status = SessionStatus.STOPPED
        self._teardown()
        logger.info("Session %s stopped: %s", session.session_id, stats)
        return {
            "success": True,
            "message": "Runner stopped",
            "sessionId": session.session_id,
            "stats": stats,
            "artifacts": artifacts,
        }

    def get_status(self) -> Dict[str, Any]:
        session = self.session
        if session is None:
            defaults = self.settings.default_automation()
            return {
                "isRunning": False,
                "loopActive": False,
                "isPaused": False,
                "status": SessionStatus.IDLE.value,
                "sessionId": None,
                "browserClosed": False,
                "stats": SessionStats().as_dict(),
                "thresholds": {"maxActions": defaults.max_actions},
                "timing": defaults.timing.as_dict(),
                "mode": defaults.mode,
            }
        return {
            "isRunning": session.is_live,
            "loopActive": session.loop_active,
            "isPaused": bool(self.control and self.control.paused),
            "status": session.status.value,
            "sessionId": session.session_id,
            "browserClosed": session.status == SessionStatus.BROWSER_CLOSED,
            "stats": session.stats.as_dict(),
            "thresholds": {"maxActions": session.automation.max_actions},
            "timing": session.automation.timing.as_dict(),
            "mode": session.automation.mode,
        }

    # worker-side helpers

    def _open_browser(self, session: Session) -> Optional[NavigationResult]:
        browser = self.launcher(
            Path(self.settings.user_data_dir),
            session.run_dir,
            headless=self.settings.headless,
        )
        if self.session is not session:
            browser.close()
            return None
        self.browser = browser
        navigator = self.navigator_factory(self.browser.driver(), session.run_dir)
        return navigator.navigate(self.settings.feed_url)

    def _close_browser(self) -> None:
        if self.browser is not None:
            self.browser.close()
            self.browser = None

    def _on_loop_finished(self, future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error("Automation loop crashed: %s", error)
        session = self.session
        if session is not None and session.status == SessionStatus.PAUSED:
            session.status = SessionStatus.RUNNING

    def _teardown(self) -> None:
        worker = self._worker
        if worker is not None:
            if self.browser is not None:
                try:
                    worker.submit(self._close_browser).result(timeout=self.settings.stop_timeout_s)
                except Exception as exc:
                    logger.error("Browser teardown failed: %s", exc)
            worker.shutdown(wait=False)
        self._worker = None
        self._loop_future = None
        self.browser = None
        self.session = None
        self.control = None
