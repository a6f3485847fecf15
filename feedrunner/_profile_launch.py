"""Launch the persistent Chromium profile a session runs in.

The profile directory keeps cookies and local storage between runs so a login
only has to be completed once. Each session records a video and a Playwright
trace into its run directory; :meth:`BrowserSession.finalize` closes both and
resolves their file locations.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from playwright.sync_api import BrowserContext, Error as PlaywrightError, Page, Playwright, sync_playwright

from feedrunner.logger import get_logger
from feedrunner.page import TRACE_OPTIONS, PlaywrightPage

logger = get_logger(__name__)

VIEWPORT = {"width": 1280, "height": 800}
CLIPBOARD_PERMISSIONS = ["clipboard-read", "clipboard-write"]


@dataclass
class BrowserSession:
    """A running Playwright controller plus the page the session drives."""

    playwright: Playwright
    context: BrowserContext
    page: Page
    run_dir: Path

    def driver(self) -> PlaywrightPage:
        return PlaywrightPage(self.page, self.context)

    def finalize(self) -> Dict[str, Optional[str]]:
        """Stop tracing, close the browser and return absolute artifact paths."""
        trace_path: Optional[str] = None
        video_path: Optional[str] = None

        target = self.run_dir / "trace.zip"
        try:
            self.context.tracing.stop(path=str(target))
            trace_path = str(target.resolve())
            logger.info("📦 Trace saved to %s", trace_path)
        except PlaywrightError as exc:
            logger.warning("Trace finalization failed: %s", exc)

        video = None
        try:
            video = self.page.video
        except PlaywrightError as exc:
            logger.warning("Video handle unavailable: %s", exc)

        shutdown(self.playwright, self.context)

        # The video file is only complete once the context has closed.
        if video is not None:
            try:
                video_path = str(Path(video.path()).resolve())
            except PlaywrightError as exc:
                logger.warning("Video path lookup failed: %s", exc)
        if video_path is None:
            recordings = sorted(self.run_dir.glob("*.webm"))
            if recordings:
                video_path = str(recordings[-1].resolve())
        if video_path:
            logger.info("🎞️  Video saved to %s", video_path)

        return {
            "traceFile": trace_path,
            "videoFile": video_path,
            "sessionDir": str(self.run_dir.resolve()),
        }

    def close(self) -> None:
        """Tear down without collecting artifacts (failed starts)."""
        try:
            self.context.tracing.stop()
        except PlaywrightError:
            logger.debug("Tracing already stopped")
        shutdown(self.playwright, self.context)


def launch_persistent(
    profile_dir: Path,
    run_dir: Path,
    *,
    headless: bool = False,
) -> BrowserSession:
    """Launch a persistent Chromium context backed by ``profile_dir``.

    Parameters
    ----------
    profile_dir:
        Directory that stores Chromium profile state (cookies, localStorage,
        session data, etc.). Created when missing so repeated runs reuse it.
    run_dir:
        Per-session directory receiving the video recording and traces.
    headless:
        Whether to launch Chromium headless. The default keeps the window
        visible so a login gate can be completed by hand.
    """

    profile_dir.mkdir(parents=True, exist_ok=True)
    run_dir.mkdir(parents=True, exist_ok=True)

    playwright = sync_playwright().start()
    try:
        context = playwright.chromium.launch_persistent_context(
            str(profile_dir),
            headless=headless,
            viewport=VIEWPORT,
            record_video_dir=str(run_dir),
            record_video_size=VIEWPORT,
            permissions=CLIPBOARD_PERMISSIONS,
        )
    except PlaywrightError:
        playwright.stop()
        raise

    context.tracing.start(**TRACE_OPTIONS)

    if context.pages:
        page = context.pages[0]
    else:
        page = context.new_page()

    logger.info("🚀 Browser launched (profile=%s, run_dir=%s, headless=%s)", profile_dir, run_dir, headless)
    return BrowserSession(playwright=playwright, context=context, page=page, run_dir=run_dir)


def shutdown(playwright: Optional[Playwright], context: Optional[BrowserContext]) -> None:
    """Gracefully dispose of Playwright resources used by ``launch_persistent``."""

    try:
        if context:
            context.close()
    except PlaywrightError as exc:
        logger.warning("Browser context close failed: %s", exc)
    finally:
        if playwright:
            playwright.stop()
