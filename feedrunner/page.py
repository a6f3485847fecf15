"""Page interaction layer.

The loop, the act sequence and the navigation state machine only talk to the
two small interfaces below. :class:`PlaywrightPage` implements both on top of
a sync Playwright page; tests use in-memory fakes.
"""

from __future__ import annotations

import re
import sys
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from playwright.sync_api import BrowserContext, Error as PlaywrightError, Page
from playwright.sync_api import TimeoutError as PWTimeoutError

from feedrunner.logger import get_logger
from feedrunner.models import Item, pseudo_item_id

logger = get_logger(__name__)

NAVIGATION_TIMEOUT_MS = 90_000
LOGIN_SETTLE_MS = 2_000
CONSENT_SETTLE_MS = 1_000
TYPE_DELAY_MS = 5

TRACE_OPTIONS: Dict[str, bool] = {"screenshots": True, "snapshots": True, "sources": True}

# Probed in order; localized variants included.
CONSENT_BUTTON_TEXTS = [
    "Accept",
    "Agree",
    "Allow all",
    "Accept all",
    "Accept cookies",
    "Aceptar",
    "Accepter",
    "Akzeptieren",
    "OK",
    "Got it",
    "Dismiss",
]
CONSENT_ARIA_SELECTOR = 'button[aria-label*="cookie" i], button[aria-label*="consent" i]'

LOGIN_FORM_SELECTORS = [
    "input#username",
    "input#session_key",
    'input[name="session_key"]',
    'form[action*="checkpoint"]',
    'form[action*="login"]',
    ".login-form",
]
LOGIN_URL_PATTERNS = ["/login", "/uas/login", "/checkpoint"]

# Any of these structural landmarks means the feed rendered.
READINESS_SELECTORS = [
    'main[role="main"]',
    '[data-view-name="feed"]',
    ".scaffold-layout__main",
    '[aria-label*="reaction" i]',
    "div.feed-shared-update-v2",
    "nav.global-nav",
    "header.global-nav__content",
]

FEED_SELECTORS: Dict[str, str] = {
    "item": "div[data-id], div[data-urn]",
    "itemMarker": ".feed-shared-update-v2",
    "nested": ".comments-comment-entity, .comments-thread-entity, .comments-comment-list",
    "content": ".feed-shared-update-v2__description, .feed-shared-text, .update-components-update-v2__commentary",
    "author": ".update-components-actor__name, .feed-shared-actor__name",
    "permalink": 'a[href*="/posts/"], a[href*="/feed/update/"]',
    "actionBar": ".feed-shared-social-action-bar",
    "nestedBar": ".comments-comment-social-bar--cr, .comments-comment-social-bar",
    "labelText": "span.react-button__text, span.artdeco-button__text",
    "editor": '.ql-editor[contenteditable="true"]',
    "editorContainer": ".comments-comment-box, .comments-comment-box-comment, .comment-box",
}

_PERMALINK_ID = re.compile(r"urn:li:activity:(\d+)|/posts/([^/?]+)|update:urn:li:share:(\d+)")

_CLOSED_MARKERS = (
    "target page",
    "target closed",
    "context closed",
    "browser closed",
    "has been closed",
    "connection closed",
)


class SessionClosedError(RuntimeError):
    """The browser, context or page went away; the loop cannot continue."""


class AuthenticationTimeout(RuntimeError):
    """The user did not leave the login gate within the allowed time."""


def is_closed_error(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _CLOSED_MARKERS)


@dataclass
class FocusedElement:
    """Snapshot of the focused control (or the button wrapping it)."""

    tag: str = ""
    aria_label: str = ""
    text: str = ""
    label_text: str = ""
    classes: List[str] = field(default_factory=list)
    icons: List[str] = field(default_factory=list)
    item_id: Optional[str] = None
    in_action_bar: bool = False
    in_nested_section: bool = False
    is_editor: bool = False

    @classmethod
    def from_js(cls, raw: Dict[str, Any]) -> "FocusedElement":
        return cls(
            tag=str(raw.get("tag") or "").lower(),
            aria_label=str(raw.get("ariaLabel") or ""),
            text=str(raw.get("text") or ""),
            label_text=str(raw.get("labelText") or ""),
            classes=[str(name) for name in raw.get("classes") or []],
            icons=[str(name) for name in raw.get("icons") or [] if name],
            item_id=raw.get("itemId") or None,
            in_action_bar=bool(raw.get("inActionBar")),
            in_nested_section=bool(raw.get("inNestedSection")),
            is_editor=bool(raw.get("isEditor")),
        )


class PageDriver(ABC):
    """Keyboard-level commands the automation loop and act sequence rely on."""

    @abstractmethod
    def press(self, key: str) -> None:
        """Send one key press to the focused element."""

    @abstractmethod
    def read_focused(self) -> Optional[FocusedElement]:
        """Describe the focused element, or None when nothing is focused."""

    @abstractmethod
    def read_item(self) -> Optional[Item]:
        """Return the top-level item containing focus, or None."""

    @abstractmethod
    def focus_editor(self) -> bool:
        """Move focus into the open editable region; False if none is open."""

    @abstractmethod
    def read_editor_text(self) -> str:
        """Return the current text of the open editable region."""

    @abstractmethod
    def clear_editor(self) -> None:
        """Remove any content from the open editable region."""

    @abstractmethod
    def paste_text(self, text: str) -> None:
        """Put ``text`` on the clipboard and send the paste shortcut."""

    @abstractmethod
    def insert_text(self, text: str) -> bool:
        """Insert ``text`` programmatically at the caret; False if unsupported."""

    @abstractmethod
    def type_text(self, text: str) -> None:
        """Type ``text`` one character at a time."""


class NavigationPage(ABC):
    """Page-level commands used while bringing a session to a ready state."""

    @abstractmethod
    def goto(self, url: str) -> None:
        ...

    @abstractmethod
    def dismiss_consent(self) -> Optional[str]:
        """Click a consent/cookie button if one is showing; return what was clicked."""

    @abstractmethod
    def login_required(self) -> bool:
        ...

    @abstractmethod
    def wait_for_login(self, timeout_ms: int) -> None:
        """Block until the URL leaves the login gate; raise AuthenticationTimeout."""

    @abstractmethod
    def wait_for_ready(self, timeout_ms: int) -> Optional[str]:
        """Return the readiness landmark that appeared first, or None."""

    @abstractmethod
    def screenshot(self, path: Path) -> str:
        ...

    @abstractmethod
    def save_trace(self, path: Path) -> str:
        """Write the trace recorded so far to ``path`` and start a fresh one."""


def extract_permalink_id(href: Optional[str]) -> Optional[str]:
    if not href:
        return None
    match = _PERMALINK_ID.search(href)
    if not match:
        return None
    return next((group for group in match.groups() if group), None)


_READ_ITEM_JS = """
(sel) => {
  const focused = document.activeElement;
  if (!focused) return null;
  const box = focused.closest(sel.item);
  if (!box) return null;
  if (box.closest(sel.nested)) return null;
  const isMain = box.matches(sel.itemMarker) || box.querySelector(sel.itemMarker);
  if (!isMain) return null;
  const contentNode = box.querySelector(sel.content);
  const authorNode = box.querySelector(sel.author);
  const link = box.querySelector(sel.permalink);
  return {
    id: box.getAttribute('data-urn') || box.getAttribute('data-id') || null,
    href: link ? link.getAttribute('href') : null,
    content: contentNode ? (contentNode.innerText || '').trim() : '',
    author: authorNode ? (authorNode.innerText || '').trim() : '',
    markup: box.outerHTML,
  };
}
"""

_READ_FOCUSED_JS = """
(sel) => {
  const active = document.activeElement;
  if (!active || active === document.body) return null;
  const button = active.tagName === 'BUTTON' ? active : active.closest('button');
  const el = button || active;
  const box = el.closest(sel.item);
  const labelNode = el.querySelector(sel.labelText);
  return {
    tag: el.tagName,
    ariaLabel: el.getAttribute('aria-label') || '',
    text: (el.innerText || el.textContent || '').trim().slice(0, 200),
    labelText: labelNode ? (labelNode.textContent || '').trim() : '',
    classes: Array.from(el.classList),
    icons: Array.from(el.querySelectorAll('svg[data-test-icon]')).map((svg) => svg.getAttribute('data-test-icon')),
    itemId: box ? (box.getAttribute('data-urn') || box.getAttribute('data-id')) : null,
    inActionBar: !!el.closest(sel.actionBar),
    inNestedSection: !!el.closest(sel.nestedBar),
    isEditor: active.isContentEditable === true,
  };
}
"""

# Prefer the editor holding focus, then the one inside a focused comment box.
_FIND_EDITOR_JS = """
(sel) => {
  const active = document.activeElement;
  if (active && active.matches && active.matches(sel.editor)) return active;
  if (active) {
    const box = active.closest(sel.editorContainer);
    const inner = box ? box.querySelector(sel.editor) : null;
    if (inner) return inner;
  }
  for (const candidate of document.querySelectorAll(sel.editor)) {
    const box = candidate.closest(sel.editorContainer);
    if (box && box.matches(':focus-within')) return candidate;
  }
  return document.querySelector(sel.editor);
}
"""

_FOCUS_EDITOR_JS = f"""
(sel) => {{
  const editor = ({_FIND_EDITOR_JS})(sel);
  if (!editor) return false;
  editor.focus();
  return true;
}}
"""

_EDITOR_TEXT_JS = f"""
(sel) => {{
  const editor = ({_FIND_EDITOR_JS})(sel);
  return editor ? (editor.innerText || editor.textContent || '') : '';
}}
"""

_INSERT_TEXT_JS = f"""
(args) => {{
  const editor = ({_FIND_EDITOR_JS})(args.sel);
  if (!editor) return false;
  editor.focus();
  try {{
    return document.execCommand('insertText', false, args.text);
  }} catch (e) {{
    return false;
  }}
}}
"""


@contextmanager
def _closed_guard() -> Iterator[None]:
    try:
        yield
    except PlaywrightError as exc:
        if is_closed_error(exc):
            raise SessionClosedError(str(exc)) from exc
        raise


class PlaywrightPage(PageDriver, NavigationPage):
    def __init__(self, page: Page, context: BrowserContext, selectors: Optional[Dict[str, str]] = None) -> None:
        self.page = page
        self.context = context
        self.selectors = dict(FEED_SELECTORS, **(selectors or {}))
        self.paste_shortcut = "Meta+KeyV" if sys.platform == "darwin" else "Control+KeyV"
        self.select_all_shortcut = "Meta+KeyA" if sys.platform == "darwin" else "Control+KeyA"

    # keyboard-level commands

    def press(self, key: str) -> None:
        with _closed_guard():
            self.page.keyboard.press(key)

    def read_focused(self) -> Optional[FocusedElement]:
        with _closed_guard():
            raw = self.page.evaluate(_READ_FOCUSED_JS, self.selectors)
        return FocusedElement.from_js(raw) if raw else None

    def read_item(self) -> Optional[Item]:
        with _closed_guard():
            raw = self.page.evaluate(_READ_ITEM_JS, self.selectors)
        if not raw:
            return None
        item_id = raw.get("id") or extract_permalink_id(raw.get("href")) or pseudo_item_id()
        return Item(
            item_id=item_id,
            content=raw.get("content") or "",
            author_label=raw.get("author") or "",
            raw_markup=raw.get("markup") or "",
        )

    def focus_editor(self) -> bool:
        with _closed_guard():
            return bool(self.page.evaluate(_FOCUS_EDITOR_JS, self.selectors))

    def read_editor_text(self) -> str:
        with _closed_guard():
            return str(self.page.evaluate(_EDITOR_TEXT_JS, self.selectors) or "")

    def clear_editor(self) -> None:
        with _closed_guard():
            if self.page.evaluate(_FOCUS_EDITOR_JS, self.selectors):
                self.page.keyboard.press(self.select_all_shortcut)
                self.page.keyboard.press("Backspace")

    def paste_text(self, text: str) -> None:
        with _closed_guard():
            self.page.evaluate("(t) => navigator.clipboard.writeText(t)", text)
            self.page.keyboard.press(self.paste_shortcut)

    def insert_text(self, text: str) -> bool:
        with _closed_guard():
            return bool(self.page.evaluate(_INSERT_TEXT_JS, {"sel": self.selectors, "text": text}))

    def type_text(self, text: str) -> None:
        with _closed_guard():
            self.page.keyboard.type(text, delay=TYPE_DELAY_MS)

    # navigation commands

    def goto(self, url: str) -> None:
        # domcontentloaded only: the feed long-polls and never goes network-idle.
        with _closed_guard():
            self.page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)

    def dismiss_consent(self) -> Optional[str]:
        try:
            for text in CONSENT_BUTTON_TEXTS:
                button = self.page.locator(f'button:has-text("{text}")').first
                if button.is_visible():
                    logger.info("Dismissing consent overlay via '%s'", text)
                    button.click(timeout=5000)
                    self.page.wait_for_timeout(CONSENT_SETTLE_MS)
                    return text
            aria_button = self.page.locator(CONSENT_ARIA_SELECTOR).first
            if aria_button.is_visible():
                logger.info("Dismissing consent overlay via aria-label")
                aria_button.click(timeout=5000)
                self.page.wait_for_timeout(CONSENT_SETTLE_MS)
                return "aria-label"
        except PlaywrightError as exc:
            if is_closed_error(exc):
                raise SessionClosedError(str(exc)) from exc
            logger.info("Consent dismissal skipped: %s", exc)
        return None

    def login_required(self) -> bool:
        try:
            for selector in LOGIN_FORM_SELECTORS:
                if self.page.locator(selector).first.is_visible():
                    logger.info("Login gate detected via selector %s", selector)
                    return True
            current_url = self.page.url
        except PlaywrightError as exc:
            if is_closed_error(exc):
                raise SessionClosedError(str(exc)) from exc
            logger.warning("Login check failed: %s", exc)
            return False
        if any(pattern in current_url for pattern in LOGIN_URL_PATTERNS):
            logger.info("Login gate detected via URL %s", current_url)
            return True
        return False

    def wait_for_login(self, timeout_ms: int) -> None:
        try:
            self.page.wait_for_function(
                "(patterns) => !patterns.some((p) => window.location.href.includes(p))",
                arg=LOGIN_URL_PATTERNS,
                timeout=timeout_ms,
            )
            self.page.wait_for_load_state("domcontentloaded", timeout=30_000)
            self.page.wait_for_timeout(LOGIN_SETTLE_MS)
        except PWTimeoutError as exc:
            raise AuthenticationTimeout(
                f"User did not complete login within {timeout_ms // 60_000} minutes"
            ) from exc
        except PlaywrightError as exc:
            if is_closed_error(exc):
                raise SessionClosedError(str(exc)) from exc
            raise

    def wait_for_ready(self, timeout_ms: int) -> Optional[str]:
        union = ", ".join(READINESS_SELECTORS)
        try:
            self.page.wait_for_selector(union, state="visible", timeout=timeout_ms)
        except PWTimeoutError:
            return None
        except PlaywrightError as exc:
            if is_closed_error(exc):
                raise SessionClosedError(str(exc)) from exc
            raise
        for selector in READINESS_SELECTORS:
            try:
                if self.page.locator(selector).first.is_visible():
                    return selector
            except PlaywrightError:
                continue
        return union

    def screenshot(self, path: Path) -> str:
        path.parent.mkdir(parents=True, exist_ok=True)
        with _closed_guard():
            self.page.screenshot(path=str(path), full_page=False)
        return str(path.resolve())

    def save_trace(self, path: Path) -> str:
        path.parent.mkdir(parents=True, exist_ok=True)
        with _closed_guard():
            self.context.tracing.stop(path=str(path))
            self.context.tracing.start(**TRACE_OPTIONS)
        return str(path.resolve())
