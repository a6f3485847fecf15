"""Keyboard-driven act-and-verify sequence for one feed item.

The sequence only ever presses keys and reads the focused element: find the
item's primary toggle and activate it, step to the secondary control, open
its editor, insert generated text (verifying after every insertion layer),
then step to the submit control. Page-level misses come back as a failed
:class:`ActResult`; only a closed session raises.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from feedrunner.control import SessionControl
from feedrunner.generation import ContentGenerationClient
from feedrunner.logger import get_logger
from feedrunner.models import Item, TimingConfig
from feedrunner.page import FocusedElement, PageDriver, SessionClosedError

logger = get_logger(__name__)

MAX_TOGGLE_PROBES = 100
SECONDARY_FALLBACK_PROBES = 5
TABS_TO_SECONDARY = 2
TABS_TO_SUBMIT = 3

PROBE_WAIT_MS = 200
TOGGLE_SETTLE_MS = 1_000
STEP_WAIT_MS = 500
FALLBACK_WAIT_MS = 300
EDITOR_OPEN_MS = 2_000
INSERT_SETTLE_MS = 300

REASON_STOPPED = "stopped"
REASON_TOGGLE_NOT_FOUND = "toggle-not-found"
REASON_SECONDARY_NOT_FOUND = "secondary-not-found"
REASON_EDITOR_UNAVAILABLE = "editor-unavailable"
REASON_ITEM_MISMATCH = "item-mismatch"
REASON_GENERATION_FAILED = "generation-failed"
REASON_VERIFICATION_FAILURE = "verification-failure"


@dataclass(frozen=True)
class ControlCues:
    """Allow-list describing one control in an item's action bar."""

    classes: Tuple[str, ...]
    icons: Tuple[str, ...]
    labels: Tuple[str, ...]
    aria_labels: Tuple[str, ...]
    excluded_classes: Tuple[str, ...] = ()
    excluded_aria_fragments: Tuple[str, ...] = ()


PRIMARY_TOGGLE = ControlCues(
    classes=("react-button__trigger",),
    icons=("thumbs-up-outline-small", "thumbs-up-outline-medium"),
    labels=("Like",),
    aria_labels=("React Like",),
    excluded_classes=("social-details-social-counts__count-value", "reactions-menu__trigger"),
    excluded_aria_fragments=("reactions",),
)

SECONDARY_CONTROL = ControlCues(
    classes=("comment-button",),
    icons=("comment-small", "comment-medium"),
    labels=("Comment",),
    aria_labels=("Comment",),
)


def matches_cues(element: FocusedElement, cues: ControlCues) -> bool:
    if element.tag != "button":
        return False
    if not any(name in element.classes for name in cues.classes):
        return False
    has_icon = any(icon in element.icons for icon in cues.icons)
    has_label = element.label_text in cues.labels or element.text in cues.labels
    if not (has_icon or has_label):
        return False
    if not element.in_action_bar or element.in_nested_section:
        return False
    if element.aria_label not in cues.aria_labels:
        return False
    if any(name in element.classes for name in cues.excluded_classes):
        return False
    aria = element.aria_label.lower()
    return not any(fragment in aria for fragment in cues.excluded_aria_fragments)


def owned_by(element: FocusedElement, item_id: str) -> bool:
    # Controls outside any item boundary carry no id and cannot be checked.
    return element.item_id is None or element.item_id == item_id


def is_primary_toggle(element: Optional[FocusedElement], item_id: str) -> bool:
    return element is not None and matches_cues(element, PRIMARY_TOGGLE) and owned_by(element, item_id)


def is_secondary_control(element: Optional[FocusedElement], item_id: str) -> bool:
    return element is not None and matches_cues(element, SECONDARY_CONTROL) and owned_by(element, item_id)


def normalize_text(text: str) -> str:
    return " ".join((text or "").split())


def insertion_verified(expected: str, actual: str) -> bool:
    wanted = normalize_text(expected)
    return bool(wanted) and wanted in normalize_text(actual)


@dataclass
class ActResult:
    success: bool
    reason: Optional[str] = None
    method: Optional[str] = None
    text: Optional[str] = None


class ActAndVerify:
    def __init__(
        self,
        page: PageDriver,
        control: SessionControl,
        generation: ContentGenerationClient,
        timing: TimingConfig,
        *,
        rng: Optional[random.Random] = None,
        max_toggle_probes: int = MAX_TOGGLE_PROBES,
        fallback_probes: int = SECONDARY_FALLBACK_PROBES,
    ) -> None:
        self.page = page
        self.control = control
        self.generation = generation
        self.timing = timing
        self.rng = rng
        self.max_toggle_probes = max_toggle_probes
        self.fallback_probes = fallback_probes

    def perform(self, item: Item) -> ActResult:
        logger.info("🎯 Acting on item=%s author=%r", item.item_id, item.author_label)

        result = self._activate_toggle(item)
        if result is not None:
            return result

        result = self._reach_secondary(item)
        if result is not None:
            return result

        self.page.press("Enter")
        if not self.control.wait(EDITOR_OPEN_MS):
            return ActResult(False, REASON_STOPPED)
        if not self.page.focus_editor():
            logger.warning("Editor did not open for item=%s", item.item_id)
            return ActResult(False, REASON_EDITOR_UNAVAILABLE)
        focused = self.page.read_focused()
        if focused is not None and not owned_by(focused, item.item_id):
            logger.warning("Editor belongs to item=%s, expected %s; skipping", focused.item_id, item.item_id)
            return ActResult(False, REASON_ITEM_MISMATCH)

        text = self.generation.generate(item)
        if not text:
            return ActResult(False, REASON_GENERATION_FAILED)

        method = self._insert(text)
        if method is None:
            if self.control.stop_requested:
                return ActResult(False, REASON_STOPPED, text=text)
            logger.error("Could not verify inserted text for item=%s after all layers", item.item_id)
            return ActResult(False, REASON_VERIFICATION_FAILURE, text=text)

        for _ in range(TABS_TO_SUBMIT):
            self.page.press("Tab")
            if not self.control.wait(STEP_WAIT_MS):
                return ActResult(False, REASON_STOPPED, method=method, text=text)
        self.page.press("Enter")
        logger.info("📨 Submitted text for item=%s via %s", item.item_id, method)
        self.control.wait(self.timing.editor_delay.draw(self.rng))
        return ActResult(True, method=method, text=text)

    def _activate_toggle(self, item: Item) -> Optional[ActResult]:
        for probe in range(self.max_toggle_probes):
            if self.control.stop_requested:
                return ActResult(False, REASON_STOPPED)
            focused = self.page.read_focused()
            if is_primary_toggle(focused, item.item_id):
                logger.info("👍 Primary toggle found after %s probes", probe)
                self.page.press("Enter")
                if not self.control.wait(TOGGLE_SETTLE_MS):
                    return ActResult(False, REASON_STOPPED)
                return None
            if focused is not None and matches_cues(focused, PRIMARY_TOGGLE):
                logger.warning(
                    "Reached toggle of item=%s while looking for item=%s; skipping",
                    focused.item_id,
                    item.item_id,
                )
                return ActResult(False, REASON_ITEM_MISMATCH)
            self.page.press("Tab")
            if not self.control.wait(PROBE_WAIT_MS):
                return ActResult(False, REASON_STOPPED)
        logger.warning("Primary toggle not found within %s probes (item=%s)", self.max_toggle_probes, item.item_id)
        return ActResult(False, REASON_TOGGLE_NOT_FOUND)

    def _reach_secondary(self, item: Item) -> Optional[ActResult]:
        for _ in range(TABS_TO_SECONDARY):
            self.page.press("Tab")
            if not self.control.wait(STEP_WAIT_MS):
                return ActResult(False, REASON_STOPPED)
        if is_secondary_control(self.page.read_focused(), item.item_id):
            return None

        logger.info("Secondary control not where expected, searching up to %s more stops", self.fallback_probes)
        for _ in range(self.fallback_probes):
            self.page.press("Tab")
            if not self.control.wait(FALLBACK_WAIT_MS):
                return ActResult(False, REASON_STOPPED)
            if is_secondary_control(self.page.read_focused(), item.item_id):
                return None
        logger.warning("Secondary control not found for item=%s", item.item_id)
        return ActResult(False, REASON_SECONDARY_NOT_FOUND)

    def _insertion_layers(self) -> List[Tuple[str, Callable[[str], object]]]:
        return [
            ("clipboard-paste", self.page.paste_text),
            ("insert-text", self.page.insert_text),
            ("typing", self.page.type_text),
        ]

    def _insert(self, text: str) -> Optional[str]:
        for index, (name, insert) in enumerate(self._insertion_layers()):
            if index:
                self.page.clear_editor()
            try:
                insert(text)
            except SessionClosedError:
                raise
            except Exception as exc:
                logger.warning("Insertion via %s raised: %s", name, exc)
                continue
            if not self.control.wait(INSERT_SETTLE_MS):
                return None
            current = self.page.read_editor_text()
            if insertion_verified(text, current):
                logger.info("✅ Text inserted via %s (%s chars)", name, len(text))
                return name
            logger.info("Insertion via %s not verified (editor has %s chars)", name, len(current))
        return None
