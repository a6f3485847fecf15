"""The cooperative automation loop.

The loop is an explicit state machine. Each state has a handler that performs
the side effects for that state and returns the next state; the branching
rules live in the small ``state_after_*`` functions so they can be tested
without a page.

``max_actions`` is a reporting threshold only. The loop keeps running past it
until a stop is requested or the browser goes away. This matches how the
runner has always behaved; operators may expect a cap, so the threshold is
logged each time it is crossed instead of being enforced.
"""

from __future__ import annotations

import random
from enum import Enum
from typing import Callable, Dict, Optional

from feedrunner.act import ActAndVerify, ActResult
from feedrunner.control import SessionControl
from feedrunner.decision import DecisionClient
from feedrunner.logger import get_logger
from feedrunner.models import Decision, Item, Session, SessionStats, SessionStatus
from feedrunner.page import PageDriver, SessionClosedError

logger = get_logger(__name__)

ADVANCE_WAIT_MS = 300


class LoopState(str, Enum):
    TABBING = "tabbing"
    ITEM_DETECTED = "item-detected"
    DEDUPLICATED_SKIP = "deduplicated-skip"
    DECIDING = "deciding"
    ACTING = "acting"
    COOLING_DOWN = "cooling-down"
    ADVANCING = "advancing-past-current-item"


def state_after_detection(already_seen: bool, optimize_mode: bool) -> LoopState:
    if already_seen:
        return LoopState.DEDUPLICATED_SKIP
    return LoopState.DECIDING if optimize_mode else LoopState.ACTING


def state_after_decision(decision: Decision) -> LoopState:
    return LoopState.ACTING if decision.act else LoopState.ADVANCING


def state_after_act(result: ActResult) -> LoopState:
    return LoopState.COOLING_DOWN if result.success else LoopState.ADVANCING


class AutomationLoop:
    def __init__(
        self,
        session: Session,
        page: PageDriver,
        control: SessionControl,
        decision_client: DecisionClient,
        actor: ActAndVerify,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.session = session
        self.page = page
        self.control = control
        self.decision_client = decision_client
        self.actor = actor
        self.rng = rng
        self.current_item: Optional[Item] = None
        self.state = LoopState.TABBING
        self._handlers: Dict[LoopState, Callable[[], LoopState]] = {
            LoopState.TABBING: self._tabbing,
            LoopState.ITEM_DETECTED: self._item_detected,
            LoopState.DEDUPLICATED_SKIP: self._deduplicated_skip,
            LoopState.DECIDING: self._deciding,
            LoopState.ACTING: self._acting,
            LoopState.COOLING_DOWN: self._cooling_down,
            LoopState.ADVANCING: self._advancing,
        }

    @property
    def stats(self) -> SessionStats:
        return self.session.stats

    def run(self) -> SessionStats:
        config = self.session.automation
        logger.info(
            "⌨️  Automation loop started (mode=%s, timing=%s, maxActions=%s reporting only)",
            config.mode,
            config.timing.as_dict(),
            config.max_actions,
        )
        self.session.loop_active = True
        self.state = LoopState.TABBING
        try:
            while not self.control.stop_requested:
                if not self.control.wait_while_paused(on_paused=lambda: logger.info("⏸️  Loop paused")):
                    break
                try:
                    self.state = self._handlers[self.state]()
                except SessionClosedError as exc:
                    logger.error("Browser session closed, ending loop: %s", exc)
                    self.session.status = SessionStatus.BROWSER_CLOSED
                    break
                except Exception as exc:
                    self.stats.errors += 1
                    logger.exception("Loop iteration failed in state %s: %s", self.state.value, exc)
                    self.current_item = None
                    self.state = LoopState.TABBING
                    self.control.wait(self._tab_delay())
        finally:
            self.session.loop_active = False
            logger.info("🛑 Automation loop ended: %s", self.stats.as_dict())
        return self.stats

    def _tab_delay(self) -> int:
        return self.session.automation.timing.tab_delay.draw(self.rng)

    def _tabbing(self) -> LoopState:
        self.page.press("Tab")
        if not self.control.wait(self._tab_delay()):
            return LoopState.TABBING
        item = self.page.read_item()
        if item is None:
            return LoopState.TABBING
        self.current_item = item
        return LoopState.ITEM_DETECTED

    def _item_detected(self) -> LoopState:
        item = self.current_item
        first_visit = self.session.mark_seen(item.item_id)
        if first_visit:
            self.stats.items_processed += 1
            logger.info("📄 Item detected: %s (author=%r)", item.item_id, item.author_label)
        return state_after_detection(not first_visit, self.session.automation.optimize_mode)

    def _deduplicated_skip(self) -> LoopState:
        logger.debug("Item %s already seen, advancing", self.current_item.item_id)
        return LoopState.ADVANCING

    def _deciding(self) -> LoopState:
        decision = self.decision_client.decide(self.current_item)
        if decision.fail_open:
            logger.info("Decision unavailable for item=%s, acting anyway", self.current_item.item_id)
        if not self.control.wait(self._tab_delay()):
            return LoopState.ADVANCING
        if not decision.act:
            self.stats.items_skipped += 1
            logger.info("⏭️  Decision says skip item=%s", self.current_item.item_id)
        return state_after_decision(decision)

    def _acting(self) -> LoopState:
        result = self.actor.perform(self.current_item)
        if result.success:
            self.stats.items_acted_on += 1
            threshold = self.session.automation.max_actions
            logger.info("✅ Acted on item=%s (%s/%s)", self.current_item.item_id, self.stats.items_acted_on, threshold)
            if self.stats.items_acted_on == threshold:
                logger.warning("Reached maxActions=%s; continuing until stopped", threshold)
        else:
            logger.warning("Act failed for item=%s: %s", self.current_item.item_id, result.reason)
        return state_after_act(result)

    def _cooling_down(self) -> LoopState:
        delay_ms = self.session.automation.timing.cool_down.draw(self.rng)
        logger.info("🧊 Cooling down for %sms", delay_ms)
        self.control.wait(delay_ms)
        return LoopState.ADVANCING

    def _advancing(self) -> LoopState:
        current_id = self.current_item.item_id if self.current_item else None
        while not self.control.stop_requested:
            self.page.press("Tab")
            if not self.control.wait(ADVANCE_WAIT_MS):
                break
            item = self.page.read_item()
            if item is None:
                self.current_item = None
                return LoopState.TABBING
            if item.item_id != current_id:
                self.current_item = item
                return LoopState.ITEM_DETECTED
        return LoopState.TABBING
