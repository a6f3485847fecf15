"""Shared fakes: a controllable clock and an in-memory feed page.

``FeedPage`` models the page as an ordered list of focus stops. Tab moves to
the next stop; Enter on an item's secondary control opens an editor (editor,
two toolbar buttons, submit) right after it; Enter on submit records the
editor text and closes the editor again.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from feedrunner.control import SessionControl
from feedrunner.models import Item, TimingConfig, TimingRange
from feedrunner.page import FocusedElement, PageDriver


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self._scheduled: List[tuple] = []

    def __call__(self) -> float:
        return self.now

    def at(self, seconds: float, callback: Callable[[], None]) -> None:
        self._scheduled.append((seconds, callback))

    def sleep(self, seconds: float) -> None:
        self.now += seconds
        due = [entry for entry in self._scheduled if entry[0] <= self.now + 1e-9]
        for entry in due:
            self._scheduled.remove(entry)
            entry[1]()


@dataclass
class Stop:
    kind: str
    element: FocusedElement
    item_id: Optional[str] = None


def body_stop(item_id: str) -> Stop:
    return Stop("body", FocusedElement(tag="a", text="See more", item_id=item_id), item_id)


def toggle_stop(item_id: str, /, **overrides) -> Stop:
    element = FocusedElement(
        tag="button",
        aria_label="React Like",
        label_text="Like",
        classes=["artdeco-button", "react-button__trigger"],
        icons=["thumbs-up-outline-small"],
        item_id=item_id,
        in_action_bar=True,
    )
    for name, value in overrides.items():
        setattr(element, name, value)
    return Stop("toggle", element, item_id)


def menu_stop(item_id: str) -> Stop:
    element = FocusedElement(
        tag="button",
        aria_label="Open reactions menu",
        classes=["reactions-menu__trigger"],
        item_id=item_id,
        in_action_bar=True,
    )
    return Stop("menu", element, item_id)


def secondary_stop(item_id: str) -> Stop:
    element = FocusedElement(
        tag="button",
        aria_label="Comment",
        text="Comment",
        classes=["artdeco-button", "comment-button"],
        icons=["comment-small"],
        item_id=item_id,
        in_action_bar=True,
    )
    return Stop("secondary", element, item_id)


def share_stop(item_id: str) -> Stop:
    element = FocusedElement(tag="button", aria_label="Repost", text="Repost", item_id=item_id, in_action_bar=True)
    return Stop("share", element, item_id)


def gap_stop() -> Stop:
    return Stop("gap", FocusedElement(tag="a", text="Home"))


def item_stops(item_id: str) -> List[Stop]:
    return [body_stop(item_id), toggle_stop(item_id), menu_stop(item_id), secondary_stop(item_id), share_stop(item_id)]


class FeedPage(PageDriver):
    def __init__(
        self,
        stops: List[Stop],
        *,
        paste_works: bool = True,
        insert_works: bool = True,
        on_end: Optional[Callable[[], None]] = None,
    ) -> None:
        self.stops = list(stops)
        self.index = -1
        self.paste_works = paste_works
        self.insert_works = insert_works
        self.on_end = on_end
        self.on_tab: Optional[Callable[[int], None]] = None
        self.editor_text = ""
        self.tab_presses = 0
        self.insertion_calls: List[str] = []
        self.toggled: List[str] = []
        self.submitted: Dict[str, str] = {}

    @property
    def current(self) -> Optional[Stop]:
        if 0 <= self.index < len(self.stops):
            return self.stops[self.index]
        return None

    def press(self, key: str) -> None:
        if key == "Tab":
            self.tab_presses += 1
            if self.on_tab:
                self.on_tab(self.tab_presses)
            if self.index + 1 < len(self.stops):
                self.index += 1
            elif self.on_end:
                self.on_end()
        elif key == "Enter":
            self._activate()

    def _activate(self) -> None:
        stop = self.current
        if stop is None:
            return
        if stop.kind == "toggle":
            self.toggled.append(stop.item_id)
        elif stop.kind == "secondary":
            item_id = stop.item_id
            editor = Stop("editor", FocusedElement(tag="div", is_editor=True, item_id=item_id), item_id)
            tool = Stop("tool", FocusedElement(tag="button", aria_label="Add a photo", item_id=item_id), item_id)
            submit = Stop(
                "submit",
                FocusedElement(tag="button", text="Post", classes=["comments-comment-box__submit-button"], item_id=item_id),
                item_id,
            )
            self.stops[self.index + 1:self.index + 1] = [editor, tool, tool, submit]
        elif stop.kind == "submit":
            self.submitted[stop.item_id] = self.editor_text
            self.editor_text = ""
            start = next(i for i, s in enumerate(self.stops) if s.kind == "editor")
            del self.stops[start:start + 4]
            self.index = start - 1

    def read_focused(self) -> Optional[FocusedElement]:
        stop = self.current
        return stop.element if stop else None

    def read_item(self) -> Optional[Item]:
        stop = self.current
        if stop is None or stop.item_id is None:
            return None
        return Item(
            item_id=stop.item_id,
            content=f"post {stop.item_id}",
            author_label=f"author {stop.item_id}",
            raw_markup=f'<div data-id="{stop.item_id}">post {stop.item_id}</div>',
        )

    def focus_editor(self) -> bool:
        for position, stop in enumerate(self.stops):
            if stop.kind == "editor":
                self.index = position
                return True
        return False

    def read_editor_text(self) -> str:
        return self.editor_text

    def clear_editor(self) -> None:
        self.editor_text = ""

    def paste_text(self, text: str) -> None:
        self.insertion_calls.append("paste")
        if self.paste_works:
            self.editor_text += text

    def insert_text(self, text: str) -> bool:
        self.insertion_calls.append("insert")
        if self.insert_works:
            self.editor_text += text
        return self.insert_works

    def type_text(self, text: str) -> None:
        self.insertion_calls.append("type")
        self.editor_text += text


class StubGeneration:
    def __init__(self, text: Optional[str] = "OK") -> None:
        self.text = text
        self.requests: List[str] = []

    def generate(self, item: Item, action_type: str = "comment") -> Optional[str]:
        self.requests.append(item.item_id)
        return self.text


def zero_timing() -> TimingConfig:
    return TimingConfig(TimingRange(0, 0), TimingRange(0, 0), TimingRange(0, 0))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def control(clock: FakeClock) -> SessionControl:
    return SessionControl(clock=clock, sleep=clock.sleep)


@pytest.fixture
def run_dir(tmp_path: Path) -> Path:
    path = tmp_path / "runs" / "session-1"
    path.mkdir(parents=True)
    return path
