from __future__ import annotations

from feedrunner.act import (
    REASON_GENERATION_FAILED,
    REASON_ITEM_MISMATCH,
    REASON_SECONDARY_NOT_FOUND,
    REASON_TOGGLE_NOT_FOUND,
    REASON_VERIFICATION_FAILURE,
    ActAndVerify,
    insertion_verified,
    is_primary_toggle,
    is_secondary_control,
    normalize_text,
)
from feedrunner.models import Item

from conftest import (
    FeedPage,
    StubGeneration,
    body_stop,
    gap_stop,
    item_stops,
    secondary_stop,
    share_stop,
    toggle_stop,
    zero_timing,
)


def item(item_id: str = "A") -> Item:
    return Item(item_id=item_id, content=f"post {item_id}", author_label="Ada")


def actor_for(page, control, text="OK") -> ActAndVerify:
    return ActAndVerify(page, control, StubGeneration(text), zero_timing())


def focused_on_body(page: FeedPage) -> FeedPage:
    page.index = 0
    return page


def test_primary_toggle_predicate():
    assert is_primary_toggle(toggle_stop("A").element, "A")
    assert not is_primary_toggle(toggle_stop("B").element, "A")
    assert not is_primary_toggle(toggle_stop("A", in_nested_section=True).element, "A")
    assert not is_primary_toggle(toggle_stop("A", in_action_bar=False).element, "A")
    assert not is_primary_toggle(toggle_stop("A", aria_label="React Like to Ada's comment").element, "A")
    assert not is_primary_toggle(
        toggle_stop("A", classes=["react-button__trigger", "reactions-menu__trigger"]).element, "A"
    )
    assert not is_primary_toggle(toggle_stop("A", icons=[], label_text="").element, "A")
    assert not is_primary_toggle(None, "A")


def test_toggle_without_owner_is_accepted():
    assert is_primary_toggle(toggle_stop("A", item_id=None).element, "A")


def test_secondary_control_predicate():
    assert is_secondary_control(secondary_stop("A").element, "A")
    assert not is_secondary_control(secondary_stop("B").element, "A")
    assert not is_secondary_control(share_stop("A").element, "A")


def test_normalized_verification():
    assert normalize_text("  Great\n\n  post ") == "Great post"
    assert insertion_verified("Great post", "Great post")
    assert insertion_verified("Great  post", "Great post\n")
    assert not insertion_verified("", "anything")
    assert not insertion_verified("Great post", "Great")


def test_full_sequence_submits_text(control):
    page = focused_on_body(FeedPage(item_stops("A")))

    result = actor_for(page, control).perform(item("A"))

    assert result.success is True
    assert result.method == "clipboard-paste"
    assert page.toggled == ["A"]
    assert page.submitted == {"A": "OK"}
    assert page.insertion_calls == ["paste"]


def test_insertion_falls_back_after_paste(control):
    page = focused_on_body(FeedPage(item_stops("A"), paste_works=False, insert_works=True))

    result = actor_for(page, control).perform(item("A"))

    assert result.success is True
    assert result.method == "insert-text"
    assert page.insertion_calls == ["paste", "insert"]
    assert page.submitted == {"A": "OK"}


def test_typing_is_last_resort(control):
    page = focused_on_body(FeedPage(item_stops("A"), paste_works=False, insert_works=False))

    result = actor_for(page, control).perform(item("A"))

    assert result.success is True
    assert result.method == "typing"
    assert page.insertion_calls == ["paste", "insert", "type"]


def test_unverified_insertion_fails(control):
    page = focused_on_body(FeedPage(item_stops("A"), paste_works=False, insert_works=False))
    page.type_text = lambda text: page.insertion_calls.append("type")

    result = actor_for(page, control).perform(item("A"))

    assert result.success is False
    assert result.reason == REASON_VERIFICATION_FAILURE
    assert page.submitted == {}


def test_secondary_found_by_fallback_search(control):
    stops = [body_stop("A"), toggle_stop("A"), gap_stop(), gap_stop(), gap_stop(), secondary_stop("A")]
    page = focused_on_body(FeedPage(stops))

    result = actor_for(page, control).perform(item("A"))

    assert result.success is True
    assert page.submitted == {"A": "OK"}


def test_secondary_missing(control):
    stops = [body_stop("A"), toggle_stop("A")] + [gap_stop() for _ in range(10)]
    page = focused_on_body(FeedPage(stops))

    result = actor_for(page, control).perform(item("A"))

    assert result.success is False
    assert result.reason == REASON_SECONDARY_NOT_FOUND


def test_toggle_of_another_item_is_a_mismatch(control):
    page = focused_on_body(FeedPage([body_stop("A"), gap_stop()] + item_stops("B")))

    result = actor_for(page, control).perform(item("A"))

    assert result.success is False
    assert result.reason == REASON_ITEM_MISMATCH
    assert page.toggled == []


def test_toggle_search_is_bounded(control):
    page = focused_on_body(FeedPage([body_stop("A")] + [gap_stop() for _ in range(3)]))

    result = ActAndVerify(page, control, StubGeneration(), zero_timing(), max_toggle_probes=10).perform(item("A"))

    assert result.success is False
    assert result.reason == REASON_TOGGLE_NOT_FOUND
    assert page.tab_presses == 10


def test_generation_failure_is_reported(control):
    page = focused_on_body(FeedPage(item_stops("A")))

    result = actor_for(page, control, text=None).perform(item("A"))

    assert result.success is False
    assert result.reason == REASON_GENERATION_FAILED
    assert page.insertion_calls == []
