from __future__ import annotations

from feedrunner.page import FocusedElement, extract_permalink_id, is_closed_error


def test_permalink_ids():
    assert extract_permalink_id("/feed/update/urn:li:activity:7123/") == "7123"
    assert extract_permalink_id("https://www.linkedin.com/posts/ada_launch-activity-1?utm=x") == "ada_launch-activity-1"
    assert extract_permalink_id("/feed/update/update:urn:li:share:42") == "42"
    assert extract_permalink_id("/in/ada") is None
    assert extract_permalink_id(None) is None


def test_focused_element_from_page_snapshot():
    element = FocusedElement.from_js(
        {
            "tag": "BUTTON",
            "ariaLabel": "React Like",
            "labelText": "Like",
            "classes": ["react-button__trigger"],
            "icons": ["thumbs-up-outline-small", None],
            "itemId": "urn:li:activity:1",
            "inActionBar": True,
        }
    )
    assert element.tag == "button"
    assert element.icons == ["thumbs-up-outline-small"]
    assert element.item_id == "urn:li:activity:1"
    assert element.in_nested_section is False


def test_closed_error_detection():
    assert is_closed_error(RuntimeError("Target page, context or browser has been closed"))
    assert is_closed_error(RuntimeError("Browser closed."))
    assert not is_closed_error(RuntimeError("Timeout 30000ms exceeded."))
