from __future__ import annotations

import json

import httpx
import pytest

from feedrunner.decision import DecisionClient, parse_verdict
from feedrunner.models import Item
from feedrunner.outbound import OutboundClient

ENDPOINT = "https://hooks.example.test/decide"


def make_item(item_id: str = "urn:li:activity:1") -> Item:
    return Item(item_id=item_id, content="hello", author_label="Ada", raw_markup="<div>hello</div>")


def decision_client(handler) -> DecisionClient:
    return DecisionClient(ENDPOINT, outbound=OutboundClient(transport=httpx.MockTransport(handler)))


@pytest.mark.parametrize(
    "body, expected",
    [
        ({"act": "yes"}, True),
        ({"Act": "YES"}, True),
        ({"ACT": "no"}, False),
        ({"engage": "No"}, False),
        ({"Engage": True}, True),
        ({"act": False}, False),
        ({"act": "maybe"}, None),
        ({}, None),
    ],
)
def test_parse_verdict_accepts_casing_variants(body, expected):
    assert parse_verdict(body) is expected


def test_decide_sends_raw_markup_and_reads_verdict():
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"Act": "no", "itemId": "urn:li:activity:1"})

    decision = decision_client(handler).decide(make_item())

    assert sent == [{"rawMarkup": "<div>hello</div>"}]
    assert decision.act is False
    assert decision.item_id == "urn:li:activity:1"
    assert decision.fail_open is False


def test_decide_fails_open_on_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    decision = decision_client(handler).decide(make_item())

    assert decision.act is True
    assert decision.fail_open is True


def test_decide_fails_open_on_malformed_body():
    decision = decision_client(lambda request: httpx.Response(200, text="not json")).decide(make_item())
    assert decision.act is True
    assert decision.fail_open is True


def test_decide_fails_open_on_unparseable_endpoint():
    decision = DecisionClient("http://[not-a-host").decide(make_item())
    assert decision.act is True
    assert decision.fail_open is True


def test_decide_fails_open_on_deeply_nested_body():
    nested = "[" * 100000 + "]" * 100000
    decision = decision_client(lambda request: httpx.Response(200, text=nested)).decide(make_item())
    assert decision.act is True
    assert decision.fail_open is True


def test_missing_verdict_defaults_to_act():
    decision = decision_client(lambda request: httpx.Response(200, json={"status": "ok"})).decide(make_item())
    assert decision.act is True


def test_verdicts_are_cached_per_item():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"act": "no"})

    client = decision_client(handler)
    first = client.decide(make_item("A"))
    second = client.decide(make_item("A"))
    client.decide(make_item("B"))

    assert first.act is False and second.act is False
    assert len(calls) == 2


def test_no_endpoint_means_act():
    decision = DecisionClient(None).decide(make_item())
    assert decision.act is True
    assert decision.fail_open is True
