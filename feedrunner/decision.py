"""Decision service client: "should the runner act on this item?"

Failures never block the loop: any outbound error resolves to an affirmative
decision (fail open). Missed opportunities cost more than an occasional
low-value action.
"""

from __future__ import annotations

import time
from typing import Any, Mapping, Optional

from cachetools import TTLCache

from feedrunner.logger import get_logger
from feedrunner.models import Decision, Item
from feedrunner.outbound import OutboundClient, OutboundRequestError

logger = get_logger(__name__)

DECISION_TIMEOUT_MS = 180_000
_CACHE_MAX_SIZE = 512
_CACHE_TTL_SECONDS = 5

_VERDICT_KEYS = ("act", "engage")
_ITEM_ID_KEYS = ("itemid", "postid")
_YES = {"yes", "y", "true", "1", "act", "engage"}
_NO = {"no", "n", "false", "0", "skip"}


def _lookup(body: Mapping[str, Any], names: tuple[str, ...]) -> Any:
    lowered = {str(key).lower(): value for key, value in body.items()}
    for name in names:
        if name in lowered:
            return lowered[name]
    return None


def parse_verdict(body: Mapping[str, Any]) -> Optional[bool]:
    """Read ``act`` / ``Act`` / ``ENGAGE`` ... as a boolean; None when absent or unreadable."""
    raw = _lookup(body, _VERDICT_KEYS)
    if isinstance(raw, bool):
        return raw
    if raw is None:
        return None
    normalized = str(raw).strip().lower()
    if normalized in _YES:
        return True
    if normalized in _NO:
        return False
    return None


class DecisionClient:
    def __init__(
        self,
        endpoint: Optional[str],
        *,
        outbound: Optional[OutboundClient] = None,
        timeout_ms: int = DECISION_TIMEOUT_MS,
        cache: Optional[TTLCache] = None,
    ) -> None:
        self.endpoint = endpoint
        self.outbound = outbound or OutboundClient()
        self.timeout_ms = timeout_ms
        self._cache: TTLCache = cache if cache is not None else TTLCache(maxsize=_CACHE_MAX_SIZE, ttl=_CACHE_TTL_SECONDS)

    def decide(self, item: Item) -> Decision:
        if not self.endpoint:
            logger.warning("No decision endpoint configured, defaulting to act (item=%s)", item.item_id)
            return Decision(act=True, item_id=item.item_id, fail_open=True)

        cached = self._cache.get(item.item_id)
        if cached is not None:
            logger.info("Decision from cache item=%s act=%s", item.item_id, cached.act)
            return cached

        logger.info(
            "⏸️  Waiting up to %ss for decision on item=%s (markup=%s chars)",
            self.timeout_ms // 1000,
            item.item_id,
            len(item.raw_markup),
        )
        started = time.monotonic()
        try:
            body = self.outbound.send(self.endpoint, {"rawMarkup": item.raw_markup}, self.timeout_ms)
        except OutboundRequestError as exc:
            waited_ms = int((time.monotonic() - started) * 1000)
            logger.error(
                "Decision call failed after %sms, defaulting to act | kind=%s item=%s endpoint=%s markup=%s chars error=%s",
                waited_ms,
                exc.kind.value,
                item.item_id,
                self.endpoint,
                len(item.raw_markup),
                exc,
            )
            return Decision(act=True, item_id=item.item_id, fail_open=True)

        verdict = parse_verdict(body)
        if verdict is None:
            logger.warning("Decision response carried no readable verdict, defaulting to act: %s", body)
            verdict = True
        returned_id = _lookup(body, _ITEM_ID_KEYS)
        decision = Decision(act=verdict, item_id=str(returned_id) if returned_id else item.item_id)
        self._cache[item.item_id] = decision

        logger.info(
            "Decision received item=%s act=%s waited=%sms",
            decision.item_id,
            decision.act,
            int((time.monotonic() - started) * 1000),
        )
        return decision
