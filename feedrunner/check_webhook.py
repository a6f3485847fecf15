"""Smoke-check a decision webhook with item markup of increasing size.

Usage:
    python -m feedrunner.check_webhook https://hooks.example.com/decide
    python -m feedrunner.check_webhook URL --sizes 500 15000 36000 --timeout-ms 180000

Each size is sent as ``{"rawMarkup": ...}`` through the same outbound client
the runner uses, so failures are classified and logged the same way.

Exit codes:
    0 - every request returned a JSON object
    1 - at least one request failed
"""

from __future__ import annotations

import argparse
import sys
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from feedrunner.decision import DECISION_TIMEOUT_MS, parse_verdict
from feedrunner.logger import get_logger
from feedrunner.outbound import OutboundClient, OutboundRequestError

logger = get_logger(__name__)

DEFAULT_SIZES = (500, 15_000, 36_000)
PAUSE_BETWEEN_CHECKS_S = 1.0

_MARKUP_HEAD = (
    '<div class="feed-shared-update-v2" data-id="urn:li:activity:7387195610858369024">'
    '<div class="update-components-actor"><span class="update-components-actor__name">Test Author</span></div>'
    '<div class="feed-shared-update-v2__description"><span>This is a test post. '
)
_MARKUP_TAIL = (
    "</span></div>"
    '<button class="reactions-react-button"><span>Like</span></button>'
    "</div>"
)
_FILLER = "Lorem ipsum dolor sit amet, consectetur adipiscing elit. "


def fake_markup(size: int) -> str:
    """Feed-item-shaped markup cut to exactly ``size`` characters."""
    filler = _FILLER * (size // len(_FILLER) + 1)
    return (_MARKUP_HEAD + filler + _MARKUP_TAIL)[:size]


def check_size(client: OutboundClient, url: str, size: int, timeout_ms: int) -> Dict[str, Any]:
    started = time.monotonic()
    try:
        body = client.send(url, {"rawMarkup": fake_markup(size)}, timeout_ms)
    except OutboundRequestError as exc:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.error("❌ %s chars failed after %sms: %s", size, elapsed_ms, exc)
        return {"size": size, "success": False, "elapsedMs": elapsed_ms, "errorType": exc.kind.value}

    elapsed_ms = int((time.monotonic() - started) * 1000)
    verdict = parse_verdict(body)
    logger.info("✅ %s chars answered in %sms (verdict=%s)", size, elapsed_ms, verdict)
    return {"size": size, "success": True, "elapsedMs": elapsed_ms, "verdict": verdict}


def run_checks(
    url: str,
    sizes: Sequence[int] = DEFAULT_SIZES,
    timeout_ms: int = DECISION_TIMEOUT_MS,
    *,
    client: Optional[OutboundClient] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Dict[str, Any]]:
    client = client or OutboundClient()
    results = []
    for index, size in enumerate(sizes):
        if index:
            sleep(PAUSE_BETWEEN_CHECKS_S)
        results.append(check_size(client, url, size, timeout_ms))
    return results


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m feedrunner.check_webhook",
        description="POST item markup of increasing size to a decision webhook.",
    )
    parser.add_argument("url", help="Decision webhook URL")
    parser.add_argument("--sizes", type=int, nargs="+", default=list(DEFAULT_SIZES), help="Markup sizes in characters")
    parser.add_argument("--timeout-ms", type=int, default=DECISION_TIMEOUT_MS, help="Per-request timeout")
    args = parser.parse_args(argv)

    results = run_checks(args.url, args.sizes, args.timeout_ms)
    for number, result in enumerate(results, start=1):
        outcome = "PASS" if result["success"] else f"FAIL ({result['errorType']})"
        print(f"Check {number}: {result['size']} chars {outcome} in {result['elapsedMs']}ms")
    return 0 if all(result["success"] for result in results) else 1


if __name__ == "__main__":
    sys.exit(main())
