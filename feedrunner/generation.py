from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional

from feedrunner.logger import get_logger
from feedrunner.models import Item
from feedrunner.outbound import OutboundClient, OutboundRequestError

logger = get_logger(__name__)

GENERATION_TIMEOUT_MS = 30_000
TOKEN_HEADER = "x-runner-token"


class ContentGenerationClient:
    """Request text to insert for an item; None when nothing usable came back."""

    def __init__(
        self,
        endpoint: Optional[str],
        *,
        token: Optional[str] = None,
        outbound: Optional[OutboundClient] = None,
        timeout_ms: int = GENERATION_TIMEOUT_MS,
    ) -> None:
        self.endpoint = endpoint
        self.token = token
        self.outbound = outbound or OutboundClient()
        self.timeout_ms = timeout_ms

    def generate(self, item: Item, action_type: str = "comment") -> Optional[str]:
        if not self.endpoint:
            logger.error("No generation endpoint configured (item=%s)", item.item_id)
            return None

        payload = {
            "itemId": item.item_id,
            "content": item.content,
            "authorLabel": item.author_label,
            "actionType": action_type,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        headers = {TOKEN_HEADER: self.token} if self.token else None
        logger.info(
            "🤖 Requesting generated text item=%s author=%r content=%s chars",
            item.item_id,
            item.author_label,
            len(item.content),
        )
        try:
            body = self.outbound.send(self.endpoint, payload, self.timeout_ms, headers=headers)
        except OutboundRequestError as exc:
            logger.error("Generation call failed item=%s kind=%s: %s", item.item_id, exc.kind.value, exc)
            return None

        text = body.get("generatedText")
        if text is None:
            text = body.get("comment")
        if not isinstance(text, str) or not text.strip():
            logger.error("Generation response missing generatedText item=%s body=%s", item.item_id, str(body)[:200])
            return None

        logger.info("Generated %s chars for item=%s: %s", len(text), item.item_id, text[:150])
        return text
