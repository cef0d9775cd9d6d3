"""Operator notifications posted to a Slack incoming webhook."""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)

SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL")
SLACK_TIMEOUT_SECONDS = float(os.getenv("SLACK_TIMEOUT", "10"))

_TITLES = {
    "project_sent_to_customer": "Project sent to customer",
    "secondary_characters_ready": "Secondary characters ready for review",
    "character_revisions": "Character revisions sent",
    "illustrations_sent": "Illustrations sent to customer",
    "illustrations_updated": "Illustrations updated",
    "customer_submission": "Customer submitted character review",
    "customer_feedback": "Customer left feedback",
    "customer_accepted_reply": "Customer accepted a reply",
    "character_generation_complete": "Character generation complete",
}


def format_message(kind: str, payload: Mapping[str, Any]) -> str:
    title = _TITLES.get(kind, kind.replace("_", " ").capitalize())
    lines = [f"*{title}*"]
    for key, value in payload.items():
        if value is None or value == "":
            continue
        lines.append(f"- {key.replace('_', ' ')}: {value}")
    return "\n".join(lines)


class Notifier:
    """Sends notifications to Slack; without a webhook it only logs them.

    Delivery problems are logged and never raised to the caller.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = SLACK_WEBHOOK_URL,
        *,
        timeout: float = SLACK_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def send(self, kind: Any, payload: Mapping[str, Any]) -> bool:
        kind_value = str(getattr(kind, "value", kind))
        body = dict(payload)
        self.sent.append((kind_value, body))
        if not self.webhook_url:
            logger.info(
                "Notification (no webhook configured)",
                extra={"kind": kind_value, **_safe(body)},
            )
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.webhook_url, json={"text": format_message(kind_value, body)}
                )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Failed to deliver notification", extra={"kind": kind_value, "error": str(exc)}
            )
            return False
        logger.info("Notification delivered", extra={"kind": kind_value})
        return True


def _safe(payload: Mapping[str, Any]) -> dict[str, Any]:
    # Keep payload keys from colliding with LogRecord attributes.
    return {f"notify_{key}": value for key, value in payload.items()}
