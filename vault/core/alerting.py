import json
import logging
from typing import Any, Dict, Optional

import httpx

from vault.core.config import settings

logger = logging.getLogger(__name__)

ALERT_COLOR = "#f97316"


def _build_payload(message: str, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"text": message}
    if context:
        payload["attachments"] = [
            {
                "color": ALERT_COLOR,
                "fields": [
                    {
                        "title": title,
                        "value": value if isinstance(value, str) else json.dumps(value, indent=2, default=str),
                        "short": False,
                    }
                    for title, value in context.items()
                ],
            }
        ]
    return payload


async def notify_ops(message: str, context: Optional[Dict[str, Any]] = None) -> None:
    """
    Send an operations alert to the configured Slack-compatible webhook.

    Without a webhook URL the alert is only logged. Delivery failures are
    logged and never raised to the caller.
    """
    webhook_url = settings.ops_alert_webhook
    if not webhook_url:
        logger.warning(f"[OPS ALERT] {message} {context or {}}")
        return

    try:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.post(webhook_url, json=_build_payload(message, context))
            response.raise_for_status()
    except Exception as e:
        logger.error(f"❌ Failed to deliver ops alert: {str(e)}")
