"""
Workflow notification sink (n8n webhooks).

Fire-and-forget: the HTTP status is logged, transport errors are logged,
and nothing is raised to the caller. send() reports whether the webhook
accepted the payload for callers that need to know.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from leadgen.common.config import Config

logger = logging.getLogger(__name__)


class WorkflowNotifier:
    """
    Args:
        webhook_url: Default webhook (default: Config.N8N_WEBHOOK_URL)
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests)
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = Config.N8N_WEBHOOK_URL if webhook_url is None else webhook_url
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, payload: Dict[str, Any], url: Optional[str] = None) -> bool:
        """POST payload; True on a 2xx answer."""
        target = url or self.webhook_url
        if not target:
            logger.debug("Workflow webhook not configured; notification dropped")
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(target, json=payload)
        except httpx.TimeoutException:
            logger.warning(f"Workflow webhook timed out: {target}")
            return False
        except httpx.HTTPError as e:
            logger.warning(f"Workflow webhook unreachable ({target}): {e}")
            return False

        if 200 <= response.status_code < 300:
            logger.info(f"Workflow webhook accepted payload (HTTP {response.status_code})")
            return True

        logger.warning(f"Workflow webhook rejected payload: HTTP {response.status_code} {response.text[:200]}")
        return False

    async def notify(self, event: str, payload: Dict[str, Any]) -> bool:
        return await self.send({"event": event, **payload})
