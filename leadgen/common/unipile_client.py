"""
HTTP client for the Unipile profile/company provider.

Every non-2xx response is raised as a typed ProviderHTTPError carrying the
status code and, when the body contains one, the provider error marker.
Timeouts surface as httpx.TimeoutException and classify as transient.

Rate limiting is NOT done here: callers go through AccountRateLimiter.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from leadgen.common.config import Config
from leadgen.common.error_classifier import find_provider_marker
from leadgen.common.errors import ProviderHTTPError

logger = logging.getLogger(__name__)


class UnipileClient:
    """
    Thin async wrapper over the provider REST API.

    Args:
        api_key: Provider API key (default: Config.UNIPILE_API_KEY)
        base_url: API root (default: Config.UNIPILE_BASE_URL)
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or Config.UNIPILE_API_KEY
        self.base_url = (base_url or Config.UNIPILE_BASE_URL).rstrip("/")
        self.timeout = timeout or Config.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={"X-API-KEY": self.api_key, "accept": "application/json"},
        )

    async def _get(self, path: str, params: Dict[str, Any], operation: str) -> Dict[str, Any]:
        async with self._client() as client:
            response = await client.get(path, params=params)

        if response.status_code >= 400:
            body = response.text
            logger.warning(f"{operation} failed: HTTP {response.status_code} {body[:200]}")
            raise ProviderHTTPError(
                status_code=response.status_code,
                message=body,
                provider_code=find_provider_marker(body),
                operation=operation,
            )

        return response.json()

    async def get_profile(self, account_id: str, profile_id: str) -> Dict[str, Any]:
        """Fetch a LinkedIn profile with its experience section."""
        return await self._get(
            f"/users/{profile_id}",
            {"account_id": account_id, "linkedin_sections": "experience"},
            operation="get_profile",
        )

    async def get_company(self, account_id: str, company_id: str) -> Dict[str, Any]:
        """Fetch a LinkedIn company page."""
        return await self._get(
            f"/linkedin/company/{company_id}",
            {"account_id": account_id},
            operation="get_company",
        )
