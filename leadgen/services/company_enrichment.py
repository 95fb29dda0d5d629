"""
Company Enrichment Service

Read-through cache of normalized company data. A record that is enriched
and complete (description and size present) is served without calling the
provider unless the caller forces a refresh.

Results report where they came from:
- cached: served from the EnrichmentRecord
- fresh:  scraped now and upserted
- queued: handed to the enrichment workflow; the result arrives later
          through apply_enrichment_callback()

Concurrent enrichment of the same company is not coordinated: both writers
upsert on company_id, so the outcome is correct, only the work is doubled.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence

from leadgen.common.account_selector import AccountSelector
from leadgen.common.config import Config
from leadgen.common.errors import ValidationError
from leadgen.common.models import EnrichmentRecord, EnrichmentStatus, utc_now
from leadgen.common.rate_limiter import AccountRateLimiter
from leadgen.common.repositories.base import CompanyRepositoryInterface
from leadgen.common.unipile_client import UnipileClient
from leadgen.services.workflow_notifier import WorkflowNotifier
from leadgen.stages.profile_scraping import normalize_company

logger = logging.getLogger(__name__)


class EnrichmentSource(str, Enum):
    CACHED = "cached"
    FRESH = "fresh"
    QUEUED = "queued"


@dataclass
class EnrichmentOutcome:
    company_id: str
    source: EnrichmentSource
    record: Optional[EnrichmentRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "company_id": self.company_id,
            "source": self.source.value,
            "record": self.record.model_dump(mode="json") if self.record else None,
        }


class CompanyEnrichmentService:
    """
    Args:
        companies: Enrichment cache repository
        client: Provider client
        limiter: Shared per-account rate limiter
        account_pool: Returns the account ids currently usable
        notifier: Workflow sink used for async enrichment
        webhook_url: Async enrichment webhook (default: Config); None means direct scraping
    """

    def __init__(
        self,
        companies: CompanyRepositoryInterface,
        client: UnipileClient,
        limiter: AccountRateLimiter,
        account_pool: Callable[[], Sequence[str]],
        notifier: Optional[WorkflowNotifier] = None,
        webhook_url: Optional[str] = None,
    ):
        self.companies = companies
        self.client = client
        self.limiter = limiter
        self.account_pool = account_pool
        self.selector = AccountSelector(limiter)
        self.notifier = notifier or WorkflowNotifier()
        self.webhook_url = Config.get_enrichment_webhook_url() if webhook_url is None else (webhook_url or None)

    async def enrich(self, company_id: Optional[str], force: bool = False) -> EnrichmentOutcome:
        """
        Raises:
            ValidationError: Missing company id
            NoAccountsAvailable: Empty account pool
            ProviderHTTPError / httpx errors: Direct scrape failed (record marked error)
        """
        if not company_id:
            raise ValidationError("company_id is required for enrichment")

        existing = self.companies.get(company_id)
        if existing is not None and existing.is_cache_hit and not force:
            logger.info(f"Company {company_id}: served from cache")
            return EnrichmentOutcome(company_id, EnrichmentSource.CACHED, existing)

        account_id = self.selector.pick_account(self.account_pool())

        if self.webhook_url:
            queued = await self.notifier.send(
                {"linkedin_id": company_id, "account_id": account_id},
                url=self.webhook_url,
            )
            if queued:
                self.companies.set_status(company_id, EnrichmentStatus.PROCESSING)
                logger.info(f"Company {company_id}: enrichment queued")
                return EnrichmentOutcome(company_id, EnrichmentSource.QUEUED, self.companies.get(company_id))
            logger.warning(f"Company {company_id}: webhook refused, scraping directly")

        try:
            payload = await self.limiter.call(account_id, self.client.get_company, account_id, company_id)
            record = self._store(company_id, payload)
        except Exception as e:
            self.companies.set_status(company_id, EnrichmentStatus.ERROR, error_message=str(e))
            raise

        logger.info(f"Company {company_id}: enriched ({record.name})")
        return EnrichmentOutcome(company_id, EnrichmentSource.FRESH, record)

    def apply_enrichment_callback(self, company_id: str, payload: Dict[str, Any]) -> EnrichmentRecord:
        """Store a result produced by the async enrichment workflow."""
        if not company_id:
            raise ValidationError("company_id is required for enrichment")
        return self._store(company_id, payload)

    def _store(self, company_id: str, payload: Dict[str, Any]) -> EnrichmentRecord:
        snapshot = normalize_company(payload)
        record = EnrichmentRecord(
            company_id=company_id,
            **snapshot.model_dump(),
            enrichment_status=EnrichmentStatus.ENRICHED,
            last_enriched_at=utc_now(),
        )
        self.companies.upsert(record)
        return record
