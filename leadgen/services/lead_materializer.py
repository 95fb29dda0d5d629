"""
Lead Materializer

Terminal stage: turns an enriched work item into a Lead.

Steps, in order:
1. Skip if the author is already a client contact. A failing lookup aborts
   (the orchestrator retries later).
2. Generate the approach message. Never fails: after 3 attempts the static
   template is used and recorded as a degradation.
3. Check the last 5 employers against tracked clients and HR providers.
   Failing lookups degrade to "no match".
4. Persist. One lead per author: a later post by the same author links to the
   existing lead, refreshing the post snapshot when the post is newer.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from leadgen.common.errors import DegradedFallback, DuplicateRecordError
from leadgen.common.models import Lead, MessageStatus, WorkItem, utc_now
from leadgen.common.repositories.base import (
    CompanyRepositoryInterface,
    LeadRepositoryInterface,
    ReferenceDataRepositoryInterface,
)
from leadgen.common.state import LeadStatus
from leadgen.stages.message_generation import MessageGenerator

logger = logging.getLogger(__name__)

MAX_EMPLOYERS_CHECKED = 5


class MaterializationAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    LINKED = "linked"
    ALREADY_MATERIALIZED = "already_materialized"
    SKIPPED_CLIENT_CONTACT = "skipped_client_contact"


@dataclass
class MaterializationResult:
    action: MaterializationAction
    lead: Optional[Lead] = None
    degradations: List[DegradedFallback] = field(default_factory=list)

    @property
    def lead_id(self) -> Optional[str]:
        return self.lead.id if self.lead else None


@dataclass
class HistoryMatch:
    """Outcome of the employer history check."""
    status: LeadStatus = LeadStatus.COMPLETED
    matched_client_id: Optional[str] = None
    matched_client_name: Optional[str] = None
    matched_hr_provider_id: Optional[str] = None
    matched_hr_provider_name: Optional[str] = None
    previous_client_companies: List[str] = field(default_factory=list)

    def to_fields(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "matched_client_id": self.matched_client_id,
            "matched_client_name": self.matched_client_name,
            "matched_hr_provider_id": self.matched_hr_provider_id,
            "matched_hr_provider_name": self.matched_hr_provider_name,
            "has_previous_client_company": bool(self.previous_client_companies),
            "previous_client_companies": self.previous_client_companies,
        }


def employer_ids(item: WorkItem, limit: int = MAX_EMPLOYERS_CHECKED) -> List[str]:
    """Current employer first, then work history, deduplicated."""
    ids: List[str] = []
    candidates = [item.company_id] + [e.company_id for e in item.work_history]
    for company_id in candidates:
        if company_id and company_id not in ids:
            ids.append(company_id)
        if len(ids) == limit:
            break
    return ids


class LeadMaterializer:
    """
    Args:
        leads: Lead repository
        reference: Clients / client contacts / HR providers
        companies: Enrichment cache for the company snapshot (optional)
        message_generator: Approach message generator
    """

    def __init__(
        self,
        leads: LeadRepositoryInterface,
        reference: ReferenceDataRepositoryInterface,
        companies: Optional[CompanyRepositoryInterface] = None,
        message_generator: Optional[MessageGenerator] = None,
    ):
        self.leads = leads
        self.reference = reference
        self.companies = companies
        self.message_generator = message_generator or MessageGenerator()

    async def materialize(self, item: WorkItem) -> MaterializationResult:
        """
        Raises:
            Exception: Only from the client-contact lookup (step 1) or the final write
        """
        existing = self.leads.find_by_source_item(item.id)
        if existing is not None:
            logger.info(f"Item {item.id} already materialized as lead {existing.id}")
            return MaterializationResult(MaterializationAction.ALREADY_MATERIALIZED, existing)

        # Step 1: existing client relationship
        if item.author_profile_id and self.reference.is_client_contact(item.author_profile_id):
            logger.info(f"Item {item.id}: author {item.author_profile_id} is a client contact, no lead")
            return MaterializationResult(MaterializationAction.SKIPPED_CLIENT_CONTACT)

        degradations: List[DegradedFallback] = []

        # Step 2: approach message
        message = await self.message_generator.generate(item)
        if message.used_fallback:
            degradations.append(DegradedFallback("approach_message", message.error or "fallback template used"))

        # Step 3: employer history
        history = self._check_history(item, degradations)

        # Step 4: persist
        fields = {
            **self._snapshot_fields(item, degradations),
            **history.to_fields(),
            "approach_message": message.message,
            "message_status": MessageStatus.FALLBACK if message.used_fallback else MessageStatus.GENERATED,
            "message_error": message.error,
            "message_attempts": message.attempts,
        }
        result = self._persist(item, fields)
        result.degradations = degradations

        for degradation in degradations:
            logger.warning(f"Item {item.id}: degraded {degradation.operation}: {degradation.message}")
        return result

    def _check_history(self, item: WorkItem, degradations: List[DegradedFallback]) -> HistoryMatch:
        ids = employer_ids(item)
        match = HistoryMatch()
        if not ids:
            return match

        hr_providers = self._lookup("hr_provider_check", self.reference.find_hr_providers_by_company_ids, ids, degradations)
        clients = self._lookup("client_history_check", self.reference.find_clients_by_company_ids, ids, degradations)

        current = item.company_id
        for provider in hr_providers:
            if current and provider.get("company_id") == current:
                match.status = LeadStatus.FILTERED_HR_PROVIDER
                match.matched_hr_provider_id = provider.get("id")
                match.matched_hr_provider_name = provider.get("name")
                break

        for client in clients:
            if current and client.get("company_id") == current:
                match.matched_client_id = client.get("id")
                match.matched_client_name = client.get("name")
            elif client.get("name") and client.get("name") not in match.previous_client_companies:
                match.previous_client_companies.append(client["name"])

        return match

    @staticmethod
    def _lookup(operation, func, ids, degradations) -> List[Dict[str, Any]]:
        try:
            return func(ids)
        except Exception as e:
            degradations.append(DegradedFallback(operation, f"lookup failed, assuming no match: {e}"))
            return []

    def _snapshot_fields(self, item: WorkItem, degradations: List[DegradedFallback]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "author_name": item.author_name,
            "author_profile_id": item.author_profile_id,
            "author_profile_url": item.author_profile_url,
            "author_headline": item.author_headline,
            "phone": item.phone,
            "post_url": item.url,
            "post_text": item.text,
            "posted_at": item.posted_at,
            "category": item.stage3_category,
            "positions": item.stage3_positions,
            "company_name": item.company_name,
            "company_id": item.company_id,
            "position": item.position,
            "work_history": item.work_history,
            "last_updated_at": utc_now(),
        }

        if self.companies is not None and item.company_id:
            try:
                company = self.companies.get(item.company_id)
            except Exception as e:
                degradations.append(DegradedFallback("company_snapshot", str(e)))
                company = None
            if company is not None:
                fields.update({
                    "company_industry": company.industry,
                    "company_size": company.company_size,
                    "company_headquarters": company.headquarters,
                })
        return fields

    def _persist(self, item: WorkItem, fields: Dict[str, Any]) -> MaterializationResult:
        if item.author_profile_id:
            existing = self.leads.find_by_author(item.author_profile_id)
            if existing is not None:
                return self._link(existing, item, fields)

        lead = Lead(
            _id=uuid.uuid4().hex,
            source_item_id=item.id,
            item_ids=[item.id],
            created_at=utc_now(),
            **fields,
        )
        try:
            self.leads.insert(lead)
        except DuplicateRecordError:
            # Another item of the same author won the insert race
            existing = self.leads.find_by_author(item.author_profile_id) if item.author_profile_id else None
            if existing is None:
                raise
            return self._link(existing, item, fields)

        logger.info(f"Lead {lead.id} created from item {item.id} (status={lead.status.value})")
        return MaterializationResult(MaterializationAction.CREATED, lead)

    def _link(self, existing: Lead, item: WorkItem, fields: Dict[str, Any]) -> MaterializationResult:
        is_newer = item.posted_at is not None and (
            existing.posted_at is None or item.posted_at > existing.posted_at
        )
        if is_newer:
            update = {k: v for k, v in fields.items() if k != "author_profile_id"}
            action = MaterializationAction.UPDATED
        else:
            update = {"last_updated_at": utc_now()}
            action = MaterializationAction.LINKED

        self.leads.link_item(existing.id, item.id, update)
        logger.info(f"Item {item.id} {action.value} to existing lead {existing.id}")
        return MaterializationResult(action, self.leads.get(existing.id) or existing)
