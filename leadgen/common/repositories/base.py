"""
Repository Interface Definitions

Defines the data-access interfaces used by the pipeline. Services only see
these interfaces; the MongoDB implementation lives in mongo_repository.py and
tests use in-memory fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from leadgen.common.models import EnrichmentRecord, EnrichmentStatus, Lead, WorkItem
from leadgen.common.state import LeadStatus, ProcessingStatus


@dataclass
class WriteResult:
    """
    Result of a write operation.

    Attributes:
        matched_count: Number of documents that matched the filter
        modified_count: Number of documents actually modified
        upserted_id: ID of upserted document (if any)
    """
    matched_count: int
    modified_count: int
    upserted_id: Optional[str] = None


class WorkItemRepositoryInterface(ABC):
    """
    Work items (ingested posts).

    Status changes go through update_status, which only writes if the stored
    status still equals the expected one. This is what keeps two stages from
    racing on the same item.
    """

    @abstractmethod
    def get(self, item_id: str) -> Optional[WorkItem]:
        pass

    @abstractmethod
    def insert(self, item: WorkItem) -> bool:
        """
        Insert a new item.

        Returns:
            False if an item with the same id or urn already exists
        """
        pass

    @abstractmethod
    def update_status(
        self,
        item_id: str,
        expected_status: ProcessingStatus,
        fields: Dict[str, Any],
    ) -> bool:
        """
        Set fields if the item is still in expected_status.

        Args:
            item_id: Work item id
            expected_status: Status the item must currently have
            fields: Fields to $set (may include processing_status)

        Returns:
            True if the item matched and was written
        """
        pass

    @abstractmethod
    def increment_retry(
        self,
        item_id: str,
        expected_status: ProcessingStatus,
        fields: Dict[str, Any],
    ) -> Optional[int]:
        """
        Atomically increment retry_count and set fields.

        Returns:
            The new retry_count, or None if the item is no longer in expected_status
        """
        pass

    @abstractmethod
    def update_fields(self, item_id: str, fields: Dict[str, Any]) -> bool:
        """Unconditional $set for bookkeeping fields that never touch the status."""
        pass

    @abstractmethod
    def find_recoverable(
        self,
        now: datetime,
        stale_before: datetime,
        limit: int = 100,
    ) -> List[WorkItem]:
        """
        Non-terminal items that should be re-dispatched.

        An item qualifies when it is not flagged for attention and either its
        scheduled retry is due, or it has no scheduled retry and has not been
        updated since stale_before.
        """
        pass

    @abstractmethod
    def find_needing_attention(self, limit: int = 100) -> List[WorkItem]:
        """Items that exhausted their automatic retries."""
        pass

    @abstractmethod
    def find_by_status(self, status: ProcessingStatus, limit: int = 100) -> List[WorkItem]:
        pass

    @abstractmethod
    def delete_by_dataset(self, dataset_id: str) -> int:
        """Bulk cleanup before re-ingesting a dataset. Returns deleted count."""
        pass


class LeadRepositoryInterface(ABC):
    """Leads materialized from work items."""

    @abstractmethod
    def get(self, lead_id: str) -> Optional[Lead]:
        pass

    @abstractmethod
    def find_by_source_item(self, item_id: str) -> Optional[Lead]:
        """Lead whose item_ids contain item_id."""
        pass

    @abstractmethod
    def find_by_author(self, author_profile_id: str) -> Optional[Lead]:
        pass

    @abstractmethod
    def insert(self, lead: Lead) -> None:
        """
        Raises:
            DuplicateRecordError: If a lead already exists for the author or source item
        """
        pass

    @abstractmethod
    def link_item(self, lead_id: str, item_id: str, fields: Dict[str, Any]) -> bool:
        """Attach another work item to an existing lead and $set fields."""
        pass

    @abstractmethod
    def update_if_status(
        self,
        lead_id: str,
        expected_status: LeadStatus,
        fields: Dict[str, Any],
        unset: Sequence[str] = (),
    ) -> bool:
        """Conditional update used by corrective jobs."""
        pass


class CompanyRepositoryInterface(ABC):
    """Company enrichment cache, keyed by the provider company id."""

    @abstractmethod
    def get(self, company_id: str) -> Optional[EnrichmentRecord]:
        pass

    @abstractmethod
    def upsert(self, record: EnrichmentRecord) -> WriteResult:
        """Idempotent upsert keyed by company_id."""
        pass

    @abstractmethod
    def set_status(
        self,
        company_id: str,
        status: EnrichmentStatus,
        error_message: Optional[str] = None,
    ) -> WriteResult:
        """Upsert only the enrichment status (creates a stub record if needed)."""
        pass


class ReferenceDataRepositoryInterface(ABC):
    """Read-only access to existing clients, client contacts and HR providers."""

    @abstractmethod
    def is_client_contact(self, profile_id: str) -> bool:
        pass

    @abstractmethod
    def find_clients_by_company_ids(self, company_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """
        Tracked clients whose company id is in company_ids.

        Returns:
            Dicts with keys id, name, company_id
        """
        pass

    @abstractmethod
    def find_hr_providers_by_company_ids(self, company_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """
        HR providers (recruitment agencies, ESNs) whose company id is in company_ids.

        Returns:
            Dicts with keys id, name, company_id
        """
        pass


class AccountRepositoryInterface(ABC):
    """Provider accounts available for scraping."""

    @abstractmethod
    def list_active_accounts(self) -> List[str]:
        """Active account ids, in a stable order."""
        pass
