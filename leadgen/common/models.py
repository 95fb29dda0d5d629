"""
Persistent records of the pipeline.

All records are pydantic models so that anything read back from the
datastore or received from a collaborator goes through the same validation.
MongoDB documents use ``_id`` as key; models expose it as ``id``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from leadgen.common.state import LeadStatus, ProcessingStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    """Base for records stored in MongoDB."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="python")

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        if "_id" in document and not isinstance(document["_id"], str):
            document = {**document, "_id": str(document["_id"])}
        return cls.model_validate(document)


class WorkExperience(BaseModel):
    """One employer entry from a scraped profile."""
    company_name: Optional[str] = None
    company_id: Optional[str] = None
    position: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_current: bool = False
    duration_months: Optional[int] = None


class WorkItem(Document):
    """One ingested post moving through the pipeline."""

    id: str = Field(..., alias="_id", min_length=1)
    urn: Optional[str] = None
    dataset_id: Optional[str] = None
    title: Optional[str] = None
    text: str = Field(..., min_length=1)
    url: Optional[str] = None
    author_name: Optional[str] = None
    author_profile_id: Optional[str] = None
    author_profile_url: Optional[str] = None
    author_headline: Optional[str] = None
    posted_at: Optional[datetime] = None

    # Stage 1: recruitment detection
    stage1_is_recruiting: Optional[bool] = None
    stage1_positions: Optional[str] = None

    # Stage 2: language/location gate
    stage2_passed: Optional[bool] = None
    stage2_language: Optional[str] = None
    stage2_location: Optional[str] = None
    stage2_reason: Optional[str] = None

    # Stage 3: categorization
    stage3_category: Optional[str] = None
    stage3_positions: List[str] = Field(default_factory=list)
    stage3_justification: Optional[str] = None

    # Profile enrichment
    company_name: Optional[str] = None
    company_id: Optional[str] = None
    position: Optional[str] = None
    is_current_position: Optional[bool] = None
    profile_provider_id: Optional[str] = None
    phone: Optional[str] = None
    work_history: List[WorkExperience] = Field(default_factory=list)
    scraped_by_account: Optional[str] = None
    scraped_at: Optional[datetime] = None

    # Processing bookkeeping
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    filter_reason: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    last_retry_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    needs_attention: bool = False
    last_error_disposition: Optional[str] = None
    lead_id: Optional[str] = None
    degradations: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class MessageStatus(str, Enum):
    GENERATED = "generated"
    FALLBACK = "fallback"
    SKIPPED = "skipped"


class Lead(Document):
    """Materialized output of a work item that passed every gate."""

    id: str = Field(..., alias="_id", min_length=1)
    source_item_id: str
    item_ids: List[str] = Field(default_factory=list)

    # Author snapshot
    author_name: Optional[str] = None
    author_profile_id: Optional[str] = None
    author_profile_url: Optional[str] = None
    author_headline: Optional[str] = None
    phone: Optional[str] = None

    # Post snapshot
    post_url: Optional[str] = None
    post_text: Optional[str] = None
    posted_at: Optional[datetime] = None
    category: Optional[str] = None
    positions: List[str] = Field(default_factory=list)

    # Company snapshot
    company_name: Optional[str] = None
    company_id: Optional[str] = None
    position: Optional[str] = None
    company_industry: Optional[str] = None
    company_size: Optional[str] = None
    company_headquarters: Optional[str] = None
    work_history: List[WorkExperience] = Field(default_factory=list)

    # Approach message
    approach_message: Optional[str] = None
    message_status: MessageStatus = MessageStatus.SKIPPED
    message_error: Optional[str] = None
    message_attempts: int = 0

    # Classification against existing relationships (weak references)
    status: LeadStatus = LeadStatus.COMPLETED
    matched_client_id: Optional[str] = None
    matched_client_name: Optional[str] = None
    matched_hr_provider_id: Optional[str] = None
    matched_hr_provider_name: Optional[str] = None
    has_previous_client_company: bool = False
    previous_client_companies: List[str] = Field(default_factory=list)

    # Contact history
    last_contact_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    last_updated_at: datetime = Field(default_factory=utc_now)


class EnrichmentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ENRICHED = "enriched"
    ERROR = "error"


class EnrichmentRecord(Document):
    """Cached normalized data about a company, keyed by company_id."""

    company_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    description: Optional[str] = None
    industry: Optional[str] = None
    company_size: Optional[str] = None
    headquarters: Optional[str] = None
    website: Optional[str] = None
    follower_count: Optional[int] = None
    enrichment_status: EnrichmentStatus = EnrichmentStatus.PENDING
    last_enriched_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.description) and bool(self.company_size)

    @property
    def is_cache_hit(self) -> bool:
        """Enriched and complete records are served without calling the provider."""
        return self.enrichment_status == EnrichmentStatus.ENRICHED and self.is_complete


class ExternalAccount(Document):
    """A provider account usable for profile/company calls."""

    account_id: str = Field(..., min_length=1)
    label: Optional[str] = None
    active: bool = True
