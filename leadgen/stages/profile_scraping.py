"""
Profile scraping stage and provider payload normalization.

The provider returns loosely shaped JSON; everything is normalized here into
ProfileSnapshot / CompanySnapshot before it reaches a WorkItem or an
EnrichmentRecord.
"""

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from leadgen.common.account_selector import AccountSelector
from leadgen.common.errors import ValidationError
from leadgen.common.models import WorkExperience, WorkItem, utc_now
from leadgen.common.rate_limiter import AccountRateLimiter
from leadgen.common.workflow_events import Stage
from leadgen.common.unipile_client import UnipileClient
from leadgen.stages.base import PipelineStage

logger = logging.getLogger(__name__)

MAX_WORK_HISTORY = 5


class ProfileSnapshot(BaseModel):
    """Normalized author profile."""
    company_name: Optional[str] = None
    company_id: Optional[str] = None
    position: Optional[str] = None
    is_current: bool = False
    provider_id: Optional[str] = None
    phone: Optional[str] = None
    work_history: List[WorkExperience] = Field(default_factory=list)
    account_id: Optional[str] = None


class CompanySnapshot(BaseModel):
    """Normalized company page."""
    name: Optional[str] = None
    description: Optional[str] = None
    industry: Optional[str] = None
    company_size: Optional[str] = None
    headquarters: Optional[str] = None
    website: Optional[str] = None
    follower_count: Optional[int] = None


# ===== Normalization =====

def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def normalize_date(value: Any, is_end: bool = False) -> Optional[str]:
    """
    Provider dates come as strings or {year, month, day} objects.

    Year-only objects map to January 1st (start) or December 31st (end).
    """
    if value in (None, ""):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and value.get("year"):
        year = int(value["year"])
        month = value.get("month")
        if month:
            return f"{year:04d}-{int(month):02d}-01"
        return f"{year:04d}-12-31" if is_end else f"{year:04d}-01-01"
    return None


def _to_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def duration_in_months(start: Optional[str], end: Optional[str], today: Optional[date] = None) -> Optional[int]:
    start_date = _to_date(start)
    if start_date is None:
        return None
    end_date = _to_date(end) or today or date.today()
    months = (end_date.year - start_date.year) * 12 + (end_date.month - start_date.month)
    return max(months, 0)


def _experiences(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    experiences = payload.get("work_experience")
    if not experiences:
        experiences = (payload.get("linkedin_profile") or {}).get("experience")
    return [e for e in (experiences or []) if isinstance(e, dict)]


def _to_experience(raw: Dict[str, Any]) -> WorkExperience:
    start = normalize_date(raw.get("start"))
    end = normalize_date(raw.get("end"), is_end=True)
    return WorkExperience(
        company_name=_as_str(_first(raw, "company", "companyName")),
        company_id=_as_str(_first(raw, "company_id", "companyId")),
        position=_as_str(_first(raw, "position", "title")),
        start_date=start,
        end_date=end,
        is_current=not raw.get("end"),
        duration_months=duration_in_months(start, end),
    )


def _phone(payload: Dict[str, Any]) -> Optional[str]:
    numbers = payload.get("phone_numbers")
    if isinstance(numbers, list) and numbers:
        first = numbers[0]
        return _as_str(first.get("number") if isinstance(first, dict) else first)
    contact_info = payload.get("contact_info") or {}
    return _as_str(_first(payload, "phone") or contact_info.get("phone"))


def normalize_profile(payload: Dict[str, Any]) -> ProfileSnapshot:
    """
    Current role = first experience without an end date, else the first one.

    Raises:
        ValidationError: If payload is not an object
    """
    if not isinstance(payload, dict):
        raise ValidationError(f"Profile payload must be an object, got {type(payload).__name__}")

    experiences = [_to_experience(raw) for raw in _experiences(payload)]
    current = next((e for e in experiences if e.is_current), experiences[0] if experiences else None)
    linkedin_profile = payload.get("linkedin_profile") or {}

    return ProfileSnapshot(
        company_name=current.company_name if current else None,
        company_id=current.company_id if current else None,
        position=current.position if current else None,
        is_current=current.is_current if current else False,
        provider_id=_as_str(
            _first(payload, "provider_id", "public_identifier", "publicIdentifier")
            or linkedin_profile.get("publicIdentifier")
        ),
        phone=_phone(payload),
        work_history=experiences[:MAX_WORK_HISTORY],
    )


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _size(payload: Dict[str, Any]) -> Optional[str]:
    size = _first(payload, "company_size", "companySize", "staff_count", "employee_count")
    if isinstance(size, dict):
        low, high = size.get("min"), size.get("max")
        if low and high:
            return f"{low}-{high}"
        return _as_str(low or high)
    return _as_str(size)


def _headquarters(payload: Dict[str, Any]) -> Optional[str]:
    hq = _first(payload, "headquarters", "location")
    if isinstance(hq, dict):
        parts = [hq.get("city"), hq.get("country")]
        return ", ".join(p for p in parts if p) or None
    if isinstance(hq, list):
        return _headquarters({"headquarters": hq[0]}) if hq else None
    return _as_str(hq)


def normalize_company(payload: Dict[str, Any]) -> CompanySnapshot:
    """
    Raises:
        ValidationError: If payload is not an object
    """
    if not isinstance(payload, dict):
        raise ValidationError(f"Company payload must be an object, got {type(payload).__name__}")

    industry = _first(payload, "industry")
    if isinstance(industry, list):
        industry = ", ".join(str(i) for i in industry)

    return CompanySnapshot(
        name=_as_str(_first(payload, "name")),
        description=_as_str(_first(payload, "description", "about")),
        industry=_as_str(industry),
        company_size=_size(payload),
        headquarters=_headquarters(payload),
        website=_as_str(_first(payload, "website")),
        follower_count=_int_or_none(_first(payload, "follower_count", "followerCount", "followers_count")),
    )


# ===== Stage =====

class ProfileScrapingStage(PipelineStage):
    """
    Scrape the post author's profile through a rate-limited account.

    Without account_id the stage picks the longest idle account and takes a
    limiter slot itself. With account_id the caller (BatchDistributor)
    already holds that account's slot.
    """

    name = Stage.PROFILE_SCRAPING
    result_model = ProfileSnapshot

    def __init__(
        self,
        client: UnipileClient,
        limiter: AccountRateLimiter,
        account_pool: Callable[[], Sequence[str]],
        selector: Optional[AccountSelector] = None,
    ):
        self.client = client
        self.limiter = limiter
        self.account_pool = account_pool
        self.selector = selector or AccountSelector(limiter)

    async def run(self, item: WorkItem, account_id: Optional[str] = None, **kwargs: Any) -> ProfileSnapshot:
        if not item.author_profile_id:
            raise ValidationError(f"Work item {item.id} has no author profile id")

        if account_id is None:
            account_id = self.selector.pick_account(self.account_pool())
            payload = await self.limiter.call(
                account_id, self.client.get_profile, account_id, item.author_profile_id
            )
        else:
            payload = await self.client.get_profile(account_id, item.author_profile_id)

        snapshot = normalize_profile(payload)
        snapshot.account_id = account_id
        return snapshot

    def parse_result(self, payload: Dict[str, Any]) -> ProfileSnapshot:
        # Callbacks post the raw provider profile
        return normalize_profile(payload)

    def to_fields(self, result: ProfileSnapshot) -> Dict[str, Any]:
        return {
            "company_name": result.company_name,
            "company_id": result.company_id,
            "position": result.position,
            "is_current_position": result.is_current,
            "profile_provider_id": result.provider_id,
            "phone": result.phone,
            "work_history": [e.model_dump() for e in result.work_history],
            "scraped_by_account": result.account_id,
            "scraped_at": utc_now(),
        }
