"""
In-memory collaborators for unit tests.

Repositories keep pydantic models in dicts and apply updates by re-validating
the merged document, so tests observe the same types the MongoDB
implementation returns. Every mutating call is recorded in ``writes``.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from leadgen.common.errors import DuplicateRecordError
from leadgen.common.models import EnrichmentRecord, EnrichmentStatus, Lead, WorkItem, utc_now
from leadgen.common.repositories import Repositories
from leadgen.common.repositories.base import (
    AccountRepositoryInterface,
    CompanyRepositoryInterface,
    LeadRepositoryInterface,
    ReferenceDataRepositoryInterface,
    WorkItemRepositoryInterface,
    WriteResult,
)
from leadgen.common.state import TERMINAL_STATUSES, ProcessingStatus
from leadgen.stages.prompts import (
    APPROACH_MESSAGE_SYSTEM_PROMPT,
    CATEGORIZATION_SYSTEM_PROMPT,
    LOCATION_SYSTEM_PROMPT,
    RECRUITMENT_SYSTEM_PROMPT,
)


def _merge(model, fields: Dict[str, Any]):
    document = model.model_dump(by_alias=True)
    document.update(fields)
    return type(model).model_validate(document)


# ===== Repositories =====

class InMemoryWorkItemRepository(WorkItemRepositoryInterface):
    def __init__(self, items: Sequence[WorkItem] = ()):
        self.items: Dict[str, WorkItem] = {item.id: item for item in items}
        self.writes: List[tuple] = []

    def get(self, item_id: str) -> Optional[WorkItem]:
        return self.items.get(item_id)

    def insert(self, item: WorkItem) -> bool:
        if item.id in self.items:
            return False
        if item.urn and any(existing.urn == item.urn for existing in self.items.values()):
            return False
        self.items[item.id] = item
        self.writes.append(("insert", item.id, {}))
        return True

    def update_status(self, item_id, expected_status, fields) -> bool:
        item = self.items.get(item_id)
        if item is None or item.processing_status != expected_status:
            return False
        self.items[item_id] = _merge(item, fields)
        self.writes.append(("update_status", item_id, dict(fields)))
        return True

    def increment_retry(self, item_id, expected_status, fields) -> Optional[int]:
        item = self.items.get(item_id)
        if item is None or item.processing_status != expected_status:
            return None
        count = item.retry_count + 1
        self.items[item_id] = _merge(item, {**fields, "retry_count": count})
        self.writes.append(("increment_retry", item_id, dict(fields)))
        return count

    def update_fields(self, item_id, fields) -> bool:
        item = self.items.get(item_id)
        if item is None:
            return False
        self.items[item_id] = _merge(item, fields)
        self.writes.append(("update_fields", item_id, dict(fields)))
        return True

    def find_recoverable(self, now, stale_before, limit=100) -> List[WorkItem]:
        found = []
        for item in self.items.values():
            if item.processing_status in TERMINAL_STATUSES or item.needs_attention:
                continue
            due = item.next_retry_at is not None and item.next_retry_at <= now
            stale = item.next_retry_at is None and item.updated_at < stale_before
            if due or stale:
                found.append(item)
        return found[:limit]

    def find_needing_attention(self, limit=100) -> List[WorkItem]:
        return [item for item in self.items.values() if item.needs_attention][:limit]

    def find_by_status(self, status, limit=100) -> List[WorkItem]:
        return [item for item in self.items.values() if item.processing_status == status][:limit]

    def delete_by_dataset(self, dataset_id: str) -> int:
        doomed = [item_id for item_id, item in self.items.items() if item.dataset_id == dataset_id]
        for item_id in doomed:
            del self.items[item_id]
        return len(doomed)


class InMemoryLeadRepository(LeadRepositoryInterface):
    def __init__(self, leads: Sequence[Lead] = ()):
        self.leads: Dict[str, Lead] = {lead.id: lead for lead in leads}
        self.writes: List[tuple] = []

    def get(self, lead_id: str) -> Optional[Lead]:
        return self.leads.get(lead_id)

    def find_by_source_item(self, item_id: str) -> Optional[Lead]:
        return next((lead for lead in self.leads.values() if item_id in lead.item_ids), None)

    def find_by_author(self, author_profile_id: str) -> Optional[Lead]:
        return next(
            (lead for lead in self.leads.values() if lead.author_profile_id == author_profile_id),
            None,
        )

    def insert(self, lead: Lead) -> None:
        if lead.author_profile_id and self.find_by_author(lead.author_profile_id):
            raise DuplicateRecordError("Lead", lead.author_profile_id)
        if any(existing.source_item_id == lead.source_item_id for existing in self.leads.values()):
            raise DuplicateRecordError("Lead", lead.source_item_id)
        self.leads[lead.id] = lead
        self.writes.append(("insert", lead.id, {}))

    def link_item(self, lead_id, item_id, fields) -> bool:
        lead = self.leads.get(lead_id)
        if lead is None:
            return False
        item_ids = lead.item_ids if item_id in lead.item_ids else lead.item_ids + [item_id]
        self.leads[lead_id] = _merge(lead, {**fields, "item_ids": item_ids})
        self.writes.append(("link_item", lead_id, dict(fields)))
        return True

    def update_if_status(self, lead_id, expected_status, fields, unset=()) -> bool:
        lead = self.leads.get(lead_id)
        if lead is None or lead.status != expected_status:
            return False
        self.leads[lead_id] = _merge(lead, {**fields, **{name: None for name in unset}})
        self.writes.append(("update_if_status", lead_id, dict(fields)))
        return True


class InMemoryCompanyRepository(CompanyRepositoryInterface):
    def __init__(self, records: Sequence[EnrichmentRecord] = ()):
        self.records: Dict[str, EnrichmentRecord] = {r.company_id: r for r in records}

    def get(self, company_id: str) -> Optional[EnrichmentRecord]:
        return self.records.get(company_id)

    def upsert(self, record: EnrichmentRecord) -> WriteResult:
        existed = record.company_id in self.records
        self.records[record.company_id] = record
        return WriteResult(
            matched_count=1 if existed else 0,
            modified_count=1 if existed else 0,
            upserted_id=None if existed else record.company_id,
        )

    def set_status(self, company_id, status, error_message=None) -> WriteResult:
        record = self.records.get(company_id) or EnrichmentRecord(company_id=company_id)
        self.records[company_id] = _merge(record, {
            "enrichment_status": EnrichmentStatus(status),
            "error_message": error_message,
        })
        return WriteResult(matched_count=1, modified_count=1)


class InMemoryReferenceDataRepository(ReferenceDataRepositoryInterface):
    """
    Args:
        client_contacts: Profile ids of existing client contacts
        clients: Dicts with id, name, company_id
        hr_providers: Dicts with id, name, company_id
    """

    def __init__(
        self,
        client_contacts: Sequence[str] = (),
        clients: Sequence[Dict[str, Any]] = (),
        hr_providers: Sequence[Dict[str, Any]] = (),
    ):
        self.client_contacts = set(client_contacts)
        self.clients = list(clients)
        self.hr_providers = list(hr_providers)
        self.fail_clients: Optional[Exception] = None
        self.fail_contacts: Optional[Exception] = None

    def is_client_contact(self, profile_id: str) -> bool:
        if self.fail_contacts:
            raise self.fail_contacts
        return profile_id in self.client_contacts

    def find_clients_by_company_ids(self, company_ids):
        if self.fail_clients:
            raise self.fail_clients
        return [c for c in self.clients if c["company_id"] in company_ids]

    def find_hr_providers_by_company_ids(self, company_ids):
        return [p for p in self.hr_providers if p["company_id"] in company_ids]


class InMemoryAccountRepository(AccountRepositoryInterface):
    def __init__(self, accounts: Sequence[str] = ("acc-1", "acc-2")):
        self.accounts = list(accounts)

    def list_active_accounts(self) -> List[str]:
        return list(self.accounts)


def make_repositories(
    items: Sequence[WorkItem] = (),
    accounts: Sequence[str] = ("acc-1", "acc-2"),
    reference: Optional[InMemoryReferenceDataRepository] = None,
) -> Repositories:
    return Repositories(
        work_items=InMemoryWorkItemRepository(items),
        leads=InMemoryLeadRepository(),
        companies=InMemoryCompanyRepository(),
        reference=reference or InMemoryReferenceDataRepository(),
        accounts=InMemoryAccountRepository(accounts),
    )


# ===== External capabilities =====

class ScriptedLLM:
    """
    Completion client answering from per-prompt scripts.

    Each script is a list of responses (dicts, or exceptions to raise). The
    last response is repeated once the others are used up.
    """

    KINDS = {
        RECRUITMENT_SYSTEM_PROMPT: "recruitment",
        LOCATION_SYSTEM_PROMPT: "location",
        CATEGORIZATION_SYSTEM_PROMPT: "categorization",
        APPROACH_MESSAGE_SYSTEM_PROMPT: "message",
    }

    def __init__(self, **scripts: List[Any]):
        self.scripts = {kind: list(responses) for kind, responses in scripts.items()}
        self.calls: List[tuple] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        kind = self.KINDS[system_prompt]
        self.calls.append((kind, user_prompt))
        script = self.scripts.get(kind)
        if not script:
            raise AssertionError(f"Unexpected {kind} completion")
        response = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(response, BaseException):
            raise response
        return dict(response)

    def count(self, kind: str) -> int:
        return sum(1 for called, _ in self.calls if called == kind)


class FakeUnipileClient:
    """Provider client returning canned payloads and recording (account, id) per call."""

    def __init__(
        self,
        profiles: Optional[Dict[str, Any]] = None,
        companies: Optional[Dict[str, Any]] = None,
        default_profile: Optional[Dict[str, Any]] = None,
    ):
        self.profiles = profiles or {}
        self.companies = companies or {}
        self.default_profile = default_profile or profile_payload()
        self.profile_calls: List[tuple] = []
        self.company_calls: List[tuple] = []

    async def get_profile(self, account_id: str, profile_id: str) -> Dict[str, Any]:
        self.profile_calls.append((account_id, profile_id))
        response = self.profiles.get(profile_id, self.default_profile)
        if isinstance(response, BaseException):
            raise response
        return response

    async def get_company(self, account_id: str, company_id: str) -> Dict[str, Any]:
        self.company_calls.append((account_id, company_id))
        response = self.companies.get(company_id, company_payload())
        if isinstance(response, BaseException):
            raise response
        return response


class FakeClock:
    """Virtual monotonic clock; sleep() advances it instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class RecordingDispatcher:
    """Dispatcher that records handoffs without running them."""

    def __init__(self):
        self.dispatched: List[tuple] = []

    @property
    def pending(self) -> int:
        return 0

    def dispatch(self, func, *args, name: str = ""):
        self.dispatched.append((getattr(func, "__name__", "task"), args, name))
        return None

    async def drain(self) -> None:
        return None

    def names(self) -> List[str]:
        return [name for _, _, name in self.dispatched]


# ===== Builders =====

def make_item(item_id: str = "post-1", **overrides: Any) -> WorkItem:
    data: Dict[str, Any] = {
        "_id": item_id,
        "urn": f"urn:li:activity:{item_id}",
        "dataset_id": "dataset-1",
        "title": "Nous recrutons",
        "text": "Nous recrutons un Développeur Python à Paris pour renforcer notre équipe produit.",
        "url": f"https://www.linkedin.com/posts/{item_id}",
        "author_name": "Marie Dupont",
        "author_profile_id": "ACoAAB-marie",
        "author_headline": "CTO chez Acme",
        "posted_at": datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return WorkItem.model_validate(data)


def enriched_item(item_id: str = "post-1", **overrides: Any) -> WorkItem:
    data: Dict[str, Any] = {
        "processing_status": ProcessingStatus.ENRICHED,
        "stage1_is_recruiting": True,
        "stage1_positions": "Développeur Python",
        "stage2_passed": True,
        "stage3_category": "Tech",
        "stage3_positions": ["développeur python"],
        "company_name": "Acme",
        "company_id": "1001",
        "position": "CTO",
        "is_current_position": True,
        "work_history": [
            {"company_name": "Acme", "company_id": "1001", "position": "CTO", "is_current": True},
            {"company_name": "Globex", "company_id": "2002", "position": "Lead dev"},
        ],
    }
    data.update(overrides)
    return make_item(item_id, **data)


def profile_payload(company: str = "Acme", company_id: str = "1001") -> Dict[str, Any]:
    return {
        "provider_id": "ACoAAB-marie",
        "phone_numbers": [{"number": "+33 6 12 34 56 78"}],
        "work_experience": [
            {
                "company": company,
                "company_id": company_id,
                "position": "CTO",
                "start": {"year": 2021, "month": 4},
                "end": None,
            },
            {
                "company": "Globex",
                "company_id": "2002",
                "position": "Lead dev",
                "start": {"year": 2016},
                "end": {"year": 2021},
            },
        ],
    }


def company_payload(name: str = "Acme") -> Dict[str, Any]:
    return {
        "name": name,
        "description": "Éditeur de logiciels B2B",
        "industry": ["Software Development"],
        "company_size": {"min": 51, "max": 200},
        "headquarters": [{"city": "Paris", "country": "FR"}],
        "website": "https://acme.example",
        "follower_count": 1200,
    }


def verdicts_for_paris_post() -> Dict[str, List[Any]]:
    return {
        "recruitment": [{"recrute_poste": "Oui", "postes": "Développeur Python"}],
        "location": [{
            "reponse": "Oui",
            "langue": "français",
            "localisation_detectee": "Paris",
            "raison": "Poste basé à Paris",
        }],
        "categorization": [{
            "categorie": "Tech",
            "postes_selectionnes": ["développeur python"],
            "justification": "Poste de développement logiciel",
        }],
        "message": [{
            "message_approche": "Bonjour Marie,\n\nJ'ai vu que vous recherchiez un développeur python.\n\nBonne journée"
        }],
    }


def past(seconds: int) -> datetime:
    return utc_now() - timedelta(seconds=seconds)
