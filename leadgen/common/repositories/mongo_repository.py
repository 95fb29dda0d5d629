"""
MongoDB repositories.

Connection Management:
- One MongoClient per process, created lazily and shared by every repository
- PyMongo handles the connection pool internally

Error Handling:
- Fail-fast: driver errors propagate to the caller
- Duplicate-key errors on inserts are translated to DuplicateRecordError
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from leadgen.common.errors import DuplicateRecordError
from leadgen.common.models import EnrichmentRecord, EnrichmentStatus, ExternalAccount, Lead, WorkItem, utc_now
from leadgen.common.state import NON_TERMINAL_STATUSES, LeadStatus, ProcessingStatus

from .base import (
    AccountRepositoryInterface,
    CompanyRepositoryInterface,
    LeadRepositoryInterface,
    ReferenceDataRepositoryInterface,
    WorkItemRepositoryInterface,
    WriteResult,
)

logger = logging.getLogger(__name__)


class MongoConnection:
    """
    Lazily connected database handle shared by all repositories.
    """

    _client: Optional[MongoClient] = None
    _db: Optional[Database] = None

    def __init__(self, mongodb_uri: str, database: str = "leadgen"):
        self._mongodb_uri = mongodb_uri
        self._database_name = database

    def collection(self, name: str) -> Collection:
        if MongoConnection._db is None:
            MongoConnection._client = MongoClient(self._mongodb_uri, tz_aware=True)
            MongoConnection._db = MongoConnection._client[self._database_name]
            logger.info(f"MongoDB connected: {self._database_name}")
        return MongoConnection._db[name]

    @classmethod
    def reset(cls) -> None:
        """Close the shared client (tests, shutdown)."""
        if cls._client is not None:
            cls._client.close()
        cls._client = None
        cls._db = None


def _statuses(values: Sequence[Any]) -> List[str]:
    return [getattr(v, "value", v) for v in values]


def _to_bson(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "model_dump"):
        return _to_bson(value.model_dump())
    if isinstance(value, dict):
        return {k: _to_bson(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_bson(v) for v in value]
    return value


def _serialize(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Enum members and nested models become plain BSON-friendly values."""
    return _to_bson(dict(fields))


class MongoWorkItemRepository(WorkItemRepositoryInterface):
    """Work items stored in the linkedin_posts collection."""

    def __init__(self, connection: MongoConnection, collection: str = "linkedin_posts"):
        self._connection = connection
        self._collection_name = collection

    @property
    def collection(self) -> Collection:
        return self._connection.collection(self._collection_name)

    def ensure_indexes(self) -> None:
        self.collection.create_index(
            [("urn", ASCENDING)],
            unique=True,
            partialFilterExpression={"urn": {"$type": "string"}},
        )
        self.collection.create_index([("processing_status", ASCENDING), ("updated_at", ASCENDING)])
        self.collection.create_index([("dataset_id", ASCENDING)])

    def get(self, item_id: str) -> Optional[WorkItem]:
        document = self.collection.find_one({"_id": item_id})
        return WorkItem.from_document(document) if document else None

    def insert(self, item: WorkItem) -> bool:
        if item.urn and self.collection.find_one({"urn": item.urn}, {"_id": 1}):
            logger.info(f"Skipping item {item.id}: urn {item.urn} already ingested")
            return False
        try:
            self.collection.insert_one(_serialize(item.to_document()))
        except DuplicateKeyError:
            return False
        return True

    def update_status(
        self,
        item_id: str,
        expected_status: ProcessingStatus,
        fields: Dict[str, Any],
    ) -> bool:
        result = self.collection.update_one(
            {"_id": item_id, "processing_status": ProcessingStatus(expected_status).value},
            {"$set": _serialize(fields)},
        )
        return result.matched_count == 1

    def increment_retry(
        self,
        item_id: str,
        expected_status: ProcessingStatus,
        fields: Dict[str, Any],
    ) -> Optional[int]:
        document = self.collection.find_one_and_update(
            {"_id": item_id, "processing_status": ProcessingStatus(expected_status).value},
            {"$inc": {"retry_count": 1}, "$set": _serialize(fields)},
            projection={"retry_count": 1},
            return_document=ReturnDocument.AFTER,
        )
        return document["retry_count"] if document else None

    def update_fields(self, item_id: str, fields: Dict[str, Any]) -> bool:
        result = self.collection.update_one({"_id": item_id}, {"$set": _serialize(fields)})
        return result.matched_count == 1

    def find_recoverable(
        self,
        now: datetime,
        stale_before: datetime,
        limit: int = 100,
    ) -> List[WorkItem]:
        query = {
            "processing_status": {"$in": _statuses(NON_TERMINAL_STATUSES)},
            "needs_attention": {"$ne": True},
            "$or": [
                {"next_retry_at": {"$lte": now}},
                {"next_retry_at": None, "updated_at": {"$lt": stale_before}},
            ],
        }
        cursor = self.collection.find(query).sort("updated_at", ASCENDING).limit(limit)
        return [WorkItem.from_document(doc) for doc in cursor]

    def find_needing_attention(self, limit: int = 100) -> List[WorkItem]:
        cursor = self.collection.find({"needs_attention": True}).limit(limit)
        return [WorkItem.from_document(doc) for doc in cursor]

    def find_by_status(self, status: ProcessingStatus, limit: int = 100) -> List[WorkItem]:
        cursor = self.collection.find(
            {"processing_status": ProcessingStatus(status).value}
        ).sort("created_at", ASCENDING).limit(limit)
        return [WorkItem.from_document(doc) for doc in cursor]

    def delete_by_dataset(self, dataset_id: str) -> int:
        result = self.collection.delete_many({"dataset_id": dataset_id})
        logger.info(f"Deleted {result.deleted_count} items from dataset {dataset_id}")
        return result.deleted_count


class MongoLeadRepository(LeadRepositoryInterface):
    """Leads collection; one lead per author profile."""

    def __init__(self, connection: MongoConnection, collection: str = "leads"):
        self._connection = connection
        self._collection_name = collection

    @property
    def collection(self) -> Collection:
        return self._connection.collection(self._collection_name)

    def ensure_indexes(self) -> None:
        self.collection.create_index(
            [("author_profile_id", ASCENDING)],
            unique=True,
            partialFilterExpression={"author_profile_id": {"$type": "string"}},
        )
        self.collection.create_index([("source_item_id", ASCENDING)], unique=True)
        self.collection.create_index([("item_ids", ASCENDING)])

    def get(self, lead_id: str) -> Optional[Lead]:
        document = self.collection.find_one({"_id": lead_id})
        return Lead.from_document(document) if document else None

    def find_by_source_item(self, item_id: str) -> Optional[Lead]:
        document = self.collection.find_one({"item_ids": item_id})
        return Lead.from_document(document) if document else None

    def find_by_author(self, author_profile_id: str) -> Optional[Lead]:
        document = self.collection.find_one({"author_profile_id": author_profile_id})
        return Lead.from_document(document) if document else None

    def insert(self, lead: Lead) -> None:
        try:
            self.collection.insert_one(_serialize(lead.to_document()))
        except DuplicateKeyError as e:
            raise DuplicateRecordError("Lead", lead.author_profile_id or lead.source_item_id) from e

    def link_item(self, lead_id: str, item_id: str, fields: Dict[str, Any]) -> bool:
        result = self.collection.update_one(
            {"_id": lead_id},
            {"$addToSet": {"item_ids": item_id}, "$set": _serialize(fields)},
        )
        return result.matched_count == 1

    def update_if_status(
        self,
        lead_id: str,
        expected_status: LeadStatus,
        fields: Dict[str, Any],
        unset: Sequence[str] = (),
    ) -> bool:
        update: Dict[str, Any] = {"$set": _serialize(fields)}
        if unset:
            update["$unset"] = {name: "" for name in unset}
        result = self.collection.update_one(
            {"_id": lead_id, "status": LeadStatus(expected_status).value},
            update,
        )
        return result.matched_count == 1


class MongoCompanyRepository(CompanyRepositoryInterface):
    """Company enrichment cache."""

    def __init__(self, connection: MongoConnection, collection: str = "companies"):
        self._connection = connection
        self._collection_name = collection

    @property
    def collection(self) -> Collection:
        return self._connection.collection(self._collection_name)

    def ensure_indexes(self) -> None:
        self.collection.create_index([("company_id", ASCENDING)], unique=True)

    def get(self, company_id: str) -> Optional[EnrichmentRecord]:
        document = self.collection.find_one({"company_id": company_id})
        return EnrichmentRecord.from_document(document) if document else None

    def upsert(self, record: EnrichmentRecord) -> WriteResult:
        result = self.collection.update_one(
            {"company_id": record.company_id},
            {"$set": {**_serialize(record.to_document()), "updated_at": utc_now()}},
            upsert=True,
        )
        return WriteResult(
            matched_count=result.matched_count,
            modified_count=result.modified_count,
            upserted_id=str(result.upserted_id) if result.upserted_id else None,
        )

    def set_status(
        self,
        company_id: str,
        status: EnrichmentStatus,
        error_message: Optional[str] = None,
    ) -> WriteResult:
        result = self.collection.update_one(
            {"company_id": company_id},
            {"$set": {
                "enrichment_status": EnrichmentStatus(status).value,
                "error_message": error_message,
                "updated_at": utc_now(),
            }},
            upsert=True,
        )
        return WriteResult(
            matched_count=result.matched_count,
            modified_count=result.modified_count,
            upserted_id=str(result.upserted_id) if result.upserted_id else None,
        )


class MongoReferenceDataRepository(ReferenceDataRepositoryInterface):
    """Clients, client contacts and HR providers maintained by the CRM."""

    def __init__(
        self,
        connection: MongoConnection,
        clients: str = "clients",
        client_contacts: str = "client_contacts",
        hr_providers: str = "hr_providers",
    ):
        self._connection = connection
        self._clients = clients
        self._client_contacts = client_contacts
        self._hr_providers = hr_providers

    def is_client_contact(self, profile_id: str) -> bool:
        document = self._connection.collection(self._client_contacts).find_one(
            {"linkedin_profile_id": profile_id}, {"_id": 1}
        )
        return document is not None

    def find_clients_by_company_ids(self, company_ids: Sequence[str]) -> List[Dict[str, Any]]:
        if not company_ids:
            return []
        cursor = self._connection.collection(self._clients).find(
            {"company_linkedin_id": {"$in": list(company_ids)}, "tracking_enabled": True},
            {"company_name": 1, "company_linkedin_id": 1},
        )
        return [
            {"id": str(doc["_id"]), "name": doc.get("company_name"), "company_id": doc.get("company_linkedin_id")}
            for doc in cursor
        ]

    def find_hr_providers_by_company_ids(self, company_ids: Sequence[str]) -> List[Dict[str, Any]]:
        if not company_ids:
            return []
        cursor = self._connection.collection(self._hr_providers).find(
            {"company_linkedin_id": {"$in": list(company_ids)}},
            {"company_name": 1, "company_linkedin_id": 1},
        )
        return [
            {"id": str(doc["_id"]), "name": doc.get("company_name"), "company_id": doc.get("company_linkedin_id")}
            for doc in cursor
        ]


class MongoAccountRepository(AccountRepositoryInterface):
    """Provider accounts (unipile_accounts collection)."""

    def __init__(self, connection: MongoConnection, collection: str = "unipile_accounts"):
        self._connection = connection
        self._collection_name = collection

    def list_active_accounts(self) -> List[str]:
        cursor = self._connection.collection(self._collection_name).find(
            {"active": True}, {"account_id": 1, "label": 1, "active": 1}
        ).sort("account_id", ASCENDING)
        accounts = [ExternalAccount.from_document(doc) for doc in cursor if doc.get("account_id")]
        return [account.account_id for account in accounts if account.active]
