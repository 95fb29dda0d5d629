"""
Tests for the MongoDB repository implementations.

The collection is a MagicMock; tests check the filters and update documents
sent to the driver and the translation of driver results.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from pymongo.errors import DuplicateKeyError

from leadgen.common.errors import DuplicateRecordError
from leadgen.common.models import EnrichmentStatus, Lead, WorkExperience, WorkItem
from leadgen.common.repositories.mongo_repository import (
    MongoAccountRepository,
    MongoCompanyRepository,
    MongoConnection,
    MongoLeadRepository,
    MongoReferenceDataRepository,
    MongoWorkItemRepository,
    _serialize,
)
from leadgen.common.state import LeadStatus, ProcessingStatus


@pytest.fixture
def collection():
    return MagicMock()


@pytest.fixture
def connection(collection):
    conn = MagicMock(spec=MongoConnection)
    conn.collection.return_value = collection
    return conn


def work_item_document(**overrides):
    document = {
        "_id": "post-1",
        "urn": "urn:li:activity:1",
        "text": "Nous recrutons",
        "processing_status": "stage1_done",
        "retry_count": 0,
    }
    document.update(overrides)
    return document


class TestSerialize:
    def test_enums_and_models_become_plain_values(self):
        fields = {
            "processing_status": ProcessingStatus.ENRICHED,
            "work_history": [WorkExperience(company_name="Acme", company_id="1001")],
            "nested": {"status": LeadStatus.COMPLETED},
        }

        serialized = _serialize(fields)

        assert serialized["processing_status"] == "enriched"
        assert serialized["work_history"][0]["company_id"] == "1001"
        assert serialized["nested"] == {"status": "completed"}


class TestMongoConnection:
    def test_client_created_once(self, mock_mongodb):
        """Every collection shares the lazily created client."""
        connection = MongoConnection("mongodb://localhost:27017", database="leadgen")

        connection.collection("linkedin_posts")
        connection.collection("leads")

        mock_mongodb.assert_called_once_with("mongodb://localhost:27017", tz_aware=True)


class TestMongoWorkItemRepository:
    def test_get_returns_model(self, connection, collection):
        collection.find_one.return_value = work_item_document()

        item = MongoWorkItemRepository(connection).get("post-1")

        assert isinstance(item, WorkItem)
        assert item.processing_status == ProcessingStatus.STAGE1_DONE
        collection.find_one.assert_called_once_with({"_id": "post-1"})

    def test_get_missing(self, connection, collection):
        collection.find_one.return_value = None

        assert MongoWorkItemRepository(connection).get("post-404") is None

    def test_update_status_is_conditional(self, connection, collection):
        collection.update_one.return_value = MagicMock(matched_count=1)

        written = MongoWorkItemRepository(connection).update_status(
            "post-1",
            ProcessingStatus.STAGE1_DONE,
            {"processing_status": ProcessingStatus.STAGE2_DONE, "stage2_passed": True},
        )

        assert written is True
        collection.update_one.assert_called_once_with(
            {"_id": "post-1", "processing_status": "stage1_done"},
            {"$set": {"processing_status": "stage2_done", "stage2_passed": True}},
        )

    def test_update_status_no_match(self, connection, collection):
        collection.update_one.return_value = MagicMock(matched_count=0)

        written = MongoWorkItemRepository(connection).update_status(
            "post-1", ProcessingStatus.STAGE1_DONE, {"processing_status": ProcessingStatus.STAGE2_DONE}
        )

        assert written is False

    def test_increment_retry_returns_new_count(self, connection, collection):
        collection.find_one_and_update.return_value = {"_id": "post-1", "retry_count": 2}

        count = MongoWorkItemRepository(connection).increment_retry(
            "post-1", ProcessingStatus.STAGE3_DONE, {"last_error_disposition": "rate_limited"}
        )

        assert count == 2
        filter_doc, update = collection.find_one_and_update.call_args.args
        assert filter_doc == {"_id": "post-1", "processing_status": "stage3_done"}
        assert update["$inc"] == {"retry_count": 1}

    def test_increment_retry_when_status_moved(self, connection, collection):
        collection.find_one_and_update.return_value = None

        count = MongoWorkItemRepository(connection).increment_retry(
            "post-1", ProcessingStatus.STAGE3_DONE, {}
        )

        assert count is None

    def test_insert_skips_known_urn(self, connection, collection):
        collection.find_one.return_value = {"_id": "other"}
        item = WorkItem.model_validate(work_item_document(processing_status="pending"))

        assert MongoWorkItemRepository(connection).insert(item) is False
        collection.insert_one.assert_not_called()

    def test_insert_duplicate_id(self, connection, collection):
        collection.find_one.return_value = None
        collection.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        item = WorkItem.model_validate(work_item_document(processing_status="pending"))

        assert MongoWorkItemRepository(connection).insert(item) is False

    def test_find_recoverable_excludes_terminal_and_flagged(self, connection, collection):
        cursor = MagicMock()
        cursor.sort.return_value.limit.return_value = [work_item_document()]
        collection.find.return_value = cursor
        now = datetime(2024, 5, 1, tzinfo=timezone.utc)

        items = MongoWorkItemRepository(connection).find_recoverable(now, now, limit=10)

        assert [i.id for i in items] == ["post-1"]
        query = collection.find.call_args.args[0]
        assert set(query["processing_status"]["$in"]) == {
            "pending", "stage1_done", "stage2_done", "stage3_done", "enriched",
        }
        assert query["needs_attention"] == {"$ne": True}


    def test_delete_by_dataset(self, connection, collection):
        """Reprocessing a dataset starts by deleting its items."""
        collection.delete_many.return_value = MagicMock(deleted_count=4)

        deleted = MongoWorkItemRepository(connection).delete_by_dataset("dataset-1")

        assert deleted == 4
        collection.delete_many.assert_called_once_with({"dataset_id": "dataset-1"})


class TestMongoLeadRepository:
    def test_duplicate_author_raises(self, connection, collection):
        collection.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        lead = Lead.model_validate({"_id": "lead-1", "source_item_id": "post-1", "author_profile_id": "ACoAAB"})

        with pytest.raises(DuplicateRecordError):
            MongoLeadRepository(connection).insert(lead)

    def test_link_item_adds_to_set(self, connection, collection):
        collection.update_one.return_value = MagicMock(matched_count=1)

        MongoLeadRepository(connection).link_item("lead-1", "post-2", {"status": LeadStatus.COMPLETED})

        collection.update_one.assert_called_once_with(
            {"_id": "lead-1"},
            {"$addToSet": {"item_ids": "post-2"}, "$set": {"status": "completed"}},
        )

    def test_update_if_status_unsets_fields(self, connection, collection):
        collection.update_one.return_value = MagicMock(matched_count=1)

        MongoLeadRepository(connection).update_if_status(
            "lead-1",
            LeadStatus.FILTERED_HR_PROVIDER,
            {"status": LeadStatus.COMPLETED},
            unset=("matched_hr_provider_id",),
        )

        filter_doc, update = collection.update_one.call_args.args
        assert filter_doc == {"_id": "lead-1", "status": "filtered_hr_provider"}
        assert update["$unset"] == {"matched_hr_provider_id": ""}


class TestMongoCompanyRepository:
    def test_set_status_upserts(self, connection, collection):
        collection.update_one.return_value = MagicMock(matched_count=0, modified_count=0, upserted_id="abc")

        result = MongoCompanyRepository(connection).set_status("1001", EnrichmentStatus.PROCESSING)

        assert result.upserted_id == "abc"
        filter_doc, update = collection.update_one.call_args.args
        assert filter_doc == {"company_id": "1001"}
        assert update["$set"]["enrichment_status"] == "processing"
        assert collection.update_one.call_args.kwargs["upsert"] is True


class TestMongoReferenceDataRepository:
    def test_clients_mapped_to_plain_dicts(self, connection, collection):
        collection.find.return_value = [
            {"_id": "cl-1", "company_name": "Acme", "company_linkedin_id": "1001"},
        ]

        clients = MongoReferenceDataRepository(connection).find_clients_by_company_ids(["1001"])

        assert clients == [{"id": "cl-1", "name": "Acme", "company_id": "1001"}]

    def test_empty_ids_skip_query(self, connection, collection):
        repo = MongoReferenceDataRepository(connection)

        assert repo.find_hr_providers_by_company_ids([]) == []
        collection.find.assert_not_called()

    def test_client_contact_lookup(self, connection, collection):
        collection.find_one.return_value = {"_id": "contact-1"}

        assert MongoReferenceDataRepository(connection).is_client_contact("ACoAAB") is True


class TestMongoAccountRepository:
    def test_lists_active_account_ids(self, connection, collection):
        cursor = MagicMock()
        cursor.sort.return_value = [{"account_id": "acc-1"}, {"account_id": ""}, {"account_id": "acc-2"}]
        collection.find.return_value = cursor

        assert MongoAccountRepository(connection).list_active_accounts() == ["acc-1", "acc-2"]
