"""
Tests for the pipeline callback API.

Services are built with in-memory fakes and attached to the app directly;
TestClient is used without the context manager so the startup hook does not
build real services.
"""

import pytest
from fastapi.testclient import TestClient
from tenacity import wait_none

from leadgen.api.app import create_app
from leadgen.common.errors import NoAccountsAvailable
from leadgen.common.models import EnrichmentRecord, EnrichmentStatus, Lead
from leadgen.common.rate_limiter import AccountRateLimiter
from leadgen.common.state import LeadStatus, ProcessingStatus
from leadgen.services.pipeline_factory import create_pipeline
from leadgen.services.workflow_notifier import WorkflowNotifier
from leadgen.stages.message_generation import MessageGenerator

from helpers.fakes import (
    FakeUnipileClient,
    RecordingDispatcher,
    ScriptedLLM,
    make_item,
    make_repositories,
    verdicts_for_paris_post,
)

LOCATION_PAYLOAD = verdicts_for_paris_post()["location"][0]


@pytest.fixture
def services():
    llm = ScriptedLLM(**verdicts_for_paris_post())
    repositories = make_repositories([
        make_item("post-1", processing_status=ProcessingStatus.STAGE1_DONE, stage1_is_recruiting=True),
        make_item("post-2", processing_status=ProcessingStatus.FILTERED_OUT),
        make_item("post-3", processing_status=ProcessingStatus.STAGE3_DONE, needs_attention=True, retry_count=3),
    ])
    repositories.companies.upsert(EnrichmentRecord(
        company_id="1001",
        name="Acme",
        description="Éditeur de logiciels",
        company_size="51-200",
        enrichment_status=EnrichmentStatus.ENRICHED,
    ))
    repositories.leads.insert(Lead.model_validate({
        "_id": "lead-1",
        "source_item_id": "post-9",
        "item_ids": ["post-9"],
        "author_profile_id": "ACoAAB-paul",
        "company_id": "3003",
        "company_name": "Staffing Co",
        "status": LeadStatus.FILTERED_HR_PROVIDER,
        "matched_hr_provider_id": "hr-1",
        "matched_hr_provider_name": "Staffing Co",
    }))
    return create_pipeline(
        repositories=repositories,
        llm=llm,
        client=FakeUnipileClient(),
        limiter=AccountRateLimiter(min_delay_ms=0, max_delay_ms=0),
        dispatcher=RecordingDispatcher(),
        notifier=WorkflowNotifier(webhook_url=""),
        message_generator=MessageGenerator(llm, wait=wait_none()),
        emit_events=False,
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_uninitialized_services(self):
        client = TestClient(create_app())

        response = client.get("/pipeline/attention")

        assert response.status_code == 503


class TestStageCallbacks:
    def test_callback_applied_then_duplicate(self, client, services):
        first = client.post("/pipeline/items/post-1/stages/location_gate", json=LOCATION_PAYLOAD)
        second = client.post("/pipeline/items/post-1/stages/location_gate", json=LOCATION_PAYLOAD)

        assert first.status_code == 200
        assert first.json() == {
            "item_id": "post-1",
            "stage": "location_gate",
            "outcome": "applied",
            "status": "stage2_done",
        }
        assert second.status_code == 200
        assert second.json()["outcome"] == "duplicate"
        assert services.repositories.work_items.get("post-1").stage2_location == "Paris"

    def test_unknown_stage(self, client):
        response = client.post("/pipeline/items/post-1/stages/nope", json={})

        assert response.status_code == 422

    def test_invalid_payload(self, client):
        response = client.post("/pipeline/items/post-1/stages/location_gate", json={"reponse": "Peut-être"})

        assert response.status_code == 422
        assert "reponse" in response.json()["detail"]

    def test_unknown_item(self, client):
        response = client.post("/pipeline/items/post-404/stages/location_gate", json=LOCATION_PAYLOAD)

        assert response.status_code == 404


class TestProcessingRoutes:
    def test_process_terminal_item(self, client):
        response = client.post("/pipeline/items/post-2/process")

        assert response.status_code == 200
        assert response.json()["outcome"] == "terminal"

    def test_process_unknown_item(self, client):
        assert client.post("/pipeline/items/post-404/process").status_code == 404

    def test_attention_list_and_retry(self, client, services):
        listed = client.get("/pipeline/attention")

        assert listed.status_code == 200
        assert [i["item_id"] for i in listed.json()] == ["post-3"]

        retried = client.post("/pipeline/items/post-3/retry")

        assert retried.status_code == 200
        assert retried.json()["retry_count"] == 0
        assert services.dispatcher.names() == ["retry:post-3"]
        assert client.get("/pipeline/attention").json() == []

    def test_retry_terminal_item(self, client):
        response = client.post("/pipeline/items/post-2/retry")

        assert response.status_code == 422

    def test_recover(self, client):
        response = client.post("/pipeline/recover")

        assert response.status_code == 200
        assert response.json() == {"dispatched": 0, "item_ids": []}

    def test_account_usage_counts_provider_calls(self, client):
        assert client.get("/pipeline/accounts").json()["accounts"] == {}

        client.post("/companies/1001/enrich", params={"force": "true"})
        usage = client.get("/pipeline/accounts").json()

        assert usage["min_delay_ms"] == 0
        assert sum(a["total_calls"] for a in usage["accounts"].values()) == 1


class TestCompanyRoutes:
    def test_cached_enrichment(self, client):
        response = client.post("/companies/1001/enrich")

        assert response.status_code == 200
        body = response.json()
        assert body["source"] == "cached"
        assert body["record"]["company_size"] == "51-200"

    def test_forced_enrichment_is_fresh(self, client, services):
        response = client.post("/companies/1001/enrich", params={"force": "true"})

        assert response.status_code == 200
        assert response.json()["source"] == "fresh"

    def test_enrichment_without_accounts(self, client, services, mocker):
        mocker.patch.object(
            services.enrichment, "enrich", side_effect=NoAccountsAvailable("No active provider account")
        )

        response = client.post("/companies/2002/enrich")

        assert response.status_code == 503

    def test_enrichment_callback(self, client, services):
        response = client.post("/companies/2002/enrichment", json={
            "name": "Globex",
            "description": "Conseil",
            "staff_count": 40,
        })

        assert response.status_code == 200
        assert response.json()["record"]["enrichment_status"] == "enriched"
        assert services.repositories.companies.get("2002").name == "Globex"


class TestLeadCompanyRoute:
    def test_company_change_reconciles_lead(self, client, services):
        response = client.post("/leads/lead-1/company", json={"company_id": "4004", "company_name": "Initech"})

        assert response.status_code == 200
        assert response.json() == {
            "lead_id": "lead-1",
            "action": "cleared_hr_provider",
            "status": "completed",
        }
        assert services.repositories.leads.get("lead-1").matched_hr_provider_id is None

    def test_missing_company_fields(self, client):
        response = client.post("/leads/lead-1/company", json={})

        assert response.status_code == 422

    def test_unknown_lead(self, client):
        response = client.post("/leads/lead-404/company", json={"company_id": "4004"})

        assert response.status_code == 404
