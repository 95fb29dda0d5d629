"""
Pipeline Callback Routes

Surface used by external workflows and by the dashboard:
- stage-result callbacks (idempotent re-entry into the pipeline)
- processing triggers and operator retries
- provider account usage from the rate limiter
- company enrichment (reports cached / fresh / queued)
- company reconciliation for leads
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from leadgen.common.errors import NoAccountsAvailable, NotFoundError, ValidationError
from leadgen.services.pipeline_factory import PipelineServices

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pipeline"])


class StageCallbackResponse(BaseModel):
    item_id: str
    stage: str
    outcome: str
    status: str


class ProcessResponse(BaseModel):
    item_id: str
    outcome: str
    status: str
    stage: Optional[str] = None
    error: Optional[str] = None
    disposition: Optional[str] = None
    retry_count: Optional[int] = None


class AttentionItem(BaseModel):
    item_id: str
    status: str
    retry_count: int
    error_message: Optional[str] = None
    last_error_disposition: Optional[str] = None


class EnrichmentResponse(BaseModel):
    company_id: str
    source: str = Field(description="cached, fresh or queued")
    record: Optional[Dict[str, Any]] = None


class CompanyChangeRequest(BaseModel):
    company_id: Optional[str] = None
    company_name: Optional[str] = None


class ReconciliationResponse(BaseModel):
    lead_id: str
    action: str
    status: str


def get_services(request: Request) -> PipelineServices:
    """Pipeline services attached to the application at startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return services


def _client_error(e: Exception) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, NoAccountsAvailable):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=422, detail=str(e))


@router.post("/pipeline/items/{item_id}/stages/{stage}", response_model=StageCallbackResponse)
async def post_stage_result(
    item_id: str,
    stage: str,
    payload: Dict[str, Any],
    services: PipelineServices = Depends(get_services),
):
    """Apply a stage result computed outside the pipeline. Safe to deliver twice."""
    try:
        result = await services.orchestrator.apply_stage_result(item_id, stage, payload)
    except (NotFoundError, ValidationError) as e:
        logger.warning(f"Rejected {stage} callback for {item_id}: {e}")
        raise _client_error(e)
    return result.to_dict()


@router.post("/pipeline/items/{item_id}/process", response_model=ProcessResponse)
async def process_item(item_id: str, services: PipelineServices = Depends(get_services)):
    """Run the next step of an item now."""
    try:
        result = await services.orchestrator.process(item_id)
    except NotFoundError as e:
        raise _client_error(e)
    return result.to_dict()


@router.post("/pipeline/items/{item_id}/retry", response_model=AttentionItem)
async def retry_item(item_id: str, services: PipelineServices = Depends(get_services)):
    """Operator retry for an item that exhausted its automatic retries."""
    try:
        item = await services.orchestrator.retry_item(item_id)
    except (NotFoundError, ValidationError) as e:
        raise _client_error(e)
    return AttentionItem(
        item_id=item.id,
        status=item.processing_status.value,
        retry_count=item.retry_count,
        error_message=item.error_message,
        last_error_disposition=item.last_error_disposition,
    )


@router.get("/pipeline/attention", response_model=List[AttentionItem])
async def list_attention_items(
    limit: int = Query(default=100, le=500),
    services: PipelineServices = Depends(get_services),
):
    """Items waiting for an operator."""
    return [
        AttentionItem(
            item_id=item.id,
            status=item.processing_status.value,
            retry_count=item.retry_count,
            error_message=item.error_message,
            last_error_disposition=item.last_error_disposition,
        )
        for item in services.orchestrator.list_attention_items(limit=limit)
    ]


@router.post("/pipeline/recover")
async def recover_stuck(
    limit: int = Query(default=100, le=1000),
    services: PipelineServices = Depends(get_services),
):
    """Re-dispatch items whose retry is due or that stopped moving."""
    item_ids = await services.orchestrator.recover_stuck(limit=limit)
    return {"dispatched": len(item_ids), "item_ids": item_ids}


@router.get("/pipeline/accounts")
async def account_usage(services: PipelineServices = Depends(get_services)):
    """Provider delay window and per-account call counters."""
    return services.limiter.to_dict()


@router.post("/companies/{company_id}/enrich", response_model=EnrichmentResponse)
async def enrich_company(
    company_id: str,
    force: bool = Query(default=False, description="Ignore a complete cached record"),
    services: PipelineServices = Depends(get_services),
):
    """Manual "retry enrichment". The response says whether the data was cached, fresh or queued."""
    try:
        outcome = await services.enrichment.enrich(company_id, force=force)
    except (ValidationError, NoAccountsAvailable) as e:
        raise _client_error(e)
    return outcome.to_dict()


@router.post("/companies/{company_id}/enrichment", response_model=EnrichmentResponse)
async def company_enrichment_callback(
    company_id: str,
    payload: Dict[str, Any],
    services: PipelineServices = Depends(get_services),
):
    """Result of a queued enrichment, posted back by the workflow."""
    try:
        record = services.enrichment.apply_enrichment_callback(company_id, payload)
    except ValidationError as e:
        raise _client_error(e)
    return {"company_id": company_id, "source": "fresh", "record": record.model_dump(mode="json")}


@router.post("/leads/{lead_id}/company", response_model=ReconciliationResponse)
async def update_lead_company(
    lead_id: str,
    change: CompanyChangeRequest,
    services: PipelineServices = Depends(get_services),
):
    """Record a company change on a lead and reconcile its HR-provider classification."""
    if not change.company_id and not change.company_name:
        raise HTTPException(status_code=422, detail="company_id or company_name is required")
    try:
        result = services.reconciliation.reconcile(lead_id, change.company_id, change.company_name)
    except NotFoundError as e:
        raise _client_error(e)
    return result.to_dict()
