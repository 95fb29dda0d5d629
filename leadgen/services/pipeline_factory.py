"""
Wires the pipeline together from configuration.

The rate limiter, dispatcher and HTTP clients live on the returned
PipelineServices instance, so their lifetime is the lifetime of the service
that owns it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from leadgen.common.config import Config
from leadgen.common.llm_client import LLMClient
from leadgen.common.rate_limiter import AccountRateLimiter
from leadgen.common.repositories import Repositories, get_repositories
from leadgen.common.unipile_client import UnipileClient
from leadgen.services.batch_distributor import BatchDistributor
from leadgen.services.company_enrichment import CompanyEnrichmentService
from leadgen.services.company_reconciliation import CompanyReconciliationService
from leadgen.services.lead_materializer import LeadMaterializer
from leadgen.services.pipeline_orchestrator import PipelineOrchestrator, PipelineStages
from leadgen.services.stage_executor import StageExecutor
from leadgen.services.task_dispatcher import TaskDispatcher
from leadgen.services.workflow_notifier import WorkflowNotifier
from leadgen.stages.classification import (
    CategorizationStage,
    LocationGateStage,
    RecruitmentDetectionStage,
)
from leadgen.stages.message_generation import MessageGenerator
from leadgen.stages.profile_scraping import ProfileScrapingStage

logger = logging.getLogger(__name__)


@dataclass
class PipelineServices:
    repositories: Repositories
    limiter: AccountRateLimiter
    dispatcher: TaskDispatcher
    orchestrator: PipelineOrchestrator
    enrichment: CompanyEnrichmentService
    reconciliation: CompanyReconciliationService


def create_pipeline(
    repositories: Optional[Repositories] = None,
    llm: Optional[LLMClient] = None,
    message_llm: Optional[LLMClient] = None,
    client: Optional[UnipileClient] = None,
    limiter: Optional[AccountRateLimiter] = None,
    dispatcher: Optional[TaskDispatcher] = None,
    notifier: Optional[WorkflowNotifier] = None,
    message_generator: Optional[MessageGenerator] = None,
    emit_events: bool = True,
) -> PipelineServices:
    """Build every pipeline service; any collaborator can be injected."""
    repositories = repositories or get_repositories()
    llm = llm or LLMClient()
    client = client or UnipileClient()
    limiter = limiter or AccountRateLimiter()
    dispatcher = dispatcher or TaskDispatcher()
    notifier = notifier or WorkflowNotifier()

    account_pool = repositories.accounts.list_active_accounts

    stages = PipelineStages(
        recruitment=RecruitmentDetectionStage(llm),
        location=LocationGateStage(llm),
        categorization=CategorizationStage(llm),
        profile=ProfileScrapingStage(client, limiter, account_pool),
    )
    enrichment = CompanyEnrichmentService(
        repositories.companies, client, limiter, account_pool, notifier=notifier,
    )
    materializer = LeadMaterializer(
        repositories.leads,
        repositories.reference,
        companies=repositories.companies,
        message_generator=message_generator or MessageGenerator(message_llm),
    )
    orchestrator = PipelineOrchestrator(
        repositories=repositories,
        stages=stages,
        executor=StageExecutor(repositories.work_items),
        materializer=materializer,
        enrichment=enrichment,
        distributor=BatchDistributor(limiter),
        dispatcher=dispatcher,
        notifier=notifier,
        emit_events=emit_events,
    )

    logger.info(f"Pipeline ready (model={Config.LLM_MODEL}, rate window="
                f"{limiter.min_delay_ms}-{limiter.max_delay_ms}ms)")
    return PipelineServices(
        repositories=repositories,
        limiter=limiter,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        enrichment=enrichment,
        reconciliation=CompanyReconciliationService(repositories.leads),
    )
