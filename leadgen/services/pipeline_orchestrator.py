"""
Pipeline Orchestrator

Drives work items through the stage sequence:

    pending -> stage1_done -> stage2_done -> stage3_done -> enriched -> materialized

One call to process() runs exactly one step for one item. When the step
advances the item, the next step is handed to the TaskDispatcher and the
call returns without waiting for it. Items stranded by a crash between two
steps are found again by recover_stuck().

Failure handling:
- ValidationError and PermanentError dispositions -> status "error"
- RateLimited / ProviderError / TransientError -> status unchanged,
  retry_count + 1, next_retry_at scheduled. Once retry_count reaches the cap
  the item is flagged needs_attention and waits for an operator.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from leadgen.common.config import Config
from leadgen.common.error_classifier import Disposition, ErrorClassifier
from leadgen.common.errors import (
    ConcurrentTransitionError,
    NotFoundError,
    StageExecutionError,
    ValidationError,
)
from leadgen.common.logger import get_logger
from leadgen.common.models import WorkItem, utc_now
from leadgen.common.repositories import Repositories
from leadgen.common.state import ProcessingStatus, is_terminal, validate_transition
from leadgen.common.workflow_events import Stage, WorkflowEventLogger
from leadgen.services.batch_distributor import BatchDistributor, BatchOutcome
from leadgen.services.company_enrichment import CompanyEnrichmentService
from leadgen.services.lead_materializer import LeadMaterializer, MaterializationAction
from leadgen.services.stage_executor import StageExecutor, Transition
from leadgen.services.task_dispatcher import TaskDispatcher
from leadgen.services.workflow_notifier import WorkflowNotifier
from leadgen.stages.base import PipelineStage
from leadgen.stages.classification import (
    CategorizationStage,
    CategoryVerdict,
    LocationGateStage,
    LocationVerdict,
    RecruitmentDetectionStage,
    RecruitmentVerdict,
)
from leadgen.stages.profile_scraping import ProfileScrapingStage, ProfileSnapshot

logger = logging.getLogger(__name__)


class StepOutcome(str, Enum):
    """What a single process() call did."""
    ADVANCED = "advanced"
    FILTERED = "filtered"
    MATERIALIZED = "materialized"
    FAILED = "failed"
    RETRY_SCHEDULED = "retry_scheduled"
    NEEDS_ATTENTION = "needs_attention"
    NOT_DUE = "not_due"
    TERMINAL = "terminal"
    CONCURRENT = "concurrent"


class CallbackOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"


@dataclass
class ProcessResult:
    item_id: str
    outcome: StepOutcome
    status: ProcessingStatus
    stage: Optional[Stage] = None
    error: Optional[str] = None
    disposition: Optional[Disposition] = None
    retry_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "outcome": self.outcome.value,
            "status": self.status.value,
            "stage": self.stage.value if self.stage else None,
            "error": self.error,
            "disposition": self.disposition.value if self.disposition else None,
            "retry_count": self.retry_count,
        }


@dataclass
class CallbackResult:
    item_id: str
    stage: Stage
    outcome: CallbackOutcome
    status: ProcessingStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "stage": self.stage.value,
            "outcome": self.outcome.value,
            "status": self.status.value,
        }


@dataclass
class PipelineStages:
    recruitment: RecruitmentDetectionStage
    location: LocationGateStage
    categorization: CategorizationStage
    profile: ProfileScrapingStage


class PipelineOrchestrator:
    """
    Args:
        repositories: Repository bundle
        stages: The four external-call stages
        executor: Commits stage results
        materializer: Terminal lead stage
        enrichment: Company cache, warmed before materialization (optional)
        distributor: Batch fan-out over accounts (optional)
        dispatcher: Fire-and-forget handoff of the next step
        notifier: Workflow sink for lead_created events (optional)
        max_retries: Automatic retry cap before operator attention
        retry_delay_seconds: Delay before a scheduled retry is due
        stuck_threshold_seconds: Age after which a non-terminal item is re-dispatched
        emit_events: Emit JSON workflow events
    """

    def __init__(
        self,
        repositories: Repositories,
        stages: PipelineStages,
        executor: StageExecutor,
        materializer: LeadMaterializer,
        enrichment: Optional[CompanyEnrichmentService] = None,
        distributor: Optional[BatchDistributor] = None,
        dispatcher: Optional[TaskDispatcher] = None,
        notifier: Optional[WorkflowNotifier] = None,
        classifier: Optional[ErrorClassifier] = None,
        max_retries: Optional[int] = None,
        retry_delay_seconds: Optional[int] = None,
        stuck_threshold_seconds: Optional[int] = None,
        emit_events: bool = True,
    ):
        self.repositories = repositories
        self.work_items = repositories.work_items
        self.stages = stages
        self.executor = executor
        self.materializer = materializer
        self.enrichment = enrichment
        self.distributor = distributor
        self.dispatcher = dispatcher or TaskDispatcher()
        self.notifier = notifier
        self.classifier = classifier or ErrorClassifier()
        self.max_retries = Config.MAX_RETRY_ATTEMPTS if max_retries is None else max_retries
        self.retry_delay = timedelta(
            seconds=Config.RETRY_DELAY_SECONDS if retry_delay_seconds is None else retry_delay_seconds
        )
        self.stuck_threshold = timedelta(
            seconds=Config.STUCK_ITEM_THRESHOLD_SECONDS if stuck_threshold_seconds is None else stuck_threshold_seconds
        )
        self.emit_events = emit_events

        self._stage_by_status: Dict[ProcessingStatus, PipelineStage] = {
            ProcessingStatus.PENDING: stages.recruitment,
            ProcessingStatus.STAGE1_DONE: stages.location,
            ProcessingStatus.STAGE2_DONE: stages.categorization,
            ProcessingStatus.STAGE3_DONE: stages.profile,
        }
        self._status_by_stage: Dict[Stage, ProcessingStatus] = {
            stage.name: status for status, stage in self._stage_by_status.items()
        }

    # ===== Transition decisions =====

    def decide(self, stage: PipelineStage, result: Any) -> Transition:
        """Branch on a stage result. Gates send negative verdicts to filtered_out."""
        if isinstance(result, RecruitmentVerdict):
            if result.is_recruiting:
                return Transition(ProcessingStatus.STAGE1_DONE)
            return Transition(ProcessingStatus.FILTERED_OUT, {"filter_reason": "not_recruiting"})

        if isinstance(result, LocationVerdict):
            if result.passed:
                return Transition(ProcessingStatus.STAGE2_DONE)
            return Transition(ProcessingStatus.FILTERED_OUT, {"filter_reason": "outside_target_zone"})

        if isinstance(result, CategoryVerdict):
            return Transition(ProcessingStatus.STAGE3_DONE)

        if isinstance(result, ProfileSnapshot):
            return Transition(ProcessingStatus.ENRICHED)

        raise TypeError(f"No transition rule for {type(result).__name__} from {stage.name.value}")

    # ===== Entry points =====

    async def ingest(self, items: Iterable[WorkItem]) -> Dict[str, int]:
        """Store new items and dispatch their first step. Duplicates are skipped."""
        inserted = skipped = 0
        for item in items:
            if self.work_items.insert(item):
                inserted += 1
                self.dispatcher.dispatch(self.process, item.id, name=f"process:{item.id}")
            else:
                skipped += 1
        logger.info(f"Ingested {inserted} item(s), skipped {skipped} duplicate(s)")
        return {"inserted": inserted, "skipped": skipped}

    async def process(self, item_id: str, chain: bool = True) -> ProcessResult:
        """
        Run the next step for one item.

        Raises:
            NotFoundError: Unknown item id
        """
        item = self._load(item_id)
        status = item.processing_status
        events = WorkflowEventLogger(item.id, enabled=self.emit_events)

        if is_terminal(status):
            return ProcessResult(item.id, StepOutcome.TERMINAL, status)

        if item.needs_attention:
            return ProcessResult(item.id, StepOutcome.NEEDS_ATTENTION, status, retry_count=item.retry_count)

        if item.next_retry_at is not None and item.next_retry_at > utc_now():
            return ProcessResult(item.id, StepOutcome.NOT_DUE, status, retry_count=item.retry_count)

        if status == ProcessingStatus.ENRICHED:
            result = await self._materialize(item, events)
        else:
            result = await self._run_stage(item, self._stage_by_status[status], events)

        if chain:
            self._chain(result)
        return result

    async def run_to_completion(self, item_id: str, max_steps: int = 10) -> ProcessResult:
        """Run steps inline until the item stops advancing (scripts, backfills)."""
        result = await self.process(item_id, chain=False)
        steps = 1
        while result.outcome == StepOutcome.ADVANCED and steps < max_steps:
            result = await self.process(item_id, chain=False)
            steps += 1
        return result

    async def apply_stage_result(self, item_id: str, stage_name: str, payload: Dict[str, Any]) -> CallbackResult:
        """
        Re-enter the pipeline with a result computed elsewhere.

        Re-delivery is detected from the current status: if the item is no
        longer waiting for this stage, nothing is written.

        Raises:
            ValidationError: Unknown stage or invalid payload
            NotFoundError: Unknown item id
        """
        try:
            stage_key = Stage(stage_name)
        except ValueError:
            raise ValidationError(f"Unknown stage: {stage_name}")
        if stage_key not in self._status_by_stage:
            raise ValidationError(f"Stage {stage_name} does not accept callbacks")

        expected_status = self._status_by_stage[stage_key]
        stage = self._stage_by_status[expected_status]
        result = stage.parse_result(payload)
        item = self._load(item_id)

        if item.processing_status != expected_status:
            logger.info(
                f"Callback {stage_name} for item {item_id} ignored: "
                f"status is {item.processing_status.value}, expected {expected_status.value}"
            )
            return CallbackResult(item.id, stage_key, CallbackOutcome.DUPLICATE, item.processing_status)

        transition = self.decide(stage, result)
        try:
            self.executor.commit(item, stage, result, transition)
        except ConcurrentTransitionError:
            current = self._load(item_id)
            return CallbackResult(item.id, stage_key, CallbackOutcome.DUPLICATE, current.processing_status)

        WorkflowEventLogger(item.id, enabled=self.emit_events).stage_completed(
            stage_key, metadata={"status": transition.status.value, "source": "callback"}
        )
        outcome = self._stage_outcome(item, stage_key, transition)
        self._chain(outcome)
        return CallbackResult(item.id, stage_key, CallbackOutcome.APPLIED, transition.status)

    async def scrape_pending_profiles(self, limit: int = 50) -> List[BatchOutcome]:
        """Run the profile stage for due stage3_done items, spread over every active account."""
        if self.distributor is None:
            raise RuntimeError("scrape_pending_profiles requires a BatchDistributor")

        now = utc_now()
        items = [
            item for item in self.work_items.find_by_status(ProcessingStatus.STAGE3_DONE, limit=limit)
            if not item.needs_attention and (item.next_retry_at is None or item.next_retry_at <= now)
        ]
        if not items:
            return []

        accounts = self.repositories.accounts.list_active_accounts()

        async def scrape(item: WorkItem, account_id: str) -> ProcessResult:
            events = WorkflowEventLogger(item.id, enabled=self.emit_events)
            result = await self._run_stage(item, self.stages.profile, events, account_id=account_id)
            self._chain(result)
            return result

        return await self.distributor.run_batch(items, accounts, scrape)

    async def recover_stuck(self, limit: int = 100) -> List[str]:
        """Re-dispatch items whose retry is due or that stopped moving."""
        now = utc_now()
        items = self.work_items.find_recoverable(now, now - self.stuck_threshold, limit=limit)
        for item in items:
            self.dispatcher.dispatch(self.process, item.id, name=f"recover:{item.id}")
        if items:
            logger.info(f"Recovery scan re-dispatched {len(items)} item(s)")
        return [item.id for item in items]

    def list_attention_items(self, limit: int = 100) -> List[WorkItem]:
        return self.work_items.find_needing_attention(limit=limit)

    async def retry_item(self, item_id: str) -> WorkItem:
        """
        Operator action: clear the attention flag and retry now.

        Raises:
            NotFoundError: Unknown item id
            ValidationError: Item is in a terminal status
        """
        item = self._load(item_id)
        if is_terminal(item.processing_status):
            raise ValidationError(
                f"Item {item_id} is {item.processing_status.value}; terminal items cannot be retried"
            )
        self.work_items.update_fields(item.id, {
            "needs_attention": False,
            "retry_count": 0,
            "next_retry_at": None,
            "updated_at": utc_now(),
        })
        logger.info(f"Operator retry requested for item {item_id}")
        self.dispatcher.dispatch(self.process, item.id, name=f"retry:{item.id}")
        return self._load(item_id)

    # ===== Steps =====

    async def _run_stage(
        self,
        item: WorkItem,
        stage: PipelineStage,
        events: WorkflowEventLogger,
        **stage_kwargs: Any,
    ) -> ProcessResult:
        try:
            outcome = await self.executor.run_stage(
                item,
                stage,
                lambda result: self.decide(stage, result),
                events=events,
                **stage_kwargs,
            )
        except ConcurrentTransitionError as e:
            logger.info(str(e))
            return ProcessResult(item.id, StepOutcome.CONCURRENT, self._load(item.id).processing_status, stage.name)
        except StageExecutionError as e:
            return self._handle_failure(item, stage.name, e, events)

        return self._stage_outcome(item, stage.name, outcome.transition)

    async def _materialize(self, item: WorkItem, events: WorkflowEventLogger) -> ProcessResult:
        await self._warm_company_cache(item, events)

        events.stage_started(Stage.LEAD_MATERIALIZATION)
        try:
            materialized = await self.materializer.materialize(item)
        except Exception as e:
            events.stage_failed(Stage.LEAD_MATERIALIZATION, str(e))
            error = StageExecutionError(Stage.LEAD_MATERIALIZATION.value, item.id, e)
            return self._handle_failure(item, Stage.LEAD_MATERIALIZATION, error, events)

        if materialized.action == MaterializationAction.SKIPPED_CLIENT_CONTACT:
            transition = Transition(ProcessingStatus.FILTERED_OUT, {"filter_reason": "client_contact"})
        else:
            transition = Transition(ProcessingStatus.MATERIALIZED, {
                "lead_id": materialized.lead_id,
                "degradations": [d.to_dict() for d in materialized.degradations],
            })

        validate_transition(item.processing_status, transition.status)
        written = self.work_items.update_status(item.id, ProcessingStatus.ENRICHED, {
            **transition.fields,
            "processing_status": transition.status,
            "retry_count": 0,
            "next_retry_at": None,
            "needs_attention": False,
            "updated_at": utc_now(),
        })
        if not written:
            return ProcessResult(
                item.id, StepOutcome.CONCURRENT, self._load(item.id).processing_status, Stage.LEAD_MATERIALIZATION
            )

        events.stage_completed(Stage.LEAD_MATERIALIZATION, metadata={
            "action": materialized.action.value,
            "lead_id": materialized.lead_id,
            "degraded": [d.operation for d in materialized.degradations],
        })

        if materialized.action in (MaterializationAction.CREATED, MaterializationAction.UPDATED):
            self._notify_lead(item, materialized)

        outcome = StepOutcome.FILTERED if transition.status == ProcessingStatus.FILTERED_OUT else StepOutcome.MATERIALIZED
        return ProcessResult(item.id, outcome, transition.status, Stage.LEAD_MATERIALIZATION)

    async def _warm_company_cache(self, item: WorkItem, events: WorkflowEventLogger) -> None:
        if self.enrichment is None or not item.company_id:
            return
        events.stage_started(Stage.COMPANY_ENRICHMENT)
        try:
            enriched = await self.enrichment.enrich(item.company_id)
        except Exception as e:
            # Lead creation does not depend on company details
            logger.warning(f"Item {item.id}: company enrichment failed for {item.company_id}: {e}")
            events.stage_failed(Stage.COMPANY_ENRICHMENT, str(e))
            return
        events.stage_completed(Stage.COMPANY_ENRICHMENT, metadata={"source": enriched.source.value})

    def _notify_lead(self, item: WorkItem, materialized) -> None:
        if self.notifier is None or not self.notifier.enabled:
            return
        lead = materialized.lead
        self.dispatcher.dispatch(
            self.notifier.notify,
            "lead_created",
            {
                "lead_id": lead.id,
                "item_id": item.id,
                "action": materialized.action.value,
                "status": lead.status.value,
                "author_name": lead.author_name,
                "company_name": lead.company_name,
            },
            name=f"notify:{lead.id}",
        )

    # ===== Failure handling =====

    def _handle_failure(
        self,
        item: WorkItem,
        stage: Stage,
        error: StageExecutionError,
        events: WorkflowEventLogger,
    ) -> ProcessResult:
        cause = error.cause
        disposition = self.classifier.classify(error)
        message = str(cause)

        if isinstance(cause, ValidationError) or not disposition.retryable:
            return self._mark_error(item, stage, message, disposition)

        now = utc_now()
        retry_count = self.work_items.increment_retry(item.id, item.processing_status, {
            "last_retry_at": now,
            "next_retry_at": now + self.retry_delay,
            "error_message": message,
            "last_error_disposition": disposition.value,
            "updated_at": now,
        })
        if retry_count is None:
            return ProcessResult(item.id, StepOutcome.CONCURRENT, self._load(item.id).processing_status, stage)

        events.stage_retried(stage, retry_count, error=message)
        log = get_logger(__name__, item.id, stage.value)

        if retry_count >= self.max_retries:
            self.work_items.update_fields(item.id, {"needs_attention": True, "next_retry_at": None})
            log.error(
                f"Stuck in {item.processing_status.value} after {retry_count} "
                f"attempt(s) ({disposition.value}): {message}. Operator action required."
            )
            return ProcessResult(
                item.id, StepOutcome.NEEDS_ATTENTION, item.processing_status, stage,
                error=message, disposition=disposition, retry_count=retry_count,
            )

        log.warning(
            f"{disposition.value}, retry {retry_count}/{self.max_retries} "
            f"scheduled in {int(self.retry_delay.total_seconds())}s: {message}"
        )
        return ProcessResult(
            item.id, StepOutcome.RETRY_SCHEDULED, item.processing_status, stage,
            error=message, disposition=disposition, retry_count=retry_count,
        )

    def _mark_error(self, item: WorkItem, stage: Stage, message: str, disposition: Disposition) -> ProcessResult:
        written = self.work_items.update_status(item.id, item.processing_status, {
            "processing_status": ProcessingStatus.ERROR,
            "error_message": message,
            "last_error_disposition": disposition.value,
            "next_retry_at": None,
            "updated_at": utc_now(),
        })
        if not written:
            return ProcessResult(item.id, StepOutcome.CONCURRENT, self._load(item.id).processing_status, stage)

        get_logger(__name__, item.id, stage.value).error(f"Failed permanently ({disposition.value}): {message}")
        return ProcessResult(
            item.id, StepOutcome.FAILED, ProcessingStatus.ERROR, stage,
            error=message, disposition=disposition,
        )

    # ===== Helpers =====

    def _load(self, item_id: str) -> WorkItem:
        item = self.work_items.get(item_id)
        if item is None:
            raise NotFoundError("WorkItem", item_id)
        return item

    @staticmethod
    def _stage_outcome(item: WorkItem, stage: Stage, transition: Transition) -> ProcessResult:
        outcome = StepOutcome.FILTERED if transition.status == ProcessingStatus.FILTERED_OUT else StepOutcome.ADVANCED
        return ProcessResult(item.id, outcome, transition.status, stage)

    def _chain(self, result: ProcessResult) -> None:
        if result.outcome == StepOutcome.ADVANCED and not is_terminal(result.status):
            self.dispatcher.dispatch(self.process, result.item_id, name=f"process:{result.item_id}")
