"""
Stage Executor

Runs one stage for one work item and persists its output.

Guarantees:
- exactly one write per successful stage: output fields and the new status
  go out in a single conditional update keyed on the status the item had
  when the stage started
- zero writes on failure: the error is re-raised as StageExecutionError
  with the original exception attached for classification
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from leadgen.common.error_handling import log_on_exception
from leadgen.common.errors import ConcurrentTransitionError, StageExecutionError
from leadgen.common.models import WorkItem, utc_now
from leadgen.common.repositories.base import WorkItemRepositoryInterface
from leadgen.common.state import ProcessingStatus, validate_transition
from leadgen.common.workflow_events import WorkflowEventLogger
from leadgen.stages.base import PipelineStage

logger = logging.getLogger(__name__)


@dataclass
class Transition:
    """Status decided from a stage result, plus extra fields to write with it."""
    status: ProcessingStatus
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StageOutcome:
    result: Any
    transition: Transition


class StageExecutor:
    """
    Args:
        work_items: Work item repository used for the single commit write
    """

    def __init__(self, work_items: WorkItemRepositoryInterface):
        self.work_items = work_items

    async def run_stage(
        self,
        item: WorkItem,
        stage: PipelineStage,
        decide: Callable[[Any], Transition],
        events: Optional[WorkflowEventLogger] = None,
        **stage_kwargs: Any,
    ) -> StageOutcome:
        """
        Invoke the stage, then commit its output.

        Raises:
            StageExecutionError: The stage call failed (nothing persisted)
            ConcurrentTransitionError: The item left its status meanwhile
        """
        events = events or WorkflowEventLogger(item.id, enabled=False)
        events.stage_started(stage.name)

        try:
            result = await stage.run(item, **stage_kwargs)
        except Exception as e:
            events.stage_failed(stage.name, str(e))
            raise StageExecutionError(stage.name.value, item.id, e) from e

        transition = decide(result)
        self.commit(item, stage, result, transition)
        events.stage_completed(stage.name, metadata={"status": transition.status.value})
        return StageOutcome(result=result, transition=transition)

    def commit(
        self,
        item: WorkItem,
        stage: PipelineStage,
        result: Any,
        transition: Transition,
    ) -> None:
        """
        Persist a stage result (live or delivered by callback) in one write.

        Raises:
            InvalidTransitionError: The decided status breaks pipeline order
            ConcurrentTransitionError: The item is no longer in its expected status
        """
        validate_transition(item.processing_status, transition.status)

        fields = {
            **stage.to_fields(result),
            **transition.fields,
            "processing_status": transition.status,
            "retry_count": 0,
            "next_retry_at": None,
            "needs_attention": False,
            "updated_at": utc_now(),
        }
        with log_on_exception(logger, f"commit {stage.name.value} for {item.id}", level=logging.ERROR):
            written = self.work_items.update_status(item.id, item.processing_status, fields)
        if not written:
            raise ConcurrentTransitionError(item.id, item.processing_status.value)

        logger.info(
            f"[{stage.name.value}] item {item.id}: "
            f"{item.processing_status.value} -> {transition.status.value}"
        )
