"""
Common shape of a pipeline stage.

A stage performs one external call for one work item and knows how to turn
its validated result into the WorkItem fields that the executor persists.
Results can also arrive from outside (callback surface); parse_result runs
them through the same validation as live results.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Type, TypeVar

from pydantic import BaseModel

from leadgen.common.json_utils import validate_payload
from leadgen.common.models import WorkItem
from leadgen.common.workflow_events import Stage

ResultT = TypeVar("ResultT", bound=BaseModel)


class PipelineStage(ABC, Generic[ResultT]):
    """One external call per work item."""

    name: Stage
    result_model: Type[ResultT]

    @abstractmethod
    async def run(self, item: WorkItem, **kwargs: Any) -> ResultT:
        """Call the external capability and return a validated result."""

    @abstractmethod
    def to_fields(self, result: ResultT) -> Dict[str, Any]:
        """WorkItem fields to persist for this result."""

    def parse_result(self, payload: Dict[str, Any]) -> ResultT:
        """
        Raises:
            ValidationError: If payload does not match result_model
        """
        return validate_payload(payload, self.result_model, source=f"{self.name.value} result")
