"""
Work item status machine.

Happy path:
    pending -> stage1_done -> stage2_done -> stage3_done -> enriched -> materialized

``filtered_out`` and ``error`` can be entered from any non-terminal status and
are absorbing, like ``materialized``. Statuses never move backwards and never
skip a step: every intermediate status is persisted.
"""

from enum import Enum
from typing import List, Optional

from leadgen.common.errors import LeadgenError


class ProcessingStatus(str, Enum):
    """Work item processing status."""
    PENDING = "pending"
    STAGE1_DONE = "stage1_done"
    STAGE2_DONE = "stage2_done"
    STAGE3_DONE = "stage3_done"
    ENRICHED = "enriched"
    MATERIALIZED = "materialized"
    FILTERED_OUT = "filtered_out"
    ERROR = "error"


class LeadStatus(str, Enum):
    """Lead status as shown to end users."""
    COMPLETED = "completed"
    FILTERED_HR_PROVIDER = "filtered_hr_provider"


PIPELINE_ORDER: List[ProcessingStatus] = [
    ProcessingStatus.PENDING,
    ProcessingStatus.STAGE1_DONE,
    ProcessingStatus.STAGE2_DONE,
    ProcessingStatus.STAGE3_DONE,
    ProcessingStatus.ENRICHED,
    ProcessingStatus.MATERIALIZED,
]

TERMINAL_STATUSES = frozenset({
    ProcessingStatus.MATERIALIZED,
    ProcessingStatus.FILTERED_OUT,
    ProcessingStatus.ERROR,
})

NON_TERMINAL_STATUSES: List[ProcessingStatus] = [
    s for s in PIPELINE_ORDER if s not in TERMINAL_STATUSES
]


class InvalidTransitionError(LeadgenError):
    """Requested status change violates the pipeline order."""

    def __init__(self, current: ProcessingStatus, target: ProcessingStatus):
        self.current = current
        self.target = target
        super().__init__(f"Invalid status transition: {current.value} -> {target.value}")


def is_terminal(status: ProcessingStatus) -> bool:
    return ProcessingStatus(status) in TERMINAL_STATUSES


def next_status(status: ProcessingStatus) -> Optional[ProcessingStatus]:
    """Next happy-path status, or None for terminal statuses."""
    status = ProcessingStatus(status)
    if status in TERMINAL_STATUSES:
        return None
    return PIPELINE_ORDER[PIPELINE_ORDER.index(status) + 1]


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    current = ProcessingStatus(current)
    target = ProcessingStatus(target)
    if current in TERMINAL_STATUSES:
        return False
    if target in (ProcessingStatus.FILTERED_OUT, ProcessingStatus.ERROR):
        return True
    return target == next_status(current)


def validate_transition(current: ProcessingStatus, target: ProcessingStatus) -> None:
    """
    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(ProcessingStatus(current), ProcessingStatus(target))
