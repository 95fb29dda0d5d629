"""
Structured JSON events for work item progression.

Emits one JSON line per stage event so the life of a post can be
reconstructed from logs:
- stage started / completed / failed / retried / skipped

Usage:
    events = WorkflowEventLogger(item_id="post-123")
    events.stage_started(Stage.LOCATION_GATE)
    # ... do work ...
    events.stage_completed(Stage.LOCATION_GATE, metadata={"verdict": "Oui"})
"""

import json
import sys
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, TextIO


class EventType(str, Enum):
    """Workflow event types."""
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    STAGE_FAILED = "stage_failed"
    STAGE_RETRIED = "stage_retried"
    STAGE_SKIPPED = "stage_skipped"


class Stage(str, Enum):
    """Pipeline stage names used in events and executor bookkeeping."""
    RECRUITMENT_DETECTION = "recruitment_detection"
    LOCATION_GATE = "location_gate"
    CATEGORIZATION = "categorization"
    PROFILE_SCRAPING = "profile_scraping"
    COMPANY_ENRICHMENT = "company_enrichment"
    LEAD_MATERIALIZATION = "lead_materialization"


@dataclass
class WorkflowEvent:
    """Single workflow event."""
    timestamp: str
    event_type: str
    item_id: str
    correlation_id: str
    stage: Optional[str] = None
    duration_ms: Optional[int] = None
    retry_count: Optional[int] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_json(self) -> str:
        """Convert to JSON string, excluding None values."""
        data = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(data, default=str, ensure_ascii=False)


class WorkflowEventLogger:
    """
    Emits workflow events for one work item as JSON lines.

    Durations are derived from the matching stage_started call when not
    given explicitly.
    """

    def __init__(
        self,
        item_id: str,
        correlation_id: Optional[str] = None,
        enabled: bool = True,
        stream: Optional[TextIO] = None,
    ):
        self.item_id = item_id
        self.correlation_id = correlation_id or uuid.uuid4().hex
        self.enabled = enabled
        self._stream = stream
        self._start_times: Dict[str, float] = {}

    def _emit(self, event: WorkflowEvent) -> None:
        if self.enabled:
            print(event.to_json(), file=self._stream or sys.stdout, flush=True)

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def _elapsed_ms(self, stage: str, duration_ms: Optional[int]) -> Optional[int]:
        if duration_ms is None and stage in self._start_times:
            duration_ms = int((time.time() - self._start_times.pop(stage)) * 1000)
        return duration_ms

    def emit(
        self,
        event_type: EventType,
        stage: Optional[Stage] = None,
        duration_ms: Optional[int] = None,
        retry_count: Optional[int] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Emit a single event."""
        self._emit(WorkflowEvent(
            timestamp=self._now(),
            event_type=EventType(event_type).value,
            item_id=self.item_id,
            correlation_id=self.correlation_id,
            stage=Stage(stage).value if stage is not None else None,
            duration_ms=duration_ms,
            retry_count=retry_count,
            error_message=error_message,
            metadata=metadata,
        ))

    # ===== Convenience Methods =====

    def stage_started(self, stage: Stage) -> None:
        self._start_times[Stage(stage).value] = time.time()
        self.emit(EventType.STAGE_STARTED, stage)

    def stage_completed(
        self,
        stage: Stage,
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.emit(
            EventType.STAGE_COMPLETED,
            stage,
            duration_ms=self._elapsed_ms(Stage(stage).value, duration_ms),
            metadata=metadata,
        )

    def stage_failed(
        self,
        stage: Stage,
        error: str,
        duration_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.emit(
            EventType.STAGE_FAILED,
            stage,
            duration_ms=self._elapsed_ms(Stage(stage).value, duration_ms),
            error_message=error,
            metadata=metadata,
        )

    def stage_retried(self, stage: Stage, retry_count: int, error: Optional[str] = None) -> None:
        self.emit(EventType.STAGE_RETRIED, stage, retry_count=retry_count, error_message=error)

    def stage_skipped(self, stage: Stage, reason: str) -> None:
        self.emit(EventType.STAGE_SKIPPED, stage, metadata={"reason": reason})
