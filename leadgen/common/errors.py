"""
Exception hierarchy for the lead generation pipeline.

Provider failures are raised as typed ProviderHTTPError instances by the
HTTP client wrapper so that classification works on status codes and
provider codes instead of parsing messages.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class LeadgenError(Exception):
    """Base exception for all pipeline errors."""
    pass


class ProviderHTTPError(LeadgenError):
    """Non-2xx response from the profile/company provider."""

    def __init__(
        self,
        status_code: int,
        message: str = "",
        provider_code: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        self.status_code = status_code
        self.provider_code = provider_code
        self.operation = operation
        super().__init__(f"Unipile API error: {status_code} - {message}")


class ValidationError(LeadgenError):
    """Malformed or incomplete payload (LLM output, scrape result, callback body)."""
    pass


class NotFoundError(LeadgenError):
    """Referenced work item, lead, company or account does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class NoAccountsAvailable(LeadgenError):
    """The external account pool is empty."""
    pass


class ConcurrentTransitionError(LeadgenError):
    """A conditional status write matched nothing: the item moved on meanwhile."""

    def __init__(self, item_id: str, expected_status: str):
        self.item_id = item_id
        self.expected_status = expected_status
        super().__init__(
            f"Work item {item_id} is no longer in status '{expected_status}'"
        )


class StageExecutionError(LeadgenError):
    """
    A stage failed before anything was persisted.

    The original exception is kept on ``cause`` (and as ``__cause__``) so the
    orchestrator can classify it.
    """

    def __init__(self, stage: str, item_id: str, cause: BaseException):
        self.stage = stage
        self.item_id = item_id
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed for item {item_id}: {cause}")


@dataclass
class DegradedFallback:
    """
    Soft failure that was absorbed by a guaranteed fallback.

    Recorded on the affected record and logged; never raised.
    """

    operation: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


class DuplicateRecordError(LeadgenError):
    """An insert collided with an existing unique key."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} already exists for key: {key}")
