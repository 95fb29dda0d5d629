"""
Maps provider failures to retry dispositions.

Policy (order matters):
- HTTP 429                                  -> RATE_LIMITED
- provider error marker in code or message  -> PROVIDER_ERROR
- HTTP 401 / 403                            -> PERMANENT_ERROR
- anything else (timeouts included)         -> TRANSIENT_ERROR
"""

import re
from enum import Enum
from typing import Optional

from leadgen.common.errors import ProviderHTTPError, StageExecutionError


PROVIDER_ERROR_MARKERS = ("provider_error", "operational problems")

_STATUS_IN_MESSAGE = re.compile(r"\b(401|403|429)\b")


class Disposition(str, Enum):
    """What the orchestrator should do with a failed external call."""
    RATE_LIMITED = "rate_limited"
    PROVIDER_ERROR = "provider_error"
    PERMANENT_ERROR = "permanent_error"
    TRANSIENT_ERROR = "transient_error"

    @property
    def retryable(self) -> bool:
        return self is not Disposition.PERMANENT_ERROR


def find_provider_marker(text: Optional[str]) -> Optional[str]:
    """Return the provider error marker contained in text, if any."""
    if not text:
        return None
    lowered = text.lower()
    for marker in PROVIDER_ERROR_MARKERS:
        if marker in lowered:
            return marker
    return None


class ErrorClassifier:
    """Stateless classifier; an instance exists so it can be injected and mocked."""

    def classify(self, error: BaseException) -> Disposition:
        error = self._unwrap(error)

        if isinstance(error, ProviderHTTPError):
            return self._classify_typed(error)

        # Untyped errors (e.g. raised by a callback producer) keep the
        # message-based rules.
        message = str(error)
        status = self._status_from_message(message)
        if status == 429:
            return Disposition.RATE_LIMITED
        if find_provider_marker(message):
            return Disposition.PROVIDER_ERROR
        if status in (401, 403):
            return Disposition.PERMANENT_ERROR
        return Disposition.TRANSIENT_ERROR

    def _classify_typed(self, error: ProviderHTTPError) -> Disposition:
        if error.status_code == 429:
            return Disposition.RATE_LIMITED
        if error.provider_code or find_provider_marker(str(error)):
            return Disposition.PROVIDER_ERROR
        if error.status_code in (401, 403):
            return Disposition.PERMANENT_ERROR
        return Disposition.TRANSIENT_ERROR

    @staticmethod
    def _unwrap(error: BaseException) -> BaseException:
        seen = set()
        while isinstance(error, StageExecutionError) and id(error) not in seen:
            seen.add(id(error))
            error = error.cause
        return error

    @staticmethod
    def _status_from_message(message: str) -> Optional[int]:
        match = _STATUS_IN_MESSAGE.search(message)
        return int(match.group(1)) if match else None
