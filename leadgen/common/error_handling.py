"""
Error aggregation and logging helpers shared by pipeline services.

Batch operations collect one ItemError per failed item instead of aborting,
then log a summary grouped by disposition.
"""

import logging
from dataclasses import dataclass
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from leadgen.common.error_classifier import Disposition


@dataclass
class ItemError:
    """One failed item in a batch."""

    item_id: str
    stage: str
    message: str
    disposition: Disposition
    exception_type: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.disposition.retryable


class ErrorCollector:
    """Failures of one batch run, grouped by disposition for the end-of-batch log line."""

    def __init__(self):
        self.errors: List[ItemError] = []

    def add_error(
        self,
        item_id: str,
        stage: str,
        disposition: Disposition,
        exception: Optional[BaseException] = None,
        message: Optional[str] = None,
    ) -> ItemError:
        error = ItemError(
            item_id=item_id,
            stage=stage,
            message=message or str(exception),
            disposition=disposition,
            exception_type=type(exception).__name__ if exception else None,
        )
        self.errors.append(error)
        return error

    def summary(self) -> dict:
        by_disposition: Dict[str, int] = {d.value: 0 for d in Disposition}
        for error in self.errors:
            by_disposition[error.disposition.value] += 1
        return {
            "total": len(self.errors),
            "by_disposition": by_disposition,
            "retryable": sum(1 for e in self.errors if e.retryable),
            "permanent": sum(1 for e in self.errors if not e.retryable),
        }

    def log_summary(self, logger: logging.Logger, operation: str) -> None:
        if not self.errors:
            return
        summary = self.summary()
        counts = {name: count for name, count in summary["by_disposition"].items() if count}
        logger.warning(
            f"[{operation}] {summary['total']} item(s) failed "
            f"({summary['retryable']} retryable, {summary['permanent']} permanent): {counts}"
        )
        for error in self.errors:
            logger.debug(f"[{operation}] {error.item_id} {error.exception_type or 'error'}: {error.message}")


@contextmanager
def log_on_exception(
    logger: logging.Logger,
    operation: str,
    level: int = logging.WARNING,
    include_traceback: bool = False,
) -> Iterator[None]:
    """
    Log an exception raised inside the block, then let it propagate.

    Usage:
        with log_on_exception(logger, "lead upsert", level=logging.ERROR):
            leads.insert(lead)
    """
    try:
        yield
    except Exception as e:
        logger.log(level, f"[{operation}] Failed: {e}", exc_info=include_traceback)
        raise
