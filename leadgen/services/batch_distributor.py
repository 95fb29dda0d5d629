"""
Batch Distributor

Spreads a batch of items over the external accounts: item i goes to
account i mod N. Each account works through its own partition sequentially
through its rate-limiter slot, while partitions run concurrently.

A failing item never stops its partition or the batch. Every item gets
exactly one BatchOutcome, returned in input order.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from leadgen.common.error_classifier import Disposition, ErrorClassifier
from leadgen.common.error_handling import ErrorCollector
from leadgen.common.errors import NoAccountsAvailable
from leadgen.common.rate_limiter import AccountRateLimiter

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")


@dataclass
class BatchOutcome(Generic[ItemT]):
    item: ItemT
    account_id: str
    success: bool
    result: Any = None
    error: Optional[BaseException] = None
    disposition: Optional[Disposition] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "success": self.success,
            "error": str(self.error) if self.error else None,
            "disposition": self.disposition.value if self.disposition else None,
        }


def partition_round_robin(items: Sequence[ItemT], accounts: Sequence[str]) -> Dict[str, List[int]]:
    """Map each account to the indexes of the items it handles."""
    partitions: Dict[str, List[int]] = {account_id: [] for account_id in accounts}
    for index in range(len(items)):
        partitions[accounts[index % len(accounts)]].append(index)
    return partitions


class BatchDistributor:
    """
    Args:
        limiter: Shared per-account rate limiter
        classifier: Used to tag failed outcomes with a disposition
    """

    def __init__(self, limiter: AccountRateLimiter, classifier: Optional[ErrorClassifier] = None):
        self.limiter = limiter
        self.classifier = classifier or ErrorClassifier()

    async def run_batch(
        self,
        items: Sequence[ItemT],
        accounts: Sequence[str],
        stage_fn: Callable[[ItemT, str], Awaitable[Any]],
    ) -> List[BatchOutcome[ItemT]]:
        """
        Args:
            items: Items to process
            accounts: Account ids; duplicates are ignored
            stage_fn: Called as stage_fn(item, account_id) while the account slot is held

        Raises:
            NoAccountsAvailable: If accounts is empty and items is not
        """
        if not items:
            return []
        accounts = list(dict.fromkeys(accounts))
        if not accounts:
            raise NoAccountsAvailable("Cannot distribute a batch without accounts")

        outcomes: List[Optional[BatchOutcome[ItemT]]] = [None] * len(items)
        errors = ErrorCollector()

        async def run_partition(account_id: str, indexes: List[int]) -> None:
            for index in indexes:
                item = items[index]
                try:
                    async with self.limiter.slot(account_id):
                        result = await stage_fn(item, account_id)
                    outcomes[index] = BatchOutcome(item, account_id, True, result=result)
                except Exception as e:
                    disposition = self.classifier.classify(e)
                    errors.add_error(str(getattr(item, "id", index)), "batch", disposition, exception=e)
                    outcomes[index] = BatchOutcome(item, account_id, False, error=e, disposition=disposition)

        partitions = partition_round_robin(items, accounts)
        await asyncio.gather(*(
            run_partition(account_id, indexes)
            for account_id, indexes in partitions.items()
            if indexes
        ))

        succeeded = sum(1 for o in outcomes if o is not None and o.success)
        logger.info(f"Batch finished: {succeeded}/{len(items)} succeeded over {len(accounts)} account(s)")
        errors.log_summary(logger, "batch")
        return outcomes  # type: ignore[return-value]
