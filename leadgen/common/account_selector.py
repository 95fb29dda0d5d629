"""
Chooses which external account makes the next provider call.

Picks the account that has been idle the longest so load spreads evenly
across the pool.
"""

from typing import Sequence

from leadgen.common.errors import NoAccountsAvailable
from leadgen.common.rate_limiter import AccountRateLimiter


class AccountSelector:
    """Longest-idle selection over the limiter's in-memory call history."""

    def __init__(self, limiter: AccountRateLimiter):
        self.limiter = limiter

    def pick_account(self, pool: Sequence[str]) -> str:
        """
        Return the account with the largest time since its last call.

        Accounts never used count as infinitely idle. Ties keep pool order.

        Raises:
            NoAccountsAvailable: If pool is empty
        """
        if not pool:
            raise NoAccountsAvailable("No external accounts configured")

        best = pool[0]
        best_idle = self.limiter.seconds_since_last_call(best)
        for account_id in pool[1:]:
            idle = self.limiter.seconds_since_last_call(account_id)
            if idle > best_idle:
                best, best_idle = account_id, idle
        return best
