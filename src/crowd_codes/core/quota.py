"""Quota admission control shared by the external API clients."""


class QuotaBudget:
    """Cumulative usage counter checked against a fixed ceiling.

    One instance lives for one pipeline run. Clients receive it by injection
    so tests (or a persisted implementation) can swap it out.
    """

    def __init__(self, ceiling: int, used: int = 0) -> None:
        """Initialize the budget.

        Args:
            ceiling: Maximum units that may be consumed.
            used: Units already consumed (e.g., restored from elsewhere).
        """
        if ceiling < 0 or used < 0:
            msg = "Quota ceiling and usage must be non-negative"
            raise ValueError(msg)
        self._ceiling = ceiling
        self._used = used

    @property
    def ceiling(self) -> int:
        """Maximum units for this budget."""
        return self._ceiling

    @property
    def used(self) -> int:
        """Units consumed so far."""
        return self._used

    @property
    def remaining(self) -> int:
        """Units still available, never negative."""
        return max(0, self._ceiling - self._used)

    @property
    def is_exhausted(self) -> bool:
        return self._used >= self._ceiling

    def can_afford(self, cost: int) -> bool:
        """Check whether ``cost`` units fit under the ceiling."""
        return self._used + cost <= self._ceiling

    def try_reserve(self, cost: int) -> bool:
        """Consume ``cost`` units if they fit.

        Returns:
            True if the units were reserved, False if the call must be
            refused without being attempted.
        """
        if not self.can_afford(cost):
            return False
        self._used += cost
        return True

    def consume(self, cost: int = 1) -> None:
        """Record usage unconditionally (the call already happened)."""
        self._used += cost

    def __repr__(self) -> str:
        return f"QuotaBudget(used={self._used}, ceiling={self._ceiling})"
