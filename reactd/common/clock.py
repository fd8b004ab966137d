"""
Clock Helpers

Elapsed-time arithmetic and the shared timeout budget used by every
deadline-bounded action.

Example:
    budget = TimeoutBudget(2.0)
    start = now()
    await asyncio.wait_for(step(), timeout=budget.remaining)
    budget.charge_since(start)    # 2.0 - time spent in step()
"""

import time


def now() -> float:
    """Monotonic time sample in seconds"""
    return time.monotonic()


def elapsed_ms(start: float, end: float) -> int:
    """
    Milliseconds elapsed between two time samples.

    Args:
        start: Earlier sample from now()
        end: Later sample from now()

    Returns:
        Whole milliseconds, clamped at 0 if the samples are out of order
    """
    return max(0, int(round((end - start) * 1000)))


class TimeoutBudget:
    """
    Remaining wall-clock allowance for a multi-phase operation.

    The budget is deducted as time is spent waiting and is never
    replenished. An operation fails as soon as it reaches zero.
    """

    def __init__(self, seconds: float):
        self.total = float(seconds)
        self._remaining = float(seconds)

    @property
    def remaining(self) -> float:
        """Seconds left, never negative"""
        return max(self._remaining, 0.0)

    @property
    def expired(self) -> bool:
        return self._remaining <= 0

    def consume(self, seconds: float) -> float:
        """Deduct time spent; negative values are ignored"""
        if seconds > 0:
            self._remaining -= seconds
        return self.remaining

    def charge_since(self, start: float) -> float:
        """Deduct the time elapsed since a now() sample"""
        return self.consume(now() - start)

    def __repr__(self) -> str:
        return f"TimeoutBudget(total={self.total:.3f}, remaining={self.remaining:.3f})"
