"""
Thread-safe counters for resolution jobs.

Batch completions, write-back threads and the orchestrator all bump the
same counters, so every update goes through one lock.
"""

from threading import Lock


class ExecutionStats:
    """
    Thread-safe statistics tracker.

    Example:
        stats = ExecutionStats(processed=0, cached_hits=0, estimated_cost=0.0)
        stats.increment("processed")
        stats.increment("estimated_cost", amount=0.0042)
    """

    def __init__(self, **initial_values: float):
        """
        Initialize stats with any number of counters.

        Args:
            **initial_values: Initial values for stat counters (int or float)
        """
        self._lock = Lock()
        self._counters: dict[str, float] = dict(initial_values)

    def increment(self, key: str, amount: float = 1) -> None:
        """Thread-safe increment of a counter (created at 0 if missing)."""
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def get(self, key: str, default: float = 0) -> float:
        """Get counter value."""
        with self._lock:
            return self._counters.get(key, default)

    def to_dict(self) -> dict[str, float]:
        """Get all counters as a dictionary (a copy)."""
        with self._lock:
            return self._counters.copy()

    def __getitem__(self, key: str) -> float:
        """Allow dict-like access: stats['processed']."""
        return self.get(key)

    def __repr__(self) -> str:
        with self._lock:
            items = ", ".join(f"{k}={v}" for k, v in sorted(self._counters.items()))
            return f"ExecutionStats({items})"
