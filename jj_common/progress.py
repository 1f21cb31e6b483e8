"""
Synthetic build progress.

Jenkins does not report a completion percentage, so progress is estimated
from wall time against the duration of the job's last successful build.
"""

MAX_RUNNING_PERCENT = 99


class ProgressEstimator:
    """
    Estimates percent complete for one watched build.

    The estimate starts at 1 (the initial tick drawn with the bar) and only
    ever moves forward. It stops at 99: 100 is shown by the watcher once the
    build has actually finished.
    """

    def __init__(self, reference_duration: int | None):
        """
        Args:
            reference_duration: Duration of the last successful build in
                                milliseconds, or 0/None when unknown
        """
        self.reference_duration = reference_duration or 0
        self.percent = 1

    def target(self, elapsed_ms: float) -> int:
        """Percent implied by ``elapsed_ms``, clamped to the running maximum."""
        if self.reference_duration <= 0:
            return self.percent
        value = int(elapsed_ms / self.reference_duration * 100)
        return min(value, MAX_RUNNING_PERCENT)

    def advance(self, elapsed_ms: float) -> int:
        """
        Move the estimate forward.

        Returns:
            Number of one-percent ticks to emit; 0 when the recomputed value
            is not strictly greater than the current one.
        """
        target = self.target(elapsed_ms)
        if target <= self.percent:
            return 0
        ticks = target - self.percent
        self.percent = target
        return ticks
