"""
Unit tests for jj_common.progress module.
"""

from jj_common.progress import ProgressEstimator


class TestProgressEstimator:
    """Test suite for ProgressEstimator class."""

    def test_starts_at_one_percent(self):
        """Test that the estimate starts with the initial tick."""
        assert ProgressEstimator(60000).percent == 1

    def test_advance_returns_tick_count(self):
        """Test that advancing emits one tick per percent gained."""
        estimator = ProgressEstimator(10000)

        assert estimator.advance(2500) == 24
        assert estimator.percent == 25
        assert estimator.advance(5000) == 25
        assert estimator.percent == 50

    def test_never_moves_backwards(self):
        """Test that a smaller elapsed time produces no ticks."""
        estimator = ProgressEstimator(10000)
        estimator.advance(5000)

        assert estimator.advance(1000) == 0
        assert estimator.percent == 50

    def test_never_reaches_one_hundred(self):
        """Test that an overrunning build stays below 100 percent."""
        estimator = ProgressEstimator(1000)

        estimator.advance(10_000)
        assert estimator.percent == 99
        assert estimator.advance(50_000) == 0

    def test_zero_reference_never_advances(self):
        """Test that an unknown reference duration leaves the bar alone."""
        for reference in (0, None, -5):
            estimator = ProgressEstimator(reference)
            assert estimator.advance(1_000_000) == 0
            assert estimator.percent == 1
