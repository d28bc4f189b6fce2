"""
Tests for the numerical constants module.

Checks the tolerance ladder, the chi-square threshold against scipy and the
single-precision domain guards.
"""

import math

import numpy as np
from scipy.stats import chi2

from ecosim.constants import (
    CHI2_CRITICAL, LOG_HUGE, MIN_STEP_FACTOR, NUM_TOLERANCE_LEVELS,
    RATE_EPSILON, RATE_FLOOR, RATE_OVERFLOW, SIGMA_CEILING,
    SIGMA_CEILING_LABEL, TOLERANCE_FACTORS,
)


class TestToleranceLadder:

    def test_six_levels(self):
        assert NUM_TOLERANCE_LEVELS == 6

    def test_loosest_first(self):
        assert TOLERANCE_FACTORS[0] == 5.0
        assert TOLERANCE_FACTORS[-1] == 1.05
        assert list(TOLERANCE_FACTORS) == sorted(TOLERANCE_FACTORS, reverse=True)


class TestThresholds:

    def test_chi2_critical(self):
        """3.84 is the 95% quantile of chi-square with one degree of freedom."""
        assert abs(CHI2_CRITICAL - chi2.ppf(0.95, 1)) < 1e-2

    def test_log_huge_does_not_overflow(self):
        assert math.isfinite(math.exp(LOG_HUGE))

    def test_single_precision_guards(self):
        assert RATE_EPSILON == float(np.finfo(np.float32).eps)
        assert RATE_OVERFLOW < float(np.finfo(np.float32).max)

    def test_interval_clamps(self):
        assert RATE_FLOOR > RATE_EPSILON
        assert SIGMA_CEILING_LABEL == ">={}".format(int(SIGMA_CEILING))
        assert MIN_STEP_FACTOR > 1.0
