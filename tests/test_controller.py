"""
Tests for the search controller (ecosim/services/search/controller.py).

Searches run against a fake engine with an analytic likelihood surface, so
interval endpoints can be checked exactly against the 3.84 likelihood-ratio
threshold.
"""

import math

import numpy as np
import pytest

from ecosim.constants import CHI2_CRITICAL, LOG_HUGE, RATE_FLOOR, SIGMA_CEILING
from ecosim.engine import EcosimConfig, ParameterSet
from ecosim.services.search import controller as controller_module
from ecosim.services.search.controller import (
    LOWER, UPPER, BruteforceRow, GeometricStep, IntegerStride,
    InvertedGeometricStep, SearchController, best_result, decode, encode,
    initial_steps, likelihood_key, log_grid, npop_grid, step_factor,
)

PEAK = 0.5


class FakeEngine:
    """
    Engine stand-in: deterministic likelihood from a Python function.

    surface(params) returns the likelihood; every tolerance level reports
    the same value.
    """

    def __init__(self, surface, nu=12, probthreshold=0.0, fail_after=None):
        self.config = EcosimConfig([0.99, 0.9], [4, 2], nu=nu, nrep=10,
                                   probthreshold=probthreshold)
        self.debug = False
        self.surface = surface
        self.calls = 0
        self.fail_after = fail_after

    def evaluate(self, params):
        if self.fail_after is not None and self.calls >= self.fail_after:
            raise MemoryError("fake allocation failure")
        self.calls += 1
        return np.full(6, self.surface(params))

    def likelihood(self, params):
        return float(self.evaluate(params)[self.config.likelihood_index])


def gaussian_log(value, center):
    """exp(-ln(value/center)^2 / 2): ratio statistic = ln(value/center)^2."""
    return math.exp(-math.log(value / center) ** 2 / 2.0)


def omega_sigma_surface(params):
    return PEAK * gaussian_log(params.omega, 0.1) * gaussian_log(params.sigma, 2.0)


def omega_only_surface(params):
    return PEAK * gaussian_log(params.omega, 0.1)


def npop_surface(params):
    return PEAK * math.exp(-(params.npop - 5) ** 2 / 2.0)


def drift_surface(params):
    return PEAK * gaussian_log(params.xn, 10.0)


def precise(engine):
    return SearchController(engine, maxf=400, stopcr=1e-8)


# ---------------------------------------------------------------------------
# Grids and encoding
# ---------------------------------------------------------------------------

class TestGrids:

    def test_log_grid(self):
        grid = log_grid(1.0, 100.0, 2)
        assert grid[0] == pytest.approx(1.0)
        assert grid[1] == pytest.approx(10.0 ** 0.999)

    def test_log_grid_stays_below_hi(self):
        grid = log_grid(0.01, 10.0, 5)
        assert len(grid) == 5
        assert max(grid) < 10.0
        assert np.all(np.diff(grid) > 0)

    def test_zero_increments_gives_lo(self):
        assert log_grid(0.5, 50.0, 0) == [0.5]

    def test_npop_grid_rounds_and_clamps(self):
        assert npop_grid(1, 100, 4, 20) == [1, 3, 10, 20]

    def test_npop_grid_drops_duplicates(self):
        assert npop_grid(1, 2, 4, 20) == [1, 2]


class TestEncoding:

    def test_round_trip(self):
        base = ParameterSet(0.1, 2.0, 4, xn=30.0)
        names = ["omega", "sigma", "npop", "xn"]
        again = decode(encode(base, names), names, base, 12)
        assert again.omega == pytest.approx(0.1)
        assert again.sigma == pytest.approx(2.0)
        assert again.npop == 4
        assert again.xn == pytest.approx(30.0)

    def test_npop_rounded_and_clamped(self):
        base = ParameterSet(0.1, 2.0, 4)
        assert decode([2.5], ["npop"], base, 12).npop == 3
        assert decode([-3.0], ["npop"], base, 12).npop == 1
        assert decode([40.0], ["npop"], base, 12).npop == 12

    def test_huge_log_clamped(self):
        base = ParameterSet(0.1, 2.0, 4)
        params = decode([LOG_HUGE + 10.0], ["omega"], base, 12)
        assert math.isfinite(params.omega)

    def test_nonpositive_rate_rejected(self):
        with pytest.raises(ValueError):
            encode(ParameterSet(0.0, 1.0, 3), ["omega"])

    def test_initial_steps(self):
        steps = initial_steps([math.log(0.1), 0.1, 6.0], ["omega", "sigma", "npop"])
        assert steps[0] == pytest.approx(math.log(0.1) / 2.0)
        assert steps[1] == 0.15
        assert steps[2] == 3.0


# ---------------------------------------------------------------------------
# Result ordering
# ---------------------------------------------------------------------------

class TestBestResult:

    def test_key_walks_to_looser_levels(self):
        fractions = [0.9, 0.5, 0.2, 0.1, 0.0, 0.0]
        assert likelihood_key(fractions, 2) == (0.2, 0.5, 0.9)

    def test_ties_broken_by_looser_level(self):
        p = ParameterSet(0.1, 1.0, 2)
        a = BruteforceRow(p, [0.8, 0.4, 0.2, 0, 0, 0])
        b = BruteforceRow(p, [0.9, 0.4, 0.2, 0, 0, 0])
        c = BruteforceRow(p, [0.9, 0.3, 0.2, 0, 0, 0])
        assert best_result([a, b, c], 2) is b

    def test_empty(self):
        assert best_result([], 0) is None


# ---------------------------------------------------------------------------
# Step strategies
# ---------------------------------------------------------------------------

class TestStepStrategies:

    def test_step_factor(self):
        assert step_factor(None) == 1.5
        assert step_factor(0.5) == 2.0
        assert step_factor(1.01) == 1.05
        with pytest.raises(ValueError):
            step_factor(-1.0)

    def test_geometric_ceiling(self):
        step = GeometricStep(1.5, ceiling=SIGMA_CEILING, report_ceiling=True)
        assert step.advance(80.0, UPPER) == SIGMA_CEILING
        assert step.advance(SIGMA_CEILING, UPPER) is None
        assert step.capped(SIGMA_CEILING, UPPER)
        assert not step.capped(SIGMA_CEILING, LOWER)

    def test_geometric_floor(self):
        step = GeometricStep(1.5)
        assert step.advance(1.2e-7, LOWER) == RATE_FLOOR
        assert step.advance(RATE_FLOOR, LOWER) is None
        assert step.advance(2.0, UPPER) == 3.0

    def test_inverted(self):
        step = InvertedGeometricStep(2.0, ceiling=1e6)
        assert step.advance(10.0, UPPER) == 5.0
        assert step.advance(10.0, LOWER) == 20.0

    def test_integer_stride(self):
        step = IntegerStride(2, 1, 10)
        assert step.advance(5, UPPER) == 7
        assert step.advance(5, LOWER) == 3
        assert step.advance(9, UPPER) is None
        assert step.advance(2, LOWER) is None


# ---------------------------------------------------------------------------
# Searches
# ---------------------------------------------------------------------------

class TestBruteforce:

    def test_rows_only_for_positive_fractions(self):
        engine = FakeEngine(lambda p: 0.5 if p.npop == 2 else 0.0)
        result = SearchController(engine).bruteforce(
            (0.01, 1.0), (1.0, 10.0), (1, 4), None, (2, 2, 2, 0))
        assert result.complete
        assert result.evaluated == 8
        assert len(result.rows) == 4
        assert all(row.params.npop == 2 for row in result.rows)
        assert all(row.params.xn is None for row in result.rows)

    def test_drift_axis(self):
        engine = FakeEngine(lambda p: 0.1)
        result = SearchController(engine).bruteforce(
            (0.1, 0.1), (1.0, 1.0), (3, 3), (10.0, 1000.0), (0, 0, 0, 3))
        assert [row.params.xn for row in result.rows] == pytest.approx(
            log_grid(10.0, 1000.0, 3))

    def test_memory_error_gives_partial_result(self):
        engine = FakeEngine(lambda p: 0.2, fail_after=3)
        result = SearchController(engine).bruteforce(
            (0.01, 1.0), (1.0, 10.0), (1, 4), None, (2, 2, 2, 0))
        assert not result.complete
        assert result.evaluated == 3
        assert len(result.rows) == 3
        assert "out of memory" in result.error


class TestHillclimb:

    def test_finds_peak(self):
        engine = FakeEngine(omega_sigma_surface)
        result = precise(engine).hillclimb(ParameterSet(0.03, 5.0, 3))
        assert result.params.omega == pytest.approx(0.1, rel=0.02)
        assert result.params.sigma == pytest.approx(2.0, rel=0.02)
        assert result.likelihood == pytest.approx(PEAK, rel=1e-3)
        assert 1 <= result.params.npop <= 12

    def test_includes_xn_when_drift_enabled(self):
        engine = FakeEngine(lambda p: PEAK * gaussian_log(p.xn, 10.0) * gaussian_log(p.omega, 0.1))
        result = precise(engine).hillclimb(ParameterSet(0.1, 1.0, 3, xn=40.0))
        assert result.params.xn == pytest.approx(10.0, rel=0.02)

    def test_default_start_uses_estimate(self, monkeypatch):
        seen = []

        class Estimate:
            params = ParameterSet(0.1, 2.0, 3)

        def fake_estimate(*args):
            seen.append(args)
            return Estimate()

        monkeypatch.setattr(controller_module, "estimate_parameters", fake_estimate)
        engine = FakeEngine(omega_sigma_surface)
        result = precise(engine).hillclimb()
        assert len(seen) == 1
        assert result.likelihood == pytest.approx(PEAK, rel=1e-3)


class TestConfidenceInterval:

    def test_omega_bounds_match_threshold(self):
        engine = FakeEngine(omega_sigma_surface)
        optimum = ParameterSet(0.1, 2.0, 3)
        interval = precise(engine).confidence_interval("omega", optimum, step=1.5)
        # ratio = (k ln 1.5)^2: k = 4 gives 2.63, k = 5 gives 4.11
        assert interval.upper.value == pytest.approx(0.1 * 1.5 ** 4)
        assert interval.lower.value == pytest.approx(0.1 / 1.5 ** 4)
        expected = PEAK * math.exp(-(4 * math.log(1.5)) ** 2 / 2.0)
        assert interval.upper.likelihood == pytest.approx(expected, rel=1e-3)
        ratio = 2.0 * math.log(PEAK / interval.upper.likelihood)
        assert ratio <= CHI2_CRITICAL
        assert interval.upper.steps == 5
        assert interval.likelihood == pytest.approx(PEAK)

    def test_sigma_ceiling_and_floor(self):
        engine = FakeEngine(omega_only_surface)
        optimum = ParameterSet(0.1, 2.0, 3)
        interval = precise(engine).confidence_interval("sigma", optimum, likelihood=PEAK, step=1.5)
        assert interval.upper.value == SIGMA_CEILING
        assert interval.upper.capped
        assert interval.upper.to_line().split()[2] == ">=100"
        assert interval.lower.value == RATE_FLOOR
        assert not interval.lower.capped

    def test_npop_stride(self):
        engine = FakeEngine(npop_surface)
        optimum = ParameterSet(0.1, 2.0, 5)
        interval = precise(engine).confidence_interval("npop", optimum, step=1)
        # ratio = (npop - 5)^2
        assert interval.upper.value == 6
        assert interval.lower.value == 4

    def test_npop_walk_stops_at_domain(self):
        engine = FakeEngine(lambda p: PEAK)
        optimum = ParameterSet(0.1, 2.0, 5)
        interval = precise(engine).confidence_interval("npop", optimum, step=3)
        assert interval.upper.value == 11
        assert interval.lower.value == 2

    def test_drift_is_inverted(self):
        engine = FakeEngine(drift_surface)
        optimum = ParameterSet(0.1, 2.0, 3, xn=10.0)
        interval = precise(engine).confidence_interval("drift", optimum, step=1.5)
        assert interval.upper.value == pytest.approx(10.0 / 1.5 ** 4)
        assert interval.lower.value == pytest.approx(10.0 * 1.5 ** 4)
        assert interval.upper.parameter == "drift"

    def test_drift_needs_xn(self):
        engine = FakeEngine(drift_surface)
        with pytest.raises(ValueError):
            precise(engine).confidence_interval("drift", ParameterSet(0.1, 2.0, 3))

    def test_unknown_parameter(self):
        engine = FakeEngine(omega_only_surface)
        with pytest.raises(ValueError):
            precise(engine).confidence_interval("length", ParameterSet(0.1, 2.0, 3))

    def test_probability_threshold_ends_walk(self):
        engine = FakeEngine(omega_only_surface, probthreshold=0.3)
        optimum = ParameterSet(0.1, 2.0, 3)
        interval = precise(engine).confidence_interval("omega", optimum, step=1.5)
        # likelihood 0.36 after two steps, 0.25 after three
        assert interval.upper.value == pytest.approx(0.1 * 1.5 ** 2)

    def test_optimum_below_floor(self):
        engine = FakeEngine(lambda p: 0.0)
        optimum = ParameterSet(0.1, 2.0, 3)
        interval = precise(engine).confidence_interval("omega", optimum)
        assert interval.upper.steps == 0
        assert interval.upper.value == 0.1
        assert engine.calls == 1

    def test_lines(self):
        engine = FakeEngine(omega_sigma_surface)
        optimum = ParameterSet(0.1, 2.0, 3)
        interval = precise(engine).confidence_interval("omega", optimum, step=1.5)
        upper, lower = interval.to_lines()
        assert upper.startswith("upper omega ")
        assert lower.startswith("lower omega ")
