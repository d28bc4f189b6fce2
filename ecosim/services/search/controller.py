"""
Parameter search controller: brute force, hillclimb and confidence intervals.

Architecture
------------
This module is the canonical location for search control logic. It is
dependency-injected with an EcosimEngine and serves both the search service
endpoints (/api/search/*) and the CLI drivers. It never simulates directly:
every likelihood comes from engine.evaluate(), and every re-optimization is
one nelder_mead() call.

Parameter space
---------------
The optimizer works on a vector of the free parameters. Rates (omega,
sigma, xn) are searched in natural-log space; npop is searched directly and
rounded to the nearest integer in [1, nu] before each evaluation. The
objective is the negated success fraction at the configured tolerance
level, so the optimizer maximizes the likelihood.

Confidence intervals
--------------------
One walk routine serves every parameter. Starting at the optimum it steps
the target parameter outward, re-optimizes the remaining free parameters at
each step (starting from the previous step's solution), and tests

    ratio = 2 * ln(L_optimum / L_step)

against the chi-square critical value (1 df, alpha = 0.05). The walk ends
when the ratio exceeds it, when the likelihood falls under the floor, or
when the domain clamp is reached. What differs per parameter is only the
step strategy:

    omega  GeometricStep          value * factor, floored at 1e-7
    sigma  GeometricStep          as omega, capped at 100 (reported ">=100")
    npop   IntegerStride          value +- stride within [1, nu]
    drift  InvertedGeometricStep  upper divides xn, lower multiplies it

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

import logging
import math

from ecosim.constants import (
    CHI2_CRITICAL, DEFAULT_MAXF, DEFAULT_NLOOP, DEFAULT_NPOP_STRIDE,
    DEFAULT_SIMP, DEFAULT_STEP_FACTOR, DEFAULT_STOPCR, LIKELIHOOD_FLOOR,
    LOG_HUGE, MIN_STEP_FACTOR, RATE_FLOOR, RATE_OVERFLOW, SIGMA_CEILING,
    SMALL_LOG_STEP, SMALL_LOG_WINDOW,
)
from ecosim.engine import ParameterSet
from ecosim.records import format_bound
from ecosim.simplex import nelder_mead
from ecosim.services.search.estimate import estimate_parameters

log = logging.getLogger(__name__)

UPPER = "upper"
LOWER = "lower"

LOG_SCALED = ("omega", "sigma", "xn")

# Walk target -> ParameterSet attribute
TARGETS = {
    "omega": "omega",
    "sigma": "sigma",
    "npop": "npop",
    "drift": "xn",
}

# Parameters re-optimized at each step of a walk
FREE_PARAMETERS = {
    "omega": ("sigma", "npop"),
    "sigma": ("omega", "npop"),
    "npop": ("omega", "sigma"),
    "drift": ("omega", "sigma", "npop"),
}


# ---------------------------------------------------------------------------
# Grids and encoding
# ---------------------------------------------------------------------------

def log_grid(lo, hi, n):
    """
    n log-spaced values starting at lo and stopping just short of hi.

    n == 0 gives the single value lo.
    """
    lo = float(lo)
    if n <= 0:
        return [lo]
    diff = math.log10(float(hi)) - math.log10(lo)
    return [10.0 ** (math.log10(lo) + i * (diff / n) * 0.999) for i in range(n)]


def npop_grid(lo, hi, n, nu):
    """Rounded log grid for npop, clamped to nu, duplicates dropped."""
    values = []
    for v in log_grid(lo, hi, n):
        npop = min(int(math.floor(v + 0.5)), nu)
        if npop not in values:
            values.append(npop)
    return values


def log_step(value):
    """Initial simplex step for a log-scaled coordinate."""
    if -SMALL_LOG_WINDOW < value < SMALL_LOG_WINDOW:
        return SMALL_LOG_STEP
    return value / 2.0


def encode(params, names):
    """Optimizer vector for the named parameters of params."""
    vector = []
    for name in names:
        value = getattr(params, name)
        if name in LOG_SCALED:
            if value is None or not value > 0.0:
                raise ValueError("{} must be positive to search, got {}".format(name, value))
            vector.append(math.log(value))
        else:
            vector.append(float(value))
    return vector


def initial_steps(vector, names):
    return [log_step(v) if name in LOG_SCALED else v / 2.0
            for v, name in zip(vector, names)]


def decode(vector, names, base, nu):
    """ParameterSet with the named parameters of base replaced from vector."""
    changes = {}
    for x, name in zip(vector, names):
        if name in LOG_SCALED:
            changes[name] = math.exp(min(float(x), LOG_HUGE))
        else:
            changes[name] = min(max(int(math.floor(x + 0.5)), 1), nu)
    return base.replace(**changes)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

def likelihood_key(fractions, index):
    """Sort key: fraction at index, then each looser level in turn."""
    return tuple(fractions[index::-1])


class BruteforceRow:

    def __init__(self, params, fractions):
        self.params = params
        self.fractions = [float(f) for f in fractions]

    def to_dict(self):
        return {"params": self.params.to_dict(), "fractions": list(self.fractions)}


def best_result(rows, index):
    """Row with the highest likelihood at tolerance index, or None."""
    if not rows:
        return None
    return max(rows, key=lambda row: likelihood_key(row.fractions, index))


class BruteforceResult:
    """
    Rows of a grid sweep with a nonzero loosest-level fraction.

    complete is False when the sweep stopped early; error then holds the
    reason and rows hold what was gathered up to that point.
    """

    def __init__(self, rows, evaluated, complete=True, error=None):
        self.rows = rows
        self.evaluated = evaluated
        self.complete = complete
        self.error = error

    def to_dict(self):
        return {
            "rows": [row.to_dict() for row in self.rows],
            "evaluated": self.evaluated,
            "complete": self.complete,
            "error": self.error,
        }


class HillclimbResult:

    def __init__(self, params, likelihood, simplex):
        self.params = params
        self.likelihood = likelihood
        self.simplex = simplex

    def to_dict(self):
        return {
            "params": self.params.to_dict(),
            "likelihood": self.likelihood,
            "status": self.simplex.status,
            "message": self.simplex.message,
            "evaluations": self.simplex.evaluations,
        }


class IntervalBound:
    """
    One end of a confidence interval.

    capped marks a sigma bound that reached the ceiling; it is reported as
    ">=100" rather than as a number.
    """

    def __init__(self, direction, parameter, value, likelihood, params,
                 steps=0, capped=False):
        self.direction = direction
        self.parameter = parameter
        self.value = value
        self.likelihood = likelihood
        self.params = params
        self.steps = steps
        self.capped = capped

    def to_line(self):
        return format_bound(self.direction, self.parameter, self.value,
                            self.likelihood, self.capped)

    def to_dict(self):
        return {
            "direction": self.direction,
            "parameter": self.parameter,
            "value": self.value,
            "likelihood": self.likelihood,
            "capped": self.capped,
            "steps": self.steps,
            "params": self.params.to_dict(),
        }


class ConfidenceInterval:

    def __init__(self, parameter, optimum, likelihood, upper, lower):
        self.parameter = parameter
        self.optimum = optimum
        self.likelihood = likelihood
        self.upper = upper
        self.lower = lower

    def to_lines(self):
        return [self.upper.to_line(), self.lower.to_line()]

    def to_dict(self):
        return {
            "parameter": self.parameter,
            "optimum": self.optimum.to_dict(),
            "likelihood": self.likelihood,
            "upper": self.upper.to_dict(),
            "lower": self.lower.to_dict(),
        }


# ---------------------------------------------------------------------------
# Step strategies
# ---------------------------------------------------------------------------

def step_factor(value):
    """Geometric factor >= 1.05; factors below 1 are inverted."""
    if value is None:
        return DEFAULT_STEP_FACTOR
    value = float(value)
    if not value > 0.0:
        raise ValueError("step factor must be positive, got {}".format(value))
    if value < 1.0:
        value = 1.0 / value
    return max(value, MIN_STEP_FACTOR)


def npop_stride(value):
    if value is None:
        return DEFAULT_NPOP_STRIDE
    stride = int(math.floor(float(value) + 0.5))
    if stride < 1:
        raise ValueError("npop stride must be at least 1, got {}".format(value))
    return stride


class GeometricStep:
    """
    Multiply going up, divide going down, clamped to [floor, ceiling].

    A step that would cross a clamp lands on it; the next step from the
    clamp returns None.
    """

    def __init__(self, factor, floor=RATE_FLOOR, ceiling=None, report_ceiling=False):
        self.factor = factor
        self.floor = floor
        self.ceiling = ceiling
        self.report_ceiling = report_ceiling

    def advance(self, value, direction):
        if direction == UPPER:
            if self.ceiling is not None and value >= self.ceiling:
                return None
            nxt = value * self.factor
            if self.ceiling is not None:
                nxt = min(nxt, self.ceiling)
            return nxt
        if value <= self.floor:
            return None
        return max(value / self.factor, self.floor)

    def capped(self, value, direction):
        return (self.report_ceiling and direction == UPPER
                and self.ceiling is not None and value >= self.ceiling)


class InvertedGeometricStep(GeometricStep):
    """Geometric step with directions swapped: the upper bound shrinks value."""

    def advance(self, value, direction):
        flipped = LOWER if direction == UPPER else UPPER
        return GeometricStep.advance(self, value, flipped)

    def capped(self, value, direction):
        return False


class IntegerStride:
    """Add or subtract a fixed stride; None once outside [lo, hi]."""

    def __init__(self, stride, lo, hi):
        self.stride = stride
        self.lo = lo
        self.hi = hi

    def advance(self, value, direction):
        nxt = value + self.stride if direction == UPPER else value - self.stride
        if nxt < self.lo or nxt > self.hi:
            return None
        return nxt

    def capped(self, value, direction):
        return False


def step_strategy(target, step, nu):
    """Step strategy for a walk over target, from the record's step value."""
    if target == "omega":
        return GeometricStep(step_factor(step))
    if target == "sigma":
        return GeometricStep(step_factor(step), ceiling=SIGMA_CEILING,
                             report_ceiling=True)
    if target == "npop":
        return IntegerStride(npop_stride(step), 1, nu)
    if target == "drift":
        return InvertedGeometricStep(step_factor(step), ceiling=RATE_OVERFLOW)
    raise ValueError("unknown interval parameter '{}'".format(target))


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class SearchController:
    """
    Sequential search driver over one EcosimEngine.

    Parameters
    ----------
    engine : EcosimEngine
        Supplies config and likelihoods.
    maxf, stopcr, nloop, iquad, simp
        nelder_mead settings for every optimization.
    progress : callable, optional
        progress(neval, value, params) receives optimizer progress when the
        engine runs in debug mode.
    """

    def __init__(self, engine, maxf=DEFAULT_MAXF, stopcr=DEFAULT_STOPCR,
                 nloop=DEFAULT_NLOOP, iquad=False, simp=DEFAULT_SIMP,
                 progress=None):
        self.engine = engine
        self.config = engine.config
        self.maxf = maxf
        self.stopcr = stopcr
        self.nloop = nloop
        self.iquad = iquad
        self.simp = simp
        self.progress = progress

    def optimize(self, start, free_names):
        """
        Maximize the likelihood over free_names, others held at start.

        Returns
        -------
        (ParameterSet, float, SimplexResult)
        """
        names = tuple(free_names)
        nu = self.config.nu
        vector = encode(start, names)

        def objective(point):
            return -self.engine.likelihood(decode(point, names, start, nu))

        result = nelder_mead(
            objective, vector, initial_steps(vector, names),
            maxf=self.maxf, stopcr=self.stopcr, nloop=self.nloop,
            iquad=self.iquad, simp=self.simp,
            iprint=1 if self.engine.debug else 0, progress=self.progress,
        )
        if not result.converged:
            log.debug("Optimizer stopped over %s: %s", names, result.message)
        params = decode(result.params, names, start, nu)
        return params, -result.value, result

    def bruteforce(self, omega_range, sigma_range, npop_range, xn_range, increments):
        """
        Evaluate every point of the parameter grid directly.

        Parameters
        ----------
        omega_range, sigma_range, npop_range : tuple
            (lo, hi) for each parameter.
        xn_range : tuple or None
            (lo, hi) for drift, or None to run without drift.
        increments : sequence of 4 int
            Grid sizes for omega, sigma, npop and xn.

        Returns
        -------
        BruteforceResult
            Rows whose loosest-level fraction is positive.
        """
        n_omega, n_sigma, n_npop, n_xn = increments
        omegas = log_grid(omega_range[0], omega_range[1], n_omega)
        sigmas = log_grid(sigma_range[0], sigma_range[1], n_sigma)
        npops = npop_grid(npop_range[0], npop_range[1], n_npop, self.config.nu)
        xns = [None] if xn_range is None else log_grid(xn_range[0], xn_range[1], n_xn)
        total = len(omegas) * len(sigmas) * len(npops) * len(xns)
        log.debug("Brute force over %d grid points", total)

        rows = []
        evaluated = 0
        try:
            for omega in omegas:
                for sigma in sigmas:
                    for npop in npops:
                        for xn in xns:
                            params = ParameterSet(omega, sigma, npop, xn)
                            fractions = self.engine.evaluate(params)
                            evaluated += 1
                            if fractions[0] > 0.0:
                                rows.append(BruteforceRow(params, fractions))
                log.debug("Brute force: %d/%d points, %d rows", evaluated, total, len(rows))
        except MemoryError:
            log.warning("Brute force out of memory after %d of %d points", evaluated, total)
            return BruteforceResult(
                rows, evaluated, complete=False,
                error="out of memory after {} of {} points".format(evaluated, total),
            )
        return BruteforceResult(rows, evaluated)

    def hillclimb(self, start=None):
        """
        One optimization over all parameters from start.

        start defaults to the estimate read off the observed curve.
        """
        if start is None:
            start = estimate_parameters(
                self.config.criteria, self.config.observed,
                self.config.length, self.config.nu,
            ).params
        names = ["omega", "sigma", "npop"]
        if start.drift_enabled:
            names.append("xn")
        params, likelihood, result = self.optimize(start, names)
        log.debug("Hillclimb from %s reached %s (likelihood %g)", start, params, likelihood)
        return HillclimbResult(params, likelihood, result)

    def confidence_interval(self, target, optimum, likelihood=None, step=None):
        """
        Upper and lower confidence bounds for one parameter.

        Parameters
        ----------
        target : str
            "omega", "sigma", "npop" or "drift".
        optimum : ParameterSet
            Point estimate (from hillclimb).
        likelihood : float, optional
            Likelihood at optimum; evaluated when not given.
        step : float, optional
            Step factor (geometric) or stride (npop).

        Returns
        -------
        ConfidenceInterval
        """
        if target not in TARGETS:
            raise ValueError("unknown interval parameter '{}'".format(target))
        if target == "drift" and not optimum.drift_enabled:
            raise ValueError("drift interval needs a finite xn in the optimum")
        strategy = step_strategy(target, step, self.config.nu)
        if likelihood is None:
            likelihood = self.engine.likelihood(optimum)
        free = list(FREE_PARAMETERS[target])
        if optimum.drift_enabled and target != "drift":
            free.append("xn")

        upper = self._walk(target, UPPER, optimum, likelihood, strategy, free)
        lower = self._walk(target, LOWER, optimum, likelihood, strategy, free)
        return ConfidenceInterval(target, optimum, likelihood, upper, lower)

    def _walk(self, target, direction, optimum, base_likelihood, strategy, free):
        attr = TARGETS[target]
        floor = max(LIKELIHOOD_FLOOR, self.config.probthreshold)
        current = optimum
        value = getattr(optimum, attr)
        bound = IntervalBound(direction, target, value, base_likelihood, optimum,
                              capped=strategy.capped(value, direction))
        if base_likelihood < floor:
            log.debug("%s %s: likelihood %g at optimum is below %g",
                      direction, target, base_likelihood, floor)
            return bound

        steps = 0
        while True:
            nxt = strategy.advance(value, direction)
            if nxt is None:
                log.debug("%s %s: domain bound reached at %g", direction, target, value)
                break
            trial = current.replace(**{attr: nxt})
            params, likelihood, _ = self.optimize(trial, free)
            steps += 1
            if likelihood < floor:
                log.debug("%s %s step %d: %s=%g likelihood %g below floor",
                          direction, target, steps, attr, nxt, likelihood)
                break
            ratio = 2.0 * math.log(base_likelihood / likelihood)
            log.debug("%s %s step %d: %s=%g likelihood=%g ratio=%g",
                      direction, target, steps, attr, nxt, likelihood, ratio)
            if ratio > CHI2_CRITICAL:
                break
            value = nxt
            current = params
            bound = IntervalBound(direction, target, value, likelihood, params,
                                  capped=strategy.capped(value, direction))
        bound.steps = steps
        return bound
