"""
EcosimEngine: process-scoped context for simulation and search.

ARCHITECTURE RULE: This module holds ONLY shared infrastructure: the
observed-data configuration, the parameter set value type, and the engine
that owns the replicate evaluator and its worker pool.

DO NOT add search algorithms or optimizer logic here. Those belong in
ecosim/simplex.py and the services under ecosim/services/*:

    app.py / ecosim.cli
      -> EcosimEngine(config, threads)       (owns ReplicateEvaluator)
         -> SearchController(engine)          (ecosim.services.search)
            -> nelder_mead(objective, ...)    (ecosim.simplex)

This module provides:
    EcosimConfig  - Observed curve, nu, nrep, seed, length, tolerance index
    ParameterSet  - omega, sigma, npop, optional drift xn
    EcosimEngine  - Context object: config + evaluator, explicit teardown

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

import logging
import math

from ecosim.constants import NUM_TOLERANCE_LEVELS
from ecosim.replicates import ReplicateEvaluator

log = logging.getLogger(__name__)


def normalize_criteria(criteria, length):
    """
    Return criteria as floats with 1.0 replaced by 1 - 1/(2 * length).

    A sequence of finite length cannot resolve full identity, so the
    tightest criterion is moved half a substitution below it.
    """
    top = 1.0 - 1.0 / (2.0 * length)
    return [top if float(c) >= 1.0 else float(c) for c in criteria]


class EcosimConfig:
    """
    Observed data and run settings shared by every evaluation.

    Parameters
    ----------
    criteria : list of float
        Identity criteria, nominally descending (e.g. 1.0, 0.99, ... 0.80).
    observed : list of int
        Observed bin count at each criterion.
    nu : int
        Number of sampled sequences.
    nrep : int, optional
        Replicates per evaluation (default 1000).
    seed : int, optional
        Master random seed (default 0).
    length : int, optional
        Sequence length in nucleotides (default 1000).
    whichavg : int, optional
        Tolerance index 1..6 used as the likelihood (default 1).
    probthreshold : float, optional
        Likelihood floor for confidence-interval walks (default 0.0).
    """

    def __init__(self, criteria, observed, nu, nrep=1000, seed=0,
                 length=1000, whichavg=1, probthreshold=0.0):
        if len(criteria) != len(observed):
            raise ValueError(
                "criteria and observed must have the same length ({} != {})".format(
                    len(criteria), len(observed))
            )
        if len(criteria) == 0:
            raise ValueError("at least one identity criterion is required")
        self.nu = int(nu)
        if self.nu < 1:
            raise ValueError("nu must be positive, got {}".format(nu))
        self.nrep = int(nrep)
        if self.nrep < 1:
            raise ValueError("nrep must be positive, got {}".format(nrep))
        self.length = int(length)
        if self.length < 1:
            raise ValueError("length must be positive, got {}".format(length))
        self.whichavg = int(whichavg)
        if not 1 <= self.whichavg <= NUM_TOLERANCE_LEVELS:
            raise ValueError(
                "whichavg must be in [1, {}], got {}".format(
                    NUM_TOLERANCE_LEVELS, whichavg)
            )
        self.seed = int(seed)
        self.probthreshold = float(probthreshold)
        self.criteria = normalize_criteria(criteria, self.length)
        self.observed = [int(b) for b in observed]

    @property
    def likelihood_index(self):
        """Zero-based position of the configured tolerance level."""
        return self.whichavg - 1

    def to_dict(self):
        return {
            "criteria": list(self.criteria),
            "observed": list(self.observed),
            "nu": self.nu,
            "nrep": self.nrep,
            "seed": self.seed,
            "length": self.length,
            "whichavg": self.whichavg,
            "probthreshold": self.probthreshold,
        }

    @classmethod
    def from_dict(cls, data):
        """Build a config from a dict such as a JSON request body."""
        for key in ("criteria", "observed", "nu"):
            if key not in data:
                raise ValueError("missing required field '{}'".format(key))
        return cls(
            criteria=data["criteria"],
            observed=data["observed"],
            nu=data["nu"],
            nrep=data.get("nrep", 1000),
            seed=data.get("seed", 0),
            length=data.get("length", 1000),
            whichavg=data.get("whichavg", 1),
            probthreshold=data.get("probthreshold", 0.0),
        )


class ParameterSet:
    """
    One point of the model's parameter space.

    Parameters
    ----------
    omega : float
        Niche-invasion rate per population per substitution.
    sigma : float
        Periodic-selection rate per population per substitution.
    npop : int
        Number of ecotypes.
    xn : float or None, optional
        Drift parameter. None (or infinity) disables drift.
    """

    def __init__(self, omega, sigma, npop, xn=None):
        self.omega = float(omega)
        self.sigma = float(sigma)
        self.npop = int(npop)
        self.xn = None if xn is None else float(xn)

    @property
    def drift_enabled(self):
        return self.xn is not None and not math.isinf(self.xn)

    def replace(self, **changes):
        """Return a copy with some fields changed."""
        values = self.to_dict()
        values.update(changes)
        return ParameterSet(**values)

    def to_dict(self):
        return {
            "omega": self.omega,
            "sigma": self.sigma,
            "npop": self.npop,
            "xn": self.xn,
        }

    @classmethod
    def from_dict(cls, data):
        for key in ("omega", "sigma", "npop"):
            if key not in data:
                raise ValueError("missing required parameter '{}'".format(key))
        return cls(data["omega"], data["sigma"], data["npop"], data.get("xn"))

    def __eq__(self, other):
        if not isinstance(other, ParameterSet):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.omega, self.sigma, self.npop, self.xn))

    def __repr__(self):
        return "ParameterSet(omega={!r}, sigma={!r}, npop={!r}, xn={!r})".format(
            self.omega, self.sigma, self.npop, self.xn)


class EcosimEngine:
    """
    Process-scoped context: configuration plus the replicate evaluator.

    Construct one per run (CLI invocation or API request) and close it, or
    use it as a context manager, to shut the worker pool down.

    Parameters
    ----------
    config : EcosimConfig
    threads : int, optional
        Worker pool size (default: os.cpu_count()).
    debug : bool, optional
        Enables optimizer progress tracing (default False).
    """

    def __init__(self, config, threads=None, debug=False):
        self.config = config
        self.debug = bool(debug)
        self.evaluator = ReplicateEvaluator(config, threads=threads)
        log.debug("Engine started: nu=%d nrep=%d threads=%d seed=%d",
                  config.nu, config.nrep, self.evaluator.threads, config.seed)

    @property
    def threads(self):
        return self.evaluator.threads

    def evaluate(self, params):
        """Success fractions at the six tolerance levels for params."""
        return self.evaluator.evaluate(params, self.config.nrep)

    def likelihood(self, params):
        """Success fraction at the configured tolerance level."""
        return float(self.evaluate(params)[self.config.likelihood_index])

    def close(self):
        self.evaluator.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
