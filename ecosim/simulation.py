"""
Backward-time coalescent simulation of ecotype formation.

One run partitions nu sampled lineages into npop ecotypes and walks back
in time through competing niche-invasion, periodic-selection and
(optionally) drift events until a single lineage remains. Every event
leaves an AncestorRecord (divergence, multiplicity); binning() turns the
records into one bin count per identity criterion, and
check_success_fit() scores that curve against the observed one at the six
tolerance levels.

Lifecycle of one run:
    startpops -> [eligible -> which_event_and_when -> apply event]* -> binning

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

import math

import numpy as np

from ecosim.constants import (
    EVENT_DRIFT,
    EVENT_NICHE_INVASION,
    EVENT_PERIODIC_SELECTION,
    NEAR_ZERO_BINS,
    NUM_TOLERANCE_LEVELS,
    POISSON_TERMS,
    RATE_EPSILON,
    RATE_OVERFLOW,
    TOLERANCE_FACTORS,
    UNIFORM_FLOOR,
)
from ecosim.darray import DynamicArray


def startpops(rng, npop, nu):
    """
    Partition nu lineages into npop groups (random canonical composition).

    Each new group is split off a uniformly chosen earlier group of size
    greater than one, at a uniformly chosen split point.

    Parameters
    ----------
    rng : ZigguratState
    npop : int
        Number of groups, 1 <= npop <= nu.
    nu : int
        Number of lineages.

    Returns
    -------
    list of int
        npop member counts, each >= 1, summing to nu.
    """
    if npop < 1 or npop > nu:
        raise ValueError("npop must be in [1, {}], got {}".format(nu, npop))
    members = [nu]
    for upto in range(2, npop + 1):
        while True:
            ipop = int((upto - 1) * rng.uniform())
            if members[ipop] != 1:
                break
        size = members[ipop]
        keep = int((size - 1) * rng.uniform()) + 1
        members[ipop] = keep
        members.append(size - keep)
    return members


def poisson(rng, mean):
    """
    Draw a Poisson variate by walking the cumulative probability table.

    The table covers k = 0..POISSON_TERMS; a draw beyond the accumulated
    mass returns the rounded mean.
    """
    x = rng.uniform()
    prob = math.exp(-mean)
    accum = 0.0
    for k in range(POISSON_TERMS + 1):
        if k:
            prob = prob * mean / k
        accum += prob
        if x < accum:
            return k
    return int(round(mean))


def identity_gap(divergence):
    """Jukes-Cantor style identity gap between two lineages of a divergence."""
    return -1.5 * (np.exp((-4.0 / 3.0) * np.asarray(divergence, dtype=float)) - 1.0)


def binning(divergence, multiplicity, criteria, nu):
    """
    Convert ancestor records into one bin count per identity criterion.

    Records are walked from the most recent to the oldest with a single
    pointer shared by all criteria, in the order given. Each record whose
    identity gap is within 1 - criterion merges (multiplicity - 1) lineages.

    Parameters
    ----------
    divergence : array-like of float
        Record divergences, most recent first.
    multiplicity : array-like of int
        Lineages merged by each record.
    criteria : sequence of float
        Identity criteria, nominally descending.
    nu : int
        Number of sampled lineages.

    Returns
    -------
    numpy.ndarray of int
        Bin count per criterion.
    """
    gaps = identity_gap(divergence)
    multiplicity = np.asarray(multiplicity, dtype=int)
    bins = np.empty(len(criteria), dtype=int)
    tally = 0
    pointer = 0
    total = gaps.shape[0]
    for k, criterion in enumerate(criteria):
        limit = 1.0 - criterion
        while pointer < total and gaps[pointer] <= limit:
            tally += int(multiplicity[pointer]) - 1
            pointer += 1
        bins[k] = nu - tally
    return bins


def check_success_fit(bins, observed, factors=TOLERANCE_FACTORS):
    """
    Score a simulated bin curve against the observed one.

    Every tolerance level is judged on its own from the full curve: level
    k succeeds when, for every criterion, neither observed/simulated nor
    simulated/observed exceeds factors[k]. A near-zero count on either side
    fails every level.

    Returns
    -------
    numpy.ndarray of bool
        One flag per tolerance factor.
    """
    bins = np.asarray(bins, dtype=float)
    observed = np.asarray(observed, dtype=float)
    success = np.zeros(len(factors), dtype=bool)
    if np.any(bins < NEAR_ZERO_BINS) or np.any(observed < NEAR_ZERO_BINS):
        return success
    up = observed / bins
    down = bins / observed
    for k, factor in enumerate(factors):
        success[k] = not (np.any(up > factor) or np.any(down > factor))
    return success


def _rate_in_domain(rate):
    return not (math.isnan(rate) or rate < RATE_EPSILON or rate > RATE_OVERFLOW)


def in_domain(params, nu):
    """
    Return False for parameter sets that must not be simulated.

    NaN, sub-epsilon or near-overflow rates (omega, sigma, and xn when
    drift is enabled) and npop outside [1, nu] are numeric domain errors;
    callers report an all-false result for them instead of simulating.
    """
    if not _rate_in_domain(params.omega) or not _rate_in_domain(params.sigma):
        return False
    if params.drift_enabled and not _rate_in_domain(params.xn):
        return False
    return 1 <= params.npop <= nu


class PopulationState:
    """
    Mutable state of one backward simulation run.

    Parameters
    ----------
    members : list of int
        Member count of every active population.
    capacity : int
        Initial capacity of the ancestor record arrays.
    """

    def __init__(self, members, capacity):
        self.members = list(members)
        self.time = 0.0
        self.divergence = DynamicArray(capacity, dtype=float)
        self.multiplicity = DynamicArray(capacity, dtype=np.int64)

    @property
    def active_populations(self):
        return len(self.members)

    @property
    def total_members(self):
        return sum(self.members)

    @property
    def total_ancestors(self):
        return len(self.divergence)

    def record(self, divergence, multiplicity):
        self.divergence.append(divergence)
        self.multiplicity.append(multiplicity)


def eligible(state):
    """
    Count populations eligible for each key event.

    Returns
    -------
    tuple of int
        (niche invasion, periodic selection). Niche invasion needs at least
        two active populations; periodic selection needs more than one member.
    """
    active = state.active_populations
    niche = active if active > 1 else 0
    periodic = sum(1 for m in state.members if m != 1)
    return niche, periodic


class CoalescentSimulator:
    """
    Runs backward simulations for one parameter set on one random stream.

    Parameters
    ----------
    params : ParameterSet
        omega, sigma, npop and optional xn.
    config : EcosimConfig
        Observed curve (criteria, observed), nu and sequence length.
    rng : ZigguratState
        Stream owned by the calling worker.
    """

    def __init__(self, params, config, rng):
        self.params = params
        self.config = config
        self.rng = rng
        self.omega = float(params.omega)
        self.sigma = float(params.sigma)
        self.xn = float(params.xn) if params.drift_enabled else None

    def drift_weights(self, state):
        if self.xn is None:
            return [0.0] * state.active_populations
        return [m * (m - 1) * 0.5 / self.xn for m in state.members]

    def which_event_and_when(self, state):
        """
        Advance simulated time to the next key event and pick its type.

        The exponential wait is measured in expected substitutions and is
        added to the clock as a Poisson-distributed integer count.
        """
        niche, periodic = eligible(state)
        eff_omega = niche * self.omega
        eff_sigma = periodic * self.sigma
        eff_drift = sum(self.drift_weights(state))
        rate = eff_omega + eff_sigma + eff_drift

        u = max(self.rng.uniform(), UNIFORM_FLOOR)
        wait = -math.log(u) / rate
        state.time += poisson(self.rng, wait)

        x = self.rng.uniform()
        if x < eff_omega / rate:
            return EVENT_NICHE_INVASION
        if eff_drift > 0.0 and x >= (eff_omega + eff_sigma) / rate:
            return EVENT_DRIFT
        return EVENT_PERIODIC_SELECTION

    def niche_invasion(self, state):
        members = state.members
        chosen = self.rng.below(len(members))
        state.record(state.time / self.config.length, members[chosen] + 1)
        # Swap-with-last removal
        members[chosen] = members[-1]
        members.pop()

    def periodic_selection(self, state):
        candidates = [i for i, m in enumerate(state.members) if m != 1]
        chosen = candidates[self.rng.below(len(candidates))]
        state.record(state.time / self.config.length, state.members[chosen])
        state.members[chosen] = 1

    def drift(self, state):
        weights = self.drift_weights(state)
        x = self.rng.uniform() * sum(weights)
        accum = 0.0
        chosen = None
        for i, w in enumerate(weights):
            if w <= 0.0:
                continue
            chosen = i
            accum += w
            if x < accum:
                break
        state.record(state.time / self.config.length, 2)
        state.members[chosen] -= 1

    def simulate(self):
        """
        Run one simulation to completion.

        Returns
        -------
        PopulationState
            Final state holding the ancestor records.
        """
        nu = self.config.nu
        state = PopulationState(startpops(self.rng, self.params.npop, nu), nu)
        while state.total_members > 1:
            event = self.which_event_and_when(state)
            if event == EVENT_NICHE_INVASION:
                self.niche_invasion(state)
            elif event == EVENT_PERIODIC_SELECTION:
                self.periodic_selection(state)
            else:
                self.drift(state)
        return state

    def replicate(self):
        """Simulate once and return the six success flags."""
        if not in_domain(self.params, self.config.nu):
            return np.zeros(NUM_TOLERANCE_LEVELS, dtype=bool)
        state = self.simulate()
        bins = binning(
            state.divergence.values(),
            state.multiplicity.values(),
            self.config.criteria,
            self.config.nu,
        )
        return check_success_fit(bins, self.config.observed)
