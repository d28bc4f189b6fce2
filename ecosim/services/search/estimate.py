"""
Starting-point estimate for the parameter search.

Reads omega, sigma and npop straight off the observed binning curve. Plotted
as y = log2(bins) against x = (1 - criterion) * length, the curve falls in
two roughly straight segments: a steep one near full identity, governed by
periodic selection, and a shallow tail governed by niche invasion. A line is
fitted to each segment; their slopes give sigma and omega, and the height of
their intersection gives the number of ecotypes.

The segment boundary is found by extending the first line while each next
point stays within a squared perpendicular distance of
ESTIMATE_THRESHOLD * log2(nu) from it.

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

import logging
import math

from scipy.stats import linregress

from ecosim.constants import ESTIMATE_THRESHOLD, RATE_FLOOR
from ecosim.engine import ParameterSet

log = logging.getLogger(__name__)


class LineFit:
    """Least-squares line y = slope * x + intercept over points[start:end]."""

    def __init__(self, points, start, end):
        xs = [p[0] for p in points[start:end]]
        ys = [p[1] for p in points[start:end]]
        fit = linregress(xs, ys)
        self.slope = float(fit.slope)
        self.intercept = float(fit.intercept)
        self.start = start
        self.end = end

    def squared_error(self, point):
        x, y = point
        distance = abs(-self.slope * x + y - self.intercept) / math.sqrt(
            self.slope * self.slope + 1.0)
        return distance * distance

    def to_dict(self):
        return {
            "slope": self.slope,
            "intercept": self.intercept,
            "start": self.start,
            "end": self.end,
        }


class ParameterEstimate:
    """Result of estimate_parameters: the point plus both fitted lines."""

    def __init__(self, params, sigma_line, omega_line, points):
        self.params = params
        self.sigma_line = sigma_line
        self.omega_line = omega_line
        self.points = points

    def to_dict(self):
        return {
            "params": self.params.to_dict(),
            "sigma_line": self.sigma_line.to_dict(),
            "omega_line": self.omega_line.to_dict(),
            "points": [[x, y] for x, y in self.points],
        }


def curve_points(criteria, observed, length):
    """
    (x, y) points of the binning curve, x ascending.

    Levels with a single bin carry no slope information and are skipped, as
    is any level whose bin count repeats the previous one.
    """
    pairs = sorted(zip(criteria, observed), key=lambda pair: pair[0])
    points = []
    previous = None
    for crit, bins in pairs:
        if bins <= 1 or bins == previous:
            continue
        points.append(((1.0 - crit) * length, math.log2(bins)))
        previous = bins
    points.reverse()
    return points


def _fit_segment(points, start, threshold, name):
    end = start + 2
    if end > len(points):
        raise ValueError(
            "not enough distinct bin levels to fit the {} line "
            "(need {}, have {})".format(name, end, len(points))
        )
    line = LineFit(points, start, end)
    for i in range(end, len(points)):
        if line.squared_error(points[i]) > threshold:
            break
        end = i + 1
    if end > line.end:
        line = LineFit(points, start, end)
    return line


def estimate_parameters(criteria, observed, length, nu):
    """
    Estimate omega, sigma and npop from an observed binning curve.

    Parameters
    ----------
    criteria : list of float
        Identity criteria.
    observed : list of int
        Bin count at each criterion.
    length : int
        Sequence length in nucleotides.
    nu : int
        Number of sequences (bounds npop).

    Returns
    -------
    ParameterEstimate

    Raises
    ------
    ValueError
        If the curve has too few distinct levels or the two lines are
        parallel.
    """
    threshold = ESTIMATE_THRESHOLD * math.log2(nu) if nu > 1 else ESTIMATE_THRESHOLD
    points = curve_points(criteria, observed, length)
    # The first point sits at full identity and is left out of both fits
    sigma_line = _fit_segment(points, 1, threshold, "sigma")
    omega_line = _fit_segment(points, sigma_line.end, threshold, "omega")

    if omega_line.slope == sigma_line.slope:
        raise ValueError("sigma and omega lines are parallel; cannot estimate npop")

    x_cross = (sigma_line.intercept - omega_line.intercept) / (
        omega_line.slope - sigma_line.slope)
    npop = int(math.floor(2.0 ** (omega_line.slope * x_cross + omega_line.intercept) + 0.5))
    npop = min(max(npop, 1), nu)

    omega = -omega_line.slope
    sigma = -sigma_line.slope
    if omega < RATE_FLOOR or sigma < RATE_FLOOR:
        log.warning("Estimated rate below floor (omega=%g sigma=%g); clamping to %g",
                    omega, sigma, RATE_FLOOR)
        omega = max(omega, RATE_FLOOR)
        sigma = max(sigma, RATE_FLOOR)

    params = ParameterSet(omega, sigma, npop)
    log.debug("Estimated %s from %d curve points", params, len(points))
    return ParameterEstimate(params, sigma_line, omega_line, points)
