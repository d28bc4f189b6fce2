"""
Numerical constants for the ecotype simulation and parameter search.

Tolerance factors, event codes, domain guards and the optimizer defaults
used by every driver program live here so that the simulator, the
replicate evaluator and the search controller agree on them.

IMPORTANT: No unicode characters allowed in this file (Windows charmap constraint).
"""

import math
import sys

import numpy as np

# Tolerance factors between simulated and observed bin counts, loosest
# first. Index 0 is the 500% level, index 5 the 105% level.
TOLERANCE_FACTORS = (5.00, 2.00, 1.50, 1.25, 1.10, 1.05)
NUM_TOLERANCE_LEVELS = len(TOLERANCE_FACTORS)

# Bin counts or observations below this are treated as zero (forced failure)
NEAR_ZERO_BINS = 1.0e-6

# Key events of the backward simulation
EVENT_NICHE_INVASION = 1
EVENT_PERIODIC_SELECTION = 2
EVENT_DRIFT = 3

# Uniform draws are floored here before taking the log of the wait time
UNIFORM_FLOOR = 1.0e-6

# Poisson cumulative table length (k = 0..POISSON_TERMS)
POISSON_TERMS = 100

# Domain guards (single precision, matching the rate parameters' storage)
RATE_EPSILON = float(np.finfo(np.float32).eps)
RATE_OVERFLOW = float(np.finfo(np.float32).max) - 1.0

# Largest argument exp() accepts without overflowing a double
LOG_HUGE = math.log(sys.float_info.max)

# Chi-square critical value, 1 degree of freedom, alpha = 0.05
CHI2_CRITICAL = 3.84

# Likelihoods below this end a confidence-interval walk
LIKELIHOOD_FLOOR = 1.0e-6

# Domain clamps for the confidence-interval walk
RATE_FLOOR = 1.0e-7
SIGMA_CEILING = 100.0
SIGMA_CEILING_LABEL = ">=100"

# Smallest geometric step factor accepted by the interval search
MIN_STEP_FACTOR = 1.05

# Nelder-Mead defaults shared by all drivers
DEFAULT_MAXF = 100
DEFAULT_STOPCR = 1.0e-1
DEFAULT_NLOOP = 8
DEFAULT_SIMP = 1.0e-6

# Log-space step used when |log(value)| is too small to halve usefully
SMALL_LOG_STEP = 0.15
SMALL_LOG_WINDOW = 0.3

# Starting-point estimate: squared-error threshold per log2(nu)
ESTIMATE_THRESHOLD = 0.1

# Interval step used when the search input carries none
DEFAULT_STEP_FACTOR = 1.5
DEFAULT_NPOP_STRIDE = 1
