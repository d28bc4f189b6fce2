"""
Nelder-Mead simplex minimization with optional quadratic-surface fit.

Derivative-free minimizer for noisy objectives (O'Neill 1971, AS 47, with
the quadratic-surface extension of Nelder and Mead 1965). The objective is
any callable f(vector) -> float; parameters whose step is zero stay fixed.

Stages of one search:
    initial simplex -> [reflect -> expand | contract -> shrink]*
    -> convergence check every nloop iterations (confirmed twice)
    -> optional quadratic fit about the minimum (Hessian via chola/syminv)

Faults are reported through SimplexResult.status, never raised:
    CONVERGED              0  minimum found
    MAX_EVALUATIONS        1  evaluation budget exhausted
    NOT_POSITIVE_DEFINITE  2  Hessian of the fitted surface not +ve definite
    NO_PARAMETERS          3  no parameters, or none free to vary
    INVALID_LOOP           4  nloop < 1

The packed symmetric routines chola (AS 6) and syminv (AS 7) store the
lower triangle row by row: element (i, j), i >= j, zero-based, lives at
i * (i + 1) / 2 + j.

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

import logging
import math

import numpy as np

from ecosim.constants import DEFAULT_MAXF, DEFAULT_NLOOP, DEFAULT_SIMP, DEFAULT_STOPCR

log = logging.getLogger(__name__)

ETA = float(np.finfo(float).eps)

CONVERGED = 0
MAX_EVALUATIONS = 1
NOT_POSITIVE_DEFINITE = 2
NO_PARAMETERS = 3
INVALID_LOOP = 4

STATUS_MESSAGES = {
    CONVERGED: "converged",
    MAX_EVALUATIONS: "maximum number of function evaluations exceeded",
    NOT_POSITIVE_DEFINITE: "matrix of estimated second derivatives not positive definite",
    NO_PARAMETERS: "no free parameters",
    INVALID_LOOP: "nloop must be positive",
}

REFLECT = 1.0
CONTRACT = 0.5
EXPAND = 2.0

# Vertices whose values match the minimum this closely are pushed outward
# before the surface fit, at most this many times each
MAX_DEGENERATE_EXPANSIONS = 32


def packed_index(i, j):
    """Zero-based position of (i, j) in a packed lower triangle."""
    if i < j:
        i, j = j, i
    return i * (i + 1) // 2 + j


def unpack_symmetric(packed, n):
    """Expand a packed lower triangle into a full symmetric matrix."""
    full = np.zeros((n, n), dtype=float)
    for i in range(n):
        for j in range(i + 1):
            full[i, j] = full[j, i] = packed[packed_index(i, j)]
    return full


def chola(a, n):
    """
    Cholesky factor of a packed symmetric non-negative definite matrix.

    Algorithm AS 6 (Healy, 1968), with the rank-deficiency tolerance of
    the revised version: a diagonal element within five times its
    estimated rounding error is set to zero and counted in nullty.

    Parameters
    ----------
    a : array-like
        Packed lower triangle of the n x n matrix.
    n : int
        Matrix order.

    Returns
    -------
    tuple
        (u, nullty, ifault, rmax). u is the packed factor with a = u u';
        ifault is 1 for n < 1, 2 if a is not non-negative definite, else 0;
        rmax estimates the relative accuracy of the worst diagonal.
    """
    if n <= 0:
        return None, 0, 1, 0.0
    a = np.asarray(a, dtype=float)
    u = np.zeros(n * (n + 1) // 2, dtype=float)
    r = np.zeros(n, dtype=float)
    nullty = 0
    rmax = ETA
    r[0] = ETA
    # j, k, l, m are 1-based packed positions
    j = 1
    k = 0
    w = 0.0
    rsq = 0.0
    for icol in range(1, n + 1):
        l = 0
        for irow in range(1, icol + 1):
            k += 1
            w = a[k - 1]
            if irow == icol:
                rsq = (w * ETA) ** 2
            m = j
            for i in range(1, irow + 1):
                l += 1
                if i == irow:
                    break
                w -= u[l - 1] * u[m - 1]
                if irow == icol:
                    rsq += (u[l - 1] ** 2 * r[i - 1]) ** 2
                m += 1
            if irow == icol:
                break
            if u[l - 1] > 0.0:
                u[k - 1] = w / u[l - 1]
            else:
                u[k - 1] = 0.0
                if abs(w) > abs(rmax * a[k - 1]):
                    return u, nullty, 2, rmax
        # End of column: judge the diagonal against its rounding error
        rsq = math.sqrt(rsq)
        if abs(w) > 5.0 * rsq:
            if w < 0.0:
                return u, nullty, 2, rmax
            u[k - 1] = math.sqrt(w)
            r[icol - 1] = rsq / w
            if r[icol - 1] > rmax:
                rmax = r[icol - 1]
        else:
            u[k - 1] = 0.0
            nullty += 1
        j += icol
    return u, nullty, 0, rmax


def syminv(a, n):
    """
    Inverse (or generalized inverse) of a packed symmetric matrix.

    Algorithm AS 7 (Healy, 1968): Cholesky factorization by chola followed
    by back-substitution from the last row. Rows and columns whose
    diagonal factor is zero are zeroed, giving a generalized inverse of a
    rank-deficient matrix.

    Parameters
    ----------
    a : array-like
        Packed lower triangle of the n x n matrix.
    n : int
        Matrix order.

    Returns
    -------
    tuple
        (c, nullty, ifault, rmax). c is the packed inverse; ifault as for
        chola.
    """
    if n <= 0:
        return None, 0, 1, 0.0
    c, nullty, ifault, rmax = chola(a, n)
    if ifault != 0:
        return c, nullty, ifault, rmax
    w = np.zeros(n, dtype=float)
    nn = n * (n + 1) // 2
    irow = n
    ndiag = nn
    # 1-based packed positions throughout
    while irow > 0:
        if -ETA < c[ndiag - 1] < ETA:
            l = ndiag
            for jj in range(irow, n + 1):
                c[l - 1] = 0.0
                l += jj
        else:
            l = ndiag
            for i in range(irow, n + 1):
                w[i - 1] = c[l - 1]
                l += i
            icol = n
            jcol = nn
            mdiag = nn
            while True:
                l = jcol
                x = 1.0 / w[irow - 1] if icol == irow else 0.0
                kk = n
                while kk != irow:
                    x -= w[kk - 1] * c[l - 1]
                    kk -= 1
                    l -= 1
                    if l > mdiag:
                        l = l - kk + 1
                c[l - 1] = x / w[irow - 1]
                if icol == irow:
                    break
                mdiag -= icol
                icol -= 1
                jcol -= 1
        ndiag -= irow
        irow -= 1
    return c, nullty, 0, rmax


class SimplexResult:
    """
    Outcome of one nelder_mead call.

    Attributes
    ----------
    params : numpy.ndarray
        Centroid of the final simplex (the reported minimum).
    value : float
        Objective value at params.
    status : int
        One of the status codes above.
    evaluations : int
        Objective evaluations used, including any quadratic fit.
    variances : numpy.ndarray or None
        Diagonal of the approximate covariance from the quadratic fit.
    quadratic_minimum : numpy.ndarray or None
        Minimum of the fitted quadratic surface.
    quadratic_value : float or None
        Fitted surface value at quadratic_minimum.
    rank : int or None
        Rank of the information matrix.
    """

    def __init__(self, params, value, status, evaluations, variances=None,
                 quadratic_minimum=None, quadratic_value=None, rank=None):
        self.params = params
        self.value = value
        self.status = status
        self.evaluations = evaluations
        self.variances = variances
        self.quadratic_minimum = quadratic_minimum
        self.quadratic_value = quadratic_value
        self.rank = rank

    @property
    def converged(self):
        return self.status == CONVERGED

    @property
    def message(self):
        return STATUS_MESSAGES.get(self.status, "unknown status")

    def to_dict(self):
        def _list(arr):
            return None if arr is None else [float(v) for v in arr]
        return {
            "params": _list(self.params),
            "value": self.value,
            "status": self.status,
            "message": self.message,
            "evaluations": self.evaluations,
            "variances": _list(self.variances),
            "quadratic_minimum": _list(self.quadratic_minimum),
            "quadratic_value": self.quadratic_value,
            "rank": self.rank,
        }


class _Objective:
    """Counting wrapper that emits progress every iprint evaluations."""

    def __init__(self, func, iprint, progress):
        self.func = func
        self.iprint = iprint
        self.progress = progress
        self.neval = 0

    def __call__(self, point):
        value = float(self.func(point.copy()))
        self.neval += 1
        if self.iprint > 0 and self.neval % self.iprint == 0:
            log.debug("%4d %12.5g %s", self.neval, value, point)
            if self.progress is not None:
                self.progress(self.neval, value, point.copy())
        return value


def _initial_simplex(objective, p, step, free):
    columns = np.flatnonzero(free)
    g = np.tile(p, (columns.size + 1, 1))
    for row, col in enumerate(columns, start=1):
        g[row, col] = p[col] + step[col]
    h = np.array([objective(vertex) for vertex in g])
    return g, h


def _replace(g, h, index, point, value, free):
    g[index, free] = point[free]
    h[index] = value


def _iterate(objective, g, h, free):
    """One reflect / expand / contract / shrink step on the simplex."""
    nap = h.size - 1
    imax = int(np.argmax(h))
    imin = int(np.argmin(h))
    hmax = h[imax]
    hmin = h[imin]

    pbar = (g.sum(axis=0) - g[imax]) / nap
    pbar[~free] = g[imax, ~free]

    pstar = REFLECT * (pbar - g[imax]) + pbar
    hstar = objective(pstar)

    if hstar < hmin:
        pstst = EXPAND * (pstar - pbar) + pbar
        hstst = objective(pstst)
        if hstst < hstar:
            _replace(g, h, imax, pstst, hstst, free)
        else:
            _replace(g, h, imax, pstar, hstar, free)
        return

    if np.any(hstar < np.delete(h, imax)):
        _replace(g, h, imax, pstar, hstar, free)
        return

    if hstar <= hmax:
        _replace(g, h, imax, pstar, hstar, free)
        hmax = hstar
    pstst = CONTRACT * g[imax] + (1.0 - CONTRACT) * pbar
    hstst = objective(pstst)
    if hstst <= hmax:
        _replace(g, h, imax, pstst, hstst, free)
        return

    # Shrink every vertex halfway toward the best one
    for i in range(nap + 1):
        if i == imin:
            continue
        g[i, free] = (g[i, free] + g[imin, free]) * 0.5
        h[i] = objective(g[i])


def _search(objective, g, h, free, maxf, stopcr, nloop):
    """
    Iterate until convergence is confirmed twice or the budget runs out.

    Returns
    -------
    tuple
        (centroid, value at centroid, status).
    """
    loop = 0
    confirmed = False
    savemn = 0.0
    while True:
        loop += 1
        _iterate(objective, g, h, free)
        if loop < nloop:
            continue
        loop = 0
        hmean = h.mean()
        hstd = math.sqrt(((h - hmean) ** 2).mean())
        if hstd > stopcr and objective.neval <= maxf:
            confirmed = False
            continue

        p = g.mean(axis=0)
        func = objective(p)
        if objective.neval > maxf:
            log.debug("Budget of %d evaluations exceeded; rms %.6g, centroid value %.6g",
                      maxf, hstd, func)
            return p, func, MAX_EVALUATIONS
        if confirmed and abs(savemn - hmean) < stopcr:
            log.debug("Minimum found after %d evaluations: %.6g", objective.neval, func)
            return p, func, CONVERGED
        confirmed = True
        savemn = hmean


def _fit_quadratic(objective, g, h, p, func, free, simp):
    """
    Fit a quadratic surface through the final simplex and its midpoints.

    Returns
    -------
    dict or None
        Keys minimum, value, variances, rank; None if the estimated
        Hessian is not positive definite.
    """
    nap = h.size - 1

    for i in range(nap + 1):
        expansions = 0
        while abs(h[i] - func) < simp and expansions < MAX_DEGENERATE_EXPANSIONS:
            g[i, free] = 2.0 * g[i, free] - p[free]
            h[i] = objective(g[i])
            expansions += 1

    aval = np.array([objective((g[0] + g[i + 1]) * 0.5) for i in range(nap)])
    a0 = h[0]

    bmat = np.zeros(nap * (nap + 1) // 2, dtype=float)
    for i in range(1, nap):
        for j in range(i):
            hstst = objective((g[i + 1] + g[j + 1]) * 0.5)
            bmat[packed_index(i, j)] = 2.0 * (hstst + a0 - aval[i] - aval[j])
    for i in range(nap):
        bmat[packed_index(i, i)] = 2.0 * (h[i + 1] + a0 - 2.0 * aval[i])

    gradient = 2.0 * aval - (h[1:] + 3.0 * a0) * 0.5
    q = g[1:] - g[0]

    inverse, nullty, ifault, _ = syminv(bmat, nap)
    if ifault != 0:
        return None

    b = unpack_symmetric(inverse, nap)
    hvec = b.dot(gradient)
    covariance = q.T.dot(b).dot(q) * 0.5
    return {
        "minimum": g[0] - hvec.dot(q),
        "value": float(a0 - hvec.dot(gradient)),
        "variances": np.diag(covariance).copy(),
        "rank": nap - nullty,
    }


def nelder_mead(func, start, step, maxf=DEFAULT_MAXF, stopcr=DEFAULT_STOPCR,
                nloop=DEFAULT_NLOOP, iquad=False, simp=DEFAULT_SIMP,
                iprint=0, progress=None):
    """
    Minimize func by the Nelder-Mead simplex method.

    Parameters
    ----------
    func : callable
        Objective f(numpy.ndarray) -> float.
    start : array-like
        Starting point (nop values).
    step : array-like
        Initial step per parameter; |step| <= machine epsilon fixes it.
    maxf : int, optional
        Evaluation budget (default 100).
    stopcr : float, optional
        Stopping criterion on the standard deviation of the vertex values
        and on the change of their mean between confirmations (default 0.1).
    nloop : int, optional
        Iterations between convergence checks (default 8).
    iquad : bool, optional
        Fit a quadratic surface after convergence (default False).
    simp : float, optional
        Vertices closer than this in value to the minimum are expanded
        before the surface fit (default 1e-6).
    iprint : int, optional
        Report progress every iprint evaluations; <= 0 disables.
    progress : callable, optional
        progress(neval, value, params) receives each progress report.

    Returns
    -------
    SimplexResult
    """
    p = np.array(start, dtype=float).ravel()
    step = np.array(step, dtype=float).ravel()
    if step.size != p.size:
        raise ValueError(
            "step has {} entries for {} parameters".format(step.size, p.size)
        )
    if p.size == 0:
        return SimplexResult(p, float("nan"), NO_PARAMETERS, 0)
    if nloop <= 0:
        return SimplexResult(p, float("nan"), INVALID_LOOP, 0)

    objective = _Objective(func, iprint, progress)
    free = np.abs(step) > ETA
    if not free.any():
        value = objective(p)
        return SimplexResult(p, value, NO_PARAMETERS, objective.neval)

    while True:
        g, h = _initial_simplex(objective, p, step, free)
        p, value, status = _search(objective, g, h, free, maxf, stopcr, nloop)
        if status != CONVERGED or not iquad:
            return SimplexResult(p, value, status, objective.neval)

        log.debug("Fitting quadratic surface about supposed minimum")
        fit = _fit_quadratic(objective, g, h, p, value, free, simp)
        if fit is not None:
            return SimplexResult(
                p, value, CONVERGED, objective.neval,
                variances=fit["variances"],
                quadratic_minimum=fit["minimum"],
                quadratic_value=fit["value"],
                rank=fit["rank"],
            )
        if objective.neval > maxf:
            return SimplexResult(p, value, NOT_POSITIVE_DEFINITE, objective.neval)
        log.debug("Hessian not positive definite; restarting with halved steps")
        step = step * 0.5
        free = np.abs(step) > ETA
