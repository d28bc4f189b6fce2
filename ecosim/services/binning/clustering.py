"""
Observed binning: bin counts of real sequences at each identity criterion.

Sequences are compared pairwise (proportion of differing sites) and grouped
by complete-linkage clustering: two clusters merge only while every pair of
sequences across them is at least as identical as the criterion. The bin
count at a criterion is the number of clusters left.

The agglomeration is scipy's complete-linkage hierarchy, cut once per
criterion at distance 1 - criterion.

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

import logging

import numpy as np
from scipy.cluster.hierarchy import fcluster, linkage

from ecosim.tmatrix import TriangularMatrix

log = logging.getLogger(__name__)

# Absorbs rounding in 1 - criterion so an exact identity match still merges
IDENTITY_TOLERANCE = 1.0e-9


def _as_codes(sequences):
    rows = []
    for i, seq in enumerate(sequences):
        try:
            rows.append(np.frombuffer(seq.upper().encode("ascii"), dtype=np.uint8))
        except UnicodeEncodeError:
            raise ValueError("sequence {} contains non-ASCII characters".format(i + 1))
    return rows


def divergence_matrix(sequences):
    """
    Pairwise proportion of differing sites.

    Parameters
    ----------
    sequences : list of str
        Aligned sequences of equal length.

    Returns
    -------
    TriangularMatrix
        Divergence for every pair; zero on the diagonal.

    Raises
    ------
    ValueError
        If there are no sequences, or their lengths differ or are zero.
    """
    if not sequences:
        raise ValueError("at least one sequence is required")
    codes = _as_codes(sequences)
    length = codes[0].size
    if length == 0:
        raise ValueError("sequences must not be empty")
    for i, row in enumerate(codes):
        if row.size != length:
            raise ValueError(
                "sequence {} has length {}, expected {}".format(i + 1, row.size, length)
            )

    n = len(codes)
    matrix = TriangularMatrix(n)
    stacked = np.vstack(codes)
    for i in range(n):
        diffs = np.count_nonzero(stacked[i + 1:] != stacked[i], axis=1)
        for offset, count in enumerate(diffs, start=i + 1):
            matrix.set(i, offset, count / float(length))
    return matrix


def condensed_distances(matrix):
    """Upper off-diagonal entries in row order (scipy condensed form)."""
    full = matrix.to_array()
    rows, cols = np.triu_indices(len(matrix), k=1)
    return full[rows, cols].astype(float)


def complete_linkage_bins(matrix, criteria):
    """
    Number of complete-linkage clusters at each identity criterion.

    Parameters
    ----------
    matrix : TriangularMatrix
        Pairwise divergences.
    criteria : list of float
        Identity criteria in [0, 1].

    Returns
    -------
    list of int
        Bin count per criterion, in the order given.
    """
    n = len(matrix)
    if n == 1:
        return [1 for _ in criteria]
    tree = linkage(condensed_distances(matrix), method="complete")
    bins = []
    for crit in criteria:
        labels = fcluster(tree, t=1.0 - float(crit) + IDENTITY_TOLERANCE, criterion="distance")
        bins.append(int(labels.max()))
    log.debug("Binned %d sequences at %d criteria: %s", n, len(criteria), bins)
    return bins


def observed_bins(sequences, criteria):
    """Convenience wrapper: bin counts straight from aligned sequences."""
    return complete_linkage_bins(divergence_matrix(sequences), criteria)
