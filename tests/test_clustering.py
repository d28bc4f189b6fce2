"""
Tests for observed binning (ecosim/services/binning/clustering.py).

scipy's pdist (hamming) is the reference for pairwise divergence.
"""

import numpy as np
import pytest
from scipy.spatial.distance import pdist

from ecosim.services.binning.clustering import (
    complete_linkage_bins, condensed_distances, divergence_matrix, observed_bins,
)

# Divergences: AB 0.1, BC 0.1, AC 0.2, AD 0.5, BD 0.6, CD 0.7
SEQUENCES = [
    "AAAAAAAAAA",
    "AAAAAAAAAC",
    "AAAAAAAACC",
    "GGGGGAAAAA",
]


class TestDivergence:

    def test_pairs(self):
        m = divergence_matrix(SEQUENCES)
        assert m[0, 1] == pytest.approx(0.1)
        assert m[0, 2] == pytest.approx(0.2)
        assert m[2, 3] == pytest.approx(0.7)
        assert m[1, 1] == 0.0

    def test_matches_hamming(self):
        rng = np.random.default_rng(3)
        seqs = ["".join(rng.choice(list("ACGT"), size=40)) for _ in range(7)]
        codes = np.array([[ord(c) for c in s] for s in seqs])
        np.testing.assert_allclose(
            condensed_distances(divergence_matrix(seqs)), pdist(codes, metric="hamming"))

    def test_case_insensitive(self):
        m = divergence_matrix(["acgt", "ACGT"])
        assert m[0, 1] == 0.0

    def test_empty_list(self):
        with pytest.raises(ValueError):
            divergence_matrix([])

    def test_empty_sequence(self):
        with pytest.raises(ValueError):
            divergence_matrix(["", ""])

    def test_unequal_lengths(self):
        with pytest.raises(ValueError, match="sequence 2"):
            divergence_matrix(["ACGT", "ACG"])

    def test_non_ascii(self):
        with pytest.raises(ValueError, match="non-ASCII"):
            divergence_matrix(["ACGT", "AC\u00e9T"])


class TestCompleteLinkageBins:

    def test_bins_per_criterion(self):
        bins = observed_bins(SEQUENCES, [1.0, 0.9, 0.8, 0.5, 0.3])
        assert bins == [4, 3, 2, 2, 1]

    def test_order_follows_criteria(self):
        bins = observed_bins(SEQUENCES, [0.3, 1.0, 0.8])
        assert bins == [1, 4, 2]

    def test_identical_sequences_share_a_bin(self):
        assert observed_bins(["ACGT", "ACGT", "TTTT"], [1.0]) == [2]

    def test_single_sequence(self):
        assert complete_linkage_bins(divergence_matrix(["ACGT"]), [1.0, 0.5]) == [1, 1]

    def test_never_more_bins_at_looser_criteria(self):
        rng = np.random.default_rng(11)
        seqs = ["".join(rng.choice(list("ACGT"), size=60)) for _ in range(12)]
        criteria = [1.0, 0.95, 0.9, 0.85, 0.8, 0.75, 0.7]
        bins = observed_bins(seqs, criteria)
        assert all(a >= b for a, b in zip(bins, bins[1:]))
        assert bins[0] == 12
