"""
TriangularMatrix: symmetric matrix stored as its upper half.

A pairwise divergence matrix over n sequences needs only n(n+1)/2 cells.
get(i, j) and get(j, i) address the same cell.

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

import numpy as np


class TriangularMatrix:
    """
    Fixed-capacity symmetric half matrix.

    Parameters
    ----------
    capacity : int
        Matrix dimension n. Must be positive.
    dtype : numpy dtype, optional
        Element type (default float).
    """

    def __init__(self, capacity, dtype=float):
        capacity = int(capacity)
        if capacity < 1:
            raise ValueError("capacity must be positive, got {}".format(capacity))
        self.capacity = capacity
        self._data = np.zeros(capacity * (capacity + 1) // 2, dtype=dtype)

    def __len__(self):
        return self.capacity

    def _index(self, i, j):
        n = self.capacity
        if i < 0 or j < 0 or i >= n or j >= n:
            raise IndexError(
                "index ({}, {}) out of range for capacity {}".format(i, j, n)
            )
        if i > j:
            i, j = j, i
        return i * n - i * (i + 1) // 2 + j

    def get(self, i, j):
        return self._data[self._index(i, j)].item()

    def set(self, i, j, value):
        self._data[self._index(i, j)] = value

    def __getitem__(self, key):
        i, j = key
        return self.get(i, j)

    def __setitem__(self, key, value):
        i, j = key
        self.set(i, j, value)

    def to_array(self):
        """Return the full symmetric matrix as a 2-D numpy array."""
        n = self.capacity
        full = np.zeros((n, n), dtype=self._data.dtype)
        rows, cols = np.triu_indices(n)
        full[rows, cols] = self._data
        full[cols, rows] = self._data
        return full
