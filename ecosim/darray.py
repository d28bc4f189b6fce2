"""
DynamicArray: growable numpy-backed array.

Grows in steps of its initial capacity whenever a write lands at or past
the current capacity, so ancestor histories of unknown length can be
recorded without reallocating on every append.

IMPORTANT: No unicode characters allowed (Windows charmap constraint).
"""

import numpy as np


class DynamicArray:
    """
    Growable one-dimensional array.

    Parameters
    ----------
    capacity : int
        Initial capacity, also the growth increment. Must be positive.
    dtype : numpy dtype, optional
        Element type (default float).
    """

    def __init__(self, capacity, dtype=float):
        capacity = int(capacity)
        if capacity < 1:
            raise ValueError("capacity must be positive, got {}".format(capacity))
        self.initial_capacity = capacity
        self._data = np.zeros(capacity, dtype=dtype)
        self._size = 0

    @property
    def capacity(self):
        return self._data.shape[0]

    @property
    def dtype(self):
        return self._data.dtype

    def __len__(self):
        return self._size

    def _grow(self, index):
        # Enough whole increments to hold index
        increments = (index - self.capacity) // self.initial_capacity + 1
        extra = np.zeros(increments * self.initial_capacity, dtype=self._data.dtype)
        self._data = np.concatenate((self._data, extra))

    def get(self, index):
        if index < 0 or index >= self._size:
            raise IndexError(
                "index {} out of range for size {}".format(index, self._size)
            )
        return self._data[index].item()

    def set(self, index, value):
        if index < 0:
            raise IndexError("negative index {}".format(index))
        if index >= self.capacity:
            self._grow(index)
        self._data[index] = value
        if index >= self._size:
            self._size = index + 1

    def append(self, value):
        self.set(self._size, value)

    def clear(self):
        """Forget all elements but keep the allocated capacity."""
        self._size = 0

    def values(self):
        """Return a read-only view of the used prefix."""
        view = self._data[:self._size]
        view.flags.writeable = False
        return view

    def __getitem__(self, index):
        return self.get(index)

    def __setitem__(self, index, value):
        self.set(index, value)

    def __iter__(self):
        return iter(self.values().tolist())
