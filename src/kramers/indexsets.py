"""
Sorted sets of linear cell indices.

The truncated-grid bookkeeping (boundary shell, extrapolation candidates,
visited history, frontier and its closure) is expressed as set algebra on
linear indices. IndexSet keeps its contents sorted and unique at all times, so
union and difference never double count a cell.
"""

from typing import Iterator, Tuple

import numpy as np


class IndexSet:
    """
    Immutable sorted set of unique int64 linear indices.

    Example:
        >>> a = IndexSet([5, 1, 5, 3])
        >>> list(a)
        [1, 3, 5]
        >>> list(a - IndexSet([3]))
        [1, 5]
    """

    __slots__ = ("_indices",)

    def __init__(self, indices=()):
        values = np.unique(np.asarray(indices, dtype=np.int64).ravel())
        values.flags.writeable = False
        self._indices = values

    @classmethod
    def _from_sorted(cls, values: np.ndarray) -> "IndexSet":
        result = cls.__new__(cls)
        values = np.asarray(values, dtype=np.int64)
        values.flags.writeable = False
        result._indices = values
        return result

    @classmethod
    def empty(cls) -> "IndexSet":
        return cls._from_sorted(np.empty(0, dtype=np.int64))

    @classmethod
    def from_mask(cls, mask) -> "IndexSet":
        """Linear indices of the True cells of a (flattened row-major) mask."""
        return cls._from_sorted(np.flatnonzero(np.asarray(mask, dtype=bool)))

    @property
    def indices(self) -> np.ndarray:
        """Read-only sorted index array."""
        return self._indices

    def union(self, other: "IndexSet") -> "IndexSet":
        return IndexSet._from_sorted(np.union1d(self._indices, other._indices))

    def difference(self, other: "IndexSet") -> "IndexSet":
        return IndexSet._from_sorted(
            np.setdiff1d(self._indices, other._indices, assume_unique=True)
        )

    def intersection(self, other: "IndexSet") -> "IndexSet":
        return IndexSet._from_sorted(
            np.intersect1d(self._indices, other._indices, assume_unique=True)
        )

    __or__ = union
    __sub__ = difference
    __and__ = intersection

    def select(self, predicate) -> "IndexSet":
        """
        Keep the members whose cell is True in `predicate`.

        Args:
            predicate: Boolean array over the whole grid (any shape, row-major)
        """
        flat = np.asarray(predicate, dtype=bool).ravel()
        return IndexSet._from_sorted(self._indices[flat[self._indices]])

    def to_mask(self, shape: Tuple[int, int]) -> np.ndarray:
        mask = np.zeros(int(np.prod(shape)), dtype=bool)
        mask[self._indices] = True
        return mask.reshape(shape)

    def __len__(self) -> int:
        return int(self._indices.size)

    def __bool__(self) -> bool:
        return self._indices.size > 0

    def __iter__(self) -> Iterator[int]:
        return (int(i) for i in self._indices)

    def __contains__(self, index) -> bool:
        pos = np.searchsorted(self._indices, index)
        return bool(pos < self._indices.size and self._indices[pos] == index)

    def __eq__(self, other) -> bool:
        if not isinstance(other, IndexSet):
            return NotImplemented
        return np.array_equal(self._indices, other._indices)

    def __hash__(self) -> int:
        return hash(self._indices.tobytes())

    def __repr__(self) -> str:
        if len(self) > 8:
            head = ", ".join(str(i) for i in self._indices[:8])
            return f"IndexSet([{head}, ...], size={len(self)})"
        return f"IndexSet({self._indices.tolist()})"
