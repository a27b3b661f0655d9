"""
Tests for IndexSet, the sorted linear-index set used for region bookkeeping.
"""

import pytest
import numpy as np

from kramers.indexsets import IndexSet


class TestIndexSet:
    """Test construction and set algebra."""

    def test_sorted_unique(self):
        s = IndexSet([5, 1, 5, 3])
        assert list(s) == [1, 3, 5]
        assert len(s) == 3

    def test_read_only(self):
        s = IndexSet([1, 2])
        with pytest.raises(ValueError):
            s.indices[0] = 7

    def test_empty(self):
        s = IndexSet.empty()
        assert len(s) == 0
        assert not s
        assert s == IndexSet()

    def test_union_no_double_count(self):
        a = IndexSet([1, 2, 3])
        b = IndexSet([3, 4])
        assert list(a | b) == [1, 2, 3, 4]
        assert a.union(b) == a | b

    def test_difference(self):
        a = IndexSet([1, 2, 3, 4])
        assert list(a - IndexSet([2, 4, 9])) == [1, 3]

    def test_intersection(self):
        a = IndexSet([1, 2, 3, 4])
        assert list(a & IndexSet([0, 2, 4])) == [2, 4]

    def test_contains(self):
        s = IndexSet([10, 20, 30])
        assert 20 in s
        assert 25 not in s
        assert 40 not in s

    def test_mask_roundtrip(self):
        mask = np.zeros((4, 5), dtype=bool)
        mask[1, 2] = True
        mask[3, 0] = True
        s = IndexSet.from_mask(mask)
        assert list(s) == [1 * 5 + 2, 3 * 5 + 0]
        np.testing.assert_array_equal(s.to_mask((4, 5)), mask)

    def test_select(self):
        predicate = np.zeros((2, 3), dtype=bool)
        predicate[0, 1] = True
        predicate[1, 2] = True
        s = IndexSet([0, 1, 5])
        assert list(s.select(predicate)) == [1, 5]

    def test_hash_and_eq(self):
        assert IndexSet([3, 1]) == IndexSet([1, 3])
        assert hash(IndexSet([3, 1])) == hash(IndexSet([1, 3]))
        assert IndexSet([1]) != IndexSet([2])

    def test_repr_truncates(self):
        assert repr(IndexSet([1, 2])) == "IndexSet([1, 2])"
        assert "size=20" in repr(IndexSet(range(20)))
