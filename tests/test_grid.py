"""
Tests for the phase-space grid descriptor.

Covers:
- Cell counts and coordinates from spacings and bounds
- Interior and growth bands
- Linear indexing and neighbour shifts with zero fill
- Bounding box of an active mask
"""

import pytest
import jax.numpy as jnp
import numpy as np

from kramers.grid import BoundingBox, PhaseSpaceGrid, bounding_box, shift


@pytest.fixture
def grid():
    return PhaseSpaceGrid.create(h1=0.5, h2=0.25, x1_min=-2.0, x1_max=2.0, x2_min=-1.0, x2_max=1.0)


class TestPhaseSpaceGrid:
    """Test grid construction."""

    def test_cell_counts(self, grid):
        """N = (max - min) / h + 1 on each axis."""
        assert grid.N1 == 9
        assert grid.N2 == 9
        assert grid.shape == (9, 9)
        assert grid.size == 81
        assert grid.stride == grid.N2

    def test_coordinates(self, grid):
        """Coordinates start at the lower bound with step h."""
        np.testing.assert_allclose(grid.x1, np.linspace(-2.0, 2.0, 9))
        np.testing.assert_allclose(grid.x2, np.linspace(-1.0, 1.0, 9))
        assert grid.x1.dtype == jnp.float64

        X1, X2 = grid.coordinates()
        assert X1.shape == grid.shape
        assert float(X1[3, 0]) == pytest.approx(-0.5)
        assert float(X2[0, 3]) == pytest.approx(-0.25)

    def test_cell_volume(self, grid):
        assert grid.cell_volume == pytest.approx(0.125)

    def test_invalid_spacing_raises(self):
        with pytest.raises(ValueError, match="spacings"):
            PhaseSpaceGrid.create(h1=0.0, h2=1.0, x1_min=0, x1_max=10, x2_min=0, x2_max=10)

    def test_reversed_bounds_raise(self):
        with pytest.raises(ValueError, match="increasing"):
            PhaseSpaceGrid.create(h1=1.0, h2=1.0, x1_min=10, x1_max=0, x2_min=0, x2_max=10)

    def test_too_small_for_edge_raises(self):
        """A grid must leave room for at least one growable cell."""
        with pytest.raises(ValueError):
            PhaseSpaceGrid.create(h1=1.0, h2=1.0, x1_min=0, x1_max=5, x2_min=0, x2_max=10, edge=2)

    def test_interior_mask(self, grid):
        """Interior excludes `edge` cells on every side."""
        interior = np.asarray(grid.interior_mask())
        assert interior.sum() == (9 - 4) * (9 - 4)
        assert not interior[1, 4]
        assert interior[2, 4]
        assert not interior[4, 7]

    def test_growth_mask_inside_interior(self, grid):
        """Growth band is one cell narrower than the interior."""
        growth = np.asarray(grid.growth_mask())
        interior = np.asarray(grid.interior_mask())
        assert growth.sum() == 3 * 3
        assert not np.any(growth & ~interior)

    def test_linear_index_roundtrip(self, grid):
        i1 = np.array([0, 3, 8])
        i2 = np.array([0, 5, 8])
        index = grid.linear_index(i1, i2)
        np.testing.assert_array_equal(index, [0, 3 * 9 + 5, 80])
        r1, r2 = grid.unravel(index)
        np.testing.assert_array_equal(r1, i1)
        np.testing.assert_array_equal(r2, i2)

    def test_index_of(self, grid):
        assert grid.index_of(0.0, 0.0) == (4, 4)
        assert grid.index_of(0.6, -0.3) == (5, 3)
        with pytest.raises(ValueError, match="outside"):
            grid.index_of(5.0, 0.0)


class TestShift:
    """Test neighbour lookup with zero fill."""

    def test_shift_reads_neighbour(self):
        values = jnp.arange(12.0).reshape(3, 4)
        plus = shift(values, 0, 1)
        np.testing.assert_array_equal(plus[0], values[1])
        np.testing.assert_array_equal(plus[2], np.zeros(4))

        minus = shift(values, 1, -1)
        np.testing.assert_array_equal(minus[:, 1], values[:, 0])
        np.testing.assert_array_equal(minus[:, 0], np.zeros(3))

    def test_shift_distance_two(self):
        values = jnp.arange(5.0).reshape(5, 1)
        np.testing.assert_array_equal(shift(values, 0, 2)[:, 0], [2.0, 3.0, 4.0, 0.0, 0.0])

    def test_shift_boolean_mask(self):
        mask = jnp.array([[True, False, True]])
        np.testing.assert_array_equal(shift(mask, 1, 1), [[False, True, False]])


class TestBoundingBox:
    """Test bounding box of the active cells."""

    def test_empty_region(self):
        assert bounding_box(np.zeros((5, 5), dtype=bool)) is None

    def test_tight_bounds(self):
        mask = np.zeros((6, 7), dtype=bool)
        mask[1, 2] = True
        mask[4, 5] = True
        box = bounding_box(mask)
        assert box == BoundingBox(1, 4, 2, 5)
        assert box.rows == slice(1, 5)
        assert box.columns == slice(2, 6)
