"""
Phase-space grid infrastructure for the Klein-Kramers solver.

This module provides the fixed-resolution 2D lattice that every other part of
the solver indexes into:
- PhaseSpaceGrid: Pydantic model with spacing, bounds, edge margin and coordinates
- BoundingBox: inclusive index bounds of the active region
- shift: zero-filled neighbour lookup used by all finite-difference stencils

Axis 0 is position (x1), axis 1 is momentum (x2). Fields are stored as dense
arrays of shape [N1, N2]; the linear index of cell (i1, i2) is i1 * N2 + i2.
"""

from functools import partial
from typing import NamedTuple, Optional, Tuple

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array
from pydantic import BaseModel, ConfigDict, Field, model_validator


class BoundingBox(NamedTuple):
    """Inclusive index bounds of the active region along both axes."""

    x1_min: int
    x1_max: int
    x2_min: int
    x2_max: int

    @property
    def rows(self) -> slice:
        """Slice selecting the rows (first-axis indices) inside the box."""
        return slice(self.x1_min, self.x1_max + 1)

    @property
    def columns(self) -> slice:
        """Slice selecting the columns (second-axis indices) inside the box."""
        return slice(self.x2_min, self.x2_max + 1)


class PhaseSpaceGrid(BaseModel):
    """
    Immutable 2D phase-space lattice (position x1 by momentum x2).

    Cell (i1, i2) sits at x1 = x1_min + i1*h1, x2 = x2_min + i2*h2. A margin
    of `edge` cells on every side is never evolved, so centred stencils of
    interior cells always stay inside the array.

    Attributes:
        N1: Number of cells along x1 (round((x1_max - x1_min)/h1) + 1)
        N2: Number of cells along x2, also the row stride of the linear index
        h1: Grid spacing along x1 (must be > 0)
        h2: Grid spacing along x2 (must be > 0)
        x1_min, x1_max: Position bounds
        x2_min, x2_max: Momentum bounds
        edge: Width of the frozen margin (must be >= 1)
        x1: Position coordinates (shape: [N1])
        x2: Momentum coordinates (shape: [N2])

    Example:
        >>> grid = PhaseSpaceGrid.create(h1=0.1, h2=0.1, x1_min=-5, x1_max=5,
        ...                              x2_min=-5, x2_max=5, edge=2)
        >>> grid.shape
        (101, 101)
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    N1: int = Field(gt=0, description="Number of cells along x1")
    N2: int = Field(gt=0, description="Number of cells along x2")
    h1: float = Field(gt=0.0, description="Grid spacing along x1")
    h2: float = Field(gt=0.0, description="Grid spacing along x2")
    x1_min: float = Field(description="Lower position bound")
    x1_max: float = Field(description="Upper position bound")
    x2_min: float = Field(description="Lower momentum bound")
    x2_max: float = Field(description="Upper momentum bound")
    edge: int = Field(ge=1, description="Width of the frozen edge margin")
    x1: Array = Field(description="Position coordinates")
    x2: Array = Field(description="Momentum coordinates")

    @model_validator(mode="after")
    def validate_margin(self) -> "PhaseSpaceGrid":
        """Require room for at least one growable cell inside the margin."""
        for name, n in (("N1", self.N1), ("N2", self.N2)):
            if n < 2 * self.edge + 3:
                raise ValueError(
                    f"{name}={n} is too small for edge={self.edge} "
                    f"(need at least {2 * self.edge + 3} cells)"
                )
        return self

    @classmethod
    def create(
        cls,
        h1: float,
        h2: float,
        x1_min: float,
        x1_max: float,
        x2_min: float,
        x2_max: float,
        edge: int = 2,
    ) -> "PhaseSpaceGrid":
        """
        Factory method computing cell counts and coordinate arrays.

        Args:
            h1, h2: Grid spacings (must be > 0)
            x1_min, x1_max: Position bounds (x1_max > x1_min)
            x2_min, x2_max: Momentum bounds (x2_max > x2_min)
            edge: Frozen margin width in cells (default: 2)

        Returns:
            PhaseSpaceGrid with coordinates pre-computed

        Raises:
            ValueError: If spacings are not positive or bounds are reversed
        """
        if h1 <= 0 or h2 <= 0:
            raise ValueError(f"Grid spacings must be positive, got h1={h1}, h2={h2}")
        if x1_max <= x1_min or x2_max <= x2_min:
            raise ValueError(
                f"Domain bounds must be increasing, got x1=[{x1_min}, {x1_max}], "
                f"x2=[{x2_min}, {x2_max}]"
            )

        N1 = int(round((x1_max - x1_min) / h1)) + 1
        N2 = int(round((x2_max - x2_min) / h2)) + 1

        x1 = x1_min + h1 * jnp.arange(N1, dtype=jnp.float64)
        x2 = x2_min + h2 * jnp.arange(N2, dtype=jnp.float64)

        return cls(
            N1=N1,
            N2=N2,
            h1=float(h1),
            h2=float(h2),
            x1_min=float(x1_min),
            x1_max=float(x1_max),
            x2_min=float(x2_min),
            x2_max=float(x2_max),
            edge=edge,
            x1=x1,
            x2=x2,
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.N1, self.N2)

    @property
    def stride(self) -> int:
        """Row stride of the linear index."""
        return self.N2

    @property
    def size(self) -> int:
        return self.N1 * self.N2

    @property
    def cell_volume(self) -> float:
        return self.h1 * self.h2

    def linear_index(self, i1, i2) -> np.ndarray:
        """Map (i1, i2) index arrays to linear indices i1 * N2 + i2."""
        return np.asarray(i1, dtype=np.int64) * self.N2 + np.asarray(i2, dtype=np.int64)

    def unravel(self, index) -> Tuple[np.ndarray, np.ndarray]:
        """Inverse of linear_index."""
        return np.divmod(np.asarray(index, dtype=np.int64), self.N2)

    def coordinates(self) -> Tuple[Array, Array]:
        """Return 2D coordinate arrays (X1, X2), each of shape [N1, N2]."""
        return jnp.meshgrid(self.x1, self.x2, indexing="ij")

    def interior_mask(self) -> Array:
        """Cells with edge <= i < N - edge on both axes."""
        return _band_mask(self.N1, self.N2, self.edge)

    def growth_mask(self) -> Array:
        """
        Cells the active region may grow into: edge < i < N - edge - 1.

        Frontier cells inside this band always have their distance-2
        neighbours inside the array.
        """
        return _band_mask(self.N1, self.N2, self.edge + 1)

    def index_of(self, x1: float, x2: float) -> Tuple[int, int]:
        """Nearest cell indices for a phase-space point."""
        i1 = int(round((x1 - self.x1_min) / self.h1))
        i2 = int(round((x2 - self.x2_min) / self.h2))
        if not (0 <= i1 < self.N1 and 0 <= i2 < self.N2):
            raise ValueError(f"Point ({x1}, {x2}) lies outside the grid")
        return i1, i2


def _band_mask(N1: int, N2: int, margin: int) -> Array:
    i1 = jnp.arange(N1)[:, jnp.newaxis]
    i2 = jnp.arange(N2)[jnp.newaxis, :]
    return (i1 >= margin) & (i1 < N1 - margin) & (i2 >= margin) & (i2 < N2 - margin)


@partial(jax.jit, static_argnames=["axis", "offset"])
def shift(values: Array, axis: int, offset: int) -> Array:
    """
    Neighbour lookup with zero fill: out[i] = values[i + offset] along `axis`.

    Cells whose neighbour falls outside the array read 0 (False for masks).

    Args:
        values: 2D array
        axis: 0 for x1, 1 for x2
        offset: Neighbour distance, positive or negative (non-zero)

    Returns:
        Shifted array with the same shape and dtype
    """
    width = abs(offset)
    n = values.shape[axis]
    pad = [(width, width) if a == axis else (0, 0) for a in range(values.ndim)]
    padded = jnp.pad(values, pad)
    return jax.lax.slice_in_dim(padded, width + offset, width + offset + n, axis=axis)


def bounding_box(active) -> Optional[BoundingBox]:
    """
    Tight inclusive bounds of the active cells, or None when none are active.

    Example:
        >>> box = bounding_box(state.active)
        >>> rows = state.f[box.rows, box.columns]
    """
    mask = np.asarray(active, dtype=bool)
    rows = np.flatnonzero(mask.any(axis=1))
    if rows.size == 0:
        return None
    cols = np.flatnonzero(mask.any(axis=0))
    return BoundingBox(int(rows[0]), int(rows[-1]), int(cols[0]), int(cols[-1]))
