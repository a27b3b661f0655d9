"""
Active-region tracking for the truncated-grid formalism.

Only cells where the density is numerically significant are evolved. This
module decides which cells those are:

- initial_truncation: drop insignificant cells of the initial condition
- retruncate: shrink the region after each normalised step
- boundary_shell: active cells with at least one inactive 4-neighbour (TB)
- extrapolation_candidates: shell cells that signal the region must grow (TBL)

Significance is tested on both the value and the squared discrete gradient:

    |∇f|² ≈ Σ_axis ((f₊ - f₋) / (n·h))²

where n counts the neighbours along that axis that are active. An inactive
neighbour is replaced by the cell's own value, so at a region edge the
difference degenerates to one-sided and underestimates the true gradient.

A cell is dropped when value < tol_high AND |∇f|² < tol_high_grad². A shell
cell is a growth candidate when value >= tol_low OR |∇f|² >= tol_low_grad².
"""

from functools import partial
from typing import Tuple

import jax
import jax.numpy as jnp
from jax import Array
from pydantic import BaseModel, ConfigDict, Field

from kramers.grid import PhaseSpaceGrid, shift
from kramers.indexsets import IndexSet


class TruncationParameters(BaseModel):
    """
    Thresholds and limits of the truncated-grid formalism.

    Attributes:
        full_grid: Evolve every interior cell and skip all truncation logic
        tol_high: Value below which a cell may be dropped
        tol_low: Shell value at or above which the region grows
        tol_high_grad: Gradient magnitude below which a cell may be dropped
        tol_low_grad: Shell gradient magnitude at or above which the region grows
        extrapolation_reduce: Decay rate applied to the smallest neighbour when
            the log-linear extrapolation would overshoot
        extrapolation_limit: Maximum extrapolation rounds per step
    """

    model_config = ConfigDict(frozen=True)

    full_grid: bool = Field(default=False, description="Disable truncation")
    tol_high: float = Field(default=1e-8, ge=0.0, description="Drop threshold on value")
    tol_low: float = Field(default=1e-6, ge=0.0, description="Growth threshold on value")
    tol_high_grad: float = Field(default=1e-8, ge=0.0, description="Drop threshold on gradient")
    tol_low_grad: float = Field(default=1e-6, ge=0.0, description="Growth threshold on gradient")
    extrapolation_reduce: float = Field(
        default=0.5, ge=0.0, description="Decay rate for overshooting extrapolations"
    )
    extrapolation_limit: int = Field(
        default=200, ge=0, description="Maximum extrapolation rounds per step"
    )


@partial(jax.jit, static_argnames=["axis"])
def _axis_gradient(values: Array, available: Array, axis: int, h: float) -> Array:
    plus_ok = shift(available, axis, 1)
    minus_ok = shift(available, axis, -1)
    plus = jnp.where(plus_ok, shift(values, axis, 1), values)
    minus = jnp.where(minus_ok, shift(values, axis, -1), values)

    n = plus_ok.astype(values.dtype) + minus_ok.astype(values.dtype)
    safe_n = jnp.where(n > 0, n, 1.0)
    return jnp.where(n > 0, (jnp.abs(plus - minus) / (safe_n * h)) ** 2, 0.0)


def gradient_squared(values: Array, available: Array, grid: PhaseSpaceGrid) -> Array:
    """
    Squared discrete gradient magnitude with own-value substitution.

    Args:
        values: Field of shape [N1, N2]
        available: Cells usable as neighbours; others are mirrored
        grid: Phase-space grid

    Returns:
        |∇f|² of shape [N1, N2]
    """
    available = jnp.asarray(available, dtype=bool)
    return _axis_gradient(values, available, 0, grid.h1) + _axis_gradient(
        values, available, 1, grid.h2
    )


def initial_truncation(
    f: Array,
    grid: PhaseSpaceGrid,
    params: TruncationParameters,
) -> Tuple[Array, Array]:
    """
    Active region of an initial condition.

    Every neighbour is available here, so the gradient is the plain centred
    difference. In full-grid mode the region is the whole interior.

    Returns:
        (f zeroed outside the region, active mask)
    """
    interior = grid.interior_mask()
    if params.full_grid:
        return jnp.where(interior, f, 0.0), interior

    grad2 = gradient_squared(f, jnp.ones(grid.shape, dtype=bool), grid)
    dropped = (f < params.tol_high) & (grad2 < params.tol_high_grad**2)
    active = interior & ~dropped
    return jnp.where(active, f, 0.0), active


def retruncate(
    pf: Array,
    active: Array,
    grid: PhaseSpaceGrid,
    params: TruncationParameters,
) -> Array:
    """
    Shrink the active region after normalisation.

    A cell leaves the region when its normalised value is below tol_high and
    its gradient (over the current region) is below tol_high_grad, or when
    its normalised value is exactly zero.

    Returns:
        Updated active mask
    """
    grad2 = gradient_squared(pf, active, grid)
    dropped = (pf < params.tol_high) & (grad2 < params.tol_high_grad**2)
    return active & ~dropped & (pf != 0.0)


@jax.jit
def _shell_jit(active: Array) -> Array:
    enclosed = (
        shift(active, 0, 1) & shift(active, 0, -1) & shift(active, 1, 1) & shift(active, 1, -1)
    )
    return active & ~enclosed


def boundary_shell(active: Array) -> IndexSet:
    """
    Active cells with at least one inactive 4-neighbour.

    Cells outside the array count as inactive. An empty region has an empty
    shell.
    """
    return IndexSet.from_mask(_shell_jit(jnp.asarray(active, dtype=bool)))


def extrapolation_candidates(
    f: Array,
    pf: Array,
    active: Array,
    boundary: IndexSet,
    grid: PhaseSpaceGrid,
    params: TruncationParameters,
) -> IndexSet:
    """
    Shell cells whose value or gradient says the density extends further.

    A shell cell qualifies when pf >= tol_low or |∇f|² >= tol_low_grad²
    (gradient of the current field over the active region), and it lies in
    the growth band edge < i < N - edge - 1 on both axes.

    Raising tol_low or tol_low_grad can only remove candidates.

    Args:
        f: Current field
        pf: Post-normalisation snapshot
        active: Active mask
        boundary: Boundary shell of `active`
        grid: Phase-space grid
        params: Truncation thresholds

    Returns:
        Candidate set (TBL)
    """
    grad2 = gradient_squared(f, active, grid)
    significant = (pf >= params.tol_low) | (grad2 >= params.tol_low_grad**2)
    return boundary.select(significant & grid.growth_mask())
