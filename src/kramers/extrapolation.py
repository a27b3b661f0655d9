"""
Extrapolation engine: regrowing the active region within a time step.

When shell cells of the active region carry significant density, the true
support of f extends beyond the tracked cells. Instead of evaluating stencils
on the full grid, the region is grown outward one ring at a time:

1. frontier: still-inactive 4-neighbours of the candidates, inside the
   growth band, minus the candidates themselves
2. each frontier cell gets a log-linear extrapolation from its active
   neighbours, v = exp(2 ln v1 - ln v2), i.e. locally exponential decay
3. resolved cells are written into the field and activated
4. RK4 runs on the closure of the new cells with the rest of the region
   frozen, and the new cells that are significant after that update become
   the next round's candidates

The loop stops when no candidate is left, nothing was resolved, or the round
limit is reached. Reaching the limit is not fatal; it is reported so that the
caller can flag a possibly under-resolved step.

All index bookkeeping uses IndexSet, so a cell is never processed twice.
"""

from typing import Callable, NamedTuple, Tuple

import jax.numpy as jnp
import numpy as np
from jax import Array

from kramers.grid import PhaseSpaceGrid
from kramers.indexsets import IndexSet
from kramers.truncation import TruncationParameters, gradient_squared


# Direction order of the directional extrapolation: -x1, +x1, -x2, +x2
DIRECTIONS: Tuple[Tuple[int, int, int], ...] = ((-1, 0, 0), (1, 0, 0), (0, -1, 1), (0, 1, 1))

# Manhattan radius of the closure accumulated after the first round
CLOSURE_RADIUS = 4


class ExtrapolationLimitWarning(RuntimeWarning):
    """Region growth was cut short by the extrapolation round limit."""


class ExtrapolationResult(NamedTuple):
    """
    Outcome of the growth rounds of one step.

    Attributes:
        f: Field with the extrapolated values written in
        active: Grown active mask
        grown: Cells activated by extrapolation
        closure: Accumulated closure on which RK4 was re-run (ExBD)
        history: Candidates processed this step (TBL_P)
        rounds: Number of rounds executed
        limit_reached: Candidates were left when the round limit stopped growth
    """

    f: Array
    active: Array
    grown: IndexSet
    closure: IndexSet
    history: IndexSet
    rounds: int
    limit_reached: bool


def _neighbours(cells: IndexSet, grid: PhaseSpaceGrid) -> np.ndarray:
    i1, i2 = grid.unravel(cells.indices)
    rows = np.concatenate([i1 - 1, i1 + 1, i1, i1])
    cols = np.concatenate([i2, i2, i2 - 1, i2 + 1])
    inside = (rows >= 0) & (rows < grid.N1) & (cols >= 0) & (cols < grid.N2)
    return grid.linear_index(rows[inside], cols[inside])


def frontier(candidates: IndexSet, active, grid: PhaseSpaceGrid) -> IndexSet:
    """
    Inactive 4-neighbours of the candidates that may be grown into (ExFF).

    Args:
        candidates: Candidate set
        active: Active mask
        grid: Phase-space grid

    Returns:
        Frontier cells inside the growth band, excluding the candidates
    """
    if not candidates:
        return IndexSet.empty()
    admissible = np.asarray(grid.growth_mask()) & ~np.asarray(active, dtype=bool)
    return IndexSet(_neighbours(candidates, grid)).select(admissible) - candidates


def extrapolate_frontier(
    cells: IndexSet,
    f: np.ndarray,
    grid: PhaseSpaceGrid,
    reduce: float,
) -> Tuple[IndexSet, np.ndarray]:
    """
    Log-linear extrapolation of every frontier cell from its neighbours.

    For each direction with non-zero distance-1 and distance-2 values v1, v2:
    - v1 becomes the smallest-neighbour reference if |v1| is strictly below
      the smallest seen so far (first direction wins ties)
    - exp(2 ln v1 - ln v2) is a valid guess when finite

    The value is the mean of the valid guesses, unless its magnitude exceeds
    the smallest neighbour's, in which case v_min · exp(-reduce · h) is used
    with h the spacing along the smallest neighbour's axis.

    Args:
        cells: Frontier cells (inside the growth band)
        f: Current field as a NumPy array
        grid: Phase-space grid
        reduce: Decay rate for overshooting guesses

    Returns:
        (resolved cells, their values in the same order)
    """
    if not cells:
        return IndexSet.empty(), np.empty(0)

    i1, i2 = grid.unravel(cells.indices)
    spacing = (grid.h1, grid.h2)

    n = i1.size
    best_abs = np.full(n, np.inf)
    best_value = np.zeros(n)
    best_h = np.zeros(n)
    total = np.zeros(n)
    count = np.zeros(n, dtype=np.int64)

    for d1, d2, axis in DIRECTIONS:
        v1 = f[i1 + d1, i2 + d2]
        v2 = f[i1 + 2 * d1, i2 + 2 * d2]
        both = (v1 != 0.0) & (v2 != 0.0)

        smaller = both & (np.abs(v1) < best_abs)
        best_abs = np.where(smaller, np.abs(v1), best_abs)
        best_value = np.where(smaller, v1, best_value)
        best_h = np.where(smaller, spacing[axis], best_h)

        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            guess = np.exp(2.0 * np.log(v1) - np.log(v2))
        valid = both & np.isfinite(guess)
        total = total + np.where(valid, guess, 0.0)
        count = count + valid

    resolved = count > 0
    mean = total[resolved] / count[resolved]
    reduced = best_value[resolved] * np.exp(-reduce * best_h[resolved])
    values = np.where(np.abs(mean) > best_abs[resolved], reduced, mean)

    return IndexSet._from_sorted(cells.indices[resolved]), values


def _dilate(mask: np.ndarray) -> np.ndarray:
    grown = mask.copy()
    grown[1:, :] |= mask[:-1, :]
    grown[:-1, :] |= mask[1:, :]
    grown[:, 1:] |= mask[:, :-1]
    grown[:, :-1] |= mask[:, 1:]
    return grown


def closure(cells: IndexSet, active, grid: PhaseSpaceGrid, radius: int) -> IndexSet:
    """
    `cells` plus every active cell within Manhattan distance `radius` (ExBD).

    Example:
        >>> first = closure(resolved, active, grid, radius=1)
    """
    mask = cells.to_mask(grid.shape)
    for _ in range(radius):
        mask = _dilate(mask)
    return cells | IndexSet.from_mask(mask & np.asarray(active, dtype=bool))


def grow_region(
    f: Array,
    active: Array,
    candidates: IndexSet,
    grid: PhaseSpaceGrid,
    params: TruncationParameters,
    advance: Callable[[Array, Array, Array], Array],
) -> ExtrapolationResult:
    """
    Run extrapolation rounds until growth stops or the round limit is hit.

    Args:
        f: Current field
        active: Active mask
        candidates: Initial candidates (TBL)
        grid: Phase-space grid
        params: Truncation thresholds and limits
        advance: advance(f, active, evaluate) -> provisional RK4 field, with
            moments recomputed over `active` and increments only on `evaluate`

    Returns:
        ExtrapolationResult with the grown field and mask
    """
    field = np.array(f, dtype=np.float64)
    mask = np.array(active, dtype=bool)
    growth_band = np.asarray(grid.growth_mask())
    threshold_grad = params.tol_high_grad**2

    history = candidates
    grown = IndexSet.empty()
    region = IndexSet.empty()
    rounds = 0

    while candidates and rounds < params.extrapolation_limit:
        cells = frontier(candidates, mask, grid)
        resolved, values = extrapolate_frontier(
            cells, field, grid, params.extrapolation_reduce
        )
        rounds += 1
        if not resolved:
            candidates = IndexSet.empty()
            break

        i1, i2 = grid.unravel(resolved.indices)
        field[i1, i2] = values
        mask[i1, i2] = True
        grown = grown | resolved

        if rounds == 1:
            region = closure(resolved, mask, grid, radius=1)
        else:
            region = region | closure(resolved, mask, grid, radius=CLOSURE_RADIUS)

        provisional = advance(
            jnp.asarray(field), jnp.asarray(mask), jnp.asarray(region.to_mask(grid.shape))
        )
        grad2 = np.asarray(gradient_squared(provisional, mask, grid))
        provisional = np.asarray(provisional)

        significant = (provisional >= params.tol_high) | (grad2 >= threshold_grad)
        candidates = resolved.select(significant & growth_band) - history
        history = history | candidates

    return ExtrapolationResult(
        f=jnp.asarray(field),
        active=jnp.asarray(mask),
        grown=grown,
        closure=region,
        history=history,
        rounds=rounds,
        limit_reached=bool(candidates),
    )
