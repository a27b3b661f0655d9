"""
Potential-energy strategies and initial conditions.

The solver only needs the force along the momentum axis, V'(x1, x2), which
enters the stage derivative as the coefficient of the centred x2 difference.
Potentials are small frozen dataclasses exposing two vectorised methods:

    value(x1, x2)     -> V
    gradient(x1, x2)  -> V'

and are selected by name at configuration time through make_potential().

Provided shapes:
- FreePotential: V = 0 (pure advection and relaxation)
- QuarticDoubleWell: V = a4*x^4 - a2*x^2
- MetastableWell: cubic well with a flat plateau beyond a cut-off, the
  standard escape-over-a-barrier benchmark

Initial conditions:
- gaussian_packet: Wigner function of a Gaussian wave packet
- point_seed: a single non-zero cell
"""

from dataclasses import dataclass
from typing import Callable, Dict, Protocol

import jax.numpy as jnp
from jax import Array

from kramers.grid import PhaseSpaceGrid


class Potential(Protocol):
    """Interface every potential strategy satisfies."""

    def value(self, x1: Array, x2: Array) -> Array: ...

    def gradient(self, x1: Array, x2: Array) -> Array: ...


@dataclass(frozen=True)
class FreePotential:
    """V = 0 everywhere."""

    def value(self, x1: Array, x2: Array) -> Array:
        return jnp.zeros(jnp.broadcast_shapes(jnp.shape(x1), jnp.shape(x2)))

    def gradient(self, x1: Array, x2: Array) -> Array:
        return jnp.zeros(jnp.broadcast_shapes(jnp.shape(x1), jnp.shape(x2)))


@dataclass(frozen=True)
class QuarticDoubleWell:
    """
    Symmetric double well V(x) = a4*x^4 - a2*x^2.

    The defaults place the minima at x = ±sqrt(a2 / (2*a4)) ≈ ±0.845 with a
    barrier height of a2^2 / (4*a4) ≈ 3.6e-3.
    """

    a4: float = 0.007
    a2: float = 0.01

    def value(self, x1: Array, x2: Array) -> Array:
        x1 = jnp.broadcast_to(x1, jnp.broadcast_shapes(jnp.shape(x1), jnp.shape(x2)))
        return self.a4 * x1**4 - self.a2 * x1**2

    def gradient(self, x1: Array, x2: Array) -> Array:
        x1 = jnp.broadcast_to(x1, jnp.broadcast_shapes(jnp.shape(x1), jnp.shape(x2)))
        return 4.0 * self.a4 * x1**3 - 2.0 * self.a2 * x1


@dataclass(frozen=True)
class MetastableWell:
    """
    Cubic metastable well V(x) = x^2 * (a2 - a3*x), flattened to `plateau`
    for x > cutoff.

    With the defaults the well bottom is at x = 0, the barrier top near
    x ≈ 0.67 and the cubic meets the plateau value at the cut-off, so
    probability that escapes over the barrier drifts freely.
    """

    a2: float = 0.1
    a3: float = 0.09936666666667
    cutoff: float = 1.12556
    plateau: float = -0.015

    def value(self, x1: Array, x2: Array) -> Array:
        x1 = jnp.broadcast_to(x1, jnp.broadcast_shapes(jnp.shape(x1), jnp.shape(x2)))
        well = x1**2 * (self.a2 - self.a3 * x1)
        return jnp.where(x1 > self.cutoff, self.plateau, well)

    def gradient(self, x1: Array, x2: Array) -> Array:
        x1 = jnp.broadcast_to(x1, jnp.broadcast_shapes(jnp.shape(x1), jnp.shape(x2)))
        slope = x1 * (2.0 * self.a2 - 3.0 * self.a3 * x1)
        return jnp.where(x1 > self.cutoff, 0.0, slope)


POTENTIALS: Dict[str, Callable[..., Potential]] = {
    "free": FreePotential,
    "double_well": QuarticDoubleWell,
    "metastable": MetastableWell,
}


def make_potential(name: str, **params) -> Potential:
    """
    Build a potential strategy by name.

    Args:
        name: One of "free", "double_well", "metastable"
        **params: Shape parameters forwarded to the strategy

    Raises:
        ValueError: If the name is unknown
    """
    try:
        factory = POTENTIALS[name]
    except KeyError:
        raise ValueError(
            f"Unknown potential '{name}'. Available: {', '.join(sorted(POTENTIALS))}"
        ) from None
    return factory(**params)


def _normalize_interior(f: Array, grid: PhaseSpaceGrid) -> Array:
    f = jnp.where(grid.interior_mask(), f, 0.0)
    mass = jnp.sum(f) * grid.cell_volume
    if not float(mass) > 0.0:
        raise ValueError("Initial condition has no mass inside the grid interior")
    return f / mass


def gaussian_packet(
    grid: PhaseSpaceGrid,
    x01: float = 0.0,
    x02: float = 0.0,
    a1: float = 0.5,
    a2: float = 1.0,
    hbar: float = 1.0,
) -> Array:
    """
    Wigner function of a minimum-uncertainty Gaussian packet.

        f(x1, x2) = 1/(π ħ) · exp(-2 a1 (x1 - x01)²) · exp(-(x2 - x02)² / (2 ħ² a2))

    Cells in the frozen edge margin are set to zero and the result is
    normalised to unit mass over the interior.

    Args:
        grid: Phase-space grid
        x01, x02: Packet centre in position and momentum
        a1: Inverse squared position width
        a2: Momentum-width parameter
        hbar: Reduced Planck constant

    Returns:
        Field of shape [N1, N2]

    Example:
        >>> f0 = gaussian_packet(grid, x01=-0.845, a1=2.0)
    """
    X1, X2 = grid.coordinates()
    f = (1.0 / (jnp.pi * hbar)) * jnp.exp(-2.0 * a1 * (X1 - x01) ** 2) * jnp.exp(
        -0.5 / hbar**2 * (X2 - x02) ** 2 / a2
    )
    return _normalize_interior(f, grid)


def point_seed(grid: PhaseSpaceGrid, x1: float, x2: float, value: float = 1.0) -> Array:
    """
    Field that is zero except for one cell nearest to (x1, x2).

    The seed value is kept as given (not normalised), so a unit seed on a unit
    spacing grid carries unit mass.
    """
    i1, i2 = grid.index_of(x1, x2)
    interior = grid.interior_mask()
    if not bool(interior[i1, i2]):
        raise ValueError(f"Seed cell ({i1}, {i2}) lies in the frozen edge margin")
    return jnp.zeros(grid.shape).at[i1, i2].set(value)
