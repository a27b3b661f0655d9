"""
Klein-Kramers physics: row moments, local equilibrium and the stage derivative.

The evolved equation for the phase-space density f(x1, x2, t) is

    ∂f/∂t = -(x2/m) ∂f/∂x1 + V'(x1, x2) ∂f/∂x2 + γ (f_eq - f)

with a BGK-type relaxation toward a local Maxwellian f_eq built from the
row-wise (fixed x1) velocity moments of f:

    ρ(x1)  = ∫ f dx2
    u(x1)  = ∫ x2 f dx2 / (m ρ)
    T(x1)  = ∫ (x2 - m u)² f dx2 / (m kB ρ)
    f_eq   = ρ / sqrt(2π m kB T) · exp(-(x2 - m u)² / (2 m kB T))

Three moment policies decide which of u and T are measured:
- LINEARIZED: u = 0, T = bath temperature
- ISOTHERMAL: u measured, T = bath temperature
- LOCAL: u and T both measured

All quadratures run over an active-cell mask, so the same routine serves the
full-grid mode (mask = interior) and the truncated mode (mask = active region).

This module also defines KramersState, the single object that carries the
per-run mutable state between steps.
"""

from enum import Enum
from functools import partial
from typing import NamedTuple, Optional

import jax
import jax.numpy as jnp
from jax import Array
from pydantic import BaseModel, ConfigDict, Field, field_validator

from kramers.grid import BoundingBox, PhaseSpaceGrid, shift
from kramers.indexsets import IndexSet


class MomentPolicy(str, Enum):
    """Which moments feed the local equilibrium."""

    LINEARIZED = "linearized"
    ISOTHERMAL = "isothermal"
    LOCAL = "local"


class PhysicsParameters(BaseModel):
    """
    Physical constants of the Klein-Kramers equation.

    Attributes:
        mass: Particle mass m
        kb: Boltzmann constant kB
        temperature: Bath temperature used by the LINEARIZED/ISOTHERMAL policies
        gamma: Relaxation rate γ of the collision term
        hbar: Reduced Planck constant (initial wave packet only)
        moment_policy: Moment policy for the local equilibrium
    """

    model_config = ConfigDict(frozen=True)

    mass: float = Field(default=1.0, gt=0.0, description="Particle mass")
    kb: float = Field(default=1.0, gt=0.0, description="Boltzmann constant")
    temperature: float = Field(default=1.0, gt=0.0, description="Bath temperature")
    gamma: float = Field(default=0.1, ge=0.0, description="Relaxation rate")
    hbar: float = Field(default=1.0, gt=0.0, description="Reduced Planck constant")
    moment_policy: MomentPolicy = Field(
        default=MomentPolicy.LOCAL, description="Moment policy for the equilibrium"
    )


class RowMoments(NamedTuple):
    """Row-wise hydrodynamic moments, each of shape [N1]."""

    density: Array
    velocity: Array
    temperature: Array


@partial(jax.jit, static_argnames=["policy"])
def _row_moments_jit(
    f: Array,
    mask: Array,
    x2: Array,
    h2: float,
    mass: float,
    kb: float,
    temperature: float,
    policy: MomentPolicy,
) -> RowMoments:
    """JIT-compiled masked quadrature of the row moments."""
    w = jnp.where(mask, f, 0.0)
    x2_row = x2[jnp.newaxis, :]

    density = jnp.sum(w, axis=1) * h2
    positive = density > 0.0
    safe_density = jnp.where(positive, density, 1.0)

    if policy == MomentPolicy.LINEARIZED:
        velocity = jnp.zeros_like(density)
    else:
        velocity = jnp.sum(x2_row * w, axis=1) * h2 / (mass * safe_density)

    if policy == MomentPolicy.LOCAL:
        spread = (x2_row - mass * velocity[:, jnp.newaxis]) ** 2
        local_temperature = jnp.sum(spread * w, axis=1) * h2 / (mass * kb * safe_density)
    else:
        local_temperature = jnp.full_like(density, temperature)

    return RowMoments(
        density=jnp.where(positive, density, 0.0),
        velocity=jnp.where(positive, velocity, 0.0),
        temperature=jnp.where(positive, local_temperature, 0.0),
    )


def row_moments(
    f: Array,
    mask: Array,
    grid: PhaseSpaceGrid,
    physics: PhysicsParameters,
) -> RowMoments:
    """
    Density, drift velocity and temperature of every row over masked cells.

    Rows with non-positive density report zero for all three moments.

    Args:
        f: Field of shape [N1, N2]
        mask: Cells taking part in the quadrature
        grid: Phase-space grid
        physics: Physical constants and moment policy

    Returns:
        RowMoments(density, velocity, temperature)
    """
    return _row_moments_jit(
        f,
        mask,
        grid.x2,
        grid.h2,
        physics.mass,
        physics.kb,
        physics.temperature,
        MomentPolicy(physics.moment_policy),
    )


@jax.jit
def clamp_equilibrium(feq: Array, mask: Array, cap: float) -> Array:
    """Zero equilibrium values outside the mask, above `cap` or non-finite."""
    ok = mask & jnp.isfinite(feq) & (feq <= cap)
    return jnp.where(ok, feq, 0.0)


@jax.jit
def _maxwellian_jit(
    moments: RowMoments,
    mask: Array,
    x2: Array,
    mass: float,
    kb: float,
    cap: float,
) -> Array:
    kT = mass * kb * moments.temperature[:, jnp.newaxis]
    populated = (moments.density[:, jnp.newaxis] > 0.0) & (kT > 0.0)
    safe_kT = jnp.where(populated, kT, 1.0)

    shifted = x2[jnp.newaxis, :] - mass * moments.velocity[:, jnp.newaxis]
    feq = (
        moments.density[:, jnp.newaxis]
        * jnp.sqrt(1.0 / (2.0 * jnp.pi * safe_kT))
        * jnp.exp(-(shifted**2) / (2.0 * safe_kT))
    )
    feq = jnp.where(populated, feq, 0.0)
    return clamp_equilibrium(feq, mask, cap)


def local_equilibrium(
    moments: RowMoments,
    mask: Array,
    grid: PhaseSpaceGrid,
    physics: PhysicsParameters,
) -> Array:
    """
    Local Maxwellian built from row moments, clamped to [0, 1/(h1*h2)].

    Physics:
        A value larger than the reciprocal cell volume would put more than unit
        probability in one cell, so such values (and non-finite ones from
        negative measured temperatures) are replaced by zero.
    """
    return _maxwellian_jit(
        moments, mask, grid.x2, physics.mass, physics.kb, 1.0 / grid.cell_volume
    )


def equilibrium_field(
    f: Array,
    mask: Array,
    grid: PhaseSpaceGrid,
    physics: PhysicsParameters,
    fixed: Optional[Array] = None,
) -> tuple[Array, RowMoments]:
    """
    Moments of `f` and the relaxation target used by the collision term.

    Args:
        f: Current field
        mask: Active cells
        grid: Phase-space grid
        physics: Physical constants
        fixed: Optional prescribed equilibrium replacing the local Maxwellian

    Returns:
        (f_eq, moments)
    """
    moments = row_moments(f, mask, grid, physics)
    if fixed is not None:
        return clamp_equilibrium(fixed, mask, 1.0 / grid.cell_volume), moments
    return local_equilibrium(moments, mask, grid, physics), moments


@jax.jit
def kramers_rhs(
    g: Array,
    feq: Array,
    active: Array,
    evaluate: Array,
    velocity: Array,
    force: Array,
    dt: float,
    h1: float,
    h2: float,
    gamma: float,
) -> Array:
    """
    One RK4 stage increment K = dt · RHS(g).

        K = -dt/(2 h1) · (x2/m) · (g[i1+1] - g[i1-1])
            + dt/(2 h2) · V' · (g[i2+1] - g[i2-1])
            + dt · γ · (f_eq - g)

    Stencil reads outside `active` see zero. The increment is only computed
    where `evaluate` is True and is zero elsewhere, so cells outside the
    evaluated region act as frozen neighbours.

    Args:
        g: Stage field (F + w·K_prev)
        feq: Relaxation target
        active: Cells that exist as stencil neighbours
        evaluate: Cells whose increment is computed
        velocity: Advection speed x2/m, broadcastable to the grid
        force: Potential gradient V', broadcastable to the grid
        dt, h1, h2, gamma: Step size, spacings and relaxation rate

    Returns:
        Stage increment of shape [N1, N2]
    """
    g = jnp.where(active, g, 0.0)
    d1 = shift(g, 0, 1) - shift(g, 0, -1)
    d2 = shift(g, 1, 1) - shift(g, 1, -1)

    k = (
        -dt / (2.0 * h1) * velocity * d1
        + dt / (2.0 * h2) * force * d2
        + dt * gamma * (feq - g)
    )
    return jnp.where(evaluate, k, 0.0)


class KramersState(BaseModel):
    """
    Complete solver state carried between time steps.

    Attributes:
        f: Authoritative density field (zero outside the active region)
        pf: Post-normalisation snapshot of the last step; the truncation
            thresholds are tested against it
        active: Boolean active-region mask
        boundary: Boundary shell, active cells with an inactive 4-neighbour
        box: Bounding box of the active region (None when it is empty)
        density, velocity, temperature: Row moments used by the last step
        time: Simulation time
        step: Number of completed steps
        grid: Phase-space grid

    Example:
        >>> state = initialize_state(gaussian_packet(grid), model)
        >>> state.n_active, state.n_boundary
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    f: Array = Field(description="Density field")
    pf: Array = Field(description="Post-normalisation snapshot")
    active: Array = Field(description="Active-region mask")
    boundary: IndexSet = Field(description="Boundary shell linear indices")
    box: Optional[BoundingBox] = Field(default=None, description="Active bounding box")
    density: Array = Field(description="Row density")
    velocity: Array = Field(description="Row drift velocity")
    temperature: Array = Field(description="Row local temperature")
    time: float = Field(ge=0.0, description="Simulation time")
    step: int = Field(ge=0, description="Completed steps")
    grid: PhaseSpaceGrid = Field(description="Phase-space grid")

    @field_validator("f", "pf", "active")
    @classmethod
    def validate_field_shape(cls, v: Array, info) -> Array:
        """Fields are dense 2D arrays."""
        if v.ndim != 2:
            raise ValueError(f"Field {info.field_name} must be 2D, got shape {v.shape}")
        return v

    @property
    def mass(self) -> float:
        """
        Σ f · h1 h2 over the whole grid.

        Cells dropped by re-truncation since the last normalisation are
        excluded, so this can fall short of 1 by up to the drop thresholds.
        """
        return float(jnp.sum(self.f) * self.grid.cell_volume)

    @property
    def normalized_mass(self) -> float:
        """Σ pf · h1 h2, the mass of the normalised snapshot."""
        return float(jnp.sum(self.pf) * self.grid.cell_volume)

    @property
    def n_active(self) -> int:
        return int(jnp.sum(self.active))

    @property
    def n_boundary(self) -> int:
        return len(self.boundary)
