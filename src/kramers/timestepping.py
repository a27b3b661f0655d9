"""
Time integration for the adaptive truncated-grid Klein-Kramers solver.

One step of kramers_step() runs these phases strictly in order:

1. rebuild the boundary shell of the active region
2. select extrapolation candidates (low thresholds)
3. grow the region by log-linear extrapolation, re-running RK4 on the
   closure of each new ring (see kramers.extrapolation)
4. compute row moments and the local equilibrium over the grown region
5. classical RK4 over the active region
6. normalise to unit mass
7. shrink the region against the high thresholds, rebuild box and shell

In full-grid mode phases 1-3 and 7 are skipped and the active region is the
whole interior. Both modes share the same JIT-compiled RK4 kernel, so when
the truncated region covers the interior the two produce identical arrays.

Example usage:
    >>> grid = PhaseSpaceGrid.create(h1=0.1, h2=0.1, x1_min=-6, x1_max=6,
    ...                              x2_min=-6, x2_max=6)
    >>> model = KramersModel.create(grid, potential=QuarticDoubleWell())
    >>> state = initialize_state(gaussian_packet(grid, x01=-0.845), model)
    >>> state, reports = evolve(state, model, dt=0.01, n_steps=100)
"""

import warnings
from functools import partial
from typing import Any, Callable, List, NamedTuple, Optional, Tuple

import jax
import jax.numpy as jnp
from jax import Array
from pydantic import BaseModel, ConfigDict, Field

from kramers.extrapolation import ExtrapolationLimitWarning, grow_region
from kramers.grid import PhaseSpaceGrid, bounding_box
from kramers.physics import KramersState, PhysicsParameters, equilibrium_field, kramers_rhs
from kramers.potentials import FreePotential, Potential
from kramers.truncation import (
    TruncationParameters,
    boundary_shell,
    extrapolation_candidates,
    initial_truncation,
    retruncate,
)


class KramersModel(BaseModel):
    """
    Everything a step needs besides the state: grid, constants, thresholds
    and the pre-evaluated coefficient fields.

    Attributes:
        grid: Phase-space grid
        physics: Physical constants and moment policy
        truncation: Truncated-grid thresholds
        potential: Potential strategy
        velocity: Advection speed x2/m on the grid
        force: Potential gradient V'(x1, x2) on the grid
        equilibrium: Optional fixed relaxation target replacing the local
            Maxwellian
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    grid: PhaseSpaceGrid
    physics: PhysicsParameters
    truncation: TruncationParameters
    potential: Any = Field(description="Potential strategy")
    velocity: Array = Field(description="Advection speed x2/m")
    force: Array = Field(description="Potential gradient V'")
    equilibrium: Optional[Array] = Field(default=None, description="Fixed relaxation target")

    @classmethod
    def create(
        cls,
        grid: PhaseSpaceGrid,
        physics: Optional[PhysicsParameters] = None,
        truncation: Optional[TruncationParameters] = None,
        potential: Optional[Potential] = None,
        equilibrium: Optional[Array] = None,
    ) -> "KramersModel":
        """
        Build a model, evaluating advection speed and force on the grid.

        Args:
            grid: Phase-space grid
            physics: Physical constants (default: PhysicsParameters())
            truncation: Thresholds (default: TruncationParameters())
            potential: Potential strategy (default: FreePotential())
            equilibrium: Optional fixed relaxation target of shape [N1, N2]
        """
        physics = physics or PhysicsParameters()
        truncation = truncation or TruncationParameters()
        potential = potential or FreePotential()

        X1, X2 = grid.coordinates()
        if equilibrium is not None:
            equilibrium = jnp.broadcast_to(jnp.asarray(equilibrium, dtype=X1.dtype), grid.shape)

        return cls(
            grid=grid,
            physics=physics,
            truncation=truncation,
            potential=potential,
            velocity=X2 / physics.mass,
            force=jnp.broadcast_to(potential.gradient(X1, X2), grid.shape),
            equilibrium=equilibrium,
        )


class StepReport(NamedTuple):
    """
    Per-step bookkeeping returned alongside the new state.

    Attributes:
        time: Time at the end of the step
        mass: Mass of the RK4 output before normalisation
        n_active: Active cells after re-truncation
        n_boundary: Boundary-shell size after re-truncation
        n_candidates: Extrapolation candidates at the start of the step
        n_grown: Cells activated by extrapolation
        rounds: Extrapolation rounds executed
        limit_reached: Growth was cut short by the round limit
    """

    time: float
    mass: float
    n_active: int
    n_boundary: int
    n_candidates: int
    n_grown: int
    rounds: int
    limit_reached: bool


@jax.jit
def _rk4_jit(
    f: Array,
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
    JIT-compiled classical RK4 with a frozen relaxation target.

    Stages 2 and 3 are evaluated at F + K/2 and stage 4 at F + K3,
    neighbours included; the combination is accumulated in the order
    K1/6, K2/3, K3/3, K4/6.
    """
    coefficients = (feq, active, evaluate, velocity, force, dt, h1, h2, gamma)

    k1 = kramers_rhs(f, *coefficients)
    k2 = kramers_rhs(f + 0.5 * k1, *coefficients)
    k3 = kramers_rhs(f + 0.5 * k2, *coefficients)
    k4 = kramers_rhs(f + k3, *coefficients)

    ff = f + k1 / 6.0
    ff = ff + k2 / 3.0
    ff = ff + k3 / 3.0
    ff = ff + k4 / 6.0
    return ff


def rk4_update(
    f: Array,
    feq: Array,
    active: Array,
    evaluate: Array,
    model: KramersModel,
    dt: float,
) -> Array:
    """
    Provisional RK4 field (FF) for one step of size dt.

    Args:
        f: Current field
        feq: Relaxation target, held fixed over the four stages
        active: Cells that exist as stencil neighbours (others read zero)
        evaluate: Cells whose value is advanced (others keep their value)
        model: Model with coefficients
        dt: Timestep

    Returns:
        Provisional field; `f` itself is not modified
    """
    grid = model.grid
    return _rk4_jit(
        f,
        feq,
        active,
        evaluate,
        model.velocity,
        model.force,
        dt,
        grid.h1,
        grid.h2,
        model.physics.gamma,
    )


@jax.jit
def _normalize_jit(ff: Array, active: Array, cell_volume: float) -> Tuple[Array, Array]:
    w = jnp.where(active, ff, 0.0)
    mass = jnp.sum(w) * cell_volume
    ok = jnp.isfinite(mass) & (mass > 0.0)
    return jnp.where(ok, w / jnp.where(ok, mass, 1.0), w), mass


def normalize(ff: Array, active: Array, grid: PhaseSpaceGrid) -> Tuple[Array, float]:
    """
    Rescale the active part of `ff` to unit mass Σ f·h1·h2 = 1.

    A region with zero or non-finite mass (for example an empty region) is
    returned unscaled.

    Returns:
        (normalised field, zero outside `active`; mass before scaling)
    """
    f, mass = _normalize_jit(ff, active, grid.cell_volume)
    return f, float(mass)


def initialize_state(f0: Array, model: KramersModel) -> KramersState:
    """
    Initial state from an initial condition.

    The field is normalised over the interior, then the initial truncation
    selects the active region (the whole interior in full-grid mode).

    Args:
        f0: Initial field of shape [N1, N2]
        model: Model with grid, constants and thresholds

    Returns:
        KramersState at t = 0
    """
    grid = model.grid
    f0 = jnp.asarray(f0, dtype=model.velocity.dtype)
    if f0.shape != grid.shape:
        raise ValueError(f"Initial field shape {f0.shape} does not match grid {grid.shape}")

    pf, _ = normalize(f0, grid.interior_mask(), grid)
    f, active = initial_truncation(pf, grid, model.truncation)
    _, moments = equilibrium_field(f, active, grid, model.physics, model.equilibrium)

    return KramersState(
        f=f,
        pf=pf,
        active=active,
        boundary=boundary_shell(active),
        box=bounding_box(active),
        density=moments.density,
        velocity=moments.velocity,
        temperature=moments.temperature,
        time=0.0,
        step=0,
        grid=grid,
    )


def _advance(
    f: Array, active: Array, evaluate: Array, model: KramersModel, dt: float
) -> Array:
    """Moments over `active`, then RK4 restricted to `evaluate`."""
    feq, _ = equilibrium_field(f, active, model.grid, model.physics, model.equilibrium)
    return rk4_update(f, feq, active, evaluate & active, model, dt)


def kramers_step(
    state: KramersState,
    model: KramersModel,
    dt: float,
) -> Tuple[KramersState, StepReport]:
    """
    Advance the state by one timestep dt.

    Args:
        state: Current state
        model: Model with grid, constants and thresholds
        dt: Timestep

    Returns:
        (new state, StepReport)

    Warns:
        ExtrapolationLimitWarning: If region growth hit the round limit

    Example:
        >>> state, report = kramers_step(state, model, dt=0.01)
        >>> report.n_active, report.rounds
    """
    grid = model.grid
    params = model.truncation
    f = state.f
    active = state.active

    n_candidates = 0
    n_grown = 0
    rounds = 0
    limit_reached = False

    if params.full_grid:
        active = grid.interior_mask()
    else:
        shell = boundary_shell(active)
        candidates = extrapolation_candidates(f, state.pf, active, shell, grid, params)
        n_candidates = len(candidates)
        if candidates:
            growth = grow_region(
                f,
                active,
                candidates,
                grid,
                params,
                advance=partial(_advance, model=model, dt=dt),
            )
            f, active = growth.f, growth.active
            n_grown = len(growth.grown)
            rounds = growth.rounds
            limit_reached = growth.limit_reached
            if limit_reached:
                warnings.warn(
                    f"Extrapolation stopped at the round limit "
                    f"({params.extrapolation_limit}) at step {state.step + 1}; "
                    f"the density may be under-resolved at the region edge",
                    ExtrapolationLimitWarning,
                    stacklevel=2,
                )

    feq, moments = equilibrium_field(f, active, grid, model.physics, model.equilibrium)
    ff = rk4_update(f, feq, active, active, model, dt)

    pf, mass = normalize(ff, active, grid)
    if not params.full_grid:
        active = retruncate(pf, active, grid, params)
    f_new = jnp.where(active, pf, 0.0)

    boundary = boundary_shell(active)
    new_state = KramersState(
        f=f_new,
        pf=pf,
        active=active,
        boundary=boundary,
        box=bounding_box(active),
        density=moments.density,
        velocity=moments.velocity,
        temperature=moments.temperature,
        time=state.time + dt,
        step=state.step + 1,
        grid=grid,
    )
    report = StepReport(
        time=new_state.time,
        mass=mass,
        n_active=new_state.n_active,
        n_boundary=len(boundary),
        n_candidates=n_candidates,
        n_grown=n_grown,
        rounds=rounds,
        limit_reached=limit_reached,
    )
    return new_state, report


def evolve(
    state: KramersState,
    model: KramersModel,
    dt: float,
    n_steps: int,
    callback: Optional[Callable[[KramersState, StepReport], None]] = None,
) -> Tuple[KramersState, List[StepReport]]:
    """
    Run n_steps steps of kramers_step().

    Args:
        state: Initial state
        model: Model
        dt: Timestep
        n_steps: Number of steps
        callback: Optional callback(state, report) invoked after every step,
            the place for diagnostics and snapshot output

    Returns:
        (final state, list of StepReport)
    """
    reports = []
    for _ in range(n_steps):
        state, report = kramers_step(state, model, dt)
        reports.append(report)
        if callback is not None:
            callback(state, report)
    return state, reports
