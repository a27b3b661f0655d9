"""
kramers: Adaptive Truncated-Grid Klein-Kramers Solver

Solves the Klein-Kramers (Fokker-Planck) equation for a phase-space density
f(x1, x2, t) with a BGK relaxation toward a local Maxwellian:

    ∂f/∂t = -(x2/m) ∂f/∂x1 + V'(x1, x2) ∂f/∂x2 + γ (f_eq - f)

Key features:
- Centred finite differences with classical RK4 time stepping
- Truncated-grid mode: only cells carrying significant density are advanced,
  the region grows by log-linear extrapolation and shrinks against thresholds
- Full-grid mode sharing the same RK4 kernel for reference runs
- Linearized, isothermal and fully local equilibrium moment policies
- JAX-based kernels in double precision
"""

import jax

# Tolerances down to 1e-12 and the log-linear extrapolation need float64
jax.config.update("jax_enable_x64", True)

__version__ = "0.1.0"

from kramers.grid import (
    BoundingBox,
    PhaseSpaceGrid,
    bounding_box,
    shift,
)

from kramers.indexsets import IndexSet

from kramers.potentials import (
    POTENTIALS,
    FreePotential,
    MetastableWell,
    Potential,
    QuarticDoubleWell,
    gaussian_packet,
    make_potential,
    point_seed,
)

from kramers.physics import (
    KramersState,
    MomentPolicy,
    PhysicsParameters,
    RowMoments,
    equilibrium_field,
    kramers_rhs,
    local_equilibrium,
    row_moments,
)

from kramers.truncation import (
    TruncationParameters,
    boundary_shell,
    extrapolation_candidates,
    gradient_squared,
    initial_truncation,
    retruncate,
)

from kramers.extrapolation import (
    ExtrapolationLimitWarning,
    ExtrapolationResult,
    closure,
    extrapolate_frontier,
    frontier,
    grow_region,
)

from kramers.timestepping import (
    KramersModel,
    StepReport,
    evolve,
    initialize_state,
    kramers_step,
    normalize,
    rk4_update,
)

__all__ = [
    "__version__",
    # Grid and index sets
    "BoundingBox",
    "PhaseSpaceGrid",
    "bounding_box",
    "shift",
    "IndexSet",
    # Potentials and initial conditions
    "POTENTIALS",
    "FreePotential",
    "MetastableWell",
    "Potential",
    "QuarticDoubleWell",
    "gaussian_packet",
    "make_potential",
    "point_seed",
    # Physics
    "KramersState",
    "MomentPolicy",
    "PhysicsParameters",
    "RowMoments",
    "equilibrium_field",
    "kramers_rhs",
    "local_equilibrium",
    "row_moments",
    # Truncation
    "TruncationParameters",
    "boundary_shell",
    "extrapolation_candidates",
    "gradient_squared",
    "initial_truncation",
    "retruncate",
    # Extrapolation
    "ExtrapolationLimitWarning",
    "ExtrapolationResult",
    "closure",
    "extrapolate_frontier",
    "frontier",
    "grow_region",
    # Time integration
    "KramersModel",
    "StepReport",
    "evolve",
    "initialize_state",
    "kramers_step",
    "normalize",
    "rk4_update",
]
