"""
Diagnostic functions for Klein-Kramers simulations.

This module provides read-only views of the solver state and derived scalar
time series:
- Mass and position profiles: Σ f h1 h2, ρ(x1) = Σ f h2
- Transmittance: probability beyond a position threshold
- Correlation: overlap of the current position profile with the initial one
- Escape rate: exponential fit to the survival probability 1 - T(t)
- State views: active cells, boundary-shell coordinates, row moments
- History tracking: scalar time series over a run
- Plots: phase-space density with the active region, time series

Nothing here modifies the state; output formatting and files live in the
driver and in kramers.io.

Example usage:
    >>> history = History()
    >>> reference = position_density(state.pf, grid)
    >>> state, reports = evolve(state, model, dt, n_steps,
    ...     callback=lambda s, r: history.append(s, r))
    >>> plot_history(history)
    >>> plot_state(state)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import jax.numpy as jnp
import matplotlib.pyplot as plt
import numpy as np
from jax import Array
from scipy import stats

from kramers.grid import PhaseSpaceGrid
from kramers.physics import KramersState
from kramers.timestepping import StepReport


def total_mass(f: Array, grid: PhaseSpaceGrid) -> float:
    """Σ f · h1 · h2 over the whole grid."""
    return float(jnp.sum(f) * grid.cell_volume)


def position_density(f: Array, grid: PhaseSpaceGrid) -> Array:
    """
    Marginal position density ρ(x1) = Σ_x2 f · h2 over the interior.

    Returns:
        Array of shape [N1]
    """
    interior = grid.interior_mask()
    return jnp.sum(jnp.where(interior, f, 0.0), axis=1) * grid.h2


def transmittance(f: Array, grid: PhaseSpaceGrid, x0: float) -> float:
    """
    Probability located at x1 >= x0.

        T = Σ_{i1 >= i(x0)} Σ_i2 f · h1 · h2

    Args:
        f: Field (the post-normalisation snapshot for a step-consistent value)
        grid: Phase-space grid
        x0: Position threshold; rounded to the nearest grid row

    Example:
        >>> transmittance(state.pf, grid, x0=1.12556)
    """
    index = int(round((x0 - grid.x1_min) / grid.h1))
    index = min(max(index, 0), grid.N1)
    return float(jnp.sum(f[index:, :]) * grid.cell_volume)


def profile_correlation(profile: Array, reference: Array, grid: PhaseSpaceGrid) -> float:
    """
    Normalised overlap Σ ρ(x1) ρ₀(x1) h1 / Σ ρ₀(x1)² h1.

    Equals 1 when `profile` equals `reference`.

    Raises:
        ValueError: If the reference profile is identically zero
    """
    norm = float(jnp.sum(reference**2) * grid.h1)
    if norm == 0.0:
        raise ValueError("Reference profile is identically zero")
    return float(jnp.sum(profile * reference) * grid.h1) / norm


def escape_rate(
    times: List[float],
    transmitted: List[float],
    t_min: float = 0.0,
) -> Dict[str, float]:
    """
    Fit an exponential escape law to a transmittance series.

    The survival probability P(t) = 1 - T(t) of a metastable well decays as
    exp(-k t) once the initial transient is over, so k is the slope of a
    linear fit of -ln P against t over t >= t_min.

    Args:
        times: Simulation times
        transmitted: Transmittance at each time
        t_min: Start of the fitting window

    Returns:
        Dictionary with 'rate', 'lifetime' (1/k, inf for k <= 0),
        'r_squared' and 'n_points'

    Raises:
        ValueError: If fewer than 3 usable points lie in the window
    """
    t = np.asarray(times, dtype=float)
    survival = 1.0 - np.asarray(transmitted, dtype=float)
    mask = (t >= t_min) & (survival > 0.0)
    if np.count_nonzero(mask) < 3:
        raise ValueError(
            f"Need at least 3 points with T < 1 and t >= {t_min} to fit an escape rate"
        )

    slope, intercept, r_value, p_value, std_err = stats.linregress(
        t[mask], np.log(survival[mask])
    )
    rate = -slope
    return {
        'rate': float(rate),
        'lifetime': float(1.0 / rate) if rate > 0 else float('inf'),
        'r_squared': float(r_value**2),
        'n_points': int(np.count_nonzero(mask)),
    }


def active_cells(state: KramersState) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Coordinates and values of the active cells.

    Returns:
        (x1, x2, f) arrays, one entry per active cell in linear-index order
    """
    mask = np.asarray(state.active, dtype=bool)
    i1, i2 = np.nonzero(mask)
    grid = state.grid
    return np.asarray(grid.x1)[i1], np.asarray(grid.x2)[i2], np.asarray(state.f)[i1, i2]


def boundary_coordinates(state: KramersState) -> Tuple[np.ndarray, np.ndarray]:
    """Phase-space coordinates (x1, x2) of the boundary-shell cells."""
    grid = state.grid
    i1, i2 = grid.unravel(state.boundary.indices)
    return np.asarray(grid.x1)[i1], np.asarray(grid.x2)[i2]


def moment_profiles(state: KramersState, full_grid: bool = False) -> Dict[str, np.ndarray]:
    """
    Row moments with their positions.

    In truncated mode only the rows of the active bounding box are returned;
    in full-grid mode all rows are.

    Returns:
        Dictionary with 'x1', 'density', 'velocity', 'temperature'
    """
    rows = slice(None)
    if not full_grid:
        if state.box is None:
            empty = np.empty(0)
            return {'x1': empty, 'density': empty, 'velocity': empty, 'temperature': empty}
        rows = state.box.rows

    return {
        'x1': np.asarray(state.grid.x1)[rows],
        'density': np.asarray(state.density)[rows],
        'velocity': np.asarray(state.velocity)[rows],
        'temperature': np.asarray(state.temperature)[rows],
    }


@dataclass
class History:
    """
    Scalar time series recorded during a run.

    Attributes:
        times: Simulation times
        mass: Mass of the normalised snapshot (should stay 1)
        n_active: Active-region sizes
        n_boundary: Boundary-shell sizes
        rounds: Extrapolation rounds per step
        transmittance: Transmittance values (when recorded)
        correlation: Correlation values (when recorded)

    Example:
        >>> history = History()
        >>> history.append(state)
        >>> for _ in range(100):
        ...     state, report = kramers_step(state, model, dt)
        ...     history.append(state, report)
    """
    times: List[float] = field(default_factory=list)
    mass: List[float] = field(default_factory=list)
    n_active: List[int] = field(default_factory=list)
    n_boundary: List[int] = field(default_factory=list)
    rounds: List[int] = field(default_factory=list)
    transmittance: List[float] = field(default_factory=list)
    correlation: List[float] = field(default_factory=list)

    def append(
        self,
        state: KramersState,
        report: Optional[StepReport] = None,
        transmittance: Optional[float] = None,
        correlation: Optional[float] = None,
    ) -> None:
        """
        Record the current state.

        Args:
            state: State after a step (or the initial state)
            report: StepReport of that step; None records zero rounds
            transmittance: Optional transmittance value
            correlation: Optional correlation value
        """
        self.times.append(float(state.time))
        self.mass.append(total_mass(state.pf, state.grid))
        self.n_active.append(state.n_active)
        self.n_boundary.append(state.n_boundary)
        self.rounds.append(0 if report is None else int(report.rounds))
        if transmittance is not None:
            self.transmittance.append(float(transmittance))
        if correlation is not None:
            self.correlation.append(float(correlation))

    def __len__(self) -> int:
        return len(self.times)

    def to_dict(self) -> Dict[str, List[float]]:
        """Convert to dictionary for serialization."""
        return {
            'times': self.times,
            'mass': self.mass,
            'n_active': self.n_active,
            'n_boundary': self.n_boundary,
            'rounds': self.rounds,
            'transmittance': self.transmittance,
            'correlation': self.correlation,
        }

    def active_fraction(self, grid: PhaseSpaceGrid) -> np.ndarray:
        """Active cells as a fraction of all cells, the saving over full-grid."""
        return np.array(self.n_active, dtype=float) / grid.size


def plot_state(
    state: KramersState,
    figsize: Tuple[float, float] = (12, 5),
    filename: Optional[str] = None,
    show: bool = True,
) -> None:
    """
    Phase-space density with the boundary shell, and the position profile.

    Args:
        state: State to visualize
        figsize: Figure size in inches (width, height)
        filename: If provided, save figure to this path
        show: If True, display figure interactively
    """
    grid = state.grid
    x1 = np.asarray(grid.x1)
    x2 = np.asarray(grid.x2)
    f = np.asarray(state.f)

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    im = axes[0].pcolormesh(x1, x2, f.T, shading='auto', cmap='viridis')
    b1, b2 = boundary_coordinates(state)
    axes[0].plot(b1, b2, 'w.', markersize=2, label='boundary shell')
    axes[0].set_xlabel('x1 (position)')
    axes[0].set_ylabel('x2 (momentum)')
    axes[0].set_title(f'f(x1, x2), {state.n_active} active cells')
    plt.colorbar(im, ax=axes[0], label='f')

    axes[1].plot(x1, np.asarray(position_density(state.f, grid)), 'b-', linewidth=2)
    axes[1].set_xlabel('x1 (position)')
    axes[1].set_ylabel('ρ(x1)')
    axes[1].set_title('Position density')
    axes[1].grid(True, alpha=0.3)

    plt.suptitle(f'Klein-Kramers state at t = {state.time:.3f}', fontsize=14)
    plt.tight_layout()

    if filename:
        plt.savefig(filename, dpi=150, bbox_inches='tight')

    if show:
        plt.show()
        plt.close()
    else:
        plt.close()


def plot_history(
    history: History,
    figsize: Tuple[float, float] = (10, 8),
    filename: Optional[str] = None,
    show: bool = True,
) -> None:
    """
    Plot active-region size and the recorded scalar series against time.

    Args:
        history: History with recorded time series
        figsize: Figure size in inches (width, height)
        filename: If provided, save figure to this path
        show: If True, display figure interactively
    """
    times = np.array(history.times)

    fig, axes = plt.subplots(2, 1, figsize=figsize, sharex=True)

    axes[0].plot(times, history.n_active, 'b-', label='active cells', linewidth=2)
    axes[0].plot(times, history.n_boundary, 'r-', label='boundary shell', linewidth=2)
    axes[0].set_ylabel('Cells', fontsize=12)
    axes[0].legend(fontsize=10)
    axes[0].grid(True, alpha=0.3)

    if history.transmittance:
        axes[1].plot(times[-len(history.transmittance):], history.transmittance,
                     'g-', label='transmittance', linewidth=2)
    if history.correlation:
        axes[1].plot(times[-len(history.correlation):], history.correlation,
                     'k--', label='correlation', linewidth=2)
    axes[1].plot(times, history.mass, 'm:', label='mass', linewidth=1.5)
    axes[1].set_xlabel('Time', fontsize=12)
    axes[1].legend(fontsize=10)
    axes[1].grid(True, alpha=0.3)

    plt.tight_layout()

    if filename:
        plt.savefig(filename, dpi=150, bbox_inches='tight')

    if show:
        plt.show()
        plt.close()
    else:
        plt.close()
