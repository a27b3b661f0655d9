"""
Klein-Kramers simulation driver.

run_simulation() takes a SimulationConfig through the whole run: build the
grid, model and initial state, step the solver, record diagnostics, write
snapshot channels and finally save the history, final state and plots into
the configured output directory.

Example:
    >>> config = double_well_config()
    >>> state, history, grid = run_simulation(config, verbose=False)
"""

import time
from typing import Callable, Dict, Optional, Tuple

import yaml

from kramers.config import (
    SimulationConfig,
    double_well_config,
    free_relaxation_config,
    metastable_escape_config,
)
from kramers.diagnostics import (
    History,
    escape_rate,
    plot_history,
    plot_state,
    position_density,
    profile_correlation,
    transmittance,
)
from kramers.grid import PhaseSpaceGrid
from kramers.io import SnapshotWriter, save_checkpoint, save_timeseries
from kramers.physics import KramersState
from kramers.timestepping import kramers_step

TEMPLATES: Dict[str, Callable[[], SimulationConfig]] = {
    'double_well': double_well_config,
    'metastable': metastable_escape_config,
    'free': free_relaxation_config,
}


def generate_template(template_type: str) -> str:
    """
    Template configuration as YAML text.

    Raises:
        ValueError: If the template name is unknown
    """
    if template_type not in TEMPLATES:
        raise ValueError(
            f"Unknown template type '{template_type}'. "
            f"Available templates: {', '.join(TEMPLATES)}"
        )

    config = TEMPLATES[template_type]()
    header = [
        f"# Klein-Kramers configuration: {config.name}",
        f"# {config.description}",
        "#",
        "# Edit this file and run:",
        "#   python -m kramers run config.yaml",
        "",
    ]
    data = config.model_dump(mode='json', exclude_none=True)
    return "\n".join(header) + yaml.safe_dump(
        data, default_flow_style=False, sort_keys=False, indent=2
    )


def run_simulation(
    config: SimulationConfig,
    verbose: bool = True,
    n_steps: Optional[int] = None,
) -> Tuple[KramersState, History, PhaseSpaceGrid]:
    """
    Run a Klein-Kramers simulation from configuration.

    Args:
        config: SimulationConfig instance
        verbose: Print progress information
        n_steps: Override the number of steps implied by t_final / dt

    Returns:
        tuple: (final_state, history, grid)
    """
    if verbose:
        print(config.summary())

    # ==========================================================================
    # Initialize
    # ==========================================================================

    if verbose:
        print("\nInitializing...")

    grid = config.create_grid()
    model = config.create_model(grid)
    state = config.create_initial_state(model)

    if verbose:
        print(f"✓ Created {grid.N1}×{grid.N2} phase-space grid")
        print(f"✓ Initialized {config.initial_condition.type} state: "
              f"{state.n_active} active cells ({state.n_active / grid.size:.1%} of grid)")

    io = config.io
    reference = position_density(state.pf, grid)
    history = History()

    def record(state: KramersState, report=None) -> None:
        history.append(
            state,
            report,
            transmittance=transmittance(state.pf, grid, io.trans_x0) if io.transmittance else None,
            correlation=(
                profile_correlation(position_density(state.pf, grid), reference, grid)
                if io.correlation else None
            ),
        )

    record(state)

    output_dir = config.get_output_dir()
    if verbose:
        print(f"✓ Output directory: {output_dir}")

    config.to_yaml(output_dir / "config.yaml")

    periods = io.snapshot_periods()
    writer = None
    if any(period > 0 for period in periods.values()):
        writer = SnapshotWriter(
            output_dir / "snapshots.h5",
            periods,
            full_grid=config.truncation.full_grid,
            metadata={'name': config.name},
        )
        writer.write(state)
        if verbose:
            enabled = [name for name, period in periods.items() if period > 0]
            print(f"✓ Snapshot channels: {', '.join(enabled)}")

    # ==========================================================================
    # Time Evolution
    # ==========================================================================

    dt = config.time_integration.dt
    total_steps = config.time_integration.n_steps if n_steps is None else n_steps
    print_period = config.time_integration.print_period

    if verbose:
        print("\n" + "-" * 70)
        print(f"Time evolution: dt = {dt}, {total_steps} steps")
        print("-" * 70)

    start_time = time.time()
    try:
        for step in range(total_steps):
            state, report = kramers_step(state, model, dt)
            record(state, report)
            if writer is not None:
                writer.write(state)

            if verbose and (step + 1) % print_period == 0:
                line = (
                    f"  Step {step + 1:6d}/{total_steps}: t = {state.time:.4f}, "
                    f"active = {report.n_active}, shell = {report.n_boundary}, "
                    f"rounds = {report.rounds}, mass before norm = {report.mass:.8f}"
                )
                if io.transmittance:
                    line += f", T = {history.transmittance[-1]:.6e}"
                print(line)
    finally:
        if writer is not None:
            writer.close()

    elapsed = time.time() - start_time

    if verbose:
        print("-" * 70)
        print(f"✓ Evolution complete: {elapsed:.1f}s")
        if elapsed > 0:
            print(f"  Performance: {total_steps / elapsed:.1f} steps/s")
        if io.transmittance:
            print(f"  Final transmittance: {history.transmittance[-1]:.6e}")
            try:
                fit = escape_rate(history.times, history.transmittance)
                print(f"  Escape rate: k = {fit['rate']:.4e} "
                      f"(lifetime {fit['lifetime']:.4g}, R² = {fit['r_squared']:.3f})")
            except ValueError as e:
                print(f"  Escape rate not fitted: {e}")

    # ==========================================================================
    # Final Output
    # ==========================================================================

    metadata = {'name': config.name, 'description': config.description}

    if io.save_history:
        save_timeseries(history, output_dir / "history.h5", metadata=metadata)
        if verbose:
            print("✓ Saved history")

    if io.save_final_state:
        save_checkpoint(state, output_dir / "final_state.h5", metadata=metadata)
        if verbose:
            print("✓ Saved final state")

    if io.save_plots:
        plot_history(history, filename=str(output_dir / "history.png"), show=False)
        plot_state(state, filename=str(output_dir / "final_state.png"), show=False)
        if verbose:
            print("✓ Saved history.png and final_state.png")

    if verbose:
        print("\n" + "=" * 70)
        print("Simulation complete!")
        print(f"Results saved to: {output_dir}")
        print("=" * 70)

    return state, history, grid
