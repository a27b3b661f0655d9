#!/usr/bin/env python3
"""
Quick performance benchmark for timestepping.

Compares full-grid and truncated-grid steps on a 241×241 double-well grid.
"""

import time
import jax

from kramers import (
    KramersModel,
    PhaseSpaceGrid,
    PhysicsParameters,
    QuarticDoubleWell,
    TruncationParameters,
    gaussian_packet,
    initialize_state,
    kramers_step,
)

# Force compilation before timing
jax.clear_caches()

print("Creating 241×241 grid...")
grid = PhaseSpaceGrid.create(h1=0.05, h2=0.05, x1_min=-6, x1_max=6, x2_min=-6, x2_max=6)
physics = PhysicsParameters(temperature=0.1, gamma=0.1)
f0 = gaussian_packet(grid, x01=-0.845, a1=2.0, a2=0.5)

for label, full_grid in (("full grid", True), ("truncated", False)):
    model = KramersModel.create(
        grid,
        physics=physics,
        truncation=TruncationParameters(full_grid=full_grid),
        potential=QuarticDoubleWell(),
    )
    state = initialize_state(f0, model)

    print(f"\n[{label}] active cells: {state.n_active} / {grid.size}")

    # Warm-up: trigger JIT compilation
    t0 = time.time()
    state, _ = kramers_step(state, model, dt=0.01)
    print(f"[{label}] first call (includes compilation): {time.time() - t0:.3f} s")

    t0 = time.time()
    for i in range(20):
        state, report = kramers_step(state, model, dt=0.01)
    t_total = time.time() - t0

    print(f"[{label}] time per step: {t_total/20:.4f} s")
    print(f"[{label}] steps per second: {20/t_total:.2f}")
    print(f"[{label}] active cells after 21 steps: {report.n_active}, last rounds: {report.rounds}")
