"""
Tests for the Klein-Kramers physics module.

This test suite validates:
- Row moments under the three moment policies
- Local equilibrium construction and clamping
- The stage increment: stencil reads, evaluation mask, relaxation term
- KramersState validation
"""

import pytest
import jax.numpy as jnp
import numpy as np

from kramers.grid import PhaseSpaceGrid
from kramers.indexsets import IndexSet
from kramers.physics import (
    KramersState,
    MomentPolicy,
    PhysicsParameters,
    RowMoments,
    clamp_equilibrium,
    equilibrium_field,
    kramers_rhs,
    local_equilibrium,
    row_moments,
)


@pytest.fixture
def grid():
    return PhaseSpaceGrid.create(h1=0.5, h2=0.05, x1_min=-2.0, x1_max=2.0, x2_min=-10.0, x2_max=10.0)


def maxwellian(grid, rho, u, T, mass=1.0, kb=1.0):
    kT = mass * kb * T
    x2 = grid.x2[None, :]
    row = rho / jnp.sqrt(2 * jnp.pi * kT) * jnp.exp(-(x2 - mass * u) ** 2 / (2 * kT))
    return jnp.broadcast_to(row, grid.shape)


class TestRowMoments:
    """Test masked row moments."""

    def test_local_policy_recovers_maxwellian(self, grid):
        """Density, drift and temperature of a discrete Maxwellian."""
        f = maxwellian(grid, rho=0.7, u=0.3, T=0.5)
        physics = PhysicsParameters(moment_policy=MomentPolicy.LOCAL)
        m = row_moments(f, grid.interior_mask(), grid, physics)

        interior_rows = slice(grid.edge, grid.N1 - grid.edge)
        np.testing.assert_allclose(m.density[interior_rows], 0.7, rtol=1e-8)
        np.testing.assert_allclose(m.velocity[interior_rows], 0.3, rtol=1e-8)
        np.testing.assert_allclose(m.temperature[interior_rows], 0.5, rtol=1e-8)

    def test_local_policy_with_mass(self, grid):
        """u = <x2>/m and T = <(x2 - m u)²>/(m kB)."""
        f = maxwellian(grid, rho=1.0, u=0.2, T=0.8, mass=2.0, kb=0.5)
        physics = PhysicsParameters(mass=2.0, kb=0.5)
        m = row_moments(f, grid.interior_mask(), grid, physics)
        np.testing.assert_allclose(m.velocity[4], 0.2, rtol=1e-8)
        np.testing.assert_allclose(m.temperature[4], 0.8, rtol=1e-8)

    def test_linearized_policy(self, grid):
        f = maxwellian(grid, rho=1.0, u=0.4, T=0.5)
        physics = PhysicsParameters(temperature=2.0, moment_policy=MomentPolicy.LINEARIZED)
        m = row_moments(f, grid.interior_mask(), grid, physics)
        np.testing.assert_array_equal(m.velocity, 0.0)
        np.testing.assert_allclose(m.temperature[grid.edge:-grid.edge], 2.0)

    def test_isothermal_policy(self, grid):
        f = maxwellian(grid, rho=1.0, u=0.4, T=0.5)
        physics = PhysicsParameters(temperature=2.0, moment_policy="isothermal")
        m = row_moments(f, grid.interior_mask(), grid, physics)
        np.testing.assert_allclose(m.velocity[4], 0.4, rtol=1e-8)
        np.testing.assert_allclose(m.temperature[4], 2.0)

    def test_empty_rows_report_zero(self, grid):
        """Rows without active mass give ρ = u = T = 0."""
        f = maxwellian(grid, rho=1.0, u=0.0, T=1.0)
        mask = jnp.zeros(grid.shape, dtype=bool).at[4, :].set(True)
        m = row_moments(f, mask, grid, PhysicsParameters())
        assert float(m.density[3]) == 0.0
        assert float(m.velocity[3]) == 0.0
        assert float(m.temperature[3]) == 0.0
        assert float(m.density[4]) > 0.0

    def test_negative_density_row(self, grid):
        f = -maxwellian(grid, rho=1.0, u=0.0, T=1.0)
        m = row_moments(f, grid.interior_mask(), grid, PhysicsParameters())
        np.testing.assert_array_equal(m.density, 0.0)
        np.testing.assert_array_equal(m.temperature, 0.0)


class TestLocalEquilibrium:
    """Test f_eq construction and clamping."""

    def test_equilibrium_of_maxwellian_is_itself(self, grid):
        f = maxwellian(grid, rho=0.7, u=0.3, T=0.5)
        mask = grid.interior_mask()
        feq, _ = equilibrium_field(f, mask, grid, PhysicsParameters())
        np.testing.assert_allclose(
            np.asarray(feq)[np.asarray(mask)], np.asarray(f)[np.asarray(mask)], rtol=1e-6, atol=1e-14
        )

    def test_zero_outside_mask(self, grid):
        f = maxwellian(grid, rho=1.0, u=0.0, T=1.0)
        mask = grid.interior_mask()
        feq, _ = equilibrium_field(f, mask, grid, PhysicsParameters())
        assert np.all(np.asarray(feq)[~np.asarray(mask)] == 0.0)

    def test_clamped_above_reciprocal_cell_volume(self, grid):
        """Values above 1/(h1 h2) are replaced by zero."""
        n1 = grid.N1
        moments = RowMoments(
            density=jnp.full(n1, 1e3),
            velocity=jnp.zeros(n1),
            temperature=jnp.full(n1, 1e-4),
        )
        feq = local_equilibrium(moments, grid.interior_mask(), grid, PhysicsParameters())
        assert float(jnp.max(feq)) <= 1.0 / grid.cell_volume
        peak_column = int(np.argmin(np.abs(np.asarray(grid.x2))))
        assert float(feq[4, peak_column]) == 0.0

    def test_clamp_non_finite(self):
        feq = jnp.array([[jnp.nan, 1.0, jnp.inf, 3.0]])
        mask = jnp.array([[True, True, True, False]])
        np.testing.assert_array_equal(clamp_equilibrium(feq, mask, 10.0), [[0.0, 1.0, 0.0, 0.0]])

    def test_fixed_equilibrium(self, grid):
        f = maxwellian(grid, rho=1.0, u=0.0, T=1.0)
        fixed = jnp.full(grid.shape, 0.25)
        mask = grid.interior_mask()
        feq, moments = equilibrium_field(f, mask, grid, PhysicsParameters(), fixed=fixed)
        np.testing.assert_array_equal(feq, jnp.where(mask, 0.25, 0.0))
        assert float(moments.density[4]) > 0.0


class TestKramersRHS:
    """Test the stage increment K = dt · RHS."""

    def setup_method(self):
        self.shape = (7, 7)
        self.zeros = jnp.zeros(self.shape)
        self.all_cells = jnp.ones(self.shape, dtype=bool)

    def rhs(self, g, active, evaluate, velocity=1.0, force=0.0, feq=None, gamma=0.0, dt=0.1):
        feq = self.zeros if feq is None else feq
        return kramers_rhs(g, feq, active, evaluate, velocity, force, dt, 1.0, 1.0, gamma)

    def test_centred_advection(self):
        g = jnp.zeros(self.shape).at[3, 3].set(1.0)
        k = self.rhs(g, self.all_cells, self.all_cells, velocity=2.0)
        # -dt/(2 h1) · v · (g[i1+1] - g[i1-1])
        assert float(k[2, 3]) == pytest.approx(-0.1 / 2 * 2.0 * 1.0)
        assert float(k[4, 3]) == pytest.approx(0.1 / 2 * 2.0 * 1.0)
        assert float(k[3, 3]) == 0.0

    def test_force_term(self):
        g = jnp.zeros(self.shape).at[3, 3].set(1.0)
        k = self.rhs(g, self.all_cells, self.all_cells, velocity=0.0, force=3.0)
        # +dt/(2 h2) · V' · (g[i2+1] - g[i2-1])
        assert float(k[3, 2]) == pytest.approx(0.1 / 2 * 3.0)
        assert float(k[3, 4]) == pytest.approx(-0.1 / 2 * 3.0)

    def test_relaxation_term(self):
        g = jnp.full(self.shape, 2.0)
        feq = jnp.full(self.shape, 0.5)
        k = self.rhs(g, self.all_cells, self.all_cells, velocity=0.0, feq=feq, gamma=4.0)
        np.testing.assert_allclose(k, 0.1 * 4.0 * (0.5 - 2.0))

    def test_inactive_neighbours_read_zero(self):
        """Values stored in inactive cells never enter the stencil."""
        g = jnp.zeros(self.shape).at[4, 3].set(100.0)
        active = self.all_cells.at[4, 3].set(False)
        k = self.rhs(g, active, active, velocity=1.0)
        assert float(k[3, 3]) == 0.0

    def test_evaluate_mask(self):
        g = jnp.zeros(self.shape).at[3, 3].set(1.0)
        evaluate = jnp.zeros(self.shape, dtype=bool).at[2, 3].set(True)
        k = self.rhs(g, self.all_cells, evaluate, velocity=1.0)
        assert float(k[2, 3]) != 0.0
        assert float(k[4, 3]) == 0.0


class TestKramersState:
    """Test state container."""

    def test_properties(self, grid):
        f = jnp.zeros(grid.shape).at[4, 200].set(1.0 / grid.cell_volume)
        active = jnp.zeros(grid.shape, dtype=bool).at[4, 200].set(True)
        zeros = jnp.zeros(grid.N1)
        state = KramersState(
            f=f, pf=f, active=active, boundary=IndexSet.from_mask(active), box=None,
            density=zeros, velocity=zeros, temperature=zeros, time=0.0, step=0, grid=grid,
        )
        assert state.mass == pytest.approx(1.0)
        assert state.normalized_mass == pytest.approx(1.0)
        assert state.n_active == 1
        assert state.n_boundary == 1

    def test_mass_excludes_dropped_cells(self, grid):
        cell = 1.0 / grid.cell_volume
        pf = jnp.zeros(grid.shape).at[4, 200].set(0.75 * cell).at[4, 201].set(0.25 * cell)
        active = jnp.zeros(grid.shape, dtype=bool).at[4, 200].set(True)
        f = jnp.where(active, pf, 0.0)
        zeros = jnp.zeros(grid.N1)
        state = KramersState(
            f=f, pf=pf, active=active, boundary=IndexSet.from_mask(active), box=None,
            density=zeros, velocity=zeros, temperature=zeros, time=0.0, step=0, grid=grid,
        )
        assert state.mass == pytest.approx(0.75)
        assert state.normalized_mass == pytest.approx(1.0)

    def test_rejects_1d_field(self, grid):
        zeros = jnp.zeros(grid.N1)
        with pytest.raises(ValueError, match="2D"):
            KramersState(
                f=zeros, pf=jnp.zeros(grid.shape), active=jnp.zeros(grid.shape, dtype=bool),
                boundary=IndexSet.empty(), density=zeros, velocity=zeros, temperature=zeros,
                time=0.0, step=0, grid=grid,
            )
