"""
Tests for HDF5 I/O functionality.

This module tests checkpoint, timeseries and snapshot files, including:
- Roundtrip accuracy (save then load recovers original data)
- Error handling (file conflicts, missing files, version mismatch)
- Metadata preservation
- Snapshot channel periods

Test organization:
- TestCheckpoint: Checkpoint save/load tests
- TestTimeseries: Timeseries save/load tests
- TestSnapshots: Periodic output channels
"""

import pytest
import numpy as np
import jax.numpy as jnp
import h5py

from kramers.diagnostics import History
from kramers.grid import PhaseSpaceGrid
from kramers.io import (
    IO_FORMAT_VERSION,
    SnapshotWriter,
    load_checkpoint,
    load_timeseries,
    read_snapshot,
    save_checkpoint,
    save_timeseries,
)
from kramers.physics import PhysicsParameters
from kramers.potentials import QuarticDoubleWell, gaussian_packet
from kramers.timestepping import KramersModel, initialize_state, kramers_step
from kramers.truncation import TruncationParameters


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def grid():
    """Create test grid."""
    return PhaseSpaceGrid.create(h1=0.25, h2=0.25, x1_min=-4.0, x1_max=4.0, x2_min=-4.0, x2_max=4.0)


@pytest.fixture
def model(grid):
    return KramersModel.create(
        grid,
        physics=PhysicsParameters(temperature=0.5, gamma=0.2),
        truncation=TruncationParameters(tol_high=1e-6, tol_high_grad=1e-6),
        potential=QuarticDoubleWell(),
    )


@pytest.fixture
def state(grid, model):
    """Truncated state after one step."""
    state = initialize_state(gaussian_packet(grid, x01=-0.845, a1=2.0, a2=0.5), model)
    state, _ = kramers_step(state, model, 0.01)
    return state


@pytest.fixture
def history(state):
    """History with several entries."""
    history = History()
    for i in range(5):
        history.append(state.model_copy(update={'time': 0.1 * i}), transmittance=0.01 * i)
    return history


# =============================================================================
# Checkpoints
# =============================================================================


class TestCheckpoint:
    """Test checkpoint save/load."""

    def test_roundtrip(self, state, grid, tmp_path):
        path = tmp_path / "state.h5"
        save_checkpoint(state, path, metadata={'run': 'dw1', 'seed': 3})
        loaded, loaded_grid, metadata = load_checkpoint(path)

        np.testing.assert_array_equal(loaded.f, state.f)
        np.testing.assert_array_equal(loaded.pf, state.pf)
        np.testing.assert_array_equal(loaded.active, state.active)
        np.testing.assert_array_equal(loaded.density, state.density)
        assert loaded.time == pytest.approx(state.time)
        assert loaded.step == state.step
        assert loaded_grid.shape == grid.shape
        assert loaded_grid.h1 == grid.h1

        # shell and box are rebuilt from the mask
        assert loaded.boundary == state.boundary
        assert loaded.box == state.box

        assert metadata['run'] == 'dw1'
        assert metadata['seed'] == 3
        assert metadata['version'] == IO_FORMAT_VERSION
        assert 'timestamp' in metadata

    def test_creates_parent_directories(self, state, tmp_path):
        path = tmp_path / "nested" / "dir" / "state.h5"
        save_checkpoint(state, path)
        assert path.exists()

    def test_overwrite_false_raises(self, state, tmp_path):
        path = tmp_path / "state.h5"
        save_checkpoint(state, path)
        with pytest.raises(FileExistsError):
            save_checkpoint(state, path, overwrite=False)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_checkpoint(tmp_path / "missing.h5")

    def test_version_mismatch(self, state, tmp_path):
        path = tmp_path / "state.h5"
        save_checkpoint(state, path)
        with h5py.File(path, 'a') as f:
            f.attrs['version'] = '0.0'
        with pytest.raises(ValueError, match="version"):
            load_checkpoint(path)

    def test_non_scalar_metadata_stored_as_string(self, state, tmp_path):
        path = tmp_path / "state.h5"
        save_checkpoint(state, path, metadata={'params': {'a': 1}})
        _, _, metadata = load_checkpoint(path)
        assert metadata['params'] == "{'a': 1}"


# =============================================================================
# Timeseries
# =============================================================================


class TestTimeseries:
    """Test timeseries save/load."""

    def test_roundtrip(self, history, tmp_path):
        path = tmp_path / "history.h5"
        save_timeseries(history, path, metadata={'name': 'test'})
        loaded, metadata = load_timeseries(path)

        assert len(loaded) == len(history)
        np.testing.assert_allclose(loaded.times, history.times)
        np.testing.assert_allclose(loaded.transmittance, history.transmittance)
        assert loaded.n_active == history.n_active
        assert loaded.correlation == []
        assert metadata['name'] == 'test'

    def test_empty_history_raises(self, tmp_path):
        with pytest.raises(ValueError, match="empty"):
            save_timeseries(History(), tmp_path / "history.h5")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_timeseries(tmp_path / "missing.h5")


# =============================================================================
# Snapshots
# =============================================================================


class TestSnapshots:
    """Test periodic output channels."""

    def test_periods(self, state, model, tmp_path):
        path = tmp_path / "snapshots.h5"
        with SnapshotWriter(path, periods={'wavefunction': 2, 'edge': 1, 'density': 3}) as writer:
            for _ in range(6):
                state, _ = kramers_step(state, model, 0.01)
                writer.write(state)
            assert len(writer.steps('edge')) == 6
            assert len(writer.steps('wavefunction')) == 3
            assert len(writer.steps('density')) == 2
            assert writer.steps('temperature') == []

    def test_wavefunction_listing(self, state, tmp_path):
        path = tmp_path / "snapshots.h5"
        with SnapshotWriter(path, periods={'wavefunction': 1}) as writer:
            writer.write(state)
        data, time = read_snapshot(path, 'wavefunction', state.step)
        assert data.shape == (state.n_active, 3)
        assert time == pytest.approx(state.time)
        np.testing.assert_allclose(np.sum(data[:, 2]) * state.grid.cell_volume, state.mass)

    def test_wavefunction_full_grid(self, state, tmp_path):
        path = tmp_path / "snapshots.h5"
        with SnapshotWriter(path, periods={'wavefunction': 1}, full_grid=True) as writer:
            writer.write(state)
        data, _ = read_snapshot(path, 'wavefunction', state.step)
        assert data.shape == state.grid.shape

    def test_edge_and_profiles(self, state, tmp_path):
        path = tmp_path / "snapshots.h5"
        with SnapshotWriter(path, periods={'edge': 1, 'velocity': 1}) as writer:
            writer.write(state)
        edge, _ = read_snapshot(path, 'edge', state.step)
        assert edge.shape == (state.n_boundary, 2)
        velocity, _ = read_snapshot(path, 'velocity', state.step)
        assert velocity.shape[1] == 2

    def test_unknown_channel(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown snapshot channels"):
            SnapshotWriter(tmp_path / "snapshots.h5", periods={'pressure': 1})

    def test_close_is_idempotent(self, tmp_path):
        writer = SnapshotWriter(tmp_path / "snapshots.h5", periods={'edge': 1})
        writer.close()
        writer.close()
