"""
HDF5 input/output for Klein-Kramers simulations.

Three kinds of files are written with h5py:

- Checkpoints: one KramersState plus its grid, enough to restart a run
- Time series: a History of scalar diagnostics
- Snapshot files: periodic output channels of a run, one group per channel
  (wavefunction, edge, density, velocity, temperature) with one dataset per
  recorded step

Every file carries a 'version' attribute (IO_FORMAT_VERSION) and a
'timestamp'. User metadata is stored as attributes; values h5py cannot store
natively are converted to strings.

Example:
    >>> save_checkpoint(state, "output/final_state.h5", metadata={"run": "dw1"})
    >>> state, grid, metadata = load_checkpoint("output/final_state.h5")
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import h5py
import jax.numpy as jnp
import numpy as np

from kramers.diagnostics import History, boundary_coordinates, moment_profiles
from kramers.grid import PhaseSpaceGrid, bounding_box
from kramers.physics import KramersState
from kramers.truncation import boundary_shell

IO_FORMAT_VERSION = "1.0"

PathLike = Union[str, Path]

SNAPSHOT_CHANNELS = ("wavefunction", "edge", "density", "velocity", "temperature")


def _prepare_path(filename: PathLike, overwrite: bool) -> Path:
    path = Path(filename)
    if path.exists() and not overwrite:
        raise FileExistsError(f"File exists and overwrite=False: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _write_metadata(target: h5py.AttributeManager, metadata: Optional[Dict[str, Any]]) -> None:
    target['version'] = IO_FORMAT_VERSION
    target['timestamp'] = datetime.now(timezone.utc).isoformat()
    for key, value in (metadata or {}).items():
        if isinstance(value, (int, float, str, bool, np.integer, np.floating)):
            target[key] = value
        else:
            target[key] = str(value)


def _read_metadata(attrs: h5py.AttributeManager) -> Dict[str, Any]:
    metadata = {}
    for key, value in attrs.items():
        if isinstance(value, bytes):
            value = value.decode()
        elif isinstance(value, np.generic):
            value = value.item()
        metadata[key] = value
    return metadata


def _write_grid(group: h5py.Group, grid: PhaseSpaceGrid) -> None:
    for name in ('h1', 'h2', 'x1_min', 'x1_max', 'x2_min', 'x2_max', 'edge', 'N1', 'N2'):
        group.attrs[name] = getattr(grid, name)


def _read_grid(group: h5py.Group) -> PhaseSpaceGrid:
    attrs = group.attrs
    grid = PhaseSpaceGrid.create(
        h1=float(attrs['h1']),
        h2=float(attrs['h2']),
        x1_min=float(attrs['x1_min']),
        x1_max=float(attrs['x1_max']),
        x2_min=float(attrs['x2_min']),
        x2_max=float(attrs['x2_max']),
        edge=int(attrs['edge']),
    )
    if (grid.N1, grid.N2) != (int(attrs['N1']), int(attrs['N2'])):
        raise ValueError(
            f"Stored grid shape ({attrs['N1']}, {attrs['N2']}) does not match "
            f"the shape recomputed from its bounds {grid.shape}"
        )
    return grid


def save_checkpoint(
    state: KramersState,
    filename: PathLike,
    metadata: Optional[Dict[str, Any]] = None,
    overwrite: bool = True,
) -> None:
    """
    Save a complete state to an HDF5 checkpoint.

    Args:
        state: State to save
        filename: Output path (parent directories are created)
        metadata: Optional user metadata stored as file attributes
        overwrite: If False, refuse to replace an existing file

    Raises:
        FileExistsError: If the file exists and overwrite=False
    """
    path = _prepare_path(filename, overwrite)

    with h5py.File(path, 'w') as f:
        _write_metadata(f.attrs, metadata)
        _write_grid(f.create_group('grid'), state.grid)

        fields = f.create_group('state')
        fields.create_dataset('f', data=np.asarray(state.f), compression='gzip')
        fields.create_dataset('pf', data=np.asarray(state.pf), compression='gzip')
        fields.create_dataset('active', data=np.asarray(state.active, dtype=bool), compression='gzip')
        fields.create_dataset('density', data=np.asarray(state.density))
        fields.create_dataset('velocity', data=np.asarray(state.velocity))
        fields.create_dataset('temperature', data=np.asarray(state.temperature))
        fields.attrs['time'] = state.time
        fields.attrs['step'] = state.step


def load_checkpoint(
    filename: PathLike,
    validate_grid: bool = True,
) -> Tuple[KramersState, PhaseSpaceGrid, Dict[str, Any]]:
    """
    Load a state saved by save_checkpoint().

    The boundary shell and bounding box are rebuilt from the stored mask.

    Args:
        filename: Checkpoint path
        validate_grid: Check that stored arrays match the grid shape

    Returns:
        (state, grid, metadata)

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: On a format-version or shape mismatch
    """
    path = Path(filename)
    if not path.exists():
        raise FileNotFoundError(f"Checkpoint not found: {path}")

    with h5py.File(path, 'r') as f:
        metadata = _read_metadata(f.attrs)
        if metadata.get('version') != IO_FORMAT_VERSION:
            raise ValueError(
                f"Unsupported checkpoint version {metadata.get('version')!r} "
                f"(expected {IO_FORMAT_VERSION})"
            )
        grid = _read_grid(f['grid'])
        fields = f['state']
        arrays = {name: fields[name][...] for name in ('f', 'pf', 'active')}
        rows = {name: fields[name][...] for name in ('density', 'velocity', 'temperature')}
        time = float(fields.attrs['time'])
        step = int(fields.attrs['step'])

    if validate_grid:
        for name, value in arrays.items():
            if value.shape != grid.shape:
                raise ValueError(f"{name} shape {value.shape} does not match grid {grid.shape}")
        for name, value in rows.items():
            if value.shape != (grid.N1,):
                raise ValueError(f"{name} shape {value.shape} does not match N1={grid.N1}")

    active = jnp.asarray(arrays['active'], dtype=bool)
    state = KramersState(
        f=jnp.asarray(arrays['f']),
        pf=jnp.asarray(arrays['pf']),
        active=active,
        boundary=boundary_shell(active),
        box=bounding_box(active),
        density=jnp.asarray(rows['density']),
        velocity=jnp.asarray(rows['velocity']),
        temperature=jnp.asarray(rows['temperature']),
        time=time,
        step=step,
        grid=grid,
    )
    return state, grid, metadata


def save_timeseries(
    history: History,
    filename: PathLike,
    metadata: Optional[Dict[str, Any]] = None,
    overwrite: bool = True,
) -> None:
    """
    Save a History to HDF5.

    Raises:
        ValueError: If the history is empty
        FileExistsError: If the file exists and overwrite=False
    """
    if len(history) == 0:
        raise ValueError("Cannot save an empty history")
    path = _prepare_path(filename, overwrite)

    with h5py.File(path, 'w') as f:
        _write_metadata(f.attrs, metadata)
        series = f.create_group('timeseries')
        for name, values in history.to_dict().items():
            series.create_dataset(name, data=np.asarray(values))


def load_timeseries(filename: PathLike) -> Tuple[History, Dict[str, Any]]:
    """
    Load a History saved by save_timeseries().

    Returns:
        (history, metadata)
    """
    path = Path(filename)
    if not path.exists():
        raise FileNotFoundError(f"Time series not found: {path}")

    with h5py.File(path, 'r') as f:
        metadata = _read_metadata(f.attrs)
        series = f['timeseries']
        data = {name: series[name][...].tolist() for name in series}

    return History(**data), metadata


class SnapshotWriter:
    """
    Periodic output channels of a run, collected in one HDF5 file.

    Each channel has its own period in steps (0 disables it):
    - wavefunction: active-cell listing (or the full field in full-grid mode)
    - edge: boundary-shell coordinates
    - density, velocity, temperature: row-moment profiles

    Example:
        >>> with SnapshotWriter("out/snapshots.h5", periods={"wavefunction": 10}) as w:
        ...     state, _ = evolve(state, model, dt, 100, callback=lambda s, r: w.write(s))
    """

    def __init__(
        self,
        filename: PathLike,
        periods: Dict[str, int],
        full_grid: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
        overwrite: bool = True,
    ):
        unknown = set(periods) - set(SNAPSHOT_CHANNELS)
        if unknown:
            raise ValueError(f"Unknown snapshot channels: {', '.join(sorted(unknown))}")
        self.periods = {name: int(periods.get(name, 0)) for name in SNAPSHOT_CHANNELS}
        self.full_grid = full_grid
        self.path = _prepare_path(filename, overwrite)
        self._file = h5py.File(self.path, 'w')
        _write_metadata(self._file.attrs, metadata)
        for name in SNAPSHOT_CHANNELS:
            if self.periods[name] > 0:
                self._file.create_group(name).attrs['period'] = self.periods[name]

    def __enter__(self) -> "SnapshotWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        if self._file.id.valid:
            self._file.close()

    def _due(self, channel: str, step: int) -> bool:
        period = self.periods[channel]
        return period > 0 and step % period == 0

    def write(self, state: KramersState) -> None:
        """Write every channel whose period divides the state's step count."""
        key = f"step_{state.step:08d}"

        if self._due('wavefunction', state.step):
            if self.full_grid:
                data = np.asarray(state.f)
            else:
                i1, i2 = np.nonzero(np.asarray(state.active, dtype=bool))
                data = np.column_stack(
                    [np.asarray(state.grid.x1)[i1], np.asarray(state.grid.x2)[i2],
                     np.asarray(state.f)[i1, i2]]
                )
            dset = self._file['wavefunction'].create_dataset(key, data=data)
            dset.attrs['time'] = state.time

        if self._due('edge', state.step):
            x1, x2 = boundary_coordinates(state)
            dset = self._file['edge'].create_dataset(key, data=np.column_stack([x1, x2]))
            dset.attrs['time'] = state.time

        profiles = None
        for channel in ('density', 'velocity', 'temperature'):
            if self._due(channel, state.step):
                if profiles is None:
                    profiles = moment_profiles(state, full_grid=self.full_grid)
                dset = self._file[channel].create_dataset(
                    key, data=np.column_stack([profiles['x1'], profiles[channel]])
                )
                dset.attrs['time'] = state.time

    def steps(self, channel: str) -> list:
        """Recorded step keys of a channel, in order."""
        if channel not in self._file:
            return []
        return sorted(self._file[channel].keys())


def read_snapshot(filename: PathLike, channel: str, step: int) -> Tuple[np.ndarray, float]:
    """
    Read one dataset written by SnapshotWriter.

    Returns:
        (data, time)
    """
    with h5py.File(Path(filename), 'r') as f:
        dset = f[channel][f"step_{step:08d}"]
        return dset[...], float(dset.attrs['time'])

