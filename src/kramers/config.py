"""
Configuration management for Klein-Kramers simulations.

Simulations are described by a YAML file that maps onto SimulationConfig,
a Pydantic model with one section per concern:

    grid:               spacings, bounds and edge margin
    physics:            mass, kb, bath temperature, gamma, hbar, moment policy
    potential:          potential name and shape parameters
    truncation:         full-grid flag, thresholds, extrapolation settings
    time_integration:   dt, t_final, progress period
    initial_condition:  gaussian packet or point seed
    io:                 output directory and per-channel output periods

Example:
    >>> config = SimulationConfig.from_yaml("configs/double_well.yaml")
    >>> grid = config.create_grid()
    >>> model = config.create_model(grid)
    >>> state = config.create_initial_state(model)
"""

from pathlib import Path
from typing import Dict, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from kramers.grid import PhaseSpaceGrid
from kramers.physics import KramersState, MomentPolicy, PhysicsParameters
from kramers.potentials import POTENTIALS, Potential, gaussian_packet, make_potential, point_seed
from kramers.timestepping import KramersModel, initialize_state
from kramers.truncation import TruncationParameters


class GridConfig(BaseModel):
    """Phase-space grid parameters."""

    h1: float = Field(default=0.1, gt=0.0, description="Spacing along x1")
    h2: float = Field(default=0.1, gt=0.0, description="Spacing along x2")
    x1_min: float = Field(default=-6.0, description="Lower position bound")
    x1_max: float = Field(default=6.0, description="Upper position bound")
    x2_min: float = Field(default=-6.0, description="Lower momentum bound")
    x2_max: float = Field(default=6.0, description="Upper momentum bound")
    edge: int = Field(default=2, ge=1, description="Frozen edge margin in cells")

    @model_validator(mode="after")
    def validate_bounds(self) -> "GridConfig":
        """Bounds must be increasing."""
        if self.x1_max <= self.x1_min:
            raise ValueError(f"x1_max ({self.x1_max}) must exceed x1_min ({self.x1_min})")
        if self.x2_max <= self.x2_min:
            raise ValueError(f"x2_max ({self.x2_max}) must exceed x2_min ({self.x2_min})")
        return self


class PotentialConfig(BaseModel):
    """Potential selection."""

    name: str = Field(default="double_well", description="Potential name")
    params: Dict[str, float] = Field(default_factory=dict, description="Shape parameters")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if v not in POTENTIALS:
            raise ValueError(
                f"Unknown potential '{v}'. Available: {', '.join(sorted(POTENTIALS))}"
            )
        return v


class TimeIntegrationConfig(BaseModel):
    """Timestep and run length."""

    dt: float = Field(default=0.01, gt=0.0, description="Timestep")
    t_final: float = Field(default=10.0, gt=0.0, description="Total simulated time")
    print_period: int = Field(default=100, ge=1, description="Steps between progress lines")

    @property
    def n_steps(self) -> int:
        return int(round(self.t_final / self.dt))


class InitialConditionConfig(BaseModel):
    """Initial condition parameters."""

    type: Literal["gaussian", "seed"] = Field(default="gaussian")
    x01: float = Field(default=0.0, description="Packet centre (position)")
    x02: float = Field(default=0.0, description="Packet centre (momentum)")
    a1: float = Field(default=0.5, gt=0.0, description="Inverse squared position width")
    a2: float = Field(default=1.0, gt=0.0, description="Momentum width parameter")
    seed_x1: float = Field(default=0.0, description="Seed cell position")
    seed_x2: float = Field(default=0.0, description="Seed cell momentum")
    seed_value: float = Field(default=1.0, gt=0.0, description="Seed cell value")


class IOConfig(BaseModel):
    """Output directory and diagnostic channels (periods in steps, 0 = off)."""

    output_dir: str = Field(default="output", description="Output directory")
    overwrite: bool = Field(default=True, description="Allow writing into a non-empty directory")
    wavefunction_period: int = Field(default=0, ge=0)
    edge_period: int = Field(default=0, ge=0)
    density_period: int = Field(default=0, ge=0)
    velocity_period: int = Field(default=0, ge=0)
    temperature_period: int = Field(default=0, ge=0)
    transmittance: bool = Field(default=False, description="Record transmittance")
    trans_x0: float = Field(default=0.0, description="Transmittance position threshold")
    correlation: bool = Field(default=False, description="Record profile correlation")
    save_history: bool = Field(default=True)
    save_final_state: bool = Field(default=True)
    save_plots: bool = Field(default=False)

    def snapshot_periods(self) -> Dict[str, int]:
        """Periods of the snapshot channels keyed by channel name."""
        return {
            "wavefunction": self.wavefunction_period,
            "edge": self.edge_period,
            "density": self.density_period,
            "velocity": self.velocity_period,
            "temperature": self.temperature_period,
        }


class SimulationConfig(BaseModel):
    """
    Complete simulation configuration.

    Attributes:
        name: Run name
        description: Free-form description
        grid, physics, potential, truncation, time_integration,
        initial_condition, io: Configuration sections
    """

    name: str = Field(default="kramers_run")
    description: str = Field(default="")
    grid: GridConfig = Field(default_factory=GridConfig)
    physics: PhysicsParameters = Field(default_factory=PhysicsParameters)
    potential: PotentialConfig = Field(default_factory=PotentialConfig)
    truncation: TruncationParameters = Field(default_factory=TruncationParameters)
    time_integration: TimeIntegrationConfig = Field(default_factory=TimeIntegrationConfig)
    initial_condition: InitialConditionConfig = Field(default_factory=InitialConditionConfig)
    io: IOConfig = Field(default_factory=IOConfig)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SimulationConfig":
        """
        Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If the file does not exist
            pydantic.ValidationError: If a value is invalid
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Write configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, sort_keys=False, indent=2)

    def create_grid(self) -> PhaseSpaceGrid:
        g = self.grid
        return PhaseSpaceGrid.create(
            h1=g.h1, h2=g.h2, x1_min=g.x1_min, x1_max=g.x1_max,
            x2_min=g.x2_min, x2_max=g.x2_max, edge=g.edge,
        )

    def create_potential(self) -> Potential:
        return make_potential(self.potential.name, **self.potential.params)

    def create_model(self, grid: Optional[PhaseSpaceGrid] = None) -> KramersModel:
        """Model combining grid, constants, thresholds and potential."""
        return KramersModel.create(
            grid if grid is not None else self.create_grid(),
            physics=self.physics,
            truncation=self.truncation,
            potential=self.create_potential(),
        )

    def create_initial_state(self, model: KramersModel) -> KramersState:
        """Initial condition evaluated on the model's grid, truncated and normalised."""
        ic = self.initial_condition
        grid = model.grid
        if ic.type == "gaussian":
            f0 = gaussian_packet(grid, x01=ic.x01, x02=ic.x02, a1=ic.a1, a2=ic.a2,
                                 hbar=self.physics.hbar)
        else:
            f0 = point_seed(grid, ic.seed_x1, ic.seed_x2, ic.seed_value)
        return initialize_state(f0, model)

    def get_output_dir(self) -> Path:
        """
        Create and return the output directory.

        Raises:
            FileExistsError: If the directory is non-empty and overwrite is False
        """
        path = Path(self.io.output_dir)
        if path.exists() and any(path.iterdir()) and not self.io.overwrite:
            raise FileExistsError(
                f"Output directory {path} is not empty and io.overwrite is False"
            )
        path.mkdir(parents=True, exist_ok=True)
        return path

    def summary(self) -> str:
        """Human-readable summary of the configuration."""
        grid = self.create_grid()
        mode = "full grid" if self.truncation.full_grid else "truncated grid"
        lines = [
            "=" * 70,
            f"Klein-Kramers simulation: {self.name}",
            "=" * 70,
        ]
        if self.description:
            lines.append(self.description)
        lines += [
            f"Grid:       {grid.N1}×{grid.N2} cells, h = ({self.grid.h1}, {self.grid.h2}), "
            f"edge = {self.grid.edge}",
            f"Domain:     x1 ∈ [{self.grid.x1_min}, {self.grid.x1_max}], "
            f"x2 ∈ [{self.grid.x2_min}, {self.grid.x2_max}]",
            f"Physics:    m = {self.physics.mass}, kB = {self.physics.kb}, "
            f"T = {self.physics.temperature}, γ = {self.physics.gamma}, "
            f"policy = {MomentPolicy(self.physics.moment_policy).value}",
            f"Potential:  {self.potential.name} {self.potential.params or ''}".rstrip(),
            f"Mode:       {mode}",
        ]
        if not self.truncation.full_grid:
            t = self.truncation
            lines.append(
                f"Thresholds: high = {t.tol_high:.1e}/{t.tol_high_grad:.1e}, "
                f"low = {t.tol_low:.1e}/{t.tol_low_grad:.1e}, "
                f"extrapolation limit = {t.extrapolation_limit}"
            )
        lines += [
            f"Time:       dt = {self.time_integration.dt}, t_final = {self.time_integration.t_final} "
            f"({self.time_integration.n_steps} steps)",
            f"Initial:    {self.initial_condition.type}",
            f"Output:     {self.io.output_dir}",
            "=" * 70,
        ]
        return "\n".join(lines)


def double_well_config() -> SimulationConfig:
    """Gaussian packet in the left well of the quartic double well."""
    return SimulationConfig(
        name="double_well",
        description="Relaxation of a packet in the symmetric quartic double well",
        grid=GridConfig(h1=0.1, h2=0.1, x1_min=-6.0, x1_max=6.0, x2_min=-6.0, x2_max=6.0),
        physics=PhysicsParameters(mass=1.0, kb=1.0, temperature=0.1, gamma=0.1,
                                  moment_policy=MomentPolicy.LOCAL),
        potential=PotentialConfig(name="double_well"),
        time_integration=TimeIntegrationConfig(dt=0.01, t_final=20.0, print_period=100),
        initial_condition=InitialConditionConfig(type="gaussian", x01=-0.845, a1=2.0, a2=0.5),
        io=IOConfig(output_dir="output/double_well", correlation=True,
                    density_period=200, edge_period=200),
    )


def metastable_escape_config() -> SimulationConfig:
    """Escape from the metastable cubic well, recording transmittance."""
    return SimulationConfig(
        name="metastable_escape",
        description="Thermal escape over the barrier of a cubic metastable well",
        grid=GridConfig(h1=0.05, h2=0.05, x1_min=-3.0, x1_max=6.0, x2_min=-3.0, x2_max=3.0),
        physics=PhysicsParameters(mass=1.0, kb=1.0, temperature=0.05, gamma=0.2,
                                  moment_policy=MomentPolicy.ISOTHERMAL),
        potential=PotentialConfig(name="metastable"),
        time_integration=TimeIntegrationConfig(dt=0.005, t_final=20.0, print_period=200),
        initial_condition=InitialConditionConfig(type="gaussian", x01=0.0, a1=4.0, a2=0.25),
        io=IOConfig(output_dir="output/metastable", transmittance=True, trans_x0=1.12556,
                    wavefunction_period=1000),
    )


def free_relaxation_config() -> SimulationConfig:
    """Free streaming with linearized relaxation toward the bath Maxwellian."""
    return SimulationConfig(
        name="free_relaxation",
        description="Force-free packet relaxing toward a zero-mean Maxwellian",
        grid=GridConfig(h1=0.1, h2=0.1, x1_min=-8.0, x1_max=8.0, x2_min=-5.0, x2_max=5.0),
        physics=PhysicsParameters(temperature=1.0, gamma=0.5,
                                  moment_policy=MomentPolicy.LINEARIZED),
        potential=PotentialConfig(name="free"),
        time_integration=TimeIntegrationConfig(dt=0.01, t_final=5.0, print_period=50),
        initial_condition=InitialConditionConfig(type="gaussian", x02=1.0, a1=1.0, a2=0.5),
        io=IOConfig(output_dir="output/free_relaxation", correlation=True),
    )
