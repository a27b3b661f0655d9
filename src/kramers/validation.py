"""
Parameter Validation and Suggestion Module

This module provides automated parameter checking and suggestion functions
to help users avoid numerical instabilities and mis-tuned truncation.

Key features:
- CFL condition for the centred advection and force terms under RK4
- Relaxation stability (γ·dt inside the real RK4 stability interval)
- Truncation threshold consistency
- Initial condition placement
- Config file validation

Stability limits of classical RK4:
- imaginary axis: |z| ≤ 2√2 ≈ 2.83 (centred differences, advection)
- real axis: z ≥ -2.785 (relaxation toward f_eq)
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np
from pydantic import ValidationError

from kramers.config import SimulationConfig
from kramers.truncation import TruncationParameters


# Validation thresholds (constants)
RK4_IMAGINARY_LIMIT = 2.0 * np.sqrt(2.0)  # RK4 stability on the imaginary axis
RK4_REAL_LIMIT = 2.785  # RK4 stability on the negative real axis
CFL_WARNING_RATIO = 0.8  # Warn when CFL > 80% of limit
DEFAULT_TARGET_CFL = 0.5  # Suggested fraction of the CFL limit


@dataclass
class ValidationResult:
    """Result of parameter validation."""

    valid: bool
    warnings: List[str]
    errors: List[str]
    suggestions: List[str]

    def print_report(self):
        """Print human-readable validation report."""
        if self.valid and not self.warnings:
            print("✓ All parameters valid")
            return

        if self.errors:
            print("\n❌ ERRORS (must fix):")
            for err in self.errors:
                print(f"  • {err}")

        if self.warnings:
            print("\n⚠️  WARNINGS (recommended fixes):")
            for warn in self.warnings:
                print(f"  • {warn}")

        if self.suggestions:
            print("\n💡 SUGGESTIONS:")
            for sug in self.suggestions:
                print(f"  • {sug}")

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        """Combine two results; valid only if both are."""
        return ValidationResult(
            self.valid and other.valid,
            self.warnings + other.warnings,
            self.errors + other.errors,
            self.suggestions + other.suggestions,
        )


def validate_cfl_condition(
    dt: float,
    h1: float,
    h2: float,
    velocity_max: float,
    force_max: float = 0.0,
    cfl_limit: float = RK4_IMAGINARY_LIMIT,
) -> ValidationResult:
    """
    Check the CFL condition of the centred transport terms.

    With centred differences the transport operator has purely imaginary
    eigenvalues bounded by

        CFL = dt · (max|x2/m| / h1 + max|V'| / h2)

    and classical RK4 is stable for CFL ≤ 2√2.

    Parameters
    ----------
    dt : float
        Timestep
    h1, h2 : float
        Grid spacings along x1 and x2
    velocity_max : float
        Largest advection speed max|x2|/m on the grid
    force_max : float, default=0.0
        Largest potential gradient max|V'| on the grid
    cfl_limit : float, default=2√2
        CFL stability limit

    Returns
    -------
    ValidationResult
        Validation result with any errors/warnings
    """
    errors = []
    warnings_list = []
    suggestions = []

    if h1 <= 0 or h2 <= 0:
        errors.append(f"Invalid grid spacing: h1 = {h1}, h2 = {h2} (must be > 0)")
        return ValidationResult(False, warnings_list, errors, suggestions)

    if dt <= 0:
        errors.append(f"Invalid timestep: dt = {dt} (must be > 0)")
        return ValidationResult(False, warnings_list, errors, suggestions)

    rate = abs(velocity_max) / h1 + abs(force_max) / h2
    cfl_actual = dt * rate

    if cfl_actual > cfl_limit:
        errors.append(
            f"CFL condition violated: CFL = {cfl_actual:.3f} > {cfl_limit:.3f} "
            f"(CRITICAL: numerical instability likely)"
        )
        suggestions.append(f"Reduce dt to < {cfl_limit / rate:.4g}")
    elif cfl_actual > CFL_WARNING_RATIO * cfl_limit:
        warnings_list.append(
            f"CFL near limit: CFL = {cfl_actual:.3f} > {CFL_WARNING_RATIO * cfl_limit:.2f}"
        )
        suggestions.append("Consider using dt with safety factor 0.3-0.5 for robustness")
    else:
        suggestions.append(f"CFL = {cfl_actual:.3f} is safe (< {cfl_limit:.3f})")

    valid = len(errors) == 0
    return ValidationResult(valid, warnings_list, errors, suggestions)


def validate_relaxation_stability(
    gamma: float,
    dt: float,
    limit: float = RK4_REAL_LIMIT,
) -> ValidationResult:
    """
    Check that γ·dt lies inside the real RK4 stability interval.

    Parameters
    ----------
    gamma : float
        Relaxation rate
    dt : float
        Timestep
    limit : float, default=2.785
        RK4 stability bound on the negative real axis

    Returns
    -------
    ValidationResult
        Validation result with any errors/warnings
    """
    errors = []
    warnings_list = []
    suggestions = []

    if gamma < 0:
        errors.append(f"Invalid relaxation rate: γ = {gamma} (must be ≥ 0)")
        return ValidationResult(False, warnings_list, errors, suggestions)

    gamma_dt = gamma * dt
    if gamma_dt >= limit:
        errors.append(
            f"Relaxation unstable: γ·dt = {gamma_dt:.3f} ≥ {limit} "
            f"(CRITICAL: f will oscillate and grow)"
        )
        suggestions.append(f"Reduce dt to < {limit / gamma:.4g}")
    elif gamma_dt > CFL_WARNING_RATIO * limit:
        warnings_list.append(
            f"Relaxation near stability limit: γ·dt = {gamma_dt:.3f} > "
            f"{CFL_WARNING_RATIO * limit:.2f}"
        )

    valid = len(errors) == 0
    return ValidationResult(valid, warnings_list, errors, suggestions)


def validate_thresholds(params: TruncationParameters) -> ValidationResult:
    """
    Check the consistency of the truncation thresholds.

    Growth (tol_low) should sit above the drop threshold (tol_high), otherwise
    a grown cell can be dropped again in the same step.

    Parameters
    ----------
    params : TruncationParameters
        Truncation settings

    Returns
    -------
    ValidationResult
        Validation result with any errors/warnings
    """
    warnings_list = []
    suggestions = []

    if params.full_grid:
        suggestions.append("Full-grid mode: truncation thresholds are ignored")
        return ValidationResult(True, warnings_list, [], suggestions)

    if params.tol_low < params.tol_high:
        warnings_list.append(
            f"Growth threshold below drop threshold: tol_low = {params.tol_low:.1e} "
            f"< tol_high = {params.tol_high:.1e} (region may oscillate)"
        )
        suggestions.append("Use tol_low ≥ tol_high, e.g. tol_low = 100 · tol_high")

    if params.tol_low_grad < params.tol_high_grad:
        warnings_list.append(
            f"Gradient growth threshold below drop threshold: "
            f"tol_low_grad = {params.tol_low_grad:.1e} < tol_high_grad = {params.tol_high_grad:.1e}"
        )

    if params.extrapolation_limit == 0:
        warnings_list.append(
            "extrapolation_limit = 0: the active region can never grow"
        )

    if params.tol_high == 0.0 and params.tol_high_grad == 0.0:
        suggestions.append(
            "tol_high = tol_high_grad = 0: only exact zeros are dropped, "
            "the region will approach the full interior"
        )

    return ValidationResult(True, warnings_list, [], suggestions)


def suggest_parameters(
    h1: float,
    h2: float,
    x2_max: float,
    mass: float = 1.0,
    force_max: float = 0.0,
    gamma: float = 0.1,
    target_cfl: float = DEFAULT_TARGET_CFL,
) -> Dict[str, float]:
    """
    Suggest a safe timestep and truncation thresholds.

    Parameters
    ----------
    h1, h2 : float
        Grid spacings
    x2_max : float
        Largest |x2| on the grid
    mass : float, default=1.0
        Particle mass
    force_max : float, default=0.0
        Largest |V'| on the grid
    gamma : float, default=0.1
        Relaxation rate
    target_cfl : float, default=0.5
        Target fraction of the RK4 stability limits

    Returns
    -------
    dict
        Suggested parameters: dt, cfl, gamma_dt and the four thresholds
    """
    rate = abs(x2_max) / (mass * h1) + abs(force_max) / h2
    candidates = []
    if rate > 0:
        candidates.append(target_cfl * RK4_IMAGINARY_LIMIT / rate)
    if gamma > 0:
        candidates.append(target_cfl * RK4_REAL_LIMIT / gamma)
    dt = min(candidates) if candidates else 0.01

    # Thresholds scale with the cell volume so that dropped mass stays small
    cell_volume = h1 * h2
    tol_high = 1e-10 / cell_volume
    tol_low = 100.0 * tol_high

    return {
        "dt": dt,
        "cfl": dt * rate,
        "gamma_dt": dt * gamma,
        "tol_high": tol_high,
        "tol_low": tol_low,
        "tol_high_grad": tol_high,
        "tol_low_grad": tol_low,
        "cfl_safety": target_cfl,
    }


def validate_parameters(
    dt: float,
    h1: float,
    h2: float,
    velocity_max: float,
    gamma: float,
    force_max: float = 0.0,
    truncation: Optional[TruncationParameters] = None,
) -> ValidationResult:
    """
    Comprehensive parameter validation.

    Checks:
    1. CFL condition of the transport terms
    2. Relaxation stability
    3. Truncation thresholds (if given)

    Parameters
    ----------
    dt : float
        Timestep
    h1, h2 : float
        Grid spacings
    velocity_max : float
        Largest advection speed max|x2|/m
    gamma : float
        Relaxation rate
    force_max : float, default=0.0
        Largest potential gradient max|V'|
    truncation : TruncationParameters, optional
        Truncation settings

    Returns
    -------
    ValidationResult
        Combined validation result
    """
    result = validate_cfl_condition(dt, h1, h2, velocity_max, force_max)
    result = result.merge(validate_relaxation_stability(gamma, dt))
    if truncation is not None:
        result = result.merge(validate_thresholds(truncation))
    return result


def validate_config(config: SimulationConfig) -> ValidationResult:
    """
    Validate a loaded SimulationConfig.

    The velocity and force bounds are evaluated on the configured grid and
    potential.

    Parameters
    ----------
    config : SimulationConfig
        Configuration to check

    Returns
    -------
    ValidationResult
        Validation result
    """
    grid = config.create_grid()
    potential = config.create_potential()
    X1, X2 = grid.coordinates()

    velocity_max = float(np.max(np.abs(np.asarray(grid.x2)))) / config.physics.mass
    force_max = float(np.max(np.abs(np.asarray(potential.gradient(X1, X2)))))

    result = validate_parameters(
        config.time_integration.dt,
        grid.h1,
        grid.h2,
        velocity_max,
        config.physics.gamma,
        force_max,
        config.truncation,
    )

    ic = config.initial_condition
    centre = (ic.x01, ic.x02) if ic.type == "gaussian" else (ic.seed_x1, ic.seed_x2)
    interior = np.asarray(grid.interior_mask())
    try:
        i1, i2 = grid.index_of(*centre)
        inside = bool(interior[i1, i2])
    except ValueError:
        inside = False
    if not inside:
        result = result.merge(ValidationResult(
            False, [],
            [f"Initial condition centre {centre} lies outside the grid interior"],
            ["Move the initial condition or enlarge the grid bounds"],
        ))

    if config.io.transmittance and not (grid.x1_min <= config.io.trans_x0 <= grid.x1_max):
        result = result.merge(ValidationResult(
            True,
            [f"trans_x0 = {config.io.trans_x0} lies outside [{grid.x1_min}, {grid.x1_max}]"],
            [], [],
        ))

    return result


def validate_config_dict(config: Dict) -> ValidationResult:
    """
    Validate parameters from a config dictionary.

    Schema errors (unknown potential, negative spacing, ...) are reported as
    errors instead of raised.

    Parameters
    ----------
    config : dict
        Configuration dictionary as loaded from YAML

    Returns
    -------
    ValidationResult
        Validation result

    Example
    -------
    >>> config = {
    ...     "grid": {"h1": 0.1, "h2": 0.1},
    ...     "physics": {"gamma": 0.5},
    ...     "time_integration": {"dt": 0.01},
    ... }
    >>> result = validate_config_dict(config)
    >>> result.print_report()
    """
    try:
        parsed = SimulationConfig.model_validate(config or {})
        parsed.create_grid()
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        return ValidationResult(False, [], errors, ["Fix the configuration schema errors"])
    except ValueError as e:
        return ValidationResult(False, [], [str(e)], [])

    return validate_config(parsed)
