"""
CLI interface for Klein-Kramers tools.

Usage:
    python -m kramers validate <config.yaml>
    python -m kramers check --dt 0.01 --h1 0.1 --h2 0.1 --x2_max 6 --gamma 0.1
    python -m kramers suggest --h1 0.1 --h2 0.1 --x2_max 6
    python -m kramers template double_well > config.yaml
    python -m kramers run config.yaml
"""

import argparse
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import SimulationConfig
from .simulation import TEMPLATES, generate_template, run_simulation
from .truncation import TruncationParameters
from .validation import (
    validate_config_dict,
    suggest_parameters,
    validate_parameters,
)


def cmd_validate(args):
    """Validate parameters from a config file."""
    config_path = Path(args.config)

    if not config_path.exists():
        print(f"❌ Config file not found: {config_path}")
        return 1

    print(f"Validating {config_path}...")
    print("=" * 70)

    with open(config_path) as f:
        config = yaml.safe_load(f)

    result = validate_config_dict(config)
    result.print_report()

    print("=" * 70)

    if result.valid:
        print("✓ Configuration is valid")
        return 0
    else:
        print("❌ Configuration has errors (see above)")
        return 1


def cmd_suggest(args):
    """Suggest a timestep and thresholds for a grid."""
    print(f"Suggesting parameters for h1 = {args.h1}, h2 = {args.h2}, |x2| ≤ {args.x2_max}")
    print(f"Target fraction of the RK4 limits: {args.cfl}")
    print("=" * 70)

    params = suggest_parameters(
        args.h1, args.h2, args.x2_max, args.mass, args.force_max, args.gamma, args.cfl
    )

    print("\nRecommended parameters:")
    print(f"  dt:            {params['dt']:.4g}")
    print(f"  CFL:           {params['cfl']:.3f}")
    print(f"  gamma*dt:      {params['gamma_dt']:.3f}")
    print(f"  tol_high:      {params['tol_high']:.1e}")
    print(f"  tol_low:       {params['tol_low']:.1e}")
    print(f"  tol_high_grad: {params['tol_high_grad']:.1e}")
    print(f"  tol_low_grad:  {params['tol_low_grad']:.1e}")

    print("\n" + "=" * 70)
    print("Validating suggested parameters...")
    print("=" * 70)

    truncation = TruncationParameters(
        tol_high=params['tol_high'],
        tol_low=params['tol_low'],
        tol_high_grad=params['tol_high_grad'],
        tol_low_grad=params['tol_low_grad'],
    )
    result = validate_parameters(
        params['dt'],
        args.h1,
        args.h2,
        args.x2_max / args.mass,
        args.gamma,
        args.force_max,
        truncation,
    )

    result.print_report()
    print("=" * 70)

    return 0


def cmd_check(args):
    """Quick parameter check from command line."""
    print("Checking parameters...")
    print("=" * 70)

    result = validate_parameters(
        args.dt,
        args.h1,
        args.h2,
        args.x2_max / args.mass,
        args.gamma,
        args.force_max,
    )

    result.print_report()
    print("=" * 70)

    if result.valid:
        print("✓ Parameters are valid")
        return 0
    else:
        print("❌ Parameters have errors")
        return 1


def cmd_template(args):
    """Print a template configuration."""
    print(generate_template(args.name))
    return 0


def cmd_run(args):
    """Run a simulation from a config file."""
    config_path = Path(args.config)
    if not config_path.exists():
        print(f"❌ Config file not found: {config_path}", file=sys.stderr)
        return 1

    try:
        config = SimulationConfig.from_yaml(config_path)
    except (ValidationError, yaml.YAMLError) as e:
        print(f"❌ Error loading configuration: {e}", file=sys.stderr)
        return 1

    if args.output_dir:
        config = config.model_copy(
            update={'io': config.io.model_copy(update={'output_dir': args.output_dir})}
        )

    run_simulation(config, verbose=not args.quiet, n_steps=args.steps)
    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Klein-Kramers solver: validation, templates and runs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate a config file
  python -m kramers validate configs/double_well.yaml

  # Suggest a timestep for a grid
  python -m kramers suggest --h1 0.1 --h2 0.1 --x2_max 6 --gamma 0.1

  # Quick parameter check
  python -m kramers check --dt 0.01 --h1 0.1 --h2 0.1 --x2_max 6 --gamma 0.1

  # Generate and run a template
  python -m kramers template double_well > dw.yaml
  python -m kramers run dw.yaml
"""
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    parser_validate = subparsers.add_parser(
        "validate",
        help="Validate parameters from a config file"
    )
    parser_validate.add_argument(
        "config",
        help="Path to YAML config file"
    )

    def add_grid_arguments(sub):
        sub.add_argument("--h1", type=float, required=True, help="Spacing along x1")
        sub.add_argument("--h2", type=float, required=True, help="Spacing along x2")
        sub.add_argument("--x2_max", type=float, required=True, help="Largest |x2| on the grid")
        sub.add_argument("--mass", type=float, default=1.0, help="Particle mass")
        sub.add_argument("--force_max", type=float, default=0.0, help="Largest |V'| on the grid")
        sub.add_argument("--gamma", type=float, default=0.1, help="Relaxation rate")

    parser_suggest = subparsers.add_parser(
        "suggest",
        help="Suggest a timestep and thresholds for a grid"
    )
    add_grid_arguments(parser_suggest)
    parser_suggest.add_argument(
        "--cfl",
        type=float,
        default=0.5,
        help="Target fraction of the RK4 stability limits (default: 0.5)"
    )

    parser_check = subparsers.add_parser(
        "check",
        help="Quick parameter validation from command line"
    )
    parser_check.add_argument("--dt", type=float, required=True, help="Timestep")
    add_grid_arguments(parser_check)

    parser_template = subparsers.add_parser(
        "template",
        help="Print a template configuration"
    )
    parser_template.add_argument("name", choices=sorted(TEMPLATES), help="Template name")

    parser_run = subparsers.add_parser(
        "run",
        help="Run a simulation from a config file"
    )
    parser_run.add_argument("config", help="Path to YAML config file")
    parser_run.add_argument("--output-dir", help="Override output directory from config")
    parser_run.add_argument("--steps", type=int, help="Override the number of steps")
    parser_run.add_argument("-q", "--quiet", action="store_true", help="Suppress progress output")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "validate":
        return cmd_validate(args)
    elif args.command == "suggest":
        return cmd_suggest(args)
    elif args.command == "check":
        return cmd_check(args)
    elif args.command == "template":
        return cmd_template(args)
    elif args.command == "run":
        return cmd_run(args)


if __name__ == "__main__":
    sys.exit(main())
