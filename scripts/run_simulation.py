#!/usr/bin/env python3
"""
Klein-Kramers Simulation Runner

This script runs Klein-Kramers simulations from YAML configuration files.

Usage:
    # Run with config file
    python scripts/run_simulation.py configs/double_well.yaml

    # Generate template config
    python scripts/run_simulation.py --template double_well > config.yaml

    # Run with custom output directory
    python scripts/run_simulation.py config.yaml --output-dir my_results

Example:
    # Generate and customize config
    python scripts/run_simulation.py --template metastable > my_config.yaml
    # Edit my_config.yaml as needed
    python scripts/run_simulation.py my_config.yaml
"""

import argparse
import sys
from pathlib import Path

from kramers.config import SimulationConfig
from kramers.simulation import TEMPLATES, generate_template, run_simulation


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run Klein-Kramers simulations from configuration files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate template config
  python scripts/run_simulation.py --template double_well > dw.yaml

  # Run simulation
  python scripts/run_simulation.py dw.yaml

  # Run with custom output
  python scripts/run_simulation.py config.yaml --output-dir results_v2

Available templates:
  double_well - Packet relaxing in the quartic double well
  metastable  - Escape from a cubic metastable well (transmittance)
  free        - Force-free linearized relaxation
        """
    )

    parser.add_argument(
        'config',
        nargs='?',
        help='Path to YAML configuration file'
    )

    parser.add_argument(
        '--template',
        choices=sorted(TEMPLATES),
        help='Generate template configuration (outputs to stdout)'
    )

    parser.add_argument(
        '--output-dir',
        help='Override output directory from config'
    )

    parser.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Suppress progress output'
    )

    args = parser.parse_args()

    # Template generation mode
    if args.template:
        print(generate_template(args.template))
        return

    # Simulation mode
    if not args.config:
        parser.print_help()
        print("\nError: Must specify config file or --template", file=sys.stderr)
        sys.exit(1)

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        sys.exit(1)

    try:
        config = SimulationConfig.from_yaml(config_path)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    if args.output_dir:
        # Use model_copy to avoid mutating Pydantic model (bypasses validation)
        config = config.model_copy(
            update={'io': config.io.model_copy(update={'output_dir': args.output_dir})}
        )

    try:
        run_simulation(config, verbose=not args.quiet)
    except Exception as e:
        print(f"Error running simulation: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
