"""
Integration tests for the command-line interface.

Tests all CLI commands:
- validate: Validate config files
- suggest: Suggest parameters
- check: Quick parameter check
- template: Print template configurations
- run: Run a short simulation
"""

import subprocess
import sys
import tempfile
from pathlib import Path

import pytest
import yaml

from kramers.config import free_relaxation_config


def run_cli(*args):
    """Run CLI command and return result."""
    result = subprocess.run(
        [sys.executable, "-m", "kramers"] + list(args),
        capture_output=True,
        text=True,
    )
    return result


def write_config(config: dict) -> str:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.safe_dump(config, f)
        return f.name


class TestCLIValidate:
    """Test 'validate' command."""

    def test_validate_valid_config(self):
        """Validate a valid config file."""
        config_path = write_config(free_relaxation_config().model_dump(mode="json"))
        try:
            result = run_cli("validate", config_path)
            assert result.returncode == 0
            assert "valid" in result.stdout.lower()
        finally:
            Path(config_path).unlink()

    def test_validate_invalid_config(self):
        """A timestep far above the CFL limit is rejected."""
        config = free_relaxation_config().model_dump(mode="json")
        config["time_integration"]["dt"] = 1.0
        config_path = write_config(config)
        try:
            result = run_cli("validate", config_path)
            assert result.returncode == 1
            assert "ERRORS" in result.stdout
            assert "CFL" in result.stdout
        finally:
            Path(config_path).unlink()

    def test_validate_schema_error(self):
        config_path = write_config({"potential": {"name": "bogus"}})
        try:
            result = run_cli("validate", config_path)
            assert result.returncode == 1
            assert "Unknown potential" in result.stdout
        finally:
            Path(config_path).unlink()

    def test_validate_missing_file(self):
        result = run_cli("validate", "/nonexistent/config.yaml")
        assert result.returncode == 1
        assert "not found" in result.stdout


class TestCLISuggest:
    """Test 'suggest' command."""

    def test_suggest_basic(self):
        result = run_cli("suggest", "--h1", "0.1", "--h2", "0.1", "--x2_max", "6")
        assert result.returncode == 0
        assert "Recommended parameters" in result.stdout
        assert "dt:" in result.stdout
        assert "tol_high:" in result.stdout

    def test_suggest_with_force_and_gamma(self):
        result = run_cli(
            "suggest", "--h1", "0.05", "--h2", "0.05", "--x2_max", "3",
            "--force_max", "20", "--gamma", "0.5", "--cfl", "0.3",
        )
        assert result.returncode == 0
        assert "ERRORS" not in result.stdout

    def test_suggest_missing_argument(self):
        result = run_cli("suggest", "--h1", "0.1")
        assert result.returncode != 0


class TestCLICheck:
    """Test 'check' command."""

    def test_check_valid(self):
        result = run_cli(
            "check", "--dt", "0.01", "--h1", "0.1", "--h2", "0.1", "--x2_max", "6"
        )
        assert result.returncode == 0
        assert "Parameters are valid" in result.stdout

    def test_check_invalid(self):
        """dt = 1 gives CFL = 60 on this grid."""
        result = run_cli(
            "check", "--dt", "1", "--h1", "0.1", "--h2", "0.1", "--x2_max", "6"
        )
        assert result.returncode == 1
        assert "CFL condition violated" in result.stdout


class TestCLITemplate:
    """Test 'template' command."""

    @pytest.mark.parametrize("name", ["double_well", "metastable", "free"])
    def test_template_parses(self, name):
        result = run_cli("template", name)
        assert result.returncode == 0
        config = yaml.safe_load(result.stdout)
        assert "grid" in config
        assert "physics" in config

    def test_unknown_template(self):
        result = run_cli("template", "nonexistent")
        assert result.returncode != 0


class TestCLIRun:
    """Test 'run' command."""

    def test_run_short(self, tmp_path):
        config = free_relaxation_config().model_dump(mode="json")
        config["grid"].update(h1=0.25, h2=0.25, x1_min=-4.0, x1_max=4.0, x2_min=-4.0, x2_max=4.0)
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.safe_dump(config))
        out = tmp_path / "out"

        result = run_cli("run", str(config_path), "--output-dir", str(out), "--steps", "2", "-q")
        assert result.returncode == 0, result.stderr
        assert (out / "config.yaml").exists()
        assert (out / "history.h5").exists()
        assert (out / "final_state.h5").exists()

    def test_run_missing_config(self):
        result = run_cli("run", "/nonexistent/config.yaml")
        assert result.returncode == 1


class TestCLIHelp:
    """Test help output."""

    def test_no_command(self):
        result = run_cli()
        assert result.returncode == 1
        assert "validate" in result.stdout
