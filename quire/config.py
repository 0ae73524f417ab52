"""
Run configuration.

RunConfig is loaded from ``quire.yaml`` (or a file given with ``--config``)
and overridden by command-line options. Reporter settings that CI systems
pass in the environment are read through pydantic-settings.
"""

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_FILE_NAMES = ("quire.yaml", "quire.yml")


class RunConfig(BaseModel):
    """Settings for one test run."""

    model_config = {"frozen": True, "extra": "forbid"}

    test_dir: str = Field(default=".", description="Directory searched for test files")
    test_match: list[str] = Field(
        default_factory=lambda: ["*.test.py", "*_test.py", "test_*.py"],
        description="Glob patterns selecting test files by name",
    )
    timeout: float = Field(default=10.0, description="Per-test timeout in seconds, 0 disables")
    global_timeout: float = Field(default=0.0, description="Whole-run timeout in seconds, 0 disables")
    retries: int = Field(default=0, ge=0, description="Retries for failed or timed out tests")
    workers: int = Field(default=1, ge=1, description="Maximum number of worker processes")
    parameters: dict[str, str] = Field(
        default_factory=dict, description="Values for fixtures declared with define_parameter"
    )
    output_dir: str = Field(default="test-results", description="Root of per-test output directories")
    grep: str | None = Field(default=None, description="Only run tests whose title matches")
    shutdown_grace_period: float = Field(
        default=5.0,
        gt=0,
        description="Seconds a retiring worker gets for fixture teardown; killed after twice that",
    )
    log_level: str = Field(default="WARNING", description="Log level for runner and workers")
    json_logs: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("timeout", "global_timeout")
    @classmethod
    def timeout_not_negative(cls, v: float) -> float:
        """Timeouts are seconds; 0 means no timeout."""
        if v < 0:
            raise ValueError("Timeouts must not be negative")
        return v

    @field_validator("grep")
    @classmethod
    def grep_is_regex(cls, v: str | None) -> str | None:
        """Validate that grep compiles as a regular expression."""
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid grep pattern: {e}") from e
        return v

    def with_overrides(self, **overrides: Any) -> "RunConfig":
        """Return a validated copy with the non-None overrides applied."""
        data = self.model_dump()
        data.update({key: value for key, value in overrides.items() if value is not None})
        return RunConfig.model_validate(data)


class ReporterSettings(BaseSettings):
    """Reporter settings read from ``QUIRE_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="QUIRE_", case_sensitive=False, extra="ignore")

    json_output_name: str = ""
    run_url: str = ""
    buildbot_name: str = ""


def parse_parameters(values: list[str] | None) -> dict[str, str]:
    """Parse ``name=value`` pairs from the command line.

    Raises:
        ValueError: If a pair has no ``=`` or an empty name.
    """
    parameters: dict[str, str] = {}
    for value in values or []:
        name, sep, raw = value.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Parameter must look like name=value: {value}")
        parameters[name.strip()] = raw
    return parameters


class RunConfigLoader:
    """Load and validate run configurations from YAML files."""

    @classmethod
    def from_yaml(cls, path: str | Path) -> RunConfig:
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            RunConfig loaded from file
        """
        path = Path(path)
        if not path.exists():
            msg = f"Configuration file not found: {path}"
            raise FileNotFoundError(msg)

        with path.open() as f:
            data = yaml.safe_load(f)

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunConfig:
        """
        Create configuration from a dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            RunConfig from dictionary
        """
        data = dict(data)
        # Parameters are strings on the command line; keep YAML the same
        if isinstance(data.get("parameters"), dict):
            data["parameters"] = {str(k): str(v) for k, v in data["parameters"].items()}
        if isinstance(data.get("test_match"), str):
            data["test_match"] = [data["test_match"]]
        return RunConfig.model_validate(data)

    @classmethod
    def discover(cls, directory: str | Path = ".") -> RunConfig:
        """Load ``quire.yaml`` or ``quire.yml`` from a directory, else defaults."""
        for name in CONFIG_FILE_NAMES:
            candidate = Path(directory) / name
            if candidate.is_file():
                return cls.from_yaml(candidate)
        return RunConfig()

    @classmethod
    def generate_sample_config(cls) -> str:
        """
        Generate a sample YAML configuration file.

        Returns:
            YAML string for sample configuration
        """
        sample = {
            "test_dir": "tests",
            "test_match": ["*.test.py", "*_test.py"],
            "timeout": 10.0,
            "global_timeout": 0,
            "retries": 0,
            "workers": 4,
            "parameters": {"base_url": "http://localhost:8000"},
            "output_dir": "test-results",
            "shutdown_grace_period": 5.0,
            "log_level": "WARNING",
        }
        return "# Quire Run Configuration\n" + yaml.dump(
            sample, default_flow_style=False, sort_keys=False
        )
