"""
Configuration management for the compliance engine based on Pydantic Settings.

Supported configuration sources:
- Environment variables
- .env files
- YAML configuration files
"""

from pathlib import Path
from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

DEFAULT_RULE_SETS = ["f1-student-rules", "opt-rules", "stem-opt-rules"]


class RuleEngineConfig(BaseSettings):
    """Feature gates and limits for rule evaluation."""

    # Task generation
    enable_smart_dates: bool = Field(default=True, description="Compute due dates from rule date configs")
    enable_dependencies: bool = Field(default=True, description="Order and annotate tasks by prerequisites")
    enable_university_overrides: bool = Field(default=True, description="Apply per-university template overrides")
    enable_auto_completion: bool = Field(default=True, description="Attach auto-completion conditions to tasks")
    max_tasks_per_evaluation: int = Field(default=50, ge=1, description="Cap on tasks returned per evaluation")
    default_due_offset_days: int = Field(default=7, ge=0, description="Flat due offset when smart dates are off")

    # Result caching
    cache_evaluation_results: bool = Field(default=True, description="Cache results per subject")
    cache_ttl_seconds: float = Field(default=300.0, gt=0, description="Result cache TTL in seconds")

    # Diagnostics
    debug_mode: bool = Field(default=False, description="Log per-rule diagnostics")
    performance_tracking: bool = Field(default=True, description="Populate the performance summary")

    model_config = {"env_prefix": "COMPLIANCE_ENGINE_"}


class RuleLoaderConfig(BaseSettings):
    """Rule source settings."""

    cache_ttl_seconds: float = Field(default=300.0, gt=0, description="Per-source cache TTL in seconds")
    embedded_locations: List[str] = Field(
        default_factory=lambda: list(DEFAULT_RULE_SETS),
        description="Bundled rule sets to load",
    )
    api_timeout_seconds: float = Field(default=10.0, gt=0, description="HTTP timeout for API rule sources")

    model_config = {"env_prefix": "COMPLIANCE_LOADER_"}


class LoggingConfig(BaseSettings):
    """Structured logging settings."""

    log_level: str = Field(default="INFO", description="Logging level")
    enable_structured_logging: bool = Field(default=False, description="Render log events as JSON")

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    model_config = {"env_prefix": "COMPLIANCE_LOG_"}


class ComplianceSettings(BaseSettings):
    """Top-level settings for the compliance engine."""

    engine: RuleEngineConfig = Field(default_factory=RuleEngineConfig)
    loader: RuleLoaderConfig = Field(default_factory=RuleLoaderConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "ComplianceSettings":
        """Load settings from a YAML file."""
        import yaml

        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    @classmethod
    def from_env(cls, env_file: Optional[Union[str, Path]] = None) -> "ComplianceSettings":
        """Load settings from environment variables, optionally reading a .env file first."""
        if env_file:
            from dotenv import load_dotenv

            load_dotenv(env_file)

        return cls()

    def to_dict(self) -> dict:
        """Return settings as a plain dictionary."""
        return self.model_dump()

    model_config = {
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }
