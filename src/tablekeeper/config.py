"""
Configuration system for tablekeeper using Pydantic.
"""

import os
from pathlib import Path
from typing import Any, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database.connection import ConnectionConfig
from .exceptions import ConfigurationError


class ModelConfig(BaseModel):
    """A model: a named query refreshed into a table of the same name."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Model name")
    schema_name: Optional[str] = Field(
        None, alias="schema", description="Target schema (defaults to refresh.default_schema)"
    )
    alias: Optional[str] = Field(
        None, description="Target table identifier (defaults to the model name)"
    )
    sql: Optional[str] = Field(None, description="Inline query text")
    sql_file: Optional[str] = Field(None, description="Path to a file holding the query")
    log_to_stdout: Optional[bool] = Field(
        None, description="Surface refresh events on the console for this model"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Model name is required")
        return v

    @property
    def identifier(self) -> str:
        """Target table identifier."""
        return self.alias or self.name


class RefreshSettings(BaseModel):
    """Refresh engine settings."""

    default_schema: str = Field("public", description="Schema for models without one")
    alter_in_place: bool = Field(
        True, description="Repair column drift with ALTER TABLE instead of drop/recreate"
    )
    log_to_stdout: bool = Field(
        False, description="Surface refresh events on the console"
    )
    fail_fast: bool = Field(
        True, description="Stop a batch refresh at the first failed model"
    )
    quote_style: Literal["double_quote", "bracket"] = Field(
        "double_quote", description="Identifier quoting convention"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class TablekeeperConfig(BaseSettings):
    """Main tablekeeper configuration."""

    service_name: str = Field("tablekeeper", description="Service name")
    debug: bool = Field(False, description="Enable debug mode")
    dry_run: bool = Field(False, description="Enable dry run mode")

    database: ConnectionConfig = Field(..., description="Target database connection")
    refresh: RefreshSettings = Field(
        default_factory=RefreshSettings, description="Refresh engine settings"
    )
    models: List[ModelConfig] = Field(
        default_factory=list, description="Models to refresh"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    # Directory relative sql_file paths resolve against
    project_dir: Optional[str] = Field(None, description="Project directory")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TABLEKEEPER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("database", mode="before")
    @classmethod
    def expand_database_url(cls, v):
        """Accept a connection URL as the database section or its ``url`` key.

        Fields set next to ``url`` override what the URL provides.
        """
        if isinstance(v, str):
            return ConnectionConfig.from_url(v)
        if isinstance(v, dict) and v.get("url"):
            overrides = {k: val for k, val in v.items() if k != "url"}
            return {**ConnectionConfig.from_url(v["url"]).model_dump(), **overrides}
        return v

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "TablekeeperConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            if not isinstance(data, dict):
                raise ConfigurationError(f"Configuration file must contain a mapping: {path}")

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)
            data.setdefault("project_dir", str(Path(path).resolve().parent))

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def get_model(self, name: str) -> ModelConfig:
        """Get model configuration by name."""
        for model in self.models:
            if model.name == name:
                return model
        raise ConfigurationError(f"Model '{name}' not found")

    def schema_for(self, model: ModelConfig) -> str:
        """Target schema of a model."""
        return model.schema_name or self.refresh.default_schema

    def log_to_stdout_for(self, model: ModelConfig) -> bool:
        """Whether refresh events for a model surface on the console."""
        if model.log_to_stdout is not None:
            return model.log_to_stdout
        return self.refresh.log_to_stdout

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        seen = set()
        for model in self.models:
            key = (self.schema_for(model).lower(), model.identifier.lower())
            if model.name in seen or key in seen:
                raise ConfigurationError(
                    f"Model '{model.name}' is configured more than once"
                )
            seen.add(model.name)
            seen.add(key)

            if model.sql and model.sql_file:
                raise ConfigurationError(
                    f"Model '{model.name}' sets both 'sql' and 'sql_file'"
                )
            if not model.sql and not model.sql_file:
                raise ConfigurationError(f"No SQL code found for model: {model.name}")

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        data = self.model_dump(exclude_none=True, by_alias=True, exclude={"project_dir"})
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, indent=2, sort_keys=False)
