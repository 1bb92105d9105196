"""Configuration loading and validation for Bramble."""

from __future__ import annotations

import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from bramble.errors import ConfigError

Helper = Callable[[tuple[Any, ...], dict[str, Any], Any], Any]


class TemplatingConfig(BaseModel):
    """Configuration for the response-template transformer.

    Validated once when the transformer is constructed.
    """

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    global_: bool = Field(
        default=True,
        alias="global",
        description="Apply to every stub rather than only stubs that opt in",
    )
    max_cache_entries: int | None = Field(
        default=None,
        ge=1,
        description="Upper bound on cached compiled templates; None means unbounded",
    )
    permitted_system_keys: frozenset[str] | None = Field(
        default=None,
        description="Regular expressions naming environment keys templates may read; "
        "None means unrestricted",
    )
    helpers: dict[str, Helper] = Field(
        default_factory=dict,
        exclude=True,
        description="Extra named helper functions made available to templates",
    )

    @field_validator("permitted_system_keys")
    @classmethod
    def _patterns_compile(cls, keys: frozenset[str] | None) -> frozenset[str] | None:
        if keys is None:
            return None
        for key in keys:
            try:
                re.compile(key)
            except re.error as exc:
                raise ValueError(f"invalid permitted system key pattern {key!r}: {exc}") from exc
        return keys


class ServerConfig(BaseModel):
    """Configuration for the FastAPI host."""

    host: str = "127.0.0.1"
    port: int = 8080


class FilesConfig(BaseModel):
    """Locations of body files and stub mapping files."""

    root: str = Field(default="./__files", description="Directory body files are read from")
    mappings: str = Field(default="./mappings", description="Directory of stub mapping files")


class JournalConfig(BaseModel):
    """Configuration for the request journal."""

    max_entries: int | None = Field(default=1000, ge=1)
    log_file: str | None = Field(default=None, description="Optional JSON Lines output")


class LoggingConfig(BaseModel):
    """Configuration for logging output."""

    level: str = "info"


class BrambleConfig(BaseModel):
    """Top-level Bramble configuration."""

    templating: TemplatingConfig = Field(default_factory=TemplatingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    files: FilesConfig = Field(default_factory=FilesConfig)
    journal: JournalConfig = Field(default_factory=JournalConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str | Path | None = None) -> BrambleConfig:
    """Load Bramble configuration from a YAML file.

    Args:
        path: Path to the YAML config file. If None, uses 'bramble.yaml'
              in the current directory, falling back to defaults.

    Returns:
        A validated BrambleConfig instance.

    Raises:
        ConfigError: If the file exists but is not valid YAML or fails validation.
    """
    path = Path("bramble.yaml") if path is None else Path(path)

    if not path.exists():
        return BrambleConfig()

    try:
        with open(path) as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
        return BrambleConfig.model_validate(raw)
    except (yaml.YAMLError, ValidationError) as exc:
        raise ConfigError(f"invalid configuration in {path}: {exc}") from exc
