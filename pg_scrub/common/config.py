import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pg_scrub.common.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_TEST_EMAIL_DOMAIN,
    DEFAULT_TIMESTAMP_COLUMN,
    DEFAULT_TOKEN_COLUMNS,
    ENV_DRY_RUN,
    ENV_EXPORT_PATH,
    ENV_PRIMARY_DATABASE_URL,
    ENV_PRUNE,
    ENV_SOURCE_DATABASE_URL,
    ENV_TARGET_DATABASE_URL,
    ENV_TARGET_DATABASE_URL_ALIAS,
    ENV_VERBOSE,
)
from pg_scrub.common.enums import ConflictPolicy, ExportFormat, PruneDirection
from pg_scrub.common.dto import safe_url
from pg_scrub.common.errors import ConfigurationError
from pg_scrub.common.utils import parse_age, read_yaml, resolve_cutoff

TRUE_VALUES = ("1", "true", "yes", "on")


def env_flag(environ: Mapping[str, str], name: str) -> Optional[bool]:
    value = environ.get(name)
    if value is None or value.strip() == "":
        return None
    return value.strip().lower() in TRUE_VALUES


class AnalyzerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min_table_size: int = 10_000_000  # bytes
    min_row_count: int = 1000
    retention_days: int = 90
    table_patterns: List[str] = Field(default_factory=list)


class PruningConfig(BaseModel):
    """
    Global pruning: delete rows older (or newer) than a cutoff from every eligible table
    before sanitizers run
    """
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    older_than: Optional[Union[timedelta, datetime]] = None
    newer_than: Optional[Union[timedelta, datetime]] = None
    column: str = DEFAULT_TIMESTAMP_COLUMN
    only: Optional[List[str]] = None
    except_tables: Optional[List[str]] = Field(default=None, alias="except")
    on_conflict: ConflictPolicy = ConflictPolicy.WARN
    analyzer: AnalyzerConfig = Field(default_factory=AnalyzerConfig)

    @field_validator("older_than", "newer_than", mode="before")
    @classmethod
    def _parse_age(cls, value: Any):
        if value is None:
            return None
        return parse_age(value)

    @model_validator(mode="after")
    def _check_exclusive_options(self):
        if self.older_than is not None and self.newer_than is not None:
            raise ConfigurationError("Pruning: older_than and newer_than are mutually exclusive, set only one")

        if self.older_than is None and self.newer_than is None:
            raise ConfigurationError("Pruning: one of older_than or newer_than is required")

        if self.only and self.except_tables:
            raise ConfigurationError("Pruning: only and except are mutually exclusive, set only one")

        return self

    @property
    def direction(self) -> PruneDirection:
        if self.older_than is not None:
            return PruneDirection.OLDER_THAN
        return PruneDirection.NEWER_THAN

    @property
    def age(self) -> Union[timedelta, datetime]:
        return self.older_than if self.older_than is not None else self.newer_than

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        return resolve_cutoff(self.age, now=now)

    def table_allowed(self, table: str) -> bool:
        if self.only:
            return table in self.only
        if self.except_tables:
            return table not in self.except_tables
        return True


class ValidatorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email_table: str = "users"
    email_column: str = "email"
    sensitive_email_domains: List[str] = Field(default_factory=list)
    test_email_domain: str = DEFAULT_TEST_EMAIL_DOMAIN
    token_table: str = "users"
    token_columns: List[str] = Field(default_factory=lambda: list(DEFAULT_TOKEN_COLUMNS))
    external_id_columns: List[str] = Field(default_factory=list)


class SafeScrubConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_url: Optional[str] = None
    target_url: Optional[str] = None
    export_path: Optional[str] = None
    export_format: ExportFormat = ExportFormat.CUSTOM
    require_readonly_source: bool = False
    pg_dump: str = "pg_dump"
    psql: str = "psql"

    def __repr_args__(self):
        for name, value in super().__repr_args__():
            if name in ("source_url", "target_url") and value:
                value = safe_url(value)
            yield name, value


class ScrubConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    strict: bool = True
    allow_keep_undefined_columns: bool = True
    continue_on_error: bool = False
    verbose: bool = False
    dry_run: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    prune_enabled: bool = True
    database_url: Optional[str] = None
    pruning: Optional[PruningConfig] = None
    validator: ValidatorConfig = Field(default_factory=ValidatorConfig)
    safe_scrub: SafeScrubConfig = Field(default_factory=SafeScrubConfig)
    sensitive_tables: List[str] = Field(default_factory=list)

    @field_validator("batch_size")
    @classmethod
    def _check_batch_size(cls, value: int):
        if value < 1:
            raise ConfigurationError(f"batch_size must be positive, got {value}")
        return value

    @property
    def active_pruning(self) -> Optional[PruningConfig]:
        if not self.prune_enabled:
            return None
        return self.pruning

    def with_env(self, environ: Optional[Mapping[str, str]] = None) -> "ScrubConfig":
        """
        Returns copy of config with environment toggles applied on top
        """
        if environ is None:
            environ = os.environ

        update: Dict[str, Any] = {}
        safe_scrub_update: Dict[str, Any] = {}

        dry_run = env_flag(environ, ENV_DRY_RUN)
        if dry_run is not None:
            update["dry_run"] = dry_run

        verbose = env_flag(environ, ENV_VERBOSE)
        if verbose is not None:
            update["verbose"] = verbose

        prune = env_flag(environ, ENV_PRUNE)
        if prune is False:
            update["prune_enabled"] = False

        if environ.get(ENV_PRIMARY_DATABASE_URL):
            update["database_url"] = environ[ENV_PRIMARY_DATABASE_URL]

        if environ.get(ENV_SOURCE_DATABASE_URL):
            safe_scrub_update["source_url"] = environ[ENV_SOURCE_DATABASE_URL]

        target_url = environ.get(ENV_TARGET_DATABASE_URL) or environ.get(ENV_TARGET_DATABASE_URL_ALIAS)
        if target_url:
            safe_scrub_update["target_url"] = target_url

        if environ.get(ENV_EXPORT_PATH):
            safe_scrub_update["export_path"] = environ[ENV_EXPORT_PATH]

        if safe_scrub_update:
            update["safe_scrub"] = self.safe_scrub.model_copy(update=safe_scrub_update)

        return self.model_copy(update=update)


def load_config(path: Optional[Union[str, Path]] = None) -> ScrubConfig:
    """
    Reads YAML config file. Without a path the defaults are used
    """
    if not path:
        return ScrubConfig()

    data = read_yaml(path)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {path} must contain a mapping on top level")

    return ScrubConfig.model_validate(data)
