"""
Settings for sitemigrate.

Configuration is loaded in this order (highest priority first):
1. Constructor arguments
2. SITEMIGRATE_* environment variables (nested sections use "__",
   e.g. SITEMIGRATE_ENVIRONMENTS__PROD__HOST)
3. The TOML config file (~/.sitemigrate/config.toml, or the path given by
   --config / SITEMIGRATE_CONFIG_FILE)
4. Model defaults

Example config.toml:

    [environments.prod]
    host = "prod-db.example.edu"
    user = "wp"
    password = "..."
    database = "wp_prod"

    [staging]
    host = "127.0.0.1"
    user = "root"
    password = "..."
    database = "wp_staging"

    [s3]
    bucket = "wfu-migration-archive"
    region = "us-east-1"
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)
from sqlalchemy.engine import URL

from sitemigrate.exceptions import MissingConfigurationError
from sitemigrate.models import Environment

CONFIG_DIR = Path.home() / ".sitemigrate"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "config.toml"
CONFIG_FILE_ENV_VAR = "SITEMIGRATE_CONFIG_FILE"

# Path of the TOML file read by the settings source. Set by load_settings().
_config_file: Path | None = None


class DatabaseConfig(BaseModel):
    """
    Connection descriptor for one database.

    Credentials are only ever forwarded: to SQLAlchemy as a URL object and
    to the dump/restore container through the MYSQL_PWD variable.
    """

    host: str | None = None
    port: int = 3306
    user: str | None = None
    password: SecretStr | None = None
    database: str | None = None
    driver: str = "mysql+aiomysql"
    url: str | None = Field(
        default=None,
        description="Explicit SQLAlchemy URL. Overrides the discrete fields for engine creation.",
    )

    @property
    def is_complete(self) -> bool:
        if self.url:
            return True
        return all(
            [self.host, self.user, self.password and self.password.get_secret_value(), self.database]
        )

    @property
    def password_value(self) -> str:
        return self.password.get_secret_value() if self.password else ""

    def sqlalchemy_url(self) -> URL | str:
        """Build the URL used to create an async engine."""
        if self.url:
            return self.url
        return URL.create(
            self.driver,
            username=self.user,
            password=self.password_value or None,
            host=self.host,
            port=self.port,
            database=self.database,
        )


class S3Config(BaseModel):
    """Object-storage archive destination."""

    bucket: str | None = None
    region: str = "us-east-1"
    prefix: str = "migrations"
    storage_class: str = "STANDARD_IA"

    @property
    def is_configured(self) -> bool:
        return bool(self.bucket)


class FileSyncConfig(BaseModel):
    """Per-environment asset buckets used by the optional file sync."""

    bucket_template: str = "wfu-cer-wordpress-{env}-us-east-1"
    prefix_template: str = "sites/{tenant}/"
    region: str = "us-east-1"

    def bucket_for(self, environment: Environment) -> str:
        return self.bucket_template.format(env=environment.value)

    def prefix_for(self, tenant_id: int) -> str:
        return self.prefix_template.format(tenant=tenant_id)


class ContainerConfig(BaseModel):
    """Resource limits for the dump/restore container."""

    runtime: str = "docker"
    image: str = "mysql:8.0"
    memory: str = "4g"
    cpus: str = "2"


class Settings(BaseSettings):
    """Root configuration object."""

    model_config = SettingsConfigDict(
        env_prefix="SITEMIGRATE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    environments: dict[str, DatabaseConfig] = Field(
        default_factory=dict,
        description="Connection descriptors keyed by environment name (dev, uat, pprd, prod)",
    )
    staging: DatabaseConfig = Field(default_factory=DatabaseConfig)
    s3: S3Config = Field(default_factory=S3Config)
    file_sync: FileSyncConfig = Field(default_factory=FileSyncConfig)
    container: ContainerConfig = Field(default_factory=ContainerConfig)

    backup_path: Path = CONFIG_DIR / "backups"
    lock_path: Path = CONFIG_DIR / "staging.lock"
    table_prefix: str = "wp_"
    default_timeout_minutes: float = Field(default=20, gt=0)
    enable_tracing: bool = False

    @field_validator("backup_path", "lock_path", mode="after")
    @classmethod
    def _expand_user(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("environments", mode="after")
    @classmethod
    def _lowercase_keys(cls, value: dict[str, DatabaseConfig]) -> dict[str, DatabaseConfig]:
        return {key.lower(): config for key, config in value.items()}

    def database_for(self, environment: Environment) -> DatabaseConfig:
        """
        Get the connection descriptor for an environment.

        Raises:
            MissingConfigurationError: If the descriptor is missing or
                incomplete.
        """
        if environment == Environment.STAGING:
            config = self.staging
        else:
            config = self.environments.get(environment.value)
        if config is None or not config.is_complete:
            raise MissingConfigurationError(environment.value)
        return config

    def has_database(self, environment: Environment) -> bool:
        try:
            self.database_for(environment)
        except MissingConfigurationError:
            return False
        return True

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Customize settings sources to include the TOML config file.

        Priority order (highest to lowest):
        1. init_settings (constructor arguments)
        2. env_settings (SITEMIGRATE_* environment variables)
        3. toml settings (config file)
        4. (defaults from model)
        """
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=_config_file),
        )


def resolve_config_file(explicit: str | Path | None = None) -> Path:
    """Pick the config file: explicit path, then the env var, then the default."""
    if explicit:
        return Path(explicit).expanduser()
    from_env = os.environ.get(CONFIG_FILE_ENV_VAR)
    if from_env:
        return Path(from_env).expanduser()
    return DEFAULT_CONFIG_FILE


def load_settings(config_file: str | Path | None = None, **overrides: Any) -> Settings:
    """
    Load settings, reading the TOML file if it exists.

    A missing file is not an error; the run then relies on environment
    variables and defaults, and preflight reports what is absent.
    """
    global _config_file
    _config_file = resolve_config_file(config_file)
    try:
        return Settings(**overrides)
    finally:
        _config_file = None


__all__ = [
    "ContainerConfig",
    "DatabaseConfig",
    "DEFAULT_CONFIG_FILE",
    "FileSyncConfig",
    "S3Config",
    "Settings",
    "load_settings",
    "resolve_config_file",
]
