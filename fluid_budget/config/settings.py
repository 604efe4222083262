"""
Configuration Management for Fluid Budget

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here, but nothing in the
engine reads it implicitly. The service layer loads it once and passes the
relevant values down as explicit arguments.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fluid_budget.models.budget import CarryOverMode


class BudgetSettings(BaseSettings):
    """Budget rules and input limits."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    default_week_start_day: int = Field(
        default=1,
        ge=0,
        le=6,
        description="Week start used when a config omits it (0=Sunday, 1=Monday)"
    )
    default_carry_over_mode: CarryOverMode = Field(
        default=CarryOverMode.CARRY_DEFICIT,
        description="Carry-over policy used when a config omits it"
    )
    max_daily_base: float = Field(
        default=100000.0,
        gt=0,
        description="Largest daily base a user may configure"
    )
    max_expense_amount: float = Field(
        default=1000000.0,
        gt=0,
        description="Largest single expense accepted"
    )
    default_expense_category: str = Field(
        default="Other",
        min_length=1,
        description="Category assigned to expenses entered without one"
    )


class StorageSettings(BaseSettings):
    """Persistence backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGET_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: str = Field(
        default="memory",
        description="Storage backend: 'memory' or 'sqlite'"
    )
    sqlite_path: str = Field(
        default="data/fluid_budget.db",
        description="Path to the SQLite database file"
    )
    connect_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds SQLite waits on a locked database"
    )
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="How many times opening the database is attempted"
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Only the backends shipped with the package are accepted."""
        v = v.strip().lower()
        if v not in {"memory", "sqlite"}:
            raise ValueError(f"Unsupported storage backend: {v}")
        return v

    @property
    def sqlite_file(self) -> Path:
        return Path(self.sqlite_path)


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for local structured logs"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def budget(self) -> BudgetSettings:
        return BudgetSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an extra
    "<name>_error" entry for each section that failed.
    """
    results = {}

    settings = get_settings()

    for name in ("budget", "storage", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
