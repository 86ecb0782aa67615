"""Configuration management for the library circulation server.

Settings are grouped the way they are used:
1. Server metadata - name and version announced to MCP clients
2. Database - where circulation state is persisted
3. Circulation policy - loan periods, reservation windows, fines
4. Audit - whether audit entries share the mutation's transaction
"""

from decimal import Decimal
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LibraryConfig(BaseSettings):
    """Library circulation configuration.

    Every field can be overridden with a ``LIBRARY_``-prefixed environment
    variable or a ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Server Metadata ===

    server_name: str = Field(
        default="library-circulation",
        description="MCP server name used in protocol handshake",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Server version for capability negotiation",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    transport: str = Field(
        default="stdio",
        description="Primary transport mechanism",
        pattern=r"^(stdio|streamable_http)$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/library.db"),
        description="SQLite database file path",
    )

    database_url: str | None = Field(
        default=None,
        description="Full SQLAlchemy URL; overrides database_path when set",
    )

    # === Circulation Policy ===

    loan_period_days: int = Field(
        default=14,
        description="Default loan period when the caller does not give one",
        ge=1,
    )

    reservation_window_days: int = Field(
        default=30,
        description="Days a pending reservation stays valid",
        ge=1,
    )

    pickup_window_days: int = Field(
        default=3,
        description="Days a fulfilled reservation holds its copy for pickup",
        ge=1,
    )

    daily_late_fee: Decimal = Field(
        default=Decimal("0.25"),
        description="Late fee charged per day past the due date",
        ge=0,
        decimal_places=2,
    )

    grace_period_days: int = Field(
        default=0,
        description="Days past the due date before late fees accrue",
        ge=0,
    )

    fine_threshold: Decimal = Field(
        default=Decimal("10.00"),
        description="Outstanding fines above this block new loans",
        ge=0,
        decimal_places=2,
    )

    max_renewals: int = Field(
        default=3,
        description="How many times a loan may be renewed",
        ge=0,
    )

    renewal_days: int = Field(
        default=14,
        description="Days added to the due date per renewal",
        ge=1,
    )

    membership_term_days: int = Field(
        default=365,
        description="Membership length used by the expiry sweep",
        ge=1,
    )

    # === Audit ===

    audit_strict: bool = Field(
        default=True,
        description=(
            "Write audit entries in the mutation's transaction. When false, a "
            "failed audit write is logged and the mutation still commits."
        ),
    )

    # === Development Configuration ===

    debug: bool = Field(
        default=False,
        description="Enable debug logging",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve the database path so relative paths do not drift with cwd."""
        return v.absolute()

    @field_validator("server_name")
    @classmethod
    def validate_server_name(cls, v: str) -> str:
        if len(v) < 3:
            raise ValueError("Server name must be at least 3 characters")
        if len(v) > 50:
            raise ValueError("Server name must not exceed 50 characters")
        return v

    @property
    def is_development(self) -> bool:
        return self.debug or self.log_level == "DEBUG"

    @property
    def server_info(self) -> dict[str, str]:
        """Server information sent during the MCP handshake."""
        return {
            "name": self.server_name,
            "version": self.server_version,
            "transport": self.transport,
        }

    def get_database_url(self) -> str:
        """Get SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.database_path}"


class _ConfigStore:
    """Internal storage for configuration singleton."""

    _instance: LibraryConfig | None = None


def get_config() -> LibraryConfig:
    """Get or create the global configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = LibraryConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Reset configuration (useful for testing)."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
