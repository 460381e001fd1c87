"""Configuration management service with Pydantic Settings.

This module loads the indexer's environment (RPC endpoint, contract, token
pair, database) and converts it into the validated, immutable
``IngestionConfig`` consumed by the ingestion pipeline.

Required settings are optional at load time: a missing value is reported as a
structured config-stage failure by the ingestion run rather than as a crash
while importing settings.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from lpmanager_indexer.errors import IndexerError
from lpmanager_indexer.snapshot.models import TokenPair, ValuationTarget, is_hex_address

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

# Base network: USDC / XOC
DEFAULT_TOKEN0_ADDRESS = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
DEFAULT_TOKEN1_ADDRESS = "0xa411c9Aa00E020e4f88Bc19996d29c5B7ADB4ACf"

# uint256 holds at most 77 full decimal digits
MAX_AMOUNT_IN_DECIMALS = 77

_SUPPORTED_DATABASE_SCHEMES = ("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")
_RPC_URL_RE = re.compile(r"^https?://\S+$")


class ConfigError(IndexerError):
    """Raised when a required setting is missing or malformed."""


class MissingConfigError(ConfigError):
    """Raised when one or more required settings are absent."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(f"Missing required configuration: {', '.join(missing)}")


class InvalidConfigError(ConfigError):
    """Raised when a setting is present but not well-formed."""


class ChainSettings(BaseSettings):
    """Chain JSON-RPC and valuation contract settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", env_ignore_empty=True)

    rpc_url: str | None = Field(
        default=None,
        alias="RPC_URL",
        description="Chain JSON-RPC endpoint",
    )
    chain_id: int | None = Field(
        default=None,
        alias="CHAIN_ID",
        description="Chain ID of the network the contract lives on (Base=8453)",
    )
    contract_address: str | None = Field(
        default=None,
        alias="CONTRACT_ADDRESS",
        description="LP manager contract exposing fetchSpot/fetchOracle",
    )
    rpc_timeout_seconds: float = Field(
        default=30.0,
        alias="RPC_TIMEOUT_SECONDS",
        gt=0.0,
        le=600.0,
        description="Per-request RPC timeout",
    )
    verify_chain_id: bool = Field(
        default=True,
        alias="VERIFY_CHAIN_ID",
        description="Refuse to record rows when the node reports a different chain ID",
    )
    pin_reads_to_block: bool = Field(
        default=True,
        alias="PIN_READS_TO_BLOCK",
        description="Issue valuation calls at an explicit block height instead of 'latest'",
    )


class TokenPairSettings(BaseSettings):
    """Token pair and valuation amount settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", env_ignore_empty=True)

    token0_address: str = Field(
        default=DEFAULT_TOKEN0_ADDRESS,
        alias="TOKEN0_ADDRESS",
        description="Input token of the valuation (amount-in token)",
    )
    token1_address: str = Field(
        default=DEFAULT_TOKEN1_ADDRESS,
        alias="TOKEN1_ADDRESS",
        description="Output token of the valuation",
    )
    amount_in_units: int = Field(
        default=1,
        alias="AMOUNT_IN_UNITS",
        ge=1,
        description="Whole units of token0 to value",
    )
    amount_in_decimals: int | None = Field(
        default=None,
        alias="AMOUNT_IN_DECIMALS",
        ge=0,
        le=MAX_AMOUNT_IN_DECIMALS,
        description="Decimal precision of token0, used to scale amount_in_units (required)",
    )


class DatabaseSettings(BaseSettings):
    """Price history database settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", env_ignore_empty=True)

    url: str | None = Field(
        default=None,
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )
    password: SecretStr | None = Field(
        default=None,
        alias="DATABASE_PASSWORD",
        description="Database password, when not embedded in DATABASE_URL",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files.

    Example:
        ```python
        from lpmanager_indexer.config import get_settings

        settings = get_settings()
        print(settings.chain.contract_address)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
        env_ignore_empty=True,
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    chain: ChainSettings = Field(
        default_factory=lambda: ChainSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    token_pair: TokenPairSettings = Field(
        default_factory=lambda: TokenPairSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    run_timeout_seconds: float = Field(
        default=120.0,
        alias="RUN_TIMEOUT_SECONDS",
        gt=0.0,
        le=3600.0,
        description="Deadline for one end-to-end ingestion run",
    )
    run_interval_seconds: float = Field(
        default=300.0,
        alias="RUN_INTERVAL_SECONDS",
        ge=1.0,
        le=86_400.0,
        description="Cadence of the built-in scheduler loop",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "chain": {
                "rpc_url": self.chain.rpc_url or "(not set)",
                "chain_id": str(self.chain.chain_id) if self.chain.chain_id is not None else "(not set)",
                "contract_address": self.chain.contract_address or "(not set)",
                "pin_reads_to_block": str(self.chain.pin_reads_to_block),
                "verify_chain_id": str(self.chain.verify_chain_id),
            },
            "token_pair": {
                "token0_address": self.token_pair.token0_address,
                "token1_address": self.token_pair.token1_address,
                "amount_in_units": str(self.token_pair.amount_in_units),
                "amount_in_decimals": (
                    str(self.token_pair.amount_in_decimals)
                    if self.token_pair.amount_in_decimals is not None
                    else "(not set)"
                ),
            },
            "database_url": redact_url(self.database.url) if self.database.url else "(not set)",
            "database_password": "(set)" if self.database.password else "(not set)",
            "log_level": self.log_level,
            "run_timeout_seconds": str(self.run_timeout_seconds),
            "run_interval_seconds": str(self.run_interval_seconds),
        }


def redact_url(url: str) -> str:
    """Redact password from URL if present."""
    if "@" in url and "://" in url:
        protocol_end = url.index("://") + 3
        at_pos = url.index("@")
        creds_part = url[protocol_end:at_pos]
        if ":" in creds_part:
            username = creds_part.split(":")[0]
            return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
    return url


@dataclass(frozen=True)
class IngestionConfig:
    """Everything one ingestion run needs, as plain values.

    Built from ``Settings`` by the CLI, or directly by tests and embedding
    schedulers. ``validate()`` must pass before any network call is made.
    """

    rpc_url: str | None
    chain_id: int | None
    contract_address: str | None
    database_url: str | None
    database_password: str | None = None
    token0_address: str | None = DEFAULT_TOKEN0_ADDRESS
    token1_address: str | None = DEFAULT_TOKEN1_ADDRESS
    amount_in_units: int = 1
    amount_in_decimals: int | None = None
    pin_reads_to_block: bool = True
    verify_chain_id: bool = True
    rpc_timeout_seconds: float = 30.0
    run_timeout_seconds: float | None = 120.0

    @classmethod
    def from_settings(cls, settings: Settings) -> IngestionConfig:
        password = settings.database.password
        return cls(
            rpc_url=settings.chain.rpc_url,
            chain_id=settings.chain.chain_id,
            contract_address=settings.chain.contract_address,
            database_url=settings.database.url,
            database_password=password.get_secret_value() if password else None,
            token0_address=settings.token_pair.token0_address,
            token1_address=settings.token_pair.token1_address,
            amount_in_units=settings.token_pair.amount_in_units,
            amount_in_decimals=settings.token_pair.amount_in_decimals,
            pin_reads_to_block=settings.chain.pin_reads_to_block,
            verify_chain_id=settings.chain.verify_chain_id,
            rpc_timeout_seconds=settings.chain.rpc_timeout_seconds,
            run_timeout_seconds=settings.run_timeout_seconds,
        )

    @property
    def amount_in(self) -> int:
        """Valuation input in token0's smallest unit.

        Raises:
            MissingConfigError: If ``AMOUNT_IN_DECIMALS`` is not set. The
                decimal count is never inferred from the token.
        """
        if self.amount_in_decimals is None:
            raise MissingConfigError(["AMOUNT_IN_DECIMALS"])
        return self.amount_in_units * 10**self.amount_in_decimals

    def missing(self, *, require_store: bool = True) -> list[str]:
        """Names of required settings that are not configured."""
        missing: list[str] = []
        if not self.rpc_url:
            missing.append("RPC_URL")
        if require_store:
            if not self.database_url:
                missing.append("DATABASE_URL")
            elif not self._has_database_credential():
                missing.append("DATABASE_PASSWORD")
        if not self.contract_address:
            missing.append("CONTRACT_ADDRESS")
        if self.chain_id is None:
            missing.append("CHAIN_ID")
        if not self.token0_address:
            missing.append("TOKEN0_ADDRESS")
        if not self.token1_address:
            missing.append("TOKEN1_ADDRESS")
        if self.amount_in_decimals is None:
            missing.append("AMOUNT_IN_DECIMALS")
        return missing

    def validate(self, *, require_store: bool = True) -> None:
        """Check presence and shape of every required setting.

        Raises:
            MissingConfigError: If any required setting is absent.
            InvalidConfigError: If a setting is present but malformed.
        """
        missing = self.missing(require_store=require_store)
        if missing:
            raise MissingConfigError(missing)

        if not _RPC_URL_RE.match(self.rpc_url or ""):
            raise InvalidConfigError("RPC_URL must be an HTTP(S) endpoint")
        if not isinstance(self.chain_id, int) or isinstance(self.chain_id, bool) or self.chain_id <= 0:
            raise InvalidConfigError(f"CHAIN_ID must be a positive integer, got {self.chain_id!r}")
        for name, value in (
            ("CONTRACT_ADDRESS", self.contract_address),
            ("TOKEN0_ADDRESS", self.token0_address),
            ("TOKEN1_ADDRESS", self.token1_address),
        ):
            if not is_hex_address(value):
                raise InvalidConfigError(f"{name} must be a 0x-prefixed 42-character hex address, got {value!r}")
        if (self.token0_address or "").lower() == (self.token1_address or "").lower():
            raise InvalidConfigError("TOKEN0_ADDRESS and TOKEN1_ADDRESS must differ")
        if self.amount_in_units < 1:
            raise InvalidConfigError("AMOUNT_IN_UNITS must be >= 1")
        if self.amount_in_decimals is None or not 0 <= self.amount_in_decimals <= MAX_AMOUNT_IN_DECIMALS:
            raise InvalidConfigError(f"AMOUNT_IN_DECIMALS must be within 0..{MAX_AMOUNT_IN_DECIMALS}")
        if self.amount_in >= 2**256:
            raise InvalidConfigError("AMOUNT_IN_UNITS * 10**AMOUNT_IN_DECIMALS overflows uint256")
        if self.rpc_timeout_seconds <= 0:
            raise InvalidConfigError("RPC_TIMEOUT_SECONDS must be > 0")
        if self.run_timeout_seconds is not None and self.run_timeout_seconds <= 0:
            raise InvalidConfigError("RUN_TIMEOUT_SECONDS must be > 0")
        if require_store:
            if not (self.database_url or "").startswith(_SUPPORTED_DATABASE_SCHEMES):
                raise InvalidConfigError("DATABASE_URL must be a PostgreSQL (or sqlite+aiosqlite) connection string")
            try:
                make_url(self.database_url or "")
            except (ArgumentError, ValueError, TypeError) as e:
                raise InvalidConfigError(f"DATABASE_URL is not a valid connection URL: {e}") from e

    def valuation_target(self) -> ValuationTarget:
        """The contract, pair and amount this config values."""
        self.validate(require_store=False)
        assert self.contract_address and self.chain_id and self.token0_address and self.token1_address
        return ValuationTarget(
            contract_address=self.contract_address,
            chain_id=self.chain_id,
            pair=TokenPair(token0=self.token0_address, token1=self.token1_address),
            amount_in=self.amount_in,
        )

    def _has_database_credential(self) -> bool:
        assert self.database_url
        if self.database_url.startswith("sqlite"):
            # Local file databases carry no credential
            return True
        if self.database_password:
            return True
        try:
            return bool(make_url(self.database_url).password)
        except (ArgumentError, ValueError, TypeError):
            # Shape is reported by validate()
            return True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
