"""Configuration Manager for the Consent Gateway.

Loads credential-store, ledger, identity-policy and authentication settings
from environment variables (CG_ prefix, optional .env file) or a JSON file,
and validates them with Pydantic before anything connects.

Security Impact:
    - Database passwords, connection strings and the token signing secret are
      SecretStr and never logged
    - Configuration is validated before use (fail fast)

Architecture:
    - Infrastructure layer; consumed by the composition root only
    - Type-safe configuration using Pydantic models
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import parse_qs, quote_plus, unquote, urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from consent_gateway.adapters.ledger.contract_client import (
    DEFAULT_EVALUATE_TIMEOUT,
    DEFAULT_SUBMIT_TIMEOUT,
)
from consent_gateway.domain.models import IdentityPolicy

logger = logging.getLogger(__name__)

ENV_PREFIX = "CG_"


class DatabaseConfig(BaseModel):
    """Credential store configuration.

    Parameters:
        db_type: 'duckdb' or 'postgresql'
        db_path: DuckDB file path (or ':memory:')
        host / port / database / username: PostgreSQL connection fields
        password: PostgreSQL password (SecretStr - never logged)
        connection_string: Full DSN (SecretStr - never logged)
        ssl_mode: PostgreSQL SSL mode
        pool_size: Connection pool size
        max_overflow: Maximum connection pool overflow
    """

    db_type: str = Field(default="duckdb", description="Database type (duckdb, postgresql)")
    db_path: Optional[str] = Field(None, description="Path to database file (for DuckDB)")
    host: Optional[str] = Field(None, description="Database host")
    port: Optional[int] = Field(None, description="Database port")
    database: Optional[str] = Field(None, description="Database name")
    username: Optional[str] = Field(None, description="Database username")
    password: Optional[SecretStr] = Field(None, description="Database password (secret)")
    connection_string: Optional[SecretStr] = Field(None, description="Full connection string (secret)")
    ssl_mode: Optional[str] = Field(None, description="SSL mode (require, prefer, disable)")
    pool_size: int = Field(default=5, ge=1, description="Connection pool size")
    max_overflow: int = Field(default=10, ge=0, description="Maximum connection pool overflow")

    @field_validator("db_type")
    @classmethod
    def validate_db_type(cls, v: str) -> str:
        supported_types = ["duckdb", "postgresql"]
        if v.lower() not in supported_types:
            raise ValueError(f"Unsupported database type: {v}. Supported: {supported_types}")
        return v.lower()

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == ":memory:":
            return v
        db_path_obj = Path(v)
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")
        return str(db_path_obj)

    @staticmethod
    def _parse_postgresql_connection_string(conn_str: str) -> Dict[str, Any]:
        """Split a postgresql:// (or postgres://) URL into its fields."""
        parsed = urlparse(conn_str)
        if parsed.scheme not in ["postgresql", "postgres"]:
            raise ValueError(f"Unsupported connection string scheme: {parsed.scheme}")

        result = {
            "host": parsed.hostname,
            "port": parsed.port,
            "database": parsed.path.lstrip("/") if parsed.path else None,
            "username": unquote(parsed.username) if parsed.username else None,
            "password": unquote(parsed.password) if parsed.password else None,
        }
        query_params = parse_qs(parsed.query)
        if "sslmode" in query_params:
            result["ssl_mode"] = query_params["sslmode"][0]
        return result

    @model_validator(mode="after")
    def sync_connection_string_and_fields(self) -> "DatabaseConfig":
        """Connection string wins over individual fields; otherwise build one."""
        if self.db_type != "postgresql":
            return self

        if self.connection_string:
            try:
                parsed = self._parse_postgresql_connection_string(
                    self.connection_string.get_secret_value()
                )
            except ValueError as e:
                logger.warning(f"Failed to parse connection string, using as-is: {str(e)}")
                return self
            for field in ("host", "port", "database", "username", "ssl_mode"):
                if parsed.get(field):
                    setattr(self, field, parsed[field])
            if parsed.get("password"):
                self.password = SecretStr(parsed["password"])
        elif self.host and self.database:
            password_part = ""
            if self.password:
                password_part = f":{quote_plus(self.password.get_secret_value())}"
            username_part = quote_plus(self.username) if self.username else ""
            ssl_part = f"?sslmode={self.ssl_mode}" if self.ssl_mode else ""
            self.connection_string = SecretStr(
                f"postgresql://{username_part}{password_part}@{self.host}:{self.port or 5432}"
                f"/{self.database}{ssl_part}"
            )
        return self


class LedgerConfig(BaseModel):
    """Ledger network settings.

    Parameters:
        backend: 'memory' (in-process contract) or 'rest' (HTTPS ledger gateway)
        gateway_url: Base URL of the ledger gateway (rest backend)
        channel_name: Channel hosting the contract
        contract_name: Contract name
        identity_store_path: Wallet directory
        submit_timeout_seconds: Ordered submission timeout
        evaluate_timeout_seconds: Read-only query timeout
        tls_verify: Verify the gateway's TLS certificate (or CA bundle path)
    """

    backend: str = Field(default="memory")
    gateway_url: Optional[str] = None
    channel_name: str = Field(default="healthcare-channel", min_length=1)
    contract_name: str = Field(default="healthcare-contract", min_length=1)
    identity_store_path: str = Field(default="wallet")
    submit_timeout_seconds: float = Field(default=DEFAULT_SUBMIT_TIMEOUT, gt=0)
    evaluate_timeout_seconds: float = Field(default=DEFAULT_EVALUATE_TIMEOUT, gt=0)
    connect_timeout_seconds: float = Field(default=5.0, gt=0)
    tls_verify: Union[bool, str] = True

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v.lower() not in ("memory", "rest"):
            raise ValueError(f"Unsupported ledger backend: {v}. Supported: ['memory', 'rest']")
        return v.lower()

    @model_validator(mode="after")
    def require_gateway_url(self) -> "LedgerConfig":
        if self.backend == "rest" and not self.gateway_url:
            raise ValueError("gateway_url is required for the rest ledger backend")
        return self


class AuthConfig(BaseModel):
    """Login token and registration settings."""

    jwt_secret: SecretStr = Field(default=SecretStr("change-me-in-production"))
    jwt_algorithm: str = "HS256"
    token_ttl_hours: int = Field(default=24, ge=1)
    registration_max_attempts: int = Field(default=5, ge=1)


def _env(name: str) -> Optional[str]:
    value = os.getenv(f"{ENV_PREFIX}{name}")
    return value if value not in (None, "") else None


def _env_bool(value: Optional[str]) -> Optional[Union[bool, str]]:
    if value is None:
        return None
    lowered = value.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    return value


def _drop_none(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}


class ConfigManager:
    """Configuration manager for the gateway.

    Example Usage:
        ```python
        config = ConfigManager.from_environment()
        ledger = config.get_ledger_config()
        policy = config.get_identity_policy()

        config = ConfigManager.from_file("gateway.json")
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        self._config_data = config_data
        self._database_config: Optional[DatabaseConfig] = None
        self._ledger_config: Optional[LedgerConfig] = None
        self._identity_policy: Optional[IdentityPolicy] = None
        self._auth_config: Optional[AuthConfig] = None

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None) -> "ConfigManager":
        """Load configuration from CG_* environment variables.

        Environment Variables:
            - CG_DB_TYPE, CG_DB_PATH, CG_DB_HOST, CG_DB_PORT, CG_DB_NAME,
              CG_DB_USER, CG_DB_PASSWORD, CG_DB_CONNECTION_STRING, CG_DB_SSL_MODE
            - CG_LEDGER_BACKEND, CG_LEDGER_GATEWAY_URL, CG_CHANNEL_NAME,
              CG_CONTRACT_NAME, CG_IDENTITY_STORE_PATH, CG_SUBMIT_TIMEOUT,
              CG_EVALUATE_TIMEOUT, CG_LEDGER_TLS_VERIFY
            - CG_IDENTITY_REGISTRAR, CG_IDENTITY_ACCESS, CG_IDENTITY_AUDIT,
              CG_IDENTITY_VERIFIER
            - CG_JWT_SECRET, CG_TOKEN_TTL_HOURS, CG_REGISTRATION_MAX_ATTEMPTS

        A .env file in the working directory (or `env_file`) is loaded first;
        variables already set in the environment win.
        """
        env_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path, override=False)
            logger.debug(f"Loaded environment variables from {env_path}")

        port = _env("DB_PORT")
        config_data = {
            "database": _drop_none({
                "db_type": _env("DB_TYPE") or "duckdb",
                "db_path": _env("DB_PATH"),
                "host": _env("DB_HOST"),
                "port": int(port) if port else None,
                "database": _env("DB_NAME"),
                "username": _env("DB_USER"),
                "password": _env("DB_PASSWORD"),
                "connection_string": _env("DB_CONNECTION_STRING"),
                "ssl_mode": _env("DB_SSL_MODE"),
            }),
            "ledger": _drop_none({
                "backend": _env("LEDGER_BACKEND"),
                "gateway_url": _env("LEDGER_GATEWAY_URL"),
                "channel_name": _env("CHANNEL_NAME"),
                "contract_name": _env("CONTRACT_NAME"),
                "identity_store_path": _env("IDENTITY_STORE_PATH"),
                "submit_timeout_seconds": _env("SUBMIT_TIMEOUT"),
                "evaluate_timeout_seconds": _env("EVALUATE_TIMEOUT"),
                "tls_verify": _env_bool(_env("LEDGER_TLS_VERIFY")),
            }),
            "identities": _drop_none({
                "registrar": _env("IDENTITY_REGISTRAR"),
                "access": _env("IDENTITY_ACCESS"),
                "audit": _env("IDENTITY_AUDIT"),
                "verifier": _env("IDENTITY_VERIFIER"),
            }),
            "auth": _drop_none({
                "jwt_secret": _env("JWT_SECRET"),
                "token_ttl_hours": _env("TOKEN_TTL_HOURS"),
                "registration_max_attempts": _env("REGISTRATION_MAX_ATTEMPTS"),
            }),
        }
        return cls(config_data)

    @classmethod
    def from_file(cls, config_path: str) -> "ConfigManager":
        """Load configuration from a JSON file with the same sections.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid JSON
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        stat_info = config_file.stat()
        if stat_info.st_mode & 0o077 != 0:
            logger.warning(
                f"Configuration file has overly permissive permissions: {config_path}. "
                "Consider setting to 600 for credential files."
            )

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {str(e)}") from e
        return cls(config_data)

    def get_database_config(self) -> DatabaseConfig:
        if self._database_config is None:
            self._database_config = DatabaseConfig(**self._config_data.get("database", {}))
        return self._database_config

    def get_ledger_config(self) -> LedgerConfig:
        if self._ledger_config is None:
            self._ledger_config = LedgerConfig(**self._config_data.get("ledger", {}))
        return self._ledger_config

    def get_identity_policy(self) -> IdentityPolicy:
        if self._identity_policy is None:
            self._identity_policy = IdentityPolicy(**self._config_data.get("identities", {}))
        return self._identity_policy

    def get_auth_config(self) -> AuthConfig:
        if self._auth_config is None:
            self._auth_config = AuthConfig(**self._config_data.get("auth", {}))
        return self._auth_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a raw value by dotted key, e.g. "ledger.channel_name"."""
        value = self._config_data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default


def get_database_config() -> DatabaseConfig:
    """Database configuration from the environment."""
    return ConfigManager.from_environment().get_database_config()
