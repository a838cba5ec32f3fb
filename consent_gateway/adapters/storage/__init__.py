"""Credential store adapters."""

from consent_gateway.adapters.storage.duckdb_credential_store import DuckDBCredentialStore
from consent_gateway.adapters.storage.postgresql_credential_store import PostgreSQLCredentialStore

__all__ = ["DuckDBCredentialStore", "PostgreSQLCredentialStore"]
