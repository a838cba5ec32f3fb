"""DuckDB Credential Store.

This adapter implements CredentialStorePort on DuckDB, an in-process database
suited to single-node deployments, local development and tests (':memory:').

Security Impact:
    - Only password hashes are stored; plaintext passwords never reach this layer
    - UNIQUE constraints on entity id and secondary id (national id / license)
    - Connection path is validated; credentials are never logged

Architecture:
    - Implements CredentialStorePort (Hexagonal Architecture)
    - One shared connection serialized by a threading.Lock; services call this
      adapter through asyncio.to_thread
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

import duckdb

from consent_gateway.adapters.storage.credential_schema import (
    DOCTORS,
    DUPLICATE_RECORD_ERROR,
    record_to_row,
    row_to_record,
    table_for,
    to_db_timestamp,
)
from consent_gateway.domain.enums import EntityRole
from consent_gateway.domain.models import CredentialRecord, utcnow
from consent_gateway.domain.ports import CredentialStorePort, Result, StorageError
from consent_gateway.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)


class DuckDBCredentialStore(CredentialStorePort):
    """DuckDB implementation of CredentialStorePort.

    Parameters:
        db_config: DatabaseConfig with db_type 'duckdb' (preferred)
        db_path: Path to DuckDB database file (or ':memory:')

    Example Usage:
        ```python
        store = DuckDBCredentialStore(db_path=":memory:")
        store.initialize_schema()
        result = store.create_credential(record)
        if result.is_failure() and result.error_type == "DuplicateRecordError":
            ...
        ```
    """

    def __init__(self, db_config: Optional[DatabaseConfig] = None, db_path: Optional[str] = None):
        if db_config:
            if db_config.db_type != "duckdb":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = db_config.db_path or ":memory:"
        else:
            self.db_path = db_path or ":memory:"

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise StorageError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__"
                )

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self._initialized = False

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except duckdb.Error as e:
                raise StorageError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                ) from e
        return self._connection

    def initialize_schema(self) -> Result[None]:
        """Create the patients and doctors tables if they do not exist."""
        with self._lock:
            return self._initialize_schema_locked()

    def _initialize_schema_locked(self) -> Result[None]:
        if self._initialized:
            return Result.success_result(None)
        try:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS patients (
                    patient_id VARCHAR PRIMARY KEY,
                    name VARCHAR NOT NULL,
                    date_of_birth DATE NOT NULL,
                    phone VARCHAR NOT NULL,
                    aadhar_number VARCHAR NOT NULL UNIQUE,
                    password_hash VARCHAR NOT NULL,
                    fingerprint_template_id INTEGER,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    last_login TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS doctors (
                    doctor_id VARCHAR PRIMARY KEY,
                    name VARCHAR NOT NULL,
                    license_number VARCHAR NOT NULL UNIQUE,
                    specialization VARCHAR NOT NULL,
                    hospital_name VARCHAR NOT NULL,
                    password_hash VARCHAR NOT NULL,
                    is_verified BOOLEAN NOT NULL DEFAULT FALSE,
                    verified_at TIMESTAMP,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    last_login TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)
            self._initialized = True
            logger.info("Initialized DuckDB credential schema")
            return Result.success_result(None)
        except (duckdb.Error, StorageError) as e:
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )

    def create_credential(self, record: CredentialRecord) -> Result[str]:
        table = table_for(record.role)
        placeholders = ", ".join("?" for _ in table.columns)
        with self._lock:
            init_result = self._initialize_schema_locked()
            if init_result.is_failure():
                return init_result
            try:
                self._get_connection().execute(
                    f"INSERT INTO {table.name} ({table.column_list}) VALUES ({placeholders})",
                    record_to_row(table, record),
                )
            except duckdb.ConstraintException as e:
                logger.warning(f"Duplicate {record.role.value} credential for {record.entity_id}")
                return Result.failure_result(
                    str(e),
                    error_type=DUPLICATE_RECORD_ERROR,
                    error_details={"table": table.name, "entity_id": record.entity_id},
                )
            except duckdb.Error as e:
                error_msg = f"Failed to create credential: {str(e)}"
                logger.error(error_msg, exc_info=True)
                return Result.failure_result(
                    StorageError(error_msg, operation="create_credential"),
                    error_type="StorageError",
                    error_details={"table": table.name, "entity_id": record.entity_id},
                )
        logger.info(f"Created {record.role.value} credential {record.entity_id}")
        return Result.success_result(record.entity_id)

    def _find(self, role: EntityRole, column: str, value: str, operation: str) -> Result[Optional[CredentialRecord]]:
        table = table_for(role)
        with self._lock:
            init_result = self._initialize_schema_locked()
            if init_result.is_failure():
                return init_result
            try:
                row = self._get_connection().execute(
                    f"SELECT {table.column_list} FROM {table.name} WHERE {column} = ?",
                    [value],
                ).fetchone()
            except duckdb.Error as e:
                error_msg = f"Failed to read credential: {str(e)}"
                logger.error(error_msg, exc_info=True)
                return Result.failure_result(
                    StorageError(error_msg, operation=operation),
                    error_type="StorageError",
                )
        return Result.success_result(row_to_record(table, row) if row else None)

    def find_credential(self, role: EntityRole, entity_id: str) -> Result[Optional[CredentialRecord]]:
        return self._find(role, table_for(role).id_column, entity_id, "find_credential")

    def find_by_secondary_id(self, role: EntityRole, secondary_id: str) -> Result[Optional[CredentialRecord]]:
        return self._find(role, table_for(role).secondary_column, secondary_id, "find_by_secondary_id")

    def _update(self, sql: str, params: list, operation: str) -> Result[bool]:
        with self._lock:
            init_result = self._initialize_schema_locked()
            if init_result.is_failure():
                return init_result
            try:
                conn = self._get_connection()
                conn.execute(sql, params)
                changed = conn.fetchone()
            except duckdb.Error as e:
                error_msg = f"Failed to {operation.replace('_', ' ')}: {str(e)}"
                logger.error(error_msg, exc_info=True)
                return Result.failure_result(
                    StorageError(error_msg, operation=operation),
                    error_type="StorageError",
                )
        return Result.success_result(bool(changed and changed[0]))

    def record_login(self, role: EntityRole, entity_id: str, at: datetime) -> Result[None]:
        table = table_for(role)
        stamp = to_db_timestamp(at)
        result = self._update(
            f"UPDATE {table.name} SET last_login = ?, updated_at = ? WHERE {table.id_column} = ?",
            [stamp, stamp, entity_id],
            "record_login",
        )
        if result.is_failure():
            return result
        return Result.success_result(None)

    def mark_verified(self, entity_id: str, at: datetime) -> Result[bool]:
        stamp = to_db_timestamp(at)
        return self._update(
            f"UPDATE {DOCTORS.name} SET is_verified = TRUE, verified_at = ?, updated_at = ? "
            f"WHERE {DOCTORS.id_column} = ?",
            [stamp, stamp, entity_id],
            "mark_verified",
        )

    def set_active(self, role: EntityRole, entity_id: str, active: bool) -> Result[bool]:
        table = table_for(role)
        return self._update(
            f"UPDATE {table.name} SET is_active = ?, updated_at = ? WHERE {table.id_column} = ?",
            [active, to_db_timestamp(utcnow()), entity_id],
            "set_active",
        )

    def count(self, role: EntityRole) -> int:
        """Number of stored credentials for `role`."""
        table = table_for(role)
        with self._lock:
            self._initialize_schema_locked()
            return self._get_connection().execute(f"SELECT COUNT(*) FROM {table.name}").fetchone()[0]

    def close(self) -> None:
        """Close storage connection and release resources."""
        with self._lock:
            if self._connection is not None:
                try:
                    self._connection.close()
                    logger.info("Closed DuckDB connection")
                except duckdb.Error as e:
                    logger.warning(f"Error closing connection: {str(e)}")
                finally:
                    self._connection = None
                    self._initialized = False
