"""PostgreSQL Credential Store.

This adapter implements CredentialStorePort on PostgreSQL for multi-instance
production deployments of the gateway.

Security Impact:
    - Only password hashes are stored; plaintext passwords never reach this layer
    - UNIQUE constraints on entity id and secondary id (national id / license)
    - Connection credentials come from DatabaseConfig (SecretStr) and are never logged
    - SSL mode defaults to 'prefer'

Architecture:
    - Implements CredentialStorePort (Hexagonal Architecture)
    - psycopg2 ThreadedConnectionPool, created lazily; every operation runs in
      its own transaction and returns its connection to the pool
"""

import logging
import threading
from datetime import datetime
from typing import Optional

import psycopg2
from psycopg2 import errors, pool
from psycopg2.pool import PoolError

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

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS patients (
        patient_id VARCHAR(20) PRIMARY KEY,
        name VARCHAR(100) NOT NULL,
        date_of_birth DATE NOT NULL,
        phone VARCHAR(20) NOT NULL,
        aadhar_number VARCHAR(12) NOT NULL UNIQUE,
        password_hash VARCHAR(255) NOT NULL,
        fingerprint_template_id INTEGER,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        last_login TIMESTAMP,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS doctors (
        doctor_id VARCHAR(20) PRIMARY KEY,
        name VARCHAR(100) NOT NULL,
        license_number VARCHAR(50) NOT NULL UNIQUE,
        specialization VARCHAR(100) NOT NULL,
        hospital_name VARCHAR(200) NOT NULL,
        password_hash VARCHAR(255) NOT NULL,
        is_verified BOOLEAN NOT NULL DEFAULT FALSE,
        verified_at TIMESTAMP,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        last_login TIMESTAMP,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_doctors_verified ON doctors(is_verified)",
)


class PostgreSQLCredentialStore(CredentialStorePort):
    """PostgreSQL implementation of CredentialStorePort.

    Parameters:
        db_config: DatabaseConfig with db_type 'postgresql' (preferred)
        connection_string: Full PostgreSQL DSN
        pool_size: Connection pool size
        max_overflow: Maximum connection pool overflow

    Example Usage:
        ```python
        store = PostgreSQLCredentialStore(db_config=config.get_database_config())
        result = store.initialize_schema()
        if result.is_success():
            result = store.find_credential(EntityRole.DOCTOR, "D2002")
        ```
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        connection_string: Optional[str] = None,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        self._connection_pool: Optional[pool.ThreadedConnectionPool] = None
        self._pool_lock = threading.Lock()
        self._schema_initialized = False
        self._schema_lock = threading.Lock()

        if db_config:
            if db_config.db_type != "postgresql":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match PostgreSQL adapter",
                    operation="__init__"
                )
            if db_config.connection_string:
                self.connection_params = {"dsn": db_config.connection_string.get_secret_value()}
            elif db_config.host and db_config.database:
                self.connection_params = {
                    "host": db_config.host,
                    "port": db_config.port or 5432,
                    "database": db_config.database,
                    "user": db_config.username,
                    "sslmode": db_config.ssl_mode or "prefer",
                }
                if db_config.password:
                    self.connection_params["password"] = db_config.password.get_secret_value()
            else:
                raise StorageError(
                    "PostgreSQL DatabaseConfig requires host and database",
                    operation="__init__"
                )
            self.pool_size = db_config.pool_size
            self.max_overflow = db_config.max_overflow
        elif connection_string:
            self.connection_params = {"dsn": connection_string}
            self.pool_size = pool_size
            self.max_overflow = max_overflow
        else:
            raise StorageError(
                "PostgreSQL adapter requires either db_config or connection_string",
                operation="__init__"
            )

    def _get_connection_pool(self) -> pool.ThreadedConnectionPool:
        with self._pool_lock:
            if self._connection_pool is None:
                try:
                    self._connection_pool = pool.ThreadedConnectionPool(
                        minconn=1,
                        maxconn=self.pool_size + self.max_overflow,
                        **self.connection_params
                    )
                    logger.info("Created PostgreSQL connection pool")
                except psycopg2.Error as e:
                    raise StorageError(
                        f"Failed to create PostgreSQL connection pool: {str(e)}",
                        operation="connect",
                        details={"host": self.connection_params.get("host", "N/A")}
                    ) from e
            return self._connection_pool

    def _get_connection(self):
        try:
            return self._get_connection_pool().getconn()
        except (psycopg2.Error, PoolError) as e:
            raise StorageError(
                f"Failed to get connection from pool: {str(e)}",
                operation="get_connection"
            ) from e

    def _return_connection(self, conn) -> None:
        try:
            self._get_connection_pool().putconn(conn)
        except (psycopg2.Error, PoolError, StorageError) as e:
            logger.warning(f"Error returning connection to pool: {str(e)}")

    def initialize_schema(self) -> Result[None]:
        """Create the patients and doctors tables (cached per instance)."""
        if self._schema_initialized:
            return Result.success_result(None)

        with self._schema_lock:
            if self._schema_initialized:
                return Result.success_result(None)

            conn = None
            try:
                conn = self._get_connection()
                cursor = conn.cursor()
                for statement in _SCHEMA_STATEMENTS:
                    cursor.execute(statement)
                conn.commit()
                self._schema_initialized = True
                logger.info("Initialized PostgreSQL credential schema")
                return Result.success_result(None)
            except (psycopg2.Error, StorageError) as e:
                if conn:
                    conn.rollback()
                error_msg = f"Failed to initialize schema: {str(e)}"
                logger.error(error_msg, exc_info=True)
                return Result.failure_result(
                    StorageError(error_msg, operation="initialize_schema"),
                    error_type="StorageError"
                )
            finally:
                if conn:
                    self._return_connection(conn)

    def create_credential(self, record: CredentialRecord) -> Result[str]:
        init_result = self.initialize_schema()
        if init_result.is_failure():
            return init_result

        table = table_for(record.role)
        placeholders = ", ".join("%s" for _ in table.columns)
        conn = None
        try:
            conn = self._get_connection()
            cursor = conn.cursor()
            cursor.execute(
                f"INSERT INTO {table.name} ({table.column_list}) VALUES ({placeholders})",
                record_to_row(table, record),
            )
            conn.commit()
            logger.info(f"Created {record.role.value} credential {record.entity_id}")
            return Result.success_result(record.entity_id)
        except errors.UniqueViolation as e:
            conn.rollback()
            logger.warning(f"Duplicate {record.role.value} credential for {record.entity_id}")
            return Result.failure_result(
                str(e),
                error_type=DUPLICATE_RECORD_ERROR,
                error_details={"table": table.name, "entity_id": record.entity_id},
            )
        except (psycopg2.Error, StorageError) as e:
            if conn:
                conn.rollback()
            error_msg = f"Failed to create credential: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="create_credential"),
                error_type="StorageError",
                error_details={"table": table.name, "entity_id": record.entity_id},
            )
        finally:
            if conn:
                self._return_connection(conn)

    def _find(self, role: EntityRole, column: str, value: str, operation: str) -> Result[Optional[CredentialRecord]]:
        init_result = self.initialize_schema()
        if init_result.is_failure():
            return init_result

        table = table_for(role)
        conn = None
        try:
            conn = self._get_connection()
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {table.column_list} FROM {table.name} WHERE {column} = %s",
                (value,),
            )
            row = cursor.fetchone()
            conn.commit()
            return Result.success_result(row_to_record(table, row) if row else None)
        except (psycopg2.Error, StorageError) as e:
            if conn:
                conn.rollback()
            error_msg = f"Failed to read credential: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation=operation),
                error_type="StorageError"
            )
        finally:
            if conn:
                self._return_connection(conn)

    def find_credential(self, role: EntityRole, entity_id: str) -> Result[Optional[CredentialRecord]]:
        return self._find(role, table_for(role).id_column, entity_id, "find_credential")

    def find_by_secondary_id(self, role: EntityRole, secondary_id: str) -> Result[Optional[CredentialRecord]]:
        return self._find(role, table_for(role).secondary_column, secondary_id, "find_by_secondary_id")

    def _update(self, sql: str, params: tuple, operation: str) -> Result[bool]:
        init_result = self.initialize_schema()
        if init_result.is_failure():
            return init_result

        conn = None
        try:
            conn = self._get_connection()
            cursor = conn.cursor()
            cursor.execute(sql, params)
            changed = cursor.rowcount
            conn.commit()
            return Result.success_result(changed > 0)
        except (psycopg2.Error, StorageError) as e:
            if conn:
                conn.rollback()
            error_msg = f"Failed to {operation.replace('_', ' ')}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation=operation),
                error_type="StorageError"
            )
        finally:
            if conn:
                self._return_connection(conn)

    def record_login(self, role: EntityRole, entity_id: str, at: datetime) -> Result[None]:
        table = table_for(role)
        stamp = to_db_timestamp(at)
        result = self._update(
            f"UPDATE {table.name} SET last_login = %s, updated_at = %s WHERE {table.id_column} = %s",
            (stamp, stamp, entity_id),
            "record_login",
        )
        if result.is_failure():
            return result
        return Result.success_result(None)

    def mark_verified(self, entity_id: str, at: datetime) -> Result[bool]:
        stamp = to_db_timestamp(at)
        return self._update(
            f"UPDATE {DOCTORS.name} SET is_verified = TRUE, verified_at = %s, updated_at = %s "
            f"WHERE {DOCTORS.id_column} = %s",
            (stamp, stamp, entity_id),
            "mark_verified",
        )

    def set_active(self, role: EntityRole, entity_id: str, active: bool) -> Result[bool]:
        table = table_for(role)
        return self._update(
            f"UPDATE {table.name} SET is_active = %s, updated_at = %s WHERE {table.id_column} = %s",
            (active, to_db_timestamp(utcnow()), entity_id),
            "set_active",
        )

    def close(self) -> None:
        """Close storage connection pool and release resources."""
        with self._pool_lock:
            if self._connection_pool is not None:
                try:
                    self._connection_pool.closeall()
                    logger.info("Closed PostgreSQL connection pool")
                except (psycopg2.Error, PoolError) as e:
                    logger.warning(f"Error closing connection pool: {str(e)}")
                finally:
                    self._connection_pool = None
