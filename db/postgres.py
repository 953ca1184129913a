###########EXTERNAL IMPORTS############

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Type
import psycopg2
import psycopg2.errors
from psycopg2.extensions import connection as PGConnection, cursor as PGCursor
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

#######################################

#############LOCAL IMPORTS#############

from util.debug import LoggerManager
from db.exceptions import InvalidMessage, SchemaMissing, StoreError, TransactionRollbackFailed
from model.config import PostgresConfig

#######################################

Statement = Tuple[str, Dict[str, Any]]

# One chunk per day, in the nanosecond storage unit
HYPERTABLE_CHUNK_NS = 86_400_000_000_000


class PostgresClient:
    """
    Postgres / Timescale client shared by the row-store writers and readers.

    Holds a thread-safe connection pool. Reads run one statement per connection checkout,
    writes run inside `transaction()`, which commits on success and rolls back on any
    failure. A failed rollback is surfaced as `TransactionRollbackFailed` carrying both errors.

    Every session runs with the UTC time zone so that bucket truncation does not depend on
    the server configuration.

    Attributes:
        config (PostgresConfig): Connection settings.
        pool (Optional[ThreadedConnectionPool]): Connection pool, set by `init_connection()`.
    """

    def __init__(self, config: PostgresConfig):
        self.config = config
        self.pool: Optional[ThreadedConnectionPool] = None

    @property
    def timescale(self) -> bool:
        return self.config.timescale

    async def init_connection(self) -> None:
        """
        Opens the connection pool and creates the fixed tables.
        Should be called during application initialization.

        Raises:
            RuntimeError: If the pool is already open.
            psycopg2.Error: If the database cannot be reached.
        """

        logger = LoggerManager.get_logger(__name__)

        if self.pool is not None:
            raise RuntimeError("Postgres connection pool is already instantiated")

        try:
            self.pool = ThreadedConnectionPool(
                self.config.pool_min,
                self.config.pool_max,
                host=self.config.host,
                port=self.config.port,
                user=self.config.user,
                password=self.config.password,
                dbname=self.config.database,
                options="-c timezone=UTC",
            )
            self.create_tables()
        except Exception as e:
            logger.exception(f"Failed to initiate Postgres connection: {e}")
            raise

    async def close_connection(self) -> None:
        """
        Closes every pooled connection.
        Should be called during application shutdown.
        """

        logger = LoggerManager.get_logger(__name__)

        try:
            if self.pool:
                self.pool.closeall()
                self.pool = None

        except Exception as e:
            logger.exception(f"Failed to close Postgres connection: {e}")

    def require_pool(self) -> ThreadedConnectionPool:
        """
        Return the active connection pool.

        Raises:
            RuntimeError: If the client is not initialized.
        """

        if self.pool is None:
            raise RuntimeError("Postgres client is not instantiated properly. ")
        return self.pool

    @contextmanager
    def connection(self) -> Iterator[PGConnection]:
        """Checks a connection out of the pool and returns it on exit."""

        pool = self.require_pool()
        conn = pool.getconn()
        try:
            yield conn
        finally:
            pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[PGCursor]:
        """
        Runs the enclosed statements in one transaction.

        Yields:
            RealDictCursor: Cursor bound to the transaction.

        Raises:
            TransactionRollbackFailed: If the rollback after a failure fails as well.
        """

        logger = LoggerManager.get_logger(__name__)

        with self.connection() as conn:
            cursor = conn.cursor(cursor_factory=RealDictCursor)
            try:
                yield cursor
                conn.commit()
            except Exception as e:
                try:
                    conn.rollback()
                except Exception as rollback_error:
                    logger.exception(f"Failed to rollback transaction after '{e}': {rollback_error}")
                    raise TransactionRollbackFailed(e, rollback_error) from e
                raise
            finally:
                cursor.close()

    def fetch_all(self, query: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Runs a read query and returns every row as a dict.

        Raises:
            psycopg2.Error: Driver errors are left for the caller to classify.
        """

        with self.connection() as conn:
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    cursor.execute(query, params)
                    return list(cursor.fetchall())

    def fetch_one(self, query: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self.fetch_all(query, params)
        return rows[0] if rows else None

    def execute_in_transaction(self, statements: Sequence[Statement], failure: Type[StoreError]) -> int:
        """
        Executes statements atomically and classifies driver errors.

        Args:
            statements: (query, params) pairs, executed in order.
            failure: Error kind raised for generic driver failures.

        Returns:
            int: Total number of affected rows.

        Raises:
            SchemaMissing: If a statement targets a table that does not exist.
            InvalidMessage: If a value cannot be converted to its column type.
            TransactionRollbackFailed: If the rollback fails after an error.
            StoreError: The `failure` kind for any other driver error.
        """

        affected = 0

        try:
            with self.transaction() as cursor:
                for query, params in statements:
                    cursor.execute(query, params)
                    affected += max(cursor.rowcount, 0)

        except psycopg2.errors.UndefinedTable as e:
            raise SchemaMissing("Table does not exist", cause=e) from e
        except psycopg2.errors.InvalidTextRepresentation as e:
            raise InvalidMessage("Value does not match the column type", cause=e) from e
        except psycopg2.Error as e:
            raise failure("Postgres statement failed", cause=e) from e

        return affected

    def create_tables(self) -> None:
        """
        Creates the SenML table. JSON format tables are created lazily by the schema manager.

        Timescale deployments turn the table into a hypertable partitioned on the nanosecond
        `time` column, with (time, publisher, subtopic, name) as primary key.
        """

        if self.timescale:
            statements = [
                ("CREATE EXTENSION IF NOT EXISTS timescaledb", {}),
                (
                    """
                    CREATE TABLE IF NOT EXISTS senml (
                        subtopic VARCHAR(254),
                        publisher VARCHAR(254) NOT NULL,
                        protocol TEXT,
                        name TEXT NOT NULL,
                        unit TEXT,
                        value DOUBLE PRECISION,
                        string_value TEXT,
                        bool_value BOOLEAN,
                        data_value TEXT,
                        sum DOUBLE PRECISION,
                        time BIGINT NOT NULL,
                        update_time DOUBLE PRECISION,
                        PRIMARY KEY (time, publisher, subtopic, name)
                    )
                    """,
                    {},
                ),
                (
                    f"SELECT create_hypertable('senml', 'time', chunk_time_interval => {HYPERTABLE_CHUNK_NS}, if_not_exists => TRUE)",
                    {},
                ),
            ]
        else:
            statements = [
                (
                    """
                    CREATE TABLE IF NOT EXISTS senml (
                        subtopic VARCHAR(254),
                        publisher VARCHAR(254),
                        protocol TEXT,
                        name TEXT,
                        unit TEXT,
                        value DOUBLE PRECISION,
                        string_value TEXT,
                        bool_value BOOLEAN,
                        data_value TEXT,
                        sum DOUBLE PRECISION,
                        time BIGINT NOT NULL,
                        update_time DOUBLE PRECISION
                    )
                    """,
                    {},
                ),
                ("CREATE INDEX IF NOT EXISTS senml_time_idx ON senml (time)", {}),
            ]

        with self.transaction() as cursor:
            for query, params in statements:
                cursor.execute(query, params)
