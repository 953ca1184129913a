###########EXTERNAL IMPORTS############

from typing import List

#######################################

#############LOCAL IMPORTS#############

from util.debug import LoggerManager
from db.exceptions import InvalidQuery, SaveFailed
from db.postgres import HYPERTABLE_CHUNK_NS, PostgresClient, Statement
from readers.conditions import quote_ident, quote_literal

#######################################


class SchemaManager:
    """
    Creates the per-format JSON tables on demand.

    Format tables are not tracked in memory: `ensure_table` always issues an idempotent
    CREATE TABLE IF NOT EXISTS, so the schema is re-derived after every restart. Writers call
    it after an insert failed on a missing table and retry that insert once.

    Attributes:
        client (PostgresClient): Row-store client running the DDL.
    """

    def __init__(self, client: PostgresClient):
        self.client = client

    def table_statements(self, format: str) -> List[Statement]:
        """
        Returns the DDL statements creating the table of a JSON format.

        Args:
            format (str): Format name, used verbatim (quoted) as the table name.

        Raises:
            InvalidQuery: If the format name is empty.
        """

        if not format:
            raise InvalidQuery("JSON format name must not be empty")

        table = quote_ident(format)
        relation = quote_literal('"' + format.replace('"', '""') + '"')

        if self.client.timescale:
            return [
                (
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        created BIGINT NOT NULL,
                        subtopic VARCHAR(254) NOT NULL DEFAULT '',
                        publisher VARCHAR(254) NOT NULL,
                        protocol TEXT,
                        payload JSONB,
                        PRIMARY KEY (created, publisher, subtopic)
                    )
                    """,
                    {},
                ),
                (
                    f"SELECT create_hypertable({relation}, 'created', "
                    f"chunk_time_interval => {HYPERTABLE_CHUNK_NS}, if_not_exists => TRUE)",
                    {},
                ),
            ]

        return [
            (
                f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    created BIGINT NOT NULL,
                    subtopic VARCHAR(254),
                    publisher VARCHAR(254),
                    protocol TEXT,
                    payload JSONB
                )
                """,
                {},
            ),
        ]

    def ensure_table(self, format: str) -> None:
        """
        Creates the table of a JSON format if it does not exist yet.

        Raises:
            SaveFailed: If the DDL fails.
            TransactionRollbackFailed: If the rollback after a failure fails as well.
        """

        logger = LoggerManager.get_logger(__name__)
        logger.info(f"Ensuring table for JSON format '{format}'")

        self.client.execute_in_transaction(self.table_statements(format), SaveFailed)
