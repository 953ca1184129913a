###########EXTERNAL IMPORTS############

from typing import Any, Dict, List
from psycopg2.extras import Json

#######################################

#############LOCAL IMPORTS#############

from util.debug import LoggerManager
from consumers.consumer import Consumer
from db.exceptions import SaveFailed, SchemaMissing
from db.postgres import PostgresClient, Statement
from model.messages import JSONMessage, JSONMessages, SenMLMessage
from readers.conditions import SENML_TABLE, quote_ident
from transform.flatten import flatten
from writers.schema import SchemaManager
import util.functions.date as date

#######################################

SENML_COLUMNS = (
    "subtopic",
    "publisher",
    "protocol",
    "name",
    "unit",
    "value",
    "string_value",
    "bool_value",
    "data_value",
    "sum",
    "time",
    "update_time",
)

JSON_COLUMNS = ("created", "subtopic", "publisher", "protocol", "payload")


def insert_query(table: str, columns: tuple) -> str:
    placeholders = ", ".join(f"%({c})s" for c in columns)
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"


def senml_row(message: SenMLMessage) -> Dict[str, Any]:
    """Converts a SenML message into insert parameters (time in nanoseconds)."""

    row = message.to_dict()
    row["time"] = date.to_nanoseconds(message.time)
    return row


def json_row(message: JSONMessage) -> Dict[str, Any]:
    """Converts a JSON message into insert parameters (created in nanoseconds)."""

    return {
        "created": date.to_nanoseconds(message.created),
        "subtopic": message.subtopic,
        "publisher": message.publisher,
        "protocol": message.protocol,
        "payload": Json(message.payload),
    }


def senml_statements(messages: List[SenMLMessage]) -> List[Statement]:
    query = insert_query(SENML_TABLE, SENML_COLUMNS)
    return [(query, senml_row(m)) for m in messages]


def json_statements(format: str, messages: List[JSONMessage]) -> List[Statement]:
    query = insert_query(quote_ident(format), JSON_COLUMNS)
    return [(query, json_row(m)) for m in messages]


def insert_json(client: PostgresClient, schema: SchemaManager, format: str, messages: List[JSONMessage]) -> None:
    """
    Inserts JSON messages in one transaction, creating the format table if it is missing.

    The insert is retried exactly once after the table was created; a second missing-table
    failure is raised to the caller.

    Raises:
        SchemaMissing: If the table is still missing after it was created.
        InvalidMessage: If a value cannot be converted to its column type.
        SaveFailed: On any other backend failure.
        TransactionRollbackFailed: If the rollback after a failure fails as well.
    """

    logger = LoggerManager.get_logger(__name__)
    statements = json_statements(format, messages)

    try:
        client.execute_in_transaction(statements, SaveFailed)
    except SchemaMissing:
        logger.info(f"Table for JSON format '{format}' is missing, creating it")
        schema.ensure_table(format)
        client.execute_in_transaction(statements, SaveFailed)


class PostgresWriter(Consumer):
    """
    Writes SenML and JSON messages to the Postgres / Timescale row store.

    Each call is atomic: every record of the batch is stored or none is.

    Attributes:
        client (PostgresClient): Row-store client.
        schema (SchemaManager): Creates missing JSON format tables.
    """

    def __init__(self, client: PostgresClient, schema: SchemaManager):
        self.client = client
        self.schema = schema

    def save_senml(self, messages: List[SenMLMessage]) -> None:
        """
        Stores a SenML batch in a single transaction.

        Raises:
            InvalidMessage: If a record sets several values or a value does not match its column.
            SaveFailed: On any other backend failure.
            TransactionRollbackFailed: If the rollback after a failure fails as well.
        """

        logger = LoggerManager.get_logger(__name__)

        for message in messages:
            message.validate()

        try:
            self.client.execute_in_transaction(senml_statements(messages), SaveFailed)
        except Exception as e:
            logger.exception(f"Failed to save {len(messages)} SenML messages: {e}")
            raise

    def save_json(self, messages: JSONMessages) -> None:
        """
        Stores a JSON batch in its format table, in a single transaction.

        Every payload is validated before anything is written.

        Raises:
            InvalidKey: If a payload key contains the path separator or is reserved.
            InvalidMessage: If a value does not match its column.
            SchemaMissing: If the format table is still missing after it was created.
            SaveFailed: On any other backend failure.
            TransactionRollbackFailed: If the rollback after a failure fails as well.
        """

        logger = LoggerManager.get_logger(__name__)

        for message in messages.data:
            flatten(message.payload)

        try:
            insert_json(self.client, self.schema, messages.format, messages.data)
        except Exception as e:
            logger.exception(f"Failed to save {len(messages.data)} JSON messages of format '{messages.format}': {e}")
            raise
