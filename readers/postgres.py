###########EXTERNAL IMPORTS############

from abc import abstractmethod
from dataclasses import replace
from typing import Any, Dict, List, Sequence
import psycopg2
import psycopg2.errors

#######################################

#############LOCAL IMPORTS#############

from util.debug import LoggerManager
from db.exceptions import DeleteFailed, InvalidMessage, ReadFailed, SaveFailed, SchemaMissing
from db.postgres import PostgresClient
from model.db import Conditions
from model.messages import DEFAULT_JSON_FORMAT, JSONMessage, MessagesPage, SenMLMessage
from model.page import Aggregation, Direction, JSONPageMetadata, PageMetadata, SenMLPageMetadata
from readers.aggregation import AggregationQuery, json_aggregation_query, senml_aggregation_query
from readers.decode import decode_json, decode_senml
from readers.conditions import (
    JSON_TIME_COLUMN,
    SENML_TABLE,
    SENML_TIME_COLUMN,
    json_conditions,
    quote_ident,
    senml_conditions,
    where_clause,
)
from readers.service import MessageRepository
from transform.flatten import flatten
from writers.postgres import insert_json, senml_statements
from writers.schema import SchemaManager

#######################################


class PostgresRepository(MessageRepository):
    """
    Common listing, backup and removal logic of the row-store repositories.

    Subclasses provide the table, time column, conditions, aggregation query and row decoder
    of their message kind.
    """

    time_column: str = ""

    def __init__(self, client: PostgresClient):
        self.client = client

    @abstractmethod
    def table(self, pm: PageMetadata) -> str:
        pass

    @abstractmethod
    def conditions(self, pm: PageMetadata) -> Conditions:
        pass

    @abstractmethod
    def aggregation_query(self, pm: PageMetadata) -> AggregationQuery:
        pass

    @abstractmethod
    def decode(self, row: Dict[str, Any]) -> Any:
        pass

    def source(self, pm: PageMetadata, conditions: Conditions) -> str:
        """Table name followed by the WHERE clause of the conditions, if any."""

        where = where_clause(conditions)
        return f"{self.table(pm)} {where}" if where else self.table(pm)

    def list_query(self, pm: PageMetadata, conditions: Conditions) -> str:
        query = f"SELECT * FROM {self.source(pm, conditions)} ORDER BY {self.time_column} {Direction(pm.dir).value.upper()}"
        if pm.limit > 0:
            query += " LIMIT %(limit)s"
        if pm.offset > 0:
            query += " OFFSET %(offset)s"
        return query

    def count_query(self, pm: PageMetadata, conditions: Conditions) -> str:
        return f"SELECT COUNT(*) AS total FROM {self.source(pm, conditions)}"

    def retrieve(self, pm: PageMetadata) -> MessagesPage:
        """
        Lists one page of messages, or of aggregated buckets when aggregation is active.

        A table that does not exist reads as an empty page.

        Raises:
            InvalidQuery: If the page metadata is invalid.
            ReadFailed: On any backend failure.
        """

        logger = LoggerManager.get_logger(__name__)
        pm.validate()

        try:
            if pm.aggregation.is_active():
                query = self.aggregation_query(pm)
                params = query.conditions.params
                rows = self.client.fetch_all(query.render(), params)
                count = self.client.fetch_one(query.render_count(), params)
            else:
                conditions = self.conditions(pm)
                params = dict(conditions.params, limit=pm.limit, offset=pm.offset)
                rows = self.client.fetch_all(self.list_query(pm, conditions), params)
                count = self.client.fetch_one(self.count_query(pm, conditions), params)

        except psycopg2.errors.UndefinedTable:
            logger.debug(f"Table {self.table(pm)} does not exist, returning an empty page")
            return MessagesPage(total=0, messages=[])
        except psycopg2.Error as e:
            logger.exception(f"Failed to read messages from {self.table(pm)}: {e}")
            raise ReadFailed("Failed to read messages", cause=e) from e

        total = int(count["total"]) if count else 0
        return MessagesPage(total=total, messages=[self.decode(row) for row in rows])

    def backup(self, pm: PageMetadata) -> MessagesPage:
        """
        Dumps every message matching the filters, ignoring pagination and aggregation.
        """

        return self.retrieve(replace(pm, limit=0, offset=0, aggregation=Aggregation()))

    def remove(self, pm: PageMetadata) -> None:
        """
        Deletes every message matching the filters, in one transaction.

        Removing from a table that does not exist is a no-op.

        Raises:
            InvalidQuery: If the page metadata is invalid.
            InvalidMessage: If a filter value does not match its column type.
            DeleteFailed: On any other backend failure.
            TransactionRollbackFailed: If the rollback after a failure fails as well.
        """

        logger = LoggerManager.get_logger(__name__)
        pm.validate()

        conditions = self.conditions(pm)
        query = f"DELETE FROM {self.source(pm, conditions)}"

        try:
            deleted = self.client.execute_in_transaction([(query, conditions.params)], DeleteFailed)
        except SchemaMissing:
            logger.debug(f"Table {self.table(pm)} does not exist, nothing to remove")
            return

        logger.info(f"Removed {deleted} messages from {self.table(pm)}")


class PostgresSenMLRepository(PostgresRepository):
    """Reads, restores and removes SenML messages of the `senml` table."""

    time_column = SENML_TIME_COLUMN

    def table(self, pm: PageMetadata) -> str:
        return SENML_TABLE

    def conditions(self, pm: SenMLPageMetadata) -> Conditions:
        return senml_conditions(pm)

    def aggregation_query(self, pm: SenMLPageMetadata) -> AggregationQuery:
        return senml_aggregation_query(pm)

    def decode(self, row: Dict[str, Any]) -> SenMLMessage:
        return decode_senml(row)

    def restore(self, messages: Sequence[Any]) -> None:
        """
        Reinserts previously exported SenML messages verbatim, in one transaction.

        Raises:
            InvalidMessage: If any message is not a SenML message; nothing is written then.
            SaveFailed: On any backend failure.
            TransactionRollbackFailed: If the rollback after a failure fails as well.
        """

        for message in messages:
            if not isinstance(message, SenMLMessage):
                raise InvalidMessage(f"Cannot restore {type(message).__name__} into the SenML repository")
            message.validate()

        self.client.execute_in_transaction(senml_statements(list(messages)), SaveFailed)


class PostgresJSONRepository(PostgresRepository):
    """Reads, restores and removes JSON messages of the per-format tables."""

    time_column = JSON_TIME_COLUMN

    def __init__(self, client: PostgresClient, schema: SchemaManager):
        super().__init__(client)
        self.schema = schema

    def table(self, pm: JSONPageMetadata) -> str:
        return quote_ident(pm.format)

    def conditions(self, pm: JSONPageMetadata) -> Conditions:
        return json_conditions(pm)

    def aggregation_query(self, pm: JSONPageMetadata) -> AggregationQuery:
        return json_aggregation_query(pm)

    def decode(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return decode_json(row)

    def restore(self, messages: Sequence[Any], format: str = DEFAULT_JSON_FORMAT) -> None:
        """
        Reinserts previously exported JSON messages (maps or JSONMessage) verbatim into the
        table of `format`, in one transaction. The table is created if it is missing.

        Raises:
            InvalidMessage: If any message is not a JSON message; nothing is written then.
            InvalidKey: If a payload key contains the path separator or is reserved.
            SaveFailed: On any backend failure.
            TransactionRollbackFailed: If the rollback after a failure fails as well.
        """

        decoded: List[JSONMessage] = []
        for message in messages:
            if isinstance(message, dict):
                message = JSONMessage.from_dict(message)
            if not isinstance(message, JSONMessage):
                raise InvalidMessage(f"Cannot restore {type(message).__name__} into the JSON repository")
            flatten(message.payload)
            decoded.append(message)

        insert_json(self.client, self.schema, format, decoded)
