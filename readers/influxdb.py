###########EXTERNAL IMPORTS############

from abc import abstractmethod
from dataclasses import replace
from typing import Any, Dict, FrozenSet, List, Sequence, Tuple

#######################################

#############LOCAL IMPORTS#############

from util.debug import LoggerManager
from db.exceptions import DeleteFailed, InvalidMessage, InvalidQuery, ReadFailed
from db.timedb import INFLUX_ERRORS, TimeDBClient, is_missing_database
from model.db import Conditions, InfluxQuery, Predicate, quote_influx_ident
from model.messages import DEFAULT_JSON_FORMAT, JSONMessage, MessagesPage, SenMLMessage
from model.page import Aggregation, AggregationInterval, AggregationType, Direction, JSONPageMetadata, PageMetadata, SenMLPageMetadata
from readers.conditions import EXISTS_OPERATOR, JSON_TIME_COLUMN, SENML_TIME_COLUMN, json_conditions, senml_conditions
from readers.decode import decode_senml
from readers.service import MessageRepository
from transform.flatten import SEPARATOR, flatten, parse_flat
from writers.influxdb import JSON_CREATED_FIELD, SENML_MEASUREMENT, json_point, senml_point, write_points
import util.functions.date as date

#######################################

SENML_TAGS: FrozenSet[str] = frozenset({"subtopic", "publisher", "protocol", "name"})
JSON_TAGS: FrozenSet[str] = frozenset({"subtopic", "publisher", "protocol"})
JSON_RESERVED_COLUMNS: FrozenSet[str] = JSON_TAGS | {"time", JSON_CREATED_FIELD}

INFLUX_FUNCTIONS: Dict[AggregationType, str] = {
    AggregationType.MIN: "MIN",
    AggregationType.MAX: "MAX",
    AggregationType.AVG: "MEAN",
    AggregationType.COUNT: "COUNT",
}

INFLUX_DURATIONS: Dict[AggregationInterval, str] = {
    AggregationInterval.MINUTE: "m",
    AggregationInterval.HOUR: "h",
    AggregationInterval.DAY: "d",
    AggregationInterval.WEEK: "w",
}


def split_conditions(conditions: Conditions, time_column: str) -> Tuple[List[str], List[Predicate], Dict[str, Any]]:
    """
    Separates the time range from the other predicates.

    InfluxQL compares `time` against nanosecond literals, so the time bounds are rendered
    inline and removed from the bound parameters.

    Returns:
        Tuple: Rendered time predicates, remaining predicates and their parameters.

    Raises:
        InvalidQuery: If a predicate is a payload existence check, which InfluxQL cannot express.
    """

    time_predicates: List[str] = []
    predicates: List[Predicate] = []
    params = dict(conditions.params)

    for predicate in conditions.predicates:
        if predicate.operator == EXISTS_OPERATOR:
            raise InvalidQuery("JSON payload filters are not supported by the time-series backend")
        if predicate.column == time_column:
            time_predicates.append(f"time {predicate.operator} {int(params.pop(predicate.param))}")
        else:
            predicates.append(predicate)

    return time_predicates, predicates, params


def render_predicate(predicate: Predicate) -> str:
    return f"{quote_influx_ident(predicate.column)} {predicate.operator} ${predicate.param}"


def influx_where(conditions: Conditions, time_column: str) -> Tuple[List[str], Dict[str, Any]]:
    """Renders the WHERE predicates, time range first, and the bound parameters."""

    time_predicates, predicates, params = split_conditions(conditions, time_column)
    return time_predicates + [render_predicate(p) for p in predicates], params


def group_by_time(aggregation: Aggregation) -> str:
    """
    Renders the GROUP BY time() duration of an aggregation.

    Raises:
        InvalidQuery: If the unit has no fixed InfluxQL duration (month, year).
    """

    interval = AggregationInterval(aggregation.interval)
    unit = INFLUX_DURATIONS.get(interval)
    if unit is None:
        raise InvalidQuery(f"Aggregation by {interval.value} is not supported by the time-series backend")
    return f"time({aggregation.value}{unit})"


def influx_function(aggregation: Aggregation) -> str:
    try:
        return INFLUX_FUNCTIONS[AggregationType(aggregation.type)]
    except ValueError:
        raise InvalidQuery(f"Invalid aggregation type {aggregation.type}")


def decode_json_point(point: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reshapes a JSON point back into a message map.

    Tags and fields come back as columns, with None for the fields other messages of the
    measurement have. The remaining fields are unflattened into the payload.
    """

    fields = {k: v for k, v in point.items() if k not in JSON_RESERVED_COLUMNS and v is not None}
    created = point.get(JSON_CREATED_FIELD)

    return {
        "created": created if created is not None else date.from_nanoseconds(point["time"]),
        "subtopic": point.get("subtopic") or "",
        "publisher": point.get("publisher") or "",
        "protocol": point.get("protocol") or "",
        "payload": parse_flat(fields),
    }


class InfluxRepository(MessageRepository):
    """
    Common listing, backup and removal logic of the InfluxDB repositories.

    Aggregation uses InfluxQL's native GROUP BY time() buckets: a bucket row carries the
    bucket time, the aggregate and the filter metadata, without selecting a source row.
    """

    time_column: str = ""
    count_field: str = ""
    tags: FrozenSet[str] = frozenset()

    def __init__(self, client: TimeDBClient):
        self.client = client

    @abstractmethod
    def measurement(self, pm: PageMetadata) -> str:
        pass

    @abstractmethod
    def conditions(self, pm: PageMetadata) -> Conditions:
        pass

    @abstractmethod
    def decode(self, point: Dict[str, Any]) -> Any:
        pass

    @abstractmethod
    def aggregate_fields(self, pm: PageMetadata) -> List[Tuple[str, str]]:
        """Returns (field key, output alias) pairs of the aggregated fields."""

        pass

    @abstractmethod
    def decode_bucket(self, pm: PageMetadata, point: Dict[str, Any]) -> Any:
        pass

    def list_queries(self, pm: PageMetadata) -> Tuple[InfluxQuery, InfluxQuery, Dict[str, Any]]:
        where, params = influx_where(self.conditions(pm), self.time_column)
        order = Direction(pm.dir).value.upper()

        query = InfluxQuery(measurement=self.measurement(pm), where=where, order=order, limit=pm.limit, offset=pm.offset)
        count = InfluxQuery(measurement=self.measurement(pm), fields=[f"COUNT({quote_influx_ident(self.count_field)})"], where=where)
        return query, count, params

    def aggregation_queries(self, pm: PageMetadata) -> Tuple[InfluxQuery, InfluxQuery, Dict[str, Any]]:
        where, params = influx_where(self.conditions(pm), self.time_column)
        function = influx_function(pm.aggregation)
        pairs = self.aggregate_fields(pm)
        fields = [f"{function}({quote_influx_ident(key)}) AS {quote_influx_ident(alias)}" for key, alias in pairs]
        group_by = [group_by_time(pm.aggregation)]

        query = InfluxQuery(
            measurement=self.measurement(pm),
            fields=fields,
            where=where,
            group_by=group_by,
            fill="none",
            order=Direction(pm.dir).value.upper(),
            limit=pm.limit,
            offset=pm.offset,
        )
        buckets = InfluxQuery(measurement=self.measurement(pm), fields=fields, where=where, group_by=group_by, fill="none")
        count = InfluxQuery(measurement="", fields=[f"COUNT({quote_influx_ident(pairs[0][1])})"], subquery=buckets)
        return query, count, params

    def retrieve(self, pm: PageMetadata) -> MessagesPage:
        """
        Lists one page of messages, or of aggregated buckets when aggregation is active.

        A database or measurement that does not exist reads as an empty page.

        Raises:
            InvalidQuery: If the page metadata is invalid or uses filters InfluxQL cannot express.
            ReadFailed: On any backend failure.
        """

        logger = LoggerManager.get_logger(__name__)
        pm.validate()

        aggregated = pm.aggregation.is_active()
        if aggregated:
            query, count, params = self.aggregation_queries(pm)
        else:
            query, count, params = self.list_queries(pm)

        try:
            points = self.client.query(query.render(), params)
            counts = self.client.query(count.render(), params)
        except INFLUX_ERRORS as e:
            if is_missing_database(e):
                return MessagesPage(total=0, messages=[])
            logger.exception(f"Failed to read messages from {self.measurement(pm)}: {e}")
            raise ReadFailed("Failed to read messages", cause=e) from e

        total = int(counts[0].get("count") or 0) if counts else 0
        if aggregated:
            messages = [self.decode_bucket(pm, p) for p in points]
        else:
            messages = [self.decode(p) for p in points]

        return MessagesPage(total=total, messages=messages)

    def backup(self, pm: PageMetadata) -> MessagesPage:
        """Dumps every message matching the filters, ignoring pagination and aggregation."""

        return self.retrieve(replace(pm, limit=0, offset=0, aggregation=Aggregation()))

    def remove(self, pm: PageMetadata) -> None:
        """
        Deletes every message matching the filters.

        InfluxQL deletes by tags and time only, so field filters are rejected.

        Raises:
            InvalidQuery: If the page metadata is invalid or filters on a field.
            DeleteFailed: On any backend failure.
        """

        logger = LoggerManager.get_logger(__name__)
        pm.validate()

        time_predicates, predicates, params = split_conditions(self.conditions(pm), self.time_column)
        for predicate in predicates:
            if predicate.column not in self.tags:
                raise InvalidQuery(f"Cannot remove messages by field '{predicate.column}' on the time-series backend")

        where = time_predicates + [render_predicate(p) for p in predicates]
        statement = f"DELETE FROM {quote_influx_ident(self.measurement(pm))}"
        if where:
            statement += f" WHERE {' AND '.join(where)}"

        try:
            self.client.execute(statement, params)
        except INFLUX_ERRORS as e:
            if is_missing_database(e):
                return
            logger.exception(f"Failed to remove messages from {self.measurement(pm)}: {e}")
            raise DeleteFailed("Failed to remove messages", cause=e) from e


class InfluxSenMLRepository(InfluxRepository):
    """SenML messages of the `messages` measurement."""

    time_column = SENML_TIME_COLUMN
    count_field = "update_time"
    tags = SENML_TAGS

    def measurement(self, pm: PageMetadata) -> str:
        return SENML_MEASUREMENT

    def conditions(self, pm: SenMLPageMetadata) -> Conditions:
        conditions = senml_conditions(pm)
        if pm.aggregation.is_active() and pm.aggregation.fields:
            conditions.add("name", "=", "agg_field", pm.aggregation.fields[0])
        return conditions

    def decode(self, point: Dict[str, Any]) -> SenMLMessage:
        return decode_senml(point)

    def aggregate_fields(self, pm: SenMLPageMetadata) -> List[Tuple[str, str]]:
        return [("value", "value")]

    def decode_bucket(self, pm: SenMLPageMetadata, point: Dict[str, Any]) -> SenMLMessage:
        value = point.get("value")
        return SenMLMessage(
            publisher=pm.publisher or "",
            subtopic=pm.subtopic or "",
            protocol=pm.protocol or "",
            name=pm.aggregation.fields[0] if pm.aggregation.fields else (pm.name or ""),
            time=date.from_nanoseconds(point["time"]),
            value=float(value) if value is not None else None,
        )

    def restore(self, messages: Sequence[Any]) -> None:
        """
        Rewrites previously exported SenML messages in one request.

        Raises:
            InvalidMessage: If any message is not a SenML message; nothing is written then.
            SaveFailed: On any backend failure.
        """

        points = []
        for message in messages:
            if not isinstance(message, SenMLMessage):
                raise InvalidMessage(f"Cannot restore {type(message).__name__} into the SenML repository")
            points.append(senml_point(message))

        write_points(self.client, points)


class InfluxJSONRepository(InfluxRepository):
    """JSON messages, one measurement per format."""

    time_column = JSON_TIME_COLUMN
    count_field = JSON_CREATED_FIELD
    tags = JSON_TAGS

    def measurement(self, pm: JSONPageMetadata) -> str:
        return pm.format

    def conditions(self, pm: JSONPageMetadata) -> Conditions:
        return json_conditions(pm)

    def decode(self, point: Dict[str, Any]) -> Dict[str, Any]:
        return decode_json_point(point)

    def aggregate_fields(self, pm: JSONPageMetadata) -> List[Tuple[str, str]]:
        keys = [f.replace(".", SEPARATOR) for f in pm.aggregation.fields]
        return [(key, key) for key in keys]

    def decode_bucket(self, pm: JSONPageMetadata, point: Dict[str, Any]) -> Dict[str, Any]:
        fields = {k: v for k, v in point.items() if k != "time" and v is not None}
        return {
            "created": date.from_nanoseconds(point["time"]),
            "subtopic": pm.subtopic or "",
            "publisher": pm.publisher or "",
            "protocol": pm.protocol or "",
            "payload": parse_flat(fields),
        }

    def restore(self, messages: Sequence[Any], format: str = DEFAULT_JSON_FORMAT) -> None:
        """
        Rewrites previously exported JSON messages (maps or JSONMessage) into the measurement
        of `format`, in one request.

        Raises:
            InvalidMessage: If any message is not a JSON message; nothing is written then.
            SaveFailed: On any backend failure.
        """

        points = []
        for index, message in enumerate(messages):
            if isinstance(message, dict):
                message = JSONMessage.from_dict(message)
            if not isinstance(message, JSONMessage):
                raise InvalidMessage(f"Cannot restore {type(message).__name__} into the JSON repository")
            flatten(message.payload)
            points.append(json_point(format, message, index))

        write_points(self.client, points)
