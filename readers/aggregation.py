###########EXTERNAL IMPORTS############

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List

#######################################

#############LOCAL IMPORTS#############

from db.exceptions import InvalidQuery
from model.db import Conditions
from model.messages import MessageKind
from model.page import Aggregation, AggregationInterval, AggregationType, Direction, JSONPageMetadata, SenMLPageMetadata
from readers.conditions import (
    JSON_TIME_COLUMN,
    SENML_TABLE,
    SENML_TIME_COLUMN,
    json_conditions,
    json_path,
    quote_ident,
    quote_literal,
    render_conditions,
    senml_conditions,
    where_clause,
)

#######################################

SOURCE_ALIAS = "m"
INTERVALS_ALIAS = "ti"
AGGREGATES_ALIAS = "ia"


##########     E X P R E S S I O N     B U I L D E R     ##########


def to_timestamp(column: str) -> str:
    """Converts a nanosecond epoch column into a timestamp expression."""

    return f"to_timestamp({column} / 1000000000.0)"


def truncate_time(column: str, aggregation: Aggregation) -> str:
    """
    Builds the bucket truncation expression of a nanosecond epoch column.

    Buckets one unit wide use native `date_trunc`. Wider buckets (e.g. 5 hours) floor the
    epoch seconds to a multiple of the bucket length, since `date_trunc` only truncates to
    a single unit.

    Args:
        column: Nanosecond epoch column (optionally alias-qualified).
        aggregation: Aggregation holding the bucket width and unit.

    Returns:
        str: SQL expression yielding the bucket start timestamp.
    """

    interval = AggregationInterval(aggregation.interval)
    ts = to_timestamp(column)

    if aggregation.value == 1:
        return f"date_trunc('{interval.value}', {ts})"

    length = f"extract(epoch from interval '{aggregation.value} {interval.value}s')"
    return f"to_timestamp(floor(extract(epoch from {ts}) / {length}) * {length})"


def bucket_epoch_ns(expression: str) -> str:
    """Converts a bucket timestamp expression back into nanoseconds."""

    return f"CAST(extract(epoch from {expression}) * 1000000000 AS BIGINT)"


def json_path_array(path: str) -> str:
    """Builds the text[] path used by jsonb_set for a dotted payload path."""

    return "ARRAY[" + ", ".join(quote_literal(part) for part in path.split(".")) + "]"


def qualified(alias: str, column: str) -> str:
    return f"{alias}.{column}"


##########     Q U E R Y     ##########


@dataclass
class AggregationQuery:
    """
    Three-stage bucketed aggregation over one table.

    Stage one discovers the distinct buckets of the matching rows, stage two aggregates each
    bucket (dropping buckets whose aggregate is null) and stage three, delegated to the
    aggregation strategy, returns one message-shaped row per bucket.

    Attributes:
        kind (MessageKind): Shape of the stored messages.
        table (str): Quoted table name.
        aggregation (Aggregation): Function, bucket width and fields.
        conditions (Conditions): Filters applied to every stage.
        direction (Direction): Bucket ordering.
        limit (int): Maximum number of buckets, 0 for all.
        offset (int): Number of buckets to skip.
    """

    kind: MessageKind
    table: str
    aggregation: Aggregation
    conditions: Conditions = field(default_factory=Conditions)
    direction: Direction = Direction.DESC
    limit: int = 0
    offset: int = 0

    @property
    def strategy(self) -> "AggregationStrategy":
        return AggregationStrategyRegistry.get_strategy(self.aggregation.type)

    @property
    def time_column(self) -> str:
        return SENML_TIME_COLUMN if self.kind == MessageKind.SENML else JSON_TIME_COLUMN

    @property
    def order(self) -> str:
        return Direction(self.direction).value.upper()

    def truncated(self, alias: str | None = None) -> str:
        column = qualified(alias, self.time_column) if alias else self.time_column
        return truncate_time(column, self.aggregation)

    def value_expressions(self) -> List[str]:
        """Source value expression per aggregated field, over the source alias."""

        if self.kind == MessageKind.SENML:
            return [qualified(SOURCE_ALIAS, "value")]

        if self.aggregation.type == AggregationType.COUNT:
            return [json_path(f, SOURCE_ALIAS) for f in self.aggregation.fields]
        return [f"CAST({json_path(f, SOURCE_ALIAS)} AS FLOAT)" for f in self.aggregation.fields]

    def aggregate_names(self) -> List[str]:
        if self.kind == MessageKind.SENML:
            return ["agg_value"]
        return [f"agg_value_{i}" for i in range(len(self.aggregation.fields))]

    def aggregate_expressions(self) -> List[str]:
        return [self.strategy.aggregate(expr) for expr in self.value_expressions()]

    def having(self) -> str:
        expressions = self.aggregate_expressions()
        if not expressions:
            return "1=1"
        return " AND ".join(self.strategy.non_empty(expr) for expr in expressions)

    def source_conditions(self, prefix: str) -> str:
        """Filters over the source alias, prefixed with AND/WHERE, or empty."""

        rendered = render_conditions(self.conditions.predicates, SOURCE_ALIAS)
        return f" {prefix} {rendered}" if rendered else ""

    def intervals_cte(self, paginated: bool) -> str:
        page = ""
        if paginated and self.limit > 0:
            page = f" LIMIT {self.limit}"
        if paginated and self.offset > 0:
            page += f" OFFSET {self.offset}"

        where = where_clause(self.conditions)
        where = f" {where}" if where else ""

        return (
            f"time_intervals AS ("
            f"SELECT DISTINCT {self.truncated()} AS interval_time "
            f"FROM {self.table}{where} "
            f"ORDER BY interval_time {self.order}{page})"
        )

    def aggregates_cte(self) -> str:
        columns = ", ".join(f"{expr} AS {name}" for expr, name in zip(self.aggregate_expressions(), self.aggregate_names()))
        return (
            f"interval_aggs AS ("
            f"SELECT {INTERVALS_ALIAS}.interval_time, {columns}, "
            f"MAX({qualified(SOURCE_ALIAS, self.time_column)}) AS max_time "
            f"FROM time_intervals {INTERVALS_ALIAS} "
            f"LEFT JOIN {self.table} {SOURCE_ALIAS} ON {self.truncated(SOURCE_ALIAS)} = {INTERVALS_ALIAS}.interval_time"
            f"{self.source_conditions('AND')} "
            f"GROUP BY {INTERVALS_ALIAS}.interval_time "
            f"HAVING {self.having()})"
        )

    def render(self) -> str:
        """Renders the query returning one representative row per bucket."""

        return f"WITH {self.intervals_cte(True)}, {self.aggregates_cte()} {self.strategy.select(self)}"

    def render_count(self) -> str:
        """Renders the query counting every non-empty bucket, ignoring limit and offset."""

        return f"WITH {self.intervals_cte(False)}, {self.aggregates_cte()} SELECT COUNT(*) AS total FROM interval_aggs"

    def representative_join(self, match: str) -> str:
        """FROM/JOIN/WHERE/ORDER BY tail shared by every representative-row selection."""

        return (
            f"FROM {self.table} {SOURCE_ALIAS} "
            f"JOIN interval_aggs {AGGREGATES_ALIAS} ON {self.truncated(SOURCE_ALIAS)} = {AGGREGATES_ALIAS}.interval_time AND {match}"
            f"{self.source_conditions('WHERE')} "
            f"ORDER BY {AGGREGATES_ALIAS}.interval_time {self.order}, {qualified(SOURCE_ALIAS, self.time_column)} DESC"
        )

    def merged_payload(self) -> str:
        """Source payload with every requested field replaced by its bucket aggregate."""

        payload = qualified(SOURCE_ALIAS, "payload")
        for path, name in zip(self.aggregation.fields, self.aggregate_names()):
            payload = f"jsonb_set({payload}, {json_path_array(path)}, to_jsonb({qualified(AGGREGATES_ALIAS, name)}))"
        return payload


##########     S T R A T E G I E S     ##########


class AggregationStrategy(ABC):
    """
    Per-function behaviour of the aggregation query.

    Attributes:
        function (str): SQL aggregate function name.
    """

    def __init__(self, function: str):
        self.function = function

    def aggregate(self, expression: str) -> str:
        return f"{self.function}({expression})"

    def non_empty(self, aggregate: str) -> str:
        """Condition keeping only buckets with at least one contributing row."""

        return f"{aggregate} IS NOT NULL"

    @abstractmethod
    def select(self, query: AggregationQuery) -> str:
        """Renders the representative-row stage."""

        pass


class SelectorStrategy(AggregationStrategy):
    """
    MIN/MAX: the representative row is a source row holding the bucket's aggregate.

    Rows are matched on the first field's value, ties go to the latest row.
    """

    def select(self, query: AggregationQuery) -> str:
        match = f"{query.value_expressions()[0]} = {qualified(AGGREGATES_ALIAS, query.aggregate_names()[0])}"

        if query.kind == MessageKind.SENML:
            columns = f"{SOURCE_ALIAS}.*"
        else:
            columns = (
                f"{SOURCE_ALIAS}.created, {SOURCE_ALIAS}.subtopic, {SOURCE_ALIAS}.publisher, {SOURCE_ALIAS}.protocol, "
                f"{query.merged_payload()} AS payload"
            )

        return f"SELECT DISTINCT ON ({AGGREGATES_ALIAS}.interval_time) {columns} {query.representative_join(match)}"


class SynthesizingStrategy(AggregationStrategy):
    """
    AVG/COUNT: the representative row is synthesized at the bucket start.

    Metadata comes from the bucket's latest row, the value (or the payload fields) from the aggregate.
    """

    def select(self, query: AggregationQuery) -> str:
        latest = qualified(AGGREGATES_ALIAS, "max_time")
        match = f"{qualified(SOURCE_ALIAS, query.time_column)} = {latest}"
        bucket = bucket_epoch_ns(qualified(AGGREGATES_ALIAS, "interval_time"))

        if query.kind == MessageKind.SENML:
            m = SOURCE_ALIAS
            columns = (
                f"{m}.subtopic, {m}.publisher, {m}.protocol, {m}.name, {m}.unit, "
                f"CAST({qualified(AGGREGATES_ALIAS, 'agg_value')} AS DOUBLE PRECISION) AS value, "
                f"CAST(NULL AS TEXT) AS string_value, CAST(NULL AS BOOLEAN) AS bool_value, "
                f"CAST(NULL AS TEXT) AS data_value, CAST(NULL AS DOUBLE PRECISION) AS sum, "
                f"{bucket} AS time, {m}.update_time"
            )
        else:
            columns = (
                f"{bucket} AS created, {SOURCE_ALIAS}.subtopic, {SOURCE_ALIAS}.publisher, {SOURCE_ALIAS}.protocol, "
                f"{query.merged_payload()} AS payload"
            )

        return f"SELECT DISTINCT ON ({AGGREGATES_ALIAS}.interval_time) {columns} {query.representative_join(match)}"


class CountStrategy(SynthesizingStrategy):
    """COUNT: like AVG, but a bucket is empty when it counts zero values."""

    def __init__(self):
        super().__init__("COUNT")

    def non_empty(self, aggregate: str) -> str:
        return f"{aggregate} > 0"


class AggregationStrategyRegistry:
    """
    Static registry of the aggregation strategies by function.
    """

    _registry: Dict[AggregationType, AggregationStrategy] = {}

    def __init__(self):
        raise TypeError("AggregationStrategyRegistry is a static class and cannot be instantiated")

    @staticmethod
    def register_strategy(agg_type: AggregationType, strategy: AggregationStrategy) -> None:
        AggregationStrategyRegistry._registry[agg_type] = strategy

    @staticmethod
    def get_strategy(agg_type: AggregationType | str | None) -> AggregationStrategy:
        """
        Retrieve the strategy of an aggregate function.

        Raises:
            InvalidQuery: If the function is unknown or has no registered strategy.
        """

        try:
            agg_type = AggregationType(agg_type)
        except ValueError:
            raise InvalidQuery(f"Invalid aggregation type {agg_type}")

        strategy = AggregationStrategyRegistry._registry.get(agg_type)
        if strategy is None:
            raise InvalidQuery(f"Aggregation type {agg_type.value} is not supported")

        return strategy


AggregationStrategyRegistry.register_strategy(AggregationType.MIN, SelectorStrategy("MIN"))
AggregationStrategyRegistry.register_strategy(AggregationType.MAX, SelectorStrategy("MAX"))
AggregationStrategyRegistry.register_strategy(AggregationType.AVG, SynthesizingStrategy("AVG"))
AggregationStrategyRegistry.register_strategy(AggregationType.COUNT, CountStrategy())


##########     Q U E R Y     F A C T O R I E S     ##########


def senml_aggregation_query(pm: SenMLPageMetadata) -> AggregationQuery:
    """
    Builds the aggregation query of a SenML page. A requested field restricts the
    aggregation to the records of that name.
    """

    conditions = senml_conditions(pm)
    if pm.aggregation.fields:
        conditions.add("name", "=", "agg_field", pm.aggregation.fields[0])

    return AggregationQuery(
        kind=MessageKind.SENML,
        table=SENML_TABLE,
        aggregation=pm.aggregation,
        conditions=conditions,
        direction=pm.dir,
        limit=pm.limit,
        offset=pm.offset,
    )


def json_aggregation_query(pm: JSONPageMetadata) -> AggregationQuery:
    """
    Builds the aggregation query of a JSON page, one aggregate per requested field.

    Raises:
        InvalidQuery: If no field is requested.
    """

    if not pm.aggregation.fields:
        raise InvalidQuery("JSON aggregation requires at least one field")

    return AggregationQuery(
        kind=MessageKind.JSON,
        table=quote_ident(pm.format),
        aggregation=pm.aggregation,
        conditions=json_conditions(pm),
        direction=pm.dir,
        limit=pm.limit,
        offset=pm.offset,
    )
