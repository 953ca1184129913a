###########EXTERNAL IMPORTS############

from typing import List, Optional

#######################################

#############LOCAL IMPORTS#############

from model.db import Conditions, Predicate
from model.page import COMPARATOR_OPERATORS, Comparator, JSONPageMetadata, PageMetadata, SenMLPageMetadata
import util.functions.date as date

#######################################

SENML_TABLE = "senml"
SENML_TIME_COLUMN = "time"
JSON_TIME_COLUMN = "created"
PAYLOAD_COLUMN = "payload"
EXISTS_OPERATOR = "IS NOT NULL"


def quote_literal(value: str) -> str:
    """Quotes a string literal for SQL executed with bound (pyformat) parameters."""

    return "'" + value.replace("'", "''").replace("%", "%%") + "'"


def quote_ident(name: str) -> str:
    """Quotes an identifier (table name) for SQL executed with bound (pyformat) parameters."""

    return '"' + name.replace('"', '""').replace("%", "%%") + '"'


def json_path(path: str, alias: Optional[str] = None, column: str = PAYLOAD_COLUMN) -> str:
    """
    Compiles a dotted payload path into a JSONB accessor chain ending in a text extraction.

    "a" compiles to payload->>'a' and "a.b.c" to payload->'a'->'b'->>'c'.

    Args:
        path: Dotted path into the payload.
        alias: Optional table alias prefixed to the column.
        column: JSONB column holding the payload.

    Returns:
        str: SQL expression yielding the value at the path as text.
    """

    parts = path.split(".")
    expr = f"{alias}.{column}" if alias else column
    for part in parts[:-1]:
        expr += f"->{quote_literal(part)}"
    return expr + f"->>{quote_literal(parts[-1])}"


def comparator_operator(comparator: Optional[Comparator | str]) -> str:
    """Maps a value comparator to its SQL operator. Unknown or missing comparators compare for equality."""

    if comparator is None:
        return "="
    if isinstance(comparator, str) and not isinstance(comparator, Comparator):
        comparator = "gte" if comparator == "ge" else comparator
        try:
            comparator = Comparator(comparator)
        except ValueError:
            return "="
    return COMPARATOR_OPERATORS.get(comparator, "=")


def _common_conditions(pm: PageMetadata, conditions: Conditions) -> None:
    for column in ("subtopic", "publisher", "protocol"):
        value = getattr(pm, column)
        if value is not None:
            conditions.add(column, "=", column, value)


def _time_conditions(pm: PageMetadata, time_column: str, conditions: Conditions) -> None:
    if pm.from_time is not None:
        conditions.add(time_column, ">=", "from", date.to_nanoseconds(pm.from_time))
    if pm.to_time is not None:
        conditions.add(time_column, "<=", "to", date.to_nanoseconds(pm.to_time))


def senml_conditions(pm: SenMLPageMetadata) -> Conditions:
    """
    Builds the predicates of a SenML page query.

    Time bounds are bound in nanoseconds, the storage unit.
    """

    conditions = Conditions()
    _common_conditions(pm, conditions)

    if pm.name is not None:
        conditions.add("name", "=", "name", pm.name)
    if pm.value is not None:
        conditions.add("value", comparator_operator(pm.comparator), "value", pm.value)
    if pm.bool_value is not None:
        conditions.add("bool_value", "=", "bool_value", pm.bool_value)
    if pm.string_value is not None:
        conditions.add("string_value", "=", "string_value", pm.string_value)
    if pm.data_value is not None:
        conditions.add("data_value", "=", "data_value", pm.data_value)

    _time_conditions(pm, SENML_TIME_COLUMN, conditions)
    return conditions


def json_conditions(pm: JSONPageMetadata) -> Conditions:
    """
    Builds the predicates of a JSON page query.

    The payload filter path becomes an existence check on the compiled JSONB accessor.
    """

    conditions = Conditions()
    _common_conditions(pm, conditions)

    if pm.filter:
        conditions.add(json_path(pm.filter), EXISTS_OPERATOR)

    _time_conditions(pm, JSON_TIME_COLUMN, conditions)
    return conditions


def render_predicate(predicate: Predicate, alias: Optional[str] = None) -> str:
    column = f"{alias}.{predicate.column}" if alias else predicate.column
    if predicate.param is None:
        return f"{column} {predicate.operator}"
    return f"{column} {predicate.operator} %({predicate.param})s"


def render_conditions(predicates: List[Predicate], alias: Optional[str] = None) -> str:
    """Renders predicates as an AND-joined SQL fragment, empty when there are none."""

    return " AND ".join(render_predicate(p, alias) for p in predicates)


def where_clause(conditions: Conditions, alias: Optional[str] = None) -> str:
    """Renders the WHERE clause of the conditions, or an empty string."""

    rendered = render_conditions(conditions.predicates, alias)
    return f"WHERE {rendered}" if rendered else ""
