###########EXTERNAL IMPORTS############

from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional

#######################################

#############LOCAL IMPORTS#############

from db.exceptions import InvalidQuery
from model.messages import DEFAULT_JSON_FORMAT

#######################################


class Direction(str, Enum):
    """Sort direction of the time column."""

    ASC = "asc"
    DESC = "desc"


class Comparator(str, Enum):
    """Comparators accepted by the SenML value filter."""

    EQ = "eq"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"


COMPARATOR_OPERATORS: Dict[Comparator, str] = {
    Comparator.EQ: "=",
    Comparator.LT: "<",
    Comparator.LTE: "<=",
    Comparator.GT: ">",
    Comparator.GTE: ">=",
}


class AggregationType(str, Enum):
    """Aggregate functions computed per time bucket."""

    MIN = "min"
    MAX = "max"
    AVG = "avg"
    COUNT = "count"


class AggregationInterval(str, Enum):
    """Calendar units a time bucket is measured in."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


MAX_INTERVAL_VALUES: Dict[AggregationInterval, int] = {
    AggregationInterval.MINUTE: 60,
    AggregationInterval.HOUR: 24,
    AggregationInterval.DAY: 31,
    AggregationInterval.WEEK: 52,
    AggregationInterval.MONTH: 12,
    AggregationInterval.YEAR: 10,
}


@dataclass
class Aggregation:
    """
    Time-bucket aggregation request.

    Attributes:
        type (Optional[AggregationType]): Aggregate function.
        value (int): Bucket width, in `interval` units.
        interval (Optional[AggregationInterval]): Bucket unit.
        fields (List[str]): Dotted payload paths to aggregate (JSON) or the record name to restrict to (SenML).
    """

    type: Optional[AggregationType] = None
    value: int = 1
    interval: Optional[AggregationInterval] = None
    fields: List[str] = field(default_factory=list)

    def is_active(self) -> bool:
        return self.type is not None and self.interval is not None

    def validate(self) -> None:
        """
        Validates the bucket width against the unit limits.

        Raises:
            InvalidQuery: If the aggregation is active and its width is out of range.
        """

        if not self.is_active():
            return

        interval = AggregationInterval(self.interval)
        max_value = MAX_INTERVAL_VALUES[interval]
        if self.value < 1 or self.value > max_value:
            raise InvalidQuery(f"Invalid aggregation interval: {self.value} {interval.value} (allowed 1-{max_value})")

        for f in self.fields:
            if not f or any(not part for part in f.split(".")):
                raise InvalidQuery(f"Invalid aggregation field: '{f}'")


@dataclass
class PageMetadata:
    """
    Filters and pagination shared by SenML and JSON queries.

    Every filter left at None is absent. A limit of 0 means unbounded.
    Time bounds are inclusive, in seconds since the epoch.
    """

    offset: int = 0
    limit: int = 10
    subtopic: Optional[str] = None
    publisher: Optional[str] = None
    protocol: Optional[str] = None
    from_time: Optional[float] = None
    to_time: Optional[float] = None
    dir: Direction = Direction.DESC
    aggregation: Aggregation = field(default_factory=Aggregation)

    def validate(self) -> None:
        """
        Raises:
            InvalidQuery: If pagination, time range or aggregation parameters are invalid.
        """

        if self.offset < 0 or self.limit < 0:
            raise InvalidQuery(f"Offset and limit must be positive (offset={self.offset}, limit={self.limit})")

        if self.from_time is not None and self.to_time is not None and self.to_time < self.from_time:
            raise InvalidQuery("'to_time' must not be earlier than 'from_time'")

        self.aggregation.validate()


@dataclass
class SenMLPageMetadata(PageMetadata):
    """Page query over SenML messages."""

    name: Optional[str] = None
    value: Optional[float] = None
    comparator: Comparator = Comparator.EQ
    bool_value: Optional[bool] = None
    string_value: Optional[str] = None
    data_value: Optional[str] = None


@dataclass
class JSONPageMetadata(PageMetadata):
    """Page query over the JSON messages of one format."""

    format: str = DEFAULT_JSON_FORMAT
    filter: Optional[str] = None

    def validate(self) -> None:
        super().validate()

        if not self.format:
            raise InvalidQuery("JSON format name must not be empty")

        if self.filter is not None and any(not part for part in self.filter.split(".")):
            raise InvalidQuery(f"Invalid JSON filter path: '{self.filter}'")

        if self.aggregation.is_active() and not self.aggregation.fields:
            raise InvalidQuery("JSON aggregation requires at least one field")
