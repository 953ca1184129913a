###########EXTERNAL IMPORTS############

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

#######################################

#############LOCAL IMPORTS#############

#######################################


@dataclass
class Predicate:
    """
    Backend-neutral filter descriptor.

    Attributes:
        column (str): Column (or column expression) the predicate applies to.
        operator (str): Comparison operator, or "IS NOT NULL" for existence checks.
        param (Optional[str]): Name of the bound parameter, None for parameterless predicates.
    """

    column: str
    operator: str
    param: Optional[str] = None


@dataclass
class Conditions:
    """
    Predicates produced from a page query plus the values they bind.

    Attributes:
        predicates (List[Predicate]): Predicates, ANDed together.
        params (Dict[str, Any]): Bound parameter values keyed by parameter name.
    """

    predicates: List[Predicate] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)

    def add(self, column: str, operator: str, param: Optional[str] = None, value: Any = None) -> None:
        self.predicates.append(Predicate(column=column, operator=operator, param=param))
        if param is not None:
            self.params[param] = value


def quote_influx_ident(name: str) -> str:
    """Quotes an InfluxQL identifier (measurement, tag or field key)."""

    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


@dataclass
class InfluxQuery:
    measurement: str
    fields: List[str] = field(default_factory=list)
    where: List[str] = field(default_factory=list)
    group_by: List[str] = field(default_factory=list)
    fill: Optional[str] = None
    order: Optional[str] = None
    limit: int = 0
    offset: int = 0
    subquery: Optional["InfluxQuery"] = None

    def render(self) -> str:
        select = ", ".join(self.fields) if self.fields else "*"
        source = f"({self.subquery.render()})" if self.subquery is not None else quote_influx_ident(self.measurement)
        q = [f"SELECT {select}", f"FROM {source}"]
        if self.where:
            q.append(f"WHERE {' AND '.join(self.where)}")
        if self.group_by:
            q.append(f"GROUP BY {', '.join(self.group_by)}")
        if self.fill is not None:
            q.append(f"FILL({self.fill})")
        if self.order is not None:
            q.append(f"ORDER BY time {self.order}")
        if self.limit > 0:
            q.append(f"LIMIT {self.limit}")
        if self.offset > 0:
            q.append(f"OFFSET {self.offset}")
        return " ".join(q)
