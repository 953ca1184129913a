###########EXTERNAL IMPORTS############

from enum import Enum
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

#######################################

#############LOCAL IMPORTS#############

from db.exceptions import InvalidMessage

#######################################

SENML_CONTENT_TYPE = "application/senml+json"
JSON_CONTENT_TYPE = "application/json"
DEFAULT_JSON_FORMAT = "json"


@dataclass
class SenMLMessage:
    """
    Normalized SenML record as stored by the writers.

    Attributes:
        publisher (str): Identifier of the thing that published the message.
        subtopic (str): Optional channel subtopic.
        protocol (str): Protocol the message arrived through (e.g. "http", "mqtt").
        name (str): Fully resolved record name (base name + name).
        unit (str): Measurement unit.
        time (float): Record time in seconds since the epoch.
        update_time (float): Update interval in seconds.
        value (Optional[float]): Numeric value.
        string_value (Optional[str]): String value.
        bool_value (Optional[bool]): Boolean value.
        data_value (Optional[str]): Base64 encoded data value.
        sum (Optional[float]): Integrated sum of the value over time.
    """

    publisher: str = ""
    subtopic: str = ""
    protocol: str = ""
    name: str = ""
    unit: str = ""
    time: float = 0.0
    update_time: float = 0.0
    value: Optional[float] = None
    string_value: Optional[str] = None
    bool_value: Optional[bool] = None
    data_value: Optional[str] = None
    sum: Optional[float] = None

    def value_kinds(self) -> List[str]:
        """Returns the names of the value fields set on this record."""

        return [k for k in ("value", "string_value", "bool_value", "data_value") if getattr(self, k) is not None]

    def validate(self) -> None:
        """
        Checks the single value-kind invariant.

        Raises:
            InvalidMessage: If more than one value field is set.
        """

        kinds = self.value_kinds()
        if len(kinds) > 1:
            raise InvalidMessage(f"SenML record {self.name} sets more than one value field: {', '.join(kinds)}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class JSONMessage:
    """
    Normalized JSON message with an arbitrary nested payload.

    Attributes:
        created (float): Message time in seconds since the epoch.
        subtopic (str): Optional channel subtopic.
        publisher (str): Identifier of the publishing thing.
        protocol (str): Protocol the message arrived through.
        payload (Dict[str, Any]): Nested payload.
    """

    created: float = 0.0
    subtopic: str = ""
    publisher: str = ""
    protocol: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "JSONMessage":
        """
        Builds a JSON message from its decoded map representation.

        Raises:
            InvalidMessage: If the map does not hold a JSON message.
        """

        payload = data.get("payload")
        if not isinstance(payload, dict) or "created" not in data:
            raise InvalidMessage(f"Not a JSON message: {data}")

        return JSONMessage(
            created=float(data["created"]),
            subtopic=data.get("subtopic") or "",
            publisher=data.get("publisher") or "",
            protocol=data.get("protocol") or "",
            payload=payload,
        )


@dataclass
class JSONMessages:
    """
    Batch of JSON messages sharing one format (and therefore one table).

    Attributes:
        format (str): Format name, used as the table or measurement name.
        data (List[JSONMessage]): Messages of the batch.
    """

    format: str = DEFAULT_JSON_FORMAT
    data: List[JSONMessage] = field(default_factory=list)


@dataclass
class TransformerProfile:
    """
    Per-channel options describing how a raw JSON payload is normalized.

    Attributes:
        format (str): Format name of the produced messages.
        data_field (Optional[str]): Dotted path to the object holding the message data.
        data_filters (List[str]): Dotted keys to keep from the data object. Empty keeps everything.
        time_field (Optional[str]): Dotted path to the field holding the message time.
        time_format (str): Format of the time field ("unix", "unix_ms", "unix_us", "unix_ns" or an arrow format).
        time_location (Optional[str]): Time zone of naive time strings.
    """

    format: str = DEFAULT_JSON_FORMAT
    data_field: Optional[str] = None
    data_filters: List[str] = field(default_factory=list)
    time_field: Optional[str] = None
    time_format: str = "unix"
    time_location: Optional[str] = None


@dataclass
class Message:
    """
    Raw message handed over by the delivery mechanism.

    Attributes:
        publisher (str): Identifier of the publishing thing.
        subtopic (str): Channel subtopic.
        protocol (str): Protocol the message arrived through.
        content_type (str): Payload content type.
        payload (bytes): Raw payload.
        created (float): Reception time in seconds since the epoch.
        profile (Optional[TransformerProfile]): JSON normalization options.
    """

    publisher: str
    subtopic: str
    protocol: str
    content_type: str
    payload: bytes
    created: float
    profile: Optional[TransformerProfile] = None


@dataclass
class MessagesPage:
    """
    One page of read messages.

    Attributes:
        total (int): Number of messages (or buckets) matching the query, ignoring limit and offset.
        messages (List[Any]): SenMLMessage instances or JSON message maps, in query order.
    """

    total: int = 0
    messages: List[Any] = field(default_factory=list)


class MessageKind(str, Enum):
    """The two canonical message shapes."""

    SENML = "senml"
    JSON = "json"
