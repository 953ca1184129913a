###########EXTERNAL IMPORTS############

from typing import Any, Dict, List

#######################################

#############LOCAL IMPORTS#############

from util.debug import LoggerManager
from consumers.consumer import Consumer
from db.exceptions import InvalidMessage, SaveFailed
from db.timedb import INFLUX_ERRORS, TimeDBClient, is_type_conflict
from model.messages import JSONMessage, JSONMessages, SenMLMessage
from transform.flatten import flatten
import util.functions.date as date

#######################################

SENML_MEASUREMENT = "messages"
JSON_CREATED_FIELD = "_created"


def field_value(key: str, value: Any) -> Any:
    """
    Converts a payload value into an InfluxDB field value.

    Numbers are stored as floats so that a field keeps one type whether the sender wrote 25 or 25.5.

    Raises:
        InvalidMessage: If the value cannot be stored as a field (arrays, empty objects).
    """

    if isinstance(value, bool) or isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    raise InvalidMessage(f"Payload field '{key}' holds an unsupported value {value!r}")


def senml_point(message: SenMLMessage) -> Dict[str, Any]:
    """Builds the point of a SenML record: metadata as tags, unit and values as fields."""

    message.validate()

    fields: Dict[str, Any] = {"unit": message.unit, "update_time": float(message.update_time)}
    for kind in ("value", "sum"):
        value = getattr(message, kind)
        if value is not None:
            fields[kind] = float(value)
    for kind in ("string_value", "bool_value", "data_value"):
        value = getattr(message, kind)
        if value is not None:
            fields[kind] = value

    return {
        "measurement": SENML_MEASUREMENT,
        "tags": {
            "subtopic": message.subtopic,
            "publisher": message.publisher,
            "protocol": message.protocol,
            "name": message.name,
        },
        "fields": fields,
        "time": date.to_nanoseconds(message.time),
    }


def json_point(format: str, message: JSONMessage, index: int) -> Dict[str, Any]:
    """
    Builds the point of a JSON message: metadata as tags, the flattened payload as fields.

    The point time is offset by the message's index in its batch so that messages of one
    batch sharing a timestamp do not overwrite each other. The exact creation time is kept
    in its own field.

    Raises:
        InvalidKey: If a payload key contains the path separator or is reserved.
        InvalidMessage: If a payload value cannot be stored as a field.
    """

    fields = {key: field_value(key, value) for key, value in flatten(message.payload).items() if value is not None}
    if JSON_CREATED_FIELD in fields:
        raise InvalidMessage(f"Payload field '{JSON_CREATED_FIELD}' is reserved")
    fields[JSON_CREATED_FIELD] = float(message.created)

    return {
        "measurement": format,
        "tags": {
            "subtopic": message.subtopic,
            "publisher": message.publisher,
            "protocol": message.protocol,
        },
        "fields": fields,
        "time": date.to_nanoseconds(message.created) + index,
    }


def write_points(client: TimeDBClient, points: List[Dict[str, Any]]) -> None:
    """
    Writes points in one request and classifies the failures.

    Raises:
        InvalidMessage: If a field value conflicts with the stored field type.
        SaveFailed: On any other backend failure.
    """

    try:
        client.write_points(points)
    except INFLUX_ERRORS as e:
        if is_type_conflict(e):
            raise InvalidMessage("Field type conflict", cause=e) from e
        raise SaveFailed("Failed to write points", cause=e) from e


class InfluxWriter(Consumer):
    """
    Writes SenML and JSON messages to InfluxDB.

    Every message of a batch is converted to a point before anything is sent, then the
    whole batch is written in one request.

    Attributes:
        client (TimeDBClient): Time-series client.
    """

    def __init__(self, client: TimeDBClient):
        self.client = client

    def save_senml(self, messages: List[SenMLMessage]) -> None:
        logger = LoggerManager.get_logger(__name__)

        points = [senml_point(m) for m in messages]
        try:
            write_points(self.client, points)
        except Exception as e:
            logger.exception(f"Failed to save {len(points)} SenML messages: {e}")
            raise

    def save_json(self, messages: JSONMessages) -> None:
        logger = LoggerManager.get_logger(__name__)

        points = [json_point(messages.format, m, i) for i, m in enumerate(messages.data)]
        try:
            write_points(self.client, points)
        except Exception as e:
            logger.exception(f"Failed to save {len(points)} JSON messages of format '{messages.format}': {e}")
            raise
