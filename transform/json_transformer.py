###########EXTERNAL IMPORTS############

import json
from typing import Any, Dict, List

#######################################

#############LOCAL IMPORTS#############

from db.exceptions import InvalidMessage
from model.messages import JSONMessage, JSONMessages, Message, TransformerProfile
from transform.flatten import flatten
import util.functions.date as date
import util.functions.objects as objects

#######################################


def extract_data(payload: Any, data_field: str) -> Any:
    """
    Descends into the payload along the dotted `data_field` path.

    Segments that do not exist are skipped, leaving the payload at the deepest matching level.
    """

    current = payload
    for key in data_field.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
    return current


def filter_fields(data: Dict[str, Any], data_filters: List[str]) -> Dict[str, Any]:
    """
    Keeps only the dotted paths listed in `data_filters`, preserving their nesting.

    Paths that are missing from the data are ignored. An empty filter list keeps everything.
    """

    if not data_filters:
        return data

    filtered: Dict[str, Any] = {}

    for path in data_filters:
        try:
            value = objects.get_nested(data, path)
        except KeyError:
            continue

        parts = path.split(".")
        target = filtered
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = value

    return filtered


def message_time(data: Dict[str, Any], profile: TransformerProfile, reception_time: float) -> float:
    """
    Returns the message time taken from the profile's time field, or the reception time.

    Raises:
        InvalidMessage: If the time field exists but cannot be parsed.
    """

    if not profile.time_field:
        return reception_time

    try:
        value = objects.get_nested(data, profile.time_field)
    except KeyError:
        return reception_time

    try:
        return date.parse_timestamp(value, profile.time_format, profile.time_location)
    except ValueError as e:
        raise InvalidMessage(f"Invalid time field '{profile.time_field}'", cause=e) from e


def transform(message: Message) -> JSONMessages:
    """
    Turns a raw JSON message into a batch of normalized JSON messages.

    The payload is either one object or an array of objects (one message each). The data
    object is located with the profile's `data_field`, reduced to its `data_filters` and
    timestamped from its `time_field`. Every payload is validated with `flatten` before the
    batch is returned, so a single bad record rejects the whole batch.

    Args:
        message: Raw message with a JSON payload.

    Returns:
        JSONMessages: Messages tagged with the profile's format name.

    Raises:
        InvalidMessage: If the payload cannot be decoded or a record is invalid.
        InvalidKey: If a payload key contains the path separator or is reserved.
    """

    profile = message.profile or TransformerProfile()

    try:
        payload = json.loads(message.payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidMessage("Failed to decode JSON payload", cause=e) from e

    if profile.data_field:
        payload = extract_data(payload, profile.data_field)

    if isinstance(payload, dict):
        records = [payload]
    elif isinstance(payload, list):
        records = payload
    else:
        raise InvalidMessage("JSON payload must be an object or an array of objects")

    messages: List[JSONMessage] = []
    for record in records:
        if not isinstance(record, dict):
            raise InvalidMessage("Invalid nested JSON object in payload array")

        data = filter_fields(record, profile.data_filters)
        flatten(data)

        messages.append(
            JSONMessage(
                created=message_time(record, profile, message.created),
                subtopic=message.subtopic,
                publisher=message.publisher,
                protocol=message.protocol,
                payload=data,
            )
        )

    return JSONMessages(format=profile.format, data=messages)
