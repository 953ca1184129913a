###########EXTERNAL IMPORTS############

import json
from typing import Any, Dict, List, Optional

#######################################

#############LOCAL IMPORTS#############

from db.exceptions import InvalidMessage
from model.messages import Message, SenMLMessage

#######################################

# Resolved times below 2**28 seconds are relative to the reception time
RELATIVE_TIME_LIMIT = 2**28

VALUE_KEYS = ("v", "vs", "vb", "vd")


def _number(record: Dict[str, Any], key: str) -> Optional[float]:
    value = record.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidMessage(f"SenML field '{key}' must be a number, got {value!r}")
    return float(value)


def _string(record: Dict[str, Any], key: str) -> Optional[str]:
    value = record.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidMessage(f"SenML field '{key}' must be a string, got {value!r}")
    return value


def decode(payload: bytes) -> List[Dict[str, Any]]:
    """
    Decodes a SenML JSON payload into its list of raw records.

    Raises:
        InvalidMessage: If the payload is not a non-empty JSON array of objects.
    """

    try:
        records = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidMessage("Failed to decode SenML payload", cause=e) from e

    if not isinstance(records, list) or not records:
        raise InvalidMessage("SenML payload must be a non-empty array of records")

    if not all(isinstance(r, dict) for r in records):
        raise InvalidMessage("SenML payload records must be objects")

    return records


def normalize(records: List[Dict[str, Any]], reception_time: float) -> List[Dict[str, Any]]:
    """
    Resolves SenML base fields into self-contained records.

    Base name, base time, base unit, base value and base sum apply to the record that declares
    them and to every following record until redefined. A resolved time below 2**28 is an
    offset from `reception_time`, so a record without any time gets the reception time.

    Args:
        records: Raw SenML records.
        reception_time: Time the message was received, in seconds.

    Returns:
        List[Dict[str, Any]]: Records with keys n, u, t, ut, v, vs, vb, vd, s.

    Raises:
        InvalidMessage: If a record has no name, no value, or more than one value kind.
    """

    base_name = ""
    base_time = 0.0
    base_unit = ""
    base_value = 0.0
    base_sum = 0.0

    resolved: List[Dict[str, Any]] = []

    for record in records:
        if "bn" in record:
            base_name = _string(record, "bn") or ""
        if "bt" in record:
            base_time = _number(record, "bt") or 0.0
        if "bu" in record:
            base_unit = _string(record, "bu") or ""
        if "bv" in record:
            base_value = _number(record, "bv") or 0.0
        if "bs" in record:
            base_sum = _number(record, "bs") or 0.0

        name = base_name + (_string(record, "n") or "")
        if not name:
            raise InvalidMessage("SenML record has no name")

        kinds = [k for k in VALUE_KEYS if record.get(k) is not None]
        if len(kinds) > 1:
            raise InvalidMessage(f"SenML record {name} has more than one value: {', '.join(kinds)}")
        if not kinds and record.get("s") is None:
            raise InvalidMessage(f"SenML record {name} has neither value nor sum")

        time = base_time + (_number(record, "t") or 0.0)
        if time < RELATIVE_TIME_LIMIT:
            time = reception_time + time

        value = _number(record, "v")
        total = _number(record, "s")

        vb = record.get("vb")
        if vb is not None and not isinstance(vb, bool):
            raise InvalidMessage(f"SenML field 'vb' must be a boolean, got {vb!r}")

        resolved.append({
            "n": name,
            "u": _string(record, "u") or base_unit,
            "t": time,
            "ut": _number(record, "ut") or 0.0,
            "v": base_value + value if value is not None else None,
            "vs": _string(record, "vs"),
            "vb": vb,
            "vd": _string(record, "vd"),
            "s": base_sum + total if total is not None else None,
        })

    return resolved


def transform(message: Message) -> List[SenMLMessage]:
    """
    Turns a raw SenML message into normalized SenML records carrying the message metadata.

    Args:
        message: Raw message with a SenML JSON payload.

    Returns:
        List[SenMLMessage]: One record per SenML entry, in payload order.

    Raises:
        InvalidMessage: If the payload is not valid SenML.
    """

    records = normalize(decode(message.payload), message.created)

    return [
        SenMLMessage(
            publisher=message.publisher,
            subtopic=message.subtopic,
            protocol=message.protocol,
            name=r["n"],
            unit=r["u"],
            time=r["t"],
            update_time=r["ut"],
            value=r["v"],
            string_value=r["vs"],
            bool_value=r["vb"],
            data_value=r["vd"],
            sum=r["s"],
        )
        for r in records
    ]
