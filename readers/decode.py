###########EXTERNAL IMPORTS############

from typing import Any, Dict

#######################################

#############LOCAL IMPORTS#############

from model.messages import SenMLMessage
import util.functions.date as date

#######################################


def decode_senml(row: Dict[str, Any]) -> SenMLMessage:
    """Decodes a stored SenML row or point (time in nanoseconds) into a SenML message."""

    return SenMLMessage(
        publisher=row.get("publisher") or "",
        subtopic=row.get("subtopic") or "",
        protocol=row.get("protocol") or "",
        name=row.get("name") or "",
        unit=row.get("unit") or "",
        time=date.from_nanoseconds(row["time"]),
        update_time=row.get("update_time") or 0.0,
        value=row.get("value"),
        string_value=row.get("string_value"),
        bool_value=row.get("bool_value"),
        data_value=row.get("data_value"),
        sum=row.get("sum"),
    )


def decode_json(row: Dict[str, Any]) -> Dict[str, Any]:
    """Decodes a stored JSON format row (created in nanoseconds) into a JSON message map."""

    return {
        "created": date.from_nanoseconds(row["created"]),
        "subtopic": row.get("subtopic") or "",
        "publisher": row.get("publisher") or "",
        "protocol": row.get("protocol") or "",
        "payload": row.get("payload") or {},
    }
