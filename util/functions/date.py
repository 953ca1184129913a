###########EXTERNAL IMPORTS############

from typing import Any, Optional
import arrow

#######################################

#############LOCAL IMPORTS#############

#######################################

NS_PER_SECOND = 1_000_000_000

# Multipliers turning a numeric unix timestamp into seconds
UNIX_FORMATS = {
    "unix": 1,
    "unix_ms": 1_000,
    "unix_us": 1_000_000,
    "unix_ns": NS_PER_SECOND,
}


def to_nanoseconds(seconds: Optional[float]) -> Optional[int]:
    """
    Converts a canonical timestamp (float seconds) into the storage unit (integer nanoseconds).

    Args:
        seconds: Seconds since the epoch, or None.

    Returns:
        Optional[int]: Nanoseconds since the epoch, or None when no value was given.
    """

    if seconds is None:
        return None
    return int(round(seconds * NS_PER_SECOND))


def from_nanoseconds(nanoseconds: Optional[int]) -> Optional[float]:
    """
    Converts a stored timestamp (integer nanoseconds) back into float seconds.

    Args:
        nanoseconds: Nanoseconds since the epoch, or None.

    Returns:
        Optional[float]: Seconds since the epoch, or None when no value was given.
    """

    if nanoseconds is None:
        return None
    return nanoseconds / NS_PER_SECOND


def parse_timestamp(value: Any, time_format: str, location: Optional[str] = None) -> float:
    """
    Parses a timestamp taken from a message payload into float seconds.

    Numeric unix formats ("unix", "unix_ms", "unix_us", "unix_ns") accept numbers or numeric
    strings. Any other format is handed to arrow as a token format string (e.g.
    "YYYY-MM-DD HH:mm:ss"), interpreted in `location` when the string carries no offset.

    Args:
        value: Raw timestamp value.
        time_format: One of the unix formats or an arrow format string.
        location: IANA time zone name used for naive date strings. Defaults to UTC.

    Returns:
        float: Seconds since the epoch.

    Raises:
        ValueError: If the value cannot be parsed with the given format.
    """

    if time_format in UNIX_FORMATS:
        if isinstance(value, bool):
            raise ValueError(f"Invalid unix timestamp {value}")
        try:
            return float(value) / UNIX_FORMATS[time_format]
        except (TypeError, ValueError):
            raise ValueError(f"Invalid unix timestamp {value}")

    if not isinstance(value, str):
        raise ValueError(f"Timestamp {value} must be a string for format {time_format}")

    try:
        parsed = arrow.get(value, time_format, tzinfo=location or "UTC")
    except ValueError as e:
        raise ValueError(f"Timestamp {value} does not match format {time_format}: {e}")

    return parsed.float_timestamp
