###########EXTERNAL IMPORTS############

from typing import Any, Dict, Type, TypeVar
from enum import Enum
import os

#######################################

#############LOCAL IMPORTS#############

#######################################

E = TypeVar("E", bound=Enum)  # Generic Enum Variable


def require_env_variable(key: str) -> str:
    """
    Returns the value of the environment variable for the given key.
    Raises:
        KeyError: If the key is not found
    """

    value = os.getenv(key)
    if value is None:
        raise KeyError(f"Key {key} was not found in the environment")

    return value


def convert_str_to_enum(str_value: str, enum: Type[E]) -> E:
    """
    Converts a string to an enum member, matching either the member value or its name.

    Args:
        str_value (str): The string representation of the enum value.
        enum (Type[E]): The enum type to convert to.

    Returns:
        E: The corresponding enum value.

    Raises:
        ValueError: If the string does not match any enum value or name.
    """

    try:
        return enum(str_value)
    except ValueError:
        pass

    try:
        return enum[str_value.upper()]
    except KeyError:
        raise ValueError(f"Invalid {enum.__name__}: {str_value}. Must be one of: {[e.value for e in enum]}")


def get_nested(data: Dict[str, Any], path: str, separator: str = ".") -> Any:
    """
    Walks a nested mapping following a separator-joined path.

    Args:
        data: Mapping to descend into.
        path: Path such as "a.b.c".
        separator: Path separator.

    Returns:
        Any: The value found at the path.

    Raises:
        KeyError: If any path segment is missing or descends into a non-mapping.
    """

    current: Any = data
    for part in path.split(separator):
        if not isinstance(current, dict) or part not in current:
            raise KeyError(f"Path {path} not found")
        current = current[part]
    return current
