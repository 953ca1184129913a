###########EXTERNAL IMPORTS############

from typing import Any, Dict, FrozenSet, Optional

#######################################

#############LOCAL IMPORTS#############

from db.exceptions import InvalidKey

#######################################

SEPARATOR = "/"
RESERVED_KEYS: FrozenSet[str] = frozenset({"publisher", "protocol", "subtopic", "channel"})


def flatten(nested: Dict[str, Any], separator: str = SEPARATOR) -> Dict[str, Any]:
    """
    Flattens a nested mapping into a single-level mapping with path-joined keys.

    {"a": {"b": 1}, "c": 2} becomes {"a/b": 1, "c": 2}. Empty nested
    mappings are kept as leaf values so that the flattening stays lossless.

    Args:
        nested: Mapping to flatten.
        separator: Path separator joining the key segments.

    Returns:
        Dict[str, Any]: The flattened mapping.

    Raises:
        InvalidKey: If any key, at any depth, contains the separator or equals a reserved field name.
    """

    flat: Dict[str, Any] = {}
    _flatten_into(flat, nested, None, separator)
    return flat


def _flatten_into(flat: Dict[str, Any], nested: Dict[str, Any], prefix: Optional[str], separator: str) -> None:
    for key, value in nested.items():
        if not isinstance(key, str):
            raise InvalidKey(f"Invalid payload key {key!r}: keys must be strings")
        if separator in key:
            raise InvalidKey(f"Invalid payload key '{key}': must not contain '{separator}'")
        if key in RESERVED_KEYS:
            raise InvalidKey(f"Invalid payload key '{key}': reserved field name")

        path = key if prefix is None else f"{prefix}{separator}{key}"
        if isinstance(value, dict) and value:
            _flatten_into(flat, value, path, separator)
        else:
            flat[path] = value


def parse_flat(flat: Dict[str, Any], separator: str = SEPARATOR) -> Dict[str, Any]:
    """
    Rebuilds a nested mapping from path-joined keys. Inverse of `flatten`.

    A key without separator becomes a top-level value, a key with separators builds or extends
    the intermediate mappings.

    Args:
        flat: Single-level mapping with path-joined keys.
        separator: Path separator.

    Returns:
        Dict[str, Any]: The nested mapping.

    Raises:
        InvalidKey: If two keys collide (a path is both a value and a parent of another value).
    """

    nested: Dict[str, Any] = {}

    for key, value in flat.items():
        parts = key.split(separator)
        current = nested
        for part in parts[:-1]:
            child = current.setdefault(part, {})
            if not isinstance(child, dict):
                raise InvalidKey(f"Key '{key}' collides with the value stored at '{part}'")
            current = child

        leaf = parts[-1]
        if isinstance(current.get(leaf), dict):
            raise InvalidKey(f"Key '{key}' collides with a nested object")
        current[leaf] = value

    return nested
