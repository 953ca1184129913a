###########EXTERNAL IMPORTS############

import pytest

#######################################

#############LOCAL IMPORTS#############

from db.exceptions import InvalidKey, InvalidMessage
from transform.flatten import flatten, parse_flat

#######################################


def test_flatten_joins_nested_keys():
    nested = {"a": {"b": 1, "c": {"d": True}}, "e": "x"}
    assert flatten(nested) == {"a/b": 1, "a/c/d": True, "e": "x"}


def test_parse_flat_rebuilds_nesting():
    nested = {"weather": {"temperature": 21.5, "wind": {"speed": 3, "dir": "N"}}, "ok": False, "tags": [1, 2]}
    assert parse_flat(flatten(nested)) == nested


def test_empty_objects_survive_the_round_trip():
    nested = {"a": {}, "b": {"c": {}}}
    flat = flatten(nested)
    assert flat == {"a": {}, "b/c": {}}
    assert parse_flat(flat) == nested


def test_custom_separator():
    assert flatten({"a": {"b": 1}}, separator=".") == {"a.b": 1}
    assert parse_flat({"a.b": 1}, separator=".") == {"a": {"b": 1}}


@pytest.mark.parametrize(
    "payload",
    [
        {"a/b": 1},
        {"outer": {"in/ner": 1}},
        {"publisher": "x"},
        {"deep": {"deeper": {"channel": 1}}},
        {1: "not a string"},
    ],
)
def test_flatten_rejects_bad_keys_at_any_depth(payload):
    with pytest.raises(InvalidKey):
        flatten(payload)


def test_invalid_key_is_an_invalid_message():
    with pytest.raises(InvalidMessage):
        flatten({"subtopic": 1})


def test_parse_flat_rejects_colliding_keys():
    with pytest.raises(InvalidKey):
        parse_flat({"a": 1, "a/b": 2})

    with pytest.raises(InvalidKey):
        parse_flat({"a/b": 2, "a": 1})


@pytest.mark.parametrize(
    "nested, flat",
    [
        ({"": {"x": 1}}, {"/x": 1}),
        ({"": {"x": 1}, "x": 2}, {"/x": 1, "x": 2}),
        ({"a": {"": 1}}, {"a/": 1}),
    ],
)
def test_empty_keys_keep_their_level(nested, flat):
    assert flatten(nested) == flat
    assert parse_flat(flat) == nested
