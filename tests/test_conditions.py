###########EXTERNAL IMPORTS############

import pytest

#######################################

#############LOCAL IMPORTS#############

from model.page import Comparator, JSONPageMetadata, SenMLPageMetadata
from readers.conditions import (
    comparator_operator,
    json_conditions,
    json_path,
    quote_ident,
    quote_literal,
    senml_conditions,
    where_clause,
)

#######################################


def test_quoting_escapes_quotes_and_percent():
    assert quote_literal("it's 100%") == "'it''s 100%%'"
    assert quote_ident('we"ird%') == '"we""ird%%"'


def test_json_path():
    assert json_path("a") == "payload->>'a'"
    assert json_path("a.b.c", "m") == "m.payload->'a'->'b'->>'c'"


@pytest.mark.parametrize(
    "comparator, operator",
    [
        (Comparator.GT, ">"),
        ("lt", "<"),
        ("lte", "<="),
        ("ge", ">="),
        ("bogus", "="),
        (None, "="),
    ],
)
def test_comparator_operator(comparator, operator):
    assert comparator_operator(comparator) == operator


def test_senml_conditions_keep_falsy_filters():
    pm = SenMLPageMetadata(publisher="p1", value=0.0, comparator=Comparator.GTE, bool_value=False, from_time=10.5)

    conditions = senml_conditions(pm)

    assert where_clause(conditions) == (
        "WHERE publisher = %(publisher)s AND value >= %(value)s AND bool_value = %(bool_value)s AND time >= %(from)s"
    )
    assert conditions.params == {"publisher": "p1", "value": 0.0, "bool_value": False, "from": 10_500_000_000}


def test_senml_conditions_empty_string_filters():
    conditions = senml_conditions(SenMLPageMetadata(subtopic="", string_value=""))

    assert where_clause(conditions) == "WHERE subtopic = %(subtopic)s AND string_value = %(string_value)s"


def test_no_filters_render_no_where_clause():
    assert where_clause(senml_conditions(SenMLPageMetadata())) == ""


def test_json_filter_is_an_existence_check():
    pm = JSONPageMetadata(format="weather", protocol="http", filter="a.b", to_time=2.0)

    conditions = json_conditions(pm)

    assert where_clause(conditions, "m") == (
        "WHERE m.protocol = %(protocol)s AND m.payload->'a'->>'b' IS NOT NULL AND m.created <= %(to)s"
    )
    assert conditions.params == {"protocol": "http", "to": 2_000_000_000}
