###########EXTERNAL IMPORTS############

import pytest
from influxdb.exceptions import InfluxDBClientError, InfluxDBServerError

#######################################

#############LOCAL IMPORTS#############

from conftest import DummyTimeDB
from db.exceptions import DeleteFailed, InvalidMessage, InvalidQuery, ReadFailed, SaveFailed
from model.messages import JSONMessage, JSONMessages, SenMLMessage
from model.page import Aggregation, AggregationInterval, AggregationType, Comparator, Direction, JSONPageMetadata, SenMLPageMetadata
from readers.influxdb import InfluxJSONRepository, InfluxRepository, InfluxSenMLRepository
from writers.influxdb import InfluxWriter, json_point, senml_point

#######################################

SENML_POINT = {
    "time": 1700000000000000000,
    "publisher": "p1",
    "subtopic": "s",
    "protocol": "mqtt",
    "name": "temp",
    "unit": "Cel",
    "value": 21.5,
    "sum": None,
    "string_value": None,
    "bool_value": None,
    "data_value": None,
    "update_time": 0.0,
}


def temperature() -> SenMLMessage:
    return SenMLMessage(publisher="p1", subtopic="s", protocol="mqtt", name="temp", unit="Cel", time=1700000000.0, value=21)


##########     W R I T E R     ##########


def test_senml_point():
    assert senml_point(temperature()) == {
        "measurement": "messages",
        "tags": {"subtopic": "s", "publisher": "p1", "protocol": "mqtt", "name": "temp"},
        "fields": {"unit": "Cel", "update_time": 0.0, "value": 21.0},
        "time": 1700000000000000000,
    }


def test_json_point_flattens_payload():
    message = JSONMessage(created=1700000000.0, publisher="p1", protocol="http", payload={"a": {"b": 1}, "c": "x", "d": None})

    point = json_point("weather", message, 2)

    assert point["measurement"] == "weather"
    assert point["fields"] == {"a/b": 1.0, "c": "x", "_created": 1700000000.0}
    assert point["time"] == 1700000000000000002


@pytest.mark.parametrize("payload", [{"list": [1, 2]}, {"empty": {}}, {"_created": 1}])
def test_json_point_rejects_unstorable_fields(payload):
    with pytest.raises(InvalidMessage):
        json_point("weather", JSONMessage(created=1.0, payload=payload), 0)


def test_writer_sends_one_batch():
    client = DummyTimeDB()
    messages = JSONMessages(format="weather", data=[JSONMessage(created=1.0, payload={"t": i}) for i in range(3)])

    InfluxWriter(client).consume(messages)

    assert len(client.written) == 1
    assert [p["time"] for p in client.written[0]] == [1000000000, 1000000001, 1000000002]


def test_writer_rejects_batch_before_sending():
    client = DummyTimeDB()

    with pytest.raises(InvalidMessage):
        InfluxWriter(client).save_senml([temperature(), SenMLMessage(name="x", value=1, string_value="y")])

    assert client.written == []


@pytest.mark.parametrize(
    "error, expected",
    [
        (InfluxDBClientError('{"error":"partial write: field type conflict"}', 400), InvalidMessage),
        (InfluxDBServerError("timeout"), SaveFailed),
    ],
)
def test_write_errors_are_classified(error, expected):
    with pytest.raises(expected):
        InfluxWriter(DummyTimeDB(error=error)).save_senml([temperature()])


##########     R E A D E R S     ##########


def test_list_senml():
    client = DummyTimeDB(results=[[SENML_POINT], [{"time": 0, "count": 7}]])

    page = InfluxSenMLRepository(client).retrieve(SenMLPageMetadata(publisher="p1", from_time=1700000000.0))

    assert page.total == 7
    assert page.messages == [
        SenMLMessage(publisher="p1", subtopic="s", protocol="mqtt", name="temp", unit="Cel", time=1700000000.0, value=21.5)
    ]

    (query, params), (count, _) = client.queries
    assert query == 'SELECT * FROM "messages" WHERE time >= 1700000000000000000 AND "publisher" = $publisher ORDER BY time DESC LIMIT 10'
    assert count == 'SELECT COUNT("update_time") FROM "messages" WHERE time >= 1700000000000000000 AND "publisher" = $publisher'
    assert params == {"publisher": "p1"}


def test_list_senml_value_filter_and_offset():
    client = DummyTimeDB()

    InfluxSenMLRepository(client).retrieve(SenMLPageMetadata(value=0.0, comparator=Comparator.LT, offset=20, dir=Direction.ASC))

    query, params = client.queries[0]
    assert query == 'SELECT * FROM "messages" WHERE "value" < $value ORDER BY time ASC LIMIT 10 OFFSET 20'
    assert params == {"value": 0.0}


def test_offset_without_limit():
    aggregation = Aggregation(type=AggregationType.AVG, value=1, interval=AggregationInterval.DAY)
    client = DummyTimeDB()
    repo = InfluxSenMLRepository(client)

    repo.retrieve(SenMLPageMetadata(limit=0, offset=5))
    repo.retrieve(SenMLPageMetadata(limit=0, offset=5, aggregation=aggregation))

    listed, _, aggregated, count = [query for query, _ in client.queries]
    assert listed == 'SELECT * FROM "messages" ORDER BY time DESC OFFSET 5'
    assert aggregated.endswith("GROUP BY time(1d) FILL(none) ORDER BY time DESC OFFSET 5")
    assert "OFFSET" not in count


def test_repository_hooks_are_abstract():
    with pytest.raises(TypeError):
        InfluxRepository(DummyTimeDB())


def test_list_json_unflattens_fields():
    point = {
        "time": 1700000000000000002,
        "publisher": "p1",
        "subtopic": "",
        "protocol": "http",
        "a/b": 1.0,
        "c": None,
        "_created": 1700000000.0,
    }
    client = DummyTimeDB(results=[[point], [{"time": 0, "count": 1}]])

    page = InfluxJSONRepository(client).retrieve(JSONPageMetadata(format="weather"))

    assert page.messages == [{"created": 1700000000.0, "subtopic": "", "publisher": "p1", "protocol": "http", "payload": {"a": {"b": 1.0}}}]
    assert client.queries[1][0] == 'SELECT COUNT("_created") FROM "weather"'


def test_json_filter_is_unsupported():
    with pytest.raises(InvalidQuery):
        InfluxJSONRepository(DummyTimeDB()).retrieve(JSONPageMetadata(filter="a.b"))


def test_json_average_by_hour():
    aggregation = Aggregation(type=AggregationType.AVG, value=1, interval=AggregationInterval.HOUR, fields=["a.b"])
    client = DummyTimeDB(results=[[{"time": 1700000000000000000, "a/b": 2.5}], [{"time": 0, "count": 1}]])

    page = InfluxJSONRepository(client).retrieve(JSONPageMetadata(format="weather", aggregation=aggregation))

    (query, _), (count, _) = client.queries
    assert query == 'SELECT MEAN("a/b") AS "a/b" FROM "weather" GROUP BY time(1h) FILL(none) ORDER BY time DESC LIMIT 10'
    assert count == 'SELECT COUNT("a/b") FROM (SELECT MEAN("a/b") AS "a/b" FROM "weather" GROUP BY time(1h) FILL(none))'
    assert page.total == 1
    assert page.messages == [{"created": 1700000000.0, "subtopic": "", "publisher": "", "protocol": "", "payload": {"a": {"b": 2.5}}}]


def test_senml_max_per_record_name():
    aggregation = Aggregation(type=AggregationType.MAX, value=5, interval=AggregationInterval.MINUTE, fields=["temp"])
    client = DummyTimeDB(results=[[{"time": 1700000000000000000, "value": 30.0}], [{"time": 0, "count": 1}]])

    page = InfluxSenMLRepository(client).retrieve(SenMLPageMetadata(publisher="p1", dir=Direction.ASC, aggregation=aggregation))

    query, params = client.queries[0]
    assert query == (
        'SELECT MAX("value") AS "value" FROM "messages" WHERE "publisher" = $publisher AND "name" = $agg_field '
        "GROUP BY time(5m) FILL(none) ORDER BY time ASC LIMIT 10"
    )
    assert params == {"publisher": "p1", "agg_field": "temp"}
    assert page.messages == [SenMLMessage(publisher="p1", name="temp", time=1700000000.0, value=30.0)]


def test_monthly_buckets_are_unsupported():
    aggregation = Aggregation(type=AggregationType.AVG, value=1, interval=AggregationInterval.MONTH)

    with pytest.raises(InvalidQuery):
        InfluxSenMLRepository(DummyTimeDB()).retrieve(SenMLPageMetadata(aggregation=aggregation))


def test_missing_database_reads_as_empty_page():
    client = DummyTimeDB(error=InfluxDBClientError("database not found: messages", 404))

    page = InfluxSenMLRepository(client).retrieve(SenMLPageMetadata())

    assert page.total == 0
    assert page.messages == []


def test_read_failure():
    with pytest.raises(ReadFailed):
        InfluxSenMLRepository(DummyTimeDB(error=InfluxDBServerError("timeout"))).retrieve(SenMLPageMetadata())


def test_backup_is_unpaginated():
    client = DummyTimeDB()

    InfluxJSONRepository(client).backup(JSONPageMetadata(format="weather", limit=3, offset=3))

    assert client.queries[0][0] == 'SELECT * FROM "weather" ORDER BY time DESC'


##########     R E M O V E     ##########


def test_remove_by_tags_and_time():
    client = DummyTimeDB()

    InfluxSenMLRepository(client).remove(SenMLPageMetadata(publisher="p1", name="temp", to_time=1700000000.0))

    assert client.executed == [
        (
            'DELETE FROM "messages" WHERE time <= 1700000000000000000 AND "publisher" = $publisher AND "name" = $name',
            {"publisher": "p1", "name": "temp"},
        )
    ]


def test_remove_by_field_is_unsupported():
    client = DummyTimeDB()

    with pytest.raises(InvalidQuery):
        InfluxSenMLRepository(client).remove(SenMLPageMetadata(value=1.0))

    assert client.executed == []


def test_remove_failure():
    with pytest.raises(DeleteFailed):
        InfluxJSONRepository(DummyTimeDB(error=InfluxDBServerError("timeout"))).remove(JSONPageMetadata())


##########     R E S T O R E     ##########


def test_restore_senml_rejects_other_kinds():
    client = DummyTimeDB()

    with pytest.raises(InvalidMessage):
        InfluxSenMLRepository(client).restore([temperature(), {"created": 1, "payload": {}}])

    assert client.written == []


def test_restore_json_maps():
    client = DummyTimeDB()

    InfluxJSONRepository(client).restore([{"created": 1.0, "publisher": "p1", "payload": {"t": 1}}], format="weather")

    assert client.written[0][0]["measurement"] == "weather"
    assert client.written[0][0]["fields"] == {"t": 1.0, "_created": 1.0}
