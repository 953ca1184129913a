###########EXTERNAL IMPORTS############

import asyncio
import json
import pytest
from typing import Any, List

#######################################

#############LOCAL IMPORTS#############

from consumers.consumer import Consumer
from consumers.handler import ConsumeTask, MessageHandler
from db.exceptions import InvalidMessage
from model.messages import JSONMessages, Message, SenMLMessage, TransformerProfile

#######################################


class DummyConsumer(Consumer):
    def __init__(self):
        self.senml: List[List[SenMLMessage]] = []
        self.json: List[JSONMessages] = []

    def save_senml(self, messages: List[SenMLMessage]) -> None:
        self.senml.append(messages)

    def save_json(self, messages: JSONMessages) -> None:
        self.json.append(messages)


def raw(content_type: str, payload: Any, profile=None) -> Message:
    return Message(
        publisher="thing-1",
        subtopic="",
        protocol="http",
        content_type=content_type,
        payload=json.dumps(payload).encode(),
        created=1700000000.0,
        profile=profile,
    )


def test_senml_content_type():
    consumer = DummyConsumer()

    MessageHandler(consumer).handle(raw("application/senml+json; charset=utf-8", [{"n": "temp", "v": 1}]))

    assert len(consumer.senml) == 1
    assert consumer.senml[0][0].name == "temp"


def test_json_content_type():
    consumer = DummyConsumer()

    MessageHandler(consumer).handle(raw("Application/JSON", {"t": 1}, TransformerProfile(format="weather")))

    assert consumer.json[0].format == "weather"
    assert consumer.json[0].data[0].payload == {"t": 1}


def test_unsupported_content_type():
    with pytest.raises(InvalidMessage):
        MessageHandler(DummyConsumer()).handle(raw("text/plain", "hello"))


@pytest.mark.asyncio
async def test_consume_task_keeps_going_after_bad_message():
    consumer = DummyConsumer()
    task = ConsumeTask(MessageHandler(consumer), queue_size=10)

    await task.start()
    await task.publish(raw("text/plain", "hello"))
    await task.publish(raw("application/json", {"t": 1}))
    await asyncio.wait_for(task.queue.join(), timeout=5)
    await task.stop()

    assert task.task is None
    assert len(consumer.json) == 1
