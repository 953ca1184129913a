###########EXTERNAL IMPORTS############

import asyncio
from typing import Callable, Dict, Optional

#######################################

#############LOCAL IMPORTS#############

from util.debug import LoggerManager
from consumers.consumer import ConsumableMessage, Consumer
from db.exceptions import InvalidMessage
from model.messages import JSON_CONTENT_TYPE, SENML_CONTENT_TYPE, Message
import transform.json_transformer as json_transformer
import transform.senml_transformer as senml_transformer

#######################################

TRANSFORMERS: Dict[str, Callable[[Message], ConsumableMessage]] = {
    SENML_CONTENT_TYPE: senml_transformer.transform,
    JSON_CONTENT_TYPE: json_transformer.transform,
}


def media_type(content_type: str) -> str:
    """Strips parameters (e.g. charset) from a content type and lowercases it."""

    return content_type.split(";", 1)[0].strip().lower()


class MessageHandler:
    """
    Turns raw incoming messages into normalized ones and hands them to a consumer.

    Attributes:
        consumer (Consumer): Writer of the configured backend.
    """

    def __init__(self, consumer: Consumer):
        self.consumer = consumer

    def transform(self, message: Message) -> ConsumableMessage:
        """
        Normalizes a raw message according to its content type.

        Raises:
            InvalidMessage: If the content type is not supported or the payload is malformed.
        """

        transformer = TRANSFORMERS.get(media_type(message.content_type))
        if transformer is None:
            raise InvalidMessage(f"Unsupported content type {message.content_type}")
        return transformer(message)

    def handle(self, message: Message) -> None:
        self.consumer.consume(self.transform(message))


class ConsumeTask:
    """
    Background task draining a queue of raw messages into the store.

    A message that fails is logged and dropped; the task keeps consuming.

    Attributes:
        handler (MessageHandler): Handler applied to every message.
        queue (asyncio.Queue[Message]): Pending messages.
        task (Optional[asyncio.Task]): Running consume loop.
    """

    def __init__(self, handler: MessageHandler, queue_size: int = 1000):
        self.handler = handler
        self.queue: asyncio.Queue[Message] = asyncio.Queue(maxsize=queue_size)
        self.task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self.task is not None:
            raise RuntimeError("Consume task is already running")
        loop = asyncio.get_event_loop()
        self.task = loop.create_task(self.consume())

    async def stop(self) -> None:
        """Cancels the consume loop. Messages still queued are discarded."""

        try:
            if self.task:
                self.task.cancel()
                await self.task
        except asyncio.CancelledError:
            pass
        finally:
            self.task = None

    async def publish(self, message: Message) -> None:
        await self.queue.put(message)

    async def consume(self) -> None:
        """
        Handles queued messages one at a time, off the event loop.

        This method runs indefinitely in the background.
        """

        logger = LoggerManager.get_logger(__name__)

        while True:
            message = await self.queue.get()
            try:
                await asyncio.to_thread(self.handler.handle, message)
                logger.debug(f"Stored message from {message.publisher} ({message.content_type})")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Failed to store message from {message.publisher}: {e}")
            finally:
                self.queue.task_done()
