###########EXTERNAL IMPORTS############

import asyncio
import os
from dataclasses import dataclass
from typing import Union

#######################################

#############LOCAL IMPORTS#############

from consumers.consumer import Consumer
from consumers.handler import ConsumeTask, MessageHandler
from db.postgres import PostgresClient
from db.timedb import TimeDBClient
from model.config import Backend, StoreConfig
from readers.influxdb import InfluxJSONRepository, InfluxSenMLRepository
from readers.postgres import PostgresJSONRepository, PostgresSenMLRepository
from readers.service import ReadersService
from util.debug import LoggerManager
from writers.influxdb import InfluxWriter
from writers.postgres import PostgresWriter
from writers.schema import SchemaManager

#######################################


@dataclass
class Store:
    """
    Wired store components of one backend.

    Attributes:
        client: Backend client, opened and closed by the application.
        writer (Consumer): Writer fed by the consume task.
        readers (ReadersService): Entry point of the API layer.
    """

    client: Union[PostgresClient, TimeDBClient]
    writer: Consumer
    readers: ReadersService


def build_store(config: StoreConfig) -> Store:
    """Builds the client, writer and readers of the configured backend."""

    if Backend(config.backend) == Backend.INFLUXDB:
        timedb_client = TimeDBClient(config.influx)
        return Store(
            client=timedb_client,
            writer=InfluxWriter(timedb_client),
            readers=ReadersService(senml=InfluxSenMLRepository(timedb_client), json=InfluxJSONRepository(timedb_client)),
        )

    postgres_client = PostgresClient(config.postgres)
    schema = SchemaManager(postgres_client)
    return Store(
        client=postgres_client,
        writer=PostgresWriter(postgres_client, schema),
        readers=ReadersService(senml=PostgresSenMLRepository(postgres_client), json=PostgresJSONRepository(postgres_client, schema)),
    )


async def async_main():
    """
    Main asynchronous entry point for the application.

    Responsibilities:
        - Initializes logging and loads the store configuration.
        - Opens the configured backend and creates its base schema.
        - Starts the consume task that writes incoming messages.
        - Keeps the event loop alive until cancelled.
    """

    # Initialize global logger
    LoggerManager.init()
    logger = LoggerManager.get_logger(__name__)

    config = StoreConfig.load(os.getenv("STORE_CONFIG", "store.env"))
    store = build_store(config)
    consume_task = ConsumeTask(MessageHandler(store.writer), queue_size=config.queue_size)

    await store.client.init_connection()
    await consume_task.start()
    logger.info(f"Message store running on the {Backend(config.backend).value} backend")

    try:
        # Keep main loop alive to support background tasks
        while True:
            await asyncio.sleep(2)
    finally:
        await consume_task.stop()
        await store.client.close_connection()


if __name__ == "__main__":
    asyncio.run(async_main())
