###########EXTERNAL IMPORTS############

from enum import Enum
from dataclasses import dataclass, field
from dotenv import load_dotenv
from typing import Optional
import os

#######################################

#############LOCAL IMPORTS#############

import util.functions.objects as objects

#######################################


class Backend(str, Enum):
    """Storage backends the store can run against."""

    POSTGRES = "postgres"
    TIMESCALE = "timescale"
    INFLUXDB = "influxdb"


@dataclass
class PostgresConfig:
    """Connection settings of the Postgres / Timescale row store."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = "postgres"
    database: str = "messages"
    pool_min: int = 1
    pool_max: int = 10
    timescale: bool = False


@dataclass
class InfluxConfig:
    """Connection settings of the InfluxDB time-series store."""

    host: str = "localhost"
    port: int = 8086
    username: str = "root"
    password: str = "root"
    database: str = "messages"


@dataclass
class StoreConfig:
    """
    Complete store configuration, loaded from a .env file.

    Attributes:
        backend (Backend): Selected storage backend.
        postgres (Optional[PostgresConfig]): Row store settings, set for postgres and timescale backends.
        influx (Optional[InfluxConfig]): Time-series settings, set for the influxdb backend.
        queue_size (int): Capacity of the consume queue.
    """

    backend: Backend = Backend.POSTGRES
    postgres: Optional[PostgresConfig] = None
    influx: Optional[InfluxConfig] = None
    queue_size: int = field(default=1000)

    @staticmethod
    def check_config_valid(config_file: str) -> None:
        """
        Loads the environment and validates the required store settings.

        Args:
            config_file (str): Path to the .env config file.

        Raises:
            ValueError: If any required setting is missing or the backend is unknown.
        """

        load_dotenv(config_file)

        backend = os.getenv("STORE_BACKEND")
        if backend is None:
            raise ValueError("Missing required store config(s): STORE_BACKEND")

        backend = objects.convert_str_to_enum(backend.lower(), Backend)

        if backend == Backend.INFLUXDB:
            required = ["INFLUX_HOST", "INFLUX_PORT", "INFLUX_USER", "INFLUX_PASS", "INFLUX_DB"]
        else:
            required = ["DB_HOST", "DB_PORT", "DB_USER", "DB_PASS", "DB_NAME"]

        missing = [var for var in required if os.getenv(var) is None]
        if missing:
            raise ValueError(f"Missing required store config(s): {', '.join(missing)}")

    @staticmethod
    def load(config_file: str) -> "StoreConfig":
        """
        Builds the store configuration from a .env file.

        Args:
            config_file (str): Path to the .env config file.

        Returns:
            StoreConfig: The loaded configuration.
        """

        StoreConfig.check_config_valid(config_file)

        backend = objects.convert_str_to_enum(objects.require_env_variable("STORE_BACKEND").lower(), Backend)
        queue_size = int(os.getenv("STORE_QUEUE_SIZE", "1000"))

        if backend == Backend.INFLUXDB:
            influx = InfluxConfig(
                host=objects.require_env_variable("INFLUX_HOST"),
                port=int(objects.require_env_variable("INFLUX_PORT")),
                username=objects.require_env_variable("INFLUX_USER"),
                password=objects.require_env_variable("INFLUX_PASS"),
                database=objects.require_env_variable("INFLUX_DB"),
            )
            return StoreConfig(backend=backend, influx=influx, queue_size=queue_size)

        postgres = PostgresConfig(
            host=objects.require_env_variable("DB_HOST"),
            port=int(objects.require_env_variable("DB_PORT")),
            user=objects.require_env_variable("DB_USER"),
            password=objects.require_env_variable("DB_PASS"),
            database=objects.require_env_variable("DB_NAME"),
            pool_min=int(os.getenv("DB_POOL_MIN", "1")),
            pool_max=int(os.getenv("DB_POOL_MAX", "10")),
            timescale=backend == Backend.TIMESCALE,
        )
        return StoreConfig(backend=backend, postgres=postgres, queue_size=queue_size)
